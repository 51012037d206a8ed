"""
DocVault — per-user virtual filesystem and document revisioning core.

Folders form one forest per user with denormalized paths; files carry an
immutable revision history; bytes live in a blob store and enrichment
runs out of band.

Entry point:
    from docvault.engine.runtime import DocVaultRuntime
"""

__version__ = "1.0.0"
__all__ = ["engine", "db", "documents", "storage", "enrichment"]
