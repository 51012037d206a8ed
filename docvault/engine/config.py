"""
DocVault Configuration — Load and validate docvault.yaml at startup.

Usage:
    from docvault.engine.config import load_config, get_config
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

DEFAULT_CONTAINER = "documents"
DEFAULT_SIZE_LIMIT = 10 * 1024 * 1024
DEFAULT_ROOT_FOLDER_NAME = "My Documents"
DEFAULT_ENRICHMENT_TYPES = ["pdf", "doc", "docx", "txt", "dwg", "dxf"]

# Environment variables that override values from docvault.yaml
ENV_OVERRIDES = {
    "DOCVAULT_DATABASE_URL": ("database", "url"),
    "DOCVAULT_ENRICHMENT_WEBHOOK_URL": ("enrichment", "webhook_url"),
    "DOCVAULT_MINIO_ACCESS_KEY": ("storage", "minio", "access_key"),
    "DOCVAULT_MINIO_SECRET_KEY": ("storage", "minio", "secret_key"),
}


# ---------------------------------------------------------------------------
# Pydantic models for docvault.yaml
# ---------------------------------------------------------------------------

class DatabaseConfig(BaseModel):
    url: str = "sqlite:///./docvault.db"
    pool_size: int = 10
    max_overflow: int = 20
    pool_timeout: int = 30
    pool_recycle: int = 1800
    pool_pre_ping: bool = True
    create_tables: bool = True


class MinioConfig(BaseModel):
    endpoint: str = "localhost:9000"
    access_key: str = ""
    secret_key: str = ""
    secure: bool = False


class StorageConfig(BaseModel):
    backend: str = "local"
    container: str = DEFAULT_CONTAINER
    public: bool = True
    size_limit_bytes: int = DEFAULT_SIZE_LIMIT
    local_root: str = ".docvault/blobs"
    public_base_url: Optional[str] = None
    minio: MinioConfig = MinioConfig()

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        if v not in ("local", "minio"):
            raise ValueError(f"storage backend must be local/minio, got '{v}'")
        return v


class EnrichmentConfig(BaseModel):
    webhook_url: Optional[str] = None
    timeout_seconds: float = 15.0
    supported_types: List[str] = Field(default_factory=lambda: list(DEFAULT_ENRICHMENT_TYPES))

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)


class FilesystemConfig(BaseModel):
    root_folder_name: str = DEFAULT_ROOT_FOLDER_NAME
    recent_limit: int = 10


class LogRetentionConfig(BaseModel):
    execution_days: int = 90
    performance_days: int = 30
    security_days: int = 365


class LogAsyncQueueConfig(BaseModel):
    flush_interval_ms: int = 100
    flush_batch_size: int = 50
    max_queue_size: int = 10000


class LoggingConfig(BaseModel):
    level: str = "INFO"
    directory: str = ".docvault/logs"
    compress_after_days: int = 7
    retention: LogRetentionConfig = LogRetentionConfig()
    async_queue: LogAsyncQueueConfig = LogAsyncQueueConfig()


class DocVaultConfig(BaseModel):
    """Root model for docvault.yaml."""
    name: str = "DocVault"
    environment: str = "dev"

    database: DatabaseConfig = DatabaseConfig()
    storage: StorageConfig = StorageConfig()
    enrichment: EnrichmentConfig = EnrichmentConfig()
    filesystem: FilesystemConfig = FilesystemConfig()
    logging: LoggingConfig = LoggingConfig()

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        if v not in ("dev", "staging", "prod"):
            raise ValueError(f"environment must be dev/staging/prod, got '{v}'")
        return v


# ---------------------------------------------------------------------------
# Config Loading Functions
# ---------------------------------------------------------------------------

_config: Optional[DocVaultConfig] = None


def _find_project_root() -> Path:
    """Find the project root by looking for docvault.yaml."""
    current = Path.cwd()
    for parent in [current, *current.parents]:
        if (parent / "docvault.yaml").exists():
            return parent
    return current


def _apply_env_overrides(raw: dict) -> dict:
    """Overlay DOCVAULT_* environment variables onto the raw YAML dict."""
    for env_name, keys in ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if not value:
            continue
        node = raw
        for key in keys[:-1]:
            child = node.get(key)
            if not isinstance(child, dict):
                child = {}
                node[key] = child
            node = child
        node[keys[-1]] = value
    return raw


def load_config(config_path: Optional[str] = None) -> DocVaultConfig:
    """
    Load and validate docvault.yaml.

    Args:
        config_path: Explicit path to docvault.yaml. If None, auto-discovers.

    Returns:
        Validated DocVaultConfig instance. Defaults when no file exists.
    """
    global _config

    if config_path is None:
        config_path = str(_find_project_root() / "docvault.yaml")

    raw: dict = {}
    path = Path(config_path)
    if path.exists():
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}

    _config = DocVaultConfig(**_apply_env_overrides(raw))
    return _config


def get_config() -> DocVaultConfig:
    """Get the currently loaded config, loading if necessary."""
    global _config
    if _config is None:
        _config = load_config()
    return _config
