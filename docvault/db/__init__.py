"""DocVault metadata database — SQLAlchemy tables, engine registry, sessions."""
