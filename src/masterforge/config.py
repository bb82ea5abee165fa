"""Configuration management using Pydantic Settings."""

from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import make_url

from masterforge.errors import ConfigurationError


class Settings(BaseSettings):
    """Pipeline settings loaded from MASTERFORGE_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="MASTERFORGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Schema and data locations
    proto_dir: Path = Path("masterdata/proto")
    tsv_dir: Path = Path("masterdata/raw")
    generated_dir: Path = Path("masterdata/generated")
    verify_dir: Path = Path("masterdata/tables")
    dump_dir: Path = Path("masterdata/dump")

    # Generated code namespaces
    canonical_namespace: str = "game.shared.masterdata"
    client_namespace: str = "game.client.masterdata"
    server_namespace: str = "game.server.masterdata"
    realtime_namespace: str = "game.realtime.masterdata"

    # Schema compiler
    protoc_path: Path | None = None
    tools_dir: Path = Path("tools/protoc")

    # Relational mirror
    database_url: str | None = None
    ignored_tables: list[str] = ["VersionInfo", "alembic_version"]

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Reset settings (for testing)."""
    global _settings
    _settings = None


def resolve_database_url(explicit: str | None, settings: Settings | None = None) -> str:
    """Pick the database URL from an explicit option, falling back to settings.

    Raises:
        ConfigurationError: If neither source provides a URL.
    """
    if explicit:
        return explicit
    settings = settings or get_settings()
    if settings.database_url:
        return settings.database_url
    raise ConfigurationError(
        "No database URL configured. Pass --database-url or set MASTERFORGE_DATABASE_URL."
    )


def mask_database_url(url: str) -> str:
    """Render a database URL with its password hidden."""
    return make_url(url).render_as_string(hide_password=True)
