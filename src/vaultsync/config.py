"""Configuration management for VaultSync.

Loads from environment variables, .env files, and config/default.toml.
Structural config comes from TOML; env vars (``VAULTSYNC_*``) override it.

Vault layout assumed throughout:
  {vault}/.kol-noter/id-map.json              — NoteId → folder mapping
  {vault}/{system}/{project}/{note}/_assets/  — note attachments
"""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class VaultConfig(BaseSettings):
    """Active vault configuration."""

    model_config = SettingsConfigDict(env_prefix="VAULTSYNC_VAULT__", extra="ignore")

    path: str | None = Field(default=None, description="Absolute path to the vault root")
    config_dir: str = ".kol-noter"
    id_map_file: str = "id-map.json"

    @field_validator("path")
    @classmethod
    def expand_vault_path(cls, v: str | None) -> str | None:
        if not v:
            return None
        return str(Path(v).expanduser())


class WatchConfig(BaseSettings):
    """External change watching configuration."""

    model_config = SettingsConfigDict(env_prefix="VAULTSYNC_WATCH__", extra="ignore")

    enabled: bool = True
    debounce_ms: int = Field(default=300, ge=0)
    recent_changes_limit: int = Field(default=10, ge=1)
    system_metadata_file: str = "_system.md"
    project_metadata_file: str = "_project.md"
    sidecar_suffix: str = ".visual.json"


class AttachmentConfig(BaseSettings):
    """Attachment storage configuration."""

    model_config = SettingsConfigDict(env_prefix="VAULTSYNC_ATTACHMENTS__", extra="ignore")

    assets_dir: str = "_assets"
    default_extension: str = "png"
    # "file" → file:// URLs, "asset" → asset://localhost/ URLs for webviews
    url_scheme: Literal["file", "asset"] = "file"
    max_filename_attempts: int = Field(default=16, ge=1)


class Settings(BaseSettings):
    """Root configuration — aggregates all sub-configs."""

    model_config = SettingsConfigDict(
        env_prefix="VAULTSYNC_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    vault: VaultConfig = Field(default_factory=VaultConfig)
    watch: WatchConfig = Field(default_factory=WatchConfig)
    attachments: AttachmentConfig = Field(default_factory=AttachmentConfig)

    @property
    def id_map_path(self) -> Path | None:
        """Location of the vault's id-map, or None when no vault is configured."""
        if not self.vault.path:
            return None
        return Path(self.vault.path) / self.vault.config_dir / self.vault.id_map_file

    @classmethod
    def from_toml(cls, path: Path | None = None) -> Settings:
        """Load settings from TOML file, with env var overrides."""
        config_path = path or Path("config/default.toml")
        if config_path.exists():
            with open(config_path, "rb") as f:
                data = tomllib.load(f)
            return cls(**data)
        return cls()


def load_settings(config_path: Path | None = None) -> Settings:
    """Load and validate settings. Entry point for all config access."""
    return Settings.from_toml(config_path)
