"""accessgate configuration system using pydantic-settings with YAML support."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AccessConfig(BaseModel):
    """Gate evaluation defaults."""

    superadmin_role: str = "super_admin"
    superadmin_bypass: bool = True
    # Answer for a registered surface that has no access binding
    surface_default: Literal["allow", "deny"] = "deny"
    graceful_fail: bool = True


class DeploymentConfig(BaseModel):
    """License-to-RBAC deployment policy."""

    revocation_policy: Literal["immediate", "grace_period"] = "immediate"
    grace_period_days: int = Field(default=7, ge=0)
    role_key_prefix: str = "role_"
    create_surface_bindings: bool = True


class StorageConfig(BaseModel):
    """Database connection settings."""

    database_url: str = "sqlite+aiosqlite:///./accessgate.db"
    echo: bool = False


class Settings(BaseSettings):
    """Root configuration for accessgate."""

    model_config = SettingsConfigDict(
        env_prefix="ACCESSGATE_",
        env_nested_delimiter="__",
    )

    access: AccessConfig = Field(default_factory=AccessConfig)
    deployment: DeploymentConfig = Field(default_factory=DeploymentConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)

    debug: bool = False

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,  # type: ignore[no-untyped-def]
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # YAML arrives as init kwargs; environment wins over it
        return env_settings, init_settings, dotenv_settings, file_secret_settings


def load_config(config_path: str | Path | None = None) -> Settings:
    """Load configuration from YAML file and environment variables.

    Environment variables override YAML values. YAML overrides defaults.
    """
    yaml_data: dict[str, Any] = {}

    if config_path is None:
        candidates = [
            Path("accessgate.yaml"),
            Path("accessgate.yml"),
            Path("/etc/accessgate/accessgate.yaml"),
        ]
        for candidate in candidates:
            if candidate.exists():
                config_path = candidate
                break

    if config_path is not None:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                yaml_data = yaml.safe_load(f) or {}

    return Settings(**yaml_data)


_settings: Settings | None = None


def get_settings() -> Settings:
    """Get the global settings singleton."""
    global _settings
    if _settings is None:
        _settings = load_config()
    return _settings


def reset_settings() -> None:
    """Reset settings singleton (for testing)."""
    global _settings
    _settings = None
