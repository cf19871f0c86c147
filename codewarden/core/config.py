"""
Configuration management for Codewarden.

Supports:
- Local development: .env file
- Environment variables in deployment
- YAML config for business rules (free-tier limits)
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==============================================
    # Environment
    # ==============================================
    codewarden_env: str = Field(default="local", description="Environment: local/cloud")
    log_level: str = Field(default="INFO")
    timezone: str = Field(default="UTC", description="Display timezone only")

    # ==============================================
    # Quota store
    # ==============================================
    quota_store: str = Field(default="sql", description="Quota store backend: sql/memory")
    database_url: str = Field(default="sqlite:///data/codewarden.db")
    store_timeout: float = Field(default=5.0, description="Store call timeout in seconds")

    # ==============================================
    # Metering
    # ==============================================
    strict_limits: bool = Field(
        default=False,
        description="Use a conditional store increment instead of check-then-increment",
    )

    # ==============================================
    # Insights
    # ==============================================
    insight_cache_ttl: int = Field(default=86400, description="Insight cache TTL in seconds")
    insight_cache_size: int = Field(default=500)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v = v.upper()
        if v not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v

    @field_validator("quota_store")
    @classmethod
    def validate_quota_store(cls, v: str) -> str:
        v = v.lower()
        if v not in {"sql", "memory"}:
            raise ValueError(f"Invalid quota store: {v}. Must be 'sql' or 'memory'")
        return v

    @field_validator("store_timeout")
    @classmethod
    def validate_store_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("store_timeout must be > 0")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def find_project_root() -> Optional[Path]:
    """Return the directory holding pyproject.toml, if any."""
    current = Path(__file__).resolve()
    for parent in current.parents:
        if (parent / "pyproject.toml").exists():
            return parent
    return None


def load_yaml_config(config_path: Optional[str] = None) -> dict[str, Any]:
    """
    Load YAML configuration file.

    Args:
        config_path: Path to config file. Defaults to config/config.yaml,
            or $CODEWARDEN_CONFIG when set.

    Returns:
        Configuration dictionary (empty if the file is empty)
    """
    if config_path is None:
        config_path = os.getenv("CODEWARDEN_CONFIG")
    if config_path is None:
        root = find_project_root()
        if root is not None:
            config_path = str(root / "config" / "config.yaml")
        else:
            config_path = "config/config.yaml"

    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}
