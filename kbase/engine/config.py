"""
KBase Configuration — Load and validate kbase.yaml at startup.

Usage:
    from kbase.engine.config import load_config, get_config
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from kbase.engine.errors import KBConfigError


# ---------------------------------------------------------------------------
# Pydantic models for kbase.yaml
# ---------------------------------------------------------------------------

class DatabaseConfig(BaseModel):
    url: str = "sqlite:///kbase.db"
    echo: bool = False
    pool_size: int = 10
    max_overflow: int = 20
    pool_timeout: int = 30
    pool_recycle: int = 1800
    pool_pre_ping: bool = True


class AIConfig(BaseModel):
    provider: str = "gemini"
    api_key: Optional[str] = None
    base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    model: str = "gemini-1.5-flash"
    embedding_model: str = "text-embedding-004"
    timeout_seconds: float = 10.0
    tag_count: int = 6
    failure_threshold: int = 5
    recovery_timeout: float = 30.0

    @field_validator("provider")
    @classmethod
    def validate_provider(cls, v: str) -> str:
        if v not in ("gemini", "offline"):
            raise ValueError(f"provider must be gemini/offline, got '{v}'")
        return v


class VersioningConfig(BaseModel):
    max_versions: int = Field(default=10, ge=1)
    max_tags: int = Field(default=10, ge=1)


class LogRetentionConfig(BaseModel):
    execution_days: int = 90
    security_days: int = 365


class LogAsyncQueueConfig(BaseModel):
    flush_interval_ms: int = 100
    flush_batch_size: int = 50
    max_queue_size: int = 10000


class LoggingConfig(BaseModel):
    level: str = "INFO"
    directory: str = ".kbase/logs"
    compress_after_days: int = 7
    retention: LogRetentionConfig = LogRetentionConfig()
    async_queue: LogAsyncQueueConfig = LogAsyncQueueConfig()


class ActivityConfig(BaseModel):
    page_size: int = 10
    spool_directory: Optional[str] = None


class KBaseConfig(BaseModel):
    """Root model for kbase.yaml."""
    name: str = "KBase"
    environment: str = "dev"

    database: DatabaseConfig = DatabaseConfig()
    ai: AIConfig = AIConfig()
    versioning: VersioningConfig = VersioningConfig()
    logging: LoggingConfig = LoggingConfig()
    activity: ActivityConfig = ActivityConfig()

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        if v not in ("dev", "staging", "prod"):
            raise ValueError(f"environment must be dev/staging/prod, got '{v}'")
        return v

    @property
    def is_production(self) -> bool:
        return self.environment == "prod"

    @property
    def spool_directory(self) -> str:
        return self.activity.spool_directory or self.logging.directory


# ---------------------------------------------------------------------------
# Config Loading Functions
# ---------------------------------------------------------------------------

_config: Optional[KBaseConfig] = None


def _find_project_root() -> Path:
    """Find the project root by looking for kbase.yaml."""
    current = Path.cwd()
    for parent in [current, *current.parents]:
        if (parent / "kbase.yaml").exists():
            return parent
    return current


def load_config(config_path: Optional[str] = None) -> KBaseConfig:
    """
    Load and validate kbase.yaml.

    Args:
        config_path: Explicit path to kbase.yaml. If None, auto-discovers.

    Returns:
        Validated KBaseConfig instance.

    Raises:
        KBConfigError if the file exists but does not validate.
    """
    global _config

    if config_path is None:
        config_path = str(_find_project_root() / "kbase.yaml")

    path = Path(config_path)
    raw = {}
    if path.exists():
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}

    # Top-level "kbase:" key carries name/environment
    meta = raw.get("kbase", {})
    config_data = {
        "name": meta.get("name", raw.get("name", "KBase")),
        "environment": meta.get("environment", raw.get("environment", "dev")),
        "database": raw.get("database", {}),
        "ai": raw.get("ai", {}),
        "versioning": raw.get("versioning", {}),
        "logging": raw.get("logging", {}),
        "activity": raw.get("activity", {}),
    }

    try:
        config = KBaseConfig(**config_data)
    except ValidationError as e:
        raise KBConfigError(f"Invalid config {path}: {e}", config_path=str(path)) from e

    if config.ai.api_key is None:
        config.ai.api_key = os.environ.get("GEMINI_API_KEY") or None

    _config = config
    return _config


def get_config() -> KBaseConfig:
    """Get the currently loaded config, loading if necessary."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def get_environment() -> str:
    """Get the current environment."""
    return get_config().environment
