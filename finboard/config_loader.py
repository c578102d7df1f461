"""
Config loader: parses the YAML application config into pydantic models.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

from finboard.providers import resolve_env

logger = logging.getLogger(__name__)


# ── Sections ──────────────────────────────────────────

class CacheConfig(BaseModel):
    default_duration_seconds: int = 60
    max_entries: int = Field(default=256, gt=0)
    max_age_seconds: float = Field(default=3600.0, gt=0)
    sweep_interval_seconds: float = Field(default=300.0, gt=0)
    request_timeout: float = 30.0


class StorageConfig(BaseModel):
    path: str = "data/finboard.json"
    record_name: str = "finboard-storage"


class ServerConfig(BaseModel):
    host: str = "127.0.0.1"
    port: int = 8400
    cors_origins: List[str] = Field(
        default_factory=lambda: ["http://localhost:3000", "http://localhost:5173"]
    )


# ── Top level ─────────────────────────────────────────

class AppConfig(BaseModel):
    cache: CacheConfig = Field(default_factory=CacheConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    # provider -> key seeded into the store when it has none
    api_keys: Dict[str, str] = Field(default_factory=dict)

    @field_validator("api_keys", mode="before")
    @classmethod
    def drop_empty_keys(cls, v: Any) -> Any:
        if isinstance(v, dict):
            return {k: val for k, val in v.items() if val}
        return v

    def resolved_api_keys(self) -> Dict[str, str]:
        """Provider keys with ``${ENV_VAR}`` placeholders expanded."""
        keys = {}
        for provider, value in self.api_keys.items():
            try:
                keys[provider] = resolve_env(value)
            except ValueError as e:
                logger.warning(f"Skipping API key for {provider}: {e}")
        return keys


# ── Loading ───────────────────────────────────────────

_CONFIG_SEARCH_PATHS = [
    "config/config.yaml",
    "config.yaml",
]


def config_root() -> Path:
    return Path(os.getenv("FINBOARD_ROOT", "."))


def find_config_file(base: Optional[Path] = None) -> Optional[Path]:
    base = base or config_root()
    for p in _CONFIG_SEARCH_PATHS:
        path = base / p
        if path.exists():
            return path
    return None


def load_config(path: Optional[str | Path] = None) -> AppConfig:
    """
    Load the application config. A missing file yields the defaults.
    Relative storage paths are resolved against ``FINBOARD_ROOT``.
    """
    path = Path(path) if path is not None else find_config_file()
    raw: dict = {}
    if path is not None and path.exists():
        with open(path, "r", encoding="utf-8") as fp:
            raw = yaml.safe_load(fp) or {}
        logger.info(f"Loaded config from {path}")
    else:
        logger.info("No config file found, using defaults")

    config = AppConfig.model_validate(raw)
    storage_path = Path(config.storage.path)
    if not storage_path.is_absolute():
        config.storage.path = str(config_root() / storage_path)
    return config
