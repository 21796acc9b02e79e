"""Configuration loading for taskbuddy."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


@dataclass
class ApiConfig:
    base_url: str = "http://localhost:5000/api"
    timeout: float = 10.0
    max_retries: int = 2
    retry_backoff_seconds: float = 1.0
    token: str | None = None


@dataclass
class StorageConfig:
    """Configuration for the offline cache."""

    backend: str = "sqlite"  # "sqlite" or "memory"
    db_path: str = "~/.taskbuddy/offline.db"


@dataclass
class SyncConfig:
    """Configuration for queue replay and reconnect handling."""

    enabled: bool = True
    auto_sync_on_reconnect: bool = True
    probe_interval_seconds: int = 15


@dataclass
class UserConfig:
    default_user: str | None = None


@dataclass
class Config:
    api: ApiConfig = field(default_factory=ApiConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    user: UserConfig = field(default_factory=UserConfig)


def _get_env(key: str, default: Any = None) -> Any:
    """Get environment variable with TASKBUDDY_ prefix."""
    return os.environ.get(f"TASKBUDDY_{key}", default)


def _as_bool(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    # API overrides
    if base_url := _get_env("API_BASE_URL"):
        config.api.base_url = base_url
    if timeout := _get_env("API_TIMEOUT"):
        config.api.timeout = float(timeout)
    if max_retries := _get_env("API_MAX_RETRIES"):
        config.api.max_retries = int(max_retries)
    if token := _get_env("API_TOKEN"):
        config.api.token = token

    # Storage overrides
    if backend := _get_env("STORAGE_BACKEND"):
        config.storage.backend = backend
    if db_path := _get_env("STORAGE_DB_PATH"):
        config.storage.db_path = db_path

    # Sync overrides
    if sync_enabled := _get_env("SYNC_ENABLED"):
        config.sync.enabled = _as_bool(sync_enabled)
    if auto_sync := _get_env("SYNC_AUTO_ON_RECONNECT"):
        config.sync.auto_sync_on_reconnect = _as_bool(auto_sync)
    if probe_interval := _get_env("SYNC_PROBE_INTERVAL"):
        config.sync.probe_interval_seconds = int(probe_interval)

    if user := _get_env("USER"):
        config.user.default_user = user

    return config


def load_config(config_path: str | Path | None = None) -> Config:
    """Load configuration from YAML file with environment variable overrides.

    Args:
        config_path: Path to YAML config file. If None, uses default config.

    Returns:
        Loaded Config object.
    """
    config = Config()

    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                data = yaml.safe_load(f) or {}

            # Parse API config
            if "api" in data:
                api_data = data["api"]
                config.api = ApiConfig(
                    base_url=api_data.get("base_url", config.api.base_url),
                    timeout=api_data.get("timeout", config.api.timeout),
                    max_retries=api_data.get("max_retries", config.api.max_retries),
                    retry_backoff_seconds=api_data.get(
                        "retry_backoff_seconds", config.api.retry_backoff_seconds
                    ),
                    token=api_data.get("token"),
                )

            # Parse storage config
            if "storage" in data:
                storage_data = data["storage"]
                config.storage = StorageConfig(
                    backend=storage_data.get("backend", config.storage.backend),
                    db_path=storage_data.get("db_path", config.storage.db_path),
                )

            # Parse sync config
            if "sync" in data:
                sync_data = data["sync"]
                config.sync = SyncConfig(
                    enabled=sync_data.get("enabled", config.sync.enabled),
                    auto_sync_on_reconnect=sync_data.get(
                        "auto_sync_on_reconnect", config.sync.auto_sync_on_reconnect
                    ),
                    probe_interval_seconds=sync_data.get(
                        "probe_interval_seconds", config.sync.probe_interval_seconds
                    ),
                )

            if "user" in data:
                config.user = UserConfig(
                    default_user=data["user"].get("default_user"),
                )

    # Apply environment variable overrides
    config = _apply_env_overrides(config)

    if config.storage.backend not in ("sqlite", "memory"):
        raise ValueError(f"Unknown storage backend: {config.storage.backend}")

    return config
