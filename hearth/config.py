"""Configuration loading for Hearth."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


@dataclass
class ClientConfig:
    name: str = "hearth-client"
    client_type: str = "cli"


@dataclass
class StoreConfig:
    """Configuration for the local store."""

    db_path: str = "~/.hearth/hearth.db"


@dataclass
class SyncConfig:
    """Configuration for the sync manager and authority client."""

    enabled: bool = True
    server_url: str = ""
    auth_token: str | None = None
    interval_seconds: float = 30.0
    max_changes_per_sync: int = 100
    retry_delay_seconds: float = 5.0
    follow_up_delay_seconds: float = 2.0
    online_settle_seconds: float = 1.0
    request_timeout_seconds: float = 30.0


@dataclass
class ConnectivityConfig:
    """Configuration for authority health probing."""

    probe_enabled: bool = True
    check_interval_seconds: float = 15.0
    probe_timeout_seconds: float = 5.0


@dataclass
class Config:
    client: ClientConfig = field(default_factory=ClientConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    connectivity: ConnectivityConfig = field(default_factory=ConnectivityConfig)


def _get_env(key: str, default: Any = None) -> Any:
    """Get environment variable with HEARTH_ prefix."""
    return os.environ.get(f"HEARTH_{key}", default)


def _is_true(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    # Client overrides
    if name := _get_env("CLIENT_NAME"):
        config.client.name = name
    if client_type := _get_env("CLIENT_TYPE"):
        config.client.client_type = client_type

    # Store overrides
    if db_path := _get_env("DB_PATH"):
        config.store.db_path = db_path

    # Sync overrides
    if sync_enabled := _get_env("SYNC_ENABLED"):
        config.sync.enabled = _is_true(sync_enabled)
    if server_url := _get_env("SYNC_SERVER_URL"):
        config.sync.server_url = server_url
    if auth_token := _get_env("SYNC_AUTH_TOKEN"):
        config.sync.auth_token = auth_token
    if interval := _get_env("SYNC_INTERVAL"):
        config.sync.interval_seconds = float(interval)
    if batch_size := _get_env("SYNC_BATCH_SIZE"):
        config.sync.max_changes_per_sync = int(batch_size)

    # Connectivity overrides
    if probe := _get_env("CONNECTIVITY_PROBE"):
        config.connectivity.probe_enabled = _is_true(probe)

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

            # Parse client config
            if "client" in data:
                client_data = data["client"]
                config.client = ClientConfig(
                    name=client_data.get("name", config.client.name),
                    client_type=client_data.get(
                        "client_type", config.client.client_type
                    ),
                )

            # Parse store config
            if "store" in data:
                config.store = StoreConfig(
                    db_path=data["store"].get("db_path", config.store.db_path)
                )

            # Parse sync config
            if "sync" in data:
                sync_data = data["sync"]
                config.sync = SyncConfig(
                    enabled=sync_data.get("enabled", config.sync.enabled),
                    server_url=sync_data.get("server_url", config.sync.server_url),
                    auth_token=sync_data.get("auth_token", config.sync.auth_token),
                    interval_seconds=sync_data.get(
                        "interval_seconds", config.sync.interval_seconds
                    ),
                    max_changes_per_sync=sync_data.get(
                        "max_changes_per_sync", config.sync.max_changes_per_sync
                    ),
                    retry_delay_seconds=sync_data.get(
                        "retry_delay_seconds", config.sync.retry_delay_seconds
                    ),
                    follow_up_delay_seconds=sync_data.get(
                        "follow_up_delay_seconds", config.sync.follow_up_delay_seconds
                    ),
                    online_settle_seconds=sync_data.get(
                        "online_settle_seconds", config.sync.online_settle_seconds
                    ),
                    request_timeout_seconds=sync_data.get(
                        "request_timeout_seconds", config.sync.request_timeout_seconds
                    ),
                )

            # Parse connectivity config
            if "connectivity" in data:
                conn_data = data["connectivity"]
                config.connectivity = ConnectivityConfig(
                    probe_enabled=conn_data.get(
                        "probe_enabled", config.connectivity.probe_enabled
                    ),
                    check_interval_seconds=conn_data.get(
                        "check_interval_seconds",
                        config.connectivity.check_interval_seconds,
                    ),
                    probe_timeout_seconds=conn_data.get(
                        "probe_timeout_seconds",
                        config.connectivity.probe_timeout_seconds,
                    ),
                )

    # Apply environment variable overrides
    config = _apply_env_overrides(config)

    return config
