"""Configuration loading for LoadStage."""

from __future__ import annotations

import os
from dataclasses import dataclass

from loadstage._internal.errors import ConfigError


@dataclass(frozen=True)
class LoadStageConfig:
    """Global LoadStage configuration.

    Attributes:
        default_base_url: Base URL used when a scenario declares none.
        tick_interval: Seconds between pool reconciliations.
        request_timeout: Total per-request timeout in seconds.
        grace_timeout: Seconds ``stop_all`` waits for runners to drain
            before force-stopping the rest.
        connection_pool_size: Maximum open connections for the transport.
    """

    default_base_url: str = ""
    tick_interval: float = 1.0
    request_timeout: float = 30.0
    grace_timeout: float = 30.0
    connection_pool_size: int = 100


def _read_float(name: str, default: str) -> float:
    raw = os.environ.get(name, default)
    try:
        return float(raw)
    except ValueError:
        msg = f"{name} must be a number, got: {raw!r}"
        raise ConfigError(msg) from None


def load_config() -> LoadStageConfig:
    """Load configuration from environment variables with defaults.

    Environment variables:
        LOADSTAGE_BASE_URL: Default base URL.
        LOADSTAGE_TICK_INTERVAL: Reconciliation tick in seconds (default: 1.0).
        LOADSTAGE_TIMEOUT: Request timeout in seconds (default: 30.0).
        LOADSTAGE_GRACE_TIMEOUT: Stop grace period in seconds (default: 30.0).
        LOADSTAGE_POOL_SIZE: Connection pool size (default: 100).

    Returns:
        Populated LoadStageConfig instance.

    Raises:
        ConfigError: If an environment variable has an invalid value.
    """
    pool_size_str = os.environ.get("LOADSTAGE_POOL_SIZE", "100")
    try:
        pool_size = int(pool_size_str)
    except ValueError:
        msg = f"LOADSTAGE_POOL_SIZE must be an integer, got: {pool_size_str!r}"
        raise ConfigError(msg) from None

    if pool_size < 1:
        msg = f"LOADSTAGE_POOL_SIZE must be >= 1, got: {pool_size}"
        raise ConfigError(msg)

    tick_interval = _read_float("LOADSTAGE_TICK_INTERVAL", "1.0")
    if tick_interval <= 0:
        msg = f"LOADSTAGE_TICK_INTERVAL must be positive, got: {tick_interval}"
        raise ConfigError(msg)

    timeout = _read_float("LOADSTAGE_TIMEOUT", "30.0")
    if timeout <= 0:
        msg = f"LOADSTAGE_TIMEOUT must be positive, got: {timeout}"
        raise ConfigError(msg)

    grace = _read_float("LOADSTAGE_GRACE_TIMEOUT", "30.0")
    if grace < 0:
        msg = f"LOADSTAGE_GRACE_TIMEOUT must be non-negative, got: {grace}"
        raise ConfigError(msg)

    return LoadStageConfig(
        default_base_url=os.environ.get("LOADSTAGE_BASE_URL", ""),
        tick_interval=tick_interval,
        request_timeout=timeout,
        grace_timeout=grace,
        connection_pool_size=pool_size,
    )
