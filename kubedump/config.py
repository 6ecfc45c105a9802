"""Configuration loading from environment variables."""

from __future__ import annotations

import os

from kubedump.filter import parse
from kubedump.models.config import (
    ControllerConfig,
    KubedumpConfig,
    LogConfig,
    MetricsConfig,
    QueueConfig,
)


def _env(key: str, default: str = "") -> str:
    return os.environ.get(f"KUBEDUMP_{key}", default)


def _env_int(key: str, default: int, min_val: int | None = None, max_val: int | None = None) -> int:
    val = int(_env(key, str(default)))
    if min_val is not None:
        val = max(val, min_val)
    if max_val is not None:
        val = min(val, max_val)
    return val


def _env_float(key: str, default: float, min_val: float | None = None) -> float:
    val = float(_env(key, str(default)))
    if min_val is not None:
        val = max(val, min_val)
    return val


def _validate_log_level(value: str) -> str:
    valid = {"debug", "info", "warning", "error"}
    if value.lower() not in valid:
        raise ValueError(f"Invalid log level: {value}. Must be one of {valid}")
    return value.lower()


def _validate_filter(value: str) -> str:
    # Raises FilterParseError (a ValueError) for malformed expressions.
    parse(value)
    return value


def _validate_destination(value: str) -> str:
    if not value.strip():
        raise ValueError("Destination must not be empty")
    return value


def load_config() -> KubedumpConfig:
    """Load configuration from KUBEDUMP_* environment variables."""
    return KubedumpConfig(
        controller=ControllerConfig(
            destination=_validate_destination(_env("DESTINATION", "kubedump")),
            filter=_validate_filter(_env("FILTER", "")),
            workers=_env_int("WORKERS", 5, min_val=1, max_val=64),
            log_sync_timeout=_env_float("LOG_SYNC_TIMEOUT", 5.0, min_val=0.1),
            log_sync_interval=_env_float("LOG_SYNC_INTERVAL", 1.0, min_val=0.1),
            cache_sync_timeout=_env_float("CACHE_SYNC_TIMEOUT", 60.0, min_val=1.0),
        ),
        queue=QueueConfig(
            qps=_env_float("QUEUE_QPS", 10.0, min_val=0.1),
            burst=_env_int("QUEUE_BURST", 100, min_val=1),
            max_retries=_env_int("QUEUE_MAX_RETRIES", 5, min_val=0, max_val=20),
        ),
        metrics=MetricsConfig(
            port=_env_int("METRICS_PORT", 0, min_val=0, max_val=65535),
        ),
        log=LogConfig(
            level=_validate_log_level(_env("LOG_LEVEL", "info")),
        ),
    )
