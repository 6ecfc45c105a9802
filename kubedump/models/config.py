"""Configuration data structures."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class ControllerConfig:
    """Event controller configuration."""

    destination: str = "kubedump"
    filter: str = ""
    workers: int = 5
    log_sync_timeout: float = 5.0
    log_sync_interval: float = 1.0
    cache_sync_timeout: float = 60.0


@dataclass
class QueueConfig:
    """Work queue rate limiting configuration."""

    qps: float = 10.0
    burst: int = 100
    max_retries: int = 5


@dataclass
class MetricsConfig:
    """Prometheus exposition configuration."""

    port: int = 0


@dataclass
class LogConfig:
    """Logging configuration."""

    level: str = "info"


@dataclass
class KubedumpConfig:
    """Top-level kubedump configuration."""

    controller: ControllerConfig = field(default_factory=ControllerConfig)
    queue: QueueConfig = field(default_factory=QueueConfig)
    metrics: MetricsConfig = field(default_factory=MetricsConfig)
    log: LogConfig = field(default_factory=LogConfig)
