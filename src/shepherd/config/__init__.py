"""Application configuration helpers."""

from __future__ import annotations

from .daemon import (
    ClusterConfig,
    DaemonConfig,
    GitCredential,
    RetrySettings,
    load_daemon_config,
)
from .errors import ConfigurationError, MissingConfigurationError
from .http_resilience import RateLimit, ResilienceConfig, RetryPolicy
from .logging import configure_logging

__all__ = [
    "ClusterConfig",
    "ConfigurationError",
    "DaemonConfig",
    "GitCredential",
    "MissingConfigurationError",
    "RateLimit",
    "ResilienceConfig",
    "RetryPolicy",
    "RetrySettings",
    "configure_logging",
    "load_daemon_config",
]
