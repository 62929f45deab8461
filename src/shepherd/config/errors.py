"""Errors raised while assembling the daemon configuration."""

from __future__ import annotations

from shepherd.domain.errors import ShepherdError


class ConfigurationError(ShepherdError):
    """A configuration value is invalid; raised before any cluster task starts."""


class MissingConfigurationError(ConfigurationError):
    """A required setting is absent from both the config file and the environment."""
