"""Environment variable loaders for configuration."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

from .errors import ConfigurationError

if TYPE_CHECKING:
    from collections.abc import Sequence

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off"})


def optional_env_vars(names: Sequence[str]) -> dict[str, str]:
    """Return the subset of ``names`` that is set to a non-blank value."""

    values: dict[str, str] = {}
    for name in names:
        value = os.getenv(name)
        if value is not None and value.strip():
            values[name] = value.strip()
    return values


def parse_bool(name: str, value: str | bool) -> bool:
    if isinstance(value, bool):
        return value
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ConfigurationError(f"Invalid boolean for {name}: {value!r}")


def parse_number[T: (int, float)](name: str, value: object, kind: type[T]) -> T:
    try:
        return kind(value)  # type: ignore[call-arg]
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid {kind.__name__} for {name}: {value!r}") from exc


def parse_list(value: str | Sequence[str]) -> tuple[str, ...]:
    """Split a comma separated value (or pass a sequence through), dropping blanks."""

    items = value.split(",") if isinstance(value, str) else list(value)
    return tuple(item.strip() for item in items if item and item.strip())