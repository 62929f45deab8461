"""Process configuration for the reconciliation daemon.

Values come from an optional TOML file and are overlaid by ``SHEPHERD_*``
environment variables. Everything is validated here, before any cluster
scheduler starts.
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Final

from shepherd.domain.model import GLOBAL_SCOPE, FileFormat, ResourceKind, SyncDirection

from .env import optional_env_vars, parse_bool, parse_list, parse_number
from .errors import ConfigurationError, MissingConfigurationError
from .http_resilience import RateLimit, ResilienceConfig

if TYPE_CHECKING:
    from collections.abc import Mapping

DEFAULT_BRANCH: Final[str] = "main"
DEFAULT_TICK_SECONDS: Final[float] = 60.0
DEFAULT_RETRY_BASE_MS: Final[int] = 500
DEFAULT_RETRY_ATTEMPTS: Final[int] = 4
DEFAULT_CALL_TIMEOUT_SECONDS: Final[float] = 30.0

_ENV_KEYS: Final[dict[str, str]] = {
    "SHEPHERD_REPO_PATH": "repo_path",
    "SHEPHERD_GIT_REMOTE": "remote_url",
    "SHEPHERD_GIT_BRANCH": "branch",
    "SHEPHERD_API_URL": "api_url",
    "SHEPHERD_API_TOKEN": "api_token",
    "SHEPHERD_FILE_FORMAT": "file_format",
    "SHEPHERD_TICK_SECONDS": "tick_interval_seconds",
    "SHEPHERD_VERIFY_TLS": "verify_tls",
    "SHEPHERD_RATE_LIMIT_PER_SECOND": "rate_limit_per_second",
}
_RETRY_ENV_KEYS: Final[dict[str, str]] = {
    "SHEPHERD_RETRY_ATTEMPTS": "attempts",
    "SHEPHERD_RETRY_BASE_MS": "base_delay_ms",
    "SHEPHERD_CALL_TIMEOUT_SECONDS": "call_timeout_seconds",
}
_GIT_ENV_KEYS: Final[dict[str, str]] = {
    "SHEPHERD_GIT_SSH_KEY": "ssh_key",
    "SHEPHERD_GIT_TOKEN": "token",
}


@dataclass(frozen=True, slots=True)
class RetrySettings:
    attempts: int = DEFAULT_RETRY_ATTEMPTS
    base_delay_ms: int = DEFAULT_RETRY_BASE_MS
    max_delay_ms: int = 60_000
    jitter_ratio: float = 0.1
    call_timeout_seconds: float = DEFAULT_CALL_TIMEOUT_SECONDS

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ConfigurationError("Retry attempts must be at least 1")
        if self.base_delay_ms < 0 or self.max_delay_ms < 0:
            raise ConfigurationError("Retry delays must be non-negative")
        if not 0 <= self.jitter_ratio <= 1:
            raise ConfigurationError("Retry jitter ratio must be between 0 and 1")
        if self.call_timeout_seconds <= 0:
            raise ConfigurationError("Call timeout must be positive")

    @property
    def base_delay(self) -> float:
        return self.base_delay_ms / 1000

    @property
    def max_delay(self) -> float:
        return self.max_delay_ms / 1000


@dataclass(frozen=True, slots=True)
class GitCredential:
    """How git talks to the remote. Neither field set means ambient git/ssh-agent config."""

    ssh_key_path: Path | None = None
    token: str | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if self.ssh_key_path is not None and self.token is not None:
            raise ConfigurationError("Configure either a git ssh key or a git token, not both")


@dataclass(frozen=True, slots=True)
class ClusterConfig:
    name: str
    direction: SyncDirection = SyncDirection.ENFORCE
    prune: bool = True


@dataclass(frozen=True, slots=True)
class DaemonConfig:
    repo_path: Path
    api_url: str
    api_token: str = field(repr=False)
    clusters: tuple[ClusterConfig, ...]
    remote_url: str | None = None
    branch: str = DEFAULT_BRANCH
    file_format: FileFormat = FileFormat.YAML
    tick_interval_seconds: float = DEFAULT_TICK_SECONDS
    retry: RetrySettings = field(default_factory=RetrySettings)
    git_credential: GitCredential = field(default_factory=GitCredential)
    verify_tls: bool = True
    rate_limit_per_second: float | None = None
    natural_keys: Mapping[ResourceKind, tuple[str, ...]] = field(
        default_factory=dict["ResourceKind", "tuple[str, ...]"]
    )
    global_scope: ClusterConfig = field(default_factory=lambda: ClusterConfig(GLOBAL_SCOPE))

    def __post_init__(self) -> None:
        if not self.clusters:
            raise ConfigurationError("At least one tracked cluster must be configured")
        names = [cluster.name for cluster in self.clusters]
        if len(set(names)) != len(names):
            raise ConfigurationError(f"Duplicate cluster names in configuration: {names}")
        if GLOBAL_SCOPE in names:
            raise ConfigurationError(f"{GLOBAL_SCOPE!r} is reserved for server-wide resources")
        if self.global_scope.name != GLOBAL_SCOPE:
            raise ConfigurationError(f"The global scope must be named {GLOBAL_SCOPE!r}")
        if self.tick_interval_seconds <= 0:
            raise ConfigurationError("Tick interval must be positive")

    @property
    def scopes(self) -> tuple[ClusterConfig, ...]:
        """The global scope first, then every tracked cluster."""

        return (self.global_scope, *self.clusters)

    def cluster(self, name: str) -> ClusterConfig:
        for cluster in self.scopes:
            if cluster.name == name:
                return cluster
        raise ConfigurationError(f"Cluster {name!r} is not tracked")

    def resilience(self) -> ResilienceConfig:
        ratelimit = (
            RateLimit(max_calls=max(1, int(self.rate_limit_per_second)), per_seconds=1.0)
            if self.rate_limit_per_second
            else None
        )
        return ResilienceConfig(
            name="rancher",
            base_url=self.api_url,
            timeout_seconds=self.retry.call_timeout_seconds,
            verify=self.verify_tls,
            ratelimit=ratelimit,
            default_headers={
                "Authorization": f"Bearer {self.api_token}",
                "Accept": "application/json",
            },
        )


def load_daemon_config(path: Path | None = None) -> DaemonConfig:
    """Build the daemon configuration from ``path`` (TOML, optional) and the environment."""

    raw: dict[str, object] = _read_config_file(path) if path is not None else {}

    for env_name, key in _ENV_KEYS.items():
        value = optional_env_vars((env_name,)).get(env_name)
        if value is not None:
            raw[key] = value
    raw["retry"] = _overlay(_section(raw, "retry"), _RETRY_ENV_KEYS)
    raw["git"] = _overlay(_section(raw, "git"), _GIT_ENV_KEYS)

    missing = [name for name, key in _ENV_KEYS.items() if key in _REQUIRED and not raw.get(key)]
    if missing:
        raise MissingConfigurationError(f"Missing configuration for: {', '.join(sorted(missing))}")

    return DaemonConfig(
        repo_path=Path(str(raw["repo_path"])).expanduser(),
        api_url=str(raw["api_url"]).rstrip("/"),
        api_token=str(raw["api_token"]),
        clusters=_build_clusters(raw),
        remote_url=_optional_str(raw.get("remote_url")),
        branch=str(raw.get("branch") or DEFAULT_BRANCH),
        file_format=_parse_enum(FileFormat, raw.get("file_format", FileFormat.YAML), "file_format"),
        tick_interval_seconds=parse_number(
            "tick_interval_seconds",
            raw.get("tick_interval_seconds", DEFAULT_TICK_SECONDS),
            float,
        ),
        retry=_build_retry(_section(raw, "retry")),
        git_credential=_build_git_credential(_section(raw, "git")),
        verify_tls=parse_bool("verify_tls", _as_flag(raw.get("verify_tls", True))),
        rate_limit_per_second=(
            parse_number("rate_limit_per_second", raw["rate_limit_per_second"], float)
            if raw.get("rate_limit_per_second") is not None
            else None
        ),
        natural_keys=_build_natural_keys(_section(raw, "natural_keys")),
        global_scope=_build_global_scope(_section(raw, "global")),
    )


_REQUIRED: Final[frozenset[str]] = frozenset({"repo_path", "api_url", "api_token"})


def _read_config_file(path: Path) -> dict[str, object]:
    try:
        with path.expanduser().open("rb") as handle:
            return tomllib.load(handle)
    except FileNotFoundError as exc:
        raise ConfigurationError(f"Configuration file not found: {path}") from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigurationError(f"Invalid configuration file {path}: {exc}") from exc


def _section(raw: Mapping[str, object], name: str) -> dict[str, object]:
    value = raw.get(name, {})
    if not isinstance(value, dict):
        raise ConfigurationError(f"Configuration section [{name}] must be a table")
    return dict(value)  # pyright: ignore[reportUnknownArgumentType]


def _overlay(section: dict[str, object], env_keys: Mapping[str, str]) -> dict[str, object]:
    for env_name, value in optional_env_vars(tuple(env_keys)).items():
        section[env_keys[env_name]] = value
    return section


def _scope_defaults() -> tuple[SyncDirection, bool]:
    env = optional_env_vars(("SHEPHERD_DIRECTION", "SHEPHERD_PRUNE"))
    direction = _parse_enum(
        SyncDirection, env.get("SHEPHERD_DIRECTION", SyncDirection.ENFORCE), "direction"
    )
    return direction, parse_bool("prune", env.get("SHEPHERD_PRUNE", "true"))


def _build_clusters(raw: Mapping[str, object]) -> tuple[ClusterConfig, ...]:
    env = optional_env_vars(("SHEPHERD_CLUSTERS",))
    default_direction, default_prune = _scope_defaults()

    if "SHEPHERD_CLUSTERS" in env:
        return tuple(
            ClusterConfig(name=name, direction=default_direction, prune=default_prune)
            for name in parse_list(env["SHEPHERD_CLUSTERS"])
        )

    entries = raw.get("clusters", [])
    if not isinstance(entries, list):
        raise ConfigurationError("Configuration key 'clusters' must be an array of tables")

    clusters: list[ClusterConfig] = []
    for entry in entries:  # pyright: ignore[reportUnknownVariableType]
        if isinstance(entry, str):
            clusters.append(
                ClusterConfig(name=entry, direction=default_direction, prune=default_prune)
            )
            continue
        if not isinstance(entry, dict) or not entry.get("name"):
            raise ConfigurationError(f"Invalid cluster entry: {entry!r}")
        clusters.append(
            ClusterConfig(
                name=str(entry["name"]),  # pyright: ignore[reportUnknownArgumentType]
                direction=_parse_enum(
                    SyncDirection,
                    entry.get("direction", default_direction),  # pyright: ignore[reportUnknownArgumentType]
                    "direction",
                ),
                prune=parse_bool("prune", _as_flag(entry.get("prune", default_prune))),  # pyright: ignore[reportUnknownArgumentType]
            )
        )
    return tuple(clusters)


def _build_global_scope(section: Mapping[str, object]) -> ClusterConfig:
    default_direction, default_prune = _scope_defaults()
    return ClusterConfig(
        name=GLOBAL_SCOPE,
        direction=_parse_enum(
            SyncDirection, section.get("direction", default_direction), "global.direction"
        ),
        prune=parse_bool("global.prune", _as_flag(section.get("prune", default_prune))),
    )


def _build_retry(section: Mapping[str, object]) -> RetrySettings:
    defaults = RetrySettings()
    return RetrySettings(
        attempts=parse_number("retry.attempts", section.get("attempts", defaults.attempts), int),
        base_delay_ms=parse_number(
            "retry.base_delay_ms", section.get("base_delay_ms", defaults.base_delay_ms), int
        ),
        max_delay_ms=parse_number(
            "retry.max_delay_ms", section.get("max_delay_ms", defaults.max_delay_ms), int
        ),
        jitter_ratio=parse_number(
            "retry.jitter_ratio", section.get("jitter_ratio", defaults.jitter_ratio), float
        ),
        call_timeout_seconds=parse_number(
            "retry.call_timeout_seconds",
            section.get("call_timeout_seconds", defaults.call_timeout_seconds),
            float,
        ),
    )


def _build_git_credential(section: Mapping[str, object]) -> GitCredential:
    ssh_key = _optional_str(section.get("ssh_key"))
    return GitCredential(
        ssh_key_path=Path(ssh_key).expanduser() if ssh_key else None,
        token=_optional_str(section.get("token")),
    )


def _build_natural_keys(section: Mapping[str, object]) -> dict[ResourceKind, tuple[str, ...]]:
    natural_keys: dict[ResourceKind, tuple[str, ...]] = {}
    for name, value in section.items():
        kind = ResourceKind.parse(name)
        if kind is None:
            raise ConfigurationError(f"Unknown resource kind in [natural_keys]: {name!r}")
        if not isinstance(value, (str, list)):
            raise ConfigurationError(f"Natural key for {name!r} must be a string or list")
        natural_keys[kind] = parse_list(value)  # pyright: ignore[reportUnknownArgumentType]
    return natural_keys


def _parse_enum[E: (FileFormat, SyncDirection)](enum_type: type[E], value: object, name: str) -> E:
    try:
        return enum_type(str(value).strip().lower())
    except ValueError as exc:
        allowed = ", ".join(member.value for member in enum_type)
        raise ConfigurationError(f"Invalid {name}: {value!r} (expected one of {allowed})") from exc


def _optional_str(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _as_flag(value: object) -> str | bool:
    return value if isinstance(value, bool) else str(value)
