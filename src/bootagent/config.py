"""Configuration loader for bootagent.

Configuration values are merged from several sources, later sources winning:

1. Built-in defaults.
2. ``/etc/bootagent/config.yml`` (or an override path).
3. Environment variables prefixed with ``BOOTAGENT_``.
4. Explicit overrides supplied programmatically (reserved for CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export BOOTAGENT_BOOT__MISSING_INPUTS_DELAY=5
    export BOOTAGENT_DOWNLOADER__HOSTNAMES='[repo-a.example.com, repo-b.example.com]'

Values are coerced via PyYAML's ``safe_load`` so that booleans, numbers and
inline lists are parsed naturally. The resulting configuration is exposed as
immutable ``dataclasses``.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import cast

try:  # PyYAML is a runtime dependency (declared in pyproject.toml).
    import yaml
except Exception as exc:  # pragma: no cover - import failure covered in tests
    raise RuntimeError(
        "PyYAML is required to load bootagent configuration. Install with "
        "`pip install bootagent` or ensure PyYAML>=6.0 is available."
    ) from exc

from . import __version__

ENV_PREFIX = "BOOTAGENT_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}

# Seconds between two polls for missing executable inputs.
MISSING_INPUTS_DELAY = 20.0
# Seconds to wait after a disconnect before switching to offline mode.
RECONNECT_GRACE_PERIOD = 30.0


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class BootConfig:
    """Tunables of the boot step sequencer."""

    missing_inputs_delay: float = MISSING_INPUTS_DELAY

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"missing_inputs_delay": self.missing_inputs_delay}


@dataclass(frozen=True)
class ConnectivityConfig:
    """Offline-mode behaviour on broker disconnects."""

    grace_period: float = RECONNECT_GRACE_PERIOD

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"grace_period": self.grace_period}


@dataclass(frozen=True)
class DownloaderConfig:
    """Endpoints and transport settings for artifact downloads."""

    hostnames: tuple[str, ...] = ()
    port: int = 443
    timeout: float = 30.0
    user_agent: str = f"bootagent/{__version__}"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "hostnames": list(self.hostnames),
            "port": self.port,
            "timeout": self.timeout,
            "user_agent": self.user_agent,
        }


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for bootagent."""

    config_file: Path
    agent_identity: str | None
    state_dir: Path
    audit_dir: Path
    protocol_version: int
    boot: BootConfig
    connectivity: ConnectivityConfig
    downloader: DownloaderConfig

    @property
    def state_file(self) -> Path:
        """Return the path of the persisted instance state."""
        return self.state_dir / "instance_state.yml"

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "agent_identity": self.agent_identity,
            "state_dir": str(self.state_dir),
            "audit_dir": str(self.audit_dir),
            "protocol_version": self.protocol_version,
            "boot": self.boot.to_dict(),
            "connectivity": self.connectivity.to_dict(),
            "downloader": self.downloader.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "/etc/bootagent/config.yml",
    "agent_identity": None,
    "state_dir": "/var/lib/bootagent",
    "audit_dir": None,  # derived from state_dir when absent
    "protocol_version": 6,
    "boot": {
        "missing_inputs_delay": MISSING_INPUTS_DELAY,
    },
    "connectivity": {
        "grace_period": RECONNECT_GRACE_PERIOD,
    },
    "downloader": {
        "hostnames": [],
        "port": 443,
        "timeout": 30.0,
        "user_agent": f"bootagent/{__version__}",
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
_ALLOWED_SECTION_KEYS: dict[str, set[str]] = {
    "boot": {"missing_inputs_delay"},
    "connectivity": {"grace_period"},
    "downloader": {"hostnames", "port", "timeout", "user_agent"},
}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override)
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR])
    return Path(default_path)


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    for section, allowed in _ALLOWED_SECTION_KEYS.items():
        section_map = _as_dict(raw.get(section), section)
        unknown = set(section_map.keys()) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown {section} configuration keys: {joined}.")

    identity = raw.get("agent_identity")
    if identity is not None and (isinstance(identity, (Mapping, list)) or not str(identity).strip()):
        raise ConfigError("agent_identity must be a non-empty string or null.")


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    config_file = _to_path(raw.get("config_file"))
    state_dir = _to_path(raw.get("state_dir"))
    audit_dir_value = raw.get("audit_dir")
    audit_dir = _to_path(audit_dir_value) if audit_dir_value else state_dir / "audits"

    identity_value = raw.get("agent_identity")
    agent_identity = str(identity_value).strip() if identity_value is not None else None

    protocol_version = _expect_int(raw.get("protocol_version"), "protocol_version", default=6)
    if protocol_version < 1:
        raise ConfigError("protocol_version must be a positive integer.")

    boot_mapping = _as_dict(raw.get("boot"), "boot")
    boot = BootConfig(
        missing_inputs_delay=_expect_non_negative_float(
            boot_mapping.get("missing_inputs_delay"),
            "boot.missing_inputs_delay",
            default=MISSING_INPUTS_DELAY,
        ),
    )

    connectivity_mapping = _as_dict(raw.get("connectivity"), "connectivity")
    connectivity = ConnectivityConfig(
        grace_period=_expect_non_negative_float(
            connectivity_mapping.get("grace_period"),
            "connectivity.grace_period",
            default=RECONNECT_GRACE_PERIOD,
        ),
    )

    downloader_mapping = _as_dict(raw.get("downloader"), "downloader")
    hostnames_raw = downloader_mapping.get("hostnames")
    if hostnames_raw is None:
        hostnames: tuple[str, ...] = ()
    elif isinstance(hostnames_raw, str):
        hostnames = tuple(part.strip() for part in hostnames_raw.split(",") if part.strip())
    else:
        sequence = _as_sequence(hostnames_raw, "downloader.hostnames")
        hostnames = tuple(str(item).strip() for item in sequence if str(item).strip())
    port = _expect_int(downloader_mapping.get("port"), "downloader.port", default=443)
    if not 0 < port < 65536:
        raise ConfigError(f"downloader.port must be between 1 and 65535. Got {port}.")
    timeout = _expect_non_negative_float(
        downloader_mapping.get("timeout"), "downloader.timeout", default=30.0
    )
    if timeout == 0:
        raise ConfigError("downloader.timeout must be greater than zero.")
    downloader = DownloaderConfig(
        hostnames=hostnames,
        port=port,
        timeout=timeout,
        user_agent=str(downloader_mapping.get("user_agent", f"bootagent/{__version__}")),
    )

    return AppConfig(
        config_file=config_file,
        agent_identity=agent_identity,
        state_dir=state_dir,
        audit_dir=audit_dir,
        protocol_version=protocol_version,
        boot=boot,
        connectivity=connectivity,
        downloader=downloader,
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        elif isinstance(value, list):
            result[key] = list(value)
        else:
            result[key] = value
    return result


def _as_sequence(value: object, label: str) -> Sequence[object]:
    if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    return value


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _expect_int(value: object | None, label: str, *, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError as exc:
            raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be an integer. Got {type(value).__name__}.")


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _expect_non_negative_float(
    value: object | None,
    label: str,
    *,
    default: float,
) -> float:
    if value is None:
        return float(default)
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be a number. Got boolean {value!r}.")
    if isinstance(value, (int, float)):
        numeric = float(value)
    elif isinstance(value, str):
        try:
            numeric = float(value)
        except ValueError as exc:
            raise ConfigError(f"Invalid number for {label}: {value!r}.") from exc
    else:
        raise ConfigError(f"Expected {label} to be numeric. Got {type(value).__name__}.")
    if numeric < 0:
        raise ConfigError(f"{label} must not be negative. Got {numeric}.")
    return numeric


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AppConfig",
    "BootConfig",
    "ConfigError",
    "ConnectivityConfig",
    "DownloaderConfig",
    "MISSING_INPUTS_DELAY",
    "RECONNECT_GRACE_PERIOD",
    "load_config",
]
