"""Configuration loader for backhaulctl.

This module centralises the logic for reading configuration values from
multiple sources:

1. Built-in defaults.
2. ``/etc/backhaulctl/config.yml`` (or an override path).
3. Environment variables prefixed with ``BACKHAULCTL_``.
4. Explicit overrides supplied programmatically (reserved for CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export BACKHAULCTL_CORE_DIR=/opt/backhaul
    export BACKHAULCTL_LIFECYCLE__RESTART_TIMEOUT=20

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The resulting configuration is exposed as immutable
``dataclasses`` for convenient access and type safety.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass
from pathlib import Path
from typing import cast

import yaml

ENV_PREFIX = "BACKHAULCTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class SystemdConfig:
    """Systemd integration configuration values."""

    unit_dir: Path = Path("/etc/systemd/system")
    systemctl_bin: str = "systemctl"
    journalctl_bin: str = "journalctl"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "unit_dir": str(self.unit_dir),
            "systemctl_bin": self.systemctl_bin,
            "journalctl_bin": self.journalctl_bin,
        }


@dataclass(frozen=True)
class ReleaseConfig:
    """Where the tunnel core is published."""

    repository: str = "Musixal/Backhaul"
    api_url: str = "https://api.github.com"
    timeout: float = 30.0

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "repository": self.repository,
            "api_url": self.api_url,
            "timeout": self.timeout,
        }


@dataclass(frozen=True)
class LifecycleConfig:
    """Timing knobs for restart observation and log tails."""

    restart_timeout: float = 15.0
    poll_interval: float = 0.5
    log_lines: int = 80
    status_log_lines: int = 120

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "restart_timeout": self.restart_timeout,
            "poll_interval": self.poll_interval,
            "log_lines": self.log_lines,
            "status_log_lines": self.status_log_lines,
        }


@dataclass(frozen=True)
class ClientDefaults:
    """Defaults applied when generating client records."""

    pool_size: int = 8
    sniffer_log: Path = Path("/root/log.json")

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"pool_size": self.pool_size, "sniffer_log": str(self.sniffer_log)}


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for backhaulctl."""

    config_file: Path
    core_dir: Path
    binary_name: str
    logs_dir: Path
    templates_dir: Path
    systemd: SystemdConfig
    release: ReleaseConfig
    lifecycle: LifecycleConfig
    client: ClientDefaults

    @property
    def binary_path(self) -> Path:
        """Return the canonical install path of the tunnel core."""
        return self.core_dir / self.binary_name

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "core_dir": str(self.core_dir),
            "binary_name": self.binary_name,
            "logs_dir": str(self.logs_dir),
            "templates_dir": str(self.templates_dir),
            "systemd": self.systemd.to_dict(),
            "release": self.release.to_dict(),
            "lifecycle": self.lifecycle.to_dict(),
            "client": self.client.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "/etc/backhaulctl/config.yml",
    "core_dir": "/root/backhaul",
    "binary_name": "backhaul",
    "logs_dir": "/var/log/backhaulctl",
    "templates_dir": "/etc/backhaulctl/templates",
    "systemd": {
        "unit_dir": "/etc/systemd/system",
        "systemctl_bin": "systemctl",
        "journalctl_bin": "journalctl",
    },
    "release": {
        "repository": "Musixal/Backhaul",
        "api_url": "https://api.github.com",
        "timeout": 30.0,
    },
    "lifecycle": {
        "restart_timeout": 15.0,
        "poll_interval": 0.5,
        "log_lines": 80,
        "status_log_lines": 120,
    },
    "client": {
        "pool_size": 8,
        "sniffer_log": "/root/log.json",
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
ALLOWED_SECTION_KEYS: dict[str, set[str]] = {
    "systemd": {"unit_dir", "systemctl_bin", "journalctl_bin"},
    "release": {"repository", "api_url", "timeout"},
    "lifecycle": {"restart_timeout", "poll_interval", "log_lines", "status_log_lines"},
    "client": {"pool_size", "sniffer_log"},
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

    config_path = _determine_config_path(
        cast(str, merged["config_file"]),
        config_file,
        resolved_env,
    )

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

    for section, allowed in ALLOWED_SECTION_KEYS.items():
        value = raw.get(section)
        if value is None:
            continue
        mapping = _as_dict(value, section)
        unknown = set(mapping.keys()) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown {section} configuration keys: {joined}.")

    binary_name = raw.get("binary_name")
    if not isinstance(binary_name, str) or not binary_name.strip() or "/" in binary_name:
        raise ConfigError("binary_name must be a plain, non-empty file name.")


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    systemd_mapping = _as_dict(raw.get("systemd"), "systemd")
    systemd = SystemdConfig(
        unit_dir=_to_path(systemd_mapping.get("unit_dir", "/etc/systemd/system")),
        systemctl_bin=str(systemd_mapping.get("systemctl_bin", "systemctl")),
        journalctl_bin=str(systemd_mapping.get("journalctl_bin", "journalctl")),
    )

    release_mapping = _as_dict(raw.get("release"), "release")
    repository = str(release_mapping.get("repository", "Musixal/Backhaul")).strip()
    if repository.count("/") != 1:
        raise ConfigError("release.repository must look like '<owner>/<repo>'.")
    release = ReleaseConfig(
        repository=repository,
        api_url=str(release_mapping.get("api_url", "https://api.github.com")).rstrip("/"),
        timeout=_expect_positive_float(
            release_mapping.get("timeout"), "release.timeout", default=30.0
        ),
    )

    lifecycle_mapping = _as_dict(raw.get("lifecycle"), "lifecycle")
    lifecycle = LifecycleConfig(
        restart_timeout=_expect_positive_float(
            lifecycle_mapping.get("restart_timeout"), "lifecycle.restart_timeout", default=15.0
        ),
        poll_interval=_expect_positive_float(
            lifecycle_mapping.get("poll_interval"), "lifecycle.poll_interval", default=0.5
        ),
        log_lines=_expect_positive_int(
            lifecycle_mapping.get("log_lines"), "lifecycle.log_lines", default=80
        ),
        status_log_lines=_expect_positive_int(
            lifecycle_mapping.get("status_log_lines"), "lifecycle.status_log_lines", default=120
        ),
    )

    client_mapping = _as_dict(raw.get("client"), "client")
    client = ClientDefaults(
        pool_size=_expect_positive_int(
            client_mapping.get("pool_size"), "client.pool_size", default=8
        ),
        sniffer_log=_to_path(client_mapping.get("sniffer_log", "/root/log.json")),
    )

    return AppConfig(
        config_file=_to_path(raw.get("config_file")),
        core_dir=_to_path(raw.get("core_dir")),
        binary_name=str(raw.get("binary_name", "backhaul")).strip(),
        logs_dir=_to_path(raw.get("logs_dir")),
        templates_dir=_to_path(raw.get("templates_dir")),
        systemd=systemd,
        release=release,
        lifecycle=lifecycle,
        client=client,
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
        else:
            result[key] = value
    return result


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


def _expect_positive_int(value: object | None, label: str, *, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    if isinstance(value, int):
        number = value
    elif isinstance(value, str):
        try:
            number = int(value, 0)
        except ValueError as exc:
            raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc
    else:
        raise ConfigError(f"Expected {label} to be an integer. Got {type(value).__name__}.")
    if number <= 0:
        raise ConfigError(f"{label} must be greater than zero. Got {number}.")
    return number


def _expect_positive_float(
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
        raise ConfigError(
            f"Expected {label} to be numeric. Got {type(value).__name__}."
        )
    if numeric <= 0:
        raise ConfigError(f"{label} must be greater than zero. Got {numeric}.")
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
    "ClientDefaults",
    "ConfigError",
    "LifecycleConfig",
    "ReleaseConfig",
    "SystemdConfig",
    "load_config",
]
