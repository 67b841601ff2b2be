"""Instance configuration records stored as ``conf_<name>.toml`` files.

The configuration directory is the registry: every record whose file name
matches the naming grammar is an instance. Client (Kharej) records are named
``<ip>_<port>``; server (Iran) records are named ``iran_<port>``. Files that
do not match the grammar are ignored so foreign files never break a listing.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from .errors import ConfigValidationError, NotFoundError
from .templates import TemplateEngine
from .units import UnitIdentity, unit_id_for

LOGGER = logging.getLogger(__name__)

CONFIG_PREFIX = "conf_"
CONFIG_SUFFIX = ".toml"
SERVER_PREFIX = "iran_"
SERVER_BIND_HOST = "0.0.0.0"  # noqa: S104 - servers listen on every interface

_DIGITS = re.compile(r"[0-9]+")
_IPV4 = re.compile(r"([0-9]{1,3})\.([0-9]{1,3})\.([0-9]{1,3})\.([0-9]{1,3})")


class InstanceRole(str, Enum):
    """Side of the tunnel an instance runs on."""

    CLIENT = "client"
    SERVER = "server"


@dataclass(frozen=True, slots=True)
class Instance:
    """A configured tunnel endpoint backed by one config record."""

    name: str
    role: InstanceRole
    port: int
    config_path: Path
    remote_ip: str | None = None

    @property
    def unit(self) -> UnitIdentity:
        """Return the systemd unit identity for this instance."""
        return unit_id_for(self.name)

    @property
    def endpoint(self) -> str:
        """Return the remote address (client) or bind address (server)."""
        if self.role is InstanceRole.CLIENT:
            return f"{self.remote_ip}:{self.port}"
        return f"{SERVER_BIND_HOST}:{self.port}"


def validate_ip(value: str) -> str:
    """Return *value* when it is a dotted-quad IPv4 address."""
    match = _IPV4.fullmatch(value or "")
    if match is None:
        raise ConfigValidationError("ip", f"'{value}' is not four dot-separated octets.")
    for octet in match.groups():
        if int(octet) > 255:
            raise ConfigValidationError("ip", f"octet {octet} in '{value}' is out of range.")
    return value


def validate_port(value: object) -> int:
    """Return *value* as an int when it is a port number in [1, 65535]."""
    return _positive_int(value, "port", upper=65535)


def validate_pool_size(value: object) -> int:
    """Return *value* as an int when it is a positive connection pool size."""
    return _positive_int(value, "pool_size")


def validate_token(value: str) -> str:
    """Return *value* when it is a usable shared token."""
    if not isinstance(value, str) or not value.strip():
        raise ConfigValidationError("token", "must be a non-empty string.")
    return value


def _positive_int(value: object, field_name: str, *, upper: int | None = None) -> int:
    if isinstance(value, bool):
        raise ConfigValidationError(field_name, f"expected an integer, got {value!r}.")
    if isinstance(value, int):
        number = value
    elif isinstance(value, str) and _DIGITS.fullmatch(value):
        number = int(value)
    else:
        raise ConfigValidationError(field_name, f"expected an integer, got {value!r}.")
    if number < 1 or (upper is not None and number > upper):
        bounds = f"[1, {upper}]" if upper is not None else "a positive integer"
        raise ConfigValidationError(field_name, f"{number} is outside {bounds}.")
    return number


def client_instance_name(ip: str, port: int) -> str:
    """Return the instance name of a client record."""
    return f"{ip}_{port}"


def server_instance_name(port: int) -> str:
    """Return the instance name of a server record."""
    return f"{SERVER_PREFIX}{port}"


def parse_instance_name(name: str) -> tuple[InstanceRole, str | None, int] | None:
    """Split *name* into ``(role, remote_ip, port)``; ``None`` when outside the grammar."""
    head, sep, tail = name.rpartition("_")
    if not sep or not _DIGITS.fullmatch(tail):
        return None
    port = int(tail)
    if not 1 <= port <= 65535 or str(port) != tail:
        return None
    if head == SERVER_PREFIX.rstrip("_"):
        return InstanceRole.SERVER, None, port
    try:
        validate_ip(head)
    except ConfigValidationError:
        return None
    return InstanceRole.CLIENT, head, port


@dataclass(slots=True)
class ConfigStore:
    """Enumerate, write and delete instance configuration records."""

    root: Path
    templates: TemplateEngine
    sniffer_log: Path = Path("/root/log.json")
    _index: dict[str, Instance] = field(default_factory=dict, init=False, repr=False)

    def path_for(self, name: str) -> Path:
        """Return the record path for instance *name*."""
        return self.root / f"{CONFIG_PREFIX}{name}{CONFIG_SUFFIX}"

    def list_instances(self) -> list[Instance]:
        """Scan the directory and return instances sorted by name."""
        index: dict[str, Instance] = {}
        if self.root.is_dir():
            for path in self.root.glob(f"{CONFIG_PREFIX}*{CONFIG_SUFFIX}"):
                if not path.is_file():
                    continue
                name = path.name[len(CONFIG_PREFIX) : -len(CONFIG_SUFFIX)]
                instance = self._instance_from_name(name, path)
                if instance is None:
                    LOGGER.debug("Ignoring %s: name outside the instance grammar.", path)
                    continue
                index[name] = instance
        self._index = dict(sorted(index.items()))
        return list(self._index.values())

    def get(self, name: str) -> Instance:
        """Return the instance called *name* or raise :class:`NotFoundError`."""
        self.list_instances()
        try:
            return self._index[name]
        except KeyError:
            raise NotFoundError(f"Instance '{name}' not found under {self.root}.") from None

    def write_client_config(
        self,
        ip: str,
        port: object,
        token: str,
        pool_size: object,
    ) -> Instance:
        """Create or overwrite the client record for ``ip:port``."""
        ip = validate_ip(ip)
        port_number = validate_port(port)
        token = validate_token(token)
        pool = validate_pool_size(pool_size)
        name = client_instance_name(ip, port_number)
        self._render(
            "config/client.toml.j2",
            name,
            {
                "remote_addr": f"{ip}:{port_number}",
                "token": token,
                "pool_size": pool,
                "sniffer_log": str(self.sniffer_log),
            },
        )
        return Instance(
            name=name,
            role=InstanceRole.CLIENT,
            port=port_number,
            config_path=self.path_for(name),
            remote_ip=ip,
        )

    def write_server_config(self, port: object, token: str) -> Instance:
        """Create or overwrite the server record bound to *port*."""
        port_number = validate_port(port)
        token = validate_token(token)
        name = server_instance_name(port_number)
        self._render(
            "config/server.toml.j2",
            name,
            {
                "bind_addr": f"{SERVER_BIND_HOST}:{port_number}",
                "token": token,
                "sniffer_log": str(self.sniffer_log),
            },
        )
        return Instance(
            name=name,
            role=InstanceRole.SERVER,
            port=port_number,
            config_path=self.path_for(name),
        )

    def delete(self, name: str) -> bool:
        """Remove the record for *name*; return ``False`` when it was already absent."""
        if parse_instance_name(name) is None:
            return False
        try:
            self.path_for(name).unlink()
        except FileNotFoundError:
            return False
        self._index.pop(name, None)
        return True

    def _render(self, template: str, name: str, context: dict[str, object]) -> None:
        path = self.path_for(name)
        self.root.mkdir(parents=True, exist_ok=True)
        changed = self.templates.render_to_path(template, path, context, mode=0o600)
        LOGGER.info("Wrote %s (%s).", path, "updated" if changed else "unchanged")

    def _instance_from_name(self, name: str, path: Path) -> Instance | None:
        parsed = parse_instance_name(name)
        if parsed is None:
            return None
        role, remote_ip, port = parsed
        return Instance(name=name, role=role, port=port, config_path=path, remote_ip=remote_ip)


__all__ = [
    "CONFIG_PREFIX",
    "CONFIG_SUFFIX",
    "ConfigStore",
    "Instance",
    "InstanceRole",
    "client_instance_name",
    "parse_instance_name",
    "server_instance_name",
    "validate_ip",
    "validate_pool_size",
    "validate_port",
    "validate_token",
]
