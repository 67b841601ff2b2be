"""Mapping between instance names and systemd template unit identities."""
from __future__ import annotations

from dataclasses import dataclass

UNIT_PREFIX = "backhaul@"
UNIT_SUFFIX = ".service"
TEMPLATE_UNIT = f"{UNIT_PREFIX}{UNIT_SUFFIX}"


@dataclass(frozen=True, slots=True)
class UnitIdentity:
    """Systemd unit instantiated from the shared ``backhaul@.service`` template."""

    instance: str

    @property
    def name(self) -> str:
        """Return the full unit name, e.g. ``backhaul@iran_443.service``."""
        return f"{UNIT_PREFIX}{self.instance}{UNIT_SUFFIX}"

    def __str__(self) -> str:
        return self.name


def unit_id_for(instance_name: str) -> UnitIdentity:
    """Return the unit identity for *instance_name*."""
    return UnitIdentity(instance=instance_name)


def instance_name_for(unit_name: str) -> str | None:
    """Return the instance name encoded in *unit_name*, or ``None`` for foreign units."""
    if not (unit_name.startswith(UNIT_PREFIX) and unit_name.endswith(UNIT_SUFFIX)):
        return None
    instance = unit_name[len(UNIT_PREFIX) : -len(UNIT_SUFFIX)]
    return instance or None


__all__ = ["TEMPLATE_UNIT", "UnitIdentity", "instance_name_for", "unit_id_for"]
