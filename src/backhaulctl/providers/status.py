"""Fleet status aggregation across configured instances."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field

from ..errors import ServiceGatewayError
from ..instances import ConfigStore, Instance
from .systemd import EnablementState, RuntimeState, SystemdProvider

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class InstanceStatus:
    """Observed state of a single instance."""

    name: str
    unit: str
    runtime: RuntimeState
    enablement: EnablementState

    @property
    def decorated(self) -> str:
        """Return the short label shown in listings."""
        return _DECORATIONS[self.runtime]


_DECORATIONS = {
    RuntimeState.RUNNING: "ACTIVE",
    RuntimeState.FAILED: "FAILED",
    RuntimeState.TRANSITIONING: "CHANGING",
    RuntimeState.STOPPED: "STOPPED",
    RuntimeState.UNKNOWN: "UNKNOWN",
}


@dataclass(frozen=True)
class FleetStatusSnapshot:
    """Counts of instances per runtime and enablement bucket."""

    total: int = 0
    running: int = 0
    stopped: int = 0
    failed: int = 0
    transitioning: int = 0
    enabled: int = 0
    disabled: int = 0
    unknown_enablement: int = 0
    instances: tuple[InstanceStatus, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "total": self.total,
            "runtime": {
                "running": self.running,
                "stopped": self.stopped,
                "failed": self.failed,
                "transitioning": self.transitioning,
            },
            "enablement": {
                "enabled": self.enabled,
                "disabled": self.disabled,
                "unknown": self.unknown_enablement,
            },
        }


class StatusAggregator:
    """Join configured instances with the service manager's view of them."""

    def __init__(self, store: ConfigStore, gateway: SystemdProvider) -> None:
        """Create an aggregator reading from *store* and *gateway*."""
        self.store = store
        self.gateway = gateway

    def status_for(self, instance: Instance) -> InstanceStatus:
        """Return the current status of *instance*; query failures become ``UNKNOWN``."""
        unit = instance.unit
        try:
            runtime = self.gateway.query_runtime_state(unit)
        except ServiceGatewayError as exc:
            LOGGER.warning("Runtime query for %s failed: %s", unit, exc)
            runtime = RuntimeState.UNKNOWN
        try:
            enablement = self.gateway.query_enablement(unit)
        except ServiceGatewayError as exc:
            LOGGER.warning("Enablement query for %s failed: %s", unit, exc)
            enablement = EnablementState.UNKNOWN
        return InstanceStatus(
            name=instance.name,
            unit=unit.name,
            runtime=runtime,
            enablement=enablement,
        )

    def statuses(self) -> list[InstanceStatus]:
        """Return the status of every configured instance, sorted by name."""
        return [self.status_for(instance) for instance in self.store.list_instances()]

    def snapshot(self) -> FleetStatusSnapshot:
        """Compute fresh fleet counts. Unknown runtime states count as stopped."""
        rows = self.statuses()
        runtime_counts = dict.fromkeys(RuntimeState, 0)
        enablement_counts = dict.fromkeys(EnablementState, 0)
        for row in rows:
            if row.runtime is RuntimeState.UNKNOWN:
                LOGGER.info("Counting %s as stopped: runtime state unknown.", row.unit)
            runtime_counts[row.runtime] += 1
            enablement_counts[row.enablement] += 1
        return FleetStatusSnapshot(
            total=len(rows),
            running=runtime_counts[RuntimeState.RUNNING],
            stopped=runtime_counts[RuntimeState.STOPPED] + runtime_counts[RuntimeState.UNKNOWN],
            failed=runtime_counts[RuntimeState.FAILED],
            transitioning=runtime_counts[RuntimeState.TRANSITIONING],
            enabled=enablement_counts[EnablementState.ENABLED],
            disabled=enablement_counts[EnablementState.DISABLED],
            unknown_enablement=enablement_counts[EnablementState.UNKNOWN],
            instances=tuple(rows),
        )


__all__ = ["FleetStatusSnapshot", "InstanceStatus", "StatusAggregator"]
