"""Tests for fleet status aggregation."""
from __future__ import annotations

from pathlib import Path

import pytest

from backhaulctl.errors import ServiceGatewayError
from backhaulctl.instances import ConfigStore
from backhaulctl.providers import systemd as systemd_module
from backhaulctl.providers.status import StatusAggregator
from backhaulctl.providers.systemd import EnablementState, RuntimeState, SystemdProvider
from backhaulctl.templates import TemplateEngine
from backhaulctl.units import UnitIdentity


class FakeGateway:
    """Service gateway returning canned states per instance."""

    def __init__(
        self,
        runtime: dict[str, RuntimeState],
        enablement: dict[str, EnablementState] | None = None,
        broken: set[str] | None = None,
    ) -> None:
        """Store the canned answers."""
        self.runtime = runtime
        self.enablement = enablement or {}
        self.broken = broken or set()

    def query_runtime_state(self, unit: UnitIdentity) -> RuntimeState:
        """Return the canned runtime state or raise for broken units."""
        if unit.instance in self.broken:
            raise ServiceGatewayError("bus unavailable")
        return self.runtime.get(unit.instance, RuntimeState.UNKNOWN)

    def query_enablement(self, unit: UnitIdentity) -> EnablementState:
        """Return the canned enablement or raise for broken units."""
        if unit.instance in self.broken:
            raise ServiceGatewayError("bus unavailable")
        return self.enablement.get(unit.instance, EnablementState.UNKNOWN)


@pytest.fixture
def store(tmp_path: Path) -> ConfigStore:
    """Return a store holding four instances."""
    store = ConfigStore(root=tmp_path / "core", templates=TemplateEngine.with_overrides(None))
    store.write_server_config(443, "t")
    store.write_server_config(8443, "t")
    store.write_client_config("10.0.0.2", 443, "t", 8)
    store.write_client_config("10.0.0.3", 443, "t", 8)
    return store


def test_snapshot_buckets_sum_to_total(store: ConfigStore) -> None:
    """Every instance lands in exactly one runtime and one enablement bucket."""
    gateway = FakeGateway(
        runtime={
            "iran_443": RuntimeState.RUNNING,
            "iran_8443": RuntimeState.FAILED,
            "10.0.0.2_443": RuntimeState.TRANSITIONING,
            "10.0.0.3_443": RuntimeState.STOPPED,
        },
        enablement={
            "iran_443": EnablementState.ENABLED,
            "iran_8443": EnablementState.ENABLED,
            "10.0.0.2_443": EnablementState.DISABLED,
        },
    )

    snapshot = StatusAggregator(store, gateway).snapshot()  # type: ignore[arg-type]

    assert snapshot.total == 4
    assert (snapshot.running, snapshot.failed, snapshot.transitioning, snapshot.stopped) == (
        1,
        1,
        1,
        1,
    )
    assert (snapshot.enabled, snapshot.disabled, snapshot.unknown_enablement) == (2, 1, 1)
    runtime_sum = snapshot.running + snapshot.stopped + snapshot.failed + snapshot.transitioning
    enablement_sum = snapshot.enabled + snapshot.disabled + snapshot.unknown_enablement
    assert runtime_sum == enablement_sum == snapshot.total


def test_unknown_runtime_counts_as_stopped(store: ConfigStore) -> None:
    """Unknown runtime states are counted as stopped."""
    gateway = FakeGateway(runtime={"iran_443": RuntimeState.RUNNING})

    snapshot = StatusAggregator(store, gateway).snapshot()  # type: ignore[arg-type]

    assert snapshot.running == 1
    assert snapshot.stopped == 3
    assert snapshot.unknown_enablement == 4


def test_query_failures_do_not_abort_snapshot(store: ConfigStore) -> None:
    """A failing query degrades one instance to unknown instead of failing."""
    gateway = FakeGateway(
        runtime={"iran_443": RuntimeState.RUNNING, "iran_8443": RuntimeState.RUNNING},
        broken={"iran_8443"},
    )
    aggregator = StatusAggregator(store, gateway)  # type: ignore[arg-type]

    snapshot = aggregator.snapshot()

    assert snapshot.total == 4
    assert snapshot.running == 1
    broken = next(row for row in snapshot.instances if row.name == "iran_8443")
    assert broken.runtime is RuntimeState.UNKNOWN
    assert broken.enablement is EnablementState.UNKNOWN


def test_empty_fleet(tmp_path: Path) -> None:
    """No instances yields an all-zero snapshot."""
    store = ConfigStore(root=tmp_path / "empty", templates=TemplateEngine.with_overrides(None))

    snapshot = StatusAggregator(store, FakeGateway(runtime={})).snapshot()  # type: ignore[arg-type]

    assert snapshot.total == 0
    assert snapshot.to_dict()["runtime"] == {
        "running": 0,
        "stopped": 0,
        "failed": 0,
        "transitioning": 0,
    }


def test_status_for_decorates_state(store: ConfigStore) -> None:
    """Single-instance status carries the unit name and listing label."""
    gateway = FakeGateway(runtime={"iran_443": RuntimeState.TRANSITIONING})
    instance = store.get("iran_443")

    status = StatusAggregator(store, gateway).status_for(instance)  # type: ignore[arg-type]

    assert status.unit == "backhaul@iran_443.service"
    assert status.decorated == "CHANGING"


def test_snapshot_survives_service_manager_launch_failure(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> None:
    """A systemctl that cannot be executed leaves instances counted as stopped."""
    def refuse(*args: object, **kwargs: object) -> None:
        raise PermissionError(13, "Permission denied", "systemctl")

    monkeypatch.setattr(systemd_module.subprocess, "run", refuse)
    store = ConfigStore(root=tmp_path / "core", templates=TemplateEngine.with_overrides(None))
    store.write_server_config(443, "t")
    gateway = SystemdProvider(
        templates=TemplateEngine.with_overrides(None),
        core_dir=tmp_path / "core",
        systemd_dir=tmp_path / "systemd",
    )

    snapshot = StatusAggregator(store, gateway).snapshot()

    assert snapshot.total == 1
    assert snapshot.stopped == 1
    assert snapshot.unknown_enablement == 1
    assert snapshot.instances[0].runtime is RuntimeState.UNKNOWN
