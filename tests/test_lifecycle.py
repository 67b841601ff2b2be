"""Tests for instance lifecycle transitions."""
from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path

import pytest

from backhaulctl.errors import ConfirmationAborted
from backhaulctl.instances import ConfigStore, Instance
from backhaulctl.lifecycle import LifecycleController
from backhaulctl.providers.systemd import ActionOutcome, RuntimeState, UnitActionResult
from backhaulctl.templates import TemplateEngine
from backhaulctl.units import UnitIdentity


class RecordingGateway:
    """Gateway double that records calls and returns scripted outcomes."""

    def __init__(
        self,
        *,
        outcomes: dict[str, ActionOutcome] | None = None,
        states: Iterable[RuntimeState] = (RuntimeState.RUNNING,),
        reload_ok: bool = True,
    ) -> None:
        """Script the outcomes per action and the sequence of observed states."""
        self.outcomes = outcomes or {}
        self.states = list(states)
        self.reload_ok = reload_ok
        self.calls: list[str] = []

    def _act(self, action: str, unit: UnitIdentity) -> UnitActionResult:
        self.calls.append(action)
        outcome = self.outcomes.get(action, ActionOutcome.SUCCESS)
        return UnitActionResult(action, unit.name, outcome, f"{action} {outcome.value}")

    def enable_and_start(self, unit: UnitIdentity) -> UnitActionResult:
        """Record enable --now."""
        return self._act("enable-start", unit)

    def disable_and_stop(self, unit: UnitIdentity) -> UnitActionResult:
        """Record stop + disable."""
        return self._act("disable-stop", unit)

    def stop(self, unit: UnitIdentity) -> UnitActionResult:
        """Record stop."""
        return self._act("stop", unit)

    def disable(self, unit: UnitIdentity) -> UnitActionResult:
        """Record disable."""
        return self._act("disable", unit)

    def restart(self, unit: UnitIdentity) -> UnitActionResult:
        """Record restart."""
        return self._act("restart", unit)

    def reload_daemon(self) -> bool:
        """Record daemon-reload."""
        self.calls.append("daemon-reload")
        return self.reload_ok

    def ensure_unit_template_installed(self) -> bool:
        """Record template installation."""
        self.calls.append("template")
        return False

    def query_runtime_state(self, unit: UnitIdentity) -> RuntimeState:
        """Return the next scripted state, repeating the last one."""
        if len(self.states) > 1:
            return self.states.pop(0)
        return self.states[0]


class FakeClock:
    """Monotonic clock advanced by the fake sleep."""

    def __init__(self) -> None:
        """Start at zero."""
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        """Return the current time."""
        return self.now

    def sleep(self, seconds: float) -> None:
        """Advance time instead of blocking."""
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def store(tmp_path: Path) -> ConfigStore:
    """Return an empty store."""
    return ConfigStore(root=tmp_path / "core", templates=TemplateEngine.with_overrides(None))


@pytest.fixture
def instance(store: ConfigStore) -> Instance:
    """Return a freshly written server instance."""
    return store.write_server_config(443, "t")


def _controller(
    store: ConfigStore,
    gateway: RecordingGateway,
    clock: FakeClock | None = None,
) -> LifecycleController:
    clock = clock or FakeClock()
    return LifecycleController(
        store,
        gateway,  # type: ignore[arg-type]
        restart_timeout=2.0,
        poll_interval=0.5,
        sleep=clock.sleep,
        clock=clock,
    )


def test_create_only_touches_config_store(store: ConfigStore) -> None:
    """Creating an instance writes its record without any service calls."""
    gateway = RecordingGateway()

    instance = _controller(store, gateway).create_client("203.0.113.5", 443, "t", 8)

    assert instance.name == "203.0.113.5_443"
    assert instance.config_path.exists()
    assert gateway.calls == []


def test_enable_installs_template_before_starting(store: ConfigStore, instance: Instance) -> None:
    """The unit template is ensured before enable --now."""
    gateway = RecordingGateway()

    result = _controller(store, gateway).enable_and_start(instance)

    assert gateway.calls == ["template", "enable-start"]
    assert result.outcome is ActionOutcome.SUCCESS
    assert result.runtime_state is RuntimeState.RUNNING


def test_enable_not_running_is_partial(store: ConfigStore, instance: Instance) -> None:
    """A unit that does not come up after enable is reported with a warning."""
    gateway = RecordingGateway(states=[RuntimeState.FAILED])

    result = _controller(store, gateway).enable_and_start(instance)

    assert result.outcome is ActionOutcome.PARTIAL
    assert result.warnings


def test_disable_partial_is_passed_through(store: ConfigStore, instance: Instance) -> None:
    """Stopped but still enabled is a partial result without a fallback."""
    gateway = RecordingGateway(
        outcomes={"disable-stop": ActionOutcome.PARTIAL},
        states=[RuntimeState.STOPPED],
    )

    result = _controller(store, gateway).disable_and_stop(instance)

    assert result.outcome is ActionOutcome.PARTIAL
    assert gateway.calls == ["disable-stop"]


def test_disable_falls_back_to_stop(store: ConfigStore, instance: Instance) -> None:
    """A failed stop inside disable-stop is attempted once more and reports degraded success."""
    gateway = RecordingGateway(
        outcomes={"disable-stop": ActionOutcome.FAILED},
        states=[RuntimeState.STOPPED],
    )

    result = _controller(store, gateway).disable_and_stop(instance)

    assert gateway.calls == ["disable-stop", "stop"]
    assert result.outcome is ActionOutcome.PARTIAL
    assert result.warnings


def test_disable_fallback_failure_fails(store: ConfigStore, instance: Instance) -> None:
    """When the fallback stop also fails the result is a failure."""
    gateway = RecordingGateway(
        outcomes={"disable-stop": ActionOutcome.FAILED, "stop": ActionOutcome.FAILED},
    )

    result = _controller(store, gateway).disable_and_stop(instance)

    assert result.outcome is ActionOutcome.FAILED


def test_restart_waits_for_stable_state(store: ConfigStore, instance: Instance) -> None:
    """Restart polls through transitional states until the unit is running."""
    gateway = RecordingGateway(
        states=[RuntimeState.TRANSITIONING, RuntimeState.UNKNOWN, RuntimeState.RUNNING],
    )
    clock = FakeClock()
    seen: list[RuntimeState] = []

    result = _controller(store, gateway, clock).restart(instance, on_progress=seen.append)

    assert result.outcome is ActionOutcome.SUCCESS
    assert result.runtime_state is RuntimeState.RUNNING
    assert seen == [RuntimeState.TRANSITIONING, RuntimeState.UNKNOWN, RuntimeState.RUNNING]
    assert clock.sleeps == [0.5, 0.5]


def test_restart_timeout_is_partial(store: ConfigStore, instance: Instance) -> None:
    """A unit still transitioning at the deadline yields a partial result."""
    gateway = RecordingGateway(states=[RuntimeState.TRANSITIONING])
    clock = FakeClock()

    result = _controller(store, gateway, clock).restart(instance)

    assert result.outcome is ActionOutcome.PARTIAL
    assert result.runtime_state is RuntimeState.TRANSITIONING
    assert result.warnings
    assert clock.now == pytest.approx(2.0)


def test_restart_failed_state_is_partial_not_exception(
    store: ConfigStore,
    instance: Instance,
) -> None:
    """A unit that settles in failed is reported, not raised."""
    gateway = RecordingGateway(states=[RuntimeState.FAILED])

    result = _controller(store, gateway).restart(instance)

    assert result.outcome is ActionOutcome.PARTIAL
    assert result.runtime_state is RuntimeState.FAILED


def test_restart_command_failure(store: ConfigStore, instance: Instance) -> None:
    """A restart that systemctl rejects is a failure and is not polled."""
    gateway = RecordingGateway(
        outcomes={"restart": ActionOutcome.FAILED},
        states=[RuntimeState.FAILED],
    )
    clock = FakeClock()

    result = _controller(store, gateway, clock).restart(instance)

    assert result.outcome is ActionOutcome.FAILED
    assert clock.sleeps == []


@pytest.mark.parametrize("confirmation", ["", "y", "YES", "yes please"])
def test_delete_requires_literal_yes(
    store: ConfigStore,
    instance: Instance,
    confirmation: str,
) -> None:
    """Anything but ``yes`` aborts with no side effects."""
    gateway = RecordingGateway()

    with pytest.raises(ConfirmationAborted):
        _controller(store, gateway).delete(instance, confirmation)

    assert gateway.calls == []
    assert instance.config_path.exists()


def test_delete_order(store: ConfigStore, instance: Instance) -> None:
    """Delete stops, disables, removes the record, then reloads systemd."""
    gateway = RecordingGateway()

    result = _controller(store, gateway).delete(instance, "yes")

    assert gateway.calls == ["stop", "disable", "daemon-reload"]
    assert [step["name"] for step in result.steps] == [
        "systemd.stop",
        "systemd.disable",
        "config.remove",
        "systemd.daemon-reload",
    ]
    assert not instance.config_path.exists()
    assert result.outcome is ActionOutcome.SUCCESS
    assert store.list_instances() == []


def test_delete_removes_config_despite_service_failures(
    store: ConfigStore,
    instance: Instance,
) -> None:
    """Service failures are reported but the record is still removed."""
    gateway = RecordingGateway(
        outcomes={"stop": ActionOutcome.FAILED, "disable": ActionOutcome.FAILED},
        reload_ok=False,
    )

    result = _controller(store, gateway).delete(instance, "yes")

    assert not instance.config_path.exists()
    assert result.outcome is ActionOutcome.PARTIAL
    assert len(result.warnings) == 3
