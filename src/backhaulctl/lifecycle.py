"""State transitions for tunnel instances.

The controller sequences the config store and the service manager for each
operator verb. Service failures are reported through :class:`LifecycleResult`
rather than raised, so the CLI can map partial outcomes to exit codes.
Validation failures and a declined delete confirmation raise before anything
is touched.
"""
from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from .errors import ConfirmationAborted
from .instances import ConfigStore, Instance
from .providers.systemd import (
    ActionOutcome,
    RuntimeState,
    SystemdProvider,
    UnitActionResult,
)

LOGGER = logging.getLogger(__name__)

CONFIRMATION_WORD = "yes"
_UNSETTLED = {RuntimeState.TRANSITIONING, RuntimeState.UNKNOWN}


@dataclass(slots=True)
class LifecycleResult:
    """What a lifecycle verb did and the state it left the instance in."""

    action: str
    instance: str
    outcome: ActionOutcome = ActionOutcome.SUCCESS
    runtime_state: RuntimeState | None = None
    steps: list[dict[str, str]] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def record(self, result: UnitActionResult) -> None:
        """Append a gateway action as a step."""
        self.add_step(f"systemd.{result.action}", result.outcome.value, result.detail)

    def add_step(self, name: str, status: str, detail: str = "") -> None:
        """Append a named step."""
        self.steps.append({"name": name, "status": status, "detail": detail})

    @property
    def ok(self) -> bool:
        """Return ``True`` unless the action failed outright."""
        return self.outcome is not ActionOutcome.FAILED


class LifecycleController:
    """Drive create, enable, disable, restart and delete for instances."""

    def __init__(
        self,
        store: ConfigStore,
        gateway: SystemdProvider,
        *,
        restart_timeout: float = 15.0,
        poll_interval: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Wire the controller to its collaborators and timing knobs."""
        self.store = store
        self.gateway = gateway
        self.restart_timeout = restart_timeout
        self.poll_interval = poll_interval
        self._sleep = sleep
        self._clock = clock

    def create_client(self, ip: str, port: object, token: str, pool_size: object) -> Instance:
        """Write the client record for ``ip:port``."""
        return self.store.write_client_config(ip, port, token, pool_size)

    def create_server(self, port: object, token: str) -> Instance:
        """Write the server record listening on *port*."""
        return self.store.write_server_config(port, token)

    def enable_and_start(self, instance: Instance) -> LifecycleResult:
        """Make sure the unit template exists, then enable and start *instance*."""
        result = LifecycleResult("enable", instance.name)
        changed = self.gateway.ensure_unit_template_installed()
        result.add_step(
            "systemd.template",
            "success",
            "installed" if changed else "unchanged",
        )
        action = self.gateway.enable_and_start(instance.unit)
        result.record(action)
        result.outcome = action.outcome
        result.runtime_state = self.gateway.query_runtime_state(instance.unit)
        if action.ok and result.runtime_state is not RuntimeState.RUNNING:
            result.outcome = ActionOutcome.PARTIAL
            result.warnings.append(
                f"{instance.unit} is {result.runtime_state.value} after enable."
            )
        return result

    def disable_and_stop(self, instance: Instance) -> LifecycleResult:
        """Stop and disable *instance*, falling back to a plain stop."""
        result = LifecycleResult("disable", instance.name)
        action = self.gateway.disable_and_stop(instance.unit)
        result.record(action)
        result.outcome = action.outcome
        if action.outcome is ActionOutcome.PARTIAL:
            result.warnings.append(f"{instance.unit} stopped but is still enabled at boot.")
        elif action.outcome is ActionOutcome.FAILED:
            # FAILED means the stop verb failed; this is a second stop attempt,
            # which clears units that were still deactivating the first time.
            LOGGER.warning("disable-stop failed for %s; retrying stop alone.", instance.unit)
            fallback = self.gateway.stop(instance.unit)
            result.record(fallback)
            if fallback.ok:
                result.outcome = ActionOutcome.PARTIAL
                result.warnings.append(f"{instance.unit} stopped by fallback; disable failed.")
        result.runtime_state = self.gateway.query_runtime_state(instance.unit)
        return result

    def restart(
        self,
        instance: Instance,
        on_progress: Callable[[RuntimeState], None] | None = None,
    ) -> LifecycleResult:
        """Restart *instance* and wait for it to settle.

        The runtime state is polled every ``poll_interval`` seconds until it
        is neither transitioning nor unknown, or ``restart_timeout`` seconds
        have passed. Ending in any state other than running yields a partial
        result carrying a warning.
        """
        result = LifecycleResult("restart", instance.name)
        action = self.gateway.restart(instance.unit)
        result.record(action)
        if not action.ok:
            result.outcome = ActionOutcome.FAILED
            result.runtime_state = self.gateway.query_runtime_state(instance.unit)
            return result

        deadline = self._clock() + self.restart_timeout
        while True:
            state = self.gateway.query_runtime_state(instance.unit)
            if on_progress is not None:
                on_progress(state)
            if state not in _UNSETTLED or self._clock() >= deadline:
                break
            self._sleep(self.poll_interval)

        result.runtime_state = state
        result.add_step("systemd.observe", "success", state.value)
        if state is not RuntimeState.RUNNING:
            result.outcome = ActionOutcome.PARTIAL
            result.warnings.append(
                f"{instance.unit} is {state.value} {self.restart_timeout:g}s after restart."
            )
        return result

    def delete(self, instance: Instance, confirmation: str) -> LifecycleResult:
        """Stop, disable and remove *instance* once the operator typed ``yes``.

        Each step is attempted even when an earlier one failed; the config
        record is always removed.
        """
        if confirmation != CONFIRMATION_WORD:
            raise ConfirmationAborted(f"Deletion of '{instance.name}' not confirmed.")

        result = LifecycleResult("delete", instance.name)
        failures = 0
        for action in (self.gateway.stop(instance.unit), self.gateway.disable(instance.unit)):
            result.record(action)
            if not action.ok:
                failures += 1
                result.warnings.append(f"{action.action} {instance.unit} failed: {action.detail}")

        removed = self.store.delete(instance.name)
        result.add_step(
            "config.remove",
            "success" if removed else "skipped",
            str(instance.config_path),
        )
        if not removed:
            result.warnings.append(f"{instance.config_path} was already absent.")

        reloaded = self.gateway.reload_daemon()
        result.add_step("systemd.daemon-reload", "success" if reloaded else "failed")
        if not reloaded:
            failures += 1
            result.warnings.append("systemctl daemon-reload failed.")

        result.outcome = ActionOutcome.PARTIAL if failures or not removed else ActionOutcome.SUCCESS
        return result


__all__ = ["CONFIRMATION_WORD", "LifecycleController", "LifecycleResult"]
