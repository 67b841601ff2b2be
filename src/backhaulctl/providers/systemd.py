"""Systemd provider driving ``backhaul@<instance>.service`` units."""
from __future__ import annotations

import logging
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from ..errors import ServiceGatewayError
from ..templates import TemplateEngine
from ..units import TEMPLATE_UNIT, UnitIdentity

LOGGER = logging.getLogger(__name__)


class SystemdError(ServiceGatewayError):
    """Raised when systemd operations fail."""


class RuntimeState(str, Enum):
    """Runtime state of a unit as reported by ``systemctl is-active``."""

    RUNNING = "running"
    STOPPED = "stopped"
    FAILED = "failed"
    TRANSITIONING = "transitioning"
    UNKNOWN = "unknown"


class EnablementState(str, Enum):
    """Boot-time enablement as reported by ``systemctl is-enabled``."""

    ENABLED = "enabled"
    DISABLED = "disabled"
    UNKNOWN = "unknown"


class ActionOutcome(str, Enum):
    """Result of a unit action."""

    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class UnitActionResult:
    """Outcome of a lifecycle verb applied to one unit."""

    action: str
    unit: str
    outcome: ActionOutcome
    detail: str = ""

    @property
    def ok(self) -> bool:
        """Return ``True`` unless the action failed outright."""
        return self.outcome is not ActionOutcome.FAILED


_ACTIVE_STATES = {
    "active": RuntimeState.RUNNING,
    "reloading": RuntimeState.RUNNING,
    "inactive": RuntimeState.STOPPED,
    "failed": RuntimeState.FAILED,
    "activating": RuntimeState.TRANSITIONING,
    "deactivating": RuntimeState.TRANSITIONING,
}

_ENABLED_STATES = {
    "enabled": EnablementState.ENABLED,
    "enabled-runtime": EnablementState.ENABLED,
    "disabled": EnablementState.DISABLED,
}


@dataclass(slots=True)
class SystemdProvider:
    """Render the shared unit template and manage per-instance units."""

    templates: TemplateEngine
    core_dir: Path
    binary_name: str = "backhaul"
    config_prefix: str = "conf_"
    systemd_dir: Path = Path("/etc/systemd/system")
    systemctl_bin: str = "systemctl"
    journalctl_bin: str = "journalctl"

    def template_path(self) -> Path:
        """Return the full path of the ``backhaul@.service`` template."""
        return self.systemd_dir / TEMPLATE_UNIT

    def ensure_unit_template_installed(self) -> bool:
        """Write the unit template when its content differs and reload systemd."""
        context = {
            "working_directory": str(self.core_dir),
            "exec_path": str(self.core_dir / self.binary_name),
            "config_dir": str(self.core_dir),
            "config_prefix": self.config_prefix,
        }
        changed = self.templates.render_to_path(
            "systemd/backhaul@.service.j2",
            self.template_path(),
            context,
            mode=0o644,
        )
        if changed:
            LOGGER.info("Installed unit template %s.", self.template_path())
            self.reload_daemon()
        return changed

    # Queries -------------------------------------------------------------
    def query_runtime_state(self, unit: UnitIdentity) -> RuntimeState:
        """Return the runtime state of *unit*; ``UNKNOWN`` when it cannot be queried."""
        raw = self._query("is-active", unit)
        if raw is None:
            return RuntimeState.UNKNOWN
        state = _ACTIVE_STATES.get(raw)
        if state is None:
            LOGGER.warning("Unit %s reported unrecognised state %r.", unit, raw)
            return RuntimeState.UNKNOWN
        return state

    def query_enablement(self, unit: UnitIdentity) -> EnablementState:
        """Return the enablement state of *unit*; ``UNKNOWN`` when it cannot be queried."""
        raw = self._query("is-enabled", unit)
        if raw is None:
            return EnablementState.UNKNOWN
        return _ENABLED_STATES.get(raw, EnablementState.UNKNOWN)

    def status_text(self, unit: UnitIdentity) -> str:
        """Return ``systemctl status`` output for *unit* (empty when unavailable)."""
        try:
            result = self._systemctl("status", unit.name, "--no-pager", "-l", check=False)
        except SystemdError as exc:
            return str(exc)
        return (result.stdout or result.stderr or "").rstrip()

    def tail_logs(self, unit: UnitIdentity, lines: int) -> list[str]:
        """Return up to *lines* of the most recent journal entries for *unit*."""
        args = ["-u", unit.name, "-n", str(lines), "--no-pager"]
        try:
            result = self._journalctl(args, check=False)
        except SystemdError as exc:
            LOGGER.warning("Could not read logs for %s: %s", unit, exc)
            return []
        if result.returncode != 0:
            return []
        output = [line for line in (result.stdout or "").splitlines() if line.strip()]
        if output == ["-- No entries --"]:
            return []
        return output[-lines:]

    # Actions -------------------------------------------------------------
    def enable(self, unit: UnitIdentity) -> UnitActionResult:
        """Enable *unit* at boot."""
        return self._action("enable", unit)

    def disable(self, unit: UnitIdentity) -> UnitActionResult:
        """Disable *unit* at boot."""
        return self._action("disable", unit)

    def start(self, unit: UnitIdentity) -> UnitActionResult:
        """Start *unit*."""
        return self._action("start", unit)

    def stop(self, unit: UnitIdentity) -> UnitActionResult:
        """Stop *unit*."""
        return self._action("stop", unit)

    def restart(self, unit: UnitIdentity) -> UnitActionResult:
        """Restart *unit*."""
        return self._action("restart", unit)

    def enable_and_start(self, unit: UnitIdentity) -> UnitActionResult:
        """Enable *unit* and start it immediately (``enable --now``)."""
        return self._action("enable", unit, "--now", label="enable-start")

    def disable_and_stop(self, unit: UnitIdentity) -> UnitActionResult:
        """Stop and disable *unit*.

        Both verbs are always attempted. Stopping is what matters to the
        operator, so a failed ``disable`` after a successful ``stop`` is a
        partial success, while a failed ``stop`` is a failure.
        """
        stopped = self.stop(unit)
        disabled = self.disable(unit)
        detail = f"stop: {stopped.detail}; disable: {disabled.detail}"
        if stopped.ok and disabled.ok:
            outcome = ActionOutcome.SUCCESS
        elif stopped.ok:
            outcome = ActionOutcome.PARTIAL
        else:
            outcome = ActionOutcome.FAILED
        return UnitActionResult("disable-stop", unit.name, outcome, detail)

    def reload_daemon(self) -> bool:
        """Ask systemd to reload unit files; ``False`` when that was not possible."""
        try:
            self._systemctl("daemon-reload")
        except SystemdError as exc:
            LOGGER.warning("systemctl daemon-reload failed: %s", exc)
            return False
        return True

    # ------------------------------------------------------------------
    def _query(self, command: str, unit: UnitIdentity) -> str | None:
        try:
            result = self._systemctl(command, unit.name, check=False)
        except SystemdError as exc:
            LOGGER.warning("Could not query %s for %s: %s", command, unit, exc)
            return None
        output = (result.stdout or "").strip().splitlines()
        if not output:
            LOGGER.warning("%s returned no output for %s.", command, unit)
            return None
        return output[0].strip()

    def _action(
        self,
        command: str,
        unit: UnitIdentity,
        *extra: str,
        label: str | None = None,
    ) -> UnitActionResult:
        action = label or command
        try:
            result = self._systemctl(command, *extra, unit.name)
        except SystemdError as exc:
            LOGGER.warning("%s %s failed: %s", action, unit, exc)
            return UnitActionResult(action, unit.name, ActionOutcome.FAILED, str(exc))
        return UnitActionResult(action, unit.name, ActionOutcome.SUCCESS, f"rc={result.returncode}")

    def _systemctl(
        self,
        command: str,
        *args: str,
        check: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        argv: list[str] = [self.systemctl_bin, command, *args]
        return self._run_command(
            argv,
            check=check,
            error_prefix=f"{self.systemctl_bin} {command}",
        )

    def _journalctl(
        self,
        args: Sequence[str],
        *,
        check: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        command = [self.journalctl_bin, *args]
        joined = " ".join(args)
        return self._run_command(
            command,
            check=check,
            error_prefix=f"{self.journalctl_bin} {joined}".rstrip(),
        )

    def _run_command(
        self,
        args: Sequence[str],
        *,
        check: bool,
        error_prefix: str,
    ) -> subprocess.CompletedProcess[str]:
        try:
            result = subprocess.run(  # noqa: S603, S607
                list(args),
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError as exc:
            raise SystemdError(f"{args[0]} not found: {exc}") from exc
        except OSError as exc:
            raise SystemdError(f"{error_prefix} could not run: {exc}") from exc
        if check and result.returncode != 0:
            stdout = getattr(result, "stdout", "") or ""
            stderr = getattr(result, "stderr", "") or ""
            message = stderr.strip() or stdout.strip() or "no output"
            raise SystemdError(f"{error_prefix} failed (exit {result.returncode}): {message}")
        return result


__all__ = [
    "ActionOutcome",
    "EnablementState",
    "RuntimeState",
    "SystemdError",
    "SystemdProvider",
    "UnitActionResult",
]
