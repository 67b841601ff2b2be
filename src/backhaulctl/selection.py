"""Interactive instance picker used when a command omits the instance name.

Everything the picker renders goes to the display console (stderr by
default) so that commands such as ``backhaulctl select`` can print the
chosen name alone on stdout.
"""
from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from rich.console import Console

from .instances import Instance
from .providers.status import InstanceStatus, StatusAggregator
from .providers.systemd import EnablementState, RuntimeState


class SelectionState(str, Enum):
    """Stages of the selection protocol."""

    LISTING = "listing"
    AWAITING_CHOICE = "awaiting_choice"
    RESOLVED = "resolved"
    CANCELLED = "cancelled"


@dataclass(frozen=True, slots=True)
class SelectionResult:
    """Outcome of :meth:`InstanceSelector.select`."""

    state: SelectionState
    instance: Instance | None = None
    reason: str = ""

    @property
    def resolved(self) -> bool:
        """Return ``True`` when an instance was chosen."""
        return self.state is SelectionState.RESOLVED and self.instance is not None


_RUNTIME_STYLE = {
    RuntimeState.RUNNING: "green",
    RuntimeState.FAILED: "red",
    RuntimeState.TRANSITIONING: "yellow",
    RuntimeState.STOPPED: "dim",
    RuntimeState.UNKNOWN: "dim",
}


def render_status_line(index: int, status: InstanceStatus) -> str:
    """Return the rich markup for one numbered picker row."""
    style = _RUNTIME_STYLE[status.runtime]
    boot = "enabled" if status.enablement is EnablementState.ENABLED else status.enablement.value
    return f"{index:>3}) [{style}]{status.decorated:<8}[/{style}] {status.name} ({boot})"


class InstanceSelector:
    """Resolve an instance by index from an operator prompt."""

    def __init__(
        self,
        aggregator: StatusAggregator,
        *,
        display: Console | None = None,
        read_input: Callable[[str], str] | None = None,
    ) -> None:
        """Create a selector that lists through *aggregator* and prompts via *read_input*."""
        self.aggregator = aggregator
        self.display = display or Console(stderr=True)
        self.read_input = read_input or self._prompt
        self.state = SelectionState.LISTING

    def select(self, prompt: str = "Select instance number (0 to cancel)") -> SelectionResult:
        """Run the listing, prompt and resolution steps once."""
        self.state = SelectionState.LISTING
        statuses = self.aggregator.statuses()
        if not statuses:
            self.display.print("[yellow]No instances configured.[/yellow]")
            return self._cancel("no instances")

        for index, status in enumerate(statuses, start=1):
            self.display.print(render_status_line(index, status))

        self.state = SelectionState.AWAITING_CHOICE
        raw = self.read_input(prompt).strip()
        if not raw or not raw.isdecimal():
            return self._cancel("no numeric choice")
        choice = int(raw)
        if choice == 0:
            return self._cancel("cancelled by operator")

        # The directory may have changed while the prompt was open.
        current = self.aggregator.store.list_instances()
        if choice > len(current):
            self.display.print(f"[red]Choice {choice} is out of range (1-{len(current)}).[/red]")
            return self._cancel("out of range")

        self.state = SelectionState.RESOLVED
        return SelectionResult(SelectionState.RESOLVED, current[choice - 1])

    def _cancel(self, reason: str) -> SelectionResult:
        self.state = SelectionState.CANCELLED
        return SelectionResult(SelectionState.CANCELLED, None, reason)

    def _prompt(self, prompt: str) -> str:
        return self.display.input(f"{prompt}: ")


__all__ = [
    "InstanceSelector",
    "SelectionResult",
    "SelectionState",
    "render_status_line",
]
