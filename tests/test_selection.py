"""Tests for the interactive instance selector."""
from __future__ import annotations

import io
from collections.abc import Callable
from pathlib import Path

import pytest
from rich.console import Console

from backhaulctl.instances import ConfigStore
from backhaulctl.providers.status import StatusAggregator
from backhaulctl.providers.systemd import EnablementState, RuntimeState
from backhaulctl.selection import InstanceSelector, SelectionState
from backhaulctl.templates import TemplateEngine
from backhaulctl.units import UnitIdentity


class StaticGateway:
    """Gateway reporting every unit as running and enabled."""

    def query_runtime_state(self, unit: UnitIdentity) -> RuntimeState:
        """Return running."""
        return RuntimeState.RUNNING

    def query_enablement(self, unit: UnitIdentity) -> EnablementState:
        """Return enabled."""
        return EnablementState.ENABLED


@pytest.fixture
def store(tmp_path: Path) -> ConfigStore:
    """Return a store holding two server instances."""
    store = ConfigStore(root=tmp_path / "core", templates=TemplateEngine.with_overrides(None))
    store.write_server_config(443, "t")
    store.write_server_config(8443, "t")
    return store


def _selector(
    store: ConfigStore,
    answer: str | Callable[[str], str],
) -> tuple[InstanceSelector, io.StringIO]:
    display = io.StringIO()
    reader = answer if callable(answer) else (lambda _prompt: answer)
    selector = InstanceSelector(
        StatusAggregator(store, StaticGateway()),  # type: ignore[arg-type]
        display=Console(file=display, width=120, color_system=None),
        read_input=reader,
    )
    return selector, display


def test_select_resolves_by_index(store: ConfigStore) -> None:
    """A valid 1-based index resolves to the listed instance."""
    selector, display = _selector(store, "2")

    result = selector.select()

    assert result.state is SelectionState.RESOLVED
    assert result.instance is not None
    assert result.instance.name == "iran_8443"
    listing = display.getvalue()
    assert "1)" in listing and "iran_443" in listing
    assert "ACTIVE" in listing


@pytest.mark.parametrize("answer", ["0", "", "  ", "abc", "-1", "3", "99"])
def test_select_cancels_on_invalid_choice(store: ConfigStore, answer: str) -> None:
    """Zero, blank, non-numeric and out-of-range answers cancel."""
    selector, _ = _selector(store, answer)

    result = selector.select()

    assert result.state is SelectionState.CANCELLED
    assert result.instance is None
    assert selector.state is SelectionState.CANCELLED


def test_select_rechecks_bounds_at_resolution(store: ConfigStore) -> None:
    """An instance removed while the prompt is open cannot be chosen."""
    def answer(_prompt: str) -> str:
        store.delete("iran_8443")
        return "2"

    selector, display = _selector(store, answer)

    result = selector.select()

    assert result.state is SelectionState.CANCELLED
    assert "out of range" in display.getvalue()


def test_select_empty_fleet(tmp_path: Path) -> None:
    """With no instances the selector cancels without prompting."""
    store = ConfigStore(root=tmp_path / "none", templates=TemplateEngine.with_overrides(None))
    prompts: list[str] = []

    def answer(prompt: str) -> str:
        prompts.append(prompt)
        return "1"

    selector, display = _selector(store, answer)

    result = selector.select()

    assert result.state is SelectionState.CANCELLED
    assert prompts == []
    assert "No instances configured" in display.getvalue()
