"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

import os

import pytest


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Drop any ``BACKHAULCTL_*`` variables inherited from the developer's shell."""
    for key in list(os.environ):
        if key.startswith("BACKHAULCTL_"):
            monkeypatch.delenv(key, raising=False)
