"""Provider interfaces for backhaulctl."""
from __future__ import annotations

from .core_installer import CoreInstaller, CoreInstallResult, ReleaseInfo
from .status import FleetStatusSnapshot, InstanceStatus, StatusAggregator
from .systemd import (
    ActionOutcome,
    EnablementState,
    RuntimeState,
    SystemdError,
    SystemdProvider,
    UnitActionResult,
)

__all__ = [
    "ActionOutcome",
    "CoreInstallResult",
    "CoreInstaller",
    "EnablementState",
    "FleetStatusSnapshot",
    "InstanceStatus",
    "ReleaseInfo",
    "RuntimeState",
    "StatusAggregator",
    "SystemdError",
    "SystemdProvider",
    "UnitActionResult",
]
