"""Exception taxonomy shared across backhaulctl components."""
from __future__ import annotations


class BackhaulctlError(RuntimeError):
    """Base class for all backhaulctl failures."""


class ValidationError(BackhaulctlError):
    """Raised when operator input is rejected before any state changes."""


class ConfigValidationError(ValidationError):
    """Raised when an instance configuration field is invalid."""

    def __init__(self, field: str, message: str) -> None:
        """Record the offending *field* alongside the message."""
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message


class NotFoundError(BackhaulctlError):
    """Raised when an instance or configuration record does not exist."""


class ServiceGatewayError(BackhaulctlError):
    """Raised when the host service manager cannot be driven."""


class ConfirmationAborted(BackhaulctlError):
    """Raised when the operator declines a destructive action."""


class ArtifactError(BackhaulctlError):
    """Base class for failures of the core acquisition pipeline."""

    stage = "artifact"


class ReleaseResolutionError(ArtifactError):
    """Raised when the latest release or a matching asset cannot be resolved."""

    stage = "resolve"


class DownloadError(ArtifactError):
    """Raised when an asset download fails or is incomplete."""

    stage = "download"


class CorruptArtifactError(ArtifactError):
    """Raised when a compressed artifact cannot be decoded."""

    stage = "extract"


class ArtifactLayoutError(ArtifactError):
    """Raised when an archive does not contain the expected executable."""

    stage = "extract"


class InstallVerificationError(ArtifactError):
    """Raised when the staged executable is not a native binary for this host."""

    stage = "verify"


__all__ = [
    "ArtifactError",
    "ArtifactLayoutError",
    "BackhaulctlError",
    "ConfigValidationError",
    "ConfirmationAborted",
    "CorruptArtifactError",
    "DownloadError",
    "InstallVerificationError",
    "NotFoundError",
    "ReleaseResolutionError",
    "ServiceGatewayError",
    "ValidationError",
]
