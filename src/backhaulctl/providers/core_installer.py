"""Installer for the Backhaul tunnel core executable.

The pipeline resolves the latest GitHub release for the host platform,
downloads the asset into a temporary file, sniffs its format by magic bytes,
extracts the ``backhaul`` executable and swaps it into place only after it
has been verified as a native executable for this host.
"""
from __future__ import annotations

import gzip
import http.client
import io
import json
import logging
import os
import platform
import re
import subprocess
import tarfile
import tempfile
import urllib.error
import urllib.request
import zlib
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

from packaging.version import InvalidVersion, Version

from ..errors import (
    ArtifactLayoutError,
    CorruptArtifactError,
    DownloadError,
    InstallVerificationError,
    ReleaseResolutionError,
)

LOGGER = logging.getLogger(__name__)

EXECUTABLE_NAME = "backhaul"
MAX_ARCHIVE_DEPTH = 2
_CHUNK_SIZE = 64 * 1024

ARCH_ALIASES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "armv7l": "armv7",
    "armv7": "armv7",
}

# ELF e_machine values per normalised architecture.
_ELF_MACHINES = {"amd64": 62, "arm64": 183, "armv7": 40}
_MACHO_MAGICS = {
    b"\xfe\xed\xfa\xce",
    b"\xfe\xed\xfa\xcf",
    b"\xce\xfa\xed\xfe",
    b"\xcf\xfa\xed\xfe",
    b"\xca\xfe\xba\xbe",
}
_VERSION_PATTERN = re.compile(r"v?(\d+(?:\.\d+){1,2})")


class ArtifactFormat(str, Enum):
    """Container format detected from an artifact's leading bytes."""

    RAW_EXECUTABLE = "raw"
    GZIP_COMPRESSED = "gzip"
    TAR_ARCHIVE = "tar"


@dataclass(frozen=True, slots=True)
class ReleaseInfo:
    """Latest release tag and the asset matching this host."""

    tag: str
    asset_name: str
    asset_url: str


@dataclass(frozen=True, slots=True)
class ReleaseArtifact:
    """A downloaded release asset awaiting extraction."""

    tag: str
    download_url: str
    asset_name: str
    local_path: Path
    detected_format: ArtifactFormat


@dataclass(frozen=True, slots=True)
class CoreInstallResult:
    """Metadata describing a completed core installation."""

    tag: str
    asset_name: str
    path: Path
    detected_format: ArtifactFormat
    size: int
    version: str | None


def normalize_arch(machine: str) -> str | None:
    """Map a ``uname -m`` style machine name to the release naming scheme."""
    return ARCH_ALIASES.get(machine.strip().lower())


def asset_name_for(system: str, arch: str) -> str:
    """Return the release asset name for *system* and normalised *arch*."""
    return f"backhaul_{system.lower()}_{arch}.tar.gz"


def detect_format(data: bytes) -> ArtifactFormat:
    """Sniff *data*: gzip magic, then ``ustar`` at offset 257, else raw."""
    if data[:2] == b"\x1f\x8b":
        return ArtifactFormat.GZIP_COMPRESSED
    if data[257:262] == b"ustar":
        return ArtifactFormat.TAR_ARCHIVE
    return ArtifactFormat.RAW_EXECUTABLE


def parse_core_version(text: str | None) -> Version | None:
    """Extract a comparable version from ``backhaul -v`` output or a release tag."""
    if not text:
        return None
    match = _VERSION_PATTERN.search(text)
    if match is None:
        return None
    try:
        return Version(match.group(1))
    except InvalidVersion:
        return None


def update_available(installed: str | None, latest_tag: str) -> bool | None:
    """Return whether *latest_tag* is newer than *installed*; ``None`` if unknown."""
    current = parse_core_version(installed)
    latest = parse_core_version(latest_tag)
    if current is None or latest is None:
        return None
    return latest > current


class CoreInstaller:
    """Acquire and install the tunnel core from GitHub releases."""

    def __init__(
        self,
        *,
        binary_path: Path,
        repository: str = "Musixal/Backhaul",
        api_url: str = "https://api.github.com",
        timeout: float = 30.0,
    ) -> None:
        """Initialise the installer with its target path and release source."""
        self.binary_path = binary_path.expanduser()
        self.repository = repository
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout

    @property
    def staging_path(self) -> Path:
        """Return the sibling path used while verifying a new executable."""
        return self.binary_path.with_name(f"{self.binary_path.name}.new")

    def is_installed(self) -> bool:
        """Return ``True`` when an executable file exists at the canonical path."""
        return self.binary_path.is_file() and os.access(self.binary_path, os.X_OK)

    # Resolve -------------------------------------------------------------
    def resolve_latest_release(
        self,
        machine: str | None = None,
        system: str | None = None,
    ) -> ReleaseInfo:
        """Return the latest release tag and the asset built for this host."""
        raw_machine = machine or platform.machine()
        arch = normalize_arch(raw_machine)
        if arch is None:
            raise ReleaseResolutionError(f"Unsupported CPU architecture: {raw_machine}")
        wanted = asset_name_for(system or platform.system(), arch)

        payload = self._fetch_json(f"{self.api_url}/repos/{self.repository}/releases/latest")
        tag = payload.get("tag_name")
        if not isinstance(tag, str) or not tag.strip():
            raise ReleaseResolutionError("Latest release has no tag_name.")

        assets = payload.get("assets")
        for asset in assets if isinstance(assets, list) else []:
            if not isinstance(asset, dict):
                continue
            url = asset.get("browser_download_url")
            name = asset.get("name") or (url.rsplit("/", 1)[-1] if isinstance(url, str) else "")
            if name == wanted and isinstance(url, str) and url:
                return ReleaseInfo(tag=tag.strip(), asset_name=name, asset_url=url)
        raise ReleaseResolutionError(f"Release {tag} has no asset named {wanted}.")

    def latest_tag(self) -> str:
        """Return only the latest release tag."""
        payload = self._fetch_json(f"{self.api_url}/repos/{self.repository}/releases/latest")
        tag = payload.get("tag_name")
        if not isinstance(tag, str) or not tag.strip():
            raise ReleaseResolutionError("Latest release has no tag_name.")
        return tag.strip()

    # Download ------------------------------------------------------------
    def download(self, url: str) -> Path:
        """Stream *url* into a temporary file and return its path."""
        fd, name = tempfile.mkstemp(prefix="backhaulctl-core-", suffix=".download")
        path = Path(name)
        try:
            with os.fdopen(fd, "wb") as handle, self._open_url(url) as response:
                expected = _content_length(response)
                received = 0
                while True:
                    chunk = response.read(_CHUNK_SIZE)
                    if not chunk:
                        break
                    handle.write(chunk)
                    received += len(chunk)
            if expected is not None and received != expected:
                raise DownloadError(
                    f"Incomplete download from {url}: {received} of {expected} bytes."
                )
            if received == 0:
                raise DownloadError(f"Empty download from {url}.")
        except (urllib.error.URLError, http.client.HTTPException, OSError) as exc:
            path.unlink(missing_ok=True)
            raise DownloadError(f"Download of {url} failed: {exc}") from exc
        except BaseException:
            path.unlink(missing_ok=True)
            raise
        LOGGER.info("Downloaded %s (%d bytes) to %s.", url, received, path)
        return path

    # Extract -------------------------------------------------------------
    def extract_executable(self, data: bytes, fmt: ArtifactFormat) -> bytes:
        """Return the executable bytes contained in *data*."""
        if fmt is ArtifactFormat.GZIP_COMPRESSED:
            try:
                inner = gzip.decompress(data)
            except (OSError, EOFError, zlib.error) as exc:
                raise CorruptArtifactError(f"gzip payload could not be decoded: {exc}") from exc
            inner_fmt = detect_format(inner)
            if inner_fmt is ArtifactFormat.GZIP_COMPRESSED:
                raise CorruptArtifactError("gzip payload wraps another gzip stream.")
            return self.extract_executable(inner, inner_fmt)
        if fmt is ArtifactFormat.TAR_ARCHIVE:
            payload = _extract_from_tar(data)
        else:
            payload = data
        if not payload:
            raise CorruptArtifactError("Extracted executable is empty.")
        return payload

    # Install -------------------------------------------------------------
    def install_atomically(self, data: bytes) -> Path:
        """Stage *data* beside the canonical path, verify it, then swap it in."""
        self.binary_path.parent.mkdir(parents=True, exist_ok=True)
        staging = self.staging_path
        try:
            staging.write_bytes(data)
            os.chmod(staging, 0o755)
            self.verify_executable(staging)
            os.replace(staging, self.binary_path)
        finally:
            staging.unlink(missing_ok=True)
        LOGGER.info("Installed core executable at %s.", self.binary_path)
        return self.binary_path

    def verify_executable(self, path: Path, *, machine: str | None = None) -> None:
        """Raise :class:`InstallVerificationError` unless *path* is native to this host."""
        with path.open("rb") as handle:
            header = handle.read(20)
        if header[:4] in _MACHO_MAGICS and platform.system() == "Darwin":
            return
        if header[:4] != b"\x7fELF":
            raise InstallVerificationError(f"{path} is not an ELF executable.")
        if len(header) < 20:
            raise InstallVerificationError(f"{path} has a truncated ELF header.")
        byteorder = "little" if header[5] == 1 else "big"
        e_machine = int.from_bytes(header[18:20], byteorder)
        arch = normalize_arch(machine or platform.machine())
        expected = _ELF_MACHINES.get(arch or "")
        if expected is None:
            raise InstallVerificationError(
                f"Cannot verify executables for architecture {machine or platform.machine()}."
            )
        if e_machine != expected:
            raise InstallVerificationError(
                f"{path} targets ELF machine {e_machine}; this host needs {expected} ({arch})."
            )

    def remove(self) -> bool:
        """Delete the installed executable; ``False`` when it was absent."""
        try:
            self.binary_path.unlink()
        except FileNotFoundError:
            return False
        LOGGER.info("Removed core executable %s.", self.binary_path)
        return True

    def install_latest(
        self,
        on_stage: Callable[[str, str], None] | None = None,
    ) -> CoreInstallResult:
        """Run the whole pipeline and return what was installed."""
        def report(stage: str, detail: str) -> None:
            if on_stage is not None:
                on_stage(stage, detail)

        release = self.resolve_latest_release()
        report("resolve", f"{release.tag} {release.asset_name}")
        local_path = self.download(release.asset_url)
        try:
            data = local_path.read_bytes()
            artifact = ReleaseArtifact(
                tag=release.tag,
                download_url=release.asset_url,
                asset_name=release.asset_name,
                local_path=local_path,
                detected_format=detect_format(data),
            )
            report("download", f"{len(data)} bytes, {artifact.detected_format.value}")
            executable = self.extract_executable(data, artifact.detected_format)
            report("extract", f"{len(executable)} bytes")
            target = self.install_atomically(executable)
            report("verify", str(target))
        finally:
            local_path.unlink(missing_ok=True)
        return CoreInstallResult(
            tag=artifact.tag,
            asset_name=artifact.asset_name,
            path=target,
            detected_format=artifact.detected_format,
            size=len(executable),
            version=self.installed_version(),
        )

    def installed_version(self) -> str | None:
        """Return the version reported by the installed core, ``None`` if absent."""
        if not self.binary_path.exists():
            return None
        for args in (["-v"], ["version"]):
            try:
                result = self._run_version_command([str(self.binary_path), *args])
            except (OSError, subprocess.TimeoutExpired) as exc:
                LOGGER.debug("Version probe %s failed: %s", args, exc)
                continue
            output = (result.stdout or "").strip() or (result.stderr or "").strip()
            if output:
                return output.splitlines()[0].strip()
        return "installed"

    # ------------------------------------------------------------------
    def _fetch_json(self, url: str) -> dict[str, Any]:
        try:
            with self._open_url(url) as response:
                body = response.read()
        except (urllib.error.URLError, http.client.HTTPException, OSError) as exc:
            raise ReleaseResolutionError(f"Could not query {url}: {exc}") from exc
        try:
            payload = json.loads(body)
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise ReleaseResolutionError(f"Release feed returned invalid JSON: {exc}") from exc
        if not isinstance(payload, dict):
            raise ReleaseResolutionError("Release feed did not return a JSON object.")
        return payload

    def _open_url(self, url: str) -> Any:
        """Open *url* (isolated for testing)."""
        request = urllib.request.Request(  # noqa: S310 - https endpoints from config
            url,
            headers={
                "Accept": "application/vnd.github+json, application/octet-stream",
                "User-Agent": "backhaulctl",
            },
        )
        return urllib.request.urlopen(request, timeout=self.timeout)  # noqa: S310

    def _run_version_command(self, cmd: Sequence[str]) -> subprocess.CompletedProcess[str]:
        """Execute the core's version probe (isolated for testing)."""
        return subprocess.run(  # noqa: S603
            list(cmd),
            check=False,
            capture_output=True,
            text=True,
            timeout=10,
        )


def _content_length(response: Any) -> int | None:
    headers = getattr(response, "headers", None)
    raw = headers.get("Content-Length") if headers is not None else None
    if raw is None:
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


def _extract_from_tar(data: bytes) -> bytes:
    with tempfile.TemporaryDirectory(prefix="backhaulctl-extract-") as scratch:
        root = Path(scratch)
        try:
            with tarfile.open(fileobj=io.BytesIO(data), mode="r:") as archive:
                archive.extractall(root, filter="data")
        except tarfile.TarError as exc:
            raise CorruptArtifactError(f"tar archive could not be read: {exc}") from exc
        candidates = sorted(
            (
                path
                for path in root.rglob(EXECUTABLE_NAME)
                if path.is_file()
                and not path.is_symlink()
                and len(path.relative_to(root).parts) <= MAX_ARCHIVE_DEPTH
            ),
            key=lambda path: len(path.relative_to(root).parts),
        )
        if not candidates:
            raise ArtifactLayoutError(
                f"No '{EXECUTABLE_NAME}' entry within {MAX_ARCHIVE_DEPTH} levels "
                "of the archive root."
            )
        return candidates[0].read_bytes()


__all__ = [
    "ARCH_ALIASES",
    "ArtifactFormat",
    "CoreInstallResult",
    "CoreInstaller",
    "ReleaseArtifact",
    "ReleaseInfo",
    "asset_name_for",
    "detect_format",
    "normalize_arch",
    "parse_core_version",
    "update_available",
]
