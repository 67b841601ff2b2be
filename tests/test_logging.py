"""Tests for the structured operations log."""
from __future__ import annotations

import json
from pathlib import Path

import pytest

from backhaulctl import __version__
from backhaulctl.logging import StructuredLogger


def _records(logger: StructuredLogger) -> list[dict[str, object]]:
    lines = logger.operations_log_path.read_text(encoding="utf-8").splitlines()
    return [json.loads(line) for line in lines if line.strip()]


def test_operation_writes_single_record(tmp_path: Path) -> None:
    """A completed operation appends one JSON document with steps and result."""
    logger = StructuredLogger(tmp_path / "logs")

    with logger.operation(
        "enable",
        args={"name": "iran_443", "path": tmp_path},
        target={"kind": "instance", "name": "iran_443"},
    ) as op:
        op.add_step("systemd.enable-start", status="success", detail="rc=0")
        op.success("Instance enabled.", changed=1)

    (record,) = _records(logger)
    assert record["command"] == "enable"
    assert record["args"] == {"name": "iran_443", "path": str(tmp_path)}
    assert record["target"] == {"kind": "instance", "name": "iran_443"}
    assert record["steps"] == [
        {"name": "systemd.enable-start", "status": "success", "detail": "rc=0"}
    ]
    result = record["result"]
    assert isinstance(result, dict)
    assert result["status"] == "success"
    assert result["changed"] == 1
    assert record["context"] == {"backhaulctl_version": __version__}
    assert isinstance(record["op_id"], str) and len(record["op_id"]) == 12
    assert isinstance(record["duration_ms"], int)


def test_warning_result_carries_rc_and_warnings(tmp_path: Path) -> None:
    """Partial outcomes keep the warnings and exit code."""
    logger = StructuredLogger(tmp_path / "logs")

    with logger.operation("disable") as op:
        op.warning("Instance stopped and disabled with warnings.", warnings=["still enabled"], rc=1)

    (record,) = _records(logger)
    result = record["result"]
    assert isinstance(result, dict)
    assert result["status"] == "warning"
    assert result["warnings"] == ["still enabled"]
    assert result["rc"] == 1


def test_exception_without_result_is_recorded_as_error(tmp_path: Path) -> None:
    """An exception escaping the block still produces an error record."""
    logger = StructuredLogger(tmp_path / "logs")

    with pytest.raises(RuntimeError):
        with logger.operation("restart"):
            raise RuntimeError("boom")

    (record,) = _records(logger)
    result = record["result"]
    assert isinstance(result, dict)
    assert result["status"] == "error"
    assert "RuntimeError" in str(result["message"])


def test_structured_logger_disables_when_directory_unavailable(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Logger gracefully disables itself when log directory cannot be created."""
    log_dir = tmp_path / "logs"

    original_mkdir = Path.mkdir

    def fail_mkdir(self: Path, *args: object, **kwargs: object) -> None:
        if self == log_dir:
            raise PermissionError("no access")
        original_mkdir(self, *args, **kwargs)

    monkeypatch.setattr(Path, "mkdir", fail_mkdir)

    logger = StructuredLogger(log_dir)
    assert logger._enabled is False  # type: ignore[attr-defined]

    with logger.operation("list", args={"json": False}) as op:
        op.success("done", changed=0)

    assert not logger.operations_log_path.exists()


def test_structured_logger_disables_after_write_failure(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Write failures mark the logger disabled so subsequent writes are skipped."""
    logger = StructuredLogger(tmp_path / "logs")
    operations_path = logger._operations_log_path  # type: ignore[attr-defined]

    original_open = Path.open
    calls: list[Path] = []

    def fail_open(self: Path, *args: object, **kwargs: object) -> object:
        if self == operations_path:
            calls.append(self)
            raise OSError("disk full")
        return original_open(self, *args, **kwargs)

    monkeypatch.setattr(Path, "open", fail_open)

    with logger.operation("summary") as op:
        op.success("first", changed=0)
    with logger.operation("summary") as op:
        op.success("second", changed=0)

    assert logger._enabled is False  # type: ignore[attr-defined]
    assert len(calls) == 1
