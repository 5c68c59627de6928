"""Unit tests for utilities in astrotiles.utils.commands.

This module tests the subprocess wrapper used for gdal2tiles and azcopy.
Tests cover:
    - Successful command execution (zero exit code)
    - Nonzero exit codes surfacing as CommandError with the exit code
    - Spawn failures (missing executable) surfacing as CommandError
    - Output is inherited rather than captured

Monkeypatching is used to avoid actual subprocess execution.

See Also:
    - backend/astrotiles/utils/commands.py for implementation details.
"""

from __future__ import annotations

import pathlib
import subprocess
import sys
from typing import Any

import pytest

from astrotiles.utils import commands


def test_run_command_success(monkeypatch: pytest.MonkeyPatch) -> None:
    """Command with zero return code should pass."""
    calls: list[dict[str, Any]] = []

    def fake_run(args: list[str], **kwargs: Any) -> subprocess.CompletedProcess[bytes]:
        calls.append({"args": args, **kwargs})
        return subprocess.CompletedProcess(args=args, returncode=0)

    monkeypatch.setattr(commands.subprocess, "run", fake_run)
    commands.run_command(["azcopy", "sync", "a", "b"])

    assert calls[0]["args"] == ["azcopy", "sync", "a", "b"]
    assert "capture_output" not in calls[0]
    assert "stdout" not in calls[0]


def test_run_command_stringifies_paths(
    monkeypatch: pytest.MonkeyPatch, tmp_path: pathlib.Path
) -> None:
    seen: list[list[str]] = []

    def fake_run(args: list[str], **kwargs: Any) -> subprocess.CompletedProcess[bytes]:
        seen.append(args)
        return subprocess.CompletedProcess(args=args, returncode=0)

    monkeypatch.setattr(commands.subprocess, "run", fake_run)
    commands.run_command(["python", tmp_path / "in.tif"], workdir=tmp_path)
    assert seen == [["python", str(tmp_path / "in.tif")]]


def test_run_command_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    """Nonzero exit raises CommandError carrying the exit code."""

    def fake_run(args: list[str], **kwargs: Any) -> subprocess.CompletedProcess[bytes]:
        return subprocess.CompletedProcess(args=args, returncode=3)

    monkeypatch.setattr(commands.subprocess, "run", fake_run)
    with pytest.raises(commands.CommandError) as excinfo:
        commands.run_command(["python", "-m", "osgeo_utils.gdal2tiles"])

    assert excinfo.value.returncode == 3
    assert excinfo.value.command[0] == "python"
    assert "exited 3" in str(excinfo.value)


def test_run_command_spawn_error(monkeypatch: pytest.MonkeyPatch) -> None:
    """A missing executable raises CommandError without an exit code."""

    def fake_run(args: list[str], **kwargs: Any) -> subprocess.CompletedProcess[bytes]:
        raise FileNotFoundError(2, "No such file or directory", args[0])

    monkeypatch.setattr(commands.subprocess, "run", fake_run)
    with pytest.raises(commands.CommandError) as excinfo:
        commands.run_command(["azcopy", "copy", "x", "y"])

    assert excinfo.value.returncode is None
    assert isinstance(excinfo.value.__cause__, FileNotFoundError)


def test_run_command_real_process() -> None:
    """A real child process exiting nonzero is reported once."""
    with pytest.raises(commands.CommandError) as excinfo:
        commands.run_command([sys.executable, "-c", "raise SystemExit(2)"])
    assert excinfo.value.returncode == 2
