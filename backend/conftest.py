"""Pytest configuration: backend import path and shared fixtures."""

from __future__ import annotations

import pathlib
import sys

import pytest

BACKEND_ROOT = pathlib.Path(__file__).resolve().parent

if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from astrotiles.core import config  # noqa: E402
from astrotiles.db import database  # noqa: E402


@pytest.fixture
def settings(tmp_path: pathlib.Path) -> config.Settings:
    """Development settings rooted in a temporary directory."""
    test_settings = config.Settings(
        web_project_root=tmp_path / "web",
        uploads_dir=tmp_path / "uploads",
        scratch_dir=tmp_path / "scratch",
        gdal_python="python3",
    )
    test_settings.ensure_directories()
    return test_settings


@pytest.fixture
def repo() -> database.InMemoryImageRepository:
    return database.InMemoryImageRepository()
