"""Tests for the FastAPI application factory and health check.

This module validates that:
    - The FastAPI app is correctly instantiated via main.create_app,
    - The image, job and catalog routes are registered,
    - Local tiles are served under /tiles in development,
    - The /api/health endpoint returns the expected response.

See Also:
    - backend/astrotiles/main.py for the application factory.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, cast

from fastapi import testclient

from astrotiles import main
from astrotiles.core import config

if TYPE_CHECKING:
    import pytest


def test_create_app() -> None:
    app = main.create_app()
    assert app.title == "Astro Tiles"
    assert app.version == "0.1.0"


def test_health_endpoint() -> None:
    client = testclient.TestClient(main.create_app())
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"ok": True}


def test_app_includes_routers() -> None:
    app = main.create_app()
    routes = {
        cast(str, getattr(route, "path", ""))
        for route in app.routes
        if hasattr(route, "path")
    }
    assert {
        "/api/images",
        "/api/images/{image_id}",
        "/api/images/{image_id}/tile",
        "/api/jobs/{job_id}",
        "/api/planetary",
        "/api/wise",
        "/api/list",
    } <= routes


def test_local_tiles_are_served(
    monkeypatch: pytest.MonkeyPatch,
    settings: config.Settings,
) -> None:
    tile = settings.tiles_root / "img-1" / "0" / "0" / "0.png"
    tile.parent.mkdir(parents=True)
    tile.write_bytes(b"\x89PNG")
    monkeypatch.setattr(config, "get_settings", lambda: settings)

    client = testclient.TestClient(main.create_app())
    response = client.get("/tiles/img-1/0/0/0.png")
    assert response.status_code == 200
    assert response.content == b"\x89PNG"


def test_tiles_not_mounted_in_production(
    monkeypatch: pytest.MonkeyPatch,
    settings: config.Settings,
) -> None:
    settings.environment = "production"
    monkeypatch.setattr(config, "get_settings", lambda: settings)
    app = main.create_app()
    assert "/tiles" not in {getattr(route, "path", "") for route in app.routes}
