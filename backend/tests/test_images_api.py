"""API endpoint tests for the image registry and tiling trigger.

This module exercises the /api/images and /api/jobs endpoints through the
FastAPI TestClient. The repository, storage backend, job executor and
settings are injected with dependency overrides, and the subprocess runner is
monkeypatched, so no database, GDAL or azcopy is needed.

See Also:
    - backend/astrotiles/api/images.py for API implementation.
"""

from __future__ import annotations

import io
import pathlib
from typing import TYPE_CHECKING, BinaryIO, ClassVar

import pytest
from azure.core import exceptions as azure_exceptions
from fastapi import testclient

from astrotiles import main
from astrotiles.api import images as api_images
from astrotiles.core import config
from astrotiles.services import images, jobs, storage
from astrotiles.utils import commands

if TYPE_CHECKING:
    from collections.abc import Iterator

    from astrotiles.db import database


@pytest.fixture
def executor() -> Iterator[jobs.JobExecutor]:
    pool = jobs.JobExecutor(max_workers=1)
    yield pool
    pool.shutdown(wait=True)


@pytest.fixture
def client(
    settings: config.Settings,
    repo: database.InMemoryImageRepository,
    executor: jobs.JobExecutor,
) -> Iterator[testclient.TestClient]:
    app = main.create_app()
    app.dependency_overrides[config.get_settings] = lambda: settings
    app.dependency_overrides[api_images._get_repo] = lambda: repo
    app.dependency_overrides[api_images._get_storage] = (
        lambda: storage.LocalTileStorage(settings.uploads_dir, settings.tiles_root)
    )
    app.dependency_overrides[jobs.get_job_executor] = lambda: executor
    try:
        yield testclient.TestClient(app)
    finally:
        app.dependency_overrides.clear()


def test_list_images_empty(client: testclient.TestClient) -> None:
    response = client.get("/api/images")
    assert response.status_code == 200
    assert response.json() == []


def test_list_and_get_images(
    client: testclient.TestClient,
    repo: database.InMemoryImageRepository,
) -> None:
    image = images.create_image(repo, name="Orion", width=8192, height=4096)

    listed = client.get("/api/images").json()
    assert [item["id"] for item in listed] == [image.id]

    response = client.get(f"/api/images/{image.id}")
    assert response.status_code == 200
    body = response.json()
    assert body["name"] == "Orion"
    assert body["status"] == "queued"
    assert body["max_zoom"] == 5
    assert isinstance(body["created_at"], str)


def test_get_image_not_found(client: testclient.TestClient) -> None:
    response = client.get("/api/images/missing")
    assert response.status_code == 404
    assert "not found" in response.json()["detail"].lower()


def test_create_image(
    client: testclient.TestClient,
    repo: database.InMemoryImageRepository,
) -> None:
    response = client.post(
        "/api/images",
        json={"name": "Horsehead", "width": 3000, "height": 2000},
    )
    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "queued"
    assert body["tiles_base"] == ""
    assert repo.get(body["id"]) is not None


@pytest.mark.parametrize(
    "payload",
    [
        {"name": "x", "width": 0, "height": 10},
        {"name": "", "width": 10, "height": 10},
        {"name": "x", "width": 10},
    ],
)
def test_create_image_validation(
    client: testclient.TestClient, payload: dict[str, object]
) -> None:
    assert client.post("/api/images", json=payload).status_code == 422


def test_upload_image(
    monkeypatch: pytest.MonkeyPatch,
    client: testclient.TestClient,
    settings: config.Settings,
    repo: database.InMemoryImageRepository,
) -> None:
    """Uploads land at <uploads>/<id>.tif and are registered with their size."""
    monkeypatch.setattr(images, "read_dimensions", lambda path: (14575, 8441))

    response = client.post(
        "/api/images/upload",
        files={"file": ("carina.tif", io.BytesIO(b"tif bytes"), "image/tiff")},
        data={"description": "NIRCam"},
    )

    assert response.status_code == 201
    body = response.json()
    assert body["name"] == "carina"
    assert body["width"] == 14575
    assert body["description"] == "NIRCam"
    stored = settings.uploads_dir / f"{body['id']}.tif"
    assert stored.read_bytes() == b"tif bytes"
    assert repo.get(body["id"]) is not None


def test_upload_unreadable_raster(
    monkeypatch: pytest.MonkeyPatch,
    client: testclient.TestClient,
    settings: config.Settings,
    repo: database.InMemoryImageRepository,
) -> None:
    def unreadable(path: pathlib.Path) -> tuple[int, int]:
        raise images.UnreadableRasterError("notes.txt is not a readable raster")

    monkeypatch.setattr(images, "read_dimensions", unreadable)
    response = client.post(
        "/api/images/upload",
        files={"file": ("notes.txt", io.BytesIO(b"hello"), "text/plain")},
    )
    assert response.status_code == 400
    assert list(repo.all()) == []
    assert list(settings.uploads_dir.glob("*.tif")) == []


def test_upload_too_large(
    client: testclient.TestClient,
    settings: config.Settings,
) -> None:
    settings.max_upload_size_bytes = 4
    response = client.post(
        "/api/images/upload",
        files={"file": ("big.tif", io.BytesIO(b"0123456789"), "image/tiff")},
    )
    assert response.status_code == 413
    assert list(settings.uploads_dir.iterdir()) == []


def test_delete_image(
    client: testclient.TestClient,
    repo: database.InMemoryImageRepository,
) -> None:
    image = images.create_image(repo, name="x", width=1, height=1)
    assert client.delete(f"/api/images/{image.id}").status_code == 204
    assert client.delete(f"/api/images/{image.id}").status_code == 404


def test_trigger_tile_not_found(client: testclient.TestClient) -> None:
    response = client.post("/api/images/missing/tile")
    assert response.status_code == 404


def test_trigger_tile_runs_job(
    monkeypatch: pytest.MonkeyPatch,
    client: testclient.TestClient,
    settings: config.Settings,
    repo: database.InMemoryImageRepository,
    executor: jobs.JobExecutor,
) -> None:
    """Triggering returns immediately; the job can then be polled."""
    monkeypatch.setattr(commands, "run_command", lambda cmd: None)
    image = images.create_image(repo, name="Orion", width=8192, height=4096)
    (settings.uploads_dir / f"{image.id}.tif").write_bytes(b"tif")

    response = client.post(f"/api/images/{image.id}/tile")
    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is True
    assert body["started"] is True

    executor.wait(body["job_id"], timeout=5)
    job = client.get(f"/api/jobs/{body['job_id']}").json()
    assert job["status"] == "succeeded"
    assert job["image_id"] == image.id

    record = client.get(f"/api/images/{image.id}").json()
    assert record["status"] == "ready"
    assert record["tiles_base"] == f"/tiles/{image.id}"


def test_trigger_tile_failure_is_observable(
    monkeypatch: pytest.MonkeyPatch,
    client: testclient.TestClient,
    settings: config.Settings,
    repo: database.InMemoryImageRepository,
    executor: jobs.JobExecutor,
) -> None:
    def fail(cmd: list[str]) -> None:
        raise commands.CommandError("python3 exited 1", list(cmd), 1)

    monkeypatch.setattr(commands, "run_command", fail)
    image = images.create_image(repo, name="Orion", width=512, height=512)
    (settings.uploads_dir / f"{image.id}.tif").write_bytes(b"tif")

    body = client.post(f"/api/images/{image.id}/tile").json()
    executor.wait(body["job_id"], timeout=5)

    job = client.get(f"/api/jobs/{body['job_id']}").json()
    assert job["status"] == "failed"
    assert job["error"] == "python3 exited 1"
    record = client.get(f"/api/images/{image.id}").json()
    assert record["status"] == "failed"
    assert record["failure_reason"] == "python3 exited 1"


def test_get_job_not_found(client: testclient.TestClient) -> None:
    assert client.get("/api/jobs/unknown").status_code == 404


def test_upload_reader_bug_is_not_reported_as_bad_input(
    monkeypatch: pytest.MonkeyPatch,
    client: testclient.TestClient,
    repo: database.InMemoryImageRepository,
) -> None:
    def broken(path: pathlib.Path) -> tuple[int, int]:
        raise TypeError("unexpected keyword")

    monkeypatch.setattr(images, "read_dimensions", broken)
    with pytest.raises(TypeError):
        client.post(
            "/api/images/upload",
            files={"file": ("m31.tif", io.BytesIO(b"tif"), "image/tiff")},
        )
    assert list(repo.all()) == []


class FakeOriginalsContainer:
    """Stands in for azure-storage-blob's ContainerClient."""

    blobs: ClassVar[dict[str, bytes]] = {}
    fail: ClassVar[bool] = False

    @classmethod
    def from_container_url(cls, url: str) -> FakeOriginalsContainer:
        assert url == "https://acct.blob.core.windows.net/originals?sig=o"
        return cls()

    def upload_blob(self, name: str, data: BinaryIO, overwrite: bool = False) -> None:
        if self.fail:
            raise azure_exceptions.ServiceRequestError("unreachable")
        self.blobs[name] = data.read()


@pytest.fixture
def production(
    monkeypatch: pytest.MonkeyPatch,
    client: testclient.TestClient,
    settings: config.Settings,
) -> config.Settings:
    """Switch the client to Azure storage with a fake originals container."""
    settings.environment = "production"
    settings.azure_originals_base = "https://acct.blob.core.windows.net/originals"
    settings.azure_originals_sas = "?sig=o"
    settings.azure_tiles_base = "https://acct.blob.core.windows.net/tiles"
    monkeypatch.setattr(FakeOriginalsContainer, "blobs", {})
    monkeypatch.setattr(FakeOriginalsContainer, "fail", False)
    monkeypatch.setattr(storage, "ContainerClient", FakeOriginalsContainer)
    client.app.dependency_overrides[api_images._get_storage] = (
        lambda: storage.get_tile_storage(settings)
    )
    return settings


def test_production_upload_is_tiled_from_originals_container(
    monkeypatch: pytest.MonkeyPatch,
    client: testclient.TestClient,
    production: config.Settings,
    executor: jobs.JobExecutor,
) -> None:
    """The original lands where the tiling download looks for it."""
    monkeypatch.setattr(images, "read_dimensions", lambda path: (4096, 2048))
    calls: list[list[str]] = []
    monkeypatch.setattr(
        commands, "run_command", lambda cmd: calls.append([str(p) for p in cmd])
    )

    response = client.post(
        "/api/images/upload",
        files={"file": ("m31.tif", io.BytesIO(b"tif bytes"), "image/tiff")},
    )
    assert response.status_code == 201
    image_id = response.json()["id"]
    assert FakeOriginalsContainer.blobs == {f"{image_id}.tif": b"tif bytes"}
    assert not (production.uploads_dir / f"{image_id}.tif").exists()

    job_id = client.post(f"/api/images/{image_id}/tile").json()["job_id"]
    executor.wait(job_id, timeout=5)

    download = calls[0]
    assert download[:3] == [
        "azcopy",
        "copy",
        f"https://acct.blob.core.windows.net/originals/{image_id}.tif?sig=o",
    ]
    record = client.get(f"/api/images/{image_id}").json()
    assert record["status"] == "ready"
    assert record["tiles_base"] == (
        f"https://acct.blob.core.windows.net/tiles/{image_id}"
    )


def test_production_upload_storage_failure(
    monkeypatch: pytest.MonkeyPatch,
    client: testclient.TestClient,
    production: config.Settings,
    repo: database.InMemoryImageRepository,
) -> None:
    monkeypatch.setattr(images, "read_dimensions", lambda path: (10, 10))
    monkeypatch.setattr(FakeOriginalsContainer, "fail", True)

    response = client.post(
        "/api/images/upload",
        files={"file": ("m31.tif", io.BytesIO(b"tif"), "image/tiff")},
    )

    assert response.status_code == 502
    assert list(repo.all()) == []
    assert list(production.uploads_dir.iterdir()) == []
