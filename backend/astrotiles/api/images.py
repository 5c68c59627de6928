"""Image registry and tiling trigger API endpoints.

This module exposes the image records and the tiling job lifecycle over
REST. Images can be registered from known dimensions or by uploading the
original raster; triggering a tile run returns immediately and the job can be
polled until it finishes.

Example:
    Upload an original and tile it:
        >>> response = client.post(
        ...     "/api/images/upload",
        ...     files={"file": ("carina.tif", open("carina.tif", "rb"))},
        ...     data={"name": "Carina Nebula"},
        ... )
        >>> image_id = response.json()["id"]

        >>> response = client.post(f"/api/images/{image_id}/tile")
        >>> # Returns: {"ok": true, "started": true, "job_id": "..."}

        >>> client.get(f"/api/jobs/{response.json()['job_id']}").json()
        >>> # Returns: {"id": "...", "status": "running", ...}
"""

from __future__ import annotations

import dataclasses
import shutil
import tempfile
from typing import TYPE_CHECKING, Any

import fastapi
import pydantic
from azure.core import exceptions as azure_exceptions

from astrotiles.core import config
from astrotiles.core.logging import get_logger
from astrotiles.db import database
from astrotiles.services import images, jobs, storage

if TYPE_CHECKING:
    import pathlib

    from astrotiles.db import models as db_models

LOGGER = get_logger(__name__)

router = fastapi.APIRouter(prefix="/api", tags=["images"])


class CreateImageRequest(pydantic.BaseModel):
    name: str = pydantic.Field(min_length=1)
    description: str = ""
    width: int = pydantic.Field(gt=0)
    height: int = pydantic.Field(gt=0)


def _get_repo(
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
) -> database.ImageRepositoryProtocol:
    """Resolve the image repository dependency."""
    return database.get_image_repository(settings)


def _get_storage(
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
) -> storage.TileStorage:
    """Resolve the tile storage backend for the configured environment."""
    return storage.get_tile_storage(settings)


def _serialize(record: Any) -> dict[str, Any]:
    """Convert a record dataclass to JSON-friendly values."""
    result = dataclasses.asdict(record)
    for key, value in result.items():
        if hasattr(value, "isoformat"):
            result[key] = value.isoformat()
    return result


def _require(
    repo: database.ImageRepositoryProtocol,
    image_id: str,
) -> db_models.ImageRecord:
    try:
        return images.require_image(repo, image_id)
    except images.ImageNotFoundError as exc:
        raise fastapi.HTTPException(status_code=404, detail="Image not found") from exc


def _save_upload(
    file: fastapi.UploadFile,
    target_path: pathlib.Path,
    max_size: int,
) -> pathlib.Path:
    """Persist an uploaded file to disk with size validation.

    Raises:
        HTTPException: If the file exceeds the maximum size limit.
    """
    target_path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(dir=target_path.parent) as tmp:
        size = 0
        for chunk in iter(lambda: file.file.read(1024 * 1024), b""):
            size += len(chunk)
            if size > max_size:
                raise fastapi.HTTPException(
                    status_code=413,
                    detail="Upload too large",
                )
            tmp.write(chunk)
        tmp.flush()
        shutil.copyfile(tmp.name, target_path)

    return target_path


@router.get("/images")
def list_images(
    repo: database.ImageRepositoryProtocol = fastapi.Depends(_get_repo),  # noqa: B008
) -> list[dict[str, Any]]:
    """List all registered images, newest first."""
    return [_serialize(image) for image in repo.all()]


@router.get("/images/{image_id}")
def get_image(
    image_id: str,
    repo: database.ImageRepositoryProtocol = fastapi.Depends(_get_repo),  # noqa: B008
) -> dict[str, Any]:
    """Return one image record.

    Raises:
        HTTPException: 404 if the image is not registered.
    """
    return _serialize(_require(repo, image_id))


@router.post("/images", status_code=201)
def create_image(
    payload: CreateImageRequest,
    repo: database.ImageRepositoryProtocol = fastapi.Depends(_get_repo),  # noqa: B008
) -> dict[str, Any]:
    """Register an image from known dimensions.

    The original is expected to reach the tiling source location
    separately (``<uploads_dir>/<id>.tif`` locally, the originals container
    in production).
    """
    image = images.create_image(
        repo,
        name=payload.name,
        description=payload.description,
        width=payload.width,
        height=payload.height,
    )
    LOGGER.info("image registered", extra={"image_id": image.id})
    return _serialize(image)


@router.post("/images/upload", status_code=201)
def upload_image(
    file: fastapi.UploadFile,
    name: str | None = fastapi.Form(None),  # noqa: B008
    description: str = fastapi.Form(""),  # noqa: B008
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
    repo: database.ImageRepositoryProtocol = fastapi.Depends(_get_repo),  # noqa: B008
    tile_storage: storage.TileStorage = fastapi.Depends(_get_storage),  # noqa: B008
) -> dict[str, Any]:
    """Upload an original raster and register it.

    The file is written to ``<uploads_dir>/<id>.tif`` (GDAL detects the
    actual format from content), its pixel dimensions are read, and it is
    handed to the storage backend: kept in place locally, uploaded to the
    originals container in production. The record is created last.

    Raises:
        HTTPException: 413 if the upload is too large, 400 if the file is not
            a readable raster, 502 if the original cannot be stored.
    """
    image_id = images.new_image_id()
    target = settings.uploads_dir / f"{image_id}.tif"
    _save_upload(file, target, settings.max_upload_size_bytes)

    try:
        width, height = images.read_dimensions(target)
    except images.UnreadableRasterError as exc:
        target.unlink(missing_ok=True)
        LOGGER.warning(
            "unreadable upload",
            extra={"upload_name": file.filename, "error": str(exc)},
        )
        raise fastapi.HTTPException(
            status_code=400,
            detail="Uploaded file is not a readable raster",
        ) from exc

    try:
        tile_storage.store_original(image_id, target)
    except azure_exceptions.AzureError as exc:
        target.unlink(missing_ok=True)
        LOGGER.error(
            "storing original failed",
            extra={"image_id": image_id, "error": str(exc)},
        )
        raise fastapi.HTTPException(
            status_code=502,
            detail="Could not store the original image",
        ) from exc

    image = images.create_image(
        repo,
        name=name or (file.filename or image_id).rsplit(".", 1)[0],
        description=description,
        width=width,
        height=height,
        image_id=image_id,
    )
    LOGGER.info(
        "image uploaded",
        extra={"image_id": image.id, "width": width, "height": height},
    )
    return _serialize(image)


@router.delete("/images/{image_id}", status_code=204)
def delete_image(
    image_id: str,
    repo: database.ImageRepositoryProtocol = fastapi.Depends(_get_repo),  # noqa: B008
) -> fastapi.Response:
    """Delete an image record. Generated tiles are left in place."""
    try:
        images.delete_image(repo, image_id)
    except images.ImageNotFoundError as exc:
        raise fastapi.HTTPException(status_code=404, detail="Image not found") from exc
    return fastapi.Response(status_code=204)


@router.post("/images/{image_id}/tile")
def trigger_tile(
    image_id: str,
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
    repo: database.ImageRepositoryProtocol = fastapi.Depends(_get_repo),  # noqa: B008
    tile_storage: storage.TileStorage = fastapi.Depends(_get_storage),  # noqa: B008
    executor: jobs.JobExecutor = fastapi.Depends(jobs.get_job_executor),  # noqa: B008
) -> dict[str, Any]:
    """Start a tiling job without waiting for it.

    The response only acknowledges that a job is queued or already running;
    poll ``/api/jobs/{job_id}`` or the image record for the outcome.

    Raises:
        HTTPException: 404 if the image is not registered.
    """
    _require(repo, image_id)
    job, started = executor.submit(
        image_id,
        repo=repo,
        storage=tile_storage,
        settings=settings,
    )
    return {"ok": True, "started": started, "job_id": job.id}


@router.get("/jobs/{job_id}")
def get_job(
    job_id: str,
    executor: jobs.JobExecutor = fastapi.Depends(jobs.get_job_executor),  # noqa: B008
) -> dict[str, Any]:
    """Return the state of a tiling job.

    Raises:
        HTTPException: 404 if the job is unknown (or aged out of history).
    """
    job = executor.get(job_id)
    if job is None:
        raise fastapi.HTTPException(status_code=404, detail="Job not found")
    return _serialize(job)
