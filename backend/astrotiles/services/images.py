"""Image record lifecycle operations.

Thin service layer over the image repository: registering images (with a
pre-filled estimate of the pyramid they will get), looking them up, and the
status transitions used by the tiling job. The HTTP layer and the job both go
through these helpers so status changes are written in one place.

Dimensions of uploaded originals are read with rio-tiler's ImageReader,
which handles plain (non-georeferenced) astronomy images as well as GeoTIFFs.
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Any

import rasterio.errors as rasterio_errors
import rio_tiler.errors as rio_tiler_errors
import rio_tiler.io as rio_tiler_io

from astrotiles.db import models as db_models
from astrotiles.services import tiler

if TYPE_CHECKING:
    import pathlib

    from astrotiles.db import database


class ImageNotFoundError(LookupError):
    """Raised when an image id is absent from the repository."""

    def __init__(self, image_id: str) -> None:
        super().__init__(f"Image not found: {image_id}")
        self.image_id = image_id


class UnreadableRasterError(ValueError):
    """Raised when a file cannot be opened as a raster."""


def new_image_id() -> str:
    return str(uuid.uuid4())


def read_dimensions(path: pathlib.Path) -> tuple[int, int]:
    """Return ``(width, height)`` in pixels of a raster on disk.

    Raises:
        UnreadableRasterError: If GDAL cannot open the file as a raster.
    """
    try:
        with rio_tiler_io.ImageReader(input=str(path)) as image:
            return image.dataset.width, image.dataset.height
    except (rasterio_errors.RasterioIOError, rio_tiler_errors.RioTilerError) as exc:
        raise UnreadableRasterError(f"{path.name} is not a readable raster") from exc


def create_image(
    repo: database.ImageRepositoryProtocol,
    name: str,
    width: int,
    height: int,
    description: str = "",
    image_id: str | None = None,
) -> db_models.ImageRecord:
    """Register a new image in the ``queued`` state.

    Tile metadata is pre-filled with the full-quality defaults (256px PNG,
    XYZ) and the zoom those defaults imply; the tiling job overwrites it with
    what it actually generated.

    Args:
        repo: Image repository.
        name: Display name.
        width: Pixel width of the original.
        height: Pixel height of the original.
        description: Optional description.
        image_id: Identifier to use, a new UUID when omitted.

    Returns:
        The stored record.
    """
    tile_size = tiler.DEFAULT_TILE_SIZE
    image = db_models.ImageRecord(
        id=image_id or new_image_id(),
        name=name,
        description=description,
        width=width,
        height=height,
        tile_size=tile_size,
        max_zoom=tiler.compute_max_zoom(width, height, tile_size),
        format="png",
        scheme="xyz",
        tiles_base="",
        status="queued",
    )
    return repo.add(image)


def require_image(
    repo: database.ImageRepositoryProtocol,
    image_id: str,
) -> db_models.ImageRecord:
    """Fetch an image or raise ImageNotFoundError."""
    image = repo.get(image_id)
    if image is None:
        raise ImageNotFoundError(image_id)
    return image


def _update(
    repo: database.ImageRepositoryProtocol,
    image_id: str,
    **changes: Any,
) -> db_models.ImageRecord:
    image = repo.update(image_id, **changes)
    if image is None:
        raise ImageNotFoundError(image_id)
    return image


def mark_tiling_started(
    repo: database.ImageRepositoryProtocol,
    image_id: str,
) -> db_models.ImageRecord:
    return _update(repo, image_id, status="tiling", failure_reason=None)


def mark_tiling_failed(
    repo: database.ImageRepositoryProtocol,
    image_id: str,
    reason: str,
) -> db_models.ImageRecord:
    return _update(repo, image_id, status="failed", failure_reason=reason)


def update_tiles_meta(
    repo: database.ImageRepositoryProtocol,
    image_id: str,
    *,
    tile_size: int,
    max_zoom: int,
    format: db_models.TileFormat,
    tiles_base: str,
    scheme: db_models.Scheme = "xyz",
) -> db_models.ImageRecord:
    """Record a finished pyramid and mark the image ``ready``."""
    return _update(
        repo,
        image_id,
        tile_size=tile_size,
        max_zoom=max_zoom,
        format=format,
        scheme=scheme,
        tiles_base=tiles_base,
        status="ready",
        failure_reason=None,
    )


def delete_image(repo: database.ImageRepositoryProtocol, image_id: str) -> None:
    if not repo.delete(image_id):
        raise ImageNotFoundError(image_id)
