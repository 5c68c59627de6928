"""Tiling job: turn a registered image into an XYZ tile pyramid.

``run_tiling_job`` is the single writer of tiling status and tile metadata.
It moves an image ``queued -> tiling -> ready``, and to ``failed`` (with the
error message stored as ``failure_reason``) if anything goes wrong after the
``tiling`` transition. The exception is re-raised so the caller sees it too.

Two quality profiles exist, selected by ``settings.tile_fast_mode`` for every
image alike:

- full: 256px PNG tiles, gdal2tiles' default resampling, every zoom level
  the image needs.
- fast: 512px JPEG tiles at ``settings.tile_jpeg_quality``, bilinear
  resampling, zoom capped at ``settings.tile_fast_max_z``.

Where originals come from and where tiles go is decided by the TileStorage
passed in, not by the job.

Example:
    Run a job synchronously:
        >>> from astrotiles.services import storage, tiling_job
        >>> image = tiling_job.run_tiling_job(
        ...     image_id,
        ...     repo=repo,
        ...     storage=storage.get_tile_storage(settings),
        ...     settings=settings,
        ... )
        >>> image.status
        'ready'
"""

from __future__ import annotations

import dataclasses
from typing import TYPE_CHECKING, Literal

from astrotiles.core.logging import get_logger
from astrotiles.services import images, tiler
from astrotiles.utils import commands

if TYPE_CHECKING:
    from astrotiles.core import config
    from astrotiles.db import database
    from astrotiles.db import models as db_models
    from astrotiles.services import storage as tile_storage

LOGGER = get_logger(__name__)

FAST_TILE_SIZE = 512
FULL_TILE_SIZE = 256


@dataclasses.dataclass(frozen=True)
class TilingMode:
    """Quality/speed profile for a tiling run."""

    name: Literal["fast", "full"]
    tile_size: int
    format: db_models.TileFormat
    processes: int
    resampling: tiler.Resampling | None = None
    jpeg_quality: int | None = None
    zoom_ceiling: int | None = None

    def max_zoom(self, width: int, height: int) -> int:
        """Pyramid depth for an image, clamped to the mode's ceiling."""
        zoom = tiler.compute_max_zoom(width, height, self.tile_size)
        if self.zoom_ceiling is not None:
            zoom = min(zoom, self.zoom_ceiling)
        return zoom

    def tile_options(self, max_zoom: int) -> tiler.TileOptions:
        return tiler.TileOptions(
            max_zoom=max_zoom,
            tile_size=self.tile_size,
            processes=self.processes,
            resampling=self.resampling,
            format=self.format,
            jpeg_quality=self.jpeg_quality,
        )


def select_mode(
    settings: config.Settings,
    storage: tile_storage.TileStorage,
) -> TilingMode:
    """Build the tiling profile from settings.

    Parallelism comes from ``settings.tile_processes`` when set, otherwise
    from the storage backend's default for the chosen profile.
    """
    if settings.tile_fast_mode:
        return TilingMode(
            name="fast",
            tile_size=FAST_TILE_SIZE,
            format="jpg",
            processes=settings.tile_processes or storage.fast_processes,
            resampling="bilinear",
            jpeg_quality=settings.tile_jpeg_quality,
            zoom_ceiling=settings.tile_fast_max_z,
        )
    return TilingMode(
        name="full",
        tile_size=FULL_TILE_SIZE,
        format="png",
        processes=settings.tile_processes or storage.full_processes,
    )


def run_tiling_job(
    image_id: str,
    *,
    repo: database.ImageRepositoryProtocol,
    storage: tile_storage.TileStorage,
    settings: config.Settings,
) -> db_models.ImageRecord:
    """Tile one image and record the resulting pyramid.

    Args:
        image_id: Image to tile.
        repo: Image repository.
        storage: Backend that stages the original and publishes tiles.
        settings: Application settings (profile, interpreter path).

    Returns:
        The image record in its ``ready`` state.

    Raises:
        ImageNotFoundError: If the image does not exist (status untouched).
        CommandError: If gdal2tiles or a transfer fails (status ``failed``).
        Exception: Any other error after the ``tiling`` transition is
            re-raised after the image is marked ``failed``.
    """
    image = images.require_image(repo, image_id)
    images.mark_tiling_started(repo, image_id)

    try:
        mode = select_mode(settings, storage)
        max_zoom = mode.max_zoom(image.width, image.height)
        LOGGER.info(
            "tiling started",
            extra={
                "image_id": image_id,
                "mode": mode.name,
                "tile_size": mode.tile_size,
                "max_zoom": max_zoom,
            },
        )
        with storage.stage(image_id) as staged:
            args = tiler.build_gdal2tiles_args(
                staged.source,
                staged.output_dir,
                mode.tile_options(max_zoom),
            )
            commands.run_command([settings.gdal_python, *args])
            storage.publish(image_id, staged.output_dir)

        ready = images.update_tiles_meta(
            repo,
            image_id,
            tile_size=mode.tile_size,
            max_zoom=max_zoom,
            format=mode.format,
            tiles_base=storage.tiles_base(image_id),
        )
    except Exception as exc:
        LOGGER.exception("tiling failed", extra={"image_id": image_id})
        images.mark_tiling_failed(repo, image_id, str(exc) or type(exc).__name__)
        raise

    LOGGER.info(
        "tiling finished",
        extra={"image_id": image_id, "tiles_base": ready.tiles_base},
    )
    return ready
