"""Data models for image metadata records.

This module defines the ImageRecord dataclass that represents one raster
image known to the service together with the tile pyramid derived from it.
The record carries the pixel dimensions of the original, the parameters of
the generated pyramid (tile size, maximum zoom, tile encoding and addressing
scheme), the location the tiles are served from and the lifecycle status.

Status moves ``queued -> tiling -> ready`` with ``failed`` as the alternate
terminal state reachable from ``tiling``. ``tiles_base`` is only meaningful
once the record is ``ready``.

Example:
    Creating a freshly registered image:
        >>> from astrotiles.db.models import ImageRecord
        >>> image = ImageRecord(
        ...     id="7d3c...",
        ...     name="Carina Nebula",
        ...     description="NIRCam mosaic",
        ...     width=14575,
        ...     height=8441,
        ...     tile_size=256,
        ...     max_zoom=6,
        ...     format="png",
        ...     scheme="xyz",
        ...     tiles_base="",
        ...     status="queued",
        ... )
"""

from __future__ import annotations

import dataclasses
import datetime
from typing import Literal

Status = Literal["queued", "tiling", "ready", "failed"]
TileFormat = Literal["png", "jpg"]
Scheme = Literal["xyz", "tms"]

# Fields the tiling workflow is allowed to change after creation.
MUTABLE_FIELDS = frozenset(
    {
        "name",
        "description",
        "tile_size",
        "max_zoom",
        "format",
        "scheme",
        "tiles_base",
        "status",
        "failure_reason",
    }
)


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(tz=datetime.UTC)


@dataclasses.dataclass
class ImageRecord:
    """Represents a raster image and the tile pyramid generated from it.

    Attributes:
        id: Unique identifier for the image (UUID string).
        name: Human-readable image name.
        description: Free-text description shown in the browser.
        width: Pixel width of the original (immutable once set).
        height: Pixel height of the original (immutable once set).
        tile_size: Pixels per tile edge of the pyramid.
        max_zoom: Top level of the pyramid (levels run 0..max_zoom).
        format: Tile encoding, "png" (lossless) or "jpg" (fast mode).
        scheme: Tile addressing, "xyz" (row 0 at top) or "tms".
        tiles_base: Path or URL prefix of the ``{z}/{x}/{y}.{format}`` tree.
        status: Lifecycle status ("queued", "tiling", "ready", "failed").
        failure_reason: Error message of the last failed tiling run.
        created_at: Timestamp when the image was registered.
        updated_at: Timestamp of the last status or metadata change.
    """

    id: str
    name: str
    description: str
    width: int
    height: int
    tile_size: int
    max_zoom: int
    format: TileFormat
    scheme: Scheme
    tiles_base: str
    status: Status
    failure_reason: str | None = None
    created_at: datetime.datetime = dataclasses.field(default_factory=_utcnow)
    updated_at: datetime.datetime = dataclasses.field(default_factory=_utcnow)
