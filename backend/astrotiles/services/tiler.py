"""Tile pyramid sizing and gdal2tiles argument construction.

This module holds the two pure pieces of the tiling workflow. The zoom
calculator works out how many quadtree levels an image needs for a given tile
size, and the argument builder turns a set of TileOptions into the exact
argument list for ``python -m osgeo_utils.gdal2tiles``.

The generated pyramid is always XYZ-addressed (row 0 at the top), uses the
``raster`` profile so pixel coordinates are kept as-is, and skips the HTML
viewers and KML that gdal2tiles produces by default.

Example:
    Build arguments for a full-quality run:
        >>> from astrotiles.services import tiler
        >>> zoom = tiler.compute_max_zoom(8192, 4096, 256)
        >>> zoom
        5
        >>> tiler.build_gdal2tiles_args(
        ...     "carina.tif", "tiles/carina", tiler.TileOptions(max_zoom=zoom)
        ... )
        ['-m', 'osgeo_utils.gdal2tiles', '-p', 'raster', '--xyz', '-z', '0-5',
         '--tilesize', '256', '--webviewer', 'none', '--no-kml',
         'carina.tif', 'tiles/carina']
"""

from __future__ import annotations

import dataclasses
from typing import TYPE_CHECKING, Literal

if TYPE_CHECKING:
    import pathlib

Resampling = Literal[
    "near", "bilinear", "cubic", "cubicspline", "lanczos", "average", "mode"
]

DEFAULT_TILE_SIZE = 256


def compute_max_zoom(width: int, height: int, tile_size: int = DEFAULT_TILE_SIZE) -> int:
    """Return the top zoom level of a quadtree pyramid covering the image.

    The image is cut into ``ceil(dimension / tile_size)`` tiles along each
    axis; the result is the number of halvings needed to bring the larger
    tile count down to a single tile, i.e. ``ceil(log2(max(tiles_w,
    tiles_h)))``. An image that fits in one tile yields 0.

    Args:
        width: Image width in pixels (positive).
        height: Image height in pixels (positive).
        tile_size: Tile edge in pixels (positive).

    Returns:
        Non-negative maximum zoom level.
    """
    tiles_w = -(-width // tile_size)
    tiles_h = -(-height // tile_size)
    # ceil(log2(n)) for n >= 1 without floating point.
    return (max(tiles_w, tiles_h) - 1).bit_length()


@dataclasses.dataclass(frozen=True)
class TileOptions:
    """Options for a gdal2tiles run.

    Attributes:
        max_zoom: Top level to generate; levels ``0..max_zoom`` are produced.
        tile_size: Tile edge in pixels.
        processes: Parallelism hint, only passed on when greater than 1.
        resampling: Resampling filter, tool default when None.
        format: "png" or "jpg" (JPEG tile driver).
        jpeg_quality: JPEG quality 1-100, only used when format is "jpg".
        extra: Arguments appended verbatim before the paths.
    """

    max_zoom: int
    tile_size: int = DEFAULT_TILE_SIZE
    processes: int | None = None
    resampling: Resampling | None = None
    format: Literal["png", "jpg"] = "png"
    jpeg_quality: int | None = None
    extra: tuple[str, ...] = ()


def build_gdal2tiles_args(
    source_path: str | pathlib.Path,
    output_dir: str | pathlib.Path,
    options: TileOptions,
) -> list[str]:
    """Build the argument list for ``python -m osgeo_utils.gdal2tiles``.

    Flag order is fixed. Values are not validated here; callers pass only
    supported resampling names and sensible qualities.

    Args:
        source_path: Raster to tile.
        output_dir: Directory receiving the ``{z}/{x}/{y}`` tree.
        options: Pyramid and encoding options.

    Returns:
        Arguments to pass to the Python interpreter, ending with the source
        path and the output directory.
    """
    args = [
        "-m",
        "osgeo_utils.gdal2tiles",
        "-p",
        "raster",
        "--xyz",
        "-z",
        f"0-{options.max_zoom}",
        "--tilesize",
        str(options.tile_size),
        "--webviewer",
        "none",
        "--no-kml",
    ]

    if options.processes and options.processes > 1:
        args += ["--processes", str(options.processes)]
    if options.resampling:
        args += ["--resampling", options.resampling]
    if options.format == "jpg":
        args += ["--tiledriver", "JPEG"]
        if options.jpeg_quality:
            args += ["--jpeg-quality", str(options.jpeg_quality)]
    args += list(options.extra)

    args += [str(source_path), str(output_dir)]
    return args
