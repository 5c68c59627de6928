"""Storage backends for tiling sources and generated tiles.

The tiling workflow is the same wherever tiles end up; what differs is where
the original raster comes from and where the pyramid is published. A
TileStorage hides that difference behind these steps:

1. ``store_original(image_id, path)`` puts an uploaded original where
   ``stage`` will look for it.
2. ``stage(image_id)`` yields a StagedPaths with a local source raster and an
   empty local output directory for gdal2tiles.
3. ``publish(image_id, output_dir)`` replaces the published tree with the
   generated one.
4. ``tiles_base(image_id)`` gives the path or URL prefix stored on the record.

LocalTileStorage writes straight into the web-served tiles root and needs no
publish step; any previous pyramid is removed when staging starts.
AzureTileStorage uploads originals with azure-storage-blob, downloads them
with ``azcopy copy`` into a per-job scratch directory, tiles there, then
``azcopy sync``s the tree to the tiles container, deleting blobs the new run
did not produce. The scratch directory is removed when staging ends.

Example:
    Pick the backend from settings and stage a job:
        >>> from astrotiles.services import storage
        >>> backend = storage.get_tile_storage(settings)
        >>> with backend.stage(image_id) as staged:
        ...     run_gdal2tiles(staged.source, staged.output_dir)
        ...     backend.publish(image_id, staged.output_dir)
"""

from __future__ import annotations

import contextlib
import dataclasses
import pathlib
import shutil
import tempfile
from typing import TYPE_CHECKING, ClassVar, Protocol

from azure.storage.blob import ContainerClient

from astrotiles.core.logging import get_logger
from astrotiles.utils import commands

if TYPE_CHECKING:
    from collections.abc import Iterator

    from astrotiles.core import config

LOGGER = get_logger(__name__)


@dataclasses.dataclass(frozen=True)
class StagedPaths:
    """Local paths a tiling run reads from and writes to."""

    source: pathlib.Path
    output_dir: pathlib.Path


class TileStorage(Protocol):
    """Capability for staging originals and publishing tile pyramids.

    Attributes:
        fast_processes: Default gdal2tiles parallelism in fast mode.
        full_processes: Default gdal2tiles parallelism in full mode.
    """

    fast_processes: ClassVar[int]
    full_processes: ClassVar[int]

    def store_original(self, image_id: str, path: pathlib.Path) -> None: ...

    def stage(
        self, image_id: str
    ) -> contextlib.AbstractContextManager[StagedPaths]: ...

    def publish(self, image_id: str, output_dir: pathlib.Path) -> None: ...

    def tiles_base(self, image_id: str) -> str: ...


class LocalTileStorage:
    """Tiles an uploaded original into the local web-served tiles root.

    Source rasters are expected at ``<uploads_dir>/<image_id>.tif`` and tiles
    are written to ``<tiles_root>/<image_id>``, served under ``/tiles``.
    """

    fast_processes: ClassVar[int] = 4
    full_processes: ClassVar[int] = 2

    def __init__(
        self,
        uploads_dir: pathlib.Path,
        tiles_root: pathlib.Path,
        url_prefix: str = "/tiles",
    ) -> None:
        self.uploads_dir = uploads_dir
        self.tiles_root = tiles_root
        self.url_prefix = url_prefix.rstrip("/")

    def source_path(self, image_id: str) -> pathlib.Path:
        return self.uploads_dir / f"{image_id}.tif"

    def store_original(self, image_id: str, path: pathlib.Path) -> None:
        """Move an uploaded original to ``<uploads_dir>/<image_id>.tif``."""
        target = self.source_path(image_id)
        if path.resolve() == target.resolve():
            return
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(path, target)

    @contextlib.contextmanager
    def stage(self, image_id: str) -> Iterator[StagedPaths]:
        """Yield the upload path and an emptied tiles directory for an image.

        Tiles from a previous run are deleted first so the served tree only
        ever holds the pyramid described by the record.

        Raises:
            FileNotFoundError: If no original was uploaded for the image.
        """
        source = self.source_path(image_id)
        if not source.is_file():
            raise FileNotFoundError(f"Original not found: {source}")
        output_dir = self.tiles_root / image_id
        shutil.rmtree(output_dir, ignore_errors=True)
        output_dir.mkdir(parents=True)
        yield StagedPaths(source=source, output_dir=output_dir)

    def publish(self, image_id: str, output_dir: pathlib.Path) -> None:
        # Already in place under the served root.
        return None

    def tiles_base(self, image_id: str) -> str:
        return f"{self.url_prefix}/{image_id}"


class AzureTileStorage:
    """Downloads originals from and syncs tiles to Azure Blob Storage.

    Uploaded originals go through azure-storage-blob, tiling transfers through
    ``azcopy``; SAS tokens are appended to the container URLs as query
    strings. Only the bare tiles URL (without SAS) is stored on
    the record.
    """

    fast_processes: ClassVar[int] = 8
    full_processes: ClassVar[int] = 4

    def __init__(
        self,
        originals_base: str,
        tiles_base_url: str,
        scratch_dir: pathlib.Path,
        originals_sas: str = "",
        tiles_sas: str = "",
        azcopy_bin: str = "azcopy",
    ) -> None:
        self.originals_base = originals_base.rstrip("/")
        self.tiles_base_url = tiles_base_url.rstrip("/")
        self.scratch_dir = scratch_dir
        self.originals_sas = originals_sas
        self.tiles_sas = tiles_sas
        self.azcopy_bin = azcopy_bin

    def original_url(self, image_id: str) -> str:
        return f"{self.originals_base}/{image_id}.tif{self.originals_sas}"

    def destination_url(self, image_id: str) -> str:
        return f"{self.tiles_base_url}/{image_id}{self.tiles_sas}"

    def store_original(self, image_id: str, path: pathlib.Path) -> None:
        """Upload an original to the originals container and drop the local copy.

        Raises:
            azure.core.exceptions.AzureError: If the upload fails; the local
                file is kept in that case.
        """
        container = ContainerClient.from_container_url(
            f"{self.originals_base}{self.originals_sas}"
        )
        LOGGER.info("uploading original", extra={"image_id": image_id})
        with path.open("rb") as data:
            container.upload_blob(f"{image_id}.tif", data, overwrite=True)
        path.unlink(missing_ok=True)

    @contextlib.contextmanager
    def stage(self, image_id: str) -> Iterator[StagedPaths]:
        """Download the original into a scratch directory for the job.

        The scratch directory, including the downloaded original and the
        generated tiles, is removed when the context exits.
        """
        self.scratch_dir.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(
            prefix=f"{image_id}-", dir=self.scratch_dir
        ) as workdir:
            source = pathlib.Path(workdir) / f"{image_id}.tif"
            output_dir = pathlib.Path(workdir) / image_id
            LOGGER.info(
                "downloading original",
                extra={"image_id": image_id, "scratch": workdir},
            )
            commands.run_command(
                [self.azcopy_bin, "copy", self.original_url(image_id), source]
            )
            yield StagedPaths(source=source, output_dir=output_dir)

    def publish(self, image_id: str, output_dir: pathlib.Path) -> None:
        LOGGER.info("syncing tiles to azure", extra={"image_id": image_id})
        commands.run_command(
            [
                self.azcopy_bin,
                "sync",
                output_dir,
                self.destination_url(image_id),
                "--recursive",
                "--delete-destination=true",
            ]
        )

    def tiles_base(self, image_id: str) -> str:
        return f"{self.tiles_base_url}/{image_id}"


def get_tile_storage(settings: config.Settings) -> TileStorage:
    """Select the storage backend for the configured environment.

    Args:
        settings: Application settings.

    Returns:
        AzureTileStorage in production, LocalTileStorage otherwise.
    """
    if settings.is_production:
        return AzureTileStorage(
            originals_base=settings.azure_originals_base,
            tiles_base_url=settings.azure_tiles_base,
            scratch_dir=settings.scratch_dir,
            originals_sas=settings.azure_originals_sas,
            tiles_sas=settings.azure_tiles_sas,
            azcopy_bin=settings.azcopy_bin,
        )
    return LocalTileStorage(
        uploads_dir=settings.uploads_dir,
        tiles_root=settings.tiles_root,
    )
