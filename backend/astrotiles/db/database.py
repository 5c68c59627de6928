"""Database helpers and repositories for image records."""

from __future__ import annotations

import contextlib
import dataclasses
import datetime
import threading
from typing import TYPE_CHECKING, Any, Protocol, cast

import psycopg2
import psycopg2.extensions
import psycopg2.extras

from astrotiles.db import models as db_models

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

    from astrotiles.core import config


def _check_changes(changes: dict[str, Any]) -> None:
    """Reject updates to fields that are fixed once a record exists."""
    illegal = set(changes) - db_models.MUTABLE_FIELDS
    if illegal:
        raise ValueError(f"Cannot update image fields: {sorted(illegal)}")


class ImageRepositoryProtocol(Protocol):
    """Protocol interface for storing and retrieving image records.

    Implementations provide persistence for ImageRecord objects,
    supporting both in-memory (testing) and PostgreSQL (production) backends.
    Writers are not coordinated beyond the storage layer: the last write wins.
    """

    def add(self, image: db_models.ImageRecord) -> db_models.ImageRecord: ...

    def get(self, image_id: str) -> db_models.ImageRecord | None: ...

    def all(self) -> Iterable[db_models.ImageRecord]: ...

    def update(
        self,
        image_id: str,
        **changes: Any,
    ) -> db_models.ImageRecord | None: ...

    def delete(self, image_id: str) -> bool: ...


class InMemoryImageRepository(ImageRepositoryProtocol):
    """Simple in-memory store for tests and local development.

    Stores image records in a dictionary guarded by a lock, since tiling
    jobs write from worker threads. Data is lost when the process exits.
    """

    def __init__(self) -> None:
        """Initialize an empty in-memory repository."""
        self._store: dict[str, db_models.ImageRecord] = {}
        self._lock = threading.Lock()

    def add(self, image: db_models.ImageRecord) -> db_models.ImageRecord:
        """Add or replace an image record.

        Args:
            image: Image record to store.

        Returns:
            The stored record.
        """
        with self._lock:
            self._store[image.id] = image
        return image

    def get(self, image_id: str) -> db_models.ImageRecord | None:
        """Retrieve an image by ID.

        Args:
            image_id: Unique identifier for the image.

        Returns:
            ImageRecord if found, None otherwise.
        """
        with self._lock:
            return self._store.get(image_id)

    def all(self) -> Iterable[db_models.ImageRecord]:
        """Get all stored images, newest first."""
        with self._lock:
            images = list(self._store.values())
        return sorted(images, key=lambda image: image.created_at, reverse=True)

    def update(
        self,
        image_id: str,
        **changes: Any,
    ) -> db_models.ImageRecord | None:
        """Apply field changes to a stored image.

        Args:
            image_id: Unique identifier for the image.
            **changes: Mutable ImageRecord fields and their new values.

        Returns:
            The updated record, or None if the image does not exist.

        Raises:
            ValueError: If a change targets an immutable field.
        """
        _check_changes(changes)
        with self._lock:
            current = self._store.get(image_id)
            if current is None:
                return None
            updated = dataclasses.replace(
                current,
                updated_at=datetime.datetime.now(datetime.UTC),
                **changes,
            )
            self._store[image_id] = updated
            return updated

    def delete(self, image_id: str) -> bool:
        with self._lock:
            return self._store.pop(image_id, None) is not None


class PostgresImageRepository(ImageRepositoryProtocol):
    """PostgreSQL-backed repository for image records.

    Persists image records to a PostgreSQL database. The images table is
    created on first use for each database URL.
    """

    CREATE_TABLE_SQL = """
    CREATE TABLE IF NOT EXISTS images (
      id TEXT PRIMARY KEY,
      name TEXT NOT NULL,
      description TEXT NOT NULL DEFAULT '',
      width INTEGER NOT NULL,
      height INTEGER NOT NULL,
      tile_size INTEGER NOT NULL,
      max_zoom INTEGER NOT NULL,
      format TEXT NOT NULL,
      scheme TEXT NOT NULL,
      tiles_base TEXT NOT NULL DEFAULT '',
      status TEXT NOT NULL,
      failure_reason TEXT,
      created_at TIMESTAMPTZ DEFAULT now(),
      updated_at TIMESTAMPTZ DEFAULT now()
    );
    """

    _schema_ready: set[str] = set()
    _schema_lock = threading.Lock()

    def __init__(self, settings: config.Settings) -> None:
        """Initialize repository with database settings.

        Args:
            settings: Application settings containing database connection URL.
        """
        self.settings = settings
        self._ensure_schema()

    def _connection(self) -> psycopg2.extensions.connection:
        """Create a new database connection."""
        return psycopg2.connect(self.settings.database_url)

    @contextlib.contextmanager
    def _cursor(self) -> Iterator[psycopg2.extras.RealDictCursor]:
        """Yield a dict cursor inside a transaction, closing the connection."""
        conn = self._connection()
        try:
            with conn, conn.cursor(
                cursor_factory=psycopg2.extras.RealDictCursor
            ) as cur:
                yield cur
        finally:
            conn.close()

    def _ensure_schema(self) -> None:
        """Ensure the images table exists for this database URL."""
        with self._schema_lock:
            if self.settings.database_url in self._schema_ready:
                return
            with self._cursor() as cur:
                cur.execute(self.CREATE_TABLE_SQL)
            self._schema_ready.add(self.settings.database_url)

    def add(self, image: db_models.ImageRecord) -> db_models.ImageRecord:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO images (
                    id, name, description, width, height, tile_size,
                    max_zoom, format, scheme, tiles_base, status,
                    failure_reason, created_at, updated_at
                ) VALUES (%(id)s, %(name)s, %(description)s, %(width)s,
                    %(height)s, %(tile_size)s, %(max_zoom)s, %(format)s,
                    %(scheme)s, %(tiles_base)s, %(status)s,
                    %(failure_reason)s, %(created_at)s, %(updated_at)s)
                ON CONFLICT (id) DO UPDATE SET
                    name = EXCLUDED.name,
                    description = EXCLUDED.description,
                    tile_size = EXCLUDED.tile_size,
                    max_zoom = EXCLUDED.max_zoom,
                    format = EXCLUDED.format,
                    scheme = EXCLUDED.scheme,
                    tiles_base = EXCLUDED.tiles_base,
                    status = EXCLUDED.status,
                    failure_reason = EXCLUDED.failure_reason,
                    updated_at = EXCLUDED.updated_at;
                """,
                self._to_row(image),
            )
        return image

    def get(self, image_id: str) -> db_models.ImageRecord | None:
        with self._cursor() as cur:
            cur.execute("SELECT * FROM images WHERE id = %s", (image_id,))
            row = cur.fetchone()
        if row is None:
            return None
        return self._from_row(cast(dict[str, object], row))

    def all(self) -> Iterable[db_models.ImageRecord]:
        with self._cursor() as cur:
            cur.execute("SELECT * FROM images ORDER BY created_at DESC")
            rows = cur.fetchall()
        return [self._from_row(cast(dict[str, object], row)) for row in rows]

    def update(
        self,
        image_id: str,
        **changes: Any,
    ) -> db_models.ImageRecord | None:
        _check_changes(changes)
        params: dict[str, object] = dict(changes)
        params["id"] = image_id
        params["updated_at"] = datetime.datetime.now(datetime.UTC)
        # Column names come from MUTABLE_FIELDS only.
        assignments = ", ".join(
            f"{column} = %({column})s" for column in [*changes, "updated_at"]
        )
        with self._cursor() as cur:
            cur.execute(
                f"UPDATE images SET {assignments} WHERE id = %(id)s RETURNING *",
                params,
            )
            row = cur.fetchone()
        if row is None:
            return None
        return self._from_row(cast(dict[str, object], row))

    def delete(self, image_id: str) -> bool:
        with self._cursor() as cur:
            cur.execute("DELETE FROM images WHERE id = %s", (image_id,))
            return cur.rowcount > 0

    @staticmethod
    def _to_row(image: db_models.ImageRecord) -> dict[str, object]:
        """Convert an ImageRecord to a parameter dictionary for SQL."""
        return dataclasses.asdict(image)

    @staticmethod
    def _from_row(row: dict[str, object]) -> db_models.ImageRecord:
        """Convert a database row dictionary to an ImageRecord.

        Args:
            row: Dictionary from database query result.

        Returns:
            ImageRecord with all fields populated. Missing timestamps
            default to the current time.
        """
        now = datetime.datetime.now(datetime.UTC)
        failure_reason = row.get("failure_reason")
        return db_models.ImageRecord(
            id=str(row["id"]),
            name=str(row["name"]),
            description=str(row.get("description") or ""),
            width=int(cast(int, row["width"])),
            height=int(cast(int, row["height"])),
            tile_size=int(cast(int, row["tile_size"])),
            max_zoom=int(cast(int, row["max_zoom"])),
            format=cast(db_models.TileFormat, str(row["format"])),
            scheme=cast(db_models.Scheme, str(row["scheme"])),
            tiles_base=str(row.get("tiles_base") or ""),
            status=cast(db_models.Status, str(row["status"])),
            failure_reason=(
                str(failure_reason) if failure_reason is not None else None
            ),
            created_at=cast(datetime.datetime, row.get("created_at") or now),
            updated_at=cast(datetime.datetime, row.get("updated_at") or now),
        )


def get_image_repository(settings: config.Settings) -> ImageRepositoryProtocol:
    """Factory function to create an image repository.

    Args:
        settings: Application settings for database connection.

    Returns:
        PostgresImageRepository instance for production use.
    """
    return PostgresImageRepository(settings)
