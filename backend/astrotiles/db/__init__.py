"""Database interface and repository abstractions.

This package holds the ImageRecord model and the repositories that persist
it. The in-memory repository backs tests and quick local runs; the PostgreSQL
repository is what the API resolves in normal operation.

Example:
    Use in a service or FastAPI dependency:
        >>> from astrotiles.db import database
        >>> repo = database.get_image_repository(settings)
"""
