"""Astro Tiles backend package.

This package contains the FastAPI service behind the astronomy imagery
browser. It keeps metadata records for large raster images, turns them into
XYZ tile pyramids with ``gdal2tiles`` running as a background job, and
proxies a handful of public catalogs used by the frontend.

- Image records live in PostgreSQL (or in memory for tests)
- Tiling writes to a local web-served directory in development and to
  Azure Blob Storage (via ``azcopy``) in production
- Jobs run on a small bounded worker pool and can be polled by id
- Planetary Computer STAC search and IRSA WISE lookups are proxied as JSON

See README and module sub-docstrings for details on architecture and usage.
"""
