"""API router subpackage for the Astro Tiles backend.

Each module exposes its own APIRouter for composition in the application's
main FastAPI instance.

Submodules:
    - images: Image registration, upload, deletion, tiling triggers and
      job polling.
    - catalog: Planetary Computer, WISE and blob-listing proxies.
"""
