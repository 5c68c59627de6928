"""Catalog proxy endpoints for the imagery browser.

These routes forward requests to public astronomy services and to the tiles
blob container so the frontend can stay on a single origin. Upstream failures
surface as ``{"error": "..."}`` bodies with the upstream status code (see the
UpstreamFetchError handler registered in ``astrotiles.main``).

Example:
    Cone search around the Galactic centre:
        >>> client.get("/api/wise", params={"ra": 266.4, "dec": -29.0}).json()
        >>> # Returns: {"query": {...}, "columns": [...],
        >>> #           "first_source": {...}, "coadd_id": "...",
        >>> #           "png_url": "https://irsa.ipac.caltech.edu/..."}
"""

from typing import Any

import fastapi

from astrotiles.core import config
from astrotiles.services import catalog

router = fastapi.APIRouter(prefix="/api", tags=["catalog"])


@router.get("/planetary")
def planetary_search(
    collection: str = catalog.DEFAULT_STAC_COLLECTION,
    limit: int = fastapi.Query(6, ge=1, le=100),  # noqa: B008
    max_cloud: float = fastapi.Query(20.0, ge=0, le=100),  # noqa: B008
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
) -> dict[str, Any]:
    """Search Planetary Computer STAC for low-cloud scenes.

    Returns:
        The STAC ItemCollection from the upstream search.
    """
    return catalog.search_planetary(
        settings,
        collection=collection,
        limit=limit,
        max_cloud=max_cloud,
    )


@router.get("/wise")
def wise_lookup(
    ra: float = 266.4,
    dec: float = -29.0,
    sr: float = fastapi.Query(0.1, gt=0),  # noqa: B008
    table: str = catalog.DEFAULT_WISE_TABLE,
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
) -> dict[str, Any]:
    """Return the first WISE catalog source near a position.

    Args:
        ra: Right ascension in degrees.
        dec: Declination in degrees.
        sr: Search radius in degrees.
        table: IRSA table to search.
        settings: Application settings (injected via FastAPI Depends).
    """
    return catalog.lookup_wise(settings, ra=ra, dec=dec, sr=sr, table=table)


@router.get("/list")
def list_blobs(
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
) -> dict[str, list[str]]:
    """List blob names in the tiles container."""
    return {"blobs": catalog.list_blobs(settings)}
