"""Upstream catalog and storage lookups proxied to the frontend.

The imagery browser pulls candidate images from three places besides the
local image records:

- Microsoft Planetary Computer STAC search (recent low-cloud Landsat scenes),
- the IRSA Simple Cone Search service for the AllWISE catalog, together with
  the WISE finder-chart cutout for the same position,
- the blob container holding generated tiles.

Upstream problems (non-success status, unreachable host, unparseable body)
are raised as UpstreamFetchError carrying the HTTP status to report, which the
API turns into a ``{"error": ...}`` JSON response.

Example:
    Look up the nearest AllWISE source to the Galactic centre:
        >>> from astrotiles.services import catalog
        >>> result = catalog.lookup_wise(settings, ra=266.4, dec=-29.0, sr=0.1)
        >>> result["coadd_id"], result["png_url"]
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any

import requests
from azure.core import exceptions as azure_exceptions
from azure.storage.blob import BlobServiceClient
from pystac_client import Client
from pystac_client import exceptions as pc_exceptions

from astrotiles.core.logging import get_logger

if TYPE_CHECKING:
    from astrotiles.core import config

LOGGER = get_logger(__name__)

DEFAULT_STAC_COLLECTION = "landsat-8-c2-l2"
DEFAULT_WISE_TABLE = "allwise_p3as_psd"

_JPG_URL_RE = re.compile(r"<jpgurl>([^<]+)</jpgurl>", re.IGNORECASE)


class UpstreamFetchError(RuntimeError):
    """Raised when an upstream service fails or returns unusable data.

    Attributes:
        status_code: HTTP status to report to the client.
    """

    def __init__(self, message: str, status_code: int = 502) -> None:
        super().__init__(message)
        self.status_code = status_code


def _request(
    method: str,
    url: str,
    service: str,
    settings: config.Settings,
    **kwargs: Any,
) -> requests.Response:
    """Issue a request and raise UpstreamFetchError on transport or status errors."""
    try:
        response = requests.request(
            method, url, timeout=settings.upstream_timeout, **kwargs
        )
    except requests.RequestException as exc:
        raise UpstreamFetchError(f"{service} request failed: {exc}") from exc
    if not response.ok:
        raise UpstreamFetchError(
            f"{service} returned {response.status_code}",
            response.status_code,
        )
    return response


def search_planetary(
    settings: config.Settings,
    *,
    collection: str = DEFAULT_STAC_COLLECTION,
    limit: int = 6,
    max_cloud: float = 20.0,
) -> dict[str, Any]:
    """Run a STAC item search against the Planetary Computer.

    Returns:
        The matching items as a GeoJSON FeatureCollection dictionary.

    Raises:
        UpstreamFetchError: If the catalog cannot be opened or searched.
    """
    try:
        client = Client.open(
            settings.planetary_stac_url, timeout=settings.upstream_timeout
        )
    except (pc_exceptions.APIError, requests.RequestException) as exc:
        raise UpstreamFetchError(f"Planetary Computer request failed: {exc}") from exc

    try:
        search = client.search(
            collections=[collection],
            max_items=limit,
            limit=limit,
            query={"eo:cloud_cover": {"lt": max_cloud}},
        )
        item_collection = search.item_collection()
    except (pc_exceptions.APIError, requests.RequestException) as exc:
        raise UpstreamFetchError(f"Planetary Computer search failed: {exc}") from exc

    LOGGER.debug(
        "planetary stac response",
        extra={"collection": collection, "matched": len(item_collection.items)},
    )
    return item_collection.to_dict()


def _parse_pipe_row(line: str) -> list[str]:
    cells = line.strip().removeprefix("|").removesuffix("|").split("|")
    return [cell.strip() for cell in cells if cell.strip()]


def parse_ipac_table(text: str) -> tuple[list[str], dict[str, str | None]]:
    """Extract the column names and the first data row of an IPAC table.

    The first ``|``-delimited line holds the column names; further header
    lines (types, units, nulls) and blank or ``\\``-keyword lines are skipped.
    Values are split on whitespace; the literal ``null`` becomes None.

    Returns:
        Column names and a mapping of lower-cased column name to value.

    Raises:
        UpstreamFetchError: 500 if no header line exists, 404 if the table
            has no data rows.
    """
    lines = text.splitlines()
    header_idx = next(
        (i for i, line in enumerate(lines) if line.strip().startswith("|")),
        None,
    )
    if header_idx is None:
        LOGGER.error("unrecognised IPAC table", extra={"sample": lines[:15]})
        raise UpstreamFetchError("WISE metadata format not recognized", 500)

    columns = _parse_pipe_row(lines[header_idx])

    data_idx = header_idx + 1
    while data_idx < len(lines) and lines[data_idx].strip().startswith("|"):
        data_idx += 1
    while data_idx < len(lines) and (
        not lines[data_idx].strip() or lines[data_idx].strip().startswith("\\")
    ):
        data_idx += 1
    if data_idx >= len(lines):
        raise UpstreamFetchError("No data rows found", 404)

    values = lines[data_idx].split()
    first_source = {
        column.lower(): (None if value == "null" else value)
        for column, value in zip(columns, values, strict=False)
    }
    return columns, first_source


def finder_chart_subset_arcmin(sr_deg: float) -> float:
    """Cutout size in arcminutes covering the search radius, within 0.1-60."""
    return max(0.1, min(60.0, 2 * sr_deg * 60))


def extract_jpg_url(xml: str) -> str | None:
    match = _JPG_URL_RE.search(xml)
    return match.group(1) if match else None


def fetch_finder_chart_url(
    settings: config.Settings,
    ra: float,
    dec: float,
    sr_deg: float,
) -> str | None:
    """Ask the IRSA finder chart service for a WISE cutout image URL.

    Failures are logged and reported as None; the catalog row is still useful
    without a preview image.
    """
    params = {
        "mode": "prog",
        "locstr": f"{ra} {dec}",
        "survey": "WISE",
        "subsetsize": f"{finder_chart_subset_arcmin(sr_deg):.3f}",
        "reproject": "true",
    }
    url = f"{settings.irsa_base_url.rstrip('/')}/applications/finderchart/servlet/api"
    try:
        response = _request("GET", url, "FinderChart", settings, params=params)
    except UpstreamFetchError:
        LOGGER.warning("finder chart fetch failed", exc_info=True)
        return None

    jpg_url = extract_jpg_url(response.text)
    if jpg_url is None:
        LOGGER.warning(
            "finder chart response had no jpgurl",
            extra={"sample": response.text[:500]},
        )
    return jpg_url


def lookup_wise(
    settings: config.Settings,
    *,
    ra: float,
    dec: float,
    sr: float,
    table: str = DEFAULT_WISE_TABLE,
) -> dict[str, Any]:
    """Cone-search a WISE table and attach a finder-chart image URL.

    Args:
        settings: Application settings (IRSA root, timeout).
        ra: Right ascension in degrees.
        dec: Declination in degrees.
        sr: Search radius in degrees.
        table: IRSA catalog table name.

    Returns:
        Dictionary with the query, column names, first matching source,
        its coadd (or source) id and the finder chart URL.
    """
    params = {
        "table": table,
        "RA": ra,
        "DEC": dec,
        "SR": sr,
        "format": "ipac_table",
    }
    url = f"{settings.irsa_base_url.rstrip('/')}/SCS"
    response = _request("GET", url, "WISE API", settings, params=params)
    columns, first_source = parse_ipac_table(response.text)

    return {
        "query": {"table": table, "ra": ra, "dec": dec, "sr": sr},
        "columns": columns,
        "first_source": first_source,
        "coadd_id": first_source.get("coadd_id") or first_source.get("source_id"),
        "png_url": fetch_finder_chart_url(settings, ra, dec, sr),
    }


def list_blobs(settings: config.Settings) -> list[str]:
    """Names of all blobs in the configured tiles container."""
    if not settings.azure_storage_connection_string:
        raise UpstreamFetchError(
            "Missing AZURE_STORAGE_CONNECTION_STRING in environment", 500
        )
    try:
        service = BlobServiceClient.from_connection_string(
            settings.azure_storage_connection_string
        )
        container = service.get_container_client(settings.azure_storage_container)
        return [blob.name for blob in container.list_blobs()]
    except (azure_exceptions.AzureError, ValueError) as exc:
        raise UpstreamFetchError(f"Blob listing failed: {exc}") from exc
