"""FastAPI application entrypoint and configuration.

This module provides the application factory that configures logging, sets
up CORS middleware, includes the image and catalog routers, serves locally
generated tiles in development and exposes a health check endpoint.

Example:
    The application can be run with uvicorn:
        $ uvicorn astrotiles.main:app --reload

    Or imported and used programmatically:
        >>> from astrotiles.main import app
        >>> # Use app in ASGI server
"""

import fastapi
from fastapi import responses, staticfiles
from fastapi.middleware import cors

from astrotiles.api import catalog as api_catalog
from astrotiles.api import images as api_images
from astrotiles.core import config
from astrotiles.core.logging import configure_logging, get_logger
from astrotiles.services import catalog

LOGGER = get_logger(__name__)


async def _upstream_error_handler(
    request: fastapi.Request,
    exc: Exception,
) -> responses.JSONResponse:
    """Translate UpstreamFetchError into a JSON error body."""
    status_code = getattr(exc, "status_code", 502)
    LOGGER.warning(
        "upstream fetch failed",
        extra={"path": request.url.path, "status_code": status_code},
    )
    return responses.JSONResponse({"error": str(exc)}, status_code=status_code)


def create_app() -> fastapi.FastAPI:
    """Create and configure the FastAPI application.

    In development the local tiles root is mounted at ``/tiles`` so that
    ``tiles_base`` values like ``/tiles/<id>`` resolve against this service.
    In production tiles are served from blob storage instead.

    Returns:
        Configured FastAPI application instance ready for ASGI server.
    """
    settings = config.get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.json_logs)

    app = fastapi.FastAPI(title="Astro Tiles", version="0.1.0")

    app.include_router(api_images.router)
    app.include_router(api_catalog.router)
    app.add_exception_handler(catalog.UpstreamFetchError, _upstream_error_handler)

    if not settings.is_production:
        app.mount(
            "/tiles",
            staticfiles.StaticFiles(directory=settings.tiles_root, check_dir=False),
            name="tiles",
        )

    app.add_middleware(
        cors.CORSMiddleware,  # type: ignore[arg-type]
        allow_origins=settings.allow_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/api/health")
    async def health() -> dict[str, bool]:  # type: ignore[misc]
        """Health check endpoint for monitoring and load balancers."""
        return {"ok": True}

    LOGGER.info(
        "app configured",
        extra={"environment": settings.environment, "fast_mode": settings.tile_fast_mode},
    )
    return app


app = create_app()
