"""Main application entrypoint for the image relay."""

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from imgrelay.api.middleware import RequestLoggingMiddleware
from imgrelay.api.v1 import routes_health
from imgrelay.api.v1.routes_convert import router as convert_router, upload_router
from imgrelay.core.config import settings
from imgrelay.core.logging import setup_logging
from imgrelay.pipeline.errors import CONVERSION_FAILED_MESSAGE, ConversionError, ErrorKind
from imgrelay.storage.base import Sink
from imgrelay.storage.factory import get_sink
from imgrelay.transformer import PillowTransformer, Transformer

logger = logging.getLogger(__name__)


async def conversion_error_handler(request: Request, exc: ConversionError) -> JSONResponse:
    """Render a ConversionError as ``{"error": message}`` with its status hint."""
    if exc.kind is ErrorKind.PIPELINE:
        logger.error(
            f"Conversion failed: {exc.__cause__ or exc.message}",
            extra={"path": request.url.path, "error_kind": exc.kind.value},
        )
    else:
        logger.info(
            f"Request rejected: {exc.message}",
            extra={"path": request.url.path, "error_kind": exc.kind.value},
        )
    return JSONResponse(status_code=exc.status_hint, content={"error": exc.message})


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled error: {exc}", extra={"path": request.url.path}, exc_info=exc)
    return JSONResponse(status_code=500, content={"error": CONVERSION_FAILED_MESSAGE})


def create_app(
    transformer: Transformer | None = None,
    sink: Sink | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        transformer: Transformer used for raster targets. Defaults to a
            PillowTransformer configured from settings.
        sink: Storage sink for the upload endpoint. Defaults to the sink
            configured in settings; when there is none the upload endpoint
            is not mounted.

    Returns:
        FastAPI: Configured FastAPI application instance
    """
    setup_logging()

    if transformer is None:
        transformer = PillowTransformer(
            spool_max_bytes=settings.transform_spool_bytes,
            max_image_pixels=settings.MAX_IMAGE_PIXELS,
            load_truncated_images=settings.LOAD_TRUNCATED_IMAGES,
        )
    if sink is None:
        sink = get_sink()

    app = FastAPI(
        title=settings.SERVICE_NAME,
        version=settings.SERVICE_VERSION,
    )
    app.state.transformer = transformer
    app.state.sink = sink

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    app.add_exception_handler(ConversionError, conversion_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    # Register routers
    app.include_router(routes_health.router, tags=["health"])
    app.include_router(convert_router)
    if sink is not None:
        app.include_router(upload_router)
        logger.info(f"Upload endpoint enabled with {sink.get_backend_name()} sink")

    return app


# Export app instance for ASGI servers
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.HOST, port=settings.PORT)
