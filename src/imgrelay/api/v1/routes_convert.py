"""Conversion API routes."""

import logging

from fastapi import APIRouter, Request
from starlette.datastructures import UploadFile
from starlette.types import Message

from imgrelay.api.v1.responses import GuardedStreamingResponse, stream_result
from imgrelay.core.config import settings
from imgrelay.models.convert import ErrorResponse, UploadResponse
from imgrelay.pipeline.errors import FILE_TOO_LARGE_MESSAGE, NO_FILE_MESSAGE, ConversionError
from imgrelay.pipeline.orchestrator import ConversionPipeline, ConversionRequest
from imgrelay.pipeline.source import ByteSource

router = APIRouter(tags=["convert"])
upload_router = APIRouter(tags=["upload"])
logger = logging.getLogger(__name__)

ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Unknown format or missing file"},
    413: {"model": ErrorResponse, "description": "Upload exceeds MAX_FILE_SIZE"},
    415: {"model": ErrorResponse, "description": "Rejected image signature"},
    500: {"model": ErrorResponse, "description": "Conversion or upload failed"},
}


def parse_conversion_request(request: Request) -> ConversionRequest:
    """Validate query parameters before the body is touched."""
    return ConversionRequest.from_params(
        request.query_params.get("format"),
        request.query_params.get("keepMetadata"),
        default_format=settings.DEFAULT_FORMAT,
    )


def limit_body(request: Request, max_bytes: int) -> Request:
    """Return a view of ``request`` whose body reads stop past ``max_bytes``.

    A declared Content-Length over the limit is rejected before anything is
    read; bodies without one (or lying about it) are cut off while parsing.
    """
    content_length = request.headers.get("content-length", "")
    if content_length.isdigit() and int(content_length) > max_bytes:
        raise ConversionError.validation(FILE_TOO_LARGE_MESSAGE, status_hint=413)

    received = 0

    async def receive() -> Message:
        nonlocal received
        message = await request.receive()
        if message["type"] == "http.request":
            received += len(message.get("body", b""))
            if received > max_bytes:
                raise ConversionError.validation(FILE_TOO_LARGE_MESSAGE, status_hint=413)
        return message

    return Request(request.scope, receive)


async def open_upload_source(request: Request) -> ByteSource:
    """Parse the multipart body and hand over its single file field.

    Raises:
        ConversionError: VALIDATION kind when no file was sent or the body
            is larger than MAX_FILE_SIZE
    """
    form = await limit_body(request, settings.MAX_FILE_SIZE).form(max_files=1)
    upload = next((value for value in form.values() if isinstance(value, UploadFile)), None)

    if upload is None:
        await form.close()
        raise ConversionError.validation(NO_FILE_MESSAGE)

    logger.info(
        "Upload received",
        extra={"file_name": upload.filename, "size_bytes": upload.size},
    )
    return ByteSource.from_upload(upload, on_close=form.close, max_bytes=settings.MAX_FILE_SIZE)


@router.post(
    "/convert",
    responses=ERROR_RESPONSES,
)
async def convert_image(request: Request) -> GuardedStreamingResponse:
    """Convert an uploaded image and stream the result back.

    Query parameters: ``format`` (avif, webp, png, jpeg, jpg, svg) and
    ``keepMetadata`` (``1`` to keep EXIF/ICC metadata).
    """
    conversion = parse_conversion_request(request)
    source = await open_upload_source(request)

    pipeline = ConversionPipeline(request.app.state.transformer)
    result = await pipeline.convert(conversion, source)
    return await stream_result(result)


@upload_router.post(
    "/convert/upload",
    response_model=UploadResponse,
    responses=ERROR_RESPONSES,
)
async def convert_and_upload_image(request: Request) -> UploadResponse:
    """Convert an uploaded image and store the result in the configured sink."""
    conversion = parse_conversion_request(request)
    source = await open_upload_source(request)

    pipeline = ConversionPipeline(request.app.state.transformer, sink=request.app.state.sink)
    stored = await pipeline.convert_and_upload(conversion, source)

    logger.info(
        "Converted image uploaded",
        extra={"identifier": stored.identifier, "format": stored.format, "size_bytes": stored.size_bytes},
    )
    return UploadResponse(
        url=stored.url,
        size=stored.size_bytes,
        format=stored.format,
        id=stored.identifier,
    )
