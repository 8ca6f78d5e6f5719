"""Streaming responses bound to a conversion's lifecycle."""

from typing import AsyncIterator

from starlette.responses import StreamingResponse
from starlette.types import Receive, Scope, Send

from imgrelay.pipeline.orchestrator import ConversionResult


class GuardedStreamingResponse(StreamingResponse):
    """Streams a ConversionResult and always runs its cleanup.

    The response is the request's single cancellation observer: whether the
    body is fully sent, fails, or the client disconnects, ``cleanup`` runs
    when the ASGI call unwinds.
    """

    def __init__(self, result: ConversionResult, first_chunk: bytes = b""):
        result.guard.observe()
        self.result = result
        super().__init__(
            _chain(first_chunk, result.output),
            media_type=result.content_type,
            headers={"Content-Disposition": f'inline; filename="{result.filename}"'},
        )

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            await self.result.cleanup()


async def _chain(first_chunk: bytes, rest: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
    if first_chunk:
        yield first_chunk
    async for chunk in rest:
        yield chunk


async def stream_result(result: ConversionResult) -> GuardedStreamingResponse:
    """Pull the first output chunk, then build the streaming response.

    Failures before the first byte (decode errors, transformer crashes)
    propagate here, while a JSON error body can still be sent. Anything that
    fails later can only cut the connection.
    """
    try:
        first_chunk = await anext(result.output, b"")
    except BaseException:
        await result.cleanup()
        raise
    return GuardedStreamingResponse(result, first_chunk)
