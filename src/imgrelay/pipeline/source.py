"""Byte sources with an explicit peek-then-reassemble lifecycle.

A ``ByteSource`` moves through ``FRESH -> PEEKED -> REASSEMBLED`` and can be
closed from any state. Sources are pull-based: nothing is read from upstream
until a consumer asks for it, so a slow consumer holds the upload back
instead of letting it buffer up in memory.
"""

import logging
from enum import Enum
from typing import AsyncGenerator, Awaitable, Callable

from starlette.datastructures import UploadFile

from imgrelay.pipeline.errors import FILE_TOO_LARGE_MESSAGE, ConversionError, StreamUnavailable
from imgrelay.pipeline.signature import HEAD_BUDGET

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024  # 64KB chunks


class SourceState(str, Enum):
    """Lifecycle of a byte source."""

    FRESH = "fresh"
    PEEKED = "peeked"
    REASSEMBLED = "reassembled"
    CLOSED = "closed"


class ByteSource:
    """Single-owner handle over an inbound stream of byte chunks.

    When ``max_bytes`` is set, pulling past it raises a 413 validation error.
    """

    def __init__(
        self,
        chunks: AsyncGenerator[bytes, None],
        on_close: Callable[[], Awaitable[None]] | None = None,
        max_bytes: int | None = None,
    ):
        self._chunks = chunks
        self._on_close = on_close
        self.max_bytes = max_bytes
        self._pending = b""
        self._exhausted = False
        self.state = SourceState.FRESH
        self.bytes_pulled = 0

    @classmethod
    def from_upload(
        cls,
        upload: UploadFile,
        chunk_size: int = CHUNK_SIZE,
        on_close: Callable[[], Awaitable[None]] | None = None,
        max_bytes: int | None = None,
    ) -> "ByteSource":
        """Wrap a parsed multipart file field."""

        async def _read_chunks() -> AsyncGenerator[bytes, None]:
            while chunk := await upload.read(chunk_size):
                yield chunk

        return cls(_read_chunks(), on_close=on_close or upload.close, max_bytes=max_bytes)

    @property
    def closed(self) -> bool:
        return self.state is SourceState.CLOSED

    @property
    def at_eof(self) -> bool:
        """True once upstream is exhausted and nothing is left pending."""
        return self._exhausted and not self._pending

    def require_state(self, expected: SourceState) -> None:
        """Raise StreamUnavailable unless the source is in ``expected``."""
        if self.state is not expected:
            raise StreamUnavailable(
                f"byte source is {self.state.value}, expected {expected.value}"
            )

    async def _pull(self) -> bytes:
        """Pull the next non-empty upstream chunk, or b"" at end of stream."""
        while not self._exhausted:
            try:
                chunk = await self._chunks.__anext__()
            except StopAsyncIteration:
                self._exhausted = True
                break
            if chunk:
                self.bytes_pulled += len(chunk)
                if self.max_bytes is not None and self.bytes_pulled > self.max_bytes:
                    raise ConversionError.validation(FILE_TOO_LARGE_MESSAGE, status_hint=413)
                return bytes(chunk)
        return b""

    async def read(self, size: int | None = None) -> bytes:
        """Read up to ``size`` bytes (a whole chunk when ``size`` is None).

        Suspends only when nothing is pending and upstream has not ended.
        Whatever part of a pulled chunk is not returned stays pending for
        the next read. Returns b"" at end of stream.

        Raises:
            StreamUnavailable: If the source has been closed
        """
        if self.closed:
            raise StreamUnavailable("byte source is closed")

        if not self._pending:
            self._pending = await self._pull()

        if size is None or size >= len(self._pending):
            data, self._pending = self._pending, b""
        else:
            data, self._pending = self._pending[:size], self._pending[size:]
        return data

    async def aclose(self) -> None:
        """Close the source and its upstream. Safe to call more than once."""
        if self.closed:
            return
        self.state = SourceState.CLOSED
        self._pending = b""
        try:
            await self._chunks.aclose()
        finally:
            if self._on_close is not None:
                await self._on_close()
        logger.debug("Byte source closed", extra={"bytes_pulled": self.bytes_pulled})


class ReassembledStream:
    """The original byte stream rebuilt from a peeked head and the source.

    Yields the head first, then the source's remainder one chunk per
    ``__anext__`` call.
    """

    def __init__(self, source: ByteSource, head: bytes):
        self._source = source
        self._head = head
        self.bytes_emitted = 0

    def __aiter__(self) -> "ReassembledStream":
        return self

    async def __anext__(self) -> bytes:
        if self._head:
            chunk, self._head = self._head, b""
        else:
            chunk = await self._source.read()
            if not chunk:
                raise StopAsyncIteration
        self.bytes_emitted += len(chunk)
        return chunk

    async def aclose(self) -> None:
        self._head = b""
        await self._source.aclose()


class PeekedSource:
    """A source whose head has been captured but not yet handed on."""

    def __init__(self, source: ByteSource, head: bytes):
        self.source = source
        self.head = head

    @property
    def size(self) -> int:
        return len(self.head)

    def reassemble(self) -> ReassembledStream:
        """Hand the head and the rest of the source on as one stream.

        Raises:
            StreamUnavailable: If the source was closed or already reassembled
        """
        self.source.require_state(SourceState.PEEKED)
        self.source.state = SourceState.REASSEMBLED
        return ReassembledStream(self.source, self.head)


async def peek_head(source: ByteSource, budget: int = HEAD_BUDGET) -> PeekedSource:
    """
    Capture up to ``budget`` leading bytes of a fresh source.

    The captured bytes are kept in the returned PeekedSource and any surplus
    of the last pulled chunk stays pending in the source, so nothing read
    here is lost to the eventual consumer. A source shorter than the budget
    simply yields a shorter head.

    Args:
        source: A source in the FRESH state
        budget: Maximum number of bytes to capture

    Returns:
        PeekedSource holding the head; the source is left PEEKED

    Raises:
        StreamUnavailable: If the source is not FRESH
    """
    source.require_state(SourceState.FRESH)

    chunks: list[bytes] = []
    captured = 0
    while captured < budget:
        chunk = await source.read(budget - captured)
        if not chunk:
            break
        chunks.append(chunk)
        captured += len(chunk)

    source.state = SourceState.PEEKED
    return PeekedSource(source, b"".join(chunks))
