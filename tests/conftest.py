"""Pytest configuration and shared fixtures."""

import io
from typing import AsyncIterator

import pytest
from PIL import Image

from imgrelay.pipeline.source import ByteSource
from imgrelay.storage.base import Sink, SinkOptions, SinkResult
from imgrelay.transformer.base import TransformOptions

SVG_DOCUMENT = (
    b'<?xml version="1.0" encoding="UTF-8"?>\n'
    b'<svg xmlns="http://www.w3.org/2000/svg" width="8" height="8">'
    b'<rect width="8" height="8" fill="red"/></svg>\n'
)

AVIF_HEADER = b"\x00\x00\x00\x1cftypavif\x00\x00\x00\x00avifmif1miaf" + b"\x00" * 64


def image_bytes(fmt: str, mode: str = "RGB", size=(8, 8), color="red", **save_options) -> bytes:
    """Encode a solid-colour image with Pillow."""
    buffer = io.BytesIO()
    Image.new(mode, size, color).save(buffer, format=fmt, **save_options)
    return buffer.getvalue()


class TrackedUpstream:
    """An upstream chunk generator that records what was pulled and closed."""

    def __init__(self, data: bytes, chunk_size: int = 1024, fail_after: int | None = None):
        self.data = data
        self.chunk_size = chunk_size
        self.fail_after = fail_after
        self.chunks_served = 0
        self.close_calls = 0

    async def chunks(self) -> AsyncIterator[bytes]:
        for offset in range(0, len(self.data), self.chunk_size):
            if self.fail_after is not None and self.chunks_served >= self.fail_after:
                raise OSError("upstream connection reset")
            self.chunks_served += 1
            yield self.data[offset:offset + self.chunk_size]

    async def on_close(self) -> None:
        self.close_calls += 1

    def source(self) -> ByteSource:
        return ByteSource(self.chunks(), on_close=self.on_close)


class FakeTransformer:
    """Collects its input and emits a short marker instead of an image."""

    def __init__(self, output_chunks: int = 2):
        self.output_chunks = output_chunks
        self.calls: list[TransformOptions] = []
        self.received = b""
        self.closed = False
        self.close_calls = 0

    async def transform(self, stream: AsyncIterator[bytes], options: TransformOptions):
        self.calls.append(options)
        try:
            async for chunk in stream:
                self.received += chunk
            for index in range(self.output_chunks):
                yield f"converted:{options.output_format.token}:{index};".encode()
        finally:
            self.close_calls += 1
            self.closed = True


class FailingTransformer:
    """Fails while decoding, before producing any output."""

    def __init__(self):
        self.calls = 0

    async def transform(self, stream: AsyncIterator[bytes], options: TransformOptions):
        self.calls += 1
        async for _ in stream:
            pass
        raise ValueError("cannot identify image file")
        yield b""  # pragma: no cover


class FakeSink(Sink):
    """Stores streams in memory."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.objects: dict[str, bytes] = {}
        self.options: list[SinkOptions] = []

    async def store(self, stream: AsyncIterator[bytes], options: SinkOptions) -> SinkResult:
        self.options.append(options)
        data = b""
        async for chunk in stream:
            data += chunk
            if self.fail:
                raise ConnectionError("sink unavailable")
        self.objects[options.identifier] = data
        return SinkResult(
            url=f"https://cdn.example.com/{options.identifier}.{options.extension}",
            size_bytes=len(data),
            identifier=options.identifier,
        )

    def get_backend_name(self) -> str:
        return "fake"


@pytest.fixture
def png_bytes() -> bytes:
    return image_bytes("PNG")


@pytest.fixture
def jpeg_bytes() -> bytes:
    return image_bytes("JPEG")


@pytest.fixture
def gif_bytes() -> bytes:
    return image_bytes("GIF", mode="P", color=1)


@pytest.fixture
def webp_bytes() -> bytes:
    return image_bytes("WEBP")


@pytest.fixture
def avif_bytes() -> bytes:
    return AVIF_HEADER


@pytest.fixture
def svg_bytes() -> bytes:
    return SVG_DOCUMENT


@pytest.fixture
def text_bytes() -> bytes:
    return b"Just some plain text notes, definitely not an image.\n" * 10


@pytest.fixture
def fake_transformer() -> FakeTransformer:
    return FakeTransformer()


@pytest.fixture
def fake_sink() -> FakeSink:
    return FakeSink()


@pytest.fixture
def make_upstream():
    """Factory for TrackedUpstream instances."""
    return TrackedUpstream


@pytest.fixture
def failing_transformer() -> FailingTransformer:
    return FailingTransformer()


@pytest.fixture
def failing_sink() -> FakeSink:
    return FakeSink(fail=True)
