"""Tests for head peeking and stream reassembly."""

import io

import pytest
from starlette.datastructures import UploadFile

from imgrelay.pipeline.errors import ConversionError, ErrorKind, StreamUnavailable
from imgrelay.pipeline.signature import HEAD_BUDGET
from imgrelay.pipeline.source import ByteSource, SourceState, peek_head


def pattern(size: int) -> bytes:
    """Non-repeating-at-chunk-boundaries test data."""
    return bytes((i * 31 + i // 256) % 256 for i in range(size))


async def collect(stream) -> bytes:
    data = b""
    async for chunk in stream:
        data += chunk
    return data


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "size,chunk_size",
    [
        (100, 7),  # shorter than the budget
        (HEAD_BUDGET, 1024),  # exactly the budget
        (HEAD_BUDGET, HEAD_BUDGET),
        (HEAD_BUDGET + 1, 4096),  # one byte past
        (50_000, 1000),  # chunk straddles the head boundary
        (200_000, 65536),  # head is a slice of the first chunk
    ],
)
async def test_reassembled_stream_reproduces_source(make_upstream, size, chunk_size):
    """Test that head + remainder equals the original bytes exactly."""
    data = pattern(size)
    source = make_upstream(data, chunk_size=chunk_size).source()

    peeked = await peek_head(source)
    stream = peeked.reassemble()

    assert peeked.head == data[:HEAD_BUDGET]
    assert await collect(stream) == data
    assert stream.bytes_emitted == size


@pytest.mark.asyncio
async def test_peek_head_short_source_is_not_an_error(make_upstream):
    """Test that a source ending before the budget yields a short head."""
    source = make_upstream(b"GIF89a", chunk_size=2).source()

    peeked = await peek_head(source)

    assert peeked.head == b"GIF89a"
    assert peeked.size == 6
    assert source.at_eof
    assert source.state is SourceState.PEEKED


@pytest.mark.asyncio
async def test_peek_head_empty_source(make_upstream):
    """Test peeking an empty upload."""
    source = make_upstream(b"").source()

    peeked = await peek_head(source)

    assert peeked.head == b""
    assert await collect(peeked.reassemble()) == b""


@pytest.mark.asyncio
async def test_peek_head_pulls_only_what_the_budget_needs(make_upstream):
    """Test that peeking stops pulling upstream once the budget is met."""
    upstream = make_upstream(pattern(100_000), chunk_size=1000)
    source = upstream.source()

    await peek_head(source)

    # ceil(4100 / 1000) chunks, the surplus of the last one stays pending
    assert upstream.chunks_served == 5
    assert source.bytes_pulled == 5000


@pytest.mark.asyncio
async def test_reassembled_stream_pulls_on_demand(make_upstream):
    """Test that the reassembled stream never reads ahead of its consumer."""
    upstream = make_upstream(pattern(20_000), chunk_size=1000)
    source = upstream.source()
    stream = (await peek_head(source)).reassemble()

    head = await stream.__anext__()
    assert len(head) == HEAD_BUDGET
    assert upstream.chunks_served == 5

    # Surplus of the fifth chunk, still no new upstream pull
    surplus = await stream.__anext__()
    assert len(surplus) == 900
    assert upstream.chunks_served == 5

    await stream.__anext__()
    assert upstream.chunks_served == 6


@pytest.mark.asyncio
async def test_peek_head_custom_budget(make_upstream):
    """Test peeking with a smaller budget."""
    data = pattern(64)
    source = make_upstream(data, chunk_size=64).source()

    peeked = await peek_head(source, budget=12)

    assert peeked.head == data[:12]
    assert await collect(peeked.reassemble()) == data


@pytest.mark.asyncio
async def test_reassemble_after_close_raises(make_upstream):
    """Test that a destroyed source cannot be reassembled."""
    source = make_upstream(pattern(10_000)).source()
    peeked = await peek_head(source)

    await source.aclose()

    with pytest.raises(StreamUnavailable):
        peeked.reassemble()


@pytest.mark.asyncio
async def test_reassemble_twice_raises(make_upstream):
    """Test that a source can only be handed on once."""
    peeked = await peek_head(make_upstream(pattern(10_000)).source())
    peeked.reassemble()

    with pytest.raises(StreamUnavailable):
        peeked.reassemble()


@pytest.mark.asyncio
async def test_peek_head_requires_fresh_source(make_upstream):
    """Test that a source cannot be peeked twice."""
    source = make_upstream(pattern(10_000)).source()
    await peek_head(source)

    with pytest.raises(StreamUnavailable):
        await peek_head(source)


@pytest.mark.asyncio
async def test_read_after_close_raises(make_upstream):
    """Test that reading a closed source fails loudly."""
    source = make_upstream(pattern(100)).source()
    await source.aclose()

    with pytest.raises(StreamUnavailable):
        await source.read()


@pytest.mark.asyncio
async def test_reassembled_stream_after_close_raises(make_upstream):
    """Test that iterating a closed reassembled stream fails loudly."""
    source = make_upstream(pattern(10_000)).source()
    stream = (await peek_head(source)).reassemble()

    await stream.aclose()

    assert source.closed
    with pytest.raises(StreamUnavailable):
        await stream.__anext__()


@pytest.mark.asyncio
async def test_aclose_is_idempotent(make_upstream):
    """Test that closing many times releases the upstream once."""
    upstream = make_upstream(pattern(100))
    source = upstream.source()

    await source.aclose()
    await source.aclose()
    await source.aclose()

    assert source.closed
    assert upstream.close_calls == 1


@pytest.mark.asyncio
async def test_read_respects_size(make_upstream):
    """Test that partial reads keep the rest of a chunk pending."""
    source = make_upstream(b"abcdefghij", chunk_size=10).source()

    assert await source.read(3) == b"abc"
    assert await source.read(3) == b"def"
    assert await source.read() == b"ghij"
    assert await source.read() == b""
    assert source.at_eof


@pytest.mark.asyncio
async def test_empty_upstream_chunks_are_skipped():
    """Test that empty chunks are not mistaken for end of stream."""

    async def chunks():
        yield b"ab"
        yield b""
        yield b"cd"

    source = ByteSource(chunks())

    assert await source.read() == b"ab"
    assert await source.read() == b"cd"
    assert await source.read() == b""


@pytest.mark.asyncio
async def test_from_upload_round_trip():
    """Test wrapping a parsed multipart file."""
    data = pattern(150_000)
    upload = UploadFile(file=io.BytesIO(data), size=len(data), filename="photo.png")
    source = ByteSource.from_upload(upload, chunk_size=8192)

    peeked = await peek_head(source)
    stream = peeked.reassemble()
    output = await collect(stream)
    await stream.aclose()

    assert output == data
    assert upload.file.closed


@pytest.mark.asyncio
async def test_max_bytes_stops_oversized_source(make_upstream):
    """Test that pulling past the size cap is a 413 validation error."""
    upstream = make_upstream(pattern(10_000), chunk_size=1000)
    source = ByteSource(upstream.chunks(), on_close=upstream.on_close, max_bytes=2500)

    with pytest.raises(ConversionError) as exc_info:
        await peek_head(source)

    assert exc_info.value.kind is ErrorKind.VALIDATION
    assert exc_info.value.status_hint == 413
    assert upstream.chunks_served == 3


@pytest.mark.asyncio
async def test_max_bytes_allows_exact_size(make_upstream):
    data = pattern(5000)
    upstream = make_upstream(data, chunk_size=1000)
    source = ByteSource(upstream.chunks(), max_bytes=5000)

    assert await collect((await peek_head(source)).reassemble()) == data
