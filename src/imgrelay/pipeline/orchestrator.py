"""
Per-request conversion pipeline.

Sniffs the upload's signature, rejects it or rebuilds the full stream, and
dispatches it either straight to the caller (SVG passthrough) or through
the transformer. The same pipeline optionally hands the output to a sink.

States:
    idle -> sniffing -> rejected_signature | rejected_format_mismatch
    idle -> sniffing -> validated -> dispatching
         -> passing_through | transforming -> streaming -> completed
    any non-terminal state -> aborted (consumer gone) | failed
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import AsyncGenerator, AsyncIterator, Awaitable, Callable
from uuid import uuid4

from imgrelay.pipeline.errors import (
    INVALID_SIGNATURE_MESSAGE,
    SVG_MISMATCH_MESSAGE,
    UPLOAD_FAILED_MESSAGE,
    ConversionError,
)
from imgrelay.pipeline.formats import DEFAULT_FORMAT, OutputFormat, resolve_format
from imgrelay.pipeline.lifecycle import LifecycleGuard
from imgrelay.pipeline.signature import HEAD_BUDGET, MagicSignature, classify_signature
from imgrelay.pipeline.source import ByteSource, peek_head
from imgrelay.storage.base import Sink, SinkOptions
from imgrelay.transformer.base import TransformOptions, Transformer

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    """States of a single conversion."""

    IDLE = "idle"
    SNIFFING = "sniffing"
    REJECTED_SIGNATURE = "rejected_signature"
    REJECTED_FORMAT_MISMATCH = "rejected_format_mismatch"
    VALIDATED = "validated"
    DISPATCHING = "dispatching"
    PASSING_THROUGH = "passing_through"
    TRANSFORMING = "transforming"
    STREAMING = "streaming"
    COMPLETED = "completed"
    ABORTED = "aborted"
    FAILED = "failed"


TERMINAL_STATES = frozenset(
    {
        PipelineState.REJECTED_SIGNATURE,
        PipelineState.REJECTED_FORMAT_MISMATCH,
        PipelineState.COMPLETED,
        PipelineState.ABORTED,
        PipelineState.FAILED,
    }
)

# ABORTED is reachable from every non-terminal state and is not listed
_TRANSITIONS = {
    PipelineState.IDLE: {PipelineState.SNIFFING},
    PipelineState.SNIFFING: {
        PipelineState.REJECTED_SIGNATURE,
        PipelineState.REJECTED_FORMAT_MISMATCH,
        PipelineState.VALIDATED,
        PipelineState.FAILED,
    },
    PipelineState.VALIDATED: {PipelineState.DISPATCHING},
    PipelineState.DISPATCHING: {PipelineState.PASSING_THROUGH, PipelineState.TRANSFORMING},
    PipelineState.PASSING_THROUGH: {PipelineState.STREAMING, PipelineState.FAILED},
    PipelineState.TRANSFORMING: {PipelineState.STREAMING, PipelineState.FAILED},
    PipelineState.STREAMING: {PipelineState.COMPLETED, PipelineState.FAILED},
}


@dataclass(frozen=True)
class ConversionRequest:
    """Validated request parameters."""

    target: OutputFormat
    keep_metadata: bool = False

    @classmethod
    def from_params(
        cls,
        format_token: str | None,
        keep_metadata: str | None = None,
        default_format: str = DEFAULT_FORMAT,
    ) -> "ConversionRequest":
        """Build a request from raw query values.

        ``keep_metadata`` is only truthy for the literal ``"1"``.

        Raises:
            ConversionError: VALIDATION kind for unknown format tokens
        """
        return cls(
            target=resolve_format(format_token, default_format),
            keep_metadata=keep_metadata == "1",
        )


@dataclass
class ConversionResult:
    """Output of a conversion, owned by the caller until consumed or cancelled."""

    output: AsyncIterator[bytes]
    content_type: str
    filename: str
    guard: LifecycleGuard
    cleanup: Callable[[], Awaitable[None]]


@dataclass(frozen=True)
class UploadResult:
    """Where a converted image was stored."""

    url: str
    size_bytes: int
    format: str
    identifier: str


class ConversionPipeline:
    """Runs one conversion. Create a new instance per request."""

    def __init__(
        self,
        transformer: Transformer,
        sink: Sink | None = None,
        head_budget: int = HEAD_BUDGET,
    ):
        self.transformer = transformer
        self.sink = sink
        self.head_budget = head_budget
        self.state = PipelineState.IDLE
        self.signature: MagicSignature | None = None
        self.guard = LifecycleGuard()

    @property
    def can_upload(self) -> bool:
        return self.sink is not None

    @property
    def finished(self) -> bool:
        return self.state in TERMINAL_STATES

    def _advance(self, state: PipelineState) -> None:
        if self.finished:
            raise RuntimeError(f"Pipeline already {self.state.value}, cannot enter {state.value}")
        if state is not PipelineState.ABORTED and state not in _TRANSITIONS.get(self.state, ()):
            raise RuntimeError(f"Illegal pipeline transition {self.state.value} -> {state.value}")
        logger.debug(f"Pipeline {self.state.value} -> {state.value}")
        self.state = state

    def _settle(self, state: PipelineState) -> None:
        """Enter a terminal state unless one was already reached."""
        if not self.finished:
            self._advance(state)

    async def convert(self, request: ConversionRequest, source: ByteSource) -> ConversionResult:
        """
        Sniff ``source`` and set up the output stream for ``request``.

        Ownership of ``source`` passes to the pipeline: it is closed on
        rejection, on failure, and by ``ConversionResult.cleanup``.

        Returns:
            ConversionResult whose output has not been read yet

        Raises:
            ConversionError: SIGNATURE kind when the upload is rejected,
                PIPELINE kind when the upload cannot be read
        """
        self._advance(PipelineState.SNIFFING)
        self.guard.push(source.aclose)

        try:
            peeked = await peek_head(source, self.head_budget)
        except ConversionError:
            self._settle(PipelineState.FAILED)
            await self.guard.release()
            raise
        except Exception as e:
            self._settle(PipelineState.FAILED)
            logger.error(f"Failed to read upload head: {e}", exc_info=True)
            await self.guard.release()
            raise ConversionError.failure() from e
        except BaseException:
            await self.close()
            raise

        self.signature = classify_signature(peeked.head)
        logger.info(
            "Upload sniffed",
            extra={
                "source_kind": self.signature.kind.value,
                "head_bytes": peeked.size,
                "target_format": request.target.token,
            },
        )

        if not self.signature.valid:
            self._advance(PipelineState.REJECTED_SIGNATURE)
            await self.guard.release()
            raise ConversionError.signature(INVALID_SIGNATURE_MESSAGE)

        if not request.target.accepts(self.signature):
            self._advance(PipelineState.REJECTED_FORMAT_MISMATCH)
            await self.guard.release()
            raise ConversionError.signature(SVG_MISMATCH_MESSAGE)

        self._advance(PipelineState.VALIDATED)
        stream = peeked.reassemble()
        self._advance(PipelineState.DISPATCHING)

        if request.target.passthrough:
            self._advance(PipelineState.PASSING_THROUGH)
            output: AsyncIterator[bytes] = stream
        else:
            self._advance(PipelineState.TRANSFORMING)
            transformed = self.transformer.transform(
                stream,
                TransformOptions(
                    output_format=request.target,
                    source_kind=self.signature.kind,
                    keep_metadata=request.keep_metadata,
                ),
            )
            self.guard.push(transformed.aclose)
            output = transformed

        delivered = self._deliver(output, request.target)
        self.guard.push(delivered.aclose)

        return ConversionResult(
            output=delivered,
            content_type=request.target.content_type,
            filename=request.target.filename,
            guard=self.guard,
            cleanup=self.close,
        )

    async def _deliver(
        self, output: AsyncIterator[bytes], target: OutputFormat
    ) -> AsyncGenerator[bytes, None]:
        self._advance(PipelineState.STREAMING)
        delivered = 0
        try:
            async for chunk in output:
                delivered += len(chunk)
                yield chunk
        except ConversionError:
            self._settle(PipelineState.FAILED)
            raise
        except Exception as e:
            self._settle(PipelineState.FAILED)
            logger.error(
                f"Conversion stream failed: {e}",
                extra={"target_format": target.token, "bytes_delivered": delivered},
                exc_info=True,
            )
            raise ConversionError.failure() from e

        self._settle(PipelineState.COMPLETED)
        logger.info(
            "Conversion stream completed",
            extra={"target_format": target.token, "bytes_delivered": delivered},
        )

    async def convert_and_upload(
        self, request: ConversionRequest, source: ByteSource
    ) -> UploadResult:
        """
        Convert ``source`` and store the output in the configured sink.

        Raises:
            RuntimeError: If the pipeline was built without a sink
            ConversionError: As for ``convert``; PIPELINE kind when the sink
                fails
        """
        if not self.can_upload:
            raise RuntimeError("No sink configured for uploads")

        result = await self.convert(request, source)
        options = SinkOptions(
            identifier=uuid4().hex,
            extension=request.target.token,
            content_type=result.content_type,
        )

        try:
            stored = await self.sink.store(result.output, options)
        except ConversionError:
            raise
        except Exception as e:
            self._settle(PipelineState.FAILED)
            logger.error(
                f"Upload to {self.sink.get_backend_name()} sink failed: {e}",
                extra={"identifier": options.identifier},
                exc_info=True,
            )
            raise ConversionError.failure(UPLOAD_FAILED_MESSAGE) from e
        finally:
            await result.cleanup()

        return UploadResult(
            url=stored.url,
            size_bytes=stored.size_bytes,
            format=request.target.token,
            identifier=stored.identifier,
        )

    async def close(self) -> None:
        """Abort if still running and release every stream. Idempotent."""
        if not self.finished:
            logger.info(f"Conversion aborted while {self.state.value}")
            self._advance(PipelineState.ABORTED)
        await self.guard.release()
