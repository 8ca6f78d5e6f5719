"""Transformer capability interface."""

from dataclasses import dataclass
from typing import AsyncGenerator, AsyncIterator, Protocol

from imgrelay.pipeline.formats import OutputFormat
from imgrelay.pipeline.signature import ImageKind


@dataclass(frozen=True)
class TransformOptions:
    """How a transformer should re-encode a stream."""

    output_format: OutputFormat
    source_kind: ImageKind
    keep_metadata: bool = False
    normalize_orientation: bool = True


class Transformer(Protocol):
    """Consumes image bytes and produces re-encoded bytes."""

    def transform(
        self, stream: AsyncIterator[bytes], options: TransformOptions
    ) -> AsyncGenerator[bytes, None]:
        """Re-encode ``stream`` according to ``options``.

        Implementations are async generators: nothing is read from
        ``stream`` until the returned iterator is first advanced, and
        failures surface from iteration.
        """
        ...
