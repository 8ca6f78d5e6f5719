"""Output format policy.

Maps each accepted ``format`` token to its response content type and the
Pillow encoder options used to produce it. SVG is accepted as a target but
is passthrough only: it carries no encoder and requires an SVG source.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

from imgrelay.pipeline.errors import UNSUPPORTED_FORMAT_MESSAGE, ConversionError
from imgrelay.pipeline.signature import ImageKind, MagicSignature

DEFAULT_FORMAT = "avif"


@dataclass(frozen=True)
class OutputFormat:
    """One entry of the format policy."""

    token: str
    content_type: str
    pillow_format: str | None = None
    save_options: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    @property
    def passthrough(self) -> bool:
        """True when the source bytes are forwarded without re-encoding."""
        return self.pillow_format is None

    @property
    def filename(self) -> str:
        return f"converted.{self.token}"

    def accepts(self, signature: MagicSignature) -> bool:
        """SVG output requires SVG input; raster targets take any valid image."""
        if not signature.valid:
            return False
        if self.token == "svg":
            return signature.kind is ImageKind.SVG
        return True


_JPEG_OPTIONS = MappingProxyType({"quality": 82, "optimize": True, "progressive": True})

FORMAT_POLICY: Mapping[str, OutputFormat] = MappingProxyType(
    {
        # effort 4 on a 0-9 slow scale is speed 6 on Pillow's 0-10 fast scale
        "avif": OutputFormat(
            token="avif",
            content_type="image/avif",
            pillow_format="AVIF",
            save_options=MappingProxyType({"quality": 50, "speed": 6}),
        ),
        "webp": OutputFormat(
            token="webp",
            content_type="image/webp",
            pillow_format="WEBP",
            save_options=MappingProxyType({"quality": 80, "method": 4}),
        ),
        "png": OutputFormat(
            token="png",
            content_type="image/png",
            pillow_format="PNG",
            save_options=MappingProxyType({"compress_level": 9, "optimize": True}),
        ),
        "jpeg": OutputFormat(
            token="jpeg",
            content_type="image/jpeg",
            pillow_format="JPEG",
            save_options=_JPEG_OPTIONS,
        ),
        "jpg": OutputFormat(
            token="jpg",
            content_type="image/jpeg",
            pillow_format="JPEG",
            save_options=_JPEG_OPTIONS,
        ),
        "svg": OutputFormat(token="svg", content_type="image/svg+xml"),
    }
)


def resolve_format(token: str | None, default: str = DEFAULT_FORMAT) -> OutputFormat:
    """
    Look up a requested format token.

    Args:
        token: Requested format, case-insensitive. Empty or None selects
            ``default``.
        default: Token used when none was requested

    Returns:
        The matching OutputFormat

    Raises:
        ConversionError: VALIDATION kind for unknown tokens
    """
    normalized = (token or default).lower()
    output_format = FORMAT_POLICY.get(normalized)
    if output_format is None:
        raise ConversionError.validation(UNSUPPORTED_FORMAT_MESSAGE)
    return output_format
