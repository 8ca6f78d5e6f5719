"""
Magic-byte signature classifier.

Classifies an upload by its leading bytes only. The client-supplied file
name and Content-Type are never consulted, so a payload cannot reach the
transformer under a framing the client picked.

Rules are checked in priority order and the first match wins:
- png: 8-byte PNG signature
- jpeg: FF D8 FF
- webp: RIFF container with a WEBP form type
- avif: ISO-BMFF ftyp box with an avif/avis brand
- gif: GIF87a / GIF89a
- svg: "<svg" anywhere in the (case-folded) text of the head
"""

from dataclasses import dataclass
from enum import Enum

# Deep enough for the ISO-BMFF ftyp brand and for SVG files with a long
# XML prolog or doctype before the root element.
HEAD_BUDGET = 4100

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"
JPEG_SIGNATURE = b"\xff\xd8\xff"
GIF_SIGNATURES = (b"GIF87a", b"GIF89a")
AVIF_BRANDS = (b"ftypavif", b"ftypavis")


class ImageKind(str, Enum):
    """Image kinds recognised by their signature."""

    PNG = "png"
    JPEG = "jpeg"
    WEBP = "webp"
    AVIF = "avif"
    GIF = "gif"
    SVG = "svg"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class MagicSignature:
    """Result of classifying a head buffer."""

    kind: ImageKind
    valid: bool


UNKNOWN_SIGNATURE = MagicSignature(kind=ImageKind.UNKNOWN, valid=False)


def classify_signature(head: bytes) -> MagicSignature:
    """
    Classify a buffer by its magic bytes.

    Args:
        head: The earliest bytes of an upload. Only the first HEAD_BUDGET
            bytes are inspected.

    Returns:
        MagicSignature for the first matching rule, or UNKNOWN_SIGNATURE

    Examples:
        >>> classify_signature(b"\\x89PNG\\r\\n\\x1a\\n" + b"\\x00" * 8).kind
        <ImageKind.PNG: 'png'>
        >>> classify_signature(b"hello world")
        MagicSignature(kind=<ImageKind.UNKNOWN: 'unknown'>, valid=False)
    """
    head = bytes(head[:HEAD_BUDGET])

    if head[:8] == PNG_SIGNATURE:
        return MagicSignature(kind=ImageKind.PNG, valid=True)

    if head[:3] == JPEG_SIGNATURE:
        return MagicSignature(kind=ImageKind.JPEG, valid=True)

    if head[:4] == b"RIFF" and head[8:12] == b"WEBP":
        return MagicSignature(kind=ImageKind.WEBP, valid=True)

    brand = head[4:12]
    if any(marker in brand for marker in AVIF_BRANDS):
        return MagicSignature(kind=ImageKind.AVIF, valid=True)

    if head.startswith(GIF_SIGNATURES):
        return MagicSignature(kind=ImageKind.GIF, valid=True)

    if "<svg" in head.decode("utf-8", errors="replace").lower():
        return MagicSignature(kind=ImageKind.SVG, valid=True)

    return UNKNOWN_SIGNATURE
