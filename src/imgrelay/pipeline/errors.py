"""Error taxonomy for the conversion pipeline."""

from enum import Enum


class ErrorKind(str, Enum):
    """What went wrong, independent of where it was raised."""

    VALIDATION = "validation_error"  # Input rejected before any stream I/O
    SIGNATURE = "signature_error"  # Content rejected after inspection
    PIPELINE = "pipeline_failure"  # Source, transformer or sink failed


DEFAULT_STATUS_HINTS = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.SIGNATURE: 415,
    ErrorKind.PIPELINE: 500,
}

UNSUPPORTED_FORMAT_MESSAGE = "Unsupported format. Use one of: avif, webp, png, jpeg, jpg, svg."
NO_FILE_MESSAGE = "No file uploaded"
FILE_TOO_LARGE_MESSAGE = "File too large"
INVALID_SIGNATURE_MESSAGE = "Unsupported or invalid image signature"
SVG_MISMATCH_MESSAGE = "SVG output only supported for SVG inputs"
CONVERSION_FAILED_MESSAGE = "Conversion failed"
UPLOAD_FAILED_MESSAGE = "Upload failed"


class ConversionError(Exception):
    """A request-level failure tagged with its kind and a status hint.

    Callers switch on ``kind`` rather than on exception subclasses. The
    message is safe to return to the client; underlying causes are chained
    with ``raise ... from`` and only ever logged.
    """

    def __init__(self, kind: ErrorKind, message: str, status_hint: int | None = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.status_hint = status_hint or DEFAULT_STATUS_HINTS[kind]

    @classmethod
    def validation(cls, message: str, status_hint: int | None = None) -> "ConversionError":
        return cls(ErrorKind.VALIDATION, message, status_hint)

    @classmethod
    def signature(cls, message: str) -> "ConversionError":
        return cls(ErrorKind.SIGNATURE, message)

    @classmethod
    def failure(cls, message: str = CONVERSION_FAILED_MESSAGE) -> "ConversionError":
        return cls(ErrorKind.PIPELINE, message)

    def __repr__(self) -> str:
        return f"ConversionError(kind={self.kind.value!r}, message={self.message!r}, status_hint={self.status_hint})"


class StreamUnavailable(RuntimeError):
    """Raised when a byte source is used after it was closed or handed off."""
    pass
