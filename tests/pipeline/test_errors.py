"""Tests for the conversion error taxonomy."""

from imgrelay.pipeline.errors import (
    CONVERSION_FAILED_MESSAGE,
    ConversionError,
    ErrorKind,
    StreamUnavailable,
)


def test_default_status_hints():
    assert ConversionError.validation("bad").status_hint == 400
    assert ConversionError.signature("bad").status_hint == 415
    assert ConversionError.failure().status_hint == 500


def test_status_hint_override():
    error = ConversionError.validation("File too large", status_hint=413)

    assert error.kind is ErrorKind.VALIDATION
    assert error.status_hint == 413


def test_failure_uses_generic_message():
    error = ConversionError.failure()

    assert error.kind is ErrorKind.PIPELINE
    assert error.message == CONVERSION_FAILED_MESSAGE
    assert str(error) == CONVERSION_FAILED_MESSAGE


def test_repr_includes_kind_and_hint():
    assert repr(ConversionError.signature("nope")) == (
        "ConversionError(kind='signature_error', message='nope', status_hint=415)"
    )


def test_stream_unavailable_is_runtime_error():
    assert issubclass(StreamUnavailable, RuntimeError)
