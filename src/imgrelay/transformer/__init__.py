"""
Image transformers.

A transformer consumes a byte stream and produces the same image
re-encoded in another format.
"""

from imgrelay.transformer.base import TransformOptions, Transformer
from imgrelay.transformer.pillow import PillowTransformer

__all__ = [
    "PillowTransformer",
    "TransformOptions",
    "Transformer",
]
