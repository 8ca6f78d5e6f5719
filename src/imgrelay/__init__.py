"""Image relay: signature-checked streaming image conversion."""

__version__ = "0.1.0"
