"""
Sniff-then-reassemble conversion pipeline.

Peeks the head of an upload, classifies it by magic bytes, rebuilds the
full byte stream and dispatches it to a passthrough or a transformer.
"""
