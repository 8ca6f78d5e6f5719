"""Pillow-backed transformer."""

import io
import logging
from tempfile import SpooledTemporaryFile
from typing import IO, AsyncGenerator, AsyncIterator

from PIL import Image, ImageFile, ImageOps
from starlette.concurrency import run_in_threadpool

from imgrelay.pipeline.signature import ImageKind
from imgrelay.pipeline.source import CHUNK_SIZE
from imgrelay.transformer.base import TransformOptions

logger = logging.getLogger(__name__)

# Metadata keys Pillow carries in Image.info that identify the capture
METADATA_KEYS = ("exif", "icc_profile", "xmp", "XML:com.adobe.xmp", "comment")

# Modes each encoder can store without conversion
_ENCODER_MODES = {
    "JPEG": ("RGB", "L", "CMYK"),
    "PNG": ("1", "L", "LA", "I", "I;16", "P", "RGB", "RGBA"),
    "WEBP": ("RGB", "RGBA"),
    "AVIF": ("RGB", "RGBA"),
}


class PillowTransformer:
    """Re-encodes images with Pillow.

    Pillow decodes whole images, so the input is spooled (in memory up to
    ``spool_max_bytes``, then on disk) before decoding and the encoded
    output is streamed back in chunks from a second spool.
    """

    def __init__(
        self,
        spool_max_bytes: int = 32 * 1024 * 1024,
        chunk_size: int = CHUNK_SIZE,
        max_image_pixels: int | None = None,
        load_truncated_images: bool = True,
    ):
        self.spool_max_bytes = spool_max_bytes
        self.chunk_size = chunk_size
        if max_image_pixels is not None:
            Image.MAX_IMAGE_PIXELS = max_image_pixels
        # Truncated uploads decode with the missing rows left blank
        ImageFile.LOAD_TRUNCATED_IMAGES = load_truncated_images

    async def transform(
        self, stream: AsyncIterator[bytes], options: TransformOptions
    ) -> AsyncGenerator[bytes, None]:
        with SpooledTemporaryFile(max_size=self.spool_max_bytes) as source, \
                SpooledTemporaryFile(max_size=self.spool_max_bytes) as encoded:
            received = 0
            async for chunk in stream:
                await run_in_threadpool(source.write, chunk)
                received += len(chunk)
            source.seek(0)

            await run_in_threadpool(self._encode, source, encoded, options)
            produced = encoded.tell()
            encoded.seek(0)

            logger.info(
                "Image re-encoded",
                extra={
                    "source_kind": options.source_kind.value,
                    "target_format": options.output_format.token,
                    "input_bytes": received,
                    "output_bytes": produced,
                },
            )

            while chunk := await run_in_threadpool(encoded.read, self.chunk_size):
                yield chunk

    def _encode(self, source: IO[bytes], target: IO[bytes], options: TransformOptions) -> None:
        """Decode ``source`` and write it to ``target`` in the requested format."""
        output_format = options.output_format
        if output_format.pillow_format is None:
            raise ValueError(f"{output_format.token} has no encoder")

        if options.source_kind is ImageKind.SVG:
            source = _rasterize_svg(source)

        with Image.open(source) as opened:
            image = ImageOps.exif_transpose(opened) if options.normalize_orientation else opened.copy()

        save_options = dict(output_format.save_options)
        if options.keep_metadata:
            exif = image.getexif()
            if exif:
                save_options["exif"] = exif.tobytes()
            icc_profile = image.info.get("icc_profile")
            if icc_profile:
                save_options["icc_profile"] = icc_profile
        else:
            for key in METADATA_KEYS:
                image.info.pop(key, None)

        allowed_modes = _ENCODER_MODES.get(output_format.pillow_format)
        if allowed_modes and image.mode not in allowed_modes:
            has_alpha = "A" in image.getbands() or "transparency" in image.info
            image = image.convert("RGBA" if has_alpha and "RGBA" in allowed_modes else "RGB")

        image.save(target, format=output_format.pillow_format, **save_options)


def _rasterize_svg(source: IO[bytes]) -> IO[bytes]:
    """Render an SVG document to PNG bytes Pillow can open."""
    import cairosvg

    rendered = io.BytesIO()
    cairosvg.svg2png(file_obj=source, write_to=rendered)
    rendered.seek(0)
    return rendered
