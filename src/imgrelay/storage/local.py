"""Local filesystem sink."""

import logging
from pathlib import Path
from typing import AsyncIterator

import anyio

from imgrelay.storage.base import Sink, SinkError, SinkOptions, SinkResult

logger = logging.getLogger(__name__)


class LocalSink(Sink):
    """Writes converted images under a local directory."""

    def __init__(self, base_path: str | Path = "./data", folder: str = "converted", base_url: str = ""):
        self.base_path = Path(base_path)
        self.folder = folder
        self.base_url = base_url

    async def store(self, stream: AsyncIterator[bytes], options: SinkOptions) -> SinkResult:
        """Write ``stream`` to ``{base_path}/{folder}/{identifier}.{extension}``."""
        relative_path = self.object_name(self.folder, options)
        target_path = self.base_path / relative_path

        try:
            target_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise SinkError(f"Cannot create sink directory: {e}") from e

        try:
            f = await anyio.open_file(target_path, "wb")
        except OSError as e:
            raise SinkError(f"Cannot open {target_path}: {e}") from e

        size_bytes = 0
        try:
            async with f:
                async for chunk in stream:
                    try:
                        await f.write(chunk)
                    except OSError as e:
                        raise SinkError(f"Failed to write {target_path}: {e}") from e
                    size_bytes += len(chunk)
        except BaseException:
            # Partial files from a failed or cancelled stream are not kept
            target_path.unlink(missing_ok=True)
            raise

        logger.info(
            "Converted image stored",
            extra={"path": str(target_path), "size_bytes": size_bytes},
        )
        return SinkResult(
            url=self._public_url(relative_path, target_path),
            size_bytes=size_bytes,
            identifier=options.identifier,
        )

    def _public_url(self, relative_path: str, target_path: Path) -> str:
        if self.base_url:
            return f"{self.base_url.rstrip('/')}/{relative_path}"
        return target_path.resolve().as_uri()

    def get_backend_name(self) -> str:
        return "local"
