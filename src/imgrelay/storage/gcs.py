"""Google Cloud Storage sink."""

import logging
from typing import AsyncIterator, Optional

import anyio
from google.cloud import storage
from google.cloud.exceptions import Forbidden, GoogleCloudError, NotFound
from starlette.concurrency import run_in_threadpool

from imgrelay.storage.base import Sink, SinkError, SinkOptions, SinkResult

logger = logging.getLogger(__name__)


class GCSSink(Sink):
    """Streams converted images into a GCS bucket."""

    def __init__(self, bucket_name: str, project_id: str = "", folder: str = "converted"):
        if not bucket_name:
            raise ValueError("GCS_BUCKET_NAME not configured")
        self.bucket_name = bucket_name
        self.project_id = project_id
        self.folder = folder
        self._client: Optional[storage.Client] = None
        self._bucket: Optional[storage.Bucket] = None

    def _get_bucket(self) -> storage.Bucket:
        """Lazy-load and cache GCS bucket."""
        if self._bucket is None:
            self._client = storage.Client(project=self.project_id or None)
            self._bucket = self._client.bucket(self.bucket_name)
        return self._bucket

    async def store(self, stream: AsyncIterator[bytes], options: SinkOptions) -> SinkResult:
        """Upload ``stream`` chunk by chunk through a resumable blob writer.

        The object is only committed when the writer is closed, so a stream
        that fails part way leaves no object behind.
        """
        blob_path = self.object_name(self.folder, options)
        blob = self._get_bucket().blob(blob_path)
        blob.content_type = options.content_type

        logger.info(
            "Uploading converted image to GCS",
            extra={"bucket": self.bucket_name, "object_name": blob_path},
        )

        try:
            writer = await run_in_threadpool(blob.open, "wb", ignore_flush=True)
        except GoogleCloudError as e:
            raise SinkError(f"Failed to open upload: gs://{self.bucket_name}/{blob_path}") from e

        size_bytes = 0
        try:
            async for chunk in stream:
                try:
                    await run_in_threadpool(writer.write, chunk)
                except (GoogleCloudError, OSError, ValueError) as e:
                    raise SinkError(f"Failed to upload chunk: {e}") from e
                size_bytes += len(chunk)
        except BaseException:
            # close() would commit the partial object, terminate() cancels the session
            logger.warning(
                "Abandoning unfinished GCS upload",
                extra={"bucket": self.bucket_name, "object_name": blob_path, "size_bytes": size_bytes},
            )
            with anyio.CancelScope(shield=True):
                try:
                    await run_in_threadpool(writer.terminate)
                except (GoogleCloudError, OSError) as e:
                    logger.warning(f"Failed to cancel GCS upload session: {e}")
            raise

        try:
            await run_in_threadpool(writer.close)
        except (NotFound, Forbidden) as e:
            logger.error(
                "Bucket not writable",
                extra={"bucket": self.bucket_name, "object_name": blob_path},
            )
            raise SinkError(f"Access denied: gs://{self.bucket_name}/{blob_path}") from e
        except GoogleCloudError as e:
            raise SinkError(f"Failed to finalize upload: {e}") from e

        logger.info(
            "Converted image uploaded",
            extra={"gcs_uri": f"gs://{self.bucket_name}/{blob_path}", "size_bytes": size_bytes},
        )
        return SinkResult(url=blob.public_url, size_bytes=size_bytes, identifier=options.identifier)

    def get_backend_name(self) -> str:
        return "gcs"
