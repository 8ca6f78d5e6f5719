"""Sink selection from settings."""

import logging

from imgrelay.core.config import Settings, settings
from imgrelay.storage.base import Sink
from imgrelay.storage.gcs import GCSSink
from imgrelay.storage.local import LocalSink

logger = logging.getLogger(__name__)


def get_sink(config: Settings = settings) -> Sink | None:
    """Build the configured sink, or None when uploads are disabled.

    Raises:
        ValueError: If STORAGE_BACKEND is unknown or incompletely configured
    """
    backend = config.STORAGE_BACKEND.strip().lower()

    if not backend:
        logger.info("No storage backend configured, upload endpoint disabled")
        return None

    if backend == "gcs":
        return GCSSink(
            bucket_name=config.GCS_BUCKET_NAME,
            project_id=config.GCP_PROJECT_ID,
            folder=config.SINK_FOLDER,
        )

    if backend == "local":
        return LocalSink(
            base_path=config.LOCAL_SINK_PATH,
            folder=config.SINK_FOLDER,
            base_url=config.LOCAL_SINK_BASE_URL,
        )

    raise ValueError(f"Unknown STORAGE_BACKEND: {config.STORAGE_BACKEND}")
