"""Abstract storage sink interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncIterator


class SinkError(Exception):
    """Exception raised when a sink cannot store a stream."""
    pass


@dataclass(frozen=True)
class SinkOptions:
    """Where and how a sink should store a stream."""

    identifier: str
    extension: str
    content_type: str


@dataclass(frozen=True)
class SinkResult:
    """Location descriptor returned by a sink."""

    url: str
    size_bytes: int
    identifier: str


class Sink(ABC):
    """Abstract base class for storage sinks."""

    @abstractmethod
    async def store(self, stream: AsyncIterator[bytes], options: SinkOptions) -> SinkResult:
        """Consume ``stream`` and store it as one object.

        Args:
            stream: Bytes to store, consumed in order
            options: Object identifier, extension and content type

        Returns:
            Public URL, stored size and identifier of the object

        Raises:
            SinkError: If the object could not be stored
        """
        pass

    @abstractmethod
    def get_backend_name(self) -> str:
        """Return backend identifier."""
        pass

    @staticmethod
    def object_name(folder: str, options: SinkOptions) -> str:
        """Build the ``{folder}/{identifier}.{extension}`` object path."""
        name = f"{options.identifier}.{options.extension}"
        folder = folder.strip("/")
        return f"{folder}/{name}" if folder else name
