"""
Object Store Interface

Thin key/blob contract the proxy needs from durable storage:
get-by-key and put-by-key-with-content-type.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Optional

DEFAULT_CONTENT_TYPE = "application/octet-stream"

# Chunk size used when streaming stored objects back out
READ_CHUNK_SIZE = 64 * 1024


@dataclass
class StoredObject:
    """
    A blob found in the store.

    ``body`` can be iterated once. Call ``aclose()`` if the body is
    abandoned before it is exhausted.
    """
    key: str
    body: AsyncIterator[bytes]
    content_type: Optional[str] = None
    size: Optional[int] = None
    closer: Optional[Callable[[], Awaitable[None]]] = None

    async def aclose(self) -> None:
        if self.closer is not None:
            closer, self.closer = self.closer, None
            await closer()

    async def read(self) -> bytes:
        """Read the whole body into memory."""
        try:
            return b"".join([chunk async for chunk in self.body])
        finally:
            await self.aclose()


class ObjectStore(ABC):
    """Durable key/blob store."""

    name: str = "base"

    @abstractmethod
    async def get(self, key: str) -> Optional[StoredObject]:
        """
        Look up an object.

        Returns:
            The object, or None if nothing is stored under ``key``.

        Raises:
            StorageError: The backend could not be reached or failed.
        """

    @abstractmethod
    async def put(self, key: str, stream: AsyncIterator[bytes], content_type: str) -> int:
        """
        Consume ``stream`` and store it under ``key``, replacing any
        existing object. Nothing becomes visible at ``key`` unless the
        whole stream was written.

        Returns:
            Number of bytes stored.

        Raises:
            StorageError: The backend failed to persist the object.
        """

    def describe(self) -> dict:
        return {"backend": self.name}
