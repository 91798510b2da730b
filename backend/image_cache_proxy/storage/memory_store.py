"""
In-Memory Object Store

Process-local store for development and tests. Objects live in a dict
guarded by a lock and vanish with the process.
"""

import logging
from dataclasses import dataclass
from threading import Lock
from typing import AsyncIterator, Dict, Optional

from .base import ObjectStore, StoredObject

logger = logging.getLogger(__name__)


@dataclass
class MemoryEntry:
    data: bytes
    content_type: str


async def _iter_bytes(data: bytes) -> AsyncIterator[bytes]:
    yield data


class MemoryObjectStore(ObjectStore):
    """
    Thread-safe in-memory store.

    Usage:
        store = MemoryObjectStore()
        await store.put("uploadedImages/abc", stream, "image/png")
        obj = await store.get("uploadedImages/abc")
    """

    name = "memory"

    def __init__(self):
        self._objects: Dict[str, MemoryEntry] = {}
        self._lock = Lock()

    async def get(self, key: str) -> Optional[StoredObject]:
        with self._lock:
            entry = self._objects.get(key)
        if entry is None:
            return None
        return StoredObject(
            key=key,
            body=_iter_bytes(entry.data),
            content_type=entry.content_type,
            size=len(entry.data),
        )

    async def put(self, key: str, stream: AsyncIterator[bytes], content_type: str) -> int:
        chunks = [chunk async for chunk in stream]
        data = b"".join(chunks)
        with self._lock:
            self._objects[key] = MemoryEntry(data=data, content_type=content_type)
        logger.debug(f"[Storage] memory put {key} ({len(data)} bytes)")
        return len(data)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._objects

    def __len__(self) -> int:
        with self._lock:
            return len(self._objects)

    def describe(self) -> dict:
        return {"backend": self.name, "objects": len(self)}
