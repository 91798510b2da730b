"""
Local Filesystem Object Store

Stores each object as one file under a root directory:

root/
└── uploadedImages/
    └── 3f5a...e1

The file starts with a one-line JSON header holding the content type,
followed by the raw image bytes. Writes land in a temporary file first
and are renamed into place, so a single rename commits bytes and
content type together and readers never see a half-written object or
a content type from another writer.
"""

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import AsyncIterator, BinaryIO, Optional, Tuple

from ..errors import StorageError
from .base import READ_CHUNK_SIZE, ObjectStore, StoredObject

logger = logging.getLogger(__name__)

HEADER_MAGIC = b"#image-cache-proxy/1 "
MAX_HEADER_SIZE = 64 * 1024


def encode_header(content_type: str) -> bytes:
    return HEADER_MAGIC + json.dumps({"content_type": content_type}).encode("utf-8") + b"\n"


def read_header(f: BinaryIO) -> dict:
    """
    Read the metadata header and leave ``f`` positioned at the body.

    Files without a header are returned whole with empty metadata.
    """
    line = f.readline(MAX_HEADER_SIZE)
    if not (line.startswith(HEADER_MAGIC) and line.endswith(b"\n")):
        f.seek(0)
        return {}
    try:
        meta = json.loads(line[len(HEADER_MAGIC):])
    except ValueError as e:
        logger.warning(f"[Storage] Unreadable header in {getattr(f, 'name', '?')}: {e}")
        return {}
    return meta if isinstance(meta, dict) else {}


class LocalObjectStore(ObjectStore):
    """Filesystem-backed store rooted at ``root_dir``."""

    name = "local"

    def __init__(self, root_dir: str = "./image_cache"):
        self.root_dir = Path(root_dir)
        self.root_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"[Storage] Local store directory: {self.root_dir}")

    def _path_for(self, key: str) -> Path:
        """Map a key to a file path, refusing keys that escape the root."""
        root = self.root_dir.resolve()
        candidate = root.joinpath(*key.split("/")).resolve()
        if candidate == root or root not in candidate.parents:
            raise StorageError(f"Invalid storage key: {key}")
        if candidate.name.startswith(".upload-"):
            raise StorageError(f"Invalid storage key: {key}")
        return candidate

    @staticmethod
    def _open_object(path: Path) -> Optional[Tuple[BinaryIO, dict, int]]:
        try:
            f = open(path, "rb")
        except FileNotFoundError:
            return None
        try:
            meta = read_header(f)
            size = os.fstat(f.fileno()).st_size - f.tell()
        except BaseException:
            f.close()
            raise
        return f, meta, size

    async def get(self, key: str) -> Optional[StoredObject]:
        path = self._path_for(key)
        try:
            opened = await asyncio.to_thread(self._open_object, path)
        except OSError as e:
            raise StorageError(f"Failed to open {key}: {e}") from e
        if opened is None:
            return None
        f, meta, size = opened

        async def body() -> AsyncIterator[bytes]:
            try:
                while True:
                    chunk = await asyncio.to_thread(f.read, READ_CHUNK_SIZE)
                    if not chunk:
                        break
                    yield chunk
            finally:
                f.close()

        async def close() -> None:
            f.close()

        return StoredObject(
            key=key,
            body=body(),
            content_type=meta.get("content_type"),
            size=size,
            closer=close,
        )

    async def put(self, key: str, stream: AsyncIterator[bytes], content_type: str) -> int:
        path = self._path_for(key)
        header = encode_header(content_type)
        if len(header) > MAX_HEADER_SIZE:
            raise StorageError(f"Content type too long for {key}")

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".upload-")
        except OSError as e:
            raise StorageError(f"Failed to prepare {key}: {e}") from e

        tmp_path = Path(tmp_name)
        written = 0
        try:
            with os.fdopen(fd, "wb") as f:
                await asyncio.to_thread(f.write, header)
                async for chunk in stream:
                    await asyncio.to_thread(f.write, chunk)
                    written += len(chunk)

            os.replace(tmp_path, path)
        except OSError as e:
            raise StorageError(f"Failed to write {key}: {e}") from e
        finally:
            if tmp_path.exists():
                tmp_path.unlink()

        logger.debug(f"[Storage] local put {key} ({written} bytes)")
        return written

    def describe(self) -> dict:
        return {"backend": self.name, "root_dir": str(self.root_dir)}
