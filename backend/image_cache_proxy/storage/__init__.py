"""
Storage Gateway

Key/blob stores the proxy persists fetched images into.
"""

from ..config import Settings
from .base import DEFAULT_CONTENT_TYPE, ObjectStore, StoredObject
from .local_store import LocalObjectStore
from .memory_store import MemoryObjectStore
from .s3_store import S3ObjectStore


def create_store(settings: Settings) -> ObjectStore:
    """Build the object store selected by ``settings.storage_backend``."""
    if settings.storage_backend == "s3":
        return S3ObjectStore(
            bucket=settings.s3_bucket,
            endpoint_url=settings.s3_endpoint_url,
            region=settings.s3_region,
            access_key_id=settings.s3_access_key_id,
            secret_access_key=settings.s3_secret_access_key,
            part_size=settings.s3_part_size_mb * 1024 * 1024,
        )
    if settings.storage_backend == "memory":
        return MemoryObjectStore()
    return LocalObjectStore(settings.local_dir)


__all__ = [
    "DEFAULT_CONTENT_TYPE",
    "ObjectStore",
    "StoredObject",
    "LocalObjectStore",
    "MemoryObjectStore",
    "S3ObjectStore",
    "create_store",
]
