"""
Image Cache Proxy

Serves images by source URL through a durable object store cache.

Features:
- Content-addressed storage keys (SHA-256 of the exact source URL)
- Storage hits served without touching the network
- Misses streamed to the client while a copy is written in the background
- S3 / Cloudflare R2, local filesystem or in-memory storage backends
"""

from .app import create_app
from .config import Settings
from .keys import derive_key
from .proxy import ImageProxyService

__all__ = ["create_app", "Settings", "derive_key", "ImageProxyService"]
