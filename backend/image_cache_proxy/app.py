"""
Application factory.

Wires settings, object store, outbound HTTP client and the background
task registry into a FastAPI app. In-flight storage writes are drained
on shutdown.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI

from .background import BackgroundTaskRegistry
from .config import Settings
from .proxy import ImageProxyService
from .routes import router
from .storage import ObjectStore, create_store

logger = logging.getLogger(__name__)


def build_http_client(settings: Settings) -> httpx.AsyncClient:
    """HTTP client for fetching source images."""
    return httpx.AsyncClient(
        timeout=settings.fetch_timeout or None,
        follow_redirects=True,
        headers={
            "User-Agent": settings.user_agent,
            "Accept": "image/*,*/*;q=0.8",
        },
    )


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[ObjectStore] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    """
    Build the proxy application.

    Args:
        settings: Defaults to Settings.from_env()
        store: Defaults to the backend named in settings
        http_client: Defaults to a client built from settings; a client
            passed in is not closed on shutdown
    """
    settings = settings or Settings.from_env()
    store = store if store is not None else create_store(settings)
    owns_client = http_client is None
    if http_client is None:
        http_client = build_http_client(settings)

    tasks = BackgroundTaskRegistry()
    service = ImageProxyService(
        store=store,
        http_client=http_client,
        tasks=tasks,
        key_prefix=settings.key_prefix,
        cache_control=settings.cache_control,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"[ImageProxy] Ready (storage={store.describe()})")
        yield
        cancelled = await tasks.drain(timeout=settings.shutdown_grace_seconds)
        if cancelled:
            logger.warning(f"[ImageProxy] {cancelled} storage write(s) abandoned at shutdown")
        if owns_client:
            await http_client.aclose()
        logger.info("[ImageProxy] Stopped")

    app = FastAPI(title="Image Cache Proxy", lifespan=lifespan)
    app.state.settings = settings
    app.state.proxy_service = service
    app.include_router(router)
    return app
