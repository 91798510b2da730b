"""
Image Proxy Request Handling

Decides, per request, between serving a stored copy and fetching
the source image:

1. Validate the request and the ``url`` query parameter
2. Derive the storage key from the exact URL string
3. Storage hit -> stream the stored object, no network fetch
4. Storage miss -> fetch the source, tee the body, stream one branch
   to the client and hand the other to a background storage write

Every fallible step goes through try_sync / try_async and is checked
before its value is used.
"""

import logging
from typing import AsyncIterator, Optional
from urllib.parse import urlsplit

import httpx
from fastapi import Request
from fastapi.responses import Response, StreamingResponse
from fastapi.datastructures import QueryParams

from .background import BackgroundTaskRegistry
from .errors import ClientInputError, InternalError, UpstreamError
from .keys import DEFAULT_KEY_PREFIX, derive_key
from .result import try_async, try_sync
from .storage import DEFAULT_CONTENT_TYPE, ObjectStore, StoredObject
from .streaming import StreamTee, TeeBranch

logger = logging.getLogger(__name__)

ALLOWED_SCHEMES = ("http", "https")

# Successful statuses that carry no body to cache
NO_BODY_STATUSES = {204, 205, 304}


def parse_image_url(raw: str) -> httpx.URL:
    """
    Syntactic check of the source URL. No reachability check.

    Raises:
        ValueError / httpx.InvalidURL: Not an absolute http(s) URL
    """
    url = httpx.URL(raw)
    if url.scheme not in ALLOWED_SCHEMES:
        raise ValueError("Invalid URL scheme")
    if not url.host:
        raise ValueError("Invalid URL host")
    return url


class ImageProxyService:
    """
    Cache-fill-and-serve handler.

    Usage:
        service = ImageProxyService(store, http_client, BackgroundTaskRegistry())
        response = await service.handle(request)
    """

    def __init__(
        self,
        store: ObjectStore,
        http_client: httpx.AsyncClient,
        tasks: BackgroundTaskRegistry,
        key_prefix: str = DEFAULT_KEY_PREFIX,
        cache_control: Optional[str] = None,
    ):
        self.store = store
        self.http_client = http_client
        self.tasks = tasks
        self.key_prefix = key_prefix
        self.cache_control = cache_control

    def _image_headers(self, content_type: str, cache_status: str) -> dict:
        headers = {
            "Content-Type": content_type,
            "X-Cache": cache_status,
            "Access-Control-Allow-Origin": "*",
        }
        if self.cache_control:
            headers["Cache-Control"] = self.cache_control
        return headers

    async def handle(self, request: Request) -> Response:
        request_url, err = try_sync(lambda: urlsplit(str(request.url)))
        if err:
            return ClientInputError("Invalid request URL").to_response()

        image_url = QueryParams(request_url.query).get("url")
        if not image_url:
            return ClientInputError("Image URL must be provided").to_response()

        _, err = try_sync(parse_image_url, image_url)
        if err:
            logger.debug(f"[ImageProxy] Rejected image URL {image_url[:80]!r}: {err}")
            return ClientInputError("Invalid image URL").to_response()

        key, err = try_sync(derive_key, image_url, self.key_prefix)
        if err:
            logger.error(f"[ImageProxy] Failed to hash image URL: {err}")
            return InternalError("Failed to hash image URL").to_response()

        stored, lookup_error = await try_async(self.store.get, key)
        if lookup_error:
            # Fall through to the fetch path, same as a miss
            logger.warning(f"[ImageProxy] Storage lookup failed for {key}, fetching instead: {lookup_error}")
        elif stored is not None:
            logger.debug(f"[ImageProxy] Cache hit: {key}")
            return self._serve_stored(stored)

        return await self._fetch_and_store(image_url, key)

    def _serve_stored(self, stored: StoredObject) -> Response:
        content_type = stored.content_type or DEFAULT_CONTENT_TYPE
        return StreamingResponse(
            _stream_stored(stored),
            status_code=200,
            headers=self._image_headers(content_type, "HIT"),
        )

    async def _open_upstream(self, image_url: str) -> httpx.Response:
        request = self.http_client.build_request("GET", image_url)
        return await self.http_client.send(request, stream=True)

    async def _fetch_and_store(self, image_url: str, key: str) -> Response:
        logger.info(f"[ImageProxy] Fetching: {image_url[:80]}...")
        upstream, fetch_error = await try_async(self._open_upstream, image_url)
        if fetch_error:
            logger.error(f"[ImageProxy] Fetch error for {image_url[:60]}...: {fetch_error!r}")
            status_code = 504 if isinstance(fetch_error, httpx.TimeoutException) else 502
            return UpstreamError(
                f"Failed to fetch the image from url {image_url}",
                status_code=status_code,
            ).to_response()

        if not upstream.is_success or upstream.status_code in NO_BODY_STATUSES:
            await upstream.aclose()
            logger.warning(f"[ImageProxy] Upstream returned {upstream.status_code}: {image_url[:60]}...")
            status_code = upstream.status_code
            if upstream.is_success or status_code in NO_BODY_STATUSES:
                # 2xx/304 with nothing to relay
                status_code = 502
            return UpstreamError(
                f"Failed to fetch the image: {upstream.reason_phrase}",
                status_code=status_code,
            ).to_response()

        content_type = upstream.headers.get("content-type") or DEFAULT_CONTENT_TYPE

        tee = StreamTee(upstream.aiter_bytes(), on_close=upstream.aclose)
        client_body, storage_body = tee.branches()

        # Not awaited: the client gets its bytes whether or not this succeeds
        self.tasks.spawn(
            self._persist(key, storage_body, content_type, image_url),
            name=f"persist:{key}",
        )

        return StreamingResponse(
            _stream_branch(client_body),
            status_code=200,
            headers=self._image_headers(content_type, "MISS"),
        )

    async def _persist(self, key: str, body: TeeBranch, content_type: str, image_url: str) -> None:
        try:
            size = await self.store.put(key, body, content_type)
            logger.info(f"[ImageProxy] Stored {key} ({size} bytes) from {image_url[:60]}...")
        except Exception as e:
            logger.error(f"[ImageProxy] Failed to store {key}: {e}", exc_info=True)
        finally:
            await body.aclose()


async def _stream_stored(stored: StoredObject) -> AsyncIterator[bytes]:
    try:
        async for chunk in stored.body:
            yield chunk
    finally:
        await stored.aclose()


async def _stream_branch(branch: TeeBranch) -> AsyncIterator[bytes]:
    try:
        async for chunk in branch:
            yield chunk
    finally:
        await branch.aclose()
