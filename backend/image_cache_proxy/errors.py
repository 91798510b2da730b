"""
Image proxy error types.

These are carried in the error slot of a Result rather than raised
through the request path. Each one knows the status it maps to.
"""

from typing import Optional

from fastapi.responses import PlainTextResponse


class ImageProxyError(Exception):
    """Base class for all image proxy errors."""
    status_code: int = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_response(self) -> PlainTextResponse:
        return PlainTextResponse(self.message, status_code=self.status_code)


class ClientInputError(ImageProxyError):
    """Malformed request URL, missing or malformed image URL."""
    status_code = 400


class InternalError(ImageProxyError):
    """Host or runtime fault, e.g. the digest could not be computed."""
    status_code = 500


class UpstreamError(ImageProxyError):
    """The source image could not be fetched."""
    status_code = 502


class StorageError(ImageProxyError):
    """The object store failed to read or write."""
    status_code = 503


class ConfigError(ImageProxyError):
    """Invalid or missing configuration, raised at startup."""
