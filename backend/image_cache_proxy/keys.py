"""
Storage Key Derivation

Maps a source image URL to the key its copy is stored under.
The URL string is hashed exactly as received: no case folding,
no percent-decoding, no query reordering. Two spellings of the
same resource are two different cache entries.
"""

import hashlib

DEFAULT_KEY_PREFIX = "uploadedImages"


def hash_url(url: str) -> str:
    """Return the lowercase hex SHA-256 digest of the URL's UTF-8 bytes."""
    return hashlib.sha256(url.encode("utf-8")).hexdigest()


def derive_key(url: str, prefix: str = DEFAULT_KEY_PREFIX) -> str:
    """
    Derive the storage key for a source URL.

    Example:
        derive_key("https://example.com/a.png")
        -> "uploadedImages/<64 hex chars>"
    """
    return f"{prefix}/{hash_url(url)}"
