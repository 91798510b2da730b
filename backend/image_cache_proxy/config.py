"""
Image Cache Proxy Configuration

All settings come from environment variables. Nothing is read from
disk; the storage backend binding is the only thing a deployment
normally needs to set.
"""

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .errors import ConfigError
from .keys import DEFAULT_KEY_PREFIX

STORAGE_BACKENDS = ("s3", "local", "memory")

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


def _get_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")


def _get_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")


@dataclass
class Settings:
    """Runtime settings for the proxy."""
    # Storage
    storage_backend: str = "local"
    key_prefix: str = DEFAULT_KEY_PREFIX
    local_dir: str = "./image_cache"
    s3_bucket: Optional[str] = None
    s3_endpoint_url: Optional[str] = None
    s3_region: str = "auto"
    s3_access_key_id: Optional[str] = None
    s3_secret_access_key: Optional[str] = None
    s3_part_size_mb: int = 8

    # Outbound fetch
    fetch_timeout: float = 30.0     # 0 disables the timeout
    user_agent: str = DEFAULT_USER_AGENT

    # Responses
    cache_control: str = "public, max-age=86400"

    # Lifecycle
    shutdown_grace_seconds: float = 30.0
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"

    def __post_init__(self):
        if self.storage_backend not in STORAGE_BACKENDS:
            raise ConfigError(
                f"IMAGE_PROXY_STORAGE_BACKEND must be one of {', '.join(STORAGE_BACKENDS)}, "
                f"got {self.storage_backend!r}"
            )
        if self.storage_backend == "s3" and not self.s3_bucket:
            raise ConfigError("IMAGE_PROXY_S3_BUCKET is required for the s3 storage backend")
        if not self.key_prefix:
            raise ConfigError("IMAGE_PROXY_KEY_PREFIX must not be empty")

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if env is None else env
        return cls(
            storage_backend=env.get("IMAGE_PROXY_STORAGE_BACKEND", "local").strip().lower(),
            key_prefix=env.get("IMAGE_PROXY_KEY_PREFIX", DEFAULT_KEY_PREFIX),
            local_dir=env.get("IMAGE_PROXY_LOCAL_DIR", "./image_cache"),
            s3_bucket=env.get("IMAGE_PROXY_S3_BUCKET") or None,
            s3_endpoint_url=env.get("IMAGE_PROXY_S3_ENDPOINT_URL") or None,
            s3_region=env.get("IMAGE_PROXY_S3_REGION", "auto"),
            s3_access_key_id=env.get("IMAGE_PROXY_S3_ACCESS_KEY_ID") or None,
            s3_secret_access_key=env.get("IMAGE_PROXY_S3_SECRET_ACCESS_KEY") or None,
            s3_part_size_mb=_get_int(env, "IMAGE_PROXY_S3_PART_SIZE_MB", 8),
            fetch_timeout=_get_float(env, "IMAGE_PROXY_FETCH_TIMEOUT", 30.0),
            user_agent=env.get("IMAGE_PROXY_USER_AGENT", DEFAULT_USER_AGENT),
            cache_control=env.get("IMAGE_PROXY_CACHE_CONTROL", "public, max-age=86400"),
            shutdown_grace_seconds=_get_float(env, "IMAGE_PROXY_SHUTDOWN_GRACE_SECONDS", 30.0),
            host=env.get("IMAGE_PROXY_HOST", "0.0.0.0"),
            port=_get_int(env, "IMAGE_PROXY_PORT", 8000),
            log_level=env.get("LOG_LEVEL", "INFO").upper(),
        )
