"""
Image Cache Proxy 测试配置文件

这个文件包含 pytest fixtures（测试夹具）。

关键概念：
- UpstreamServer：用 httpx.MockTransport 模拟图片源站，记录每一次请求
- MemoryObjectStore：内存存储，代替 R2/S3
- client：通过 httpx.ASGITransport 直接调用 FastAPI 应用，不需要真实端口
"""

import sys
from pathlib import Path
from typing import AsyncIterator, Callable, Dict, List, Union

import httpx
import pytest

# 添加 backend 目录到 Python 路径
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

from image_cache_proxy import create_app, Settings
from image_cache_proxy.storage import MemoryObjectStore


# ============================================
# Fake upstream
# ============================================

class UpstreamServer:
    """
    模拟的图片源站。

    使用方式：
    ```python
    upstream.add("https://images.example.com/cat.png", b"PNG...", content_type="image/png")
    ```
    """

    def __init__(self):
        self.routes: Dict[str, Union[Callable[[], httpx.Response], Exception]] = {}
        self.calls: List[str] = []

    def add(self, url: str, body=b"", status: int = 200, content_type: str = "image/png") -> None:
        headers = {"Content-Type": content_type} if content_type else {}
        self.routes[url] = lambda: httpx.Response(status, content=body, headers=headers)

    def add_chunked(self, url: str, chunks: List[bytes], content_type: str = "image/png") -> None:
        async def body() -> AsyncIterator[bytes]:
            for chunk in chunks:
                yield chunk

        self.routes[url] = lambda: httpx.Response(
            200, content=body(), headers={"Content-Type": content_type}
        )

    def fail(self, url: str, error: Exception) -> None:
        self.routes[url] = error

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(str(request.url))
        route = self.routes.get(str(request.url))
        if route is None:
            return httpx.Response(404)
        if isinstance(route, Exception):
            raise route
        return route()


# ============================================
# Fixtures
# ============================================

@pytest.fixture
def upstream():
    return UpstreamServer()


@pytest.fixture
def store():
    return MemoryObjectStore()


@pytest.fixture
async def http_client(upstream):
    """出站 HTTP 客户端，所有请求都交给 UpstreamServer 处理"""
    client = httpx.AsyncClient(transport=httpx.MockTransport(upstream.handler))
    yield client
    await client.aclose()


@pytest.fixture
def app(store, http_client):
    settings = Settings(storage_backend="memory")
    return create_app(settings, store=store, http_client=http_client)


@pytest.fixture
def service(app):
    return app.state.proxy_service


@pytest.fixture
async def client(app):
    """调用代理应用的客户端"""
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://proxy.test") as c:
        yield c


# ============================================
# Helper Functions
# ============================================

async def byte_stream(*chunks: bytes) -> AsyncIterator[bytes]:
    """把若干字节块包装成异步迭代器"""
    for chunk in chunks:
        yield chunk


async def collect(stream) -> bytes:
    """读完一个异步字节流"""
    return b"".join([chunk async for chunk in stream])
