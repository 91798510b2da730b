"""
本地文件存储与内存存储测试
"""

import asyncio

import pytest

from image_cache_proxy.errors import StorageError
from image_cache_proxy.storage import LocalObjectStore, MemoryObjectStore
from conftest import byte_stream

KEY = "uploadedImages/" + "ab" * 32


async def failing_stream():
    yield b"half of the "
    raise RuntimeError("upstream went away")


# ============================================
# 1. LocalObjectStore
# ============================================

class TestLocalObjectStore:

    @pytest.fixture
    def local_store(self, tmp_path):
        return LocalObjectStore(str(tmp_path / "cache"))

    @pytest.mark.asyncio
    async def test_get_missing(self, local_store):
        """测试：不存在的键返回 None"""
        assert await local_store.get(KEY) is None

    @pytest.mark.asyncio
    async def test_put_then_get(self, local_store, tmp_path):
        """测试：写入后读取，字节和类型一致"""
        size = await local_store.put(KEY, byte_stream(b"hello ", b"world"), "image/png")

        obj = await local_store.get(KEY)

        assert size == 11
        assert obj.content_type == "image/png"
        assert obj.size == 11
        assert await obj.read() == b"hello world"
        assert (tmp_path / "cache" / "uploadedImages" / ("ab" * 32)).exists()

    @pytest.mark.asyncio
    async def test_overwrite(self, local_store):
        """测试：同一个键再次写入会覆盖"""
        await local_store.put(KEY, byte_stream(b"old"), "image/png")
        await local_store.put(KEY, byte_stream(b"new"), "image/webp")

        obj = await local_store.get(KEY)

        assert obj.content_type == "image/webp"
        assert await obj.read() == b"new"

    @pytest.mark.asyncio
    async def test_failed_stream_leaves_nothing(self, local_store, tmp_path):
        """测试：写入中途失败时不会留下半个对象或临时文件"""
        with pytest.raises(RuntimeError):
            await local_store.put(KEY, failing_stream(), "image/png")

        assert await local_store.get(KEY) is None
        leftovers = list((tmp_path / "cache" / "uploadedImages").iterdir())
        assert leftovers == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("bad_key", ["../escape", "uploadedImages/../../etc/passwd", ""])
    async def test_rejects_keys_outside_root(self, local_store, bad_key):
        """测试：拒绝逃逸出根目录的键"""
        with pytest.raises(StorageError):
            await local_store.put(bad_key, byte_stream(b"x"), "image/png")

    @pytest.mark.asyncio
    async def test_missing_metadata(self, local_store, tmp_path):
        """测试：没有元数据头的文件整体作为内容返回，类型为 None"""
        directory = tmp_path / "cache" / "uploadedImages"
        directory.mkdir(parents=True)
        (directory / ("ab" * 32)).write_bytes(b"data")

        obj = await local_store.get(KEY)

        assert obj.content_type is None
        assert obj.size == 4
        assert await obj.read() == b"data"

    @pytest.mark.asyncio
    async def test_header_not_part_of_body(self, local_store, tmp_path):
        """测试：类型和内容保存在同一个文件里，读取时不包含头部"""
        await local_store.put(KEY, byte_stream(b"\n#image-cache-proxy/1 {}\n"), "image/png")

        files = list((tmp_path / "cache" / "uploadedImages").iterdir())
        obj = await local_store.get(KEY)

        assert [f.name for f in files] == ["ab" * 32]
        assert obj.content_type == "image/png"
        assert await obj.read() == b"\n#image-cache-proxy/1 {}\n"

    @pytest.mark.asyncio
    async def test_interleaved_writers_last_commit_wins(self, local_store, tmp_path):
        """测试：两个写入者交错写同一个键，读到的内容和类型总是来自同一个写入者"""
        gate_a = asyncio.Event()
        gate_b = asyncio.Event()

        async def gated(gate, head, tail):
            yield head
            await gate.wait()
            yield tail

        writer_a = asyncio.create_task(local_store.put(KEY, gated(gate_a, b"aaa", b"AAA"), "image/png"))
        writer_b = asyncio.create_task(local_store.put(KEY, gated(gate_b, b"bbb", b"BBB"), "image/webp"))
        await asyncio.sleep(0.05)

        # 两个写入者都还没提交
        assert await local_store.get(KEY) is None

        gate_b.set()
        await writer_b
        obj_b = await local_store.get(KEY)

        gate_a.set()
        await writer_a
        obj_a = await local_store.get(KEY)

        # 先打开的对象不受之后提交的影响
        assert obj_b.content_type == "image/webp"
        assert await obj_b.read() == b"bbbBBB"
        assert obj_a.content_type == "image/png"
        assert await obj_a.read() == b"aaaAAA"
        leftovers = [f.name for f in (tmp_path / "cache" / "uploadedImages").iterdir()]
        assert leftovers == ["ab" * 32]

    @pytest.mark.asyncio
    async def test_rejects_oversized_content_type(self, local_store, tmp_path):
        with pytest.raises(StorageError):
            await local_store.put(KEY, byte_stream(b"x"), "image/" + "x" * 100_000)

        assert await local_store.get(KEY) is None

    @pytest.mark.asyncio
    async def test_get_opens_file_off_event_loop(self, local_store, monkeypatch):
        """测试：打开文件和读取头部都在工作线程里完成"""
        await local_store.put(KEY, byte_stream(b"data"), "image/png")
        offloaded = []
        real_to_thread = asyncio.to_thread

        async def recording_to_thread(func, *args, **kwargs):
            offloaded.append(func.__name__)
            return await real_to_thread(func, *args, **kwargs)

        monkeypatch.setattr(asyncio, "to_thread", recording_to_thread)
        obj = await local_store.get(KEY)

        assert offloaded == ["_open_object"]
        assert await obj.read() == b"data"

    @pytest.mark.asyncio
    async def test_close_without_reading(self, local_store):
        await local_store.put(KEY, byte_stream(b"data"), "image/png")
        obj = await local_store.get(KEY)

        await obj.aclose()
        await obj.aclose()

    def test_describe(self, local_store):
        assert local_store.describe()["backend"] == "local"


# ============================================
# 2. MemoryObjectStore
# ============================================

class TestMemoryObjectStore:

    @pytest.mark.asyncio
    async def test_put_then_get(self):
        store = MemoryObjectStore()

        await store.put(KEY, byte_stream(b"a", b"b"), "image/gif")
        obj = await store.get(KEY)

        assert KEY in store
        assert obj.content_type == "image/gif"
        assert obj.size == 2
        assert await obj.read() == b"ab"

    @pytest.mark.asyncio
    async def test_get_missing(self):
        assert await MemoryObjectStore().get(KEY) is None

    @pytest.mark.asyncio
    async def test_failed_stream_leaves_nothing(self):
        """测试：流中途失败时对象不可见"""
        store = MemoryObjectStore()

        with pytest.raises(RuntimeError):
            await store.put(KEY, failing_stream(), "image/png")

        assert len(store) == 0
