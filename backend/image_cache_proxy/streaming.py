"""
Stream Tee

Splits one upstream byte stream into two independent readers: the
body sent to the client and the copy written to storage.

A pump task reads the source once and pushes every chunk to each open
branch. The faster reader sets the pace: the pump only pulls the next
chunk while at least one open branch has fewer than ``high_water``
chunks queued. A slow client does not stall the storage write and a
slow storage write does not stall the client. Only the chunks the
slower branch has not consumed yet are held in memory; when neither
branch reads, the source is not read further.

Closing a branch (client disconnect) detaches it; the other branch
keeps receiving. The source is closed once the pump finishes or both
branches are closed.
"""

import asyncio
import logging
from typing import AsyncIterator, Awaitable, Callable, List, Optional, Tuple, Union

logger = logging.getLogger(__name__)

# Chunks a branch may have queued before it stops pulling the source
DEFAULT_HIGH_WATER = 16

# Marks the end of the stream in a branch queue
_EOF = object()


class StreamAborted(Exception):
    """The source stopped before it was fully read."""


class TeeBranch:
    """One readable view of a teed stream."""

    def __init__(self, tee: "StreamTee", name: str):
        self._tee = tee
        self.name = name
        self._queue: "asyncio.Queue[Union[bytes, BaseException, object]]" = asyncio.Queue()
        self.closed = False
        self.finished = False

    def __aiter__(self) -> "TeeBranch":
        return self

    async def __anext__(self) -> bytes:
        if self.closed or self.finished:
            raise StopAsyncIteration
        item = await self._queue.get()
        self._tee._reader_progressed()
        if item is _EOF:
            self.finished = True
            raise StopAsyncIteration
        if isinstance(item, BaseException):
            self.finished = True
            raise item
        return item

    def _feed(self, item: Union[bytes, BaseException, object]) -> None:
        if not self.closed:
            self._queue.put_nowait(item)

    @property
    def pending(self) -> int:
        """Chunks pushed to this branch but not read yet."""
        return self._queue.qsize()

    async def aclose(self) -> None:
        """Stop reading. Pending chunks are dropped."""
        if self.closed:
            return
        self.closed = True
        while not self._queue.empty():
            self._queue.get_nowait()
        self._tee._reader_progressed()
        await self._tee._branch_closed()


class StreamTee:
    """
    Fan one async byte source into two branches.

    Usage:
        tee = StreamTee(response.aiter_bytes(), on_close=response.aclose)
        client_body, storage_body = tee.branches()
    """

    def __init__(
        self,
        source: AsyncIterator[bytes],
        on_close: Optional[Callable[[], Awaitable[None]]] = None,
        names: Tuple[str, str] = ("client", "storage"),
        high_water: int = DEFAULT_HIGH_WATER,
    ):
        if high_water < 1:
            raise ValueError("high_water must be at least 1")
        self._source = source
        self._on_close = on_close
        self.high_water = high_water
        self._branches: List[TeeBranch] = [TeeBranch(self, name) for name in names]
        self._reader_ready = asyncio.Event()
        self.bytes_read = 0
        self._pump_task = asyncio.create_task(self._pump(), name="stream-tee-pump")

    def branches(self) -> Tuple[TeeBranch, TeeBranch]:
        return self._branches[0], self._branches[1]

    @property
    def done(self) -> bool:
        return self._pump_task.done()

    async def wait(self) -> None:
        """Wait for the pump to finish reading the source."""
        await asyncio.shield(self._pump_task)

    def _open_branches(self) -> List[TeeBranch]:
        return [b for b in self._branches if not b.closed]

    def _reader_progressed(self) -> None:
        self._reader_ready.set()

    async def _wait_for_reader(self) -> None:
        """Block until some open branch has room below the high-water mark."""
        while True:
            open_branches = self._open_branches()
            if not open_branches or any(b.pending < self.high_water for b in open_branches):
                return
            self._reader_ready.clear()
            await self._reader_ready.wait()

    async def _pump(self) -> None:
        try:
            async for chunk in self._source:
                if not chunk:
                    continue
                self.bytes_read += len(chunk)
                for branch in self._open_branches():
                    branch._feed(chunk)
                await self._wait_for_reader()
            for branch in self._open_branches():
                branch._feed(_EOF)
        except asyncio.CancelledError:
            for branch in self._open_branches():
                branch._feed(StreamAborted(f"Upstream read cancelled after {self.bytes_read} bytes"))
            raise
        except Exception as e:
            logger.warning(f"[Tee] Upstream read failed after {self.bytes_read} bytes: {e}")
            for branch in self._open_branches():
                branch._feed(e)
        finally:
            await self._close_source()

    async def _close_source(self) -> None:
        closers = [getattr(self._source, "aclose", None), self._on_close]
        self._on_close = None
        for closer in closers:
            if closer is None:
                continue
            try:
                await closer()
            except Exception as e:
                logger.debug(f"[Tee] Error closing upstream: {e}")

    async def _branch_closed(self) -> None:
        # A branch that reached the end means the pump is already wrapping up
        if any(not b.closed or b.finished for b in self._branches):
            return
        # Nobody is reading anymore
        if not self._pump_task.done():
            self._pump_task.cancel()
            await asyncio.wait([self._pump_task])
