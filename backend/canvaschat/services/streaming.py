"""Bounded, cancellable async stream fed from a background producer.

The producer task drains the source iterator into a small queue. A slow
consumer fills the queue and blocks the producer. Closing the stream (or
leaving the ``async with`` block) cancels the producer, which in turn
closes the source, so an abandoned stream does not keep an upstream call
running.
"""

import asyncio
from typing import AsyncIterator, Generic, TypeVar

T = TypeVar("T")

_DONE = object()


class ChannelStream(Generic[T]):
    def __init__(self, source: AsyncIterator[T], maxsize: int = 8):
        self._source = source
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._task: asyncio.Task | None = None
        self._closed = False

    async def _produce(self) -> None:
        try:
            async for item in self._source:
                await self._queue.put(item)
        except Exception as e:
            await self._queue.put(e)
            return
        finally:
            aclose = getattr(self._source, "aclose", None)
            if aclose is not None:
                await aclose()
        await self._queue.put(_DONE)

    def _start(self) -> None:
        if self._task is None and not self._closed:
            self._task = asyncio.create_task(self._produce())

    def __aiter__(self) -> "ChannelStream[T]":
        self._start()
        return self

    async def __anext__(self) -> T:
        if self._closed:
            raise StopAsyncIteration
        self._start()
        item = await self._queue.get()
        if item is _DONE:
            self._closed = True
            raise StopAsyncIteration
        if isinstance(item, Exception):
            self._closed = True
            raise item
        return item

    async def aclose(self) -> None:
        self._closed = True
        if self._task is None or self._task.done():
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass

    async def __aenter__(self) -> "ChannelStream[T]":
        self._start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()
