# Copyright (c) 2025, NVIDIA CORPORATION.  All rights reserved.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Asynchronous stream combinators used to wire the build pipeline."""

from __future__ import annotations

import asyncio
import copy
from collections import deque
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generic, TypeVar

if TYPE_CHECKING:
    from collections.abc import AsyncIterable, AsyncIterator, Callable

T = TypeVar("T")

_END = object()


@dataclass
class _StreamFailure:
    error: Exception


def clone_item(item: Any) -> Any:  # noqa: ANN401
    """Return an independently owned copy of ``item``."""
    clone = getattr(item, "clone", None)
    if callable(clone):
        return clone()
    return copy.deepcopy(item)


async def merge_streams(*streams: AsyncIterable[T]) -> AsyncIterator[T]:
    """Interleave several asynchronous streams into one.

    Items are yielded in arrival order. The merged stream ends once every input
    ended; the first input error is re-raised to the consumer and the remaining
    inputs are cancelled.
    """
    queue: asyncio.Queue = asyncio.Queue()

    async def pump(stream: AsyncIterable[T]) -> None:
        try:
            async for item in stream:
                await queue.put(item)
        except Exception as e:  # noqa: BLE001
            queue.put_nowait(_StreamFailure(e))
        else:
            queue.put_nowait(_END)

    pumps = [asyncio.create_task(pump(stream)) for stream in streams]
    remaining = len(pumps)
    try:
        while remaining:
            item = await queue.get()
            if item is _END:
                remaining -= 1
            elif isinstance(item, _StreamFailure):
                raise item.error
            else:
                yield item
    finally:
        for task in pumps:
            task.cancel()
        await asyncio.gather(*pumps, return_exceptions=True)


class _ForkBranch(Generic[T]):
    """One consumer of a :class:`StreamFork`.

    The consumer's buffer is unregistered when it is exhausted, fails or is
    closed, even if it was closed before its first item was requested.
    """

    def __init__(self, fork: StreamFork[T], buffer: deque[T]):
        self._fork = fork
        self._buffer = buffer
        self._closed = False

    def __aiter__(self) -> _ForkBranch[T]:
        return self

    async def __anext__(self) -> T:
        if self._closed:
            raise StopAsyncIteration
        if not self._buffer:
            try:
                more = await self._fork._pull(self._buffer)
            except BaseException:
                self._detach()
                raise
            if not more:
                self._detach()
                raise StopAsyncIteration
        return self._buffer.popleft()

    async def aclose(self) -> None:
        self._detach()

    def _detach(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._fork._unregister(self._buffer)


class StreamFork(Generic[T]):
    """Multicast one asynchronous stream to several consumers.

    Every consumer obtained from :meth:`branch` sees every element of the
    source, each as its own copy made by ``copy_item``. The fork is pull-based:
    whichever consumer first needs an element it has not seen pulls it from the
    source and appends a copy to the buffer of every live consumer, so a slow
    consumer never holds back a fast one. Source errors are re-raised to every
    consumer that reaches them.
    """

    def __init__(self, source: AsyncIterable[T], copy_item: Callable[[T], T] = clone_item):
        self._source = source
        self._iterator = source.__aiter__()
        self._copy_item = copy_item
        self._buffers: list[deque[T]] = []
        self._lock = asyncio.Lock()
        self._started = False
        self._exhausted = False
        self._error: Exception | None = None
        self.pulled = 0

    def branch(self) -> _ForkBranch[T]:
        if self._started:
            msg = "Cannot add a branch to a fork that is already being consumed"
            raise RuntimeError(msg)
        buffer: deque[T] = deque()
        self._buffers.append(buffer)
        return _ForkBranch(self, buffer)

    @property
    def consumers(self) -> int:
        """Number of consumers still receiving copies."""
        return len(self._buffers)

    def _unregister(self, buffer: deque[T]) -> None:
        self._buffers = [other for other in self._buffers if other is not buffer]
        buffer.clear()

    async def _pull(self, buffer: deque[T]) -> bool:
        async with self._lock:
            if buffer:
                return True
            if self._error is not None:
                raise self._error
            if self._exhausted:
                return False
            self._started = True
            try:
                item = await self._iterator.__anext__()
            except StopAsyncIteration:
                self._exhausted = True
                return False
            except Exception as e:
                self._error = e
                raise
            self.pulled += 1
            for consumer_buffer in self._buffers:
                consumer_buffer.append(self._copy_item(item))
            return True

    async def aclose(self) -> None:
        """Close the source stream if it is still open."""
        self._exhausted = True
        close = getattr(self._iterator, "aclose", None)
        if close is not None:
            await close()
