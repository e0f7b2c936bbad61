"""Bounded buffer bridging listener callbacks into an asyncio consumer."""

from __future__ import annotations

import asyncio
import concurrent.futures
import threading
from collections import deque
from typing import Any, Generic, TypeVar

from queryflow.core.exceptions import ConfigurationError
from queryflow.core.types import SendMode
from queryflow.observability.logging import get_logger
from queryflow.observability.metrics import MetricsCollector, get_metrics_collector

logger = get_logger(__name__)

T = TypeVar("T")


class ChannelClosed(Exception):
    """Raised by receive() once the channel has completed normally."""


class _Failure:
    __slots__ = ("error",)

    def __init__(self, error: BaseException) -> None:
        self.error = error


_COMPLETE = object()


class ChangeChannel(Generic[T]):
    """
    Bounded channel fed by listener callbacks and drained by one async consumer.

    Producers may call send(), fail() and complete() from any thread. The
    consumer must await receive() on the loop the channel was created with.

    Blocking sends from a foreign thread wait for buffer space. Sends made on
    the loop thread cannot wait, so once the buffer is full they are parked in
    an ordered backlog that drains as the consumer frees space.
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        capacity: int = 64,
        send_mode: SendMode = SendMode.BLOCKING,
        metrics: MetricsCollector | None = None,
    ) -> None:
        if capacity < 1:
            raise ConfigurationError(
                "Change buffer capacity must be at least 1",
                {"capacity": capacity},
            )

        self._loop = loop
        self._capacity = capacity
        self._send_mode = send_mode
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=capacity)
        self._backlog: deque[Any] = deque()
        self._drain_task: asyncio.Task[None] | None = None
        self._pending: set[concurrent.futures.Future[None]] = set()

        self._lock = threading.Lock()
        self._closed = False  # no further sends accepted
        self._cancelled = False
        self._finished = False  # terminal marker consumed

        self._metrics = metrics or get_metrics_collector()
        self._dropped = 0

    @property
    def capacity(self) -> int:
        """Get the buffer capacity."""
        return self._capacity

    @property
    def send_mode(self) -> SendMode:
        """Get the send mode."""
        return self._send_mode

    @property
    def is_closed(self) -> bool:
        """Check if the channel still accepts sends."""
        return self._closed

    @property
    def dropped(self) -> int:
        """Number of items discarded because the buffer was full."""
        return self._dropped

    def size(self) -> int:
        """Items currently buffered, including the backlog."""
        return self._queue.qsize() + len(self._backlog)

    # Producer side

    def send(self, item: T) -> bool:
        """
        Offer an item to the consumer.

        Returns:
            False if the channel is closed or the item could not be
            buffered. Drops decided on the loop thread are not reported
            back to foreign-thread producers.
        """
        with self._lock:
            if self._closed:
                return False
        return self._dispatch(item, drop_if_full=self._send_mode is SendMode.DROP)

    def fail(self, error: BaseException) -> bool:
        """Close the channel; the consumer raises error after draining."""
        if not self._close_for_send():
            return False
        return self._dispatch(_Failure(error), drop_if_full=False)

    def complete(self) -> bool:
        """Close the channel; the consumer stops after draining."""
        if not self._close_for_send():
            return False
        return self._dispatch(_COMPLETE, drop_if_full=False)

    def cancel(self) -> None:
        """Discard buffered items and release producers blocked in send()."""
        with self._lock:
            self._closed = True
            self._cancelled = True
            pending = list(self._pending)
            self._pending.clear()

        for future in pending:
            future.cancel()

        if self._on_loop_thread():
            self._discard()
        else:
            self._threadsafe(self._discard)

    # Consumer side

    async def receive(self) -> T:
        """
        Wait for the next item.

        Raises:
            ChannelClosed: The channel completed or was cancelled.
            BaseException: The error passed to fail().
        """
        if self._finished or self._cancelled:
            raise ChannelClosed()

        item = await self._queue.get()

        if item is _COMPLETE:
            self._finished = True
            raise ChannelClosed()
        if isinstance(item, _Failure):
            self._finished = True
            raise item.error
        return item

    # Internals

    def _close_for_send(self) -> bool:
        with self._lock:
            if self._closed:
                return False
            self._closed = True
            return True

    def _on_loop_thread(self) -> bool:
        try:
            return asyncio.get_running_loop() is self._loop
        except RuntimeError:
            return False

    def _threadsafe(self, callback: Any, *args: Any) -> bool:
        try:
            self._loop.call_soon_threadsafe(callback, *args)
        except RuntimeError:
            logger.debug("Event loop closed, change discarded")
            return False
        return True

    def _dispatch(self, item: Any, drop_if_full: bool) -> bool:
        if self._on_loop_thread():
            return self._offer(item, drop_if_full)

        if drop_if_full:
            return self._threadsafe(self._offer, item, True)

        return self._send_blocking(item)

    def _send_blocking(self, item: Any) -> bool:
        """Block the calling (foreign) thread until the item is buffered."""
        try:
            future = asyncio.run_coroutine_threadsafe(self._put(item), self._loop)
        except RuntimeError:
            logger.debug("Event loop closed, change discarded")
            return False

        with self._lock:
            if self._cancelled:
                future.cancel()
                return False
            self._pending.add(future)

        try:
            future.result()
        except concurrent.futures.CancelledError:
            return False
        finally:
            with self._lock:
                self._pending.discard(future)
        return True

    async def _put(self, item: Any) -> None:
        if self._cancelled:
            return
        waiter = self._enqueue(item)
        if waiter is not None:
            await waiter

    def _offer(self, item: Any, drop_if_full: bool) -> bool:
        if self._cancelled:
            return False

        if drop_if_full and (self._backlog or self._queue.full()):
            self._dropped += 1
            self._metrics.record_change("dropped")
            logger.warning(
                "Change buffer full, change dropped",
                capacity=self._capacity,
                dropped=self._dropped,
            )
            return False

        self._enqueue(item)
        return True

    def _enqueue(self, item: Any) -> asyncio.Future[None] | None:
        """Buffer item, or park it in the backlog and return a waiter."""
        if item is not _COMPLETE and not isinstance(item, _Failure):
            self._metrics.record_change("delivered")

        if not self._backlog and not self._queue.full():
            self._queue.put_nowait(item)
            return None

        waiter: asyncio.Future[None] = self._loop.create_future()
        self._backlog.append((item, waiter))
        if self._drain_task is None or self._drain_task.done():
            self._drain_task = self._loop.create_task(self._drain_backlog())
        return waiter

    async def _drain_backlog(self) -> None:
        while self._backlog and not self._cancelled:
            item, waiter = self._backlog[0]
            await self._queue.put(item)
            self._backlog.popleft()
            if not waiter.done():
                waiter.set_result(None)

    def _discard(self) -> None:
        while self._backlog:
            _, waiter = self._backlog.popleft()
            waiter.cancel()
        if self._drain_task is not None and not self._drain_task.done():
            self._drain_task.cancel()
        while not self._queue.empty():
            self._queue.get_nowait()
        # Wake a consumer blocked in receive().
        self._queue.put_nowait(_COMPLETE)
