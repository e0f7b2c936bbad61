"""Cold, re-iterable asynchronous flows."""

from __future__ import annotations

import inspect
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Generic, Optional, TypeVar

from queryflow.core.exceptions import EmptyFlowError

T = TypeVar("T")
R = TypeVar("R")


async def _close_iterator(iterator: AsyncIterator[Any]) -> None:
    aclose = getattr(iterator, "aclose", None)
    if aclose is not None:
        await aclose()


class QueryFlow(Generic[T]):
    """
    A cold asynchronous sequence.

    Nothing runs until the flow is iterated, and every iteration builds a
    fresh iterator from ``source``. For a live query flow that means each
    ``async for`` opens its own listener registration.

    Breaking out of a bare ``async for`` leaves closing the iterator to the
    event loop's async generator finalizer, which runs on a later loop
    iteration. Use open(), collect(), first() or take() to have the listener
    removed as soon as iteration stops.
    """

    def __init__(self, source: Callable[[], AsyncIterator[T]]) -> None:
        self._source = source

    def __aiter__(self) -> AsyncIterator[T]:
        return self._source()

    @asynccontextmanager
    async def open(self) -> AsyncIterator[AsyncIterator[T]]:
        """
        Open one iteration of the flow, closing it on exit.

        Example:
            async with flow.open() as items:
                async for item in items:
                    ...
        """
        iterator = self.__aiter__()
        try:
            yield iterator
        finally:
            await _close_iterator(iterator)

    async def collect(self, action: Callable[[T], Awaitable[None] | None]) -> None:
        """Run action for every item until the flow ends."""
        async with self.open() as items:
            async for item in items:
                result = action(item)
                if inspect.isawaitable(result):
                    await result

    async def first(self) -> T:
        """
        Return the first item and stop the flow.

        Raises:
            EmptyFlowError: If the flow ends without emitting.
        """
        async with self.open() as items:
            async for item in items:
                return item
        raise EmptyFlowError()

    async def take(self, count: int) -> list[T]:
        """Return up to ``count`` items and stop the flow."""
        taken: list[T] = []
        if count <= 0:
            return taken

        async with self.open() as items:
            async for item in items:
                taken.append(item)
                if len(taken) >= count:
                    break
        return taken

    def map(self, transform: Callable[[T], R]) -> QueryFlow[R]:
        """Derive a flow emitting ``transform(item)`` for every item."""
        upstream = self

        async def mapped() -> AsyncIterator[R]:
            async with upstream.open() as items:
                async for item in items:
                    yield transform(item)

        return QueryFlow(mapped)

    def map_not_null(self, transform: Callable[[T], Optional[R]]) -> QueryFlow[R]:
        """Like map(), skipping items for which transform returns None."""
        upstream = self

        async def mapped() -> AsyncIterator[R]:
            async with upstream.open() as items:
                async for item in items:
                    value = transform(item)
                    if value is not None:
                        yield value

        return QueryFlow(mapped)
