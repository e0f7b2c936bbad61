"""Protocols and type definitions for queryflow."""

from __future__ import annotations

from enum import Enum
from typing import Any, Callable, Iterator, Optional, Protocol, TypeVar, runtime_checkable

T = TypeVar("T")


class SendMode(str, Enum):
    """What a listener does when the subscription buffer is full."""

    BLOCKING = "blocking"  # Wait for the consumer to free space
    DROP = "drop"  # Discard the change


class SubscriptionState(str, Enum):
    """Lifecycle of a single query subscription."""

    UNSUBSCRIBED = "unsubscribed"
    SUBSCRIBED = "subscribed"
    DELIVERING = "delivering"
    TERMINATED = "terminated"


class TerminationReason(str, Enum):
    """Why a subscription reached its terminal state."""

    ERROR = "error"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


# Type aliases for common structures
ListenerToken = Any
RowFactory = Callable[[dict[str, Any]], Optional[T]]


@runtime_checkable
class ResultSet(Protocol):
    """Lazily iterable rows produced by one query execution."""

    def __iter__(self) -> Iterator[Any]:
        """Iterate the rows of the result set."""
        ...


class ChangeListener(Protocol):
    """Callback registered with a live query."""

    def __call__(self, change: Any) -> None:
        ...


@runtime_checkable
class LiveQuery(Protocol):
    """Protocol for queries that notify listeners when their results change."""

    def execute(self) -> Any:
        """
        Run the query.

        May return an awaitable. Failures propagate to the consumer.
        """
        ...

    def add_change_listener(self, listener: ChangeListener) -> ListenerToken:
        """
        Register a change listener.

        Returns:
            An opaque token used to remove the listener.
        """
        ...

    def remove_change_listener(self, token: ListenerToken) -> None:
        """Remove a listener previously registered with add_change_listener."""
        ...


class QueryChange:
    """Represents one change notification of a live query."""

    __slots__ = ("_query", "_results", "_error")

    def __init__(
        self,
        query: Any = None,
        results: ResultSet | None = None,
        error: Any = None,
    ) -> None:
        self._query = query
        self._results = results
        self._error = error

    @property
    def query(self) -> Any:
        """The query that produced this change."""
        return self._query

    @property
    def results(self) -> ResultSet | None:
        """Fresh results, or None if the query failed."""
        return self._results

    @property
    def error(self) -> Any:
        """The failure reported by the query, if any."""
        return self._error

    @property
    def is_error(self) -> bool:
        """Check if this change reports a failure."""
        return self._error is not None

    def __repr__(self) -> str:
        if self._error is not None:
            return f"QueryChange(error={self._error!r})"
        return f"QueryChange(results={self._results!r})"
