"""Pytest configuration and fixtures."""

from __future__ import annotations

import os
from typing import Any, Callable, Generator, Iterator

import pytest

from queryflow.core.config import Settings, configure_settings
from queryflow.core.types import QueryChange

# Set test environment
os.environ.setdefault("QUERYFLOW_OBSERVABILITY__LOG_FORMAT", "console")


class FakeRow:
    """Result row exposing to_dict(), like document store SDK results."""

    def __init__(self, data: dict[str, Any]) -> None:
        self._data = data

    def to_dict(self) -> dict[str, Any]:
        return dict(self._data)


class FakeResultSet:
    """Single-pass result set over a list of rows."""

    def __init__(self, rows: list[Any]) -> None:
        self._rows = iter(rows)

    def __iter__(self) -> Iterator[Any]:
        return self._rows


class FakeQuery:
    """
    In-process live query.

    Changes passed as ``on_execute`` are delivered to every listener, in
    order, from inside execute().
    """

    def __init__(
        self,
        on_execute: list[Any] | None = None,
        execute_error: Exception | None = None,
        remove_error: Exception | None = None,
    ) -> None:
        self._on_execute = on_execute or []
        self._execute_error = execute_error
        self._remove_error = remove_error
        self._listeners: dict[int, Callable[[Any], None]] = {}
        self._next_token = 0

        self.calls: list[str] = []
        self.removed: list[int] = []

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def execute(self) -> FakeResultSet:
        self.calls.append("execute")
        if self._execute_error is not None:
            raise self._execute_error
        for change in self._on_execute:
            self.emit_raw(change)
        return FakeResultSet([])

    def add_change_listener(self, listener: Callable[[Any], None]) -> int:
        self.calls.append("add_change_listener")
        self._next_token += 1
        self._listeners[self._next_token] = listener
        return self._next_token

    def remove_change_listener(self, token: int) -> None:
        self.calls.append("remove_change_listener")
        self.removed.append(token)
        self._listeners.pop(token, None)
        if self._remove_error is not None:
            raise self._remove_error

    def emit(self, rows: list[Any] | None = None, error: Any = None) -> None:
        """Notify listeners with fresh rows or an error."""
        results = FakeResultSet(rows) if rows is not None else None
        self.emit_raw(QueryChange(query=self, results=results, error=error))

    def emit_raw(self, change: Any) -> None:
        for listener in list(self._listeners.values()):
            listener(change)


def change_with(rows: list[Any] | None = None, error: Any = None) -> QueryChange:
    """Build a change carrying rows or an error."""
    results = FakeResultSet(rows) if rows is not None else None
    return QueryChange(results=results, error=error)


@pytest.fixture(autouse=True)
def default_settings() -> Generator[Settings, None, None]:
    """Isolate each test from global settings changes."""
    settings = Settings()
    configure_settings(settings)
    yield settings
    configure_settings(None)


@pytest.fixture
def query() -> FakeQuery:
    """A live query with no scripted changes."""
    return FakeQuery()


@pytest.fixture
def make_query() -> type[FakeQuery]:
    """Factory for live queries with scripted changes."""
    return FakeQuery


@pytest.fixture
def make_change() -> Callable[..., QueryChange]:
    """Factory for changes carrying rows or an error."""
    return change_with


@pytest.fixture
def make_row() -> type[FakeRow]:
    """Factory for result rows exposing to_dict()."""
    return FakeRow
