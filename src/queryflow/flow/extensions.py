"""Flows over live queries and the result set to object mapping stage."""

from __future__ import annotations

from typing import Any, AsyncIterator, Callable, Iterable, Optional, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from queryflow.core.config import get_settings
from queryflow.core.exceptions import MissingResultSetError, NullRowError, RowMappingError
from queryflow.core.types import LiveQuery, QueryChange, ResultSet, RowFactory, SendMode
from queryflow.flow.base import QueryFlow
from queryflow.flow.subscription import QuerySubscription
from queryflow.observability.logging import get_logger
from queryflow.observability.metrics import get_metrics_collector

logger = get_logger(__name__)

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)


def observe_changes(
    query: LiveQuery,
    *,
    buffer_size: int | None = None,
    send_mode: SendMode | str | None = None,
) -> QueryFlow[QueryChange]:
    """
    Return a flow of every change notification of ``query``.

    Each iteration registers its own listener and then executes the query.
    A change carrying an error ends the iteration by raising that error.

    Args:
        query: The live query to observe.
        buffer_size: Capacity of the change buffer (defaults to settings).
        send_mode: Behaviour when the buffer is full (defaults to settings).
    """

    async def source() -> AsyncIterator[QueryChange]:
        subscription = QuerySubscription(
            query, buffer_size=buffer_size, send_mode=send_mode
        )
        async with subscription:
            async for change in subscription:
                yield change

    return QueryFlow(source)


def observe_result_set(
    query: LiveQuery,
    *,
    strict: bool | None = None,
    buffer_size: int | None = None,
    send_mode: SendMode | str | None = None,
) -> QueryFlow[ResultSet]:
    """
    Return a flow that emits the query results every time they change.

    Changes without a result set are skipped, or raise MissingResultSetError
    when ``strict`` is set.
    """
    changes = observe_changes(query, buffer_size=buffer_size, send_mode=send_mode)
    if _resolve_strict(strict):
        return changes.map(_require_results)
    return changes.map_not_null(lambda change: change.results)


def observe_objects(
    query: LiveQuery,
    factory: RowFactory[T],
    *,
    strict: bool | None = None,
    buffer_size: int | None = None,
    send_mode: SendMode | str | None = None,
) -> QueryFlow[list[T]]:
    """
    Return a flow that maps every result set of ``query`` to a list of objects.

    ``factory`` receives each row as a dict. Rows it maps to None are left
    out, as are changes without results; with ``strict`` both raise instead.

    Example:
        class User(BaseModel):
            name: str
            age: int

        async for users in observe_objects(query, model_factory(User)).map(len):
            ...
    """
    changes = observe_changes(query, buffer_size=buffer_size, send_mode=send_mode)
    return map_to_objects(changes, factory, strict=_resolve_strict(strict))


def map_to_objects(
    changes: QueryFlow[Any],
    factory: RowFactory[T],
    *,
    strict: bool = False,
) -> QueryFlow[list[T]]:
    """Map each change of an existing change flow to a list of objects."""
    if strict:
        return changes.map(
            lambda change: rows_to_objects(_require_results(change), factory, strict=True)
        )

    def to_objects(change: Any) -> Optional[list[T]]:
        results = getattr(change, "results", None)
        if results is None:
            return None
        return rows_to_objects(results, factory)

    return changes.map_not_null(to_objects)


def rows_to_objects(
    results: Iterable[Any],
    factory: RowFactory[T],
    *,
    strict: bool = False,
) -> list[T]:
    """
    Apply ``factory`` to every row of a result set, preserving row order.

    Raises:
        NullRowError: In strict mode, when the factory returns None.
    """
    objects: list[T] = []
    skipped = 0

    for index, row in enumerate(results):
        obj = factory(row_to_dict(row))
        if obj is None:
            if strict:
                raise NullRowError(index)
            skipped += 1
            continue
        objects.append(obj)

    get_metrics_collector().record_rows(kept=len(objects), skipped=skipped)
    return objects


def row_to_dict(row: Any) -> dict[str, Any]:
    """Convert a result row into a plain dict."""
    to_dict = getattr(row, "to_dict", None)
    if callable(to_dict):
        return dict(to_dict())
    return dict(row)


def model_factory(
    model: type[M],
    *,
    skip_invalid: bool = True,
) -> Callable[[dict[str, Any]], Optional[M]]:
    """
    Build a row factory that validates rows into a pydantic model.

    Args:
        model: The pydantic model class.
        skip_invalid: Map rows failing validation to None instead of raising.

    Raises:
        RowMappingError: From the factory, when a row fails validation and
            ``skip_invalid`` is False.
    """

    def factory(row: dict[str, Any]) -> Optional[M]:
        try:
            return model.model_validate(row)
        except PydanticValidationError as e:
            if not skip_invalid:
                raise RowMappingError(model.__name__, str(e)) from e
            logger.debug(
                "Row skipped, validation failed",
                model=model.__name__,
                errors=e.error_count(),
            )
            return None

    return factory


def _require_results(change: Any) -> ResultSet:
    results = getattr(change, "results", None)
    if results is None:
        raise MissingResultSetError()
    return results


def _resolve_strict(strict: bool | None) -> bool:
    if strict is None:
        return get_settings().stream.strict_mapping
    return strict
