"""Exception hierarchy for queryflow."""

from __future__ import annotations

from typing import Any


class QueryFlowError(Exception):
    """Base exception for all queryflow errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} - {self.details}"
        return self.message


# Configuration Errors
class ConfigurationError(QueryFlowError):
    """Error in configuration."""

    pass


# Query Errors
class QueryError(QueryFlowError):
    """The live query reported a failure without an exception object."""

    def __init__(self, reported: Any = None) -> None:
        details: dict[str, Any] = {}
        if reported is not None:
            details["reported"] = repr(reported)
        super().__init__("Something went wrong with your query", details)
        self.reported = reported


# Mapping Errors
class MappingError(QueryFlowError):
    """Base error for result set to object mapping."""

    pass


class MissingResultSetError(MappingError):
    """A successful change carried no result set."""

    def __init__(self) -> None:
        super().__init__("Query change carried no result set")


class NullRowError(MappingError):
    """The row factory returned None in strict mode."""

    def __init__(self, index: int) -> None:
        super().__init__(
            f"Row factory returned None for row {index}",
            {"row_index": index},
        )
        self.index = index


class RowMappingError(MappingError):
    """A row could not be converted into the requested object."""

    def __init__(self, model: str, reason: str) -> None:
        super().__init__(
            f"Failed to map row to '{model}'",
            {"model": model, "reason": reason},
        )


# Flow Errors
class EmptyFlowError(QueryFlowError):
    """The flow completed before emitting the requested item."""

    def __init__(self) -> None:
        super().__init__("Flow completed without emitting any item")
