"""Core module for queryflow."""

from queryflow.core.config import Settings
from queryflow.core.exceptions import QueryFlowError
from queryflow.core.types import (
    LiveQuery,
    QueryChange,
    ResultSet,
    SendMode,
    SubscriptionState,
    TerminationReason,
)

__all__ = [
    "Settings",
    "QueryFlowError",
    "LiveQuery",
    "QueryChange",
    "ResultSet",
    "SendMode",
    "SubscriptionState",
    "TerminationReason",
]
