"""Live query flow module."""

from queryflow.flow.base import QueryFlow
from queryflow.flow.channel import ChangeChannel
from queryflow.flow.extensions import (
    map_to_objects,
    model_factory,
    observe_changes,
    observe_objects,
    observe_result_set,
    row_to_dict,
    rows_to_objects,
)
from queryflow.flow.subscription import QuerySubscription

__all__ = [
    "QueryFlow",
    "ChangeChannel",
    "QuerySubscription",
    "observe_changes",
    "observe_result_set",
    "observe_objects",
    "map_to_objects",
    "rows_to_objects",
    "row_to_dict",
    "model_factory",
]
