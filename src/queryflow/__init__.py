"""queryflow - Async flows over live database query change listeners."""

from queryflow.core.config import Settings
from queryflow.core.exceptions import QueryFlowError
from queryflow.core.types import QueryChange, SendMode
from queryflow.flow import (
    QueryFlow,
    QuerySubscription,
    map_to_objects,
    model_factory,
    observe_changes,
    observe_objects,
    observe_result_set,
)

__version__ = "1.0.0"
__all__ = [
    "Settings",
    "QueryFlowError",
    "QueryChange",
    "SendMode",
    "QueryFlow",
    "QuerySubscription",
    "observe_changes",
    "observe_result_set",
    "observe_objects",
    "map_to_objects",
    "model_factory",
    "__version__",
]
