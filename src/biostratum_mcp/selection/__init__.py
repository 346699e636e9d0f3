"""
Validation and corrective retry for model-produced tool and resource selections.
"""

from .validation import (
    ToolSelection,
    ResourceSelection,
    parse_json_response,
    validate_tool_selection,
    validate_resource_selection,
)
from .templates import (
    create_tool_selection_feedback_prompt,
    create_resource_selection_feedback_prompt,
)
from .retry import RetryOutcome, RetryState, SelectionRetryProtocol, with_model_retry

__all__ = [
    "ToolSelection",
    "ResourceSelection",
    "parse_json_response",
    "validate_tool_selection",
    "validate_resource_selection",
    "create_tool_selection_feedback_prompt",
    "create_resource_selection_feedback_prompt",
    "RetryOutcome",
    "RetryState",
    "SelectionRetryProtocol",
    "with_model_retry",
]
