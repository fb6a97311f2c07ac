"""Workflow definitions and the pure execution engine.

Filter evaluation, branch resolution, drip window maths and the step
interpreter live here. Nothing in this package touches storage or the network.
"""

from .branching import BranchResolver
from .filters import (
    FIELD_MAPPINGS,
    FieldSpec,
    FieldType,
    FilterCondition,
    FilterOperator,
    FilterResult,
    FilterTree,
    LogicalOperator,
    evaluate,
    matches_search,
)
from .interpreter import StepInterpreter
from .loader import definition_from_dict, list_workflows, load_workflow, validate_workflow
from .models import (
    Advance,
    BranchPath,
    BranchStep,
    CallWebhookEffect,
    CallWebhookStep,
    ClearFieldStep,
    Contact,
    ContactStatus,
    ContactWorkflowState,
    Fail,
    FieldMutation,
    RemoveFromWorkflowStep,
    RetryLater,
    SendMessageEffect,
    SendMessageStep,
    Step,
    Terminal,
    Transition,
    UpdateFieldStep,
    WaitStep,
    WaitUnit,
    WorkflowDefinition,
)
from .window import in_window, is_window_open, local_day, next_window_open

__all__ = [
    # Filters
    "FIELD_MAPPINGS",
    "FieldSpec",
    "FieldType",
    "FilterCondition",
    "FilterOperator",
    "FilterResult",
    "FilterTree",
    "LogicalOperator",
    "evaluate",
    "matches_search",
    # Models
    "Advance",
    "BranchPath",
    "BranchStep",
    "CallWebhookEffect",
    "CallWebhookStep",
    "ClearFieldStep",
    "Contact",
    "ContactStatus",
    "ContactWorkflowState",
    "Fail",
    "FieldMutation",
    "RemoveFromWorkflowStep",
    "RetryLater",
    "SendMessageEffect",
    "SendMessageStep",
    "Step",
    "Terminal",
    "Transition",
    "UpdateFieldStep",
    "WaitStep",
    "WaitUnit",
    "WorkflowDefinition",
    # Engine
    "BranchResolver",
    "StepInterpreter",
    # Window
    "in_window",
    "is_window_open",
    "local_day",
    "next_window_open",
    # Loader
    "definition_from_dict",
    "list_workflows",
    "load_workflow",
    "validate_workflow",
]
