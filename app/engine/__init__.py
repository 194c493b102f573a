# Approval progression core: pure data model and state transitions

from app.engine.aggregate import RequestAggregate, RequestStatus
from app.engine.conditions import ConditionOperator, StepCondition
from app.engine.errors import ErrorKind, WorkflowError
from app.engine.events import EventKind, WorkflowEvent
from app.engine.ledger import (
    ApprovalStep,
    Decision,
    EscalationConfig,
    StepStatus,
    active_group,
    active_step,
    is_terminal,
)
from app.engine.progression import (
    DecisionKind,
    EngineResult,
    apply_decision,
    publish,
    skip_step,
    withdraw,
)
from app.engine.resolver import (
    ApproverKind,
    ApproverResolver,
    ApproverSpec,
    ResolutionContext,
)
from app.engine.template import TemplateSettings, TemplateStep, WorkflowTemplate

__all__ = [
    "ApprovalStep",
    "ApproverKind",
    "ApproverResolver",
    "ApproverSpec",
    "ConditionOperator",
    "Decision",
    "DecisionKind",
    "EngineResult",
    "ErrorKind",
    "EscalationConfig",
    "EventKind",
    "RequestAggregate",
    "RequestStatus",
    "ResolutionContext",
    "StepCondition",
    "StepStatus",
    "TemplateSettings",
    "TemplateStep",
    "WorkflowError",
    "WorkflowEvent",
    "WorkflowTemplate",
    "active_group",
    "active_step",
    "apply_decision",
    "is_terminal",
    "publish",
    "skip_step",
    "withdraw",
]
