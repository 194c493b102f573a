"""
Workflow template snapshot consumed by publish
"""

from dataclasses import dataclass, field
from typing import Optional, Tuple

from app.engine.conditions import StepCondition
from app.engine.ledger import EscalationConfig
from app.engine.resolver import ApproverSpec


@dataclass(frozen=True)
class TemplateStep:
    order: int
    approver_spec: ApproverSpec
    is_parallel: bool = False
    require_comment: bool = False
    # None means "use the template default"
    require_all_parallel: Optional[bool] = None
    name: Optional[str] = None
    conditions: Tuple[StepCondition, ...] = ()
    escalation: Optional[EscalationConfig] = None


@dataclass(frozen=True)
class TemplateSettings:
    require_all_parallel: bool = True
    allow_withdraw: bool = True


@dataclass(frozen=True)
class WorkflowTemplate:
    id: Optional[str]
    name: str
    steps: Tuple[TemplateStep, ...] = ()
    settings: TemplateSettings = field(default_factory=TemplateSettings)
    version: int = 1
