"""
Workflow Schemas for the Approval Workflow API

Pydantic models for templates, requests, approval decisions and audit history
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.engine.aggregate import RequestStatus
from app.engine.conditions import ConditionOperator
from app.engine.events import EventKind
from app.engine.ledger import StepStatus, layout_problems
from app.engine.progression import DecisionKind
from app.engine.resolver import ApproverKind
from app.schemas.metadata import RequestMetadata

_VALUE_REQUIRED = {ApproverKind.EXPLICIT_USER, ApproverKind.ROLE, ApproverKind.FORM_FIELD}


class ApproverSpecSchema(BaseModel):
    """Who should approve a step"""

    kind: ApproverKind = Field(..., description="How the approver is looked up")
    value: Optional[str] = Field(
        None, description="User id, role name or form field, depending on kind"
    )
    levels: int = Field(default=1, ge=1, le=10, description="Hops above direct manager for skip_level")

    @model_validator(mode="after")
    def check_value(self):
        if self.kind in _VALUE_REQUIRED and not (self.value or "").strip():
            raise ValueError(f"approver kind '{self.kind.value}' requires a value")
        return self


class StepConditionSchema(BaseModel):
    """Condition on form values deciding whether a step applies"""

    field: str = Field(..., min_length=1)
    operator: ConditionOperator
    value: Any
    value2: Optional[Any] = None


class EscalationSchema(BaseModel):
    after_hours: int = Field(..., gt=0, description="Hours before the step counts as overdue")
    escalate_to: Optional[str] = Field(None, description="User to escalate to")


class TemplateStepConfig(BaseModel):
    """Configuration for a single workflow step"""

    order: int = Field(..., ge=1, description="Order of this step in workflow")
    name: Optional[str] = Field(None, max_length=255, description="Name of the approval step")
    approver_spec: ApproverSpecSchema
    is_parallel: bool = Field(default=False, description="Shares its order with other parallel steps")
    require_comment: bool = Field(default=False, description="Comment mandatory for any decision")
    require_all_parallel: Optional[bool] = Field(
        None, description="All parallel members must approve (template default when omitted)"
    )
    conditions: List[StepConditionSchema] = Field(default_factory=list)
    escalation: Optional[EscalationSchema] = None


class TemplateSettingsSchema(BaseModel):
    # None falls back to DEFAULT_REQUIRE_ALL_PARALLEL
    require_all_parallel: Optional[bool] = None
    allow_withdraw: bool = True


class WorkflowTemplateCreate(BaseModel):
    """Schema for creating workflow templates"""

    name: str = Field(..., max_length=255, description="Template name")
    description: Optional[str] = Field(None, description="Template description")
    category: Optional[str] = Field(None, max_length=100, description="capex, leave, travel, ...")
    steps: List[TemplateStepConfig] = Field(default_factory=list, description="List of workflow steps")
    settings: TemplateSettingsSchema = Field(default_factory=TemplateSettingsSchema)

    @model_validator(mode="after")
    def check_parallel_groups(self):
        problems = layout_problems(self.steps)
        if problems:
            raise ValueError("; ".join(problems))
        return self


class WorkflowTemplateResponse(BaseModel):
    """Schema for workflow template responses"""

    id: UUID
    name: str
    description: Optional[str]
    category: Optional[str]
    version: int
    is_active: bool
    steps: List[TemplateStepConfig]
    settings: TemplateSettingsSchema
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class RequestCreate(BaseModel):
    """Schema for creating draft requests"""

    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    metadata: Optional[RequestMetadata] = Field(None, description="Form payload")
    watcher_ids: List[UUID] = Field(
        default_factory=list, description="Colleagues who follow the request without approving"
    )


class PublishRequest(BaseModel):
    template_id: UUID = Field(..., description="Template whose steps are materialized")


class DecisionCommand(BaseModel):
    """Schema for approving or rejecting the active step"""

    step_id: UUID = Field(..., description="Step being decided")
    decision: DecisionKind
    comment: Optional[str] = Field(None, max_length=2000, description="Comments for the decision")


class SkipStepRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=2000)


class DecisionResponse(BaseModel):
    decided_by: str
    decided_at: datetime
    comment: Optional[str]


class ApprovalStepResponse(BaseModel):
    """Schema for one step of a request ledger"""

    id: str
    order: int
    name: Optional[str]
    approver_id: Optional[str]
    approver_spec: Optional[ApproverSpecSchema]
    is_parallel: bool
    require_all_parallel: bool
    require_comment: bool
    status: StepStatus
    decision: Optional[DecisionResponse]
    escalation: Optional[EscalationSchema]
    activated_at: Optional[datetime] = None


class RequestResponse(BaseModel):
    """Schema for request responses"""

    id: str
    title: str
    description: Optional[str]
    metadata: Dict[str, Any]
    creator_id: str
    org_id: Optional[str]
    status: RequestStatus
    template_id: Optional[str]
    template_version: Optional[int]
    published_at: Optional[datetime]
    withdrawn_at: Optional[datetime]
    version: int
    steps: List[ApprovalStepResponse] = []
    active_step_id: Optional[str] = None
    active_step_ids: List[str] = []
    watcher_ids: List[str] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class WorkflowEventResponse(BaseModel):
    kind: EventKind
    request_id: str
    step_id: Optional[str]
    actor_id: str
    occurred_at: datetime
    resulting_status: RequestStatus


class RequestActionResponse(BaseModel):
    """Result of a state-changing request operation"""

    request: RequestResponse
    events: List[WorkflowEventResponse]


class RequestHistoryResponse(BaseModel):
    """Schema for request history responses"""

    id: UUID
    request_id: UUID
    event_kind: str
    step_id: Optional[str]
    actor_id: UUID
    resulting_status: str
    comments: Optional[str]
    occurred_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PendingApprovalItem(BaseModel):
    """A step currently awaiting the caller"""

    request_id: str
    title: str
    form_type: Optional[str]
    creator_id: str
    status: RequestStatus
    step_id: str
    step_name: Optional[str]
    order: int
    total_orders: int
    activated_at: Optional[datetime]


class RequestSummary(BaseModel):
    """Summary view of request with current progress"""

    id: str
    title: str
    status: RequestStatus
    total_steps: int
    completed_steps: int
    pending_steps: int
    skipped_steps: int
    overdue_steps: int
    current_order: Optional[int]
    total_orders: int
    pending_approvers: List[str] = []


class DashboardStats(BaseModel):
    """Counters for the caller's dashboard"""

    requests_by_status: Dict[RequestStatus, int]
    pending_my_approval: int
    decided_by_me: int
    approval_rate: float  # share of my decisions that were approvals
    watching: int = 0


class DecisionHistoryItem(BaseModel):
    """A decision the caller made, with the request it belongs to"""

    request: RequestResponse
    step_id: str
    step_name: Optional[str]
    order: int
    outcome: StepStatus
    comment: Optional[str]
    decided_at: datetime
