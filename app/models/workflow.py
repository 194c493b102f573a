"""
Workflow and Approval Models
Templates, requests with their step ledger, audit history and notifications
"""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.models.base import GUID, JSON, BaseModel


class WorkflowTemplate(BaseModel):
    """Template defining approval workflow steps"""

    __tablename__ = "workflow_templates"

    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(100), nullable=True)  # capex, leave, travel, ...
    org_id = Column(String(36), index=True, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    # Bumped on every edit; published requests keep the version they used
    version = Column(Integer, default=1, nullable=False)

    steps_config = Column(JSON, nullable=False)  # List of step definitions
    settings = Column(JSON, nullable=True)

    created_by = Column(GUID(), ForeignKey("users.id"), nullable=True)

    def __repr__(self):
        return f"<WorkflowTemplate(name='{self.name}', version={self.version})>"


class Request(BaseModel):
    """A submitted approval request; owns its step ledger"""

    __tablename__ = "requests"

    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    form_type = Column(String(50), nullable=True)
    form_data = Column(JSON, nullable=True)

    creator_id = Column(GUID(), ForeignKey("users.id"), index=True, nullable=False)
    org_id = Column(String(36), index=True, nullable=True)
    # User ids following the request; no approval rights
    watcher_ids = Column(JSON, nullable=True)

    # Snapshot provenance
    template_id = Column(GUID(), ForeignKey("workflow_templates.id"), nullable=True)
    template_version = Column(Integer, nullable=True)
    allow_withdraw = Column(Boolean, default=True, nullable=False)

    # Lifecycle stamps; the status itself is derived from these and the steps
    published_at = Column(DateTime(timezone=True), nullable=True)
    withdrawn_at = Column(DateTime(timezone=True), nullable=True)
    withdrawn_by = Column(GUID(), ForeignKey("users.id"), nullable=True)

    # Optimistic concurrency counter
    version = Column(Integer, default=0, nullable=False)

    steps = relationship(
        "RequestStep",
        back_populates="request",
        cascade="all, delete-orphan",
        order_by="RequestStep.step_order",
    )
    creator = relationship("User", foreign_keys=[creator_id])

    def __repr__(self):
        return f"<Request(title='{self.title}', version={self.version})>"


class RequestStep(BaseModel):
    """One approval step of a request's ledger"""

    __tablename__ = "request_steps"

    request_id = Column(GUID(), ForeignKey("requests.id"), index=True, nullable=False)
    step_order = Column(Integer, nullable=False)
    name = Column(String(255), nullable=True)

    approver_id = Column(GUID(), ForeignKey("users.id"), index=True, nullable=True)
    approver_spec = Column(JSON, nullable=True)

    is_parallel = Column(Boolean, default=False, nullable=False)
    require_all_parallel = Column(Boolean, default=True, nullable=False)
    require_comment = Column(Boolean, default=False, nullable=False)

    status = Column(String(20), default="waiting", index=True, nullable=False)
    activated_at = Column(DateTime(timezone=True), nullable=True)

    # Decision
    decided_by = Column(GUID(), ForeignKey("users.id"), nullable=True)
    decided_at = Column(DateTime(timezone=True), nullable=True)
    comments = Column(Text, nullable=True)

    escalation = Column(JSON, nullable=True)

    request = relationship("Request", back_populates="steps")

    def __repr__(self):
        return f"<RequestStep(order={self.step_order}, approver='{self.approver_id}', status='{self.status}')>"


class RequestHistory(BaseModel):
    """Audit trail for request state changes"""

    __tablename__ = "request_history"

    request_id = Column(GUID(), ForeignKey("requests.id"), index=True, nullable=False)
    event_kind = Column(String(50), nullable=False)
    # Position within the batch of events emitted by one operation
    event_index = Column(Integer, default=0, nullable=False)
    step_id = Column(String(36), nullable=True)

    actor_id = Column(GUID(), ForeignKey("users.id"), nullable=False)
    resulting_status = Column(String(20), nullable=False)

    occurred_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    comments = Column(Text, nullable=True)
    event_metadata = Column(JSON, nullable=True)

    def __repr__(self):
        return f"<RequestHistory(request='{self.request_id}', event='{self.event_kind}')>"


class NotificationQueue(BaseModel):
    """Queue for workflow notifications"""

    __tablename__ = "notification_queue"

    request_id = Column(GUID(), ForeignKey("requests.id"), index=True, nullable=False)
    recipient_id = Column(GUID(), ForeignKey("users.id"), index=True, nullable=False)

    # approval_request, status_change
    notification_type = Column(String(100), nullable=False)
    subject = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)

    # Delivery status
    status = Column(String(50), default="pending", nullable=False)  # pending, sent, failed
    sent_at = Column(DateTime(timezone=True), nullable=True)

    delivery_method = Column(String(50), default="email", nullable=False)  # email, in_app
    delivery_metadata = Column(JSON, nullable=True)

    retry_count = Column(Integer, default=0, nullable=False)
    max_retries = Column(Integer, default=3, nullable=False)

    def __repr__(self):
        return f"<NotificationQueue(type='{self.notification_type}', recipient='{self.recipient_id}', status='{self.status}')>"
