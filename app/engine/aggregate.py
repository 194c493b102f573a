"""
Request Aggregate

A request exclusively owns its Step Ledger. Its status is derived from the
ledger and the lifecycle stamps, so it cannot drift from the steps.
"""

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, FrozenSet, Optional, Tuple

from app.engine import ledger
from app.engine.ledger import ApprovalStep


class RequestStatus(str, enum.Enum):
    DRAFT = "draft"
    PENDING = "pending"
    IN_REVIEW = "in_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_REQUEST_STATUSES


TERMINAL_REQUEST_STATUSES: FrozenSet[RequestStatus] = frozenset(
    {RequestStatus.APPROVED, RequestStatus.REJECTED, RequestStatus.WITHDRAWN}
)

WITHDRAWABLE_STATUSES: FrozenSet[RequestStatus] = frozenset(
    {RequestStatus.DRAFT, RequestStatus.PENDING, RequestStatus.IN_REVIEW}
)


@dataclass(frozen=True)
class RequestAggregate:
    id: str
    title: str
    creator_id: str
    description: Optional[str] = None
    # Form payload; opaque to the engine
    metadata: Any = None
    org_id: Optional[str] = None
    steps: Tuple[ApprovalStep, ...] = field(default_factory=tuple)
    watcher_ids: Tuple[str, ...] = ()
    template_id: Optional[str] = None
    template_version: Optional[int] = None
    allow_withdraw: bool = True
    published_at: Optional[datetime] = None
    withdrawn_at: Optional[datetime] = None
    withdrawn_by: Optional[str] = None
    version: int = 0

    @property
    def is_published(self) -> bool:
        return self.published_at is not None

    @property
    def status(self) -> RequestStatus:
        if self.withdrawn_at is not None:
            return RequestStatus.WITHDRAWN
        if not self.is_published:
            return RequestStatus.DRAFT
        if ledger.has_rejection(self.steps):
            return RequestStatus.REJECTED
        if ledger.is_terminal(self.steps):
            return RequestStatus.APPROVED
        if any(step.decision is not None for step in self.steps):
            return RequestStatus.IN_REVIEW
        return RequestStatus.PENDING

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def active_step(self) -> Optional[ApprovalStep]:
        if self.is_terminal:
            return None
        return ledger.active_step(self.steps)

    @property
    def active_group(self):
        if self.is_terminal:
            return []
        return ledger.active_group(self.steps)
