"""
Workflow events emitted by the progression engine for the notification sink
"""

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional


class EventKind(str, enum.Enum):
    """Kinds of events produced by engine operations"""

    STEP_APPROVED = "StepApproved"
    STEP_REJECTED = "StepRejected"
    STEP_SKIPPED = "StepSkipped"
    REQUEST_COMPLETED = "RequestCompleted"
    REQUEST_PUBLISHED = "RequestPublished"
    REQUEST_WITHDRAWN = "RequestWithdrawn"


@dataclass(frozen=True)
class WorkflowEvent:
    """One state change, shaped for delivery and history"""

    kind: EventKind
    request_id: str
    actor_id: str
    occurred_at: datetime
    resulting_status: str
    step_id: Optional[str] = None
    comment: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "request_id": self.request_id,
            "step_id": self.step_id,
            "actor_id": self.actor_id,
            "occurred_at": self.occurred_at.isoformat(),
            "resulting_status": self.resulting_status,
        }
