"""
Notification Service

Consumes workflow events inside the persisting transaction: writes the audit
trail and queues notifications. Delivery of queued rows happens elsewhere.
"""

import logging
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from app.engine.aggregate import RequestAggregate
from app.engine.events import EventKind, WorkflowEvent
from app.engine.ledger import StepStatus
from app.models.workflow import NotificationQueue, RequestHistory

logger = logging.getLogger(__name__)

_STATUS_SUBJECTS = {
    EventKind.REQUEST_PUBLISHED: "Request submitted",
    EventKind.STEP_APPROVED: "Step approved",
    EventKind.STEP_REJECTED: "Request rejected",
    EventKind.STEP_SKIPPED: "Step skipped",
    EventKind.REQUEST_COMPLETED: "Request completed",
    EventKind.REQUEST_WITHDRAWN: "Request withdrawn",
}


class NotificationService:
    """Audit and notification sink for engine events"""

    def __init__(self, db: Session):
        self.db = db

    async def record_events(
        self,
        events: Iterable[WorkflowEvent],
        updated: RequestAggregate,
        previous: Optional[RequestAggregate] = None,
    ) -> List[NotificationQueue]:
        """Append history rows and queue notifications; the caller commits"""
        events = list(events)
        queued: List[NotificationQueue] = []

        for index, event in enumerate(events):
            self.db.add(
                RequestHistory(
                    request_id=event.request_id,
                    event_kind=event.kind.value,
                    event_index=index,
                    step_id=event.step_id,
                    actor_id=event.actor_id,
                    resulting_status=event.resulting_status,
                    occurred_at=event.occurred_at,
                    comments=event.comment,
                    event_metadata=event.to_dict(),
                )
            )
            if event.actor_id != updated.creator_id:
                queued.append(self._status_change(updated, event))
            if event.kind == EventKind.REQUEST_COMPLETED:
                queued.extend(self._watcher_updates(updated, event))

        queued.extend(self._approval_requests(updated, previous))
        for notification in queued:
            self.db.add(notification)

        logger.info(
            f"Recorded {len(events)} event(s) and queued {len(queued)} notification(s) "
            f"for request {updated.id}"
        )
        return queued

    def _status_change(self, request: RequestAggregate, event: WorkflowEvent) -> NotificationQueue:
        subject = _STATUS_SUBJECTS.get(event.kind, "Request updated")
        message = f"Your request '{request.title}' is now {event.resulting_status}"
        if event.comment:
            message += f": {event.comment}"
        return NotificationQueue(
            request_id=request.id,
            recipient_id=request.creator_id,
            notification_type="status_change",
            subject=f"{subject}: {request.title}",
            message=message,
            delivery_method="email",
            delivery_metadata={"event": event.kind.value},
        )

    def _watcher_updates(
        self, request: RequestAggregate, event: WorkflowEvent
    ) -> List[NotificationQueue]:
        """Tell watchers how the request ended"""
        recipients = [
            w for w in dict.fromkeys(request.watcher_ids)
            if w not in (request.creator_id, event.actor_id)
        ]
        return [
            NotificationQueue(
                request_id=request.id,
                recipient_id=watcher_id,
                notification_type="status_change",
                subject=f"Request completed: {request.title}",
                message=f"A request you are watching, '{request.title}', is now {event.resulting_status}",
                delivery_method="email",
                delivery_metadata={"event": event.kind.value, "watcher": True},
            )
            for watcher_id in recipients
        ]

    def _approval_requests(
        self, request: RequestAggregate, previous: Optional[RequestAggregate]
    ) -> List[NotificationQueue]:
        """Notify approvers whose steps became pending in this change"""
        if request.is_terminal:
            return []
        already_pending = set()
        if previous is not None:
            already_pending = {s.id for s in previous.steps if s.status == StepStatus.PENDING}

        notifications = []
        for step in request.steps:
            if step.status != StepStatus.PENDING or step.id in already_pending:
                continue
            notifications.append(
                NotificationQueue(
                    request_id=request.id,
                    recipient_id=step.approver_id,
                    notification_type="approval_request",
                    subject=f"Approval Required: {step.name or request.title}",
                    message=f"You have a pending approval for request '{request.title}'",
                    delivery_method="email",
                    delivery_metadata={"step_id": step.id, "order": step.order},
                )
            )
        return notifications
