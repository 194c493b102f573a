"""
Request Repository

Maps between ORM rows and the immutable engine types, and persists a new
ledger with a conditional update on the request version.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session, selectinload

from app.core.config import settings
from app.engine.aggregate import RequestAggregate
from app.engine.conditions import StepCondition
from app.engine.ledger import ApprovalStep, Decision, EscalationConfig, StepStatus
from app.engine.resolver import ApproverSpec
from app.engine.template import TemplateSettings, TemplateStep
from app.engine.template import WorkflowTemplate as TemplateSnapshot
from app.models.workflow import Request, RequestStep, WorkflowTemplate
from app.schemas.metadata import parse_metadata

logger = logging.getLogger(__name__)


class StaleRequestError(Exception):
    """The request changed between read and write"""

    def __init__(self, request_id: str, expected_version: int):
        super().__init__(
            f"Request {request_id} was modified concurrently (expected version {expected_version})"
        )
        self.request_id = request_id
        self.expected_version = expected_version


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC"""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _escalation_from_dict(data: Optional[Dict[str, Any]]) -> Optional[EscalationConfig]:
    if not data:
        return None
    return EscalationConfig(after_hours=int(data["after_hours"]), escalate_to=data.get("escalate_to"))


def _escalation_to_dict(escalation: Optional[EscalationConfig]) -> Optional[Dict[str, Any]]:
    if escalation is None:
        return None
    return {"after_hours": escalation.after_hours, "escalate_to": escalation.escalate_to}


def template_snapshot(template: WorkflowTemplate) -> TemplateSnapshot:
    """Build the engine's view of a stored template"""
    config = template.settings or {}
    require_all = config.get("require_all_parallel")
    if require_all is None:
        require_all = settings.DEFAULT_REQUIRE_ALL_PARALLEL

    steps = tuple(
        TemplateStep(
            order=int(step["order"]),
            approver_spec=ApproverSpec.from_dict(step["approver_spec"]),
            is_parallel=bool(step.get("is_parallel", False)),
            require_comment=bool(step.get("require_comment", False)),
            require_all_parallel=step.get("require_all_parallel"),
            name=step.get("name"),
            conditions=tuple(StepCondition.from_dict(c) for c in step.get("conditions") or []),
            escalation=_escalation_from_dict(step.get("escalation")),
        )
        for step in template.steps_config or []
    )
    return TemplateSnapshot(
        id=str(template.id),
        name=template.name,
        steps=steps,
        settings=TemplateSettings(
            require_all_parallel=require_all,
            allow_withdraw=config.get("allow_withdraw", True),
        ),
        version=template.version,
    )


def step_from_row(row: RequestStep) -> ApprovalStep:
    decision = None
    if row.decided_by is not None:
        decision = Decision(
            decided_by=str(row.decided_by),
            decided_at=as_utc(row.decided_at),
            comment=row.comments,
        )
    return ApprovalStep(
        id=str(row.id),
        order=row.step_order,
        approver_id=str(row.approver_id) if row.approver_id else None,
        status=StepStatus(row.status),
        name=row.name,
        approver_spec=ApproverSpec.from_dict(row.approver_spec) if row.approver_spec else None,
        is_parallel=row.is_parallel,
        require_all_parallel=row.require_all_parallel,
        require_comment=row.require_comment,
        decision=decision,
        escalation=_escalation_from_dict(row.escalation),
    )


def aggregate_from_row(row: Request) -> RequestAggregate:
    return RequestAggregate(
        id=str(row.id),
        title=row.title,
        creator_id=str(row.creator_id),
        description=row.description,
        metadata=parse_metadata(row.form_data),
        org_id=row.org_id,
        steps=tuple(step_from_row(step) for step in row.steps),
        watcher_ids=tuple(str(w) for w in row.watcher_ids or ()),
        template_id=str(row.template_id) if row.template_id else None,
        template_version=row.template_version,
        allow_withdraw=row.allow_withdraw,
        published_at=as_utc(row.published_at),
        withdrawn_at=as_utc(row.withdrawn_at),
        withdrawn_by=str(row.withdrawn_by) if row.withdrawn_by else None,
        version=row.version,
    )


class RequestRepository:
    """Loads and stores request aggregates"""

    def __init__(self, db: Session):
        self.db = db

    def get_row(self, request_id: str) -> Optional[Request]:
        return (
            self.db.query(Request)
            .options(selectinload(Request.steps))
            .filter(Request.id == str(request_id))
            .first()
        )

    def load(self, request_id: str) -> Optional[Tuple[Request, RequestAggregate]]:
        row = self.get_row(request_id)
        if row is None:
            return None
        return row, aggregate_from_row(row)

    def load_many(self, rows: List[Request]) -> List[RequestAggregate]:
        return [aggregate_from_row(row) for row in rows]

    def save(self, row: Request, updated: RequestAggregate, now: datetime) -> int:
        """
        Persist `updated` over `row` if nobody else has written it since it
        was read. Returns the new version; the caller commits.
        """
        expected = updated.version
        new_version = expected + 1
        changed = (
            self.db.query(Request)
            .filter(Request.id == str(updated.id), Request.version == expected)
            .update(
                {
                    Request.template_id: updated.template_id,
                    Request.template_version: updated.template_version,
                    Request.allow_withdraw: updated.allow_withdraw,
                    Request.published_at: updated.published_at,
                    Request.withdrawn_at: updated.withdrawn_at,
                    Request.withdrawn_by: updated.withdrawn_by,
                    Request.version: new_version,
                    Request.updated_at: now,
                },
                synchronize_session=False,
            )
        )
        if changed != 1:
            raise StaleRequestError(updated.id, expected)

        existing = {str(step.id): step for step in row.steps}
        for step in updated.steps:
            step_row = existing.get(step.id)
            if step_row is None:
                step_row = RequestStep(id=step.id, request_id=str(updated.id))
                row.steps.append(step_row)
            self._sync_step(step_row, step, now)

        self.db.flush()
        logger.debug(f"Saved request {updated.id} at version {new_version}")
        return new_version

    @staticmethod
    def _sync_step(step_row: RequestStep, step: ApprovalStep, now: datetime) -> None:
        if step.status == StepStatus.PENDING and step_row.status != StepStatus.PENDING.value:
            step_row.activated_at = now
        step_row.step_order = step.order
        step_row.name = step.name
        step_row.approver_id = step.approver_id
        step_row.approver_spec = step.approver_spec.to_dict() if step.approver_spec else None
        step_row.is_parallel = step.is_parallel
        step_row.require_all_parallel = step.require_all_parallel
        step_row.require_comment = step.require_comment
        step_row.status = step.status.value
        step_row.escalation = _escalation_to_dict(step.escalation)
        if step.decision is not None:
            step_row.decided_by = step.decision.decided_by
            step_row.decided_at = step.decision.decided_at
            step_row.comments = step.decision.comment
