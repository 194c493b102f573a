"""
Progression Engine

The sole authority for changing step statuses. Every operation is a pure
function of its inputs: it never mutates the request it receives and returns
an EngineResult holding either the next request state plus emitted events, or
a typed WorkflowError. Failures never write anything.
"""

import enum
import functools
import logging
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple, Union

from app.engine import ledger
from app.engine.aggregate import WITHDRAWABLE_STATUSES, RequestAggregate, RequestStatus
from app.engine.conditions import conditions_met
from app.engine.errors import (
    CommentRequired,
    EmptyWorkflow,
    Forbidden,
    InvalidState,
    InvalidTemplate,
    NotCurrentStep,
    UnknownStep,
    UnresolvedApprover,
    WorkflowError,
)
from app.engine.events import EventKind, WorkflowEvent
from app.engine.ledger import ApprovalStep, Decision, StepStatus
from app.engine.resolver import ApproverResolver, ResolutionContext
from app.engine.template import WorkflowTemplate

logger = logging.getLogger(__name__)


class DecisionKind(str, enum.Enum):
    APPROVE = "approve"
    REJECT = "reject"


@dataclass(frozen=True)
class EngineResult:
    request: Optional[RequestAggregate] = None
    events: Tuple[WorkflowEvent, ...] = ()
    error: Optional[WorkflowError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _returns_result(func: Callable) -> Callable:
    """Turn WorkflowError raised inside an operation into a failed EngineResult"""

    @functools.wraps(func)
    def wrapper(*args, **kwargs) -> EngineResult:
        try:
            request, events = func(*args, **kwargs)
        except WorkflowError as exc:
            logger.debug(f"{func.__name__} refused: {exc.kind.value} - {exc.message}")
            return EngineResult(error=exc)
        return EngineResult(request=request, events=tuple(events))

    return wrapper


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_step_id() -> str:
    return str(uuid.uuid4())


def _event(
    kind: EventKind,
    request: RequestAggregate,
    actor_id: str,
    occurred_at: datetime,
    step_id: Optional[str] = None,
    comment: Optional[str] = None,
) -> WorkflowEvent:
    return WorkflowEvent(
        kind=kind,
        request_id=request.id,
        actor_id=actor_id,
        occurred_at=occurred_at,
        resulting_status=request.status.value,
        step_id=step_id,
        comment=comment,
    )


def _advance(steps: Tuple[ApprovalStep, ...], order: int) -> Tuple[ApprovalStep, ...]:
    """Close the group at `order` if it is satisfied and activate the next one"""
    group = [step for step in steps if step.order == order]
    if ledger.group_satisfied(group):
        # any-mode group: remaining members no longer need to act
        leftover = {step.id for step in group if not step.status.is_terminal}
        steps = tuple(
            step.transition(StepStatus.SKIPPED) if step.id in leftover else step
            for step in steps
        )
    return ledger.activate_next_group(steps)


def _completion_events(
    before: RequestStatus,
    after: RequestAggregate,
    actor_id: str,
    occurred_at: datetime,
) -> List[WorkflowEvent]:
    if after.status.is_terminal and not before.is_terminal:
        return [_event(EventKind.REQUEST_COMPLETED, after, actor_id, occurred_at)]
    return []


def _require_open(request: RequestAggregate) -> None:
    if not request.is_published:
        raise InvalidState(f"Request {request.id} has not been published")
    if request.is_terminal:
        raise InvalidState(
            f"Request {request.id} is {request.status.value}; no further changes are accepted"
        )


@_returns_result
def apply_decision(
    request: RequestAggregate,
    actor_id: str,
    step_id: str,
    decision: Union[DecisionKind, str],
    comment: Optional[str] = None,
    now: Optional[datetime] = None,
):
    """Approve or reject the active step on behalf of `actor_id`"""
    now = now or _utcnow()
    status_before = request.status

    _require_open(request)

    try:
        decision = DecisionKind(decision)
    except ValueError:
        raise InvalidState(f"Unknown decision {decision!r}, expected approve or reject")

    step = next(
        (s for s in ledger.actionable_steps(request.steps) if s.id == step_id), None
    )
    if step is None:
        raise NotCurrentStep(f"Step {step_id} is not awaiting a decision", step_id=step_id)

    if step.approver_id != actor_id:
        raise Forbidden(
            f"User {actor_id} is not the approver for step {step_id}", step_id=step_id
        )

    text = (comment or "").strip()
    if decision == DecisionKind.REJECT and not text:
        raise CommentRequired("A comment is required to reject", step_id=step_id)
    if step.require_comment and not text:
        raise CommentRequired("This step requires a comment", step_id=step_id)

    target = StepStatus.APPROVED if decision == DecisionKind.APPROVE else StepStatus.REJECTED
    record = Decision(decided_by=actor_id, decided_at=now, comment=text or None)
    steps = ledger.replace_step(request.steps, step.transition(target, record))
    if target == StepStatus.APPROVED:
        steps = _advance(steps, step.order)

    updated = replace(request, steps=steps)
    kind = EventKind.STEP_APPROVED if target == StepStatus.APPROVED else EventKind.STEP_REJECTED
    events = [_event(kind, updated, actor_id, now, step_id=step.id, comment=text or None)]
    events.extend(_completion_events(status_before, updated, actor_id, now))
    return updated, events


@_returns_result
def publish(
    draft: RequestAggregate,
    template: WorkflowTemplate,
    resolver: ApproverResolver,
    context: ResolutionContext,
    actor_id: Optional[str] = None,
    now: Optional[datetime] = None,
    new_step_id: Callable[[], str] = _new_step_id,
):
    """Materialize the Step Ledger of a draft from a template snapshot"""
    now = now or _utcnow()
    actor_id = actor_id or draft.creator_id

    if actor_id != draft.creator_id:
        raise Forbidden("Only the request creator can publish this request")
    if draft.status != RequestStatus.DRAFT:
        raise InvalidState(f"Only draft requests can be published, request is {draft.status.value}")
    if not template.steps:
        raise EmptyWorkflow(f"Template '{template.name}' has no steps")

    ordered = sorted(template.steps, key=lambda s: s.order)
    dense_order = {}
    for tstep in ordered:
        dense_order.setdefault(tstep.order, len(dense_order) + 1)
    problems = ledger.layout_problems(ordered)
    if problems:
        raise InvalidTemplate(problems[0])

    steps = []
    for tstep in ordered:
        require_all = tstep.require_all_parallel
        if require_all is None:
            require_all = template.settings.require_all_parallel
        base = ApprovalStep(
            id=new_step_id(),
            order=dense_order[tstep.order],
            approver_id=None,
            name=tstep.name,
            approver_spec=tstep.approver_spec,
            is_parallel=tstep.is_parallel,
            require_all_parallel=require_all,
            require_comment=tstep.require_comment,
            escalation=tstep.escalation,
        )
        if not conditions_met(tstep.conditions, context.form_values):
            steps.append(replace(base, status=StepStatus.SKIPPED))
            continue
        approver_id = resolver.resolve(tstep.approver_spec, context)
        if not approver_id:
            raise UnresolvedApprover(
                f"No user found for approver {tstep.approver_spec.describe()}"
                f" of step {tstep.name or tstep.order}"
            )
        steps.append(replace(base, approver_id=str(approver_id)))

    published = replace(
        draft,
        steps=ledger.activate_next_group(tuple(steps)),
        template_id=template.id,
        template_version=template.version,
        allow_withdraw=template.settings.allow_withdraw,
        published_at=now,
    )
    events = [_event(EventKind.REQUEST_PUBLISHED, published, actor_id, now)]
    events.extend(_completion_events(RequestStatus.DRAFT, published, actor_id, now))
    return published, events


@_returns_result
def withdraw(
    request: RequestAggregate,
    actor_id: str,
    now: Optional[datetime] = None,
):
    """Withdraw a request on behalf of its creator"""
    now = now or _utcnow()

    if actor_id != request.creator_id:
        raise Forbidden("Only the requester can withdraw")
    if request.status not in WITHDRAWABLE_STATUSES:
        raise InvalidState(f"Cannot withdraw a request that is {request.status.value}")
    if not request.allow_withdraw:
        raise Forbidden("This workflow does not allow withdrawal")

    updated = replace(request, withdrawn_at=now, withdrawn_by=actor_id)
    return updated, [_event(EventKind.REQUEST_WITHDRAWN, updated, actor_id, now)]


@_returns_result
def skip_step(
    request: RequestAggregate,
    actor_id: str,
    step_id: str,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
):
    """Administrative override: mark a step as skipped"""
    now = now or _utcnow()
    status_before = request.status

    _require_open(request)

    step = ledger.find_step(request.steps, step_id)
    if step is None:
        raise UnknownStep(f"Step {step_id} does not belong to request {request.id}", step_id=step_id)
    if step.status.is_terminal:
        raise InvalidState(f"Step {step_id} is already {step.status.value}", step_id=step_id)

    steps = ledger.replace_step(request.steps, step.transition(StepStatus.SKIPPED))
    steps = _advance(steps, step.order)

    updated = replace(request, steps=steps)
    text = (reason or "").strip() or None
    events = [_event(EventKind.STEP_SKIPPED, updated, actor_id, now, step_id=step.id, comment=text)]
    events.extend(_completion_events(status_before, updated, actor_id, now))
    return updated, events
