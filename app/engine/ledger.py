"""
Step Ledger

The ordered list of approval steps owned by one request, plus read-only
queries over it. Steps sharing an `order` value form one parallel group.
The active step is always recomputed from step statuses; there is no stored
current-step pointer.
"""

import enum
from dataclasses import dataclass, replace
from datetime import datetime
from itertools import groupby
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence

from app.engine.resolver import ApproverSpec


class StepStatus(str, enum.Enum):
    """Lifecycle of a single approval step"""

    WAITING = "waiting"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STEP_STATUSES

    def can_transition_to(self, target: "StepStatus") -> bool:
        return target in _STEP_TRANSITIONS[self]


TERMINAL_STEP_STATUSES: FrozenSet[StepStatus] = frozenset(
    {StepStatus.APPROVED, StepStatus.REJECTED, StepStatus.SKIPPED}
)

_STEP_TRANSITIONS: Dict[StepStatus, FrozenSet[StepStatus]] = {
    StepStatus.WAITING: frozenset({StepStatus.PENDING, StepStatus.SKIPPED}),
    StepStatus.PENDING: frozenset(
        {StepStatus.APPROVED, StepStatus.REJECTED, StepStatus.SKIPPED}
    ),
    StepStatus.APPROVED: frozenset(),
    StepStatus.REJECTED: frozenset(),
    StepStatus.SKIPPED: frozenset(),
}


@dataclass(frozen=True)
class Decision:
    decided_by: str
    decided_at: datetime
    comment: Optional[str] = None


@dataclass(frozen=True)
class EscalationConfig:
    """Declarative escalation rule; nothing in the engine enforces it"""

    after_hours: int
    escalate_to: Optional[str] = None


@dataclass(frozen=True)
class ApprovalStep:
    id: str
    order: int
    approver_id: Optional[str]
    status: StepStatus = StepStatus.WAITING
    name: Optional[str] = None
    approver_spec: Optional[ApproverSpec] = None
    is_parallel: bool = False
    require_all_parallel: bool = True
    require_comment: bool = False
    decision: Optional[Decision] = None
    escalation: Optional[EscalationConfig] = None

    def transition(self, target: StepStatus, decision: Optional[Decision] = None) -> "ApprovalStep":
        if not self.status.can_transition_to(target):
            raise ValueError(
                f"Illegal step transition {self.status.value} -> {target.value} for step {self.id}"
            )
        return replace(self, status=target, decision=decision or self.decision)


def sort_steps(steps: Iterable[ApprovalStep]) -> List[ApprovalStep]:
    return sorted(steps, key=lambda step: step.order)


def groups(steps: Iterable[ApprovalStep]) -> List[List[ApprovalStep]]:
    """Steps grouped by order, ascending"""
    return [list(members) for _, members in groupby(sort_steps(steps), key=lambda s: s.order)]


def group_requires_all(group: Sequence[ApprovalStep]) -> bool:
    if len(group) <= 1:
        return True
    return any(step.require_all_parallel for step in group)


def group_satisfied(group: Sequence[ApprovalStep]) -> bool:
    """Whether a group no longer blocks progression"""
    if any(step.status == StepStatus.REJECTED for step in group):
        return False
    if group_requires_all(group):
        return all(step.status in (StepStatus.APPROVED, StepStatus.SKIPPED) for step in group)
    if any(step.status == StepStatus.APPROVED for step in group):
        return True
    return all(step.status == StepStatus.SKIPPED for step in group)


def has_rejection(steps: Iterable[ApprovalStep]) -> bool:
    return any(step.status == StepStatus.REJECTED for step in steps)


def is_terminal(steps: Sequence[ApprovalStep]) -> bool:
    """True iff a step is rejected or every group is satisfied"""
    if not steps:
        return False
    if has_rejection(steps):
        return True
    return all(group_satisfied(group) for group in groups(steps))


def is_fully_approved(steps: Sequence[ApprovalStep]) -> bool:
    return bool(steps) and not has_rejection(steps) and is_terminal(steps)


def active_group(steps: Sequence[ApprovalStep]) -> List[ApprovalStep]:
    """Members of the lowest-ordered unsatisfied group, or [] if none"""
    if not steps or has_rejection(steps):
        return []
    for group in groups(steps):
        if not group_satisfied(group):
            return group
    return []


def active_step(steps: Sequence[ApprovalStep]) -> Optional[ApprovalStep]:
    """The step currently awaiting a decision"""
    group = active_group(steps)
    for wanted in (StepStatus.PENDING, StepStatus.WAITING):
        for step in group:
            if step.status == wanted:
                return step
    return None


def actionable_steps(steps: Sequence[ApprovalStep]) -> List[ApprovalStep]:
    """Pending members of the active group"""
    return [step for step in active_group(steps) if step.status == StepStatus.PENDING]


def find_step(steps: Iterable[ApprovalStep], step_id: str) -> Optional[ApprovalStep]:
    return next((step for step in steps if step.id == step_id), None)


def replace_step(steps: Sequence[ApprovalStep], updated: ApprovalStep) -> tuple:
    return tuple(updated if step.id == updated.id else step for step in steps)


def activate_next_group(steps: Sequence[ApprovalStep]) -> tuple:
    """Move waiting members of the active group to pending"""
    waiting_ids = {
        step.id for step in active_group(steps) if step.status == StepStatus.WAITING
    }
    return tuple(
        step.transition(StepStatus.PENDING) if step.id in waiting_ids else step
        for step in steps
    )


def validate_ledger(steps: Sequence[ApprovalStep]) -> List[str]:
    """Structural problems with a ledger, empty when it is well formed"""
    problems = []
    seen_ids = set()
    for step in steps:
        if step.id in seen_ids:
            problems.append(f"duplicate step id {step.id}")
        seen_ids.add(step.id)
        if step.order < 1:
            problems.append(f"step {step.id} has order {step.order}, orders start at 1")
    problems.extend(layout_problems(steps))
    return problems


def layout_problems(steps) -> List[str]:
    """
    Orders shared by steps that are not all parallel. Accepts anything with
    `order` and `is_parallel`, so template configs use the same rule.
    """
    by_order = {}
    for step in steps:
        by_order.setdefault(step.order, []).append(step)
    problems = []
    for order in sorted(by_order):
        members = by_order[order]
        if len(members) > 1 and not all(s.is_parallel for s in members):
            problems.append(
                f"order {order} is shared by {len(members)} steps but not all are parallel"
            )
    return problems
