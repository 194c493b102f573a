"""
Workflow Service for Multi-level Approval System

Handles templates, draft requests and approval routing. Every state change
follows the same path: load the request, let the progression engine compute
the next ledger, then persist it together with history and notifications in
one transaction.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional
from uuid import UUID

from fastapi import HTTPException
from sqlalchemy import and_, desc, or_
from sqlalchemy.orm import Session

from app.core.config import settings
from app.engine import progression
from app.engine.aggregate import RequestAggregate, RequestStatus
from app.engine.errors import ErrorKind, WorkflowError
from app.engine.ledger import StepStatus, actionable_steps, groups
from app.engine.progression import EngineResult
from app.engine.resolver import ApproverResolver
from app.models.user import User
from app.models.workflow import Request, RequestHistory, RequestStep, WorkflowTemplate
from app.schemas.metadata import dump_metadata, form_values
from app.schemas.workflow import (
    ApprovalStepResponse,
    ApproverSpecSchema,
    DashboardStats,
    DecisionHistoryItem,
    DecisionCommand,
    DecisionResponse,
    EscalationSchema,
    PendingApprovalItem,
    RequestActionResponse,
    RequestCreate,
    RequestHistoryResponse,
    RequestResponse,
    RequestSummary,
    TemplateSettingsSchema,
    TemplateStepConfig,
    WorkflowEventResponse,
    WorkflowTemplateCreate,
    WorkflowTemplateResponse,
)
from app.services.approver_resolver import DirectoryApproverResolver
from app.services.notification_service import NotificationService
from app.services.request_repository import (
    RequestRepository,
    StaleRequestError,
    as_utc,
    template_snapshot,
)

logger = logging.getLogger(__name__)

ERROR_STATUS_CODES: Dict[ErrorKind, int] = {
    ErrorKind.INVALID_STATE: 409,
    ErrorKind.NOT_CURRENT_STEP: 409,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.COMMENT_REQUIRED: 422,
    ErrorKind.UNRESOLVED_APPROVER: 422,
    ErrorKind.EMPTY_WORKFLOW: 422,
    ErrorKind.INVALID_TEMPLATE: 422,
    ErrorKind.UNKNOWN_STEP: 404,
}


def http_error(error: WorkflowError) -> HTTPException:
    """Translate an engine error into the matching HTTP error"""
    detail = {"error": error.kind.value, "message": error.message}
    if error.step_id:
        detail["step_id"] = error.step_id
    return HTTPException(status_code=ERROR_STATUS_CODES.get(error.kind, 400), detail=detail)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WorkflowService:
    """Service for managing multi-level approval workflows"""

    def __init__(self, db: Session, resolver: Optional[ApproverResolver] = None):
        self.db = db
        self.repository = RequestRepository(db)
        self.notifications = NotificationService(db)
        self.directory = DirectoryApproverResolver(db)
        self.resolver = resolver or self.directory

    # Templates

    async def create_template(
        self, template_data: WorkflowTemplateCreate, creator: User
    ) -> WorkflowTemplateResponse:
        """Create a new workflow template"""
        try:
            template = WorkflowTemplate(
                name=template_data.name,
                description=template_data.description,
                category=template_data.category,
                org_id=creator.org_id,
                is_active=True,
                version=1,
                steps_config=[step.model_dump(mode="json") for step in template_data.steps],
                settings=template_data.settings.model_dump(mode="json"),
                created_by=creator.id,
            )
            self.db.add(template)
            self.db.commit()
            self.db.refresh(template)

            logger.info(f"Created workflow template {template.id} '{template.name}'")
            return self._template_response(template)

        except Exception as e:
            logger.error(f"Error creating workflow template: {str(e)}")
            self.db.rollback()
            raise HTTPException(status_code=500, detail="Failed to create workflow template")

    async def update_template(
        self, template_id: UUID, template_data: WorkflowTemplateCreate, editor: User
    ) -> WorkflowTemplateResponse:
        """Replace a template's definition; published requests keep their snapshot"""
        try:
            template = self._get_template(template_id, editor)
            template.name = template_data.name
            template.description = template_data.description
            template.category = template_data.category
            template.steps_config = [step.model_dump(mode="json") for step in template_data.steps]
            template.settings = template_data.settings.model_dump(mode="json")
            template.version = template.version + 1
            self.db.commit()
            self.db.refresh(template)

            logger.info(f"Updated workflow template {template.id} to version {template.version}")
            return self._template_response(template)

        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Error updating workflow template: {str(e)}")
            self.db.rollback()
            raise HTTPException(status_code=500, detail="Failed to update workflow template")

    async def list_templates(
        self, user: User, category: Optional[str] = None
    ) -> List[WorkflowTemplateResponse]:
        """List active templates visible to the user's organisation"""
        try:
            query = self.db.query(WorkflowTemplate).filter(
                and_(
                    WorkflowTemplate.is_active.is_(True),
                    or_(WorkflowTemplate.org_id == user.org_id, WorkflowTemplate.org_id.is_(None)),
                )
            )
            if category:
                query = query.filter(WorkflowTemplate.category == category)
            return [self._template_response(t) for t in query.order_by(WorkflowTemplate.name).all()]

        except Exception as e:
            logger.error(f"Error listing workflow templates: {str(e)}")
            raise HTTPException(status_code=500, detail="Failed to list workflow templates")

    # Request lifecycle

    async def create_request(self, request_data: RequestCreate, creator: User) -> RequestResponse:
        """Create a draft request owned by `creator`"""
        try:
            watcher_ids = self._resolve_watchers(request_data.watcher_ids, creator)
            request = Request(
                title=request_data.title,
                description=request_data.description,
                form_type=request_data.metadata.form_type if request_data.metadata else "generic",
                form_data=dump_metadata(request_data.metadata),
                creator_id=creator.id,
                org_id=creator.org_id,
                watcher_ids=watcher_ids,
                version=0,
            )
            self.db.add(request)
            self.db.commit()

            logger.info(f"Created draft request {request.id} for user {creator.id}")
            row, aggregate = self.repository.load(request.id)
            return self._request_response(aggregate, row)

        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Error creating request: {str(e)}")
            self.db.rollback()
            raise HTTPException(status_code=500, detail="Failed to create request")

    async def publish_request(
        self, request_id: UUID, template_id: UUID, actor: User
    ) -> RequestActionResponse:
        """Materialize the request's approval steps from a template"""
        try:
            row, aggregate = self._load(request_id)
            template = self._get_template(template_id, actor, active_only=True)

            creator = self.db.query(User).filter(User.id == aggregate.creator_id).first()
            context = self.directory.build_context(creator, form_values(aggregate.metadata))

            now = _utcnow()
            result = progression.publish(
                aggregate,
                template_snapshot(template),
                self.resolver,
                context,
                actor_id=str(actor.id),
                now=now,
            )
            return await self._persist(row, aggregate, result, now)

        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Error publishing request {request_id}: {str(e)}")
            self.db.rollback()
            raise HTTPException(status_code=500, detail="Failed to publish request")

    async def apply_decision(
        self, request_id: UUID, command: DecisionCommand, actor: User
    ) -> RequestActionResponse:
        """Approve or reject the caller's active step"""
        try:
            row, aggregate = self._load(request_id)
            now = _utcnow()
            result = progression.apply_decision(
                aggregate,
                actor_id=str(actor.id),
                step_id=str(command.step_id),
                decision=command.decision,
                comment=command.comment,
                now=now,
            )
            return await self._persist(row, aggregate, result, now)

        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Error processing decision on request {request_id}: {str(e)}")
            self.db.rollback()
            raise HTTPException(status_code=500, detail="Failed to process approval decision")

    async def withdraw_request(self, request_id: UUID, actor: User) -> RequestActionResponse:
        """Withdraw a request on behalf of its creator"""
        try:
            row, aggregate = self._load(request_id)
            now = _utcnow()
            result = progression.withdraw(aggregate, actor_id=str(actor.id), now=now)
            return await self._persist(row, aggregate, result, now)

        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Error withdrawing request {request_id}: {str(e)}")
            self.db.rollback()
            raise HTTPException(status_code=500, detail="Failed to withdraw request")

    async def skip_step(
        self, request_id: UUID, step_id: UUID, actor: User, reason: Optional[str] = None
    ) -> RequestActionResponse:
        """Administrative override marking a step as skipped"""
        try:
            row, aggregate = self._load(request_id)
            now = _utcnow()
            result = progression.skip_step(
                aggregate, actor_id=str(actor.id), step_id=str(step_id), reason=reason, now=now
            )
            return await self._persist(row, aggregate, result, now)

        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Error skipping step {step_id} on request {request_id}: {str(e)}")
            self.db.rollback()
            raise HTTPException(status_code=500, detail="Failed to skip step")

    # Queries

    async def get_request(self, request_id: UUID, user: User) -> RequestResponse:
        """Request detail with its ledger and active step"""
        row, aggregate = self._load(request_id)
        self._ensure_can_view(aggregate, user)
        return self._request_response(aggregate, row)

    async def get_pending_approvals(self, user: User) -> List[PendingApprovalItem]:
        """Steps currently awaiting the user's decision"""
        try:
            step_rows = (
                self.db.query(RequestStep)
                .join(Request, RequestStep.request_id == Request.id)
                .filter(
                    and_(
                        RequestStep.approver_id == user.id,
                        RequestStep.status == StepStatus.PENDING.value,
                        Request.withdrawn_at.is_(None),
                    )
                )
                .order_by(RequestStep.activated_at)
                .all()
            )

            items = []
            seen = set()
            for step_row in step_rows:
                request_row = step_row.request
                if request_row.id in seen:
                    continue
                seen.add(request_row.id)
                aggregate = self.repository.load_many([request_row])[0]
                if aggregate.is_terminal:
                    continue
                activated = {str(s.id): s.activated_at for s in request_row.steps}
                for step in actionable_steps(aggregate.steps):
                    if step.approver_id != str(user.id):
                        continue
                    items.append(
                        PendingApprovalItem(
                            request_id=aggregate.id,
                            title=aggregate.title,
                            form_type=request_row.form_type,
                            creator_id=aggregate.creator_id,
                            status=aggregate.status,
                            step_id=step.id,
                            step_name=step.name,
                            order=step.order,
                            total_orders=len(groups(aggregate.steps)),
                            activated_at=as_utc(activated.get(step.id)),
                        )
                    )
                if len(items) >= settings.PENDING_APPROVALS_LIMIT:
                    break

            return items[: settings.PENDING_APPROVALS_LIMIT]

        except Exception as e:
            logger.error(f"Error getting pending approvals: {str(e)}")
            raise HTTPException(status_code=500, detail="Failed to get pending approvals")

    async def get_my_requests(
        self, user: User, status: Optional[RequestStatus] = None
    ) -> List[RequestResponse]:
        """Requests created by the user, newest first"""
        try:
            rows = (
                self.db.query(Request)
                .filter(Request.creator_id == user.id)
                .order_by(desc(Request.created_at))
                .all()
            )
            responses = []
            for row, aggregate in zip(rows, self.repository.load_many(rows)):
                if status is not None and aggregate.status != status:
                    continue
                responses.append(self._request_response(aggregate, row))
            return responses

        except Exception as e:
            logger.error(f"Error getting requests for user {user.id}: {str(e)}")
            raise HTTPException(status_code=500, detail="Failed to get requests")

    async def get_watching(self, user: User) -> List[RequestResponse]:
        """Published requests the user follows as a watcher, newest first"""
        try:
            rows = (
                self.db.query(Request)
                .filter(
                    and_(Request.org_id == user.org_id, Request.published_at.isnot(None))
                )
                .order_by(desc(Request.created_at))
                .all()
            )
            rows = [row for row in rows if str(user.id) in (row.watcher_ids or [])]
            return [
                self._request_response(aggregate, row)
                for row, aggregate in zip(rows, self.repository.load_many(rows))
            ]

        except Exception as e:
            logger.error(f"Error getting watched requests for user {user.id}: {str(e)}")
            raise HTTPException(status_code=500, detail="Failed to get watched requests")

    async def get_decision_history(self, user: User) -> List[DecisionHistoryItem]:
        """Steps the user approved or rejected, most recent decision first"""
        try:
            step_rows = (
                self.db.query(RequestStep)
                .filter(
                    and_(
                        RequestStep.decided_by == user.id,
                        RequestStep.status.in_(
                            [StepStatus.APPROVED.value, StepStatus.REJECTED.value]
                        ),
                    )
                )
                .order_by(desc(RequestStep.decided_at))
                .all()
            )

            items = []
            responses = {}
            for step_row in step_rows:
                request_row = step_row.request
                if request_row.id not in responses:
                    aggregate = self.repository.load_many([request_row])[0]
                    responses[request_row.id] = self._request_response(aggregate, request_row)
                items.append(
                    DecisionHistoryItem(
                        request=responses[request_row.id],
                        step_id=str(step_row.id),
                        step_name=step_row.name,
                        order=step_row.step_order,
                        outcome=StepStatus(step_row.status),
                        comment=step_row.comments,
                        decided_at=as_utc(step_row.decided_at),
                    )
                )
            return items

        except Exception as e:
            logger.error(f"Error getting decision history for user {user.id}: {str(e)}")
            raise HTTPException(status_code=500, detail="Failed to get decision history")

    async def get_request_history(self, request_id: UUID, user: User) -> List[RequestHistoryResponse]:
        """Get request history/audit trail"""
        _, aggregate = self._load(request_id)
        self._ensure_can_view(aggregate, user)
        try:
            entries = (
                self.db.query(RequestHistory)
                .filter(RequestHistory.request_id == aggregate.id)
                .order_by(RequestHistory.occurred_at, RequestHistory.event_index)
                .all()
            )
            return [RequestHistoryResponse.model_validate(entry) for entry in entries]

        except Exception as e:
            logger.error(f"Error getting request history: {str(e)}")
            raise HTTPException(status_code=500, detail="Failed to get request history")

    async def get_request_summary(self, request_id: UUID, user: User) -> RequestSummary:
        """Get request summary with current progress"""
        row, aggregate = self._load(request_id)
        self._ensure_can_view(aggregate, user)

        now = _utcnow()
        activated = {str(step.id): as_utc(step.activated_at) for step in row.steps}
        steps = aggregate.steps
        pending = [s for s in steps if s.status == StepStatus.PENDING]
        overdue = [
            s
            for s in pending
            if s.escalation
            and activated.get(s.id)
            and activated[s.id] + timedelta(hours=s.escalation.after_hours) < now
        ]
        group = aggregate.active_group

        return RequestSummary(
            id=aggregate.id,
            title=aggregate.title,
            status=aggregate.status,
            total_steps=len(steps),
            completed_steps=len(
                [s for s in steps if s.status in (StepStatus.APPROVED, StepStatus.REJECTED)]
            ),
            pending_steps=len(pending),
            skipped_steps=len([s for s in steps if s.status == StepStatus.SKIPPED]),
            overdue_steps=len(overdue) if not aggregate.is_terminal else 0,
            current_order=group[0].order if group else None,
            total_orders=len(groups(steps)),
            pending_approvers=[
                s.approver_id for s in group if s.status == StepStatus.PENDING and s.approver_id
            ],
        )

    async def get_dashboard_stats(self, user: User) -> DashboardStats:
        """Counters for the user's own requests and decisions"""
        try:
            rows = self.db.query(Request).filter(Request.creator_id == user.id).all()
            by_status = {status: 0 for status in RequestStatus}
            for aggregate in self.repository.load_many(rows):
                by_status[aggregate.status] += 1

            decided = (
                self.db.query(RequestStep)
                .filter(
                    and_(
                        RequestStep.decided_by == user.id,
                        RequestStep.status.in_(
                            [StepStatus.APPROVED.value, StepStatus.REJECTED.value]
                        ),
                    )
                )
                .all()
            )
            approved = len([s for s in decided if s.status == StepStatus.APPROVED.value])
            pending = await self.get_pending_approvals(user)
            watching = await self.get_watching(user)

            return DashboardStats(
                requests_by_status=by_status,
                pending_my_approval=len(pending),
                decided_by_me=len(decided),
                approval_rate=round(approved / len(decided), 4) if decided else 0.0,
                watching=len(watching),
            )

        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Error getting dashboard stats: {str(e)}")
            raise HTTPException(status_code=500, detail="Failed to get dashboard stats")

    # Private helper methods

    def _load(self, request_id):
        loaded = self.repository.load(str(request_id))
        if loaded is None:
            raise HTTPException(status_code=404, detail="Request not found")
        return loaded

    def _resolve_watchers(self, watcher_ids, creator: User) -> List[str]:
        """Active users of the creator's organisation; 422 for anyone else"""
        wanted = [str(w) for w in dict.fromkeys(watcher_ids) if str(w) != str(creator.id)]
        if not wanted:
            return []
        found = {
            str(user.id)
            for user in self.db.query(User).filter(
                and_(
                    User.id.in_(wanted),
                    User.is_active.is_(True),
                    User.org_id == creator.org_id,
                )
            )
        }
        unknown = [w for w in wanted if w not in found]
        if unknown:
            raise HTTPException(
                status_code=422,
                detail={
                    "error": "UnknownWatcher",
                    "message": f"Unknown watcher(s): {', '.join(unknown)}",
                },
            )
        return wanted

    def _get_template(self, template_id, user: User, active_only: bool = False) -> WorkflowTemplate:
        query = self.db.query(WorkflowTemplate).filter(
            and_(
                WorkflowTemplate.id == str(template_id),
                or_(WorkflowTemplate.org_id == user.org_id, WorkflowTemplate.org_id.is_(None)),
            )
        )
        if active_only:
            query = query.filter(WorkflowTemplate.is_active.is_(True))
        template = query.first()
        if not template:
            raise HTTPException(status_code=404, detail="Workflow template not found or inactive")
        return template

    def _ensure_can_view(self, aggregate: RequestAggregate, user: User) -> None:
        user_id = str(user.id)
        if user.is_admin or aggregate.creator_id == user_id:
            return
        if user_id in aggregate.watcher_ids:
            return
        if any(step.approver_id == user_id for step in aggregate.steps):
            return
        raise HTTPException(status_code=403, detail="Not allowed to view this request")

    async def _persist(
        self, row: Request, previous: RequestAggregate, result: EngineResult, now: datetime
    ) -> RequestActionResponse:
        """Write a successful engine result, or raise the mapped HTTP error"""
        if not result.ok:
            raise http_error(result.error)

        try:
            self.repository.save(row, result.request, now)
            await self.notifications.record_events(result.events, result.request, previous)
            self.db.commit()
        except StaleRequestError as e:
            self.db.rollback()
            logger.warning(str(e))
            raise HTTPException(
                status_code=409, detail="Request was modified concurrently, reload and retry"
            )

        for event in result.events:
            logger.info(
                f"{event.kind.value} on request {event.request_id} by {event.actor_id}"
                f" -> {event.resulting_status}"
            )

        row, aggregate = self._load(result.request.id)
        return RequestActionResponse(
            request=self._request_response(aggregate, row),
            events=[WorkflowEventResponse(**event.to_dict()) for event in result.events],
        )

    @staticmethod
    def _template_response(template: WorkflowTemplate) -> WorkflowTemplateResponse:
        return WorkflowTemplateResponse(
            id=template.id,
            name=template.name,
            description=template.description,
            category=template.category,
            version=template.version,
            is_active=template.is_active,
            steps=[TemplateStepConfig(**step) for step in template.steps_config or []],
            settings=TemplateSettingsSchema(**(template.settings or {})),
            created_at=template.created_at,
            updated_at=template.updated_at,
        )

    @staticmethod
    def _request_response(aggregate: RequestAggregate, row: Request) -> RequestResponse:
        activated = {str(step.id): as_utc(step.activated_at) for step in row.steps}
        active = aggregate.active_step
        steps = [
            ApprovalStepResponse(
                id=step.id,
                order=step.order,
                name=step.name,
                approver_id=step.approver_id,
                approver_spec=ApproverSpecSchema(**step.approver_spec.to_dict())
                if step.approver_spec
                else None,
                is_parallel=step.is_parallel,
                require_all_parallel=step.require_all_parallel,
                require_comment=step.require_comment,
                status=step.status,
                decision=DecisionResponse(
                    decided_by=step.decision.decided_by,
                    decided_at=step.decision.decided_at,
                    comment=step.decision.comment,
                )
                if step.decision
                else None,
                escalation=EscalationSchema(
                    after_hours=step.escalation.after_hours,
                    escalate_to=step.escalation.escalate_to,
                )
                if step.escalation
                else None,
                activated_at=activated.get(step.id),
            )
            for step in sorted(aggregate.steps, key=lambda s: s.order)
        ]
        return RequestResponse(
            id=aggregate.id,
            title=aggregate.title,
            description=aggregate.description,
            metadata=dump_metadata(aggregate.metadata),
            creator_id=aggregate.creator_id,
            org_id=aggregate.org_id,
            status=aggregate.status,
            template_id=aggregate.template_id,
            template_version=aggregate.template_version,
            published_at=aggregate.published_at,
            withdrawn_at=aggregate.withdrawn_at,
            version=aggregate.version,
            steps=steps,
            active_step_id=active.id if active else None,
            active_step_ids=[s.id for s in actionable_steps(aggregate.steps)]
            if not aggregate.is_terminal
            else [],
            watcher_ids=list(aggregate.watcher_ids),
            created_at=as_utc(row.created_at),
            updated_at=as_utc(row.updated_at),
        )
