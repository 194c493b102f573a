"""
Request and approval endpoints
Draft creation, publishing, decisions, withdrawal and read views
"""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Body, Depends, Query, status
from sqlalchemy.orm import Session

from app.api.deps import get_current_user, get_db, require_admin
from app.engine.aggregate import RequestStatus
from app.models.user import User
from app.schemas.workflow import (
    DecisionCommand,
    DecisionHistoryItem,
    PendingApprovalItem,
    PublishRequest,
    RequestActionResponse,
    RequestCreate,
    RequestHistoryResponse,
    RequestResponse,
    RequestSummary,
    SkipStepRequest,
)
from app.services.workflow_service import WorkflowService

router = APIRouter()


@router.post("", response_model=RequestResponse, status_code=status.HTTP_201_CREATED)
async def create_request(
    request: RequestCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Create a draft request with its form payload"""
    workflow_service = WorkflowService(db)
    return await workflow_service.create_request(request, current_user)


@router.get("/mine", response_model=List[RequestResponse])
async def get_my_requests(
    status_filter: Optional[RequestStatus] = Query(
        None, alias="status", description="Filter by request status"
    ),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Requests created by the caller, newest first"""
    workflow_service = WorkflowService(db)
    return await workflow_service.get_my_requests(current_user, status=status_filter)


@router.get("/pending-approvals", response_model=List[PendingApprovalItem])
async def get_pending_approvals(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Steps awaiting the caller's decision

    Only steps in the active group of a non-terminal request are listed.
    """
    workflow_service = WorkflowService(db)
    return await workflow_service.get_pending_approvals(current_user)


@router.get("/watching", response_model=List[RequestResponse])
async def get_watching(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Published requests the caller follows as a watcher"""
    workflow_service = WorkflowService(db)
    return await workflow_service.get_watching(current_user)


@router.get("/decided", response_model=List[DecisionHistoryItem])
async def get_decision_history(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Steps the caller approved or rejected

    Each item carries the request as it stands now; newest decision first.
    """
    workflow_service = WorkflowService(db)
    return await workflow_service.get_decision_history(current_user)


@router.get("/{request_id}", response_model=RequestResponse)
async def get_request(
    request_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Request detail with its step ledger and active step"""
    workflow_service = WorkflowService(db)
    return await workflow_service.get_request(request_id, current_user)


@router.post("/{request_id}/publish", response_model=RequestActionResponse)
async def publish_request(
    request_id: UUID,
    body: PublishRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Publish a draft against a template

    Approvers are resolved once, here; steps whose conditions do not match
    the form are recorded as skipped.
    """
    workflow_service = WorkflowService(db)
    return await workflow_service.publish_request(request_id, body.template_id, current_user)


@router.post("/{request_id}/decisions", response_model=RequestActionResponse)
async def decide(
    request_id: UUID,
    command: DecisionCommand,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Approve or reject a step

    Rejections always need a comment. A 409 means the step is no longer
    awaiting a decision or the request changed concurrently.
    """
    workflow_service = WorkflowService(db)
    return await workflow_service.apply_decision(request_id, command, current_user)


@router.post("/{request_id}/withdraw", response_model=RequestActionResponse)
async def withdraw_request(
    request_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Withdraw the caller's own request"""
    workflow_service = WorkflowService(db)
    return await workflow_service.withdraw_request(request_id, current_user)


@router.post("/{request_id}/steps/{step_id}/skip", response_model=RequestActionResponse)
async def skip_step(
    request_id: UUID,
    step_id: UUID,
    body: Optional[SkipStepRequest] = Body(None),
    current_user: User = Depends(require_admin()),
    db: Session = Depends(get_db),
):
    """Administrative override: skip a step that has not completed"""
    workflow_service = WorkflowService(db)
    return await workflow_service.skip_step(
        request_id, step_id, current_user, reason=body.reason if body else None
    )


@router.get("/{request_id}/history", response_model=List[RequestHistoryResponse])
async def get_request_history(
    request_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Audit trail of the request"""
    workflow_service = WorkflowService(db)
    return await workflow_service.get_request_history(request_id, current_user)


@router.get("/{request_id}/summary", response_model=RequestSummary)
async def get_request_summary(
    request_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Progress summary: step counts, overdue steps and who is up next"""
    workflow_service = WorkflowService(db)
    return await workflow_service.get_request_summary(request_id, current_user)
