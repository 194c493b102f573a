"""
Workflow template endpoints
Templates define the ordered approver steps a request is published against
"""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.api.deps import get_current_user, get_db, require_roles
from app.models.user import User
from app.schemas.workflow import WorkflowTemplateCreate, WorkflowTemplateResponse
from app.services.workflow_service import WorkflowService

router = APIRouter()

TEMPLATE_EDITORS = ["admin", "hr", "finance"]


@router.post("", response_model=WorkflowTemplateResponse, status_code=status.HTTP_201_CREATED)
async def create_template(
    template: WorkflowTemplateCreate,
    current_user: User = Depends(require_roles(TEMPLATE_EDITORS)),
    db: Session = Depends(get_db),
):
    """
    Create a workflow template

    Steps sharing an `order` form a parallel group and must all be marked
    `is_parallel`; layout problems surface when a request is published.
    """
    workflow_service = WorkflowService(db)
    return await workflow_service.create_template(template, current_user)


@router.get("", response_model=List[WorkflowTemplateResponse])
async def list_templates(
    category: Optional[str] = Query(None, description="Filter by category"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """List active templates of the caller's organisation"""
    workflow_service = WorkflowService(db)
    return await workflow_service.list_templates(current_user, category=category)


@router.put("/{template_id}", response_model=WorkflowTemplateResponse)
async def update_template(
    template_id: UUID,
    template: WorkflowTemplateCreate,
    current_user: User = Depends(require_roles(TEMPLATE_EDITORS)),
    db: Session = Depends(get_db),
):
    """
    Replace a template definition

    The template version is bumped; requests published earlier keep the
    steps they were published with.
    """
    workflow_service = WorkflowService(db)
    return await workflow_service.update_template(template_id, template, current_user)
