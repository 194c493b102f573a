"""
Dashboard endpoints
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import get_current_user, get_db
from app.models.user import User
from app.schemas.workflow import DashboardStats
from app.services.workflow_service import WorkflowService

router = APIRouter()


@router.get("/stats", response_model=DashboardStats)
async def get_dashboard_stats(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Request counts by status plus the caller's approval workload"""
    workflow_service = WorkflowService(db)
    return await workflow_service.get_dashboard_stats(current_user)
