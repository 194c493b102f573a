# Database models package

from app.models.base import GUID, JSON, BaseModel, TimestampMixin, UUIDMixin
from app.models.user import User, UserRole
from app.models.workflow import (
    NotificationQueue,
    Request,
    RequestHistory,
    RequestStep,
    WorkflowTemplate,
)

__all__ = [
    "BaseModel",
    "GUID",
    "JSON",
    "TimestampMixin",
    "UUIDMixin",
    "User",
    "UserRole",
    "WorkflowTemplate",
    "Request",
    "RequestStep",
    "RequestHistory",
    "NotificationQueue",
]
