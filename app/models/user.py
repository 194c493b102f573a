"""
User model for authentication and approver lookup
Holds the organisation directory: roles, departments and the reporting line
"""

import enum

from sqlalchemy import Boolean, Column, ForeignKey, String
from sqlalchemy import Enum as SQLEnum

from app.models.base import GUID, BaseModel


class UserRole(enum.Enum):
    """Directory roles; templates may route steps to any of them"""

    EMPLOYEE = "employee"
    MANAGER = "manager"
    FINANCE = "finance"
    HR = "hr"
    EXECUTIVE = "executive"
    ADMIN = "admin"


class User(BaseModel):
    """Directory entry of a person who submits or approves requests"""

    __tablename__ = "users"

    email = Column(String(255), unique=True, index=True, nullable=False)
    full_name = Column(String(255), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    role = Column(
        SQLEnum(UserRole, values_callable=lambda roles: [r.value for r in roles]),
        default=UserRole.EMPLOYEE,
        nullable=False,
    )

    # Organisation placement
    org_id = Column(String(36), index=True, nullable=True)
    department_id = Column(String(100), index=True, nullable=True)
    is_department_head = Column(Boolean, default=False, nullable=False)
    manager_id = Column(GUID(), ForeignKey("users.id"), nullable=True)

    def __repr__(self):
        return f"<User(email='{self.email}', role='{self.role.value}')>"

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN
