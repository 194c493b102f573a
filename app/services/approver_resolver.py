"""
Directory Approver Resolver

Resolves approver specifications against the users table of the creator's
organisation.
"""

import logging
import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from app.engine.resolver import ApproverKind, ApproverSpec, ResolutionContext
from app.models.user import User, UserRole

logger = logging.getLogger(__name__)

MAX_MANAGER_DEPTH = 10


class DirectoryApproverResolver:
    """ApproverResolver backed by the organisation directory"""

    def __init__(self, db: Session):
        self.db = db

    def build_context(
        self, creator: User, form_values: Optional[Dict[str, Any]] = None
    ) -> ResolutionContext:
        """Collect the creator's department and reporting line"""
        return ResolutionContext(
            org_id=creator.org_id,
            creator_id=str(creator.id),
            department_id=creator.department_id,
            manager_chain=tuple(self._manager_chain(creator)),
            form_values=dict(form_values or {}),
        )

    def _manager_chain(self, creator: User) -> List[str]:
        chain: List[str] = []
        seen = {str(creator.id)}
        manager_id = creator.manager_id
        while manager_id and len(chain) < MAX_MANAGER_DEPTH:
            manager_id = str(manager_id)
            if manager_id in seen:
                logger.warning(f"Reporting line of user {creator.id} loops at {manager_id}")
                break
            manager = self._active_user(manager_id, creator.org_id)
            if manager is None:
                break
            chain.append(manager_id)
            seen.add(manager_id)
            manager_id = manager.manager_id
        return chain

    def _active_user(self, user_id: str, org_id: Optional[str]) -> Optional[User]:
        try:
            user_id = str(uuid.UUID(str(user_id)))
        except ValueError:
            return None
        query = self.db.query(User).filter(User.id == user_id, User.is_active.is_(True))
        if org_id is not None:
            query = query.filter(User.org_id == org_id)
        return query.first()

    def resolve(self, spec: ApproverSpec, context: ResolutionContext) -> Optional[str]:
        """Resolve to a single active user id, or None"""
        if spec.kind == ApproverKind.EXPLICIT_USER:
            user = self._active_user(spec.value, context.org_id) if spec.value else None
            return str(user.id) if user else None

        if spec.kind == ApproverKind.ROLE:
            try:
                role = UserRole(spec.value)
            except ValueError:
                logger.warning(f"Unknown role in approver spec: {spec.value}")
                return None
            query = self.db.query(User).filter(User.role == role, User.is_active.is_(True))
            if context.org_id is not None:
                query = query.filter(User.org_id == context.org_id)
            user = query.order_by(User.email).first()
            return str(user.id) if user else None

        if spec.kind == ApproverKind.DEPARTMENT_HEAD:
            if not context.department_id:
                return None
            query = self.db.query(User).filter(
                User.department_id == context.department_id,
                User.is_department_head.is_(True),
                User.is_active.is_(True),
            )
            if context.org_id is not None:
                query = query.filter(User.org_id == context.org_id)
            user = query.order_by(User.email).first()
            return str(user.id) if user else None

        if spec.kind == ApproverKind.DIRECT_MANAGER:
            return context.manager_at(0)

        if spec.kind == ApproverKind.SKIP_LEVEL:
            return context.manager_at(spec.levels)

        if spec.kind == ApproverKind.FORM_FIELD:
            candidate = context.form_values.get(spec.value or "")
            if not candidate:
                return None
            user = self._active_user(str(candidate), context.org_id)
            return str(user.id) if user else None

        return None
