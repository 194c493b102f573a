"""
Pytest configuration and fixtures for Approval Workflow API tests
"""

import os
import uuid
from typing import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Set test environment variable before any imports
os.environ["TESTING"] = "true"

from app.api.deps import get_db  # noqa: E402
from app.core.security import JWTManager  # noqa: E402
from app.db.database import Base  # noqa: E402
from app.main import app  # noqa: E402
from app.models.user import User, UserRole  # noqa: E402
from app.models.workflow import WorkflowTemplate  # noqa: E402

# In-memory database shared by every connection
engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
Base.metadata.create_all(bind=engine)

TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

ORG_ID = "org-acme"


def override_get_db():
    """Override database dependency for testing"""
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


app.dependency_overrides[get_db] = override_get_db


@pytest.fixture(scope="function", autouse=True)
def db_session():
    """Create a fresh database session for each test"""
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.rollback()
        for table in reversed(Base.metadata.sorted_tables):
            db.execute(table.delete())
        db.commit()
        db.close()


@pytest.fixture(scope="function")
def client() -> Generator:
    """Create a test client"""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def make_user(db_session):
    """Factory for directory users"""

    def _make_user(
        name: str,
        role: UserRole = UserRole.EMPLOYEE,
        manager: User = None,
        department_id: str = "engineering",
        is_department_head: bool = False,
        org_id: str = ORG_ID,
        is_active: bool = True,
    ) -> User:
        user = User(
            id=str(uuid.uuid4()),
            email=f"{name}@example.com",
            full_name=name.title(),
            role=role,
            org_id=org_id,
            department_id=department_id,
            is_department_head=is_department_head,
            manager_id=manager.id if manager else None,
            is_active=is_active,
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make_user


@pytest.fixture
def org(make_user):
    """A small organisation: requester -> manager -> director, plus specialists"""
    director = make_user("director", role=UserRole.EXECUTIVE)
    manager = make_user("manager", role=UserRole.MANAGER, manager=director, is_department_head=True)
    requester = make_user("requester", manager=manager)
    return {
        "director": director,
        "manager": manager,
        "requester": requester,
        "finance": make_user("finance", role=UserRole.FINANCE, department_id="finance"),
        "hr": make_user("hr", role=UserRole.HR, department_id="people"),
        "admin": make_user("admin", role=UserRole.ADMIN, department_id="it"),
        "outsider": make_user("outsider"),
    }


def token_headers(user: User) -> dict:
    """Bearer headers for a user, as issued by the identity provider"""
    token = JWTManager.create_access_token({"sub": str(user.id)})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers():
    return token_headers


@pytest.fixture
def make_template(db_session):
    """Factory for stored workflow templates"""

    def _make_template(steps, name="Purchase approval", settings=None, org_id=ORG_ID):
        template = WorkflowTemplate(
            name=name,
            category="capex",
            org_id=org_id,
            is_active=True,
            version=1,
            steps_config=steps,
            settings=settings or {"require_all_parallel": True, "allow_withdraw": True},
        )
        db_session.add(template)
        db_session.commit()
        db_session.refresh(template)
        return template

    return _make_template
