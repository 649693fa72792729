from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace
from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app import models  # noqa: F401  (registers tables on Base.metadata)
from app.database import Base
from app.models import ActionPlan, Department, User
from app.services.permissions import PermissionCache, PermissionEngine

NOW = datetime(2026, 2, 3, 9, 0, tzinfo=timezone.utc)

# Stored values for configurable cells used across the use case tests.
STORED_PERMISSIONS = {
    ("leader", "action_plan", "create"): True,
    ("leader", "action_plan", "edit"): True,
    ("leader", "action_plan", "delete"): True,
}


@pytest.fixture()
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'action_plans.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    session.add_all([Department(code="BAS", name="Business"), Department(code="FIN", name="Finance")])
    session.commit()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def permissions():
    return PermissionEngine(load_values=lambda: dict(STORED_PERMISSIONS), cache=PermissionCache())


def make_actor(*, role="leader", department_code="BAS", full_name=None):
    return SimpleNamespace(
        id=uuid4(),
        role=role,
        department_code=department_code,
        full_name=full_name or f"{role.title()} User",
    )


def make_user(db, *, role="leader", department_code="BAS", full_name=None, email=None) -> User:
    user = User(
        id=uuid4(),
        email=email or f"{uuid4().hex[:8]}@example.com",
        password_hash="not-a-real-hash",
        full_name=full_name or f"{role.title()} User",
        role=role,
        department_code=department_code,
    )
    db.add(user)
    db.commit()
    return user


def make_plan(db, **overrides) -> ActionPlan:
    fields = {
        "department_code": "BAS",
        "month": "January",
        "year": 2026,
        "action_plan": "Weekly follow-up on receivables",
        "status": "Achieved",
        "submission_status": "draft",
        "unlock_status": "none",
    }
    fields.update(overrides)
    plan = ActionPlan(id=uuid4(), **fields)
    db.add(plan)
    db.commit()
    return plan
