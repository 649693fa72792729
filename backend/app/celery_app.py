"""
Celery worker: turns plan events into per-recipient notification rows.
"""
from __future__ import annotations

import logging
from uuid import UUID

from celery import Celery
from sqlalchemy.orm import Session

from .config import settings
from .database import SessionLocal
from .models import ActionPlan, Notification, User
from .services.permissions import is_plan_assignee, normalize_role
from .services.plan_events import (
    GRADE_RECEIVED,
    KICKBACK,
    STATUS_CHANGE,
    UNLOCK_APPROVED,
    UNLOCK_REJECTED,
    UNLOCK_REVOKED,
)

logger = logging.getLogger(__name__)

celery_app = Celery(
    "action_plans",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND
)

celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,
)

_TEAM_EVENTS = {STATUS_CHANGE, GRADE_RECEIVED, KICKBACK}
_REQUESTER_EVENTS = {UNLOCK_APPROVED, UNLOCK_REJECTED, UNLOCK_REVOKED}


def _as_uuid(value: str | None) -> UUID | None:
    return UUID(value) if value else None


def resolve_recipients(db: Session, event: dict, plan: ActionPlan | None) -> list[User]:
    """Department leaders + assignee for grading/status events, requester for unlock events."""
    if plan is None:
        return []

    recipients: dict[UUID, User] = {}
    if event["type"] in _TEAM_EVENTS:
        department_users = db.query(User).filter(
            User.department_code == plan.department_code,
            User.is_active == True,  # noqa: E712
        ).all()
        for user in department_users:
            if normalize_role(user.role) == "leader" or is_plan_assignee(plan, user):
                recipients[user.id] = user
    elif event["type"] in _REQUESTER_EVENTS:
        requester_id = _as_uuid(event.get("details", {}).get("requested_by")) or plan.unlock_requested_by
        if requester_id:
            requester = db.query(User).filter(User.id == requester_id, User.is_active == True).first()  # noqa: E712
            if requester:
                recipients[requester.id] = requester

    actor_id = _as_uuid(event.get("actor_id"))
    recipients.pop(actor_id, None)
    return list(recipients.values())


def store_plan_notifications(db: Session, events: list[dict]) -> int:
    """Insert one notification row per recipient; duplicates are skipped by idempotency key."""
    created = 0
    for event in events:
        plan = db.query(ActionPlan).filter(ActionPlan.id == _as_uuid(event["action_plan_id"])).first()
        for user in resolve_recipients(db, event, plan):
            idempotency_key = f"{event['type']}:{event['event_id']}:{user.id}"
            existing = db.query(Notification).filter(
                Notification.idempotency_key == idempotency_key
            ).first()
            if existing:
                logger.info("Skipping duplicate notification: %s", idempotency_key)
                continue
            db.add(
                Notification(
                    user_id=user.id,
                    actor_id=_as_uuid(event.get("actor_id")),
                    action_plan_id=plan.id,
                    type=event["type"],
                    message=event["message"],
                    meta_data=event.get("details") or {},
                    idempotency_key=idempotency_key,
                )
            )
            created += 1
    return created


@celery_app.task(name="deliver_plan_notifications")
def deliver_plan_notifications(events: list[dict]):
    """Persist notifications for a batch of plan events."""
    db = SessionLocal()
    try:
        created = store_plan_notifications(db, events)
        db.commit()
        logger.info("Stored %s notification(s) for %s event(s)", created, len(events))
        return {"created": created}
    except Exception:
        db.rollback()
        logger.exception("Error storing plan notifications")
        raise
    finally:
        db.close()
