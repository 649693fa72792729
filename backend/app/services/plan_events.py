"""Plan notification events, collected during a use case and dispatched after commit."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Iterable
from dataclasses import asdict, dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

STATUS_CHANGE = "STATUS_CHANGE"
GRADE_RECEIVED = "GRADE_RECEIVED"
KICKBACK = "KICKBACK"
UNLOCK_APPROVED = "UNLOCK_APPROVED"
UNLOCK_REJECTED = "UNLOCK_REJECTED"
UNLOCK_REVOKED = "UNLOCK_REVOKED"

EVENT_TYPES: frozenset[str] = frozenset(
    {STATUS_CHANGE, GRADE_RECEIVED, KICKBACK, UNLOCK_APPROVED, UNLOCK_REJECTED, UNLOCK_REVOKED}
)


@dataclass(frozen=True)
class PlanEvent:
    type: str
    action_plan_id: str
    actor_id: str | None
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_payload(self) -> dict[str, Any]:
        return asdict(self)


EventDispatcher = Callable[[list[PlanEvent]], None]


def plan_event(event_type: str, *, plan: Any, actor: Any, message: str, **details: Any) -> PlanEvent:
    if event_type not in EVENT_TYPES:
        raise ValueError(f"Unknown plan event type: {event_type}")
    return PlanEvent(
        type=event_type,
        action_plan_id=str(plan.id),
        actor_id=str(actor.id) if actor is not None else None,
        message=message,
        details={key: value for key, value in details.items() if value is not None},
    )


def dispatch_plan_events(events: Iterable[PlanEvent]) -> None:
    """Queue notification delivery; failures are logged and never reach the caller."""
    payload = [event.to_payload() for event in events]
    if not payload:
        return
    # Deferred import: celery_app imports this module.
    from ..celery_app import deliver_plan_notifications

    try:
        deliver_plan_notifications.delay(payload)
    except Exception:
        logger.exception("Failed to enqueue %s plan notification(s)", len(payload))


def emit(dispatch: EventDispatcher | None, events: list[PlanEvent]) -> None:
    if not events or dispatch is None:
        return
    try:
        dispatch(events)
    except Exception:
        logger.exception("Plan event dispatch failed")


def get_event_dispatcher() -> EventDispatcher:
    """Route dependency for the post-commit event sink."""
    return dispatch_plan_events
