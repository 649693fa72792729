"""Audit trail helpers for action plans."""

from __future__ import annotations

from typing import Any

from sqlalchemy.orm import Session

from ..models import ActionPlan, AuditLog, User

# Fields whose changes are spelled out in the audit description, with their labels.
TRACKED_FIELDS: tuple[tuple[str, str], ...] = (
    ("month", "Month"),
    ("category", "Category"),
    ("area_focus", "Area Focus"),
    ("status", "Status"),
    ("pic", "PIC"),
    ("report_format", "Report Format"),
    ("indicator", "Indicator"),
    ("goal_strategy", "Goal/Strategy"),
    ("action_plan", "Action Plan"),
    ("outcome_link", "Evidence"),
    ("remark", "Remark"),
)
_TRUNCATE_AT = 30


def _short(value: Any) -> str:
    if value is None or value == "":
        return "(empty)"
    text = str(value)
    if len(text) > _TRUNCATE_AT:
        return text[:_TRUNCATE_AT] + "..."
    return text


def snapshot(plan: ActionPlan, fields: list[str] | tuple[str, ...] | None = None) -> dict[str, Any]:
    names = fields or [name for name, _ in TRACKED_FIELDS]
    values: dict[str, Any] = {}
    for name in names:
        value = getattr(plan, name)
        values[name] = value.isoformat() if hasattr(value, "isoformat") else value
    return values


def describe_changes(before: dict[str, Any], after: dict[str, Any]) -> str:
    """Human readable summary of changed tracked fields."""
    parts: list[str] = []
    for name, label in TRACKED_FIELDS:
        if name not in after:
            continue
        old, new = before.get(name), after.get(name)
        if (old or None) == (new or None):
            continue
        parts.append(f"{label}: '{_short(old)}' -> '{_short(new)}'")
    if not parts:
        return "No tracked fields changed"
    return "Updated " + "; ".join(parts)


def record_audit(
    db: Session,
    *,
    plan: ActionPlan,
    actor: User | None,
    change_type: str,
    description: str,
    previous_value: dict[str, Any] | None = None,
    new_value: dict[str, Any] | None = None,
) -> AuditLog:
    """Add an audit row to the current transaction."""
    entry = AuditLog(
        action_plan_id=plan.id,
        user_id=actor.id if actor else None,
        user_name=actor.full_name if actor else None,
        change_type=change_type,
        previous_value=previous_value,
        new_value=new_value,
        description=description,
    )
    db.add(entry)
    return entry
