"""Action plan lifecycle invariants (pure functions, no I/O)."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timedelta, timezone
from typing import Any


SUBMISSION_DRAFT = "draft"
SUBMISSION_SUBMITTED = "submitted"
SUBMISSION_STATUSES: tuple[str, ...] = (SUBMISSION_DRAFT, SUBMISSION_SUBMITTED)

STATUS_PENDING = "Pending"
STATUS_ON_PROGRESS = "On Progress"
STATUS_ACHIEVED = "Achieved"
STATUS_NOT_ACHIEVED = "Not Achieved"
WRITABLE_STATUSES: tuple[str, ...] = (STATUS_PENDING, STATUS_ON_PROGRESS, STATUS_ACHIEVED, STATUS_NOT_ACHIEVED)
# Older rows may still carry these; they are read but never written.
LEGACY_STATUSES: tuple[str, ...] = ("Internal Review", "Waiting Approval")
ALL_STATUSES: tuple[str, ...] = WRITABLE_STATUSES + LEGACY_STATUSES
TERMINAL_STATUSES: frozenset[str] = frozenset({STATUS_ACHIEVED, STATUS_NOT_ACHIEVED})

UNLOCK_NONE = "none"
UNLOCK_PENDING = "pending"
UNLOCK_APPROVED = "approved"
UNLOCK_REJECTED = "rejected"
UNLOCK_STATUSES: tuple[str, ...] = (UNLOCK_NONE, UNLOCK_PENDING, UNLOCK_APPROVED, UNLOCK_REJECTED)

PHASE_DRAFT = "draft"
PHASE_SUBMITTED_UNGRADED = "submitted_ungraded"
PHASE_SUBMITTED_GRADED = "submitted_graded"

MONTHS: tuple[str, ...] = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)
_MONTH_LOOKUP: dict[str, str] = {}
for _label in MONTHS:
    _MONTH_LOOKUP[_label.lower()] = _label
    _MONTH_LOOKUP[_label[:3].lower()] = _label


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on read)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def normalize_month(month: str | None) -> str:
    label = _MONTH_LOOKUP.get((month or "").strip().lower())
    if label is None:
        raise ValueError(f"Unknown month label: {month!r}")
    return label


def month_index(month: str) -> int:
    return MONTHS.index(normalize_month(month)) + 1


def normalize_submission_status(value: str | None) -> str:
    # Rows created before the submission workflow existed carry NULL.
    if not value:
        return SUBMISSION_DRAFT
    return value.strip().lower()


def normalize_unlock_status(value: str | None) -> str:
    if not value:
        return UNLOCK_NONE
    return value.strip().lower()


def validate_completion_status(status: str | None) -> str:
    """Return a status that may be written; legacy values are rejected."""
    if status in WRITABLE_STATUSES:
        return status
    if status in LEGACY_STATUSES:
        raise ValueError(f"Status {status!r} is no longer assignable")
    raise ValueError(f"Unknown completion status: {status!r}")


def validate_quality_score(score: Any, *, max_score: int = 100) -> int:
    if isinstance(score, bool) or not isinstance(score, int):
        raise ValueError("Quality score must be an integer")
    if score < 0 or score > max_score:
        raise ValueError(f"Quality score must be between 0 and {max_score}")
    return score


def is_submitted(plan: Any) -> bool:
    return normalize_submission_status(plan.submission_status) == SUBMISSION_SUBMITTED


def is_graded(plan: Any) -> bool:
    return is_submitted(plan) and plan.quality_score is not None


def plan_phase(plan: Any) -> str:
    if not is_submitted(plan):
        return PHASE_DRAFT
    if plan.quality_score is None:
        return PHASE_SUBMITTED_UNGRADED
    return PHASE_SUBMITTED_GRADED


def is_unlock_active(plan: Any, *, now: datetime | None = None) -> bool:
    """An approved unlock only counts until approved_until passes."""
    if normalize_unlock_status(plan.unlock_status) != UNLOCK_APPROVED:
        return False
    until = as_utc(plan.approved_until)
    if until is None:
        return False
    return until > (now or now_utc())


def effective_unlock_status(plan: Any, *, now: datetime | None = None) -> str:
    """Unlock status as observed at `now`: an elapsed approval reads as none."""
    current = normalize_unlock_status(plan.unlock_status)
    if current == UNLOCK_APPROVED and not is_unlock_active(plan, now=now):
        return UNLOCK_NONE
    return current


def is_editable(plan: Any, *, now: datetime | None = None) -> bool:
    if not is_submitted(plan):
        return True
    return is_unlock_active(plan, now=now)


def ensure_can_request_unlock(plan: Any, *, now: datetime | None = None) -> None:
    if not is_submitted(plan):
        raise ValueError("Only submitted items can be unlocked")
    current = effective_unlock_status(plan, now=now)
    if current != UNLOCK_NONE:
        raise ValueError(f"Unlock request not allowed while unlock status is {current}")


def resolve_unlock_expiry(
    *,
    now: datetime,
    duration_hours: int | None = None,
    expires_at: datetime | None = None,
    presets: Iterable[int] = (24, 48, 168),
) -> datetime:
    """Return approved_until for a decision from a preset or a custom instant."""
    if duration_hours is not None and expires_at is not None:
        raise ValueError("Provide either a preset duration or a custom expiry, not both")
    if duration_hours is not None:
        allowed = sorted(set(presets))
        if duration_hours not in allowed:
            raise ValueError(f"Unlock duration must be one of {allowed} hours")
        return now + timedelta(hours=duration_hours)
    if expires_at is None:
        raise ValueError("An unlock expiry is required to approve")
    until = as_utc(expires_at)
    if until <= now:
        raise ValueError("Unlock expiry must be in the future")
    return until


def normalize_display_name(name: str | None) -> str:
    return " ".join((name or "").split()).casefold()


def pic_matches(pic: str | None, full_name: str | None) -> bool:
    """Ownership by display name, compared case-insensitively."""
    left = normalize_display_name(pic)
    return bool(left) and left == normalize_display_name(full_name)


def finalize_blockers(plans: Iterable[Any]) -> list[Any]:
    """Drafts whose completion status is not terminal."""
    return [
        plan
        for plan in plans
        if not is_submitted(plan) and plan.status not in TERMINAL_STATUSES
    ]


def recallable_plans(plans: Iterable[Any]) -> list[Any]:
    return [plan for plan in plans if plan_phase(plan) == PHASE_SUBMITTED_UNGRADED]


def summarize_month(plans: Iterable[Any], *, now: datetime | None = None) -> dict[str, Any]:
    items = list(plans)
    drafts = [plan for plan in items if not is_submitted(plan)]
    graded = [plan for plan in items if is_graded(plan)]
    recallable = recallable_plans(items)
    blockers = finalize_blockers(items)
    pending_unlock = [
        plan for plan in items if effective_unlock_status(plan, now=now) == UNLOCK_PENDING
    ]
    submitted_count = len(items) - len(drafts)
    return {
        "total_count": len(items),
        "draft_count": len(drafts),
        "submitted_count": submitted_count,
        "graded_count": len(graded),
        "ungraded_count": submitted_count - len(graded),
        "recallable_count": len(recallable),
        "pending_unlock_count": len(pending_unlock),
        "finalize_blockers": [plan.id for plan in blockers],
        "can_finalize": bool(drafts) and not blockers and not pending_unlock,
        "can_recall": bool(recallable),
    }
