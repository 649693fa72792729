from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from uuid import uuid4

import pytest

from app.domain_errors import DomainError
from app.services.permissions import (
    DepartmentScope,
    PermissionCache,
    PermissionEngine,
    RuleTier,
    is_plan_assignee,
    rule_tier,
)

T0 = datetime(2026, 2, 3, 9, 0, tzinfo=timezone.utc)


class _Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


class _Loader:
    def __init__(self, values=None):
        self.values = dict(values or {})
        self.calls = 0

    def __call__(self):
        self.calls += 1
        return dict(self.values)


def _engine(values=None, *, clock=None, ttl_seconds=300):
    loader = _Loader(values)
    engine = PermissionEngine(
        load_values=loader,
        cache=PermissionCache(ttl_seconds=ttl_seconds),
        clock=clock or _Clock(T0),
    )
    return engine, loader


def _user(role, department_code="BAS", full_name="Siti Rahma"):
    return SimpleNamespace(id=uuid4(), role=role, department_code=department_code, full_name=full_name)


def _plan(department_code="BAS", *, assignee_id=None, pic=None):
    return SimpleNamespace(id=uuid4(), department_code=department_code, assignee_id=assignee_id, pic=pic)


def test_locked_cells_ignore_stored_values() -> None:
    engine, _ = _engine({
        ("leader", "action_plan", "grade"): True,
        ("staff", "action_plan", "update_status"): False,
        ("staff", "action_plan", "grade"): True,
    })

    assert engine.is_allowed("leader", "action_plan", "grade") is False
    assert engine.is_allowed("staff", "action_plan", "update_status") is True
    assert engine.is_allowed("STAFF", "action_plan", "grade") is False


def test_configurable_cell_uses_stored_value_and_defaults_to_deny() -> None:
    engine, _ = _engine({("leader", "action_plan", "create"): True})

    assert engine.is_allowed("leader", "action_plan", "create") is True
    assert engine.is_allowed("leader", "action_plan", "delete") is False


def test_superuser_roles_bypass_the_matrix() -> None:
    engine, loader = _engine()

    assert engine.is_allowed("admin", "action_plan", "submit") is True
    assert engine.is_allowed("holding_admin", "settings", "manage") is True
    assert loader.calls == 0


def test_permission_outside_matrix_uses_stored_value() -> None:
    engine, _ = _engine({("leader", "action_plan", "archive"): True})

    assert rule_tier("leader", "action_plan", "archive") is RuleTier.CONFIGURABLE
    assert engine.is_allowed("leader", "action_plan", "archive") is True
    assert engine.is_allowed("staff", "action_plan", "archive") is False


def test_role_alias_maps_dept_head_to_leader() -> None:
    engine, _ = _engine({("leader", "action_plan", "edit"): True})
    assert engine.is_allowed("dept_head", "action_plan", "edit") is True
    assert rule_tier("dept_head", "action_plan", "submit") is RuleTier.LOCKED_ON


def test_cache_reloads_only_after_ttl() -> None:
    clock = _Clock(T0)
    engine, loader = _engine({("leader", "action_plan", "create"): True}, clock=clock)

    engine.is_allowed("leader", "action_plan", "create")
    clock.now = T0 + timedelta(seconds=299)
    engine.is_allowed("leader", "action_plan", "create")
    assert loader.calls == 1

    clock.now = T0 + timedelta(seconds=300)
    engine.is_allowed("leader", "action_plan", "create")
    assert loader.calls == 2


def test_invalidate_forces_reload_on_next_decision() -> None:
    engine, loader = _engine({("leader", "action_plan", "create"): False})
    assert engine.is_allowed("leader", "action_plan", "create") is False

    loader.values[("leader", "action_plan", "create")] = True
    engine.invalidate()

    assert engine.is_allowed("leader", "action_plan", "create") is True
    assert loader.calls == 2


def test_cache_staleness_is_a_pure_predicate() -> None:
    cache = PermissionCache(ttl_seconds=60)
    assert cache.is_stale(T0) is True

    cache.store({}, T0)
    assert cache.is_stale(T0 + timedelta(seconds=59)) is False
    assert cache.is_stale(T0 + timedelta(seconds=60)) is True

    cache.invalidate()
    assert cache.is_stale(T0) is True


def test_leader_is_limited_to_own_department() -> None:
    engine, _ = _engine()
    leader = _user("leader", "BAS")

    assert engine.authorize(leader, "action_plan", "submit", DepartmentScope("BAS")) is True
    assert engine.authorize(leader, "action_plan", "submit", DepartmentScope("FIN")) is False


def test_staff_status_update_requires_assignment() -> None:
    engine, _ = _engine()
    staff = _user("staff", "BAS", full_name="Siti Rahma")

    assert engine.authorize(staff, "action_plan", "update_status", _plan(assignee_id=staff.id)) is True
    assert engine.authorize(staff, "action_plan", "update_status", _plan(assignee_id=uuid4())) is False
    assert engine.authorize(staff, "action_plan", "update_progress", _plan(pic="SITI rahma")) is True
    assert engine.authorize(staff, "action_plan", "update_progress", _plan(pic="Budi")) is False


def test_assignee_link_takes_precedence_over_display_name() -> None:
    staff = _user("staff", full_name="Siti Rahma")
    plan = _plan(assignee_id=uuid4(), pic="Siti Rahma")
    assert is_plan_assignee(plan, staff) is False


def test_superuser_authorize_skips_record_scope() -> None:
    engine, _ = _engine()
    admin = _user("admin", department_code=None)
    assert engine.authorize(admin, "action_plan", "grade", _plan("FIN")) is True


def test_require_raises_permission_denied() -> None:
    engine, _ = _engine()

    with pytest.raises(DomainError) as exc:
        engine.require(_user("executive", None), "action_plan", "edit")

    assert exc.value.code == "PERMISSION_DENIED"
    assert exc.value.http_status == 403
    assert exc.value.details == {"resource": "action_plan", "action": "edit"}


def test_matrix_lists_every_cell_with_tier() -> None:
    engine, _ = _engine({("executive", "report", "export"): True})

    cells = {(cell["role"], cell["resource"], cell["action"]): cell for cell in engine.matrix()}

    assert cells[("executive", "report", "export")]["is_allowed"] is True
    assert cells[("executive", "report", "export")]["tier"] == "CONFIGURABLE"
    assert cells[("admin", "action_plan", "submit")]["tier"] == "LOCKED_OFF"
    assert cells[("admin", "action_plan", "submit")]["is_allowed"] is False
    assert cells[("staff", "action_plan", "update_status")]["is_allowed"] is True
