"""Seed database with demo data."""
from app.auth import get_password_hash
from app.database import Base, SessionLocal, engine
from app.models import ActionPlan, Department, RolePermission, User
from app.services.permissions import MATRIX_ROLES, RESOURCE_ACTIONS, RuleTier, rule_tier
import uuid

# Starting values for CONFIGURABLE cells; everything else defaults to denied.
DEFAULT_PERMISSIONS = {
    ('leader', 'action_plan', 'create'): True,
    ('leader', 'action_plan', 'edit'): True,
    ('leader', 'action_plan', 'delete'): True,
    ('executive', 'report', 'export'): True,
}

DEPARTMENTS = [
    ('BAS', 'Business & Administration Services'),
    ('FIN', 'Finance'),
    ('HR', 'Human Resources'),
    ('ACS', 'Area Sales'),
]

USERS = [
    {'email': 'holding@example.com', 'full_name': 'Holding Administrator', 'role': 'holding_admin', 'department_code': None},
    {'email': 'admin@example.com', 'full_name': 'System Administrator', 'role': 'admin', 'department_code': None},
    {'email': 'executive@example.com', 'full_name': 'Executive Viewer', 'role': 'executive', 'department_code': None},
    {'email': 'leader.bas@example.com', 'full_name': 'Budi Santoso', 'role': 'leader', 'department_code': 'BAS'},
    {'email': 'staff.bas@example.com', 'full_name': 'Siti Rahma', 'role': 'staff', 'department_code': 'BAS'},
    {'email': 'leader.fin@example.com', 'full_name': 'Andi Wijaya', 'role': 'leader', 'department_code': 'FIN'},
]
DEMO_PASSWORD = "demo12345"


def seed_permissions(db) -> int:
    created = 0
    for role in MATRIX_ROLES:
        for resource, actions in RESOURCE_ACTIONS.items():
            for action in actions:
                if rule_tier(role, resource, action) is not RuleTier.CONFIGURABLE:
                    continue
                exists = db.query(RolePermission).filter(
                    RolePermission.role == role,
                    RolePermission.resource == resource,
                    RolePermission.action == action,
                ).first()
                if exists:
                    continue
                db.add(RolePermission(
                    role=role,
                    resource=resource,
                    action=action,
                    is_allowed=DEFAULT_PERMISSIONS.get((role, resource, action), False),
                ))
                created += 1
    return created


def seed():
    """Seed database with demo data."""
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()

    try:
        for code, name in DEPARTMENTS:
            if not db.query(Department).filter(Department.code == code).first():
                db.add(Department(code=code, name=name))
        db.flush()

        users = {}
        for data in USERS:
            user = db.query(User).filter(User.email == data['email']).first()
            if not user:
                user = User(id=uuid.uuid4(), password_hash=get_password_hash(DEMO_PASSWORD), **data)
                db.add(user)
            users[data['email']] = user
        db.flush()

        created_cells = seed_permissions(db)

        if not db.query(ActionPlan).first():
            staff = users['staff.bas@example.com']
            samples = [
                ('High Priority', 'Increase customer retention', 'Run quarterly satisfaction survey', 'Achieved'),
                ('Medium Priority', 'Reduce overdue invoices', 'Weekly follow-up on receivables', 'On Progress'),
                ('Low Priority', 'Improve onboarding', 'Publish onboarding checklist', 'Pending'),
            ]
            for category, goal, text, status in samples:
                db.add(ActionPlan(
                    department_code='BAS',
                    month='January',
                    year=2026,
                    category=category,
                    goal_strategy=goal,
                    action_plan=text,
                    indicator='Completed on time',
                    pic=staff.full_name,
                    assignee_id=staff.id,
                    status=status,
                ))

        db.commit()
        print(f"Seeded {len(DEPARTMENTS)} departments, {len(USERS)} users, {created_cells} permission cells")
        print(f"Demo password for every user: {DEMO_PASSWORD}")

    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    seed()
