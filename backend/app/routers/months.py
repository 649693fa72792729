"""Department month endpoints: status summary, finalize and recall."""
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth import get_current_user, get_permission_engine
from ..database import get_db
from ..models import User
from ..schemas import BatchResultResponse, MonthStatusResponse
from ..services.permissions import PermissionEngine
from ..use_cases.plan_lifecycle import finalize_month_use_case, month_status_use_case, recall_month_use_case

router = APIRouter(prefix="/departments/{department_code}/months/{year}/{month}", tags=["months"])


@router.get("/status", response_model=MonthStatusResponse)
def get_month_status(
    department_code: str,
    year: int,
    month: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return month_status_use_case(
        db=db, department_code=department_code, month=month, year=year, current_user=current_user
    )


@router.post("/finalize", response_model=BatchResultResponse)
def finalize_month(
    department_code: str,
    year: int,
    month: str,
    current_user: User = Depends(get_current_user),
    permissions: PermissionEngine = Depends(get_permission_engine),
    db: Session = Depends(get_db),
):
    """Submit all drafts of the month for grading."""
    result = finalize_month_use_case(
        db=db,
        permissions=permissions,
        department_code=department_code,
        month=month,
        year=year,
        current_user=current_user,
    )
    return result.as_dict()


@router.post("/recall", response_model=BatchResultResponse)
def recall_month(
    department_code: str,
    year: int,
    month: str,
    current_user: User = Depends(get_current_user),
    permissions: PermissionEngine = Depends(get_permission_engine),
    db: Session = Depends(get_db),
):
    """Pull back ungraded submissions; graded items are left as they are."""
    result = recall_month_use_case(
        db=db,
        permissions=permissions,
        department_code=department_code,
        month=month,
        year=year,
        current_user=current_user,
    )
    return result.as_dict()
