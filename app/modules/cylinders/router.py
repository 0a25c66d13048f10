"""
Cylinder Size Router

Cylinder receivables split by cylinder size from each driver's deposit history.
"""
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.database.database import get_db
from app.modules.auth.dependencies import require_ledger_read
from app.modules.auth.schemas import AuthContext
from app.modules.cylinders.calculator import CylinderReceivablesCalculator, validate_receivables_match
from app.modules.cylinders.schemas import (
    CylinderReceivablesBySize, BreakdownValidationRequest, BreakdownValidationResponse,
)

router = APIRouter(prefix="/cylinders", tags=["Cylinders"])


@router.get("/receivables-by-size", response_model=CylinderReceivablesBySize)
def get_receivables_by_size(
    as_of: Optional[date] = Query(None, description="Defaults to today"),
    auth_context: AuthContext = Depends(require_ledger_read),
    db: Session = Depends(get_db)
):
    return CylinderReceivablesCalculator(db).calculate_exact_receivables_by_size(auth_context.tenant_id, as_of)


@router.post("/receivables-by-size/validate", response_model=BreakdownValidationResponse)
def validate_receivables_by_size(
    payload: BreakdownValidationRequest,
    auth_context: AuthContext = Depends(require_ledger_read),
    db: Session = Depends(get_db)
):
    """Compare a reference breakdown (e.g. a physical count) with the calculated one."""
    calculated = CylinderReceivablesCalculator(db).calculate_exact_receivables_by_size(
        auth_context.tenant_id, payload.as_of
    )
    return BreakdownValidationResponse(
        comparison=validate_receivables_match(payload.expected, calculated.receivables_breakdown, payload.tolerance),
        calculated=calculated,
    )
