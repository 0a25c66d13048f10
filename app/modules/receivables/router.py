"""
Receivables Router

Daily driver records, customer receivables, payments, cylinder returns,
onboarding baselines and recalculation passes.
"""
from datetime import date
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from app.common.exceptions import ValidationError, PersistenceError
from app.core.config import settings
from app.database.database import get_db
from app.dependencies.eventDependencies import get_event_publisher
from app.modules.audit.schemas import ReceivableChangesPage
from app.modules.audit.service import ReceivablesChangesReport
from app.modules.auth.dependencies import AuthDependencies, require_ledger_read, require_ledger_write, require_super_admin
from app.modules.auth.schemas import AuthContext, UserRole
from app.modules.notifications.events import EventPublisher
from app.modules.receivables import queries
from app.modules.receivables.calculator import ReceivablesCalculator
from app.modules.receivables.ledger import CustomerReceivableLedger
from app.modules.receivables.models import ReceivableRecord, ReceivableStatus, ReceivableType
from app.modules.receivables.onboarding import OnboardingService
from app.modules.receivables.recalculation import RecalculationEngine
from app.modules.receivables.schemas import (
    ReceivablesOverview, ReceivableRecordOut, ReceivableRecordFilters,
    CalculateRequest, CalculateResponse, DriverPerformance,
    PaymentCreate, CylinderReturnCreate, LedgerMutationResponse,
    RecalculationResponse, OnboardingCreate, OnboardingResponse,
    CustomerReceivableCreate, CustomerReceivableOut, CustomerReceivableFilters,
    CustomerReceivablesResponse, StatusRefreshResponse,
)
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/receivables", tags=["Receivables"])
admin_router = APIRouter(prefix="/admin/receivables", tags=["Receivables Admin"])

require_ledger_admin = AuthDependencies.require_role([UserRole.ADMIN, UserRole.SUPER_ADMIN])


# ===== DAILY RECORDS =====

@router.get("", response_model=ReceivablesOverview)
def get_receivables(
    driver_id: Optional[UUID] = Query(None, description="Filter by driver"),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    as_of: Optional[date] = Query(None, description="Summary date (defaults to today)"),
    auth_context: AuthContext = Depends(require_ledger_read),
    db: Session = Depends(get_db)
):
    """
    Daily receivable records plus the latest balance of every ACTIVE RETAIL driver.
    """
    if start_date and end_date and end_date < start_date:
        raise ValidationError("end_date must be greater than or equal to start_date")

    filters = ReceivableRecordFilters(driver_id=driver_id, start_date=start_date, end_date=end_date)
    records = queries.receivable_records(db, auth_context.tenant_id, filters).order_by(
        ReceivableRecord.date.desc()
    ).all()
    summary = ReceivablesCalculator(db).get_summary(auth_context.tenant_id, as_of)
    return ReceivablesOverview(
        records=[ReceivableRecordOut.model_validate(r) for r in records],
        summary=summary,
    )


@router.post("/calculate", response_model=CalculateResponse)
def calculate_receivables(
    payload: CalculateRequest,
    auth_context: AuthContext = Depends(require_ledger_write),
    db: Session = Depends(get_db)
):
    """Recompute one date for one or all ACTIVE RETAIL drivers."""
    try:
        records = ReceivablesCalculator(db).calculate_tenant_for_date(
            auth_context.tenant_id, payload.date, payload.driver_id
        )
        return CalculateResponse(
            message=f"Calculated receivables for {len(records)} drivers on {payload.date}",
            records=[ReceivableRecordOut.model_validate(r) for r in records],
        )
    except HTTPException:
        raise
    except Exception as e:
        db.rollback()
        logger.error(f"Error calculating receivables: {e}", exc_info=True)
        raise PersistenceError("Failed to calculate receivables")


@router.get("/drivers/{driver_id}/performance", response_model=DriverPerformance)
def get_driver_performance(
    driver_id: UUID,
    start_date: date = Query(...),
    end_date: date = Query(...),
    auth_context: AuthContext = Depends(require_ledger_read),
    db: Session = Depends(get_db)
):
    if end_date < start_date:
        raise ValidationError("end_date must be greater than or equal to start_date")
    return ReceivablesCalculator(db).get_driver_performance(auth_context.tenant_id, driver_id, start_date, end_date)


# ===== PAYMENTS / RETURNS =====

@router.post("/payments", response_model=LedgerMutationResponse)
def record_payment(
    payload: PaymentCreate,
    auth_context: AuthContext = Depends(require_ledger_write),
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_event_publisher)
):
    """Collect cash against a CASH customer receivable."""
    receivable, sale, reconciliation = CustomerReceivableLedger(db, publisher).record_payment(
        tenant_id=auth_context.tenant_id,
        user_id=auth_context.user_id,
        customer_receivable_id=payload.customer_receivable_id,
        amount=payload.amount,
        payment_method=payload.payment_method,
        notes=payload.notes,
    )
    return LedgerMutationResponse(
        message=f"Payment of {payload.amount} recorded for {receivable.customer_name}",
        receivable=CustomerReceivableOut.model_validate(receivable),
        sale_id=sale.id,
        reconciled=bool(reconciliation and reconciliation.applied),
    )


@router.post("/cylinder-returns", response_model=LedgerMutationResponse)
def record_cylinder_return(
    payload: CylinderReturnCreate,
    auth_context: AuthContext = Depends(require_ledger_write),
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_event_publisher)
):
    """Take back empty cylinders against a CYLINDER customer receivable."""
    receivable, sale, reconciliation = CustomerReceivableLedger(db, publisher).record_cylinder_return(
        tenant_id=auth_context.tenant_id,
        user_id=auth_context.user_id,
        customer_receivable_id=payload.customer_receivable_id,
        quantity=payload.quantity,
        notes=payload.notes,
    )
    return LedgerMutationResponse(
        message=f"Return of {payload.quantity} cylinders recorded for {receivable.customer_name}",
        receivable=CustomerReceivableOut.model_validate(receivable),
        sale_id=sale.id,
        reconciled=bool(reconciliation and reconciliation.applied),
    )


# ===== RECALCULATION =====

@router.post("/recalculate-all", response_model=RecalculationResponse)
def recalculate_all(
    driver_id: Optional[UUID] = Query(None, description="Only this driver's chain"),
    auth_context: AuthContext = Depends(require_ledger_write),
    db: Session = Depends(get_db)
):
    """
    Re-walk every stored record of the tenant and fix drifted running totals.
    Individual record failures are reported in `errors` without aborting the pass.
    """
    try:
        return RecalculationEngine(db).recalculate_tenant(auth_context.tenant_id, driver_id)
    except HTTPException:
        raise
    except Exception as e:
        db.rollback()
        logger.error(f"Receivables recalculation failed: {e}", exc_info=True)
        raise PersistenceError("Failed to recalculate receivables")


@router.post("/recalculate", response_model=RecalculationResponse)
def recalculate_recent(
    days: Optional[int] = Query(None, description="Number of days back, today included"),
    auth_context: AuthContext = Depends(require_ledger_write),
    db: Session = Depends(get_db)
):
    """Rebuild the last N days of records from sales for all ACTIVE RETAIL drivers."""
    days = settings.DEFAULT_RECALCULATION_DAYS if days is None else days
    if days < 1 or days > settings.MAX_RECALCULATION_DAYS:
        raise ValidationError(f"days must be between 1 and {settings.MAX_RECALCULATION_DAYS}")
    try:
        return ReceivablesCalculator(db).calculate_recent_days(auth_context.tenant_id, days)
    except HTTPException:
        raise
    except Exception as e:
        db.rollback()
        logger.error(f"Recent receivables recalculation failed: {e}", exc_info=True)
        raise PersistenceError("Failed to recalculate receivables")


@admin_router.post("/recalculate-all-tenants", response_model=RecalculationResponse)
def recalculate_all_tenants(
    auth_context: AuthContext = Depends(require_super_admin),
    db: Session = Depends(get_db)
):
    logger.warning(f"All-tenant receivables recalculation requested by {auth_context.user_id}")
    try:
        return RecalculationEngine(db).recalculate_all_tenants()
    except Exception as e:
        db.rollback()
        logger.error(f"All-tenant recalculation failed: {e}", exc_info=True)
        raise PersistenceError("Failed to recalculate receivables")


# ===== ONBOARDING =====

@router.post("/onboarding", response_model=OnboardingResponse, status_code=status.HTTP_201_CREATED)
def record_onboarding(
    payload: OnboardingCreate,
    auth_context: AuthContext = Depends(require_ledger_admin),
    db: Session = Depends(get_db)
):
    record = OnboardingService(db).record_baseline(payload, auth_context.tenant_id, auth_context.user_id)
    return OnboardingResponse(
        message="Onboarding baseline recorded",
        record=ReceivableRecordOut.model_validate(record),
    )


# ===== CUSTOMER RECEIVABLES =====

@router.get("/customers", response_model=CustomerReceivablesResponse)
def list_customer_receivables(
    driver_id: Optional[UUID] = Query(None),
    customer_id: Optional[UUID] = Query(None),
    receivable_type: Optional[ReceivableType] = Query(None),
    receivable_status: Optional[ReceivableStatus] = Query(None, alias="status"),
    include_paid: bool = Query(False),
    search: Optional[str] = Query(None, max_length=150),
    auth_context: AuthContext = Depends(require_ledger_read),
    db: Session = Depends(get_db)
):
    """
    Outstanding customer receivables of ACTIVE RETAIL drivers, with a
    per-driver check of customer totals against the daily records.
    """
    ledger = CustomerReceivableLedger(db)
    filters = CustomerReceivableFilters(
        driver_id=driver_id, customer_id=customer_id, receivable_type=receivable_type,
        status=receivable_status, include_paid=include_paid, search=search,
    )
    return CustomerReceivablesResponse(
        receivables=[CustomerReceivableOut.model_validate(r) for r in ledger.list_receivables(auth_context.tenant_id, filters)],
        validation=ledger.validate_against_driver_totals(auth_context.tenant_id),
    )


@router.post("/customers", response_model=CustomerReceivableOut, status_code=status.HTTP_201_CREATED)
def create_customer_receivable(
    payload: CustomerReceivableCreate,
    auth_context: AuthContext = Depends(require_ledger_admin),
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_event_publisher)
):
    receivable = CustomerReceivableLedger(db, publisher).create_receivable(
        payload, auth_context.tenant_id, auth_context.user_id
    )
    return CustomerReceivableOut.model_validate(receivable)


@router.post("/customers/refresh-statuses", response_model=StatusRefreshResponse)
def refresh_customer_statuses(
    auth_context: AuthContext = Depends(require_ledger_write),
    db: Session = Depends(get_db)
):
    updated = CustomerReceivableLedger(db).refresh_statuses(auth_context.tenant_id)
    return StatusRefreshResponse(message=f"{updated} receivable statuses updated", updated=updated)


@router.get("/customers/{receivable_id}", response_model=CustomerReceivableOut)
def get_customer_receivable(
    receivable_id: UUID,
    auth_context: AuthContext = Depends(require_ledger_read),
    db: Session = Depends(get_db)
):
    return CustomerReceivableOut.model_validate(
        CustomerReceivableLedger(db).get_receivable(auth_context.tenant_id, receivable_id)
    )


# ===== CHANGE HISTORY =====

@router.get("/changes", response_model=ReceivableChangesPage)
def get_receivable_changes(
    page: int = Query(1, ge=1),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    driver_id: Optional[UUID] = Query(None),
    auth_context: AuthContext = Depends(require_ledger_read),
    db: Session = Depends(get_db)
):
    """Payments, returns and settlements on customer receivables, newest first."""
    return ReceivablesChangesReport(db, auth_context.tenant_id).list_changes(page, limit, driver_id)
