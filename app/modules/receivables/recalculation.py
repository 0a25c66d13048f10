"""
Receivables Recalculation Engine

Re-derives every driver's running totals from the stored daily changes,
onboarding baselines and reconciliation adjustments. For records sorted
by date:

    total[i] = change[i] + onboarding[i] + adjustment[i] + (same date as i-1 ? 0 : carry)

where `carry` is the total of the last record that started a new date.
Only records whose stored total drifts (cash beyond the tolerance, any
cylinder mismatch) are written. One failing record is reported and the
pass continues with the rest.
"""
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Iterable, List, NamedTuple, Optional
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from app.core.config import settings
from app.modules.receivables import queries
from app.modules.receivables.models import ReceivableRecord
from app.modules.receivables.schemas import (
    BatchItemError, RecalculationStats, RecalculationResponse,
)
from app.modules.sales.aggregator import to_decimal
import logging

logger = logging.getLogger(__name__)


class ChainStep(NamedTuple):
    record: object
    is_same_date: bool
    carried_cash: Decimal
    carried_cylinders: int
    total_cash: Decimal
    total_cylinders: int
    needs_update: bool


def walk_chain(records: Iterable, cash_tolerance: Optional[float] = None) -> List[ChainStep]:
    """
    Compute the expected totals for one driver's records, already sorted
    by date. Pure: nothing is written. Works on any object exposing the
    ReceivableRecord attributes.
    """
    tolerance = Decimal(str(settings.CASH_TOLERANCE if cash_tolerance is None else cash_tolerance))
    previous_cash = Decimal("0")
    previous_cylinders = 0
    previous_date: Optional[date] = None
    steps = []

    for record in records:
        is_same_date = previous_date is not None and _calendar_date(record.date) == previous_date

        carry_cash = Decimal("0") if is_same_date else previous_cash
        carry_cylinders = 0 if is_same_date else previous_cylinders

        new_cash = (
            to_decimal(record.cash_receivables_change)
            + to_decimal(record.onboarding_cash_receivables)
            + to_decimal(record.adjustment_cash_receivables)
            + carry_cash
        )
        new_cylinders = (
            int(record.cylinder_receivables_change or 0)
            + int(record.onboarding_cylinder_receivables or 0)
            + int(record.adjustment_cylinder_receivables or 0)
            + carry_cylinders
        )

        needs_update = (
            abs(new_cash - to_decimal(record.total_cash_receivables)) > tolerance
            or new_cylinders != int(record.total_cylinder_receivables or 0)
        )
        steps.append(ChainStep(record, is_same_date, carry_cash, carry_cylinders,
                               new_cash, new_cylinders, needs_update))

        # A repeated date never becomes the next baseline
        if not is_same_date:
            previous_cash = new_cash
            previous_cylinders = new_cylinders
        previous_date = _calendar_date(record.date)

    return steps


def verify_continuity(records: Iterable, cash_tolerance: Optional[float] = None) -> List[ChainStep]:
    """Steps whose stored totals break the carry-forward rule."""
    return [step for step in walk_chain(records, cash_tolerance) if step.needs_update]


def _calendar_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def apply_statement_timeout(db: Session, timeout_ms: Optional[int] = None):
    """Raise the per-transaction statement timeout for bulk passes (PostgreSQL only)."""
    if db.get_bind().dialect.name != "postgresql":
        return
    timeout_ms = int(timeout_ms or settings.RECALCULATION_STATEMENT_TIMEOUT_MS)
    db.execute(text(f"SET LOCAL statement_timeout = {timeout_ms}"))


class RecalculationEngine:

    def __init__(self, db: Session):
        self.db = db
        self.stats = RecalculationStats()
        self.errors: List[BatchItemError] = []

    def _reset(self):
        self.stats = RecalculationStats()
        self.errors = []

    def recalculate_driver(self, tenant_id: UUID, driver_id: UUID, strict: bool = False) -> int:
        """
        Repair one driver's chain inside the current transaction.
        Returns the number of records rewritten. Does not commit.

        Batch passes collect per-record failures in `errors`; with `strict`
        the first failure propagates so the caller's transaction rolls back.
        """
        records = queries.driver_chain(self.db, tenant_id, driver_id).all()
        self.stats.total_records += len(records)
        self.stats.drivers_processed += 1
        updated = 0

        for step in walk_chain(records):
            if not step.needs_update:
                continue
            record: ReceivableRecord = step.record
            old_cash, old_cylinders = record.total_cash_receivables, record.total_cylinder_receivables
            try:
                with self.db.begin_nested():
                    record.total_cash_receivables = step.total_cash
                    record.total_cylinder_receivables = step.total_cylinders
                    record.calculated_at = datetime.now(timezone.utc)
                    self.db.flush()
                updated += 1
                logger.info(
                    f"Record {record.id} ({record.date}) corrected: cash {old_cash} -> {step.total_cash}, "
                    f"cylinders {old_cylinders} -> {step.total_cylinders}"
                    + (" [same date]" if step.is_same_date else "")
                )
            except SQLAlchemyError as e:
                logger.error(f"Error updating receivable record {record.id}: {e}")
                if strict:
                    raise
                self.errors.append(BatchItemError(
                    record_id=record.id,
                    driver_id=driver_id,
                    tenant_id=tenant_id,
                    record_date=_calendar_date(record.date),
                    error=str(e.__cause__ or e),
                ))

        self.stats.updated_records += updated
        self.stats.errors = len(self.errors)
        return updated

    def _driver_ids_for_tenant(self, tenant_id: UUID) -> List[UUID]:
        rows = self.db.query(ReceivableRecord.driver_id).filter(
            ReceivableRecord.tenant_id == tenant_id
        ).distinct().all()
        return sorted((row[0] for row in rows), key=str)

    def _recalculate_tenant(self, tenant_id: UUID, driver_id: Optional[UUID] = None):
        driver_ids = [driver_id] if driver_id else self._driver_ids_for_tenant(tenant_id)
        for current_driver in driver_ids:
            self.recalculate_driver(tenant_id, current_driver)
        self.stats.tenants_processed += 1

    def recalculate_tenant(self, tenant_id: UUID, driver_id: Optional[UUID] = None) -> RecalculationResponse:
        """Full pass over one tenant (optionally one driver); commits once at the end."""
        self._reset()
        logger.info(f"Starting receivables recalculation for tenant {tenant_id}"
                    + (f", driver {driver_id}" if driver_id else ""))
        apply_statement_timeout(self.db)
        self._recalculate_tenant(tenant_id, driver_id)
        self.db.commit()
        logger.info(f"Recalculation for tenant {tenant_id} done: {self.stats.updated_records} "
                    f"of {self.stats.total_records} records updated, {self.stats.errors} errors")
        return self._response(f"Recalculated receivables for tenant {tenant_id}")

    def recalculate_all_tenants(self) -> RecalculationResponse:
        """Every tenant, sequentially. One commit per tenant so a slow tenant keeps earlier work."""
        self._reset()
        tenant_ids = sorted(
            (row[0] for row in self.db.query(ReceivableRecord.tenant_id).distinct().all()),
            key=str,
        )
        for tenant_id in tenant_ids:
            apply_statement_timeout(self.db)
            try:
                self._recalculate_tenant(tenant_id)
                self.db.commit()
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.error(f"Recalculation for tenant {tenant_id} failed: {e}", exc_info=True)
                self.errors.append(BatchItemError(tenant_id=tenant_id, error=str(e)))
                self.stats.errors = len(self.errors)
        return self._response(f"Recalculated receivables for {len(tenant_ids)} tenants")

    def _response(self, message: str) -> RecalculationResponse:
        return RecalculationResponse(
            success=True,
            message=message,
            stats=self.stats.model_copy(),
            errors=list(self.errors) or None,
        )
