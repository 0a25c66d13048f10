"""
Keeps a driver's latest daily record in step with the sum of that
driver's outstanding customer receivables.

Runs after every payment or cylinder return has committed. Drivers
without customer-level receivables are left alone: their daily records
are driven purely by sales.
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Tuple
from uuid import UUID

from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.core.config import settings
from app.modules.audit.models import AuditAction
from app.modules.audit.schemas import ReconciliationMetadata
from app.modules.audit.service import AuditLogger, RECEIVABLE_RECORD_ENTITY
from app.modules.receivables import queries
from app.modules.receivables.models import CustomerReceivable, ReceivableType
from app.modules.sales.aggregator import to_decimal
import logging

logger = logging.getLogger(__name__)


class OutstandingTotals(BaseModel):
    cash: Decimal = Decimal("0")
    cylinders: int = 0
    receivable_count: int = 0


class ReconciliationResult(BaseModel):
    driver_id: UUID
    applied: bool = False
    in_sync: bool = True
    reason: str = ""
    old_cash: Optional[Decimal] = None
    old_cylinders: Optional[int] = None
    new_cash: Optional[Decimal] = None
    new_cylinders: Optional[int] = None


class ReceivablesReconciler:

    def __init__(self, db: Session):
        self.db = db
        self.audit = AuditLogger(db)

    def outstanding_totals(self, tenant_id: UUID, driver_id: UUID) -> OutstandingTotals:
        totals = OutstandingTotals()
        for _, receivable_type, amount, quantity, count in queries.outstanding_totals_by_driver(
            self.db, tenant_id, driver_id
        ).all():
            if receivable_type == ReceivableType.CASH:
                totals.cash += to_decimal(amount)
            else:
                totals.cylinders += int(quantity or 0)
            totals.receivable_count += int(count)
        return totals

    def _has_customer_receivables(self, tenant_id: UUID, driver_id: UUID) -> bool:
        return self.db.query(CustomerReceivable.id).filter(
            CustomerReceivable.tenant_id == tenant_id,
            CustomerReceivable.driver_id == driver_id,
        ).first() is not None

    def _unadjusted_totals(self, tenant_id: UUID, driver_id: UUID, record) -> Tuple[Decimal, int]:
        """What the record would total from its sales, onboarding and carry alone."""
        previous = queries.latest_record_before(self.db, tenant_id, driver_id, record.date).first()
        carry_cash = to_decimal(previous.total_cash_receivables) if previous else Decimal("0")
        carry_cylinders = int(previous.total_cylinder_receivables) if previous else 0
        return (
            to_decimal(record.cash_receivables_change) + to_decimal(record.onboarding_cash_receivables) + carry_cash,
            int(record.cylinder_receivables_change or 0) + int(record.onboarding_cylinder_receivables or 0)
            + carry_cylinders,
        )

    def sync_driver(self, tenant_id: UUID, driver_id: UUID,
                    user_id: Optional[UUID] = None) -> ReconciliationResult:
        """
        Bring the latest record's totals to the customer sums when they
        disagree. The gap is stored as the record's adjustment so the
        carry-forward chain reproduces the synced totals. Commits.
        """
        if not self._has_customer_receivables(tenant_id, driver_id):
            return ReconciliationResult(driver_id=driver_id, reason="no customer receivables")

        latest = queries.latest_record(self.db, tenant_id, driver_id).with_for_update().first()
        if latest is None:
            return ReconciliationResult(driver_id=driver_id, reason="no daily record")

        totals = self.outstanding_totals(tenant_id, driver_id)
        old_cash = to_decimal(latest.total_cash_receivables)
        old_cylinders = int(latest.total_cylinder_receivables)
        old_adjustment_cash = to_decimal(latest.adjustment_cash_receivables)
        old_adjustment_cylinders = int(latest.adjustment_cylinder_receivables or 0)

        cash_drift = abs(old_cash - totals.cash) > Decimal(str(settings.CASH_TOLERANCE))
        cylinder_drift = old_cylinders != totals.cylinders
        if not cash_drift and not cylinder_drift:
            self.db.commit()
            return ReconciliationResult(driver_id=driver_id, reason="in sync",
                                        old_cash=old_cash, old_cylinders=old_cylinders,
                                        new_cash=old_cash, new_cylinders=old_cylinders)

        logger.warning(
            f"Driver {driver_id} record {latest.date} out of sync with customer receivables: "
            f"cash {old_cash} vs {totals.cash}, cylinders {old_cylinders} vs {totals.cylinders}"
        )
        base_cash, base_cylinders = self._unadjusted_totals(tenant_id, driver_id, latest)
        latest.adjustment_cash_receivables = totals.cash - base_cash
        latest.adjustment_cylinder_receivables = totals.cylinders - base_cylinders
        latest.total_cash_receivables = totals.cash
        latest.total_cylinder_receivables = totals.cylinders
        latest.calculated_at = datetime.now(timezone.utc)

        self.audit.log(
            tenant_id=tenant_id,
            user_id=user_id,
            action=AuditAction.RECONCILE,
            entity_type=RECEIVABLE_RECORD_ENTITY,
            entity_id=latest.id,
            old_values={
                "total_cash_receivables": old_cash,
                "total_cylinder_receivables": old_cylinders,
                "adjustment_cash_receivables": old_adjustment_cash,
                "adjustment_cylinder_receivables": old_adjustment_cylinders,
            },
            new_values={
                "total_cash_receivables": totals.cash,
                "total_cylinder_receivables": totals.cylinders,
                "adjustment_cash_receivables": latest.adjustment_cash_receivables,
                "adjustment_cylinder_receivables": latest.adjustment_cylinder_receivables,
            },
            metadata=ReconciliationMetadata(
                driver_id=driver_id,
                record_date=latest.date,
                reason="customer receivables total differs from daily record",
            ),
        )
        self.db.commit()

        return ReconciliationResult(
            driver_id=driver_id, applied=True, in_sync=False, reason="totals synced",
            old_cash=old_cash, old_cylinders=old_cylinders,
            new_cash=totals.cash, new_cylinders=totals.cylinders,
        )
