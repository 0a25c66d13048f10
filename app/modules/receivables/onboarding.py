"""
Opening balances for drivers who already owed money or cylinders before
joining the system. The baseline lives on the driver's first record and
is carried forward like any other total.
"""
from decimal import Decimal
from typing import Optional
from uuid import UUID

from fastapi import HTTPException
from sqlalchemy.orm import Session

from app.common.exceptions import ValidationError, NotFoundError, PersistenceError
from app.modules.audit.models import AuditAction
from app.modules.audit.schemas import OnboardingMetadata
from app.modules.audit.service import AuditLogger, RECEIVABLE_RECORD_ENTITY
from app.modules.drivers.models import Driver, active_retail_filter
from app.modules.receivables import queries
from app.modules.receivables.calculator import ReceivablesCalculator
from app.modules.receivables.models import ReceivableRecord
from app.modules.receivables.schemas import OnboardingCreate
import logging

logger = logging.getLogger(__name__)


class OnboardingService:

    def __init__(self, db: Session):
        self.db = db

    def record_baseline(self, data: OnboardingCreate, tenant_id: UUID,
                        user_id: Optional[UUID] = None) -> ReceivableRecord:
        try:
            if data.cash_receivables < 0 or data.cylinder_receivables < 0:
                raise ValidationError("Onboarding balances cannot be negative")
            if data.cash_receivables == 0 and data.cylinder_receivables == 0:
                raise ValidationError("Onboarding requires a cash or cylinder balance")

            driver = active_retail_filter(
                self.db.query(Driver).filter(Driver.id == data.driver_id, Driver.tenant_id == tenant_id)
            ).first()
            if not driver:
                raise NotFoundError("Driver not found")

            earlier = queries.latest_record_before(self.db, tenant_id, driver.id, data.date).first()
            if earlier:
                raise ValidationError(
                    f"Driver already has ledger entries from {earlier.date}; "
                    f"onboarding must be on or before the first entry"
                )

            record = queries.record_on(self.db, tenant_id, driver.id, data.date).with_for_update().first()
            old_values = None
            if record is None:
                record = ReceivableRecord(
                    tenant_id=tenant_id,
                    driver_id=driver.id,
                    date=data.date,
                    cash_receivables_change=Decimal("0"),
                    cylinder_receivables_change=0,
                    total_cash_receivables=Decimal("0"),
                    total_cylinder_receivables=0,
                )
                self.db.add(record)
            else:
                old_values = {
                    "onboarding_cash_receivables": record.onboarding_cash_receivables,
                    "onboarding_cylinder_receivables": record.onboarding_cylinder_receivables,
                    "total_cash_receivables": record.total_cash_receivables,
                    "total_cylinder_receivables": record.total_cylinder_receivables,
                }

            record.onboarding_cash_receivables = data.cash_receivables
            record.onboarding_cylinder_receivables = data.cylinder_receivables
            self.db.flush()

            record = ReceivablesCalculator(self.db).calculate_for_date(tenant_id, driver.id, data.date)

            AuditLogger(self.db).log(
                tenant_id=tenant_id,
                user_id=user_id,
                action=AuditAction.ONBOARDING,
                entity_type=RECEIVABLE_RECORD_ENTITY,
                entity_id=record.id,
                old_values=old_values,
                new_values={
                    "onboarding_cash_receivables": record.onboarding_cash_receivables,
                    "onboarding_cylinder_receivables": record.onboarding_cylinder_receivables,
                    "total_cash_receivables": record.total_cash_receivables,
                    "total_cylinder_receivables": record.total_cylinder_receivables,
                },
                metadata=OnboardingMetadata(driver_name=driver.name, baseline_date=data.date),
            )
            self.db.commit()
            self.db.refresh(record)

            logger.info(f"Onboarding baseline for driver {driver.id} on {data.date}: "
                        f"cash {data.cash_receivables}, cylinders {data.cylinder_receivables}")
            return record

        except HTTPException:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error recording onboarding baseline: {e}", exc_info=True)
            raise PersistenceError()
