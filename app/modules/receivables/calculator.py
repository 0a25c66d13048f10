"""
Daily receivables calculator.

Builds the (tenant, driver, date) record from that day's sales:

    total = today's sales change + today's onboarding + today's adjustment
            + latest total before today

Onboarding and reconciliation adjustment columns already on the record
are preserved. When later records exist the driver's chain is re-walked
so they keep carrying the right baseline; a failure there fails the
whole calculation.
"""
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from app.core.config import settings
from app.modules.receivables import queries
from app.modules.receivables.models import ReceivableRecord
from app.modules.receivables.recalculation import RecalculationEngine, apply_statement_timeout
from app.modules.receivables.schemas import (
    BatchItemError, DriverBalance, DriverPerformance, ReceivablesSummary,
    RecalculationResponse, RecalculationStats,
)
from app.modules.sales.aggregator import SalesAggregator, to_decimal
from app.modules.sales.models import Sale, SaleType
from app.modules.sales.schemas import DailySalesTotals
from sqlalchemy import case, func
import logging

logger = logging.getLogger(__name__)


class ReceivablesCalculator:

    def __init__(self, db: Session):
        self.db = db
        self.aggregator = SalesAggregator(db)

    def get_previous_totals(self, tenant_id: UUID, driver_id: UUID, day: date) -> Tuple[Decimal, int]:
        """Totals of the latest record strictly before `day` (zeros for a first record)."""
        previous = queries.latest_record_before(self.db, tenant_id, driver_id, day).first()
        if previous is None:
            return Decimal("0"), 0
        return to_decimal(previous.total_cash_receivables), int(previous.total_cylinder_receivables)

    def get_current_balances(self, tenant_id: UUID, driver_id: UUID,
                             as_of: Optional[date] = None) -> Tuple[Decimal, int]:
        latest = queries.latest_record(self.db, tenant_id, driver_id, as_of).first()
        if latest is None:
            return Decimal("0"), 0
        return to_decimal(latest.total_cash_receivables), int(latest.total_cylinder_receivables)

    def calculate_for_date(self, tenant_id: UUID, driver_id: UUID, day: date,
                           totals: Optional[DailySalesTotals] = None) -> ReceivableRecord:
        """
        Upsert the driver's record for `day` inside the current transaction.
        The caller commits. Batch callers pass `totals` already aggregated.
        """
        if totals is None:
            totals = self.aggregator.aggregate(tenant_id, driver_id, day)
        previous_cash, previous_cylinders = self.get_previous_totals(tenant_id, driver_id, day)

        record = queries.record_on(self.db, tenant_id, driver_id, day).with_for_update().first()
        if record is None:
            record = ReceivableRecord(
                tenant_id=tenant_id,
                driver_id=driver_id,
                date=day,
                onboarding_cash_receivables=Decimal("0"),
                onboarding_cylinder_receivables=0,
                adjustment_cash_receivables=Decimal("0"),
                adjustment_cylinder_receivables=0,
            )
            self.db.add(record)

        onboarding_cash = to_decimal(record.onboarding_cash_receivables)
        onboarding_cylinders = int(record.onboarding_cylinder_receivables or 0)
        adjustment_cash = to_decimal(record.adjustment_cash_receivables)
        adjustment_cylinders = int(record.adjustment_cylinder_receivables or 0)

        record.cash_receivables_change = totals.cash_receivables_change
        record.cylinder_receivables_change = totals.cylinder_receivables_change
        record.total_cash_receivables = (
            totals.cash_receivables_change + onboarding_cash + adjustment_cash + previous_cash
        )
        record.total_cylinder_receivables = (
            totals.cylinder_receivables_change + onboarding_cylinders + adjustment_cylinders + previous_cylinders
        )
        record.calculated_at = datetime.now(timezone.utc)
        self.db.flush()

        logger.debug(
            f"Driver {driver_id} {day}: change ({totals.cash_receivables_change}, {totals.cylinder_receivables_change}) "
            f"+ onboarding ({onboarding_cash}, {onboarding_cylinders}) + adjustment ({adjustment_cash}, {adjustment_cylinders}) "
            f"+ previous ({previous_cash}, {previous_cylinders}) "
            f"= ({record.total_cash_receivables}, {record.total_cylinder_receivables})"
        )

        if self._has_later_records(tenant_id, driver_id, day):
            RecalculationEngine(self.db).recalculate_driver(tenant_id, driver_id, strict=True)

        return record

    def _has_later_records(self, tenant_id: UUID, driver_id: UUID, day: date) -> bool:
        return self.db.query(ReceivableRecord.id).filter(
            ReceivableRecord.tenant_id == tenant_id,
            ReceivableRecord.driver_id == driver_id,
            ReceivableRecord.date > day,
        ).first() is not None

    def calculate_tenant_for_date(self, tenant_id: UUID, day: date,
                                  driver_id: Optional[UUID] = None) -> List[ReceivableRecord]:
        """Recompute `day` for one or all ACTIVE RETAIL drivers and commit."""
        drivers = queries.active_retail_drivers(self.db, tenant_id)
        if driver_id:
            drivers = drivers.filter_by(id=driver_id)
        drivers = drivers.all()
        daily = self.aggregator.aggregate_range(tenant_id, [driver.id for driver in drivers], day, day)
        records = [
            self.calculate_for_date(tenant_id, driver.id, day,
                                    daily.get((driver.id, day)) or self.aggregator.empty(driver.id, day))
            for driver in drivers
        ]
        self.db.commit()
        return records

    def calculate_recent_days(self, tenant_id: UUID, days: Optional[int] = None,
                              today: Optional[date] = None) -> RecalculationResponse:
        """
        Backfill the last `days` days (today included) for every ACTIVE RETAIL
        driver, oldest day first so each day carries the one before it.
        Sales for the whole window come from one grouped query.
        """
        days = days or settings.DEFAULT_RECALCULATION_DAYS
        today = today or date.today()
        stats = RecalculationStats()
        errors: List[BatchItemError] = []

        apply_statement_timeout(self.db)
        drivers = queries.active_retail_drivers(self.db, tenant_id).all()
        start = today - timedelta(days=days - 1)
        daily = self.aggregator.aggregate_range(tenant_id, [driver.id for driver in drivers], start, today)
        for driver in drivers:
            stats.drivers_processed += 1
            for offset in range(days - 1, -1, -1):
                day = today - timedelta(days=offset)
                totals = daily.get((driver.id, day)) or self.aggregator.empty(driver.id, day)
                stats.total_records += 1
                try:
                    with self.db.begin_nested():
                        self.calculate_for_date(tenant_id, driver.id, day, totals)
                    stats.updated_records += 1
                except SQLAlchemyError as e:
                    logger.error(f"Failed to calculate receivables for driver {driver.id} on {day}: {e}")
                    errors.append(BatchItemError(driver_id=driver.id, tenant_id=tenant_id,
                                                 record_date=day, error=str(e)))
        stats.tenants_processed = 1
        stats.errors = len(errors)
        self.db.commit()

        logger.info(f"Recalculated last {days} days for {len(drivers)} drivers of tenant {tenant_id}")
        return RecalculationResponse(
            success=True,
            message=f"Receivables recalculated for the last {days} days",
            stats=stats,
            errors=errors or None,
        )

    def get_summary(self, tenant_id: UUID, as_of: Optional[date] = None) -> ReceivablesSummary:
        """Latest balance of every ACTIVE RETAIL driver as of a date."""
        as_of = as_of or date.today()
        rows = queries.latest_records_for_active_retail(self.db, tenant_id, as_of).all()
        drivers = [
            DriverBalance(
                driver_id=driver.id,
                driver_name=driver.name,
                as_of=record.date,
                total_cash_receivables=to_decimal(record.total_cash_receivables),
                total_cylinder_receivables=int(record.total_cylinder_receivables),
            )
            for record, driver in rows
        ]
        return ReceivablesSummary(
            as_of=as_of,
            total_cash_receivables=sum((d.total_cash_receivables for d in drivers), Decimal("0")),
            total_cylinder_receivables=sum(d.total_cylinder_receivables for d in drivers),
            driver_count=len(drivers),
            drivers=drivers,
        )

    def get_driver_performance(self, tenant_id: UUID, driver_id: UUID,
                               start_date: date, end_date: date) -> DriverPerformance:
        row = self.db.query(
            func.coalesce(func.sum(Sale.total_value), 0),
            func.coalesce(func.sum(Sale.cash_deposited), 0),
            func.coalesce(func.sum(Sale.cylinders_deposited), 0),
            func.coalesce(func.sum(case((Sale.sale_type == SaleType.REFILL, Sale.quantity), else_=0)), 0),
        ).filter(
            Sale.tenant_id == tenant_id,
            Sale.driver_id == driver_id,
            Sale.sale_date >= start_date,
            Sale.sale_date <= end_date,
        ).one()

        revenue, cash_collected = to_decimal(row[0]), to_decimal(row[1])
        cylinders_collected, refill_quantity = int(row[2] or 0), int(row[3] or 0)

        hundred = Decimal("100")
        cash_efficiency = (cash_collected / revenue * hundred) if revenue > 0 else hundred
        cylinder_efficiency = (
            Decimal(cylinders_collected) / Decimal(refill_quantity) * hundred
            if refill_quantity > 0 else hundred
        )
        outstanding_cash, outstanding_cylinders = self.get_current_balances(tenant_id, driver_id, end_date)

        quantize = lambda value: value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
        return DriverPerformance(
            driver_id=driver_id,
            start_date=start_date,
            end_date=end_date,
            total_sales_revenue=revenue,
            total_cash_collected=cash_collected,
            total_cylinders_collected=cylinders_collected,
            cash_collection_efficiency=quantize(cash_efficiency),
            cylinder_collection_efficiency=quantize(cylinder_efficiency),
            collection_efficiency=quantize((cash_efficiency + cylinder_efficiency) / 2),
            outstanding_cash=outstanding_cash,
            outstanding_cylinders=outstanding_cylinders,
        )
