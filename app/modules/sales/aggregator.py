"""
Sales Aggregator

Turns a driver's raw sales for a day into the day's receivable change:

    cash     = Σ total_value − Σ cash_deposited − Σ discount
    cylinder = Σ quantity (REFILL only) − Σ cylinders_deposited

Nothing is clamped; a day with more deposits than sales yields a negative
change and must reach the running total as such.
"""
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, Tuple
from uuid import UUID

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from app.modules.sales.models import Sale, SaleType
from app.modules.sales.schemas import DailySalesTotals


def to_decimal(value) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


class SalesAggregator:

    def __init__(self, db: Session):
        self.db = db

    def _sum_columns(self):
        return (
            func.coalesce(func.sum(Sale.total_value), 0),
            func.coalesce(func.sum(Sale.cash_deposited), 0),
            func.coalesce(func.sum(Sale.discount), 0),
            func.coalesce(func.sum(case((Sale.sale_type == SaleType.REFILL, Sale.quantity), else_=0)), 0),
            func.coalesce(func.sum(Sale.cylinders_deposited), 0),
            func.count(Sale.id),
        )

    @staticmethod
    def _build_totals(driver_id: UUID, day: date, row) -> DailySalesTotals:
        revenue, deposited, discounts, refill_qty, cyl_deposited, count = row
        revenue, deposited, discounts = to_decimal(revenue), to_decimal(deposited), to_decimal(discounts)
        refill_qty, cyl_deposited = int(refill_qty or 0), int(cyl_deposited or 0)
        return DailySalesTotals(
            driver_id=driver_id,
            date=day,
            cash_receivables_change=revenue - deposited - discounts,
            cylinder_receivables_change=refill_qty - cyl_deposited,
            total_revenue=revenue,
            cash_deposited=deposited,
            discounts=discounts,
            refill_quantity=refill_qty,
            cylinders_deposited=cyl_deposited,
            sale_count=int(count or 0),
        )

    def empty(self, driver_id: UUID, day: date) -> DailySalesTotals:
        return self._build_totals(driver_id, day, (0, 0, 0, 0, 0, 0))

    def aggregate(self, tenant_id: UUID, driver_id: UUID, day: date) -> DailySalesTotals:
        """Daily change for one driver; zero totals when there are no sales."""
        row = self.db.query(*self._sum_columns()).filter(
            Sale.tenant_id == tenant_id,
            Sale.driver_id == driver_id,
            Sale.sale_date == day,
        ).one()
        return self._build_totals(driver_id, day, row)

    def aggregate_range(self, tenant_id: UUID, driver_ids: Iterable[UUID],
                        start_date: date, end_date: date) -> Dict[Tuple[UUID, date], DailySalesTotals]:
        """
        Batch variant for backfills: one grouped query instead of one per
        driver-day. Days without sales are absent from the result.
        """
        driver_ids = list(driver_ids)
        if not driver_ids:
            return {}

        rows = self.db.query(Sale.driver_id, Sale.sale_date, *self._sum_columns()).filter(
            Sale.tenant_id == tenant_id,
            Sale.driver_id.in_(driver_ids),
            Sale.sale_date >= start_date,
            Sale.sale_date <= end_date,
        ).group_by(Sale.driver_id, Sale.sale_date).all()

        return {
            (row[0], row[1]): self._build_totals(row[0], row[1], row[2:])
            for row in rows
        }
