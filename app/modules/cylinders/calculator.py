"""
Cylinder Size Tracker

Splits aggregate cylinder quantities across cylinder sizes using what
actually happened in the sales history instead of a flat split over every
known size. A driver who only ever took back 12L empties has all of
their cylinder receivables attributed to 12L.

Per driver:

    share(size) = deposits(size) / deposits(all sizes)
    receivables(size) ≈ share(size) × driver total

Quantities are apportioned with the largest-remainder method so the
per-size figures are whole cylinders that still add up to the driver's
total. Drivers with no deposit history stay unattributed.
"""
from collections import defaultdict
from datetime import date
from decimal import Decimal, ROUND_FLOOR
from typing import Dict, Iterable, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.modules.cylinders.schemas import (
    BreakdownComparison, CylinderReceivablesBySize, DriverSizeBreakdown, SizeQuantity,
)
from app.modules.products.models import Product, CylinderSize
from app.modules.receivables import queries
from app.modules.sales.models import Sale, SaleType

CALCULATION_METHOD = "Exact distribution by each driver's refill deposit history per cylinder size"


def distribute_by_size(total: int, weights: Dict[str, int]) -> Dict[str, int]:
    """
    Apportion `total` whole units over sizes in proportion to `weights`.
    Result sums to `total` whenever any weight is positive; negative totals
    are apportioned by magnitude and keep their sign.
    """
    positive = {size: weight for size, weight in weights.items() if weight and weight > 0}
    weight_sum = sum(positive.values())
    if total == 0 or weight_sum == 0:
        return {}

    sign = -1 if total < 0 else 1
    magnitude = abs(total)

    quotas = {
        size: Decimal(weight) * Decimal(magnitude) / Decimal(weight_sum)
        for size, weight in positive.items()
    }
    allocated = {size: int(quota.to_integral_value(rounding=ROUND_FLOOR)) for size, quota in quotas.items()}
    remaining = magnitude - sum(allocated.values())

    # Largest fractional part first; ties go to the larger weight, then size name
    by_remainder = sorted(
        quotas,
        key=lambda size: (quotas[size] - allocated[size], positive[size], size),
        reverse=True,
    )
    for size in by_remainder[:remaining]:
        allocated[size] += 1

    return {size: sign * quantity for size, quantity in allocated.items() if quantity}


def validate_receivables_match(breakdown1: Dict[str, int], breakdown2: Dict[str, int],
                               tolerance: int = 0) -> BreakdownComparison:
    """Per-size differences (breakdown2 − breakdown1) beyond the tolerance."""
    differences = {}
    for size in sorted(set(breakdown1) | set(breakdown2)):
        value1 = breakdown1.get(size, 0)
        value2 = breakdown2.get(size, 0)
        if abs(value1 - value2) > tolerance:
            differences[size] = value2 - value1
    return BreakdownComparison(matches=not differences, differences=differences)


def to_size_breakdown_list(breakdown: Dict[str, int], sizes: Iterable[str]) -> List[SizeQuantity]:
    return [SizeQuantity(size=size, quantity=breakdown.get(size, 0)) for size in sizes]


class CylinderReceivablesCalculator:

    def __init__(self, db: Session):
        self.db = db

    def _deposit_history(self, tenant_id: UUID, driver_ids: List[UUID],
                         as_of: date) -> Tuple[Dict[UUID, Dict[str, int]], int]:
        """REFILL deposits per driver and size up to as_of, plus the transaction count."""
        rows = self.db.query(
            Sale.driver_id,
            CylinderSize.size,
            func.sum(Sale.cylinders_deposited),
            func.count(Sale.id),
        ).join(
            Product, Product.id == Sale.product_id
        ).join(
            CylinderSize, CylinderSize.id == Product.cylinder_size_id
        ).filter(
            Sale.tenant_id == tenant_id,
            Sale.driver_id.in_(driver_ids),
            Sale.sale_type == SaleType.REFILL,
            Sale.sale_date <= as_of,
            Sale.cylinders_deposited > 0,
        ).group_by(Sale.driver_id, CylinderSize.size).all()

        history: Dict[UUID, Dict[str, int]] = defaultdict(dict)
        transactions = 0
        for driver_id, size, deposited, count in rows:
            history[driver_id][size] = int(deposited or 0)
            transactions += int(count)
        return history, transactions

    def tenant_sizes(self, tenant_id: UUID) -> List[str]:
        return [
            row[0] for row in self.db.query(CylinderSize.size).filter(
                CylinderSize.tenant_id == tenant_id, CylinderSize.is_active.is_(True)
            ).order_by(CylinderSize.size).all()
        ]

    def calculate_exact_receivables_by_size(self, tenant_id: UUID,
                                            as_of_date: Optional[date] = None) -> CylinderReceivablesBySize:
        as_of = as_of_date or date.today()

        latest = [
            (record, driver)
            for record, driver in queries.latest_records_for_active_retail(self.db, tenant_id, as_of).all()
            if int(record.total_cylinder_receivables or 0) != 0
        ]
        driver_ids = [driver.id for _, driver in latest]
        history, transaction_count = (
            self._deposit_history(tenant_id, driver_ids, as_of) if driver_ids else ({}, 0)
        )

        breakdown: Dict[str, int] = defaultdict(int)
        drivers = []
        attributed = unattributed = 0
        for record, driver in latest:
            total = int(record.total_cylinder_receivables)
            driver_history = history.get(driver.id, {})
            driver_breakdown = distribute_by_size(total, driver_history)
            if driver_breakdown:
                attributed += total
                for size, quantity in driver_breakdown.items():
                    breakdown[size] += quantity
            else:
                unattributed += total
            drivers.append(DriverSizeBreakdown(
                driver_id=driver.id,
                driver_name=driver.name,
                total_cylinder_receivables=total,
                deposit_history=driver_history,
                breakdown=driver_breakdown,
                attributed=bool(driver_breakdown),
            ))

        breakdown = dict(sorted(breakdown.items()))
        sizes = sorted(set(self.tenant_sizes(tenant_id)) | set(breakdown))
        return CylinderReceivablesBySize(
            as_of=as_of,
            total_cylinder_receivables=attributed + unattributed,
            receivables_breakdown=breakdown,
            sizes=to_size_breakdown_list(breakdown, sizes),
            calculation_method=CALCULATION_METHOD,
            driver_count=len(latest),
            transaction_count=transaction_count,
            attributed_receivables=attributed,
            unattributed_receivables=unattributed,
            drivers=drivers,
        )

    def sales_weights_by_size(self, tenant_id: UUID, as_of: date, deposits: bool = False) -> Dict[str, int]:
        """
        Tenant-wide size weights from sales history: quantities sold, or
        (deposits=True) empties taken back on REFILL sales.
        """
        column = Sale.cylinders_deposited if deposits else Sale.quantity
        query = self.db.query(CylinderSize.size, func.sum(column)).join(
            Product, Product.id == Sale.product_id
        ).join(
            CylinderSize, CylinderSize.id == Product.cylinder_size_id
        ).filter(
            Sale.tenant_id == tenant_id,
            Sale.sale_date <= as_of,
            column > 0,
        )
        if deposits:
            query = query.filter(Sale.sale_type == SaleType.REFILL)
        return {size: int(total or 0) for size, total in query.group_by(CylinderSize.size).all()}
