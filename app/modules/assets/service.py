"""
Current assets of the distributor: cash owed by drivers plus full and
empty cylinder stock valued per cylinder size.

Cylinder receivables are deliberately absent. Those cylinders are the
same physical units already counted in empty-cylinder inventory.
"""
from collections import defaultdict
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.config import settings
from app.modules.assets.schemas import (
    AssetLine, AssetSubCategory, AssetTotals, CurrentAssetsResponse, QuantitySource,
)
from app.modules.cylinders.calculator import CylinderReceivablesCalculator, distribute_by_size
from app.modules.inventory.models import InventoryRecord, FullCylinderStock, EmptyCylinderStock
from app.modules.products.models import Product, CylinderSize
from app.modules.receivables import queries
from app.modules.sales.aggregator import to_decimal
from app.modules.sales.models import Sale
import logging

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def money(value) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def weighted_average_price(prices: Dict[UUID, Decimal], quantities: Dict[UUID, int]) -> Optional[Decimal]:
    """Quantity-weighted average over products; simple average when nothing has a quantity."""
    if not prices:
        return None
    weight = sum(quantities.get(product_id, 0) for product_id in prices)
    if weight > 0:
        total = sum(price * quantities.get(product_id, 0) for product_id, price in prices.items())
        return money(total / weight)
    return money(sum(prices.values()) / len(prices))


class AssetValuationService:

    def __init__(self, db: Session):
        self.db = db
        self.cylinders = CylinderReceivablesCalculator(db)

    # ----- quantities -----

    def _full_stock_snapshot(self, tenant_id: UUID, as_of: date) -> Tuple[Optional[date], Dict[str, int], Dict[UUID, int]]:
        """Latest per-product full stock: (date, qty by size, qty by product)."""
        snapshot_date = self.db.query(func.max(FullCylinderStock.date)).filter(
            FullCylinderStock.tenant_id == tenant_id,
            FullCylinderStock.date <= as_of,
        ).scalar()
        if snapshot_date is None:
            return None, {}, {}

        by_size: Dict[str, int] = defaultdict(int)
        by_product: Dict[UUID, int] = defaultdict(int)
        rows = self.db.query(FullCylinderStock.product_id, CylinderSize.size, FullCylinderStock.quantity).join(
            CylinderSize, CylinderSize.id == FullCylinderStock.cylinder_size_id
        ).filter(
            FullCylinderStock.tenant_id == tenant_id,
            FullCylinderStock.date == snapshot_date,
        ).all()
        for product_id, size, quantity in rows:
            by_size[size] += int(quantity or 0)
            by_product[product_id] += int(quantity or 0)
        return snapshot_date, dict(by_size), dict(by_product)

    def _empty_stock_snapshot(self, tenant_id: UUID, as_of: date) -> Tuple[Optional[date], Dict[str, int]]:
        snapshot_date = self.db.query(func.max(EmptyCylinderStock.date)).filter(
            EmptyCylinderStock.tenant_id == tenant_id,
            EmptyCylinderStock.date <= as_of,
        ).scalar()
        if snapshot_date is None:
            return None, {}

        rows = self.db.query(CylinderSize.size, func.sum(EmptyCylinderStock.quantity)).join(
            CylinderSize, CylinderSize.id == EmptyCylinderStock.cylinder_size_id
        ).filter(
            EmptyCylinderStock.tenant_id == tenant_id,
            EmptyCylinderStock.date == snapshot_date,
        ).group_by(CylinderSize.size).all()
        return snapshot_date, {size: int(quantity or 0) for size, quantity in rows}

    def _latest_inventory(self, tenant_id: UUID, as_of: date) -> Optional[InventoryRecord]:
        return self.db.query(InventoryRecord).filter(
            InventoryRecord.tenant_id == tenant_id,
            InventoryRecord.date <= as_of,
        ).order_by(InventoryRecord.date.desc()).first()

    def _distribute(self, tenant_id: UUID, total: int, as_of: date, deposits: bool) -> Dict[str, int]:
        """Spread a distributor-wide count over sizes by history, or evenly when there is none."""
        weights = self.cylinders.sales_weights_by_size(tenant_id, as_of, deposits=deposits)
        if deposits and not any(weights.values()):
            weights = self.cylinders.sales_weights_by_size(tenant_id, as_of)
        if not any(weights.values()):
            weights = {size: 1 for size in self.cylinders.tenant_sizes(tenant_id)}
        return distribute_by_size(total, weights)

    # ----- prices -----

    def _products_by_size(self, tenant_id: UUID) -> Dict[str, Dict[UUID, Decimal]]:
        rows = self.db.query(Product.id, CylinderSize.size, Product.current_price).join(
            CylinderSize, CylinderSize.id == Product.cylinder_size_id
        ).filter(
            Product.tenant_id == tenant_id,
            Product.is_active.is_(True),
        ).all()
        prices: Dict[str, Dict[UUID, Decimal]] = defaultdict(dict)
        for product_id, size, price in rows:
            prices[size][product_id] = to_decimal(price)
        return prices

    def _sold_quantities(self, tenant_id: UUID, as_of: date) -> Dict[UUID, int]:
        rows = self.db.query(Sale.product_id, func.sum(Sale.quantity)).filter(
            Sale.tenant_id == tenant_id,
            Sale.sale_date <= as_of,
            Sale.product_id.isnot(None),
        ).group_by(Sale.product_id).all()
        return {product_id: int(quantity or 0) for product_id, quantity in rows}

    # ----- valuation -----

    def _cash_receivables_line(self, tenant_id: UUID, as_of: date) -> Optional[AssetLine]:
        latest = queries.latest_records_for_active_retail(self.db, tenant_id, as_of).all()
        owed = [to_decimal(record.total_cash_receivables) for record, _ in latest]
        total = money(sum((amount for amount in owed if amount > 0), Decimal("0")))
        if total <= 0:
            return None
        return AssetLine(
            key="cash-receivables",
            name="Cash Receivables",
            sub_category=AssetSubCategory.RECEIVABLES,
            value=total,
            description=f"Outstanding cash receivables from {sum(1 for a in owed if a > 0)} drivers",
            quantity_source=QuantitySource.RECEIVABLE_RECORDS,
        )

    def calculate_current_assets(self, tenant_id: UUID, as_of: Optional[date] = None,
                                 price_overrides: Optional[Dict[str, Decimal]] = None) -> CurrentAssetsResponse:
        as_of = as_of or date.today()
        price_overrides = price_overrides or {}
        ratio = Decimal(str(settings.EMPTY_CYLINDER_PRICE_RATIO))
        assets: List[AssetLine] = []

        cash_line = self._cash_receivables_line(tenant_id, as_of)
        if cash_line:
            assets.append(cash_line)

        full_date, full_by_size, full_by_product = self._full_stock_snapshot(tenant_id, as_of)
        empty_date, empty_by_size = self._empty_stock_snapshot(tenant_id, as_of)
        full_source = empty_source = QuantitySource.SIZE_SNAPSHOT

        if full_date is None or empty_date is None:
            inventory = self._latest_inventory(tenant_id, as_of)
            if inventory is not None:
                if full_date is None:
                    full_date = inventory.date
                    full_by_size = self._distribute(tenant_id, int(inventory.full_cylinders), as_of, deposits=False)
                    full_source = QuantitySource.DISTRIBUTED_TOTAL
                if empty_date is None:
                    empty_date = inventory.date
                    empty_by_size = self._distribute(tenant_id, int(inventory.empty_cylinders), as_of, deposits=True)
                    empty_source = QuantitySource.DISTRIBUTED_TOTAL

        prices_by_size = self._products_by_size(tenant_id)
        weights = full_by_product if full_by_product else self._sold_quantities(tenant_id, as_of)
        symbol = settings.CURRENCY_SYMBOL

        for size in sorted(set(full_by_size) | set(empty_by_size)):
            if size in price_overrides:
                full_price = money(price_overrides[size])
            else:
                full_price = weighted_average_price(prices_by_size.get(size, {}), weights)
            if full_price is None:
                logger.warning(f"No active product priced for cylinder size {size}; skipping its stock valuation")
                continue
            empty_price = money(full_price * ratio)

            full_quantity = full_by_size.get(size, 0)
            if full_quantity:
                assets.append(AssetLine(
                    key=f"full-cylinders-{size}",
                    name=f"Full Cylinders ({size})",
                    sub_category=AssetSubCategory.INVENTORY,
                    cylinder_size=size,
                    quantity=full_quantity,
                    unit_price=full_price,
                    value=money(full_price * full_quantity),
                    description=f"{full_quantity} cylinders @ {symbol}{full_price} each",
                    quantity_source=full_source,
                    snapshot_date=full_date,
                ))

            empty_quantity = empty_by_size.get(size, 0)
            if empty_quantity:
                assets.append(AssetLine(
                    key=f"empty-cylinders-{size}",
                    name=f"Empty Cylinders ({size})",
                    sub_category=AssetSubCategory.INVENTORY,
                    cylinder_size=size,
                    quantity=empty_quantity,
                    unit_price=empty_price,
                    value=money(empty_price * empty_quantity),
                    description=f"{empty_quantity} empty cylinders @ {symbol}{empty_price} each",
                    quantity_source=empty_source,
                    snapshot_date=empty_date,
                ))

        totals = AssetTotals()
        for line in assets:
            if line.sub_category == AssetSubCategory.INVENTORY:
                totals.inventory += line.value
            else:
                totals.receivables += line.value
        totals.total = totals.inventory + totals.receivables

        return CurrentAssetsResponse(as_of=as_of, assets=assets, totals=totals, empty_price_ratio=ratio)
