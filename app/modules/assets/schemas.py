from pydantic import BaseModel
from typing import List, Optional
from decimal import Decimal
from datetime import date
import enum


class AssetCategory(str, enum.Enum):
    CURRENT_ASSET = "CURRENT_ASSET"


class AssetSubCategory(str, enum.Enum):
    INVENTORY = "Inventory"
    RECEIVABLES = "Receivables"


class QuantitySource(str, enum.Enum):
    SIZE_SNAPSHOT = "size_snapshot"
    DISTRIBUTED_TOTAL = "distributed_total"
    RECEIVABLE_RECORDS = "receivable_records"


class AssetLine(BaseModel):
    key: str
    name: str
    category: AssetCategory = AssetCategory.CURRENT_ASSET
    sub_category: AssetSubCategory
    cylinder_size: Optional[str] = None
    quantity: Optional[int] = None
    unit_price: Optional[Decimal] = None
    value: Decimal
    description: str
    quantity_source: QuantitySource
    snapshot_date: Optional[date] = None


class AssetTotals(BaseModel):
    inventory: Decimal = Decimal("0")
    receivables: Decimal = Decimal("0")
    total: Decimal = Decimal("0")


class CurrentAssetsResponse(BaseModel):
    as_of: date
    assets: List[AssetLine]
    totals: AssetTotals
    empty_price_ratio: Decimal
