from pydantic import BaseModel, Field, model_validator
from typing import Optional
from uuid import UUID
from decimal import Decimal
from datetime import date, datetime

from app.modules.sales.models import SaleType, PaymentType


class DailySalesTotals(BaseModel):
    """A driver's net movement for one day, derived from its sales"""
    driver_id: UUID
    date: date
    cash_receivables_change: Decimal = Decimal("0")
    cylinder_receivables_change: int = 0

    total_revenue: Decimal = Decimal("0")
    cash_deposited: Decimal = Decimal("0")
    discounts: Decimal = Decimal("0")
    refill_quantity: int = 0
    cylinders_deposited: int = 0
    sale_count: int = 0


class SaleCreate(BaseModel):
    driver_id: UUID
    product_id: UUID
    sale_type: SaleType
    quantity: int = Field(..., ge=1, le=1000)
    unit_price: Decimal = Field(..., ge=0)
    discount: Decimal = Field(default=Decimal("0"), ge=0)
    payment_type: PaymentType = PaymentType.CASH
    cash_deposited: Decimal = Field(default=Decimal("0"), ge=0)
    cylinders_deposited: int = Field(default=0, ge=0)
    customer_name: Optional[str] = Field(None, max_length=150)
    sale_date: Optional[date] = None
    notes: Optional[str] = None

    @model_validator(mode="after")
    def discount_within_total(self):
        if self.discount > self.unit_price * self.quantity:
            raise ValueError("discount cannot exceed the sale total")
        return self


class SaleOut(BaseModel):
    id: UUID
    driver_id: UUID
    product_id: Optional[UUID] = None
    sale_date: date
    sale_type: SaleType
    payment_type: PaymentType
    quantity: int
    unit_price: Decimal
    total_value: Decimal
    discount: Decimal
    net_value: Decimal
    cash_deposited: Decimal
    cylinders_deposited: int
    customer_name: Optional[str] = None
    is_deposit_only: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class SaleRecordedResponse(BaseModel):
    success: bool = True
    message: str
    sale: SaleOut
    total_cash_receivables: Decimal
    total_cylinder_receivables: int
