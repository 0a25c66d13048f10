from app.database.database import Base
from sqlalchemy import (
    Column, String, Integer, Date, Boolean, ForeignKey, Numeric, Enum, Text, Uuid,
    CheckConstraint, Index,
)
from sqlalchemy.orm import relationship
from app.common.mixins import BaseMixin
import enum


class SaleType(enum.Enum):
    PACKAGE = "PACKAGE"  # Cylinder + gas; no empty comes back
    REFILL = "REFILL"    # Gas only; customer owes an empty in exchange


class PaymentType(enum.Enum):
    CASH = "CASH"
    CREDIT = "CREDIT"
    PARTIAL = "PARTIAL"


class Sale(Base, BaseMixin):
    """
    One sale (or deposit-only entry) made by a driver on a given day.

    Deposit-only sales have quantity 0 and carry the cash or empties a
    customer paid back against their receivable.
    """
    __tablename__ = "sales"

    driver_id = Column(Uuid(as_uuid=True), ForeignKey("drivers.id"), nullable=False, index=True)
    product_id = Column(Uuid(as_uuid=True), ForeignKey("products.id"), nullable=True, index=True)
    user_id = Column(Uuid(as_uuid=True), nullable=True)
    sale_date = Column(Date, nullable=False, index=True)
    sale_type = Column(Enum(SaleType), nullable=False)
    payment_type = Column(Enum(PaymentType), nullable=False, default=PaymentType.CASH)

    quantity = Column(Integer, nullable=False, default=0)
    unit_price = Column(Numeric(15, 2), nullable=False, default=0)
    total_value = Column(Numeric(15, 2), nullable=False, default=0)
    discount = Column(Numeric(15, 2), nullable=False, default=0)
    net_value = Column(Numeric(15, 2), nullable=False, default=0)
    cash_deposited = Column(Numeric(15, 2), nullable=False, default=0)
    cylinders_deposited = Column(Integer, nullable=False, default=0)

    customer_name = Column(String(150), nullable=True)
    is_deposit_only = Column(Boolean, nullable=False, default=False)
    notes = Column(Text, nullable=True)

    driver = relationship("Driver")
    product = relationship("Product")

    __table_args__ = (
        Index("ix_sales_tenant_driver_date", "tenant_id", "driver_id", "sale_date"),
        CheckConstraint("quantity >= 0", name="ck_sales_quantity_non_negative"),
        CheckConstraint("cylinders_deposited >= 0", name="ck_sales_cylinders_deposited_non_negative"),
    )
