"""
SQLAlchemy models for receivables.

ReceivableRecord: one row per (tenant, driver, calendar day) holding the
day's change, any onboarding or reconciliation adjustment, and the
running totals. Records are never deleted; repairs happen through
recalculation.

CustomerReceivable: what a single customer owes a driver, either cash or
empty cylinders. Payments and returns are kept as child event rows.
"""
from app.database.database import Base
from sqlalchemy import (
    Column, String, Integer, Date, DateTime, ForeignKey, Numeric, Enum, Text, Uuid,
    UniqueConstraint, CheckConstraint, Index,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.common.mixins import BaseMixin
import enum


class ReceivableType(enum.Enum):
    CASH = "CASH"
    CYLINDER = "CYLINDER"


class ReceivableStatus(enum.Enum):
    CURRENT = "CURRENT"
    DUE_SOON = "DUE_SOON"
    OVERDUE = "OVERDUE"
    PAID = "PAID"


class PaymentMethod(enum.Enum):
    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"
    CHEQUE = "cheque"
    DIGITAL_PAYMENT = "digital_payment"


class ReceivableRecord(Base, BaseMixin):
    __tablename__ = "receivable_records"

    driver_id = Column(Uuid(as_uuid=True), ForeignKey("drivers.id"), nullable=False, index=True)
    date = Column(Date, nullable=False, index=True)

    cash_receivables_change = Column(Numeric(15, 2), nullable=False, default=0)
    cylinder_receivables_change = Column(Integer, nullable=False, default=0)

    # Opening balance carried in when the driver joined; only ever set on the first record
    onboarding_cash_receivables = Column(Numeric(15, 2), nullable=False, default=0)
    onboarding_cylinder_receivables = Column(Integer, nullable=False, default=0)

    # Correction written by reconciliation so the record agrees with customer-level receivables
    adjustment_cash_receivables = Column(Numeric(15, 2), nullable=False, default=0)
    adjustment_cylinder_receivables = Column(Integer, nullable=False, default=0)

    total_cash_receivables = Column(Numeric(15, 2), nullable=False, default=0)
    total_cylinder_receivables = Column(Integer, nullable=False, default=0)

    calculated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    driver = relationship("Driver", back_populates="receivable_records")

    __table_args__ = (
        UniqueConstraint("tenant_id", "driver_id", "date", name="uq_receivable_record_tenant_driver_date"),
    )


class CustomerReceivable(Base, BaseMixin):
    __tablename__ = "customer_receivables"

    driver_id = Column(Uuid(as_uuid=True), ForeignKey("drivers.id"), nullable=False, index=True)
    customer_id = Column(Uuid(as_uuid=True), ForeignKey("customers.id"), nullable=True, index=True)
    customer_name = Column(String(150), nullable=False)
    receivable_type = Column(Enum(ReceivableType), nullable=False, index=True)

    amount = Column(Numeric(15, 2), nullable=False, default=0)   # CASH
    quantity = Column(Integer, nullable=False, default=0)        # CYLINDER
    size = Column(String(20), nullable=True)                     # CYLINDER, e.g. "12L"

    status = Column(Enum(ReceivableStatus), nullable=False, default=ReceivableStatus.CURRENT, index=True)
    due_date = Column(Date, nullable=True)
    notes = Column(Text, nullable=True)

    driver = relationship("Driver", back_populates="customer_receivables")
    customer = relationship("Customer")
    payments = relationship(
        "PaymentEvent", back_populates="receivable",
        cascade="all, delete-orphan", order_by="PaymentEvent.occurred_at",
    )
    returns = relationship(
        "ReturnEvent", back_populates="receivable",
        cascade="all, delete-orphan", order_by="ReturnEvent.occurred_at",
    )

    __table_args__ = (
        Index("ix_customer_receivables_tenant_driver_status", "tenant_id", "driver_id", "status"),
        CheckConstraint("amount >= 0", name="ck_customer_receivable_amount_non_negative"),
        CheckConstraint("quantity >= 0", name="ck_customer_receivable_quantity_non_negative"),
    )

    @property
    def outstanding(self):
        if self.receivable_type == ReceivableType.CASH:
            return self.amount
        return self.quantity


class PaymentEvent(Base, BaseMixin):
    """Cash collected against a CASH customer receivable"""
    __tablename__ = "receivable_payment_events"

    receivable_id = Column(Uuid(as_uuid=True), ForeignKey("customer_receivables.id"), nullable=False, index=True)
    amount = Column(Numeric(15, 2), nullable=False)
    payment_method = Column(Enum(PaymentMethod), nullable=False, default=PaymentMethod.CASH)
    notes = Column(Text, nullable=True)
    sale_id = Column(Uuid(as_uuid=True), ForeignKey("sales.id"), nullable=True)
    actor_user_id = Column(Uuid(as_uuid=True), nullable=True)
    occurred_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    receivable = relationship("CustomerReceivable", back_populates="payments")

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_payment_event_amount_positive"),
    )


class ReturnEvent(Base, BaseMixin):
    """Empty cylinders handed back against a CYLINDER customer receivable"""
    __tablename__ = "receivable_return_events"

    receivable_id = Column(Uuid(as_uuid=True), ForeignKey("customer_receivables.id"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    size = Column(String(20), nullable=True)
    notes = Column(Text, nullable=True)
    sale_id = Column(Uuid(as_uuid=True), ForeignKey("sales.id"), nullable=True)
    actor_user_id = Column(Uuid(as_uuid=True), nullable=True)
    occurred_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    receivable = relationship("CustomerReceivable", back_populates="returns")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_return_event_quantity_positive"),
    )
