from pydantic import BaseModel, Field, field_validator
from typing import Optional, List
from uuid import UUID
from decimal import Decimal
from datetime import date, datetime

from app.modules.receivables.models import ReceivableType, ReceivableStatus, PaymentMethod


# ===== FILTERS =====

class ReceivableRecordFilters(BaseModel):
    driver_id: Optional[UUID] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    @field_validator("end_date")
    @classmethod
    def end_after_start(cls, v, info):
        start = info.data.get("start_date")
        if v and start and v < start:
            raise ValueError("end_date must be greater than or equal to start_date")
        return v


class CustomerReceivableFilters(BaseModel):
    driver_id: Optional[UUID] = None
    customer_id: Optional[UUID] = None
    receivable_type: Optional[ReceivableType] = None
    status: Optional[ReceivableStatus] = None
    include_paid: bool = False
    search: Optional[str] = Field(None, max_length=150, description="Customer name contains")


# ===== DAILY RECORDS =====

class ReceivableRecordOut(BaseModel):
    id: UUID
    driver_id: UUID
    date: date
    cash_receivables_change: Decimal
    cylinder_receivables_change: int
    onboarding_cash_receivables: Decimal
    onboarding_cylinder_receivables: int
    adjustment_cash_receivables: Decimal = Decimal("0")
    adjustment_cylinder_receivables: int = 0
    total_cash_receivables: Decimal
    total_cylinder_receivables: int
    calculated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class DriverBalance(BaseModel):
    driver_id: UUID
    driver_name: str
    as_of: Optional[date] = None
    total_cash_receivables: Decimal = Decimal("0")
    total_cylinder_receivables: int = 0


class ReceivablesSummary(BaseModel):
    as_of: date
    total_cash_receivables: Decimal
    total_cylinder_receivables: int
    driver_count: int
    drivers: List[DriverBalance]


class ReceivablesOverview(BaseModel):
    records: List[ReceivableRecordOut]
    summary: ReceivablesSummary


class CalculateRequest(BaseModel):
    date: date
    driver_id: Optional[UUID] = None


class CalculateResponse(BaseModel):
    success: bool = True
    message: str
    records: List[ReceivableRecordOut]


class DriverPerformance(BaseModel):
    driver_id: UUID
    start_date: date
    end_date: date
    total_sales_revenue: Decimal
    total_cash_collected: Decimal
    total_cylinders_collected: int
    cash_collection_efficiency: Decimal  # percent
    cylinder_collection_efficiency: Decimal  # percent
    collection_efficiency: Decimal  # mean of the two
    outstanding_cash: Decimal
    outstanding_cylinders: int


# ===== RECALCULATION =====

class BatchItemError(BaseModel):
    record_id: Optional[UUID] = None
    driver_id: Optional[UUID] = None
    tenant_id: Optional[UUID] = None
    record_date: Optional[date] = None
    error: str


class RecalculationStats(BaseModel):
    total_records: int = 0
    updated_records: int = 0
    drivers_processed: int = 0
    tenants_processed: int = 0
    errors: int = 0


class RecalculationResponse(BaseModel):
    success: bool
    message: str
    stats: RecalculationStats
    errors: Optional[List[BatchItemError]] = None


# ===== ONBOARDING =====

class OnboardingCreate(BaseModel):
    driver_id: UUID
    date: date
    cash_receivables: Decimal = Decimal("0")
    cylinder_receivables: int = 0


class OnboardingResponse(BaseModel):
    success: bool = True
    message: str
    record: ReceivableRecordOut
    stats: Optional[RecalculationStats] = None


# ===== CUSTOMER RECEIVABLES =====

class CustomerReceivableCreate(BaseModel):
    driver_id: UUID
    customer_id: Optional[UUID] = None
    customer_name: str = Field(..., min_length=1, max_length=150)
    receivable_type: ReceivableType
    amount: Decimal = Decimal("0")
    quantity: int = 0
    size: Optional[str] = Field(None, max_length=20)
    due_date: Optional[date] = None
    notes: Optional[str] = None

    @field_validator("customer_name")
    @classmethod
    def strip_name(cls, v):
        return v.strip()


class PaymentEventOut(BaseModel):
    id: UUID
    amount: Decimal
    payment_method: PaymentMethod
    notes: Optional[str] = None
    sale_id: Optional[UUID] = None
    actor_user_id: Optional[UUID] = None
    occurred_at: datetime

    class Config:
        from_attributes = True


class ReturnEventOut(BaseModel):
    id: UUID
    quantity: int
    size: Optional[str] = None
    notes: Optional[str] = None
    sale_id: Optional[UUID] = None
    actor_user_id: Optional[UUID] = None
    occurred_at: datetime

    class Config:
        from_attributes = True


class CustomerReceivableOut(BaseModel):
    id: UUID
    driver_id: UUID
    customer_id: Optional[UUID] = None
    customer_name: str
    receivable_type: ReceivableType
    amount: Decimal
    quantity: int
    size: Optional[str] = None
    status: ReceivableStatus
    due_date: Optional[date] = None
    notes: Optional[str] = None
    payments: List[PaymentEventOut] = []
    returns: List[ReturnEventOut] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class DriverReceivablesValidation(BaseModel):
    """Customer-level sums vs. the driver's latest daily record"""
    driver_id: UUID
    driver_name: str
    customer_cash_total: Decimal
    customer_cylinder_total: int
    sales_cash_total: Decimal
    sales_cylinder_total: int
    cash_matches: bool
    cylinders_match: bool

    @property
    def is_valid(self) -> bool:
        return self.cash_matches and self.cylinders_match


class CustomerReceivablesResponse(BaseModel):
    receivables: List[CustomerReceivableOut]
    validation: List[DriverReceivablesValidation]


class PaymentCreate(BaseModel):
    customer_receivable_id: UUID
    amount: Decimal
    payment_method: PaymentMethod = PaymentMethod.CASH
    notes: Optional[str] = Field(None, max_length=500)


class CylinderReturnCreate(BaseModel):
    customer_receivable_id: UUID
    quantity: int
    notes: Optional[str] = Field(None, max_length=500)


class LedgerMutationResponse(BaseModel):
    success: bool = True
    message: str
    receivable: CustomerReceivableOut
    sale_id: UUID
    reconciled: bool = False


class StatusRefreshResponse(BaseModel):
    success: bool = True
    message: str
    updated: int
