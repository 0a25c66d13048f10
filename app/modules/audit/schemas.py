"""
Typed audit metadata.

Each ledger mutation stores exactly one of these variants, discriminated
by `kind`, so readers can parse the JSON back without guessing keys.
"""
from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, List, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field, TypeAdapter


class PaymentMetadata(BaseModel):
    kind: Literal["payment"] = "payment"
    payment_amount: Decimal
    payment_method: str
    customer_name: str
    driver_name: str
    notes: Optional[str] = None


class CylinderReturnMetadata(BaseModel):
    kind: Literal["cylinder_return"] = "cylinder_return"
    return_quantity: int
    size: Optional[str] = None
    customer_name: str
    driver_name: str
    notes: Optional[str] = None


class ReceivableCreatedMetadata(BaseModel):
    kind: Literal["receivable_created"] = "receivable_created"
    customer_name: str
    driver_name: str
    receivable_type: str


class ReconciliationMetadata(BaseModel):
    kind: Literal["reconciliation"] = "reconciliation"
    driver_id: UUID
    record_date: date
    reason: str


class OnboardingMetadata(BaseModel):
    kind: Literal["onboarding"] = "onboarding"
    driver_name: str
    baseline_date: date


AuditMetadata = Annotated[
    Union[
        PaymentMetadata,
        CylinderReturnMetadata,
        ReceivableCreatedMetadata,
        ReconciliationMetadata,
        OnboardingMetadata,
    ],
    Field(discriminator="kind"),
]

audit_metadata_adapter = TypeAdapter(AuditMetadata)


class ReceivableChangeOut(BaseModel):
    """One row of the receivables change history"""
    entity_id: UUID
    timestamp: datetime
    action: str  # CREATE | PAYMENT | RETURN | PAID | UPDATE | DELETE
    driver_name: str
    customer_name: str
    receivable_type: str
    amount: Decimal = Decimal("0")
    quantity: int = 0
    user_id: Optional[UUID] = None
    metadata: Optional[AuditMetadata] = None


class ChangesPagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class ReceivableChangesPage(BaseModel):
    changes: List[ReceivableChangeOut]
    pagination: ChangesPagination
