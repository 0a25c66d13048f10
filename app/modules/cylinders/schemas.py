from pydantic import BaseModel, Field
from typing import Dict, List, Optional
from uuid import UUID
from datetime import date


class SizeQuantity(BaseModel):
    size: str
    quantity: int


class DriverSizeBreakdown(BaseModel):
    driver_id: UUID
    driver_name: str
    total_cylinder_receivables: int
    deposit_history: Dict[str, int] = {}
    breakdown: Dict[str, int] = {}
    attributed: bool = True


class CylinderReceivablesBySize(BaseModel):
    as_of: date
    total_cylinder_receivables: int
    receivables_breakdown: Dict[str, int]
    sizes: List[SizeQuantity] = []
    calculation_method: str
    driver_count: int
    transaction_count: int
    attributed_receivables: int
    unattributed_receivables: int
    drivers: List[DriverSizeBreakdown] = []


class BreakdownComparison(BaseModel):
    matches: bool
    differences: Dict[str, int]


class BreakdownValidationRequest(BaseModel):
    expected: Dict[str, int] = Field(..., description="Reference breakdown {size: quantity}")
    tolerance: int = Field(0, ge=0)
    as_of: Optional[date] = None


class BreakdownValidationResponse(BaseModel):
    success: bool = True
    comparison: BreakdownComparison
    calculated: CylinderReceivablesBySize
