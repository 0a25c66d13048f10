from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.database.database import get_db
from app.modules.auth.dependencies import require_ledger_write
from app.modules.auth.schemas import AuthContext
from app.modules.sales.schemas import SaleCreate, SaleOut, SaleRecordedResponse
from app.modules.sales.service import SaleService

router = APIRouter(prefix="/sales", tags=["Sales"])


@router.post("", response_model=SaleRecordedResponse, status_code=status.HTTP_201_CREATED)
def create_sale(
    sale_data: SaleCreate,
    auth_context: AuthContext = Depends(require_ledger_write),
    db: Session = Depends(get_db)
):
    """
    Record a driver sale. The driver's receivable record for the sale date
    is recalculated in the same transaction.
    """
    sale, record = SaleService(db).record_sale(sale_data, auth_context.tenant_id, auth_context.user_id)
    return SaleRecordedResponse(
        message="Sale recorded",
        sale=SaleOut.model_validate(sale),
        total_cash_receivables=record.total_cash_receivables,
        total_cylinder_receivables=record.total_cylinder_receivables,
    )
