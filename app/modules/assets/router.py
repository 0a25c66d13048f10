from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.common.exceptions import ValidationError
from app.database.database import get_db
from app.modules.assets.schemas import CurrentAssetsResponse
from app.modules.assets.service import AssetValuationService
from app.modules.auth.dependencies import require_ledger_read
from app.modules.auth.schemas import AuthContext

router = APIRouter(prefix="/assets", tags=["Assets"])


def parse_price_overrides(values: Optional[List[str]]) -> Dict[str, Decimal]:
    """`12L=1450.00` style pairs into {size: price}."""
    overrides = {}
    for value in values or []:
        size, sep, price = value.partition("=")
        if not sep or not size.strip():
            raise ValidationError(f"Invalid price override '{value}', expected SIZE=PRICE")
        try:
            parsed = Decimal(price.strip())
        except InvalidOperation:
            raise ValidationError(f"Invalid price in override '{value}'")
        if parsed < 0:
            raise ValidationError(f"Price override for {size.strip()} cannot be negative")
        overrides[size.strip()] = parsed
    return overrides


@router.get("/current", response_model=CurrentAssetsResponse)
def get_current_assets(
    as_of: Optional[date] = Query(None, description="Defaults to today"),
    price: Optional[List[str]] = Query(None, description="Full cylinder price override per size, e.g. 12L=1450"),
    auth_context: AuthContext = Depends(require_ledger_read),
    db: Session = Depends(get_db)
):
    """
    Cash receivables plus full and empty cylinder stock, one pair of lines per size.
    """
    return AssetValuationService(db).calculate_current_assets(
        auth_context.tenant_id, as_of, parse_price_overrides(price)
    )
