"""
Audit trail writer and the receivables change-history report
"""
import math
from typing import Optional
from uuid import UUID

from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from app.modules.audit.models import AuditLog, AuditAction
from app.modules.audit.schemas import (
    ReceivableChangeOut, ReceivableChangesPage, ChangesPagination,
    audit_metadata_adapter, PaymentMetadata, CylinderReturnMetadata,
)
from app.modules.receivables.models import CustomerReceivable
import logging

logger = logging.getLogger(__name__)

CUSTOMER_RECEIVABLE_ENTITY = "CustomerReceivable"
RECEIVABLE_RECORD_ENTITY = "ReceivableRecord"


class AuditLogger:
    """Adds audit rows to the caller's session; the caller owns the commit."""

    def __init__(self, db: Session):
        self.db = db

    def log(self, tenant_id: UUID, action: str, entity_type: str, entity_id: UUID,
            user_id: Optional[UUID] = None, old_values: Optional[dict] = None,
            new_values: Optional[dict] = None, metadata: Optional[BaseModel] = None) -> AuditLog:
        entry = AuditLog(
            tenant_id=tenant_id,
            user_id=user_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            old_values=jsonable_encoder(old_values) if old_values is not None else None,
            new_values=jsonable_encoder(new_values) if new_values is not None else None,
            metadata_=metadata.model_dump(mode="json") if metadata is not None else None,
        )
        self.db.add(entry)
        return entry


class ReceivablesChangesReport:
    """Paginated history of customer receivable mutations, newest first"""

    ACTIONS = [AuditAction.CREATE, AuditAction.UPDATE, AuditAction.DELETE]

    def __init__(self, db: Session, tenant_id: UUID):
        self.db = db
        self.tenant_id = tenant_id

    def _get_base_query(self, driver_id: Optional[UUID] = None):
        query = self.db.query(AuditLog).filter(
            AuditLog.tenant_id == self.tenant_id,
            AuditLog.entity_type == CUSTOMER_RECEIVABLE_ENTITY,
            AuditLog.action.in_(self.ACTIONS),
        )
        if driver_id:
            query = query.join(
                CustomerReceivable, CustomerReceivable.id == AuditLog.entity_id
            ).filter(CustomerReceivable.driver_id == driver_id)
        return query

    def list_changes(self, page: int = 1, limit: int = 20,
                     driver_id: Optional[UUID] = None) -> ReceivableChangesPage:
        query = self._get_base_query(driver_id)
        total = query.count()
        logs = (
            query.order_by(AuditLog.created_at.desc(), AuditLog.id)
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )

        return ReceivableChangesPage(
            changes=[self._describe(log) for log in logs],
            pagination=ChangesPagination(
                page=page, limit=limit, total=total,
                pages=math.ceil(total / limit) if limit else 0,
            ),
        )

    @staticmethod
    def _parse_metadata(raw: Optional[dict]):
        if not raw:
            return None
        try:
            return audit_metadata_adapter.validate_python(raw)
        except PydanticValidationError:
            logger.warning(f"Unreadable audit metadata skipped: {raw}")
            return None

    def _describe(self, log: AuditLog) -> ReceivableChangeOut:
        metadata = self._parse_metadata(log.metadata_)
        old_values = log.old_values or {}
        new_values = log.new_values or {}
        values = new_values or old_values

        amount = values.get("amount") or 0
        quantity = values.get("quantity") or 0
        action = log.action

        if log.action == AuditAction.UPDATE and old_values and new_values:
            if isinstance(metadata, PaymentMetadata):
                action = "PAYMENT"
                amount = metadata.payment_amount
            elif isinstance(metadata, CylinderReturnMetadata):
                action = "RETURN"
                quantity = metadata.return_quantity
            elif old_values.get("status") != new_values.get("status") and new_values.get("status") == "PAID":
                action = "PAID"
            elif (old_values.get("quantity") or 0) > (new_values.get("quantity") or 0):
                action = "RETURN"

        return ReceivableChangeOut(
            entity_id=log.entity_id,
            timestamp=log.created_at,
            action=action,
            driver_name=getattr(metadata, "driver_name", None) or values.get("driver_name") or "Unknown Driver",
            customer_name=values.get("customer_name") or getattr(metadata, "customer_name", None) or "Unknown Customer",
            receivable_type=values.get("receivable_type") or "UNKNOWN",
            amount=amount,
            quantity=quantity,
            user_id=log.user_id,
            metadata=metadata,
        )
