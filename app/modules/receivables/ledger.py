"""
Customer Receivable Ledger

Individual customer debts (cash or empty cylinders) owed through a
driver. Payments and returns are single transactions covering the
receivable, its event row, the synthetic deposit sale, the driver's
daily record and the audit entry. Reconciliation and notification run
only after that transaction has committed.
"""
from datetime import date
from decimal import Decimal
from typing import List, Optional, Tuple
from uuid import UUID

from fastapi import HTTPException
from sqlalchemy.orm import Session, selectinload

from app.common.exceptions import ValidationError, NotFoundError, PersistenceError
from app.core.config import settings
from app.modules.audit.models import AuditAction
from app.modules.audit.schemas import PaymentMetadata, CylinderReturnMetadata, ReceivableCreatedMetadata
from app.modules.audit.service import AuditLogger, CUSTOMER_RECEIVABLE_ENTITY
from app.modules.customers.models import Customer
from app.modules.drivers.models import Driver, active_retail_filter
from app.modules.notifications.events import EventPublisher, ReceivablesEvent
from app.modules.receivables import queries
from app.modules.receivables.calculator import ReceivablesCalculator
from app.modules.receivables.models import (
    CustomerReceivable, ReceivableType, ReceivableStatus, PaymentEvent, ReturnEvent, PaymentMethod,
)
from app.modules.receivables.reconciliation import ReceivablesReconciler, ReconciliationResult
from app.modules.receivables.schemas import (
    CustomerReceivableCreate, CustomerReceivableFilters, DriverReceivablesValidation,
)
from app.modules.sales.aggregator import to_decimal
from app.modules.sales.models import Sale
from app.modules.sales.service import DepositSaleService
import logging

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def has_sub_cent_digits(amount: Decimal) -> bool:
    """True when the amount has digits below the cent."""
    return amount != amount.quantize(CENT)


def status_for_due_date(due_date: Optional[date], today: Optional[date] = None) -> ReceivableStatus:
    if due_date is None:
        return ReceivableStatus.CURRENT
    days_left = (due_date - (today or date.today())).days
    if days_left < 0:
        return ReceivableStatus.OVERDUE
    if days_left <= settings.DUE_SOON_DAYS:
        return ReceivableStatus.DUE_SOON
    return ReceivableStatus.CURRENT


def snapshot(receivable: CustomerReceivable) -> dict:
    return {
        "customer_name": receivable.customer_name,
        "receivable_type": receivable.receivable_type.value,
        "amount": receivable.amount,
        "quantity": receivable.quantity,
        "size": receivable.size,
        "status": receivable.status.value,
    }


class CustomerReceivableLedger:

    def __init__(self, db: Session, publisher: Optional[EventPublisher] = None):
        self.db = db
        self.publisher = publisher or EventPublisher()
        self.audit = AuditLogger(db)

    # ===== LOOKUPS =====

    def _get_active_driver(self, tenant_id: UUID, driver_id: UUID) -> Driver:
        driver = active_retail_filter(
            self.db.query(Driver).filter(Driver.id == driver_id, Driver.tenant_id == tenant_id)
        ).first()
        if not driver:
            raise NotFoundError("Driver not found")
        return driver

    def _lock_receivable(self, tenant_id: UUID, receivable_id: UUID,
                         receivable_type: ReceivableType) -> Tuple[CustomerReceivable, Driver]:
        """Row-locks the receivable for the rest of the transaction."""
        receivable = self.db.query(CustomerReceivable).filter(
            CustomerReceivable.id == receivable_id,
            CustomerReceivable.tenant_id == tenant_id,
            CustomerReceivable.receivable_type == receivable_type,
        ).with_for_update().first()
        if not receivable:
            raise NotFoundError(f"{receivable_type.value.title()} receivable not found")

        driver = self.db.query(Driver).filter(
            Driver.id == receivable.driver_id, Driver.tenant_id == tenant_id
        ).first()
        if not driver or not driver.is_ledger_tracked:
            raise NotFoundError(f"{receivable_type.value.title()} receivable not found")
        return receivable, driver

    def get_receivable(self, tenant_id: UUID, receivable_id: UUID) -> CustomerReceivable:
        receivable = self.db.query(CustomerReceivable).options(
            selectinload(CustomerReceivable.payments), selectinload(CustomerReceivable.returns)
        ).filter(
            CustomerReceivable.id == receivable_id,
            CustomerReceivable.tenant_id == tenant_id,
        ).first()
        if not receivable:
            raise NotFoundError("Customer receivable not found")
        return receivable

    def _customer_phone(self, tenant_id: UUID, receivable: CustomerReceivable) -> Optional[str]:
        query = self.db.query(Customer.phone).filter(Customer.tenant_id == tenant_id)
        if receivable.customer_id:
            row = query.filter(Customer.id == receivable.customer_id).first()
        else:
            row = query.filter(Customer.name == receivable.customer_name).first()
        return row[0] if row else None

    # ===== CREATE / LIST =====

    def create_receivable(self, data: CustomerReceivableCreate, tenant_id: UUID,
                          user_id: Optional[UUID] = None) -> CustomerReceivable:
        try:
            driver = self._get_active_driver(tenant_id, data.driver_id)

            if data.customer_id:
                customer = self.db.query(Customer).filter(
                    Customer.id == data.customer_id, Customer.tenant_id == tenant_id
                ).first()
                if not customer:
                    raise NotFoundError("Customer not found")

            if data.receivable_type == ReceivableType.CASH:
                if data.amount is None or data.amount <= 0:
                    raise ValidationError("Cash receivables require an amount greater than zero")
                if has_sub_cent_digits(data.amount):
                    raise ValidationError("Cash receivable amounts cannot have more than 2 decimal places")
                amount, quantity, size = data.amount, 0, None
            else:
                if data.quantity is None or data.quantity <= 0:
                    raise ValidationError("Cylinder receivables require a quantity greater than zero")
                amount, quantity, size = Decimal("0"), data.quantity, data.size or settings.DEFAULT_CYLINDER_SIZE

            receivable = CustomerReceivable(
                tenant_id=tenant_id,
                driver_id=driver.id,
                customer_id=data.customer_id,
                customer_name=data.customer_name,
                receivable_type=data.receivable_type,
                amount=amount,
                quantity=quantity,
                size=size,
                status=status_for_due_date(data.due_date),
                due_date=data.due_date,
                notes=data.notes,
            )
            self.db.add(receivable)
            self.db.flush()

            self.audit.log(
                tenant_id=tenant_id,
                user_id=user_id,
                action=AuditAction.CREATE,
                entity_type=CUSTOMER_RECEIVABLE_ENTITY,
                entity_id=receivable.id,
                new_values=snapshot(receivable),
                metadata=ReceivableCreatedMetadata(
                    customer_name=receivable.customer_name,
                    driver_name=driver.name,
                    receivable_type=receivable.receivable_type.value,
                ),
            )
            self.publisher.publish_after_commit(self.db, ReceivablesEvent(
                event_type="receivables_changed",
                tenant_id=tenant_id,
                driver_id=driver.id,
                driver_name=driver.name,
                customer_receivable_id=receivable.id,
                customer_id=receivable.customer_id,
                customer_name=receivable.customer_name,
                customer_phone=self._customer_phone(tenant_id, receivable),
                receivable_type=receivable.receivable_type.value,
                old_amount=Decimal("0"),
                new_amount=Decimal(receivable.outstanding),
                change_by_size={size: quantity} if receivable.receivable_type == ReceivableType.CYLINDER else {},
                reason="New receivable recorded",
            ))
            self.db.commit()
            self.db.refresh(receivable)
            logger.info(f"Customer receivable {receivable.id} created for {receivable.customer_name} "
                        f"({receivable.receivable_type.value})")
            return receivable

        except HTTPException:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error creating customer receivable: {e}", exc_info=True)
            raise PersistenceError()

    def list_receivables(self, tenant_id: UUID,
                         filters: Optional[CustomerReceivableFilters] = None) -> List[CustomerReceivable]:
        return queries.customer_receivables(self.db, tenant_id, filters).options(
            selectinload(CustomerReceivable.payments), selectinload(CustomerReceivable.returns)
        ).order_by(CustomerReceivable.due_date.asc(), CustomerReceivable.created_at.desc()).all()

    def validate_against_driver_totals(self, tenant_id: UUID) -> List[DriverReceivablesValidation]:
        """Per ACTIVE RETAIL driver: outstanding customer sums vs. latest daily record."""
        reconciler = ReceivablesReconciler(self.db)
        latest = {
            driver.id: record
            for record, driver in queries.latest_records_for_active_retail(self.db, tenant_id, date.today()).all()
        }
        tolerance = Decimal(str(settings.CASH_TOLERANCE))
        results = []
        for driver in queries.active_retail_drivers(self.db, tenant_id).all():
            customer_totals = reconciler.outstanding_totals(tenant_id, driver.id)
            record = latest.get(driver.id)
            sales_cash = to_decimal(record.total_cash_receivables) if record else Decimal("0")
            sales_cylinders = int(record.total_cylinder_receivables) if record else 0
            results.append(DriverReceivablesValidation(
                driver_id=driver.id,
                driver_name=driver.name,
                customer_cash_total=customer_totals.cash,
                customer_cylinder_total=customer_totals.cylinders,
                sales_cash_total=sales_cash,
                sales_cylinder_total=sales_cylinders,
                cash_matches=abs(customer_totals.cash - sales_cash) <= tolerance,
                cylinders_match=customer_totals.cylinders == sales_cylinders,
            ))
        return results

    def refresh_statuses(self, tenant_id: UUID, today: Optional[date] = None) -> int:
        """Re-derive CURRENT / DUE_SOON / OVERDUE from due dates; PAID rows are left alone."""
        today = today or date.today()
        updated = 0
        try:
            rows = self.db.query(CustomerReceivable).filter(
                CustomerReceivable.tenant_id == tenant_id,
                CustomerReceivable.status != ReceivableStatus.PAID,
                CustomerReceivable.due_date.isnot(None),
            ).all()
            for receivable in rows:
                new_status = status_for_due_date(receivable.due_date, today)
                if new_status != receivable.status:
                    receivable.status = new_status
                    updated += 1
            self.db.commit()
            logger.info(f"Refreshed {updated} customer receivable statuses for tenant {tenant_id}")
            return updated
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error refreshing receivable statuses: {e}", exc_info=True)
            raise PersistenceError()

    # ===== PAYMENTS / RETURNS =====

    def record_payment(self, tenant_id: UUID, user_id: Optional[UUID], customer_receivable_id: UUID,
                       amount: Decimal, payment_method: PaymentMethod = PaymentMethod.CASH,
                       notes: Optional[str] = None):
        """Returns (receivable, deposit sale, reconciliation result)."""
        amount = to_decimal(amount)
        try:
            if amount <= 0:
                raise ValidationError("Payment amount must be greater than zero")
            if has_sub_cent_digits(amount):
                raise ValidationError("Payment amount cannot have more than 2 decimal places")

            receivable, driver = self._lock_receivable(tenant_id, customer_receivable_id, ReceivableType.CASH)
            outstanding = to_decimal(receivable.amount)
            if amount > outstanding:
                raise ValidationError(
                    f"Payment amount ({amount}) cannot exceed the outstanding amount ({outstanding})"
                )

            old_values = snapshot(receivable)
            receivable.amount = outstanding - amount
            if receivable.amount <= 0:
                receivable.amount = Decimal("0")
                receivable.status = ReceivableStatus.PAID

            sale = DepositSaleService(self.db).add_cash_deposit(
                tenant_id, driver.id, amount, user_id=user_id, customer_name=receivable.customer_name,
            )
            self.db.add(PaymentEvent(
                tenant_id=tenant_id,
                receivable_id=receivable.id,
                amount=amount,
                payment_method=payment_method,
                notes=notes,
                sale_id=sale.id,
                actor_user_id=user_id,
            ))
            self.audit.log(
                tenant_id=tenant_id,
                user_id=user_id,
                action=AuditAction.UPDATE,
                entity_type=CUSTOMER_RECEIVABLE_ENTITY,
                entity_id=receivable.id,
                old_values=old_values,
                new_values=snapshot(receivable),
                metadata=PaymentMetadata(
                    payment_amount=amount,
                    payment_method=payment_method.value,
                    customer_name=receivable.customer_name,
                    driver_name=driver.name,
                    notes=notes,
                ),
            )
            ReceivablesCalculator(self.db).calculate_for_date(tenant_id, driver.id, sale.sale_date)

            self.publisher.publish_after_commit(self.db, ReceivablesEvent(
                event_type="payment_received",
                tenant_id=tenant_id,
                driver_id=driver.id,
                driver_name=driver.name,
                customer_receivable_id=receivable.id,
                customer_id=receivable.customer_id,
                customer_name=receivable.customer_name,
                customer_phone=self._customer_phone(tenant_id, receivable),
                receivable_type=ReceivableType.CASH.value,
                old_amount=outstanding,
                new_amount=receivable.amount,
                reason=f"Payment received ({payment_method.value})",
            ))
            self.db.commit()

        except HTTPException:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error recording payment for receivable {customer_receivable_id}: {e}", exc_info=True)
            raise PersistenceError()

        logger.info(f"Payment of {amount} recorded on receivable {receivable.id} "
                    f"({outstanding} -> {receivable.amount}, status {receivable.status.value})")
        reconciliation = self._reconcile(tenant_id, driver.id, user_id)
        return self.get_receivable(tenant_id, receivable.id), sale, reconciliation

    def record_cylinder_return(self, tenant_id: UUID, user_id: Optional[UUID], customer_receivable_id: UUID,
                               quantity: int, notes: Optional[str] = None):
        """Returns (receivable, deposit sale, reconciliation result)."""
        try:
            if quantity is None or quantity < 1:
                raise ValidationError("Return quantity must be at least 1")

            receivable, driver = self._lock_receivable(tenant_id, customer_receivable_id, ReceivableType.CYLINDER)
            outstanding = int(receivable.quantity)
            if quantity > outstanding:
                raise ValidationError(
                    f"Return quantity ({quantity}) cannot exceed the outstanding quantity ({outstanding})"
                )

            old_values = snapshot(receivable)
            receivable.quantity = outstanding - quantity
            if receivable.quantity == 0:
                receivable.status = ReceivableStatus.PAID

            size = receivable.size or settings.DEFAULT_CYLINDER_SIZE
            sale: Sale = DepositSaleService(self.db).add_cylinder_deposit(
                tenant_id, driver.id, quantity, size, user_id=user_id, customer_name=receivable.customer_name,
            )
            self.db.add(ReturnEvent(
                tenant_id=tenant_id,
                receivable_id=receivable.id,
                quantity=quantity,
                size=size,
                notes=notes,
                sale_id=sale.id,
                actor_user_id=user_id,
            ))
            self.audit.log(
                tenant_id=tenant_id,
                user_id=user_id,
                action=AuditAction.UPDATE,
                entity_type=CUSTOMER_RECEIVABLE_ENTITY,
                entity_id=receivable.id,
                old_values=old_values,
                new_values=snapshot(receivable),
                metadata=CylinderReturnMetadata(
                    return_quantity=quantity,
                    size=size,
                    customer_name=receivable.customer_name,
                    driver_name=driver.name,
                    notes=notes,
                ),
            )
            ReceivablesCalculator(self.db).calculate_for_date(tenant_id, driver.id, sale.sale_date)

            self.publisher.publish_after_commit(self.db, ReceivablesEvent(
                event_type="cylinder_returned",
                tenant_id=tenant_id,
                driver_id=driver.id,
                driver_name=driver.name,
                customer_receivable_id=receivable.id,
                customer_id=receivable.customer_id,
                customer_name=receivable.customer_name,
                customer_phone=self._customer_phone(tenant_id, receivable),
                receivable_type=ReceivableType.CYLINDER.value,
                old_amount=Decimal(outstanding),
                new_amount=Decimal(receivable.quantity),
                change_by_size={size: -quantity},
                reason="Empty cylinders returned",
            ))
            self.db.commit()

        except HTTPException:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error recording cylinder return for receivable {customer_receivable_id}: {e}",
                         exc_info=True)
            raise PersistenceError()

        logger.info(f"Return of {quantity} x {size} recorded on receivable {receivable.id} "
                    f"({outstanding} -> {receivable.quantity}, status {receivable.status.value})")
        reconciliation = self._reconcile(tenant_id, driver.id, user_id)
        return self.get_receivable(tenant_id, receivable.id), sale, reconciliation

    def _reconcile(self, tenant_id: UUID, driver_id: UUID, user_id: Optional[UUID]) -> Optional[ReconciliationResult]:
        """The mutation is already committed; a failed sync is logged and left for the next recalculation."""
        try:
            return ReceivablesReconciler(self.db).sync_driver(tenant_id, driver_id, user_id)
        except Exception as e:
            self.db.rollback()
            logger.error(f"Reconciliation failed for driver {driver_id}: {e}", exc_info=True)
            return None
