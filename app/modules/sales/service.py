from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

from fastapi import HTTPException
from sqlalchemy.orm import Session

from app.common.exceptions import ValidationError, PersistenceError
from app.core.config import settings
from app.modules.drivers.models import Driver, DriverStatus
from app.modules.products.models import Product, CylinderSize
from app.modules.receivables.calculator import ReceivablesCalculator
from app.modules.sales.models import Sale, SaleType, PaymentType
from app.modules.sales.schemas import SaleCreate
import logging

logger = logging.getLogger(__name__)


class SaleService:
    """Records driver sales and keeps the day's receivable record current."""

    def __init__(self, db: Session):
        self.db = db

    def record_sale(self, sale_data: SaleCreate, tenant_id: UUID, user_id: UUID):
        try:
            driver = self.db.query(Driver).filter(
                Driver.id == sale_data.driver_id,
                Driver.tenant_id == tenant_id,
                Driver.status == DriverStatus.ACTIVE,
            ).first()
            product = self.db.query(Product).filter(
                Product.id == sale_data.product_id,
                Product.tenant_id == tenant_id,
                Product.is_active.is_(True),
            ).first()
            if not driver or not product:
                raise ValidationError("Invalid driver or product")

            total_value = sale_data.unit_price * sale_data.quantity
            sale = Sale(
                tenant_id=tenant_id,
                driver_id=driver.id,
                product_id=product.id,
                user_id=user_id,
                sale_date=sale_data.sale_date or date.today(),
                sale_type=sale_data.sale_type,
                payment_type=sale_data.payment_type,
                quantity=sale_data.quantity,
                unit_price=sale_data.unit_price,
                total_value=total_value,
                discount=sale_data.discount,
                net_value=total_value - sale_data.discount,
                cash_deposited=sale_data.cash_deposited,
                cylinders_deposited=sale_data.cylinders_deposited,
                customer_name=sale_data.customer_name,
                notes=sale_data.notes,
            )
            self.db.add(sale)
            self.db.flush()

            record = ReceivablesCalculator(self.db).calculate_for_date(tenant_id, driver.id, sale.sale_date)
            self.db.commit()
            self.db.refresh(sale)

            logger.info(f"Sale {sale.id} recorded for driver {driver.id}: {sale.sale_type.value} x{sale.quantity}, "
                        f"total {total_value}, deposited {sale.cash_deposited}")
            return sale, record

        except HTTPException:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error recording sale: {e}", exc_info=True)
            raise PersistenceError()


class DepositSaleService:
    """
    Maintains the day's synthetic deposit-only sales.

    A standalone payment or empty-cylinder return is booked as a
    quantity-0 sale so the Sales Aggregator sees it like any other
    deposit. One cash deposit sale per driver per day; cylinder deposit
    sales are kept per product so the size breakdown can attribute them.
    """

    def __init__(self, db: Session):
        self.db = db

    def _base_query(self, tenant_id: UUID, driver_id: UUID, day: date):
        return self.db.query(Sale).filter(
            Sale.tenant_id == tenant_id,
            Sale.driver_id == driver_id,
            Sale.sale_date == day,
            Sale.is_deposit_only.is_(True),
        )

    def add_cash_deposit(self, tenant_id: UUID, driver_id: UUID, amount: Decimal,
                         user_id: Optional[UUID] = None, customer_name: Optional[str] = None,
                         day: Optional[date] = None) -> Sale:
        day = day or date.today()
        sale = self._base_query(tenant_id, driver_id, day).filter(
            Sale.sale_type == SaleType.PACKAGE,
        ).with_for_update().first()

        if sale:
            sale.cash_deposited = (sale.cash_deposited or Decimal("0")) + amount
        else:
            sale = Sale(
                tenant_id=tenant_id,
                driver_id=driver_id,
                user_id=user_id,
                sale_date=day,
                sale_type=SaleType.PACKAGE,
                payment_type=PaymentType.CASH,
                quantity=0,
                unit_price=Decimal("0"),
                total_value=Decimal("0"),
                discount=Decimal("0"),
                net_value=Decimal("0"),
                cash_deposited=amount,
                cylinders_deposited=0,
                customer_name=customer_name,
                is_deposit_only=True,
                notes="Receivable payment deposit",
            )
            self.db.add(sale)
        self.db.flush()
        return sale

    def resolve_product_for_size(self, tenant_id: UUID, size: Optional[str]) -> Optional[Product]:
        """First active product of the size, falling back to the default size."""
        for candidate in (size, settings.DEFAULT_CYLINDER_SIZE):
            if not candidate:
                continue
            product = self.db.query(Product).join(
                CylinderSize, CylinderSize.id == Product.cylinder_size_id
            ).filter(
                Product.tenant_id == tenant_id,
                Product.is_active.is_(True),
                CylinderSize.size == candidate,
            ).order_by(Product.name).first()
            if product:
                return product
        return None

    def add_cylinder_deposit(self, tenant_id: UUID, driver_id: UUID, quantity: int, size: Optional[str],
                             user_id: Optional[UUID] = None, customer_name: Optional[str] = None,
                             day: Optional[date] = None) -> Sale:
        day = day or date.today()
        product = self.resolve_product_for_size(tenant_id, size)
        if product is None:
            logger.warning(f"No product configured for cylinder size {size}; return will not be attributed by size")

        query = self._base_query(tenant_id, driver_id, day).filter(Sale.sale_type == SaleType.REFILL)
        if product:
            query = query.filter(Sale.product_id == product.id)
        else:
            query = query.filter(Sale.product_id.is_(None))
        sale = query.with_for_update().first()

        if sale:
            sale.cylinders_deposited = (sale.cylinders_deposited or 0) + quantity
        else:
            sale = Sale(
                tenant_id=tenant_id,
                driver_id=driver_id,
                product_id=product.id if product else None,
                user_id=user_id,
                sale_date=day,
                sale_type=SaleType.REFILL,
                payment_type=PaymentType.CASH,
                quantity=0,
                unit_price=Decimal("0"),
                total_value=Decimal("0"),
                discount=Decimal("0"),
                net_value=Decimal("0"),
                cash_deposited=Decimal("0"),
                cylinders_deposited=quantity,
                customer_name=customer_name,
                is_deposit_only=True,
                notes="Cylinder return deposit",
            )
            self.db.add(sale)
        self.db.flush()
        return sale
