"""
Daily inventory snapshots.

InventoryRecord holds the distributor-wide totals for a day; the
per-size tables break full cylinders down by product and empties by size.
"""
from app.database.database import Base
from sqlalchemy import Column, Integer, Date, ForeignKey, Uuid, UniqueConstraint, CheckConstraint
from sqlalchemy.orm import relationship
from app.common.mixins import BaseMixin


class InventoryRecord(Base, BaseMixin):
    __tablename__ = "inventory_records"

    date = Column(Date, nullable=False, index=True)
    full_cylinders = Column(Integer, nullable=False, default=0)
    empty_cylinders = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("tenant_id", "date", name="uq_inventory_record_tenant_date"),
    )


class FullCylinderStock(Base, BaseMixin):
    __tablename__ = "full_cylinder_stock"

    date = Column(Date, nullable=False, index=True)
    product_id = Column(Uuid(as_uuid=True), ForeignKey("products.id"), nullable=False, index=True)
    company_id = Column(Uuid(as_uuid=True), ForeignKey("lpg_companies.id"), nullable=False)
    cylinder_size_id = Column(Uuid(as_uuid=True), ForeignKey("cylinder_sizes.id"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False, default=0)

    product = relationship("Product")
    cylinder_size = relationship("CylinderSize")

    __table_args__ = (
        UniqueConstraint("tenant_id", "product_id", "date", name="uq_full_stock_tenant_product_date"),
        CheckConstraint("quantity >= 0", name="ck_full_stock_quantity_non_negative"),
    )


class EmptyCylinderStock(Base, BaseMixin):
    __tablename__ = "empty_cylinder_stock"

    date = Column(Date, nullable=False, index=True)
    cylinder_size_id = Column(Uuid(as_uuid=True), ForeignKey("cylinder_sizes.id"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False, default=0)
    quantity_in_hand = Column(Integer, nullable=False, default=0)
    quantity_with_drivers = Column(Integer, nullable=False, default=0)

    cylinder_size = relationship("CylinderSize")

    __table_args__ = (
        UniqueConstraint("tenant_id", "cylinder_size_id", "date", name="uq_empty_stock_tenant_size_date"),
        CheckConstraint("quantity >= 0", name="ck_empty_stock_quantity_non_negative"),
    )
