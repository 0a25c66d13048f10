"""
LPG companies, cylinder sizes and the products that combine them
"""
from app.database.database import Base
from sqlalchemy import Column, String, Boolean, ForeignKey, Numeric, Uuid, UniqueConstraint
from sqlalchemy.orm import relationship
from app.common.mixins import BaseMixin


class Company(Base, BaseMixin):
    """LPG brand whose cylinders the distributor sells"""
    __tablename__ = "lpg_companies"

    name = Column(String(150), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)

    products = relationship("Product", back_populates="company")

    __table_args__ = (
        UniqueConstraint("tenant_id", "name", name="uq_lpg_company_tenant_name"),
    )


class CylinderSize(Base, BaseMixin):
    __tablename__ = "cylinder_sizes"

    size = Column(String(20), nullable=False)  # e.g. "12L", "35L"
    description = Column(String(255), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    products = relationship("Product", back_populates="cylinder_size")

    __table_args__ = (
        UniqueConstraint("tenant_id", "size", name="uq_cylinder_size_tenant_size"),
    )


class Product(Base, BaseMixin):
    __tablename__ = "products"

    name = Column(String(150), nullable=False)
    company_id = Column(Uuid(as_uuid=True), ForeignKey("lpg_companies.id"), nullable=False, index=True)
    cylinder_size_id = Column(Uuid(as_uuid=True), ForeignKey("cylinder_sizes.id"), nullable=False, index=True)
    current_price = Column(Numeric(15, 2), nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)

    company = relationship("Company", back_populates="products")
    cylinder_size = relationship("CylinderSize", back_populates="products")
