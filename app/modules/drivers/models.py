"""
Drivers (delivery agents) who carry cylinders and collect cash
"""
from app.database.database import Base
from sqlalchemy import Column, String, Enum, UniqueConstraint
from sqlalchemy.orm import relationship
from app.common.mixins import BaseMixin
import enum


class DriverStatus(enum.Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class DriverType(enum.Enum):
    RETAIL = "RETAIL"       # Sells to retail customers; tracked by the ledger
    SHIPMENT = "SHIPMENT"   # Moves stock between depots; never holds receivables


class Driver(Base, BaseMixin):
    __tablename__ = "drivers"

    name = Column(String(150), nullable=False)
    phone = Column(String(20), nullable=True)
    route = Column(String(150), nullable=True)
    status = Column(Enum(DriverStatus), nullable=False, default=DriverStatus.ACTIVE, index=True)
    driver_type = Column(Enum(DriverType), nullable=False, default=DriverType.RETAIL, index=True)

    receivable_records = relationship("ReceivableRecord", back_populates="driver")
    customer_receivables = relationship("CustomerReceivable", back_populates="driver")

    __table_args__ = (
        UniqueConstraint("tenant_id", "name", name="uq_driver_tenant_name"),
    )

    @property
    def is_ledger_tracked(self) -> bool:
        return self.status == DriverStatus.ACTIVE and self.driver_type == DriverType.RETAIL


def active_retail_filter(query):
    """Restrict a Driver query to ACTIVE RETAIL drivers."""
    return query.filter(
        Driver.status == DriverStatus.ACTIVE,
        Driver.driver_type == DriverType.RETAIL,
    )
