from app.database.database import Base
from sqlalchemy import Column, String, Boolean, ForeignKey, Uuid
from sqlalchemy.orm import relationship
from app.common.mixins import BaseMixin


class Customer(Base, BaseMixin):
    """End customer served by a driver; phone is used for WhatsApp notices"""
    __tablename__ = "customers"

    name = Column(String(150), nullable=False, index=True)
    phone = Column(String(20), nullable=True)
    address = Column(String(255), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    driver_id = Column(Uuid(as_uuid=True), ForeignKey("drivers.id"), nullable=True, index=True)

    driver = relationship("Driver")
