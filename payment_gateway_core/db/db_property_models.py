"""
Property, unit and lease models.

These rows belong to the property-management CRUD layer. The gateway only
reads them to resolve which landlord and tenant an invoice belongs to.
"""

from sqlalchemy import Column, ForeignKey, String
from sqlalchemy.orm import relationship

from .db_base import TimestampMixin, UUIDMixin
from .db_config import Base


class Property(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "properties"

    name = Column(String(255), nullable=False)
    owner_id = Column(String(36), nullable=False, index=True)
    manager_id = Column(String(36), nullable=True)

    units = relationship("Unit", back_populates="property")


class Unit(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "units"

    property_id = Column(String(36), ForeignKey("properties.id"), nullable=False, index=True)
    unit_number = Column(String(50), nullable=False)

    property = relationship("Property", back_populates="units")
    leases = relationship("Lease", back_populates="unit")


class Lease(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "leases"

    unit_id = Column(String(36), ForeignKey("units.id"), nullable=False, index=True)
    tenant_id = Column(String(36), nullable=False, index=True)
    status = Column(String(20), nullable=False, default="active")

    unit = relationship("Unit", back_populates="leases")
