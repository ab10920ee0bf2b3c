import enum
from datetime import datetime

from sqlalchemy import Column, String, DateTime, Integer, Float, ForeignKey, CheckConstraint

from reliefops.db.postgres import Base, value_enum


class ResourceStatus(str, enum.Enum):
    AVAILABLE = "Available"
    UNAVAILABLE = "Unavailable"
    RESERVED = "Reserved"


class StorageLocation(Base):
    __tablename__ = "storage_locations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    address = Column(String(150), nullable=True)
    city = Column(String(50), nullable=False)
    state = Column(String(50), nullable=True)
    capacity = Column(Integer, nullable=False, default=0)
    contact_number = Column(String(20), nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)


class Resource(Base):
    __tablename__ = "resources"
    __table_args__ = (
        CheckConstraint("quantity_available >= 0", name="ck_resources_quantity_non_negative"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    resource_type = Column(String(50), nullable=False, index=True)
    quantity_available = Column(Integer, nullable=False, default=0)
    status = Column(value_enum(ResourceStatus, "resource_status"), default=ResourceStatus.AVAILABLE)
    storage_location_id = Column(Integer, ForeignKey("storage_locations.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class ResourceAlert(Base):
    """Low-stock alert history, written by the notification side. Read-only here."""
    __tablename__ = "resource_alerts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    resource_id = Column(Integer, ForeignKey("resources.id"), nullable=False, index=True)
    alerted_at = Column(DateTime, default=datetime.utcnow)
