"""
Demand requests — a field team asking for N units of a resource type for a disaster.
"""

import enum
from datetime import datetime

from sqlalchemy import Column, String, DateTime, Integer, ForeignKey, CheckConstraint

from reliefops.db.postgres import Base, value_enum


class PriorityLevel(str, enum.Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class RequestStatus(str, enum.Enum):
    PENDING = "Pending"
    IN_PROGRESS = "In Progress"
    FULFILLED = "Fulfilled"
    CANCELLED = "Cancelled"


class DemandRequest(Base):
    __tablename__ = "demand_requests"
    __table_args__ = (
        CheckConstraint("quantity_requested > 0", name="ck_demand_requests_quantity_positive"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    disaster_id = Column(Integer, ForeignKey("disasters.id"), nullable=False, index=True)
    requested_by = Column(String(100), nullable=False)
    priority_level = Column(value_enum(PriorityLevel, "priority_level"), nullable=False)
    location = Column(String(150), nullable=True)
    resource_type = Column(String(50), nullable=False, index=True)  # matched against resources.resource_type
    quantity_requested = Column(Integer, nullable=False)
    status = Column(value_enum(RequestStatus, "request_status"), default=RequestStatus.PENDING)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
