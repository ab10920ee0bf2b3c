"""
Allocations reserve a fixed quantity of one resource against one demand request.
The allocation log is append-only and outlives the allocation's cancellation.
"""

import enum
from datetime import datetime

from sqlalchemy import Column, String, DateTime, Integer, ForeignKey, CheckConstraint

from reliefops.db.postgres import Base, value_enum


class AllocationStatus(str, enum.Enum):
    DISPATCHED = "Dispatched"
    PENDING = "Pending"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"


# Statuses an allocation can never leave
TERMINAL_ALLOCATION_STATUSES = {AllocationStatus.DELIVERED, AllocationStatus.CANCELLED}


class Allocation(Base):
    __tablename__ = "allocations"
    __table_args__ = (
        CheckConstraint("allocated_quantity > 0", name="ck_allocations_quantity_positive"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    request_id = Column(Integer, ForeignKey("demand_requests.id"), nullable=False, index=True)
    resource_id = Column(Integer, ForeignKey("resources.id"), nullable=False, index=True)
    allocated_quantity = Column(Integer, nullable=False)
    status = Column(value_enum(AllocationStatus, "allocation_status"), default=AllocationStatus.DISPATCHED)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class AllocationLog(Base):
    __tablename__ = "allocation_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    allocation_id = Column(Integer, ForeignKey("allocations.id"), nullable=False, index=True)
    action = Column(String(255), nullable=False)
    action_date = Column(DateTime, default=datetime.utcnow)
