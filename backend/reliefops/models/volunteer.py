import enum
from datetime import datetime

from sqlalchemy import Column, String, DateTime, Integer, ForeignKey

from reliefops.db.postgres import Base, value_enum


class AvailabilityStatus(str, enum.Enum):
    AVAILABLE = "Available"
    BUSY = "Busy"
    UNAVAILABLE = "Unavailable"


class AssignmentStatus(str, enum.Enum):
    ASSIGNED = "Assigned"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


# Assignments that still occupy a volunteer
OPEN_ASSIGNMENT_STATUSES = {AssignmentStatus.ASSIGNED, AssignmentStatus.IN_PROGRESS}


class Volunteer(Base):
    __tablename__ = "volunteers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    skill_set = Column(String(100), nullable=True)  # free text, e.g. "Medical, First Aid"
    availability_status = Column(
        value_enum(AvailabilityStatus, "availability_status"), default=AvailabilityStatus.AVAILABLE
    )
    contact_number = Column(String(20), nullable=True)
    location = Column(String(100), nullable=True)


class VolunteerAssignment(Base):
    __tablename__ = "volunteer_assignments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    volunteer_id = Column(Integer, ForeignKey("volunteers.id"), nullable=True, index=True)  # NULL = unstaffed
    disaster_id = Column(Integer, ForeignKey("disasters.id"), nullable=False, index=True)
    task = Column(String(150), nullable=False)
    skill_requested = Column(String(100), nullable=True)
    status = Column(value_enum(AssignmentStatus, "assignment_status"), default=AssignmentStatus.ASSIGNED)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
