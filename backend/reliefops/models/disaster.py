import enum
from datetime import datetime

from sqlalchemy import Column, String, DateTime, Integer, Float

from reliefops.db.postgres import Base, value_enum


class SeverityLevel(str, enum.Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


class Disaster(Base):
    """A disaster event. Never hard-deleted; severity is edited by coordinators."""
    __tablename__ = "disasters"

    id = Column(Integer, primary_key=True, autoincrement=True)
    type = Column(String(50), nullable=False)
    location = Column(String(150), nullable=False)  # free text, e.g. "Chennai, TN"
    severity_level = Column(value_enum(SeverityLevel, "severity_level"), default=SeverityLevel.LOW)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
