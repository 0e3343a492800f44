"""Availability model definitions."""

from sqlalchemy import Boolean, Column, Date, DateTime, Index, Integer, Time, UniqueConstraint, func
from medbook.database import Base


class AvailabilitySlot(Base):
    """Represents one bookable time interval of a doctor."""
    __tablename__ = "availability"
    __table_args__ = (
        UniqueConstraint("doctor_id", "date", "start_time", name="uq_availability_doctor_date_start"),
        Index("idx_availability_doctor_booked_date", "doctor_id", "is_booked", "date"),
    )

    id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, nullable=False)
    date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_booked = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
