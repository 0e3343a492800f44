"""Appointment model definitions."""

from sqlalchemy import Column, DateTime, Index, Integer, String, func, text
from medbook.database import Base

PENDING = "pending"
CONFIRMED = "confirmed"
COMPLETED = "completed"
CANCELLED = "cancelled"


class Appointment(Base):
    """Represents a booked consultation.

    Patient, doctor and slot are referenced by id only. Rows are never
    deleted; cancellation is a status change.
    """
    __tablename__ = "appointments"
    __table_args__ = (
        Index(
            "uq_appointments_live_slot",
            "slot_id",
            unique=True,
            sqlite_where=text("status != 'cancelled'"),
            postgresql_where=text("status != 'cancelled'"),
        ),
        Index("idx_appointments_patient", "patient_id"),
        Index("idx_appointments_doctor", "doctor_id"),
    )

    id = Column(Integer, primary_key=True)
    patient_id = Column(Integer, nullable=False)
    doctor_id = Column(Integer, nullable=False)
    slot_id = Column(Integer, nullable=False)
    status = Column(String, nullable=False, default=CONFIRMED)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
