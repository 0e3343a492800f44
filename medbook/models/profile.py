"""Doctor and patient profile definitions.

Profiles are maintained elsewhere; the booking core only reads them.
"""

from sqlalchemy import Boolean, Column, ForeignKey, Integer, Numeric, String
from medbook.database import Base

VERIFIED_STATUS = "verified"


class DoctorProfile(Base):
    """A doctor's bookable identity and settlement details."""
    __tablename__ = "doctor_profiles"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, index=True)
    full_name = Column(String, nullable=False)
    specialization = Column(String)
    verification_status = Column(String, default="pending")  # pending/verified/rejected
    is_available = Column(Boolean, default=True)
    consultation_fee = Column(Numeric(10, 2))


class PatientProfile(Base):
    """A patient's identity for booking purposes."""
    __tablename__ = "patient_profiles"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, index=True)
    full_name = Column(String, nullable=False)
