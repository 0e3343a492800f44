"""Read-only lookups against doctor and patient profiles."""

from sqlalchemy.orm import Session

from medbook.models.profile import VERIFIED_STATUS, DoctorProfile, PatientProfile


class ProfileDirectory:
    """Answers the questions the booking core asks about doctors and patients."""

    def __init__(self, db: Session):
        self.db = db

    def get_doctor(self, doctor_id: int) -> DoctorProfile | None:
        return self.db.query(DoctorProfile).filter(DoctorProfile.id == doctor_id).first()

    def get_doctor_for_user(self, user_id: int) -> DoctorProfile | None:
        return self.db.query(DoctorProfile).filter(DoctorProfile.user_id == user_id).first()

    def get_patient_for_user(self, user_id: int) -> PatientProfile | None:
        return self.db.query(PatientProfile).filter(PatientProfile.user_id == user_id).first()

    def get_patient(self, patient_id: int) -> PatientProfile | None:
        return self.db.query(PatientProfile).filter(PatientProfile.id == patient_id).first()

    @staticmethod
    def is_verified(doctor: DoctorProfile | None) -> bool:
        return doctor is not None and doctor.verification_status == VERIFIED_STATUS

    @classmethod
    def is_accepting_bookings(cls, doctor: DoctorProfile | None) -> bool:
        return cls.is_verified(doctor) and bool(doctor.is_available)
