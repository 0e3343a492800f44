import logging

from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from medbook.database import ensure_booking_schema
from medbook.models.profile import DoctorProfile, PatientProfile
from medbook.models.user import DOCTOR_ROLE, PATIENT_ROLE, User
from medbook.services import errors
from medbook.services.profiles import ProfileDirectory

logger = logging.getLogger(__name__)

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and database credentials.'

ERROR_STATUS_CODES = {
    errors.VALIDATION: status.HTTP_400_BAD_REQUEST,
    errors.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    errors.CONFLICT: status.HTTP_409_CONFLICT,
    errors.AUTHORIZATION: status.HTTP_403_FORBIDDEN,
    errors.PAYMENT: status.HTTP_402_PAYMENT_REQUIRED,
    errors.PAYOUT: status.HTTP_400_BAD_REQUEST,
    errors.INTEGRITY: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def ensure_database_ready() -> None:
    try:
        ensure_booking_schema()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


def to_http_exception(exc: errors.BookingError) -> HTTPException:
    return HTTPException(
        status_code=ERROR_STATUS_CODES.get(exc.kind, status.HTTP_500_INTERNAL_SERVER_ERROR),
        detail=exc.message,
    )


def database_unavailable(db: Session | None) -> HTTPException:
    logger.exception('Database error while handling request')
    if db is not None:
        db.rollback()
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=DATABASE_UNAVAILABLE_DETAIL,
    )


def resolve_doctor(db: Session, user: User) -> DoctorProfile:
    doctor = ProfileDirectory(db).get_doctor_for_user(user.id)
    if doctor is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Doctor profile not found')
    return doctor


def resolve_patient(db: Session, user: User) -> PatientProfile:
    patient = ProfileDirectory(db).get_patient_for_user(user.id)
    if patient is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Patient profile not found')
    return patient


def resolve_actor_id(db: Session, user: User) -> int:
    """Map an authenticated user to the profile id appointments refer to."""
    if user.role == PATIENT_ROLE:
        return resolve_patient(db, user).id
    if user.role == DOCTOR_ROLE:
        return resolve_doctor(db, user).id
    return user.id
