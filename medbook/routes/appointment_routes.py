from datetime import date, datetime, time
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from medbook.auth.dependencies import require_role
from medbook.database import get_db
from medbook.models.appointment import Appointment
from medbook.models.transaction import PAYMENT_METHODS
from medbook.models.user import ADMIN_ROLE, DOCTOR_ROLE, PATIENT_ROLE, User
from medbook.routes.common import (
    database_unavailable,
    ensure_database_ready,
    resolve_actor_id,
    resolve_doctor,
    resolve_patient,
    to_http_exception,
)
from medbook.services.appointments import AppointmentStateMachine
from medbook.services.booking import BookingCoordinator, BookingResult
from medbook.services.errors import BookingError
from medbook.services.ledger import SettlementLedger
from medbook.services.payments import PaymentDetails
from medbook.services.profiles import ProfileDirectory
from medbook.services.slot_registry import SlotRegistry

router = APIRouter(tags=['appointments'])

MAX_PAYMENT_REFERENCE_LENGTH = 120


class BookAppointmentRequest(BaseModel):
    slot_id: int
    payment_method: str = 'chapa'
    payment_reference: str | None = None

    @field_validator('payment_method')
    @classmethod
    def validate_payment_method(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in PAYMENT_METHODS:
            raise ValueError('Invalid payment method.')
        return normalized

    @field_validator('payment_reference')
    @classmethod
    def validate_payment_reference(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip()
        if not normalized:
            return None

        if len(normalized) > MAX_PAYMENT_REFERENCE_LENGTH:
            raise ValueError(f'Payment reference must be {MAX_PAYMENT_REFERENCE_LENGTH} characters or fewer.')

        return normalized


class DoctorSummary(BaseModel):
    id: int
    full_name: str
    specialization: str | None = None

    class Config:
        from_attributes = True


class PatientSummary(BaseModel):
    id: int
    full_name: str

    class Config:
        from_attributes = True


class SlotSummary(BaseModel):
    id: int
    date: date
    start_time: time
    end_time: time

    class Config:
        from_attributes = True


class LedgerSummary(BaseModel):
    id: int
    amount: Decimal
    platform_fee: Decimal
    doctor_earning: Decimal
    payment_method: str | None = None
    status: str
    transaction_ref: str | None = None
    payout_status: str | None = None

    class Config:
        from_attributes = True


class AppointmentResponse(BaseModel):
    id: int
    patient_id: int
    doctor_id: int
    slot_id: int
    status: str
    created_at: datetime | None = None
    updated_at: datetime | None = None
    doctor: DoctorSummary | None = None
    patient: PatientSummary | None = None
    slot: SlotSummary | None = None
    transaction: LedgerSummary | None = None


class CancellationResponse(AppointmentResponse):
    refunded: bool = False


def build_appointment_response(
    db: Session,
    appointment: Appointment,
    booking: BookingResult | None = None,
) -> dict:
    if booking is not None:
        slot, doctor, patient, entry = booking.slot, booking.doctor, booking.patient, booking.entry
    else:
        profiles = ProfileDirectory(db)
        slot = SlotRegistry(db, profiles).find(appointment.slot_id)
        doctor = profiles.get_doctor(appointment.doctor_id)
        patient = profiles.get_patient(appointment.patient_id)
        entry = SettlementLedger(db).get_for_appointment(appointment.id)

    return {
        'id': appointment.id,
        'patient_id': appointment.patient_id,
        'doctor_id': appointment.doctor_id,
        'slot_id': appointment.slot_id,
        'status': appointment.status,
        'created_at': appointment.created_at,
        'updated_at': appointment.updated_at,
        'doctor': DoctorSummary.model_validate(doctor) if doctor else None,
        'patient': PatientSummary.model_validate(patient) if patient else None,
        'slot': SlotSummary.model_validate(slot) if slot else None,
        'transaction': LedgerSummary.model_validate(entry) if entry else None,
    }


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def book_appointment(
    data: BookAppointmentRequest,
    current_user: User = Depends(require_role(PATIENT_ROLE)),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        patient = resolve_patient(db, current_user)
        booking = BookingCoordinator(db).book(
            patient.id,
            data.slot_id,
            PaymentDetails(method=data.payment_method, reference=data.payment_reference),
        )
        return AppointmentResponse(**build_appointment_response(db, booking.appointment, booking))
    except BookingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc


@router.get('', response_model=list[AppointmentResponse])
def list_all_appointments(
    current_user: User = Depends(require_role(ADMIN_ROLE)),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        appointments = AppointmentStateMachine(db).list_all()
        return [AppointmentResponse(**build_appointment_response(db, appointment)) for appointment in appointments]
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc


@router.get('/mine', response_model=list[AppointmentResponse])
def list_my_appointments(
    current_user: User = Depends(require_role(PATIENT_ROLE, DOCTOR_ROLE)),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        appointments = AppointmentStateMachine(db)
        if current_user.role == PATIENT_ROLE:
            found = appointments.list_for_patient(resolve_patient(db, current_user).id)
        else:
            found = appointments.list_for_doctor(resolve_doctor(db, current_user).id)

        return [AppointmentResponse(**build_appointment_response(db, appointment)) for appointment in found]
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc


@router.post('/{appointment_id}/cancel', response_model=CancellationResponse)
def cancel_appointment(
    appointment_id: int,
    current_user: User = Depends(require_role(PATIENT_ROLE, DOCTOR_ROLE)),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        actor_id = resolve_actor_id(db, current_user)
        result = BookingCoordinator(db).cancel(appointment_id, actor_id, current_user.role)
        return CancellationResponse(
            **build_appointment_response(db, result.appointment),
            refunded=result.refunded,
        )
    except BookingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc


@router.post('/{appointment_id}/complete', response_model=AppointmentResponse)
def complete_appointment(
    appointment_id: int,
    current_user: User = Depends(require_role(DOCTOR_ROLE)),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        doctor = resolve_doctor(db, current_user)
        appointments = AppointmentStateMachine(db)
        if appointments.get(appointment_id).doctor_id != doctor.id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Only the appointment's doctor can complete it.",
            )

        appointment = appointments.complete(appointment_id)
        return AppointmentResponse(**build_appointment_response(db, appointment))
    except BookingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc


@router.post('/{appointment_id}/payment-confirmation', response_model=AppointmentResponse)
def confirm_appointment_payment(
    appointment_id: int,
    current_user: User = Depends(require_role(ADMIN_ROLE)),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        booking = BookingCoordinator(db).confirm_payment(appointment_id)
        return AppointmentResponse(**build_appointment_response(db, booking.appointment, booking))
    except BookingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc
