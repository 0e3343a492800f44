"""Appointment identity and status transitions.

    pending -> confirmed -> completed
    pending | confirmed -> cancelled

Transitions are conditional updates on the current status, so two requests
racing on the same appointment cannot both apply.
"""

import logging

from sqlalchemy.orm import Session

from medbook.models.appointment import (
    CANCELLED,
    COMPLETED,
    CONFIRMED,
    PENDING,
    Appointment,
)
from medbook.models.user import DOCTOR_ROLE, PATIENT_ROLE
from medbook.services.errors import AppointmentNotFound, InvalidTransition, Unauthorized
from medbook.services.slot_registry import SlotRegistry

logger = logging.getLogger(__name__)

CANCELLABLE_STATUSES = (PENDING, CONFIRMED)


class AppointmentStateMachine:
    def __init__(self, db: Session, slots: SlotRegistry | None = None):
        self.db = db
        self.slots = slots or SlotRegistry(db)

    def get(self, appointment_id: int) -> Appointment:
        appointment = self.db.query(Appointment).filter(Appointment.id == appointment_id).first()
        if appointment is None:
            raise AppointmentNotFound()
        return appointment

    def list_for_patient(self, patient_id: int) -> list[Appointment]:
        return self.db.query(Appointment).filter(
            Appointment.patient_id == patient_id,
        ).order_by(Appointment.created_at.desc(), Appointment.id.desc()).all()

    def list_for_doctor(self, doctor_id: int) -> list[Appointment]:
        return self.db.query(Appointment).filter(
            Appointment.doctor_id == doctor_id,
        ).order_by(Appointment.created_at.desc(), Appointment.id.desc()).all()

    def list_all(self) -> list[Appointment]:
        return self.db.query(Appointment).order_by(Appointment.created_at.desc(), Appointment.id.desc()).all()

    def create(self, patient_id: int, doctor_id: int, slot_id: int, status: str = CONFIRMED) -> Appointment:
        """Add a new appointment to the caller's transaction.

        The row is flushed, not committed; the caller commits it together
        with the ledger entry.
        """
        if status not in (PENDING, CONFIRMED):
            raise InvalidTransition(f'Appointments cannot start as {status}.')

        appointment = Appointment(
            patient_id=patient_id,
            doctor_id=doctor_id,
            slot_id=slot_id,
            status=status,
        )
        self.db.add(appointment)
        self.db.flush()
        return appointment

    def _transition(self, appointment_id: int, allowed_from: tuple[str, ...], target: str) -> int:
        return self.db.query(Appointment).filter(
            Appointment.id == appointment_id,
            Appointment.status.in_(allowed_from),
        ).update({Appointment.status: target}, synchronize_session=False)

    def confirm(self, appointment_id: int, commit: bool = True) -> Appointment:
        appointment = self.get(appointment_id)
        if not self._transition(appointment_id, (PENDING,), CONFIRMED):
            self.db.rollback()
            raise InvalidTransition(f'Cannot confirm a {self.get(appointment_id).status} appointment.')

        if commit:
            self.db.commit()
        self.db.refresh(appointment)
        return appointment

    def cancel(self, appointment_id: int, actor_id: int, actor_role: str) -> Appointment:
        """Cancel on behalf of the owning patient or doctor and free the slot."""
        appointment = self.get(appointment_id)

        is_owner = (
            (actor_role == PATIENT_ROLE and appointment.patient_id == actor_id)
            or (actor_role == DOCTOR_ROLE and appointment.doctor_id == actor_id)
        )
        if not is_owner:
            raise Unauthorized()

        if appointment.status not in CANCELLABLE_STATUSES:
            raise InvalidTransition(f'Cannot cancel a {appointment.status} appointment.')

        if not self._transition(appointment_id, CANCELLABLE_STATUSES, CANCELLED):
            self.db.rollback()
            raise InvalidTransition(f'Cannot cancel a {self.get(appointment_id).status} appointment.')

        self.slots.release(appointment.slot_id, commit=False)
        self.db.commit()
        self.db.refresh(appointment)

        logger.info('Appointment %s cancelled by %s %s', appointment_id, actor_role, actor_id)
        return appointment

    def complete(self, appointment_id: int) -> Appointment:
        """Mark a confirmed consultation as held."""
        appointment = self.get(appointment_id)
        if not self._transition(appointment_id, (CONFIRMED,), COMPLETED):
            self.db.rollback()
            raise InvalidTransition(f'Cannot complete a {self.get(appointment_id).status} appointment.')

        self.db.commit()
        self.db.refresh(appointment)
        return appointment
