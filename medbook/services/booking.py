"""Booking and cancellation as single units of work.

``book`` reserves the slot first and commits that reservation, then writes
the appointment and its ledger entry together. If anything after the
reservation fails the slot is released before the error propagates, so a
failed booking never leaves a slot claimed by nobody.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from medbook.core import config
from medbook.models.appointment import CONFIRMED, PENDING, Appointment
from medbook.models.availability import AvailabilitySlot
from medbook.models.profile import DoctorProfile, PatientProfile
from medbook.models.transaction import COMPLETED, FAILED, PAYOUT_PAID, LedgerEntry
from medbook.models.transaction import PENDING as PAYMENT_PENDING
from medbook.services.appointments import AppointmentStateMachine
from medbook.services.errors import (
    BookingError,
    CompensationFailed,
    DoctorUnavailable,
    InvalidTransition,
    LedgerEntryNotFound,
    PaymentFailed,
)
from medbook.services.ledger import FeePolicy, SettlementLedger, percentage_fee_policy, to_money
from medbook.services.payments import PaymentDetails, StubPaymentGateway
from medbook.services.profiles import ProfileDirectory
from medbook.services.slot_registry import SlotRegistry

logger = logging.getLogger(__name__)

RefundPolicy = Callable[[Appointment, LedgerEntry, str], bool]


def always_refund(appointment: Appointment, entry: LedgerEntry, actor_role: str) -> bool:
    return True


def never_refund(appointment: Appointment, entry: LedgerEntry, actor_role: str) -> bool:
    return False


def refund_unless_paid_out(appointment: Appointment, entry: LedgerEntry, actor_role: str) -> bool:
    return entry.payout_status != PAYOUT_PAID


REFUND_POLICIES: dict[str, RefundPolicy] = {
    'always': always_refund,
    'never': never_refund,
    'unless_paid_out': refund_unless_paid_out,
}


@dataclass
class BookingResult:
    appointment: Appointment
    slot: AvailabilitySlot
    doctor: DoctorProfile
    patient: PatientProfile | None
    entry: LedgerEntry


@dataclass
class CancellationResult:
    appointment: Appointment
    entry: LedgerEntry | None
    refunded: bool


def consultation_fee(doctor: DoctorProfile) -> Decimal:
    if doctor.consultation_fee:
        return to_money(doctor.consultation_fee)
    return to_money(config.DEFAULT_CONSULTATION_FEE)


class BookingCoordinator:
    def __init__(
        self,
        db: Session,
        gateway=None,
        fee_policy: FeePolicy | None = None,
        refund_policy: RefundPolicy | None = None,
        profiles: ProfileDirectory | None = None,
    ):
        self.db = db
        self.profiles = profiles or ProfileDirectory(db)
        self.slots = SlotRegistry(db, self.profiles)
        self.appointments = AppointmentStateMachine(db, self.slots)
        self.ledger = SettlementLedger(db)
        self.gateway = gateway or StubPaymentGateway()
        self.fee_policy = fee_policy or percentage_fee_policy(config.PLATFORM_FEE_PERCENT)
        self.refund_policy = refund_policy or REFUND_POLICIES[config.CANCELLATION_REFUND_POLICY]

    def book(self, patient_id: int, slot_id: int, payment_details: PaymentDetails | None = None) -> BookingResult:
        payment_details = payment_details or PaymentDetails()

        slot = self.slots.get(slot_id)
        doctor = self.profiles.get_doctor(slot.doctor_id)
        if not self.profiles.is_accepting_bookings(doctor):
            raise DoctorUnavailable()

        slot = self.slots.reserve(slot_id)

        try:
            gross = consultation_fee(doctor)
            payment = self.gateway.charge(gross, payment_details)
            if payment.is_declined:
                raise PaymentFailed()

            appointment = self.appointments.create(
                patient_id,
                doctor.id,
                slot.id,
                status=CONFIRMED if payment.is_settled else PENDING,
            )
            entry = self.ledger.record(
                appointment.id,
                patient_id,
                doctor.id,
                gross,
                self.fee_policy,
                payment,
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            self._release_after_failure(slot_id)
            raise

        logger.info(
            'Patient %s booked slot %s with doctor %s (appointment %s, %s)',
            patient_id,
            slot_id,
            doctor.id,
            appointment.id,
            entry.status,
        )
        return BookingResult(
            appointment=appointment,
            slot=slot,
            doctor=doctor,
            patient=self.profiles.get_patient(patient_id),
            entry=entry,
        )

    def _release_after_failure(self, slot_id: int) -> None:
        try:
            self.slots.release(slot_id)
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.critical('Slot %s left reserved by a failed booking; reconcile manually', slot_id)
            raise CompensationFailed() from exc
        logger.warning('Booking of slot %s failed after reservation; slot released', slot_id)

    def cancel(self, appointment_id: int, actor_id: int, actor_role: str) -> CancellationResult:
        appointment = self.appointments.cancel(appointment_id, actor_id, actor_role)

        entry = self.ledger.get_for_appointment(appointment_id)
        refunded = False
        if entry is None:
            return CancellationResult(appointment=appointment, entry=None, refunded=False)

        notes = f'Appointment cancelled by {actor_role}'
        try:
            if entry.status == COMPLETED and self.refund_policy(appointment, entry, actor_role):
                entry = self.ledger.refund(entry.id, notes=notes)
                refunded = True
            elif entry.status == PAYMENT_PENDING:
                entry = self.ledger.update_status(entry.id, FAILED, notes=notes)
        except InvalidTransition:
            logger.warning(
                'Transaction %s changed while appointment %s was cancelled; left for review',
                entry.id,
                appointment_id,
            )
            entry = self.ledger.get(entry.id)

        return CancellationResult(appointment=appointment, entry=entry, refunded=refunded)

    def confirm_payment(self, appointment_id: int) -> BookingResult:
        """Apply a late payment confirmation to a pending booking."""
        appointment = self.appointments.get(appointment_id)
        entry = self.ledger.get_for_appointment(appointment_id)
        if entry is None:
            raise LedgerEntryNotFound()

        try:
            entry = self.ledger.settle(entry.id, commit=False)
            appointment = self.appointments.confirm(appointment_id, commit=False)
            self.db.commit()
        except BookingError:
            self.db.rollback()
            raise

        return BookingResult(
            appointment=appointment,
            slot=self.slots.get(appointment.slot_id),
            doctor=self.profiles.get_doctor(appointment.doctor_id),
            patient=self.profiles.get_patient(appointment.patient_id),
            entry=entry,
        )
