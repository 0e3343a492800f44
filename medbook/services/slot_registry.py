"""Ownership of doctors' bookable slots.

``reserve`` is the only place a slot's ``is_booked`` flag goes from false
to true. It is a conditional update keyed by slot id, so among concurrent
callers for the same slot exactly one sees a row updated.
"""

import logging
from dataclasses import dataclass
from datetime import date, time
from typing import Iterable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from medbook.models.availability import AvailabilitySlot
from medbook.services.errors import (
    DoctorNotFound,
    DoctorNotVerified,
    DuplicateSlot,
    InvalidSlotWindow,
    SlotAlreadyBooked,
    SlotInPast,
    SlotNotFound,
    Unauthorized,
)
from medbook.services.profiles import ProfileDirectory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SlotWindow:
    date: date
    start_time: time
    end_time: time


@dataclass(frozen=True)
class SlotCreationResult:
    deleted: int
    created: int
    skipped: int

    @property
    def total(self) -> int:
        return self.created + self.skipped


def _normalize(value: time) -> time:
    return value.replace(second=0, microsecond=0)


class SlotRegistry:
    def __init__(self, db: Session, profiles: ProfileDirectory | None = None):
        self.db = db
        self.profiles = profiles or ProfileDirectory(db)

    def find(self, slot_id: int) -> AvailabilitySlot | None:
        return self.db.query(AvailabilitySlot).filter(AvailabilitySlot.id == slot_id).first()

    def get(self, slot_id: int) -> AvailabilitySlot:
        slot = self.find(slot_id)
        if slot is None:
            raise SlotNotFound()
        return slot

    def create_slots(
        self,
        doctor_id: int,
        slots: Iterable[SlotWindow],
        replace_existing: bool = False,
    ) -> SlotCreationResult:
        """Add a doctor's slots, skipping any (date, start) that already exists.

        Past-dated windows are dropped without error. With
        ``replace_existing`` the doctor's unreserved slots from today on are
        removed first; reserved slots are never touched.
        """
        doctor = self.profiles.get_doctor(doctor_id)
        if doctor is None:
            raise DoctorNotFound()
        if not self.profiles.is_accepting_bookings(doctor):
            raise DoctorNotVerified()

        windows = [
            SlotWindow(window.date, _normalize(window.start_time), _normalize(window.end_time))
            for window in slots
        ]
        for window in windows:
            if window.end_time <= window.start_time:
                raise InvalidSlotWindow(
                    f'Slot on {window.date.isoformat()} at {window.start_time.strftime("%H:%M")} '
                    'must end after it starts.'
                )

        today = date.today()
        upcoming = [window for window in windows if window.date >= today]

        try:
            deleted = 0
            if replace_existing:
                deleted = self.db.query(AvailabilitySlot).filter(
                    AvailabilitySlot.doctor_id == doctor_id,
                    AvailabilitySlot.date >= today,
                    AvailabilitySlot.is_booked.is_(False),
                ).delete(synchronize_session=False)

            taken = {
                (slot_date, start_time)
                for slot_date, start_time in self.db.query(
                    AvailabilitySlot.date,
                    AvailabilitySlot.start_time,
                ).filter(
                    AvailabilitySlot.doctor_id == doctor_id,
                    AvailabilitySlot.date >= today,
                ).all()
            }

            created = 0
            skipped = 0
            for window in upcoming:
                key = (window.date, window.start_time)
                if key in taken:
                    skipped += 1
                    continue
                taken.add(key)
                self.db.add(
                    AvailabilitySlot(
                        doctor_id=doctor_id,
                        date=window.date,
                        start_time=window.start_time,
                        end_time=window.end_time,
                        is_booked=False,
                    )
                )
                created += 1

            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            logger.info('Concurrent slot insert for doctor %s collided on a slot key', doctor_id)
            raise DuplicateSlot() from exc

        result = SlotCreationResult(deleted=deleted, created=created, skipped=skipped)
        logger.info(
            'Doctor %s slots: %s deleted, %s created, %s skipped, %s past dropped',
            doctor_id,
            result.deleted,
            result.created,
            result.skipped,
            len(windows) - len(upcoming),
        )
        return result

    def list_available(self, doctor_id: int, from_date: date | None = None) -> list[AvailabilitySlot]:
        doctor = self.profiles.get_doctor(doctor_id)
        if not self.profiles.is_accepting_bookings(doctor):
            return []

        cutoff = from_date or date.today()
        return self.db.query(AvailabilitySlot).filter(
            AvailabilitySlot.doctor_id == doctor_id,
            AvailabilitySlot.is_booked.is_(False),
            AvailabilitySlot.date >= cutoff,
        ).order_by(AvailabilitySlot.date.asc(), AvailabilitySlot.start_time.asc()).all()

    def list_for_doctor(self, doctor_id: int, from_date: date | None = None) -> list[AvailabilitySlot]:
        cutoff = from_date or date.today()
        return self.db.query(AvailabilitySlot).filter(
            AvailabilitySlot.doctor_id == doctor_id,
            AvailabilitySlot.date >= cutoff,
        ).order_by(AvailabilitySlot.date.asc(), AvailabilitySlot.start_time.asc()).all()

    def reserve(self, slot_id: int) -> AvailabilitySlot:
        """Claim a free slot, committing before returning.

        Freshness is checked here rather than trusted from an earlier
        listing: a slot may have been taken or slipped into the past since.
        """
        slot = self.get(slot_id)
        if slot.date < date.today():
            raise SlotInPast()

        updated = self.db.query(AvailabilitySlot).filter(
            AvailabilitySlot.id == slot_id,
            AvailabilitySlot.is_booked.is_(False),
        ).update({AvailabilitySlot.is_booked: True}, synchronize_session=False)

        if updated != 1:
            self.db.rollback()
            logger.info('Slot %s already booked', slot_id)
            raise SlotAlreadyBooked()

        self.db.commit()
        self.db.refresh(slot)
        return slot

    def release(self, slot_id: int, commit: bool = True) -> None:
        """Clear a slot's reservation. Releasing a free slot is a no-op."""
        self.db.query(AvailabilitySlot).filter(
            AvailabilitySlot.id == slot_id,
        ).update({AvailabilitySlot.is_booked: False}, synchronize_session=False)
        if commit:
            self.db.commit()

    def delete_slot(self, doctor_id: int, slot_id: int) -> None:
        slot = self.get(slot_id)
        if slot.doctor_id != doctor_id:
            raise Unauthorized('Only the owning doctor can remove this slot.')

        deleted = self.db.query(AvailabilitySlot).filter(
            AvailabilitySlot.id == slot_id,
            AvailabilitySlot.is_booked.is_(False),
        ).delete(synchronize_session=False)

        if not deleted:
            self.db.rollback()
            raise SlotAlreadyBooked('Booked slots cannot be removed.')

        self.db.commit()
