from datetime import date, datetime, time

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from medbook.auth.dependencies import require_role
from medbook.database import get_db
from medbook.models.user import DOCTOR_ROLE, User
from medbook.routes.common import (
    database_unavailable,
    ensure_database_ready,
    resolve_doctor,
    to_http_exception,
)
from medbook.services.errors import BookingError
from medbook.services.slot_registry import SlotRegistry, SlotWindow

router = APIRouter(tags=['availability'])

MAX_SLOTS_PER_REQUEST = 500


class SlotInput(BaseModel):
    date: date
    start_time: time
    end_time: time


class CreateSlotsRequest(BaseModel):
    slots: list[SlotInput] = Field(default_factory=list, max_length=MAX_SLOTS_PER_REQUEST)
    replace_existing: bool = False


class SlotCreationResponse(BaseModel):
    deleted: int
    created: int
    skipped: int
    total: int


class AvailabilitySlotResponse(BaseModel):
    id: int
    doctor_id: int
    date: date
    start_time: time
    end_time: time
    is_booked: bool
    created_at: datetime | None = None

    class Config:
        from_attributes = True


@router.post('/slots', response_model=SlotCreationResponse, status_code=status.HTTP_201_CREATED)
def create_slots(
    data: CreateSlotsRequest,
    current_user: User = Depends(require_role(DOCTOR_ROLE)),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        doctor = resolve_doctor(db, current_user)
        result = SlotRegistry(db).create_slots(
            doctor.id,
            [SlotWindow(slot.date, slot.start_time, slot.end_time) for slot in data.slots],
            replace_existing=data.replace_existing,
        )
        return SlotCreationResponse(
            deleted=result.deleted,
            created=result.created,
            skipped=result.skipped,
            total=result.total,
        )
    except BookingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc


@router.get('/doctors/{doctor_id}/slots', response_model=list[AvailabilitySlotResponse])
def list_available_slots(
    doctor_id: int,
    from_date: date | None = Query(default=None),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        cutoff = max(from_date or date.today(), date.today())
        return SlotRegistry(db).list_available(doctor_id, from_date=cutoff)
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc


@router.get('/slots/mine', response_model=list[AvailabilitySlotResponse])
def list_my_slots(
    from_date: date | None = Query(default=None),
    current_user: User = Depends(require_role(DOCTOR_ROLE)),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        doctor = resolve_doctor(db, current_user)
        return SlotRegistry(db).list_for_doctor(doctor.id, from_date=from_date)
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc


@router.delete('/slots/{slot_id}', status_code=status.HTTP_204_NO_CONTENT)
def remove_slot(
    slot_id: int,
    current_user: User = Depends(require_role(DOCTOR_ROLE)),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        doctor = resolve_doctor(db, current_user)
        SlotRegistry(db).delete_slot(doctor.id, slot_id)
    except BookingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc
