import os
from datetime import date, time, timedelta
from decimal import Decimal
from functools import partial

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from medbook.database import Base  # noqa: E402
from medbook.models import appointment, availability, profile, transaction, user  # noqa: E402,F401
from medbook.models.availability import AvailabilitySlot  # noqa: E402
from medbook.models.profile import VERIFIED_STATUS, DoctorProfile, PatientProfile  # noqa: E402
from medbook.models.user import ADMIN_ROLE, DOCTOR_ROLE, PATIENT_ROLE, User  # noqa: E402


def next_week() -> date:
    return date.today() + timedelta(days=7)


@pytest.fixture
def db():
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    session = testing_session_local()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


def add_user(db, email: str, role: str) -> User:
    account = User(email=email, role=role)
    db.add(account)
    db.commit()
    db.refresh(account)
    return account


def add_doctor(
    db,
    email: str = 'doctor@example.com',
    full_name: str = 'Dr. Abebe Kebede',
    verification_status: str = VERIFIED_STATUS,
    is_available: bool = True,
    consultation_fee: Decimal | None = Decimal('500.00'),
) -> DoctorProfile:
    account = add_user(db, email, DOCTOR_ROLE)
    doctor = DoctorProfile(
        user_id=account.id,
        full_name=full_name,
        specialization='General Practice',
        verification_status=verification_status,
        is_available=is_available,
        consultation_fee=consultation_fee,
    )
    db.add(doctor)
    db.commit()
    db.refresh(doctor)
    return doctor


def add_patient(db, email: str = 'patient@example.com', full_name: str = 'Selam Tesfaye') -> PatientProfile:
    account = add_user(db, email, PATIENT_ROLE)
    patient = PatientProfile(user_id=account.id, full_name=full_name)
    db.add(patient)
    db.commit()
    db.refresh(patient)
    return patient


def add_slot(
    db,
    doctor_id: int,
    slot_date: date | None = None,
    start: time = time(9, 0),
    end: time = time(9, 30),
    is_booked: bool = False,
) -> AvailabilitySlot:
    slot = AvailabilitySlot(
        doctor_id=doctor_id,
        date=slot_date or next_week(),
        start_time=start,
        end_time=end,
        is_booked=is_booked,
    )
    db.add(slot)
    db.commit()
    db.refresh(slot)
    return slot


@pytest.fixture
def doctor(db) -> DoctorProfile:
    return add_doctor(db)


@pytest.fixture
def patient(db) -> PatientProfile:
    return add_patient(db)


@pytest.fixture
def admin(db) -> User:
    return add_user(db, 'admin@example.com', ADMIN_ROLE)


@pytest.fixture
def slot(db, doctor) -> AvailabilitySlot:
    return add_slot(db, doctor.id)


@pytest.fixture
def make_doctor(db):
    return partial(add_doctor, db)


@pytest.fixture
def make_patient(db):
    return partial(add_patient, db)


@pytest.fixture
def make_slot(db):
    return partial(add_slot, db)
