from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker

from medbook.core import config


def build_engine(database_url: str, **kwargs):
    connect_args = kwargs.pop('connect_args', {})
    if database_url.startswith('sqlite'):
        # Route handlers run in FastAPI's threadpool.
        connect_args.setdefault('check_same_thread', False)
    return create_engine(database_url, connect_args=connect_args, **kwargs)


engine = build_engine(config.DATABASE_URL, echo=config.DATABASE_ECHO)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_booking_schema_checked = False

BOOKING_INDEX_STATEMENTS = {
    'availability': [
        'CREATE INDEX IF NOT EXISTS idx_availability_doctor_booked_date '
        'ON availability(doctor_id, is_booked, date)',
    ],
    'appointments': [
        "CREATE UNIQUE INDEX IF NOT EXISTS uq_appointments_live_slot "
        "ON appointments(slot_id) WHERE status != 'cancelled'",
        'CREATE INDEX IF NOT EXISTS idx_appointments_patient ON appointments(patient_id)',
        'CREATE INDEX IF NOT EXISTS idx_appointments_doctor ON appointments(doctor_id)',
    ],
    'transactions': [
        'CREATE INDEX IF NOT EXISTS idx_transactions_doctor_payout '
        'ON transactions(doctor_id, status, payout_status)',
    ],
}


def ensure_booking_schema(bind=None) -> None:
    """Create the indexes the booking paths rely on for tables that predate them."""
    global _booking_schema_checked

    if _booking_schema_checked and bind is None:
        return

    with _schema_lock:
        if _booking_schema_checked and bind is None:
            return

        target = bind if bind is not None else engine
        existing_tables = set(inspect(target).get_table_names())

        with target.begin() as connection:
            for table_name, statements in BOOKING_INDEX_STATEMENTS.items():
                if table_name not in existing_tables:
                    continue
                for statement in statements:
                    connection.execute(text(statement))

        if bind is None:
            _booking_schema_checked = True


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
