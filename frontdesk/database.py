from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker

from frontdesk.core import config


connect_args = {'check_same_thread': False} if config.DATABASE_URL.startswith('sqlite') else {}

engine = create_engine(config.DATABASE_URL, echo=config.DATABASE_ECHO, connect_args=connect_args)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_appointment_schema_checked = False
_reservation_schema_checked = False


def ensure_appointment_schema() -> None:
    global _appointment_schema_checked

    if _appointment_schema_checked:
        return

    with _schema_lock:
        if _appointment_schema_checked:
            return

        inspector = inspect(engine)

        if 'appointments' not in inspector.get_table_names():
            _appointment_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('appointments')}
        migration_steps = [
            ('cut_off_time', 'ALTER TABLE appointments ADD COLUMN cut_off_time TIMESTAMP'),
            ('no_show_time', 'ALTER TABLE appointments ADD COLUMN no_show_time TIMESTAMP'),
            ('updated_at', 'ALTER TABLE appointments ADD COLUMN updated_at TIMESTAMP'),
            ('delay_minutes', 'ALTER TABLE appointments ADD COLUMN delay_minutes INTEGER NOT NULL DEFAULT 0'),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_doctor_date ON appointments(doctor_id, date)')
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_clinic_date_status ON appointments(clinic_id, date, status)')
            )
            connection.execute(
                text(
                    'CREATE UNIQUE INDEX IF NOT EXISTS uq_appointments_active_slot '
                    "ON appointments(doctor_id, date, slot_index) WHERE status IN ('Pending', 'Confirmed')"
                )
            )

        _appointment_schema_checked = True


def ensure_reservation_schema() -> None:
    global _reservation_schema_checked

    if _reservation_schema_checked:
        return

    with _schema_lock:
        if _reservation_schema_checked:
            return

        inspector = inspect(engine)

        if 'slot_reservations' not in inspector.get_table_names():
            _reservation_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('slot_reservations')}
        migration_steps = [
            ('expires_at', 'ALTER TABLE slot_reservations ADD COLUMN expires_at TIMESTAMP'),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text(
                    'CREATE INDEX IF NOT EXISTS idx_slot_reservations_scope '
                    'ON slot_reservations(clinic_id, doctor_name, date)'
                )
            )

        _reservation_schema_checked = True
