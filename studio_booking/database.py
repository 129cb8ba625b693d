from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker

from studio_booking.core import config


def _engine_options(url: str) -> dict:
    if url.startswith('sqlite'):
        return {'connect_args': {'check_same_thread': False}}
    return {'pool_pre_ping': True}


engine = create_engine(config.DATABASE_URL, **_engine_options(config.DATABASE_URL))

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_booking_schema_checked = False


def ensure_booking_schema() -> None:
    global _booking_schema_checked

    if _booking_schema_checked:
        return

    with _schema_lock:
        if _booking_schema_checked:
            return

        inspector = inspect(engine)
        table_names = set(inspector.get_table_names())

        with engine.begin() as connection:
            if 'bookings' in table_names:
                existing_columns = {column['name'] for column in inspector.get_columns('bookings')}
                migration_steps = [
                    ('session_option', 'ALTER TABLE bookings ADD COLUMN session_option VARCHAR'),
                    ('song_count', 'ALTER TABLE bookings ADD COLUMN song_count INTEGER'),
                    ('cancellation_reason', 'ALTER TABLE bookings ADD COLUMN cancellation_reason VARCHAR'),
                    ('cancelled_at', 'ALTER TABLE bookings ADD COLUMN cancelled_at TIMESTAMP'),
                    ('created_by_staff', 'ALTER TABLE bookings ADD COLUMN created_by_staff VARCHAR'),
                ]
                for column_name, statement in migration_steps:
                    if column_name not in existing_columns:
                        connection.execute(text(statement))
                connection.execute(
                    text('CREATE INDEX IF NOT EXISTS idx_bookings_studio_date ON bookings(studio, date, status)')
                )
                connection.execute(
                    text('CREATE INDEX IF NOT EXISTS idx_bookings_phone ON bookings(phone, date)')
                )

            if 'availability_slots' in table_names:
                connection.execute(
                    text(
                        'CREATE INDEX IF NOT EXISTS idx_availability_slots_studio_date '
                        'ON availability_slots(studio, date, is_available)'
                    )
                )

            if 'trusted_devices' in table_names:
                connection.execute(
                    text('CREATE INDEX IF NOT EXISTS idx_trusted_devices_phone ON trusted_devices(phone, is_active)')
                )

        _booking_schema_checked = True


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
