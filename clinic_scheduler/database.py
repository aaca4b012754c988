import logging
from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from clinic_scheduler.core import config

logger = logging.getLogger(__name__)


def build_engine(database_url: str, timeout_seconds: float | None = None) -> Engine:
    """Create an engine whose every store call is bounded by ``timeout_seconds``."""
    timeout_seconds = timeout_seconds or config.STORE_TIMEOUT_SECONDS
    timeout_ms = int(timeout_seconds * 1000)

    if database_url.startswith('sqlite'):
        return create_engine(
            database_url,
            echo=config.DATABASE_ECHO,
            connect_args={'timeout': timeout_seconds, 'check_same_thread': False},
        )

    connect_args = {}
    if database_url.startswith('postgresql'):
        connect_args = {
            'connect_timeout': max(1, int(timeout_seconds)),
            'options': f'-c statement_timeout={timeout_ms} -c lock_timeout={timeout_ms}',
        }

    return create_engine(
        database_url,
        echo=config.DATABASE_ECHO,
        pool_pre_ping=True,
        pool_timeout=timeout_seconds,
        connect_args=connect_args,
    )


engine = build_engine(config.DATABASE_URL)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_appointment_schema_checked = False


def ensure_appointment_schema(bind: Engine | None = None) -> None:
    """Make sure an existing appointments table carries its indexes.

    The partial unique index is what enforces one active appointment per
    slot, so a table created without it is patched in place.
    """
    global _appointment_schema_checked

    if _appointment_schema_checked and bind is None:
        return

    with _schema_lock:
        if _appointment_schema_checked and bind is None:
            return

        from clinic_scheduler.models.appointment import ACTIVE_SLOT_INDEX_NAME, ACTIVE_SLOT_PREDICATE

        target = bind or engine
        inspector = inspect(target)

        if 'appointments' not in inspector.get_table_names():
            if bind is None:
                _appointment_schema_checked = True
            return

        existing_indexes = {index['name'] for index in inspector.get_indexes('appointments')}
        if ACTIVE_SLOT_INDEX_NAME not in existing_indexes:
            logger.info('Creating %s index on appointments', ACTIVE_SLOT_INDEX_NAME)

        with target.begin() as connection:
            connection.execute(
                text(
                    f'CREATE UNIQUE INDEX IF NOT EXISTS {ACTIVE_SLOT_INDEX_NAME} '
                    'ON appointments(tenant_id, doctor_id, appointment_date, appointment_time) '
                    f'WHERE {ACTIVE_SLOT_PREDICATE}'
                )
            )
            connection.execute(
                text(
                    'CREATE INDEX IF NOT EXISTS idx_appointments_doctor_day '
                    'ON appointments(tenant_id, doctor_id, appointment_date)'
                )
            )

        if bind is None:
            _appointment_schema_checked = True
