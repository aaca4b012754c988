import os
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import date, time

import pytest
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from clinic_scheduler.database import Base, build_engine, ensure_appointment_schema  # noqa: E402
from clinic_scheduler.models.appointment import ACTIVE_SLOT_INDEX_NAME, Appointment  # noqa: E402
from clinic_scheduler.scheduling.errors import NotFound, SlotConflict, Unavailable, VersionConflict  # noqa: E402
from clinic_scheduler.scheduling.lifecycle import AppointmentLifecycle  # noqa: E402
from clinic_scheduler.scheduling.slots import SlotCatalog, parse_shifts  # noqa: E402
from clinic_scheduler.scheduling.status import AppointmentStatus  # noqa: E402
from clinic_scheduler.store.base import AppointmentCandidate  # noqa: E402
from clinic_scheduler.store.sql_store import SqlAlchemyAppointmentStore  # noqa: E402

TENANT = 'clinic_a'
DAY = date(2025, 3, 10)


def candidate(slot_time: time = time(10, 0), tenant_id: str = TENANT, doctor_id: int = 7) -> AppointmentCandidate:
    return AppointmentCandidate(
        tenant_id=tenant_id,
        doctor_id=doctor_id,
        appointment_date=DAY,
        appointment_time=slot_time,
        patient_ref='Jane Doe',
    )


@pytest.fixture
def appointment_db():
    engine = create_engine('sqlite:///:memory:')
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine, tables=[Appointment.__table__])

    db = testing_session_local()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine, tables=[Appointment.__table__])


@pytest.fixture
def store(appointment_db) -> SqlAlchemyAppointmentStore:
    return SqlAlchemyAppointmentStore(appointment_db)


def test_insert_if_absent_creates_scheduled_row(store: SqlAlchemyAppointmentStore) -> None:
    record = store.insert_if_absent(candidate())

    assert record.id is not None
    assert record.status == AppointmentStatus.SCHEDULED
    assert record.version == 1
    assert record.created_at == record.updated_at
    assert store.find_by_id(TENANT, record.id) == record


def test_insert_if_absent_rejects_active_duplicate(store: SqlAlchemyAppointmentStore, appointment_db) -> None:
    store.insert_if_absent(candidate())

    with pytest.raises(SlotConflict):
        store.insert_if_absent(candidate())

    assert appointment_db.query(Appointment).count() == 1


def test_terminal_rows_do_not_hold_the_slot(store: SqlAlchemyAppointmentStore) -> None:
    first = store.insert_if_absent(candidate())
    store.update_status_and_slot(TENANT, first.id, first.version, AppointmentStatus.CANCELLED)

    second = store.insert_if_absent(candidate())
    store.update_status_and_slot(TENANT, second.id, second.version, AppointmentStatus.DONE)

    third = store.insert_if_absent(candidate())

    assert third.status == AppointmentStatus.SCHEDULED
    assert [record.id for record in store.find_active(TENANT, 7, DAY)] == [third.id]


def test_same_slot_in_other_tenant_or_doctor_is_independent(store: SqlAlchemyAppointmentStore) -> None:
    store.insert_if_absent(candidate())
    store.insert_if_absent(candidate(tenant_id='clinic_b'))
    store.insert_if_absent(candidate(doctor_id=8))

    assert len(store.find_active(TENANT, 7, DAY)) == 1
    assert len(store.find_active('clinic_b', 7, DAY)) == 1
    assert len(store.find_active(TENANT, 8, DAY)) == 1


def test_find_active_is_ordered_by_time(store: SqlAlchemyAppointmentStore) -> None:
    store.insert_if_absent(candidate(time(17, 0)))
    store.insert_if_absent(candidate(time(10, 30)))
    store.insert_if_absent(candidate(time(10, 0)))

    times = [record.appointment_time for record in store.find_active(TENANT, 7, DAY)]

    assert times == [time(10, 0), time(10, 30), time(17, 0)]


def test_find_by_id_is_tenant_scoped(store: SqlAlchemyAppointmentStore) -> None:
    record = store.insert_if_absent(candidate())

    with pytest.raises(NotFound):
        store.find_by_id('clinic_b', record.id)
    with pytest.raises(NotFound):
        store.find_by_id(TENANT, record.id + 100)


def test_update_moves_slot_and_bumps_version(store: SqlAlchemyAppointmentStore) -> None:
    record = store.insert_if_absent(candidate())

    updated = store.update_status_and_slot(
        TENANT,
        record.id,
        record.version,
        AppointmentStatus.RESCHEDULED,
        new_date=date(2025, 3, 11),
        new_time=time(17, 15),
    )

    assert updated.version == 2
    assert updated.status == AppointmentStatus.RESCHEDULED
    assert store.find_by_id(TENANT, record.id) == updated


def test_update_with_stale_version_is_version_conflict(store: SqlAlchemyAppointmentStore) -> None:
    record = store.insert_if_absent(candidate())
    store.update_status_and_slot(TENANT, record.id, 1, AppointmentStatus.RESCHEDULED, new_time=time(11, 0))

    with pytest.raises(VersionConflict):
        store.update_status_and_slot(TENANT, record.id, 1, AppointmentStatus.CANCELLED)

    assert store.find_by_id(TENANT, record.id).status == AppointmentStatus.RESCHEDULED


def test_update_of_unknown_id_is_not_found(store: SqlAlchemyAppointmentStore) -> None:
    with pytest.raises(NotFound):
        store.update_status_and_slot(TENANT, 404, 1, AppointmentStatus.CANCELLED)


def test_update_into_held_slot_is_slot_conflict(store: SqlAlchemyAppointmentStore) -> None:
    moving = store.insert_if_absent(candidate(time(10, 0)))
    store.insert_if_absent(candidate(time(10, 15)))

    with pytest.raises(SlotConflict):
        store.update_status_and_slot(
            TENANT,
            moving.id,
            moving.version,
            AppointmentStatus.RESCHEDULED,
            new_time=time(10, 15),
        )

    unchanged = store.find_by_id(TENANT, moving.id)
    assert unchanged.appointment_time == time(10, 0)
    assert unchanged.version == 1


def test_operational_errors_surface_as_unavailable(store: SqlAlchemyAppointmentStore, monkeypatch: pytest.MonkeyPatch) -> None:
    def locked(*args, **kwargs):
        raise OperationalError('SELECT 1', {}, Exception('database is locked'))

    monkeypatch.setattr(store.db, 'query', locked)

    with pytest.raises(Unavailable):
        store.find_active(TENANT, 7, DAY)


def test_ensure_appointment_schema_adds_missing_active_slot_index(tmp_path) -> None:
    engine = create_engine(f'sqlite:///{tmp_path / "unindexed.db"}')
    with engine.begin() as connection:
        connection.execute(
            text(
                'CREATE TABLE appointments ('
                'id INTEGER PRIMARY KEY, tenant_id VARCHAR NOT NULL, doctor_id INTEGER NOT NULL, '
                'appointment_date DATE NOT NULL, appointment_time TIME NOT NULL, patient_ref VARCHAR NOT NULL, '
                'notes VARCHAR, status VARCHAR NOT NULL, version INTEGER NOT NULL, '
                'created_at DATETIME, updated_at DATETIME)'
            )
        )

    ensure_appointment_schema(bind=engine)
    ensure_appointment_schema(bind=engine)

    indexes = {index['name'] for index in inspect(engine).get_indexes('appointments')}
    assert ACTIVE_SLOT_INDEX_NAME in indexes

    db = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        store = SqlAlchemyAppointmentStore(db)
        store.insert_if_absent(candidate())
        with pytest.raises(SlotConflict):
            store.insert_if_absent(candidate())
    finally:
        db.close()
        engine.dispose()


def test_concurrent_creates_against_database_admit_exactly_one(tmp_path) -> None:
    engine = build_engine(f'sqlite:///{tmp_path / "race.db"}', timeout_seconds=30)
    Base.metadata.create_all(bind=engine, tables=[Appointment.__table__])
    session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    catalog = SlotCatalog(parse_shifts('10:00-15:00,17:00-20:00'), granularity_minutes=15)

    attempts = 8
    barrier = threading.Barrier(attempts)

    def attempt(index: int) -> str:
        db = session_factory()
        try:
            lifecycle = AppointmentLifecycle(SqlAlchemyAppointmentStore(db), catalog=catalog)
            barrier.wait()
            try:
                lifecycle.create(TENANT, 7, DAY, time(10, 0), f'Patient {index}')
            except SlotConflict:
                return 'conflict'
            return 'booked'
        finally:
            db.close()

    try:
        with ThreadPoolExecutor(max_workers=attempts) as executor:
            outcomes = list(executor.map(attempt, range(attempts)))

        assert outcomes.count('booked') == 1
        assert outcomes.count('conflict') == attempts - 1

        db = session_factory()
        try:
            assert db.query(Appointment).count() == 1
        finally:
            db.close()
    finally:
        engine.dispose()
