import logging
from contextlib import contextmanager
from datetime import date, datetime, time

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session

from clinic_scheduler.models.appointment import ACTIVE_SLOT_INDEX_NAME, Appointment
from clinic_scheduler.scheduling.errors import NotFound, SchedulingError, SlotConflict, Unavailable, VersionConflict
from clinic_scheduler.scheduling.status import ACTIVE_STATUS_VALUES, AppointmentStatus
from clinic_scheduler.store.base import AppointmentCandidate, AppointmentRecord, AppointmentStore

logger = logging.getLogger(__name__)


def to_record(row: Appointment) -> AppointmentRecord:
    return AppointmentRecord(
        id=row.id,
        tenant_id=row.tenant_id,
        doctor_id=row.doctor_id,
        appointment_date=row.appointment_date,
        appointment_time=row.appointment_time,
        patient_ref=row.patient_ref,
        notes=row.notes,
        status=AppointmentStatus(row.status),
        version=row.version,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def is_active_slot_violation(exc: IntegrityError) -> bool:
    message = str(exc.orig)
    # Postgres names the index; SQLite lists the indexed columns.
    return ACTIVE_SLOT_INDEX_NAME in message or 'appointments.appointment_time' in message


class SqlAlchemyAppointmentStore(AppointmentStore):
    """Store backed by the ``appointments`` table.

    Exclusivity is enforced by the partial unique index on active slots, so
    the database itself rejects the losing writer of a race.
    """

    def __init__(self, db: Session):
        self.db = db

    @contextmanager
    def _guard(self, action: str):
        try:
            yield
        except SchedulingError:
            self.db.rollback()
            raise
        except IntegrityError as exc:
            self.db.rollback()
            if is_active_slot_violation(exc):
                raise SlotConflict() from exc
            logger.exception('Appointment store rejected %s', action)
            raise
        except (OperationalError, PoolTimeoutError) as exc:
            self.db.rollback()
            logger.exception('Appointment store timed out during %s', action)
            raise Unavailable() from exc
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception('Appointment store failed during %s', action)
            raise Unavailable() from exc

    def find_active(self, tenant_id: str, doctor_id: int, slot_date: date) -> list[AppointmentRecord]:
        with self._guard('find_active'):
            rows = self.db.query(Appointment).filter(
                Appointment.tenant_id == tenant_id,
                Appointment.doctor_id == doctor_id,
                Appointment.appointment_date == slot_date,
                Appointment.status.in_(ACTIVE_STATUS_VALUES),
            ).order_by(Appointment.appointment_time.asc(), Appointment.id.asc()).all()

            return [to_record(row) for row in rows]

    def find_by_id(self, tenant_id: str, appointment_id: int) -> AppointmentRecord:
        with self._guard('find_by_id'):
            row = self.db.query(Appointment).filter(
                Appointment.id == appointment_id,
                Appointment.tenant_id == tenant_id,
            ).first()

            if row is None:
                raise NotFound()

            return to_record(row)

    def insert_if_absent(self, candidate: AppointmentCandidate) -> AppointmentRecord:
        with self._guard('insert_if_absent'):
            now = datetime.now()
            row = Appointment(
                tenant_id=candidate.tenant_id,
                doctor_id=candidate.doctor_id,
                appointment_date=candidate.appointment_date,
                appointment_time=candidate.appointment_time,
                patient_ref=candidate.patient_ref,
                notes=candidate.notes,
                status=AppointmentStatus.SCHEDULED.value,
                version=1,
                created_at=now,
                updated_at=now,
            )
            self.db.add(row)
            self.db.commit()
            self.db.refresh(row)

            return to_record(row)

    def update_status_and_slot(
        self,
        tenant_id: str,
        appointment_id: int,
        expected_version: int,
        new_status: AppointmentStatus,
        new_date: date | None = None,
        new_time: time | None = None,
    ) -> AppointmentRecord:
        with self._guard('update_status_and_slot'):
            row = self.db.query(Appointment).filter(
                Appointment.id == appointment_id,
                Appointment.tenant_id == tenant_id,
            ).first()

            if row is None:
                raise NotFound()

            current = to_record(row)
            if current.version != expected_version:
                raise VersionConflict()

            now = datetime.now()
            values = {
                'status': new_status.value,
                'version': expected_version + 1,
                'updated_at': now,
            }
            if new_date is not None:
                values['appointment_date'] = new_date
            if new_time is not None:
                values['appointment_time'] = new_time

            result = self.db.execute(
                update(Appointment)
                .where(
                    Appointment.id == appointment_id,
                    Appointment.tenant_id == tenant_id,
                    Appointment.version == expected_version,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )

            if result.rowcount != 1:
                raise VersionConflict()

            self.db.commit()

            return current.with_changes(
                status=new_status,
                appointment_date=values.get('appointment_date', current.appointment_date),
                appointment_time=values.get('appointment_time', current.appointment_time),
                version=expected_version + 1,
                updated_at=now,
            )
