import itertools
import threading
from contextlib import contextmanager
from datetime import date, datetime, time

from clinic_scheduler.core import config
from clinic_scheduler.scheduling.errors import NotFound, SlotConflict, Unavailable, VersionConflict
from clinic_scheduler.scheduling.status import AppointmentStatus
from clinic_scheduler.store.base import AppointmentCandidate, AppointmentRecord, AppointmentStore


class InMemoryAppointmentStore(AppointmentStore):
    """Process-local store. One lock serializes every write, which makes each
    call atomic with respect to the others."""

    def __init__(self, timeout_seconds: float | None = None):
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else config.STORE_TIMEOUT_SECONDS
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._records: dict[int, AppointmentRecord] = {}

    @contextmanager
    def _locked(self):
        if not self._lock.acquire(timeout=self.timeout_seconds):
            raise Unavailable('Timed out waiting for the appointment store.')
        try:
            yield
        finally:
            self._lock.release()

    def _holder_of(
        self,
        tenant_id: str,
        doctor_id: int,
        slot_date: date,
        slot_time: time,
        exclude_id: int | None = None,
    ) -> AppointmentRecord | None:
        for record in self._records.values():
            if record.id != exclude_id and record.occupies(tenant_id, doctor_id, slot_date, slot_time):
                return record
        return None

    def find_active(self, tenant_id: str, doctor_id: int, slot_date: date) -> list[AppointmentRecord]:
        with self._locked():
            matches = [
                record
                for record in self._records.values()
                if record.is_active
                and record.tenant_id == tenant_id
                and record.doctor_id == doctor_id
                and record.appointment_date == slot_date
            ]
        return sorted(matches, key=lambda record: (record.appointment_time, record.id))

    def find_by_id(self, tenant_id: str, appointment_id: int) -> AppointmentRecord:
        with self._locked():
            record = self._records.get(appointment_id)
        if record is None or record.tenant_id != tenant_id:
            raise NotFound()
        return record

    def insert_if_absent(self, candidate: AppointmentCandidate) -> AppointmentRecord:
        with self._locked():
            if self._holder_of(
                candidate.tenant_id,
                candidate.doctor_id,
                candidate.appointment_date,
                candidate.appointment_time,
            ):
                raise SlotConflict()

            now = datetime.now()
            record = AppointmentRecord(
                id=next(self._ids),
                tenant_id=candidate.tenant_id,
                doctor_id=candidate.doctor_id,
                appointment_date=candidate.appointment_date,
                appointment_time=candidate.appointment_time,
                patient_ref=candidate.patient_ref,
                notes=candidate.notes,
                status=AppointmentStatus.SCHEDULED,
                version=1,
                created_at=now,
                updated_at=now,
            )
            self._records[record.id] = record
            return record

    def update_status_and_slot(
        self,
        tenant_id: str,
        appointment_id: int,
        expected_version: int,
        new_status: AppointmentStatus,
        new_date: date | None = None,
        new_time: time | None = None,
    ) -> AppointmentRecord:
        with self._locked():
            current = self._records.get(appointment_id)
            if current is None or current.tenant_id != tenant_id:
                raise NotFound()
            if current.version != expected_version:
                raise VersionConflict()

            target_date = new_date if new_date is not None else current.appointment_date
            target_time = new_time if new_time is not None else current.appointment_time

            if new_status.is_active and self._holder_of(
                tenant_id,
                current.doctor_id,
                target_date,
                target_time,
                exclude_id=current.id,
            ):
                raise SlotConflict()

            updated = current.with_changes(
                status=new_status,
                appointment_date=target_date,
                appointment_time=target_time,
                version=current.version + 1,
                updated_at=datetime.now(),
            )
            self._records[updated.id] = updated
            return updated
