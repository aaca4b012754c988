"""
Appointment store contract.

The store is the only writer of ground truth. Slot exclusivity is decided
by its write path: ``insert_if_absent`` and ``update_status_and_slot`` both
re-check the active-slot invariant atomically at commit time, so two racing
requests can never both succeed. Every call is scoped by tenant.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import date, datetime, time

from clinic_scheduler.scheduling.status import AppointmentStatus


@dataclass(frozen=True)
class AppointmentCandidate:
    tenant_id: str
    doctor_id: int
    appointment_date: date
    appointment_time: time
    patient_ref: str
    notes: str | None = None


@dataclass(frozen=True)
class AppointmentRecord:
    id: int
    tenant_id: str
    doctor_id: int
    appointment_date: date
    appointment_time: time
    patient_ref: str
    status: AppointmentStatus
    version: int
    created_at: datetime
    updated_at: datetime
    notes: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status.is_active

    @property
    def starts_at(self) -> datetime:
        return datetime.combine(self.appointment_date, self.appointment_time)

    def is_overdue(self, now: datetime) -> bool:
        # Display-only; never stored as a status.
        return self.is_active and self.starts_at < now

    def occupies(self, tenant_id: str, doctor_id: int, slot_date: date, slot_time: time) -> bool:
        return (
            self.is_active
            and self.tenant_id == tenant_id
            and self.doctor_id == doctor_id
            and self.appointment_date == slot_date
            and self.appointment_time == slot_time
        )

    def with_changes(self, **changes) -> 'AppointmentRecord':
        return replace(self, **changes)


class AppointmentStore(ABC):
    @abstractmethod
    def find_active(self, tenant_id: str, doctor_id: int, slot_date: date) -> list[AppointmentRecord]:
        """Active appointments for one doctor on one day, ordered by time."""

    @abstractmethod
    def find_by_id(self, tenant_id: str, appointment_id: int) -> AppointmentRecord:
        """Raises ``NotFound`` when the id is unknown to this tenant."""

    @abstractmethod
    def insert_if_absent(self, candidate: AppointmentCandidate) -> AppointmentRecord:
        """Insert a scheduled appointment or raise ``SlotConflict``."""

    @abstractmethod
    def update_status_and_slot(
        self,
        tenant_id: str,
        appointment_id: int,
        expected_version: int,
        new_status: AppointmentStatus,
        new_date: date | None = None,
        new_time: time | None = None,
    ) -> AppointmentRecord:
        """Compare-and-swap update.

        Raises ``NotFound``, ``VersionConflict`` when ``expected_version`` is
        stale, or ``SlotConflict`` when the new slot is held by another
        active appointment.
        """
