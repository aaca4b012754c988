"""
Appointment lifecycle manager.

Owns the create, reschedule, cancel and complete transitions. Each one
validates against the transition table, fast-rejects through the conflict
checker, then commits with a single atomic store call. Notifications go out
only after that call returns.

Failures surface as ``SchedulingError`` subclasses. Nothing here retries;
callers re-read and retry ``SlotConflict``, ``VersionConflict`` and
``Unavailable`` themselves.
"""

import logging
from datetime import date, time

from clinic_scheduler.scheduling.availability import AvailabilityIndex, SlotAvailability
from clinic_scheduler.scheduling.conflicts import ConflictChecker
from clinic_scheduler.scheduling.errors import InvalidState, TenantRequired, VersionConflict
from clinic_scheduler.scheduling.notifications import (
    AppointmentEvent,
    AppointmentEventType,
    LoggingDispatcher,
    NotificationDispatcher,
    deliver,
)
from clinic_scheduler.scheduling.slots import SlotCatalog, format_slot_time, get_slot_catalog
from clinic_scheduler.scheduling.status import Transition, is_idempotent_noop, next_status
from clinic_scheduler.store.base import AppointmentCandidate, AppointmentRecord, AppointmentStore

logger = logging.getLogger(__name__)

TERMINAL_EVENTS = {
    Transition.CANCEL: AppointmentEventType.CANCELLED,
    Transition.COMPLETE: AppointmentEventType.COMPLETED,
}


def _require_tenant(tenant_id: str) -> str:
    if not tenant_id or not tenant_id.strip():
        raise TenantRequired()
    return tenant_id.strip()


class AppointmentLifecycle:
    def __init__(
        self,
        store: AppointmentStore,
        catalog: SlotCatalog | None = None,
        dispatcher: NotificationDispatcher | None = None,
    ):
        self.store = store
        self.catalog = catalog or get_slot_catalog()
        self.availability = AvailabilityIndex(store)
        self.checker = ConflictChecker(self.catalog, self.availability)
        self.dispatcher = dispatcher or LoggingDispatcher()

    def get(self, tenant_id: str, appointment_id: int) -> AppointmentRecord:
        return self.store.find_by_id(_require_tenant(tenant_id), appointment_id)

    def list_active(self, tenant_id: str, doctor_id: int, slot_date: date) -> list[AppointmentRecord]:
        return self.availability.active_appointments(_require_tenant(tenant_id), doctor_id, slot_date)

    def day_view(
        self,
        tenant_id: str,
        doctor_id: int,
        slot_date: date,
        exclude_appointment_id: int | None = None,
    ) -> list[SlotAvailability]:
        return self.availability.day_view(
            self.catalog,
            _require_tenant(tenant_id),
            doctor_id,
            slot_date,
            exclude_appointment_id=exclude_appointment_id,
        )

    def create(
        self,
        tenant_id: str,
        doctor_id: int,
        slot_date: date,
        slot_time: time,
        patient_ref: str,
        notes: str | None = None,
    ) -> AppointmentRecord:
        tenant_id = _require_tenant(tenant_id)
        self.checker.check(tenant_id, doctor_id, slot_date, slot_time)

        appointment = self.store.insert_if_absent(
            AppointmentCandidate(
                tenant_id=tenant_id,
                doctor_id=doctor_id,
                appointment_date=slot_date,
                appointment_time=slot_time,
                patient_ref=patient_ref,
                notes=notes,
            )
        )

        logger.info(
            'Created appointment %s for doctor %s at %s %s (tenant %s)',
            appointment.id,
            doctor_id,
            slot_date.isoformat(),
            format_slot_time(slot_time),
            tenant_id,
        )
        self._notify(AppointmentEvent(event=AppointmentEventType.CREATED, appointment=appointment))
        return appointment

    def reschedule(
        self,
        tenant_id: str,
        appointment_id: int,
        new_date: date,
        new_time: time,
        expected_version: int | None = None,
    ) -> AppointmentRecord:
        tenant_id = _require_tenant(tenant_id)
        current = self.store.find_by_id(tenant_id, appointment_id)

        new_status = next_status(current.status, Transition.RESCHEDULE)
        if new_status is None:
            raise InvalidState(f'A {current.status.value} appointment cannot be rescheduled.')

        # The appointment's own slot never counts against it.
        self.checker.check(
            tenant_id,
            current.doctor_id,
            new_date,
            new_time,
            exclude_appointment_id=current.id,
        )

        updated = self.store.update_status_and_slot(
            tenant_id,
            current.id,
            expected_version if expected_version is not None else current.version,
            new_status,
            new_date=new_date,
            new_time=new_time,
        )

        logger.info(
            'Rescheduled appointment %s from %s %s to %s %s (tenant %s)',
            updated.id,
            current.appointment_date.isoformat(),
            format_slot_time(current.appointment_time),
            new_date.isoformat(),
            format_slot_time(new_time),
            tenant_id,
        )
        self._notify(
            AppointmentEvent(
                event=AppointmentEventType.RESCHEDULED,
                appointment=updated,
                previous_date=current.appointment_date,
                previous_time=current.appointment_time,
            )
        )
        return updated

    def cancel(self, tenant_id: str, appointment_id: int, expected_version: int | None = None) -> AppointmentRecord:
        return self._finish(tenant_id, appointment_id, Transition.CANCEL, expected_version)

    def complete(self, tenant_id: str, appointment_id: int, expected_version: int | None = None) -> AppointmentRecord:
        return self._finish(tenant_id, appointment_id, Transition.COMPLETE, expected_version)

    def _finish(
        self,
        tenant_id: str,
        appointment_id: int,
        transition: Transition,
        expected_version: int | None,
    ) -> AppointmentRecord:
        tenant_id = _require_tenant(tenant_id)
        current = self.store.find_by_id(tenant_id, appointment_id)

        if is_idempotent_noop(current.status, transition):
            logger.debug('Appointment %s already %s; nothing to do', current.id, current.status.value)
            return current

        new_status = next_status(current.status, transition)
        if new_status is None:
            raise InvalidState(f'Cannot {transition.value} a {current.status.value} appointment.')

        try:
            updated = self.store.update_status_and_slot(
                tenant_id,
                current.id,
                expected_version if expected_version is not None else current.version,
                new_status,
            )
        except VersionConflict:
            # A concurrent duplicate may have committed the same transition first.
            fresh = self.store.find_by_id(tenant_id, current.id)
            if is_idempotent_noop(fresh.status, transition):
                logger.debug('Appointment %s was %s concurrently; nothing to do', fresh.id, fresh.status.value)
                return fresh
            raise

        logger.info('Appointment %s is now %s (tenant %s)', updated.id, updated.status.value, tenant_id)
        self._notify(AppointmentEvent(event=TERMINAL_EVENTS[transition], appointment=updated))
        return updated

    def _notify(self, event: AppointmentEvent) -> None:
        deliver(self.dispatcher, event)
