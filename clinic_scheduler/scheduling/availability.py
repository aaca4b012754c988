"""Availability index: which catalog slots a doctor's active appointments hold.

Always rebuilt from the store on each call. The result is advisory; the
store's write path has the final word on exclusivity.
"""

from dataclasses import dataclass
from datetime import date, time

from clinic_scheduler.scheduling.slots import SlotCatalog
from clinic_scheduler.store.base import AppointmentRecord, AppointmentStore


@dataclass(frozen=True)
class SlotAvailability:
    slot_date: date
    slot_time: time
    appointment_id: int | None = None

    @property
    def is_booked(self) -> bool:
        return self.appointment_id is not None


class AvailabilityIndex:
    def __init__(self, store: AppointmentStore):
        self.store = store

    def active_appointments(self, tenant_id: str, doctor_id: int, slot_date: date) -> list[AppointmentRecord]:
        return self.store.find_active(tenant_id, doctor_id, slot_date)

    def occupied_slots(
        self,
        tenant_id: str,
        doctor_id: int,
        slot_date: date,
        exclude_appointment_id: int | None = None,
    ) -> set[time]:
        return {
            appointment.appointment_time
            for appointment in self.active_appointments(tenant_id, doctor_id, slot_date)
            if appointment.id != exclude_appointment_id
        }

    def day_view(
        self,
        catalog: SlotCatalog,
        tenant_id: str,
        doctor_id: int,
        slot_date: date,
        exclude_appointment_id: int | None = None,
    ) -> list[SlotAvailability]:
        holders = {
            appointment.appointment_time: appointment.id
            for appointment in self.active_appointments(tenant_id, doctor_id, slot_date)
            if appointment.id != exclude_appointment_id
        }
        return [
            SlotAvailability(slot_date=slot_date, slot_time=slot_time, appointment_id=holders.get(slot_time))
            for slot_time in catalog.generate_slots(slot_date)
        ]
