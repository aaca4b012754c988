import logging
from datetime import date, time

from clinic_scheduler.scheduling.availability import AvailabilityIndex
from clinic_scheduler.scheduling.errors import SlotConflict
from clinic_scheduler.scheduling.slots import SlotCatalog, format_slot_time

logger = logging.getLogger(__name__)


class ConflictChecker:
    """Fast-reject for bookings that cannot succeed.

    A pass here does not reserve anything; the store re-checks on write.
    """

    def __init__(self, catalog: SlotCatalog, availability: AvailabilityIndex):
        self.catalog = catalog
        self.availability = availability

    def check(
        self,
        tenant_id: str,
        doctor_id: int,
        slot_date: date,
        slot_time: time,
        exclude_appointment_id: int | None = None,
    ) -> None:
        """Raise ``InvalidSlot`` or ``SlotConflict``; return ``None`` to admit."""
        self.catalog.require_slot(slot_date, slot_time)

        occupied = self.availability.occupied_slots(
            tenant_id,
            doctor_id,
            slot_date,
            exclude_appointment_id=exclude_appointment_id,
        )
        if slot_time in occupied:
            logger.warning(
                'Slot %s %s already held for doctor %s (tenant %s)',
                slot_date.isoformat(),
                format_slot_time(slot_time),
                doctor_id,
                tenant_id,
            )
            raise SlotConflict()
