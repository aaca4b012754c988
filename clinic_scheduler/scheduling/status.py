"""Appointment status values and the transitions allowed between them."""

from enum import Enum


class AppointmentStatus(str, Enum):
    SCHEDULED = 'scheduled'
    RESCHEDULED = 'rescheduled'
    DONE = 'done'
    CANCELLED = 'cancelled'

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return not self.is_active


class Transition(str, Enum):
    RESCHEDULE = 'reschedule'
    CANCEL = 'cancel'
    COMPLETE = 'complete'


ACTIVE_STATUSES = frozenset({AppointmentStatus.SCHEDULED, AppointmentStatus.RESCHEDULED})
ACTIVE_STATUS_VALUES = tuple(sorted(status.value for status in ACTIVE_STATUSES))

# (current status, transition) -> resulting status. Anything missing is rejected.
TRANSITIONS: dict[tuple[AppointmentStatus, Transition], AppointmentStatus] = {
    (AppointmentStatus.SCHEDULED, Transition.RESCHEDULE): AppointmentStatus.RESCHEDULED,
    (AppointmentStatus.RESCHEDULED, Transition.RESCHEDULE): AppointmentStatus.RESCHEDULED,
    (AppointmentStatus.SCHEDULED, Transition.CANCEL): AppointmentStatus.CANCELLED,
    (AppointmentStatus.RESCHEDULED, Transition.CANCEL): AppointmentStatus.CANCELLED,
    (AppointmentStatus.SCHEDULED, Transition.COMPLETE): AppointmentStatus.DONE,
    (AppointmentStatus.RESCHEDULED, Transition.COMPLETE): AppointmentStatus.DONE,
}

# Repeating a terminal operation on an appointment already in that state is a no-op.
IDEMPOTENT_NOOPS: dict[Transition, AppointmentStatus] = {
    Transition.CANCEL: AppointmentStatus.CANCELLED,
    Transition.COMPLETE: AppointmentStatus.DONE,
}


def next_status(current: AppointmentStatus, transition: Transition) -> AppointmentStatus | None:
    """Return the status ``transition`` leads to, or ``None`` if the table forbids it."""
    return TRANSITIONS.get((current, transition))


def is_idempotent_noop(current: AppointmentStatus, transition: Transition) -> bool:
    return IDEMPOTENT_NOOPS.get(transition) == current
