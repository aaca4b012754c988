"""Typed failures raised by the scheduling core.

Every failure the core can produce is one of the classes below. Callers
decide whether to retry; the core never retries on their behalf.
"""


class SchedulingError(Exception):
    code = 'SchedulingError'
    status_code = 500
    retryable = False
    default_message = 'Scheduling request failed.'

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_detail(self) -> dict:
        return {'code': self.code, 'message': self.message, 'retryable': self.retryable}


class TenantRequired(SchedulingError):
    code = 'TenantRequired'
    status_code = 400
    default_message = 'A tenant identifier is required for every scheduling call.'


class InvalidSlot(SchedulingError):
    code = 'InvalidSlot'
    status_code = 400
    default_message = 'The requested time is not a bookable slot for that date.'


class SlotConflict(SchedulingError):
    code = 'SlotConflict'
    status_code = 409
    retryable = True
    default_message = 'That time was just taken, please pick another.'


class VersionConflict(SchedulingError):
    code = 'VersionConflict'
    status_code = 409
    retryable = True
    default_message = 'The appointment was changed by someone else. Reload it and try again.'


class NotFound(SchedulingError):
    code = 'NotFound'
    status_code = 404
    default_message = 'Appointment not found.'


class InvalidState(SchedulingError):
    code = 'InvalidState'
    status_code = 409
    default_message = 'The appointment can no longer be changed.'


class Unavailable(SchedulingError):
    code = 'Unavailable'
    status_code = 503
    retryable = True
    default_message = 'Appointment storage is unavailable. Try again shortly.'


class SlotCatalogConfigError(ValueError):
    """Raised at startup when the business-hour windows cannot be parsed."""
