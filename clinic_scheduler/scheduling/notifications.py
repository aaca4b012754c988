"""
Notification dispatch for committed appointment transitions.

Dispatchers are informed after the store commits and are never consulted
before it. Delivery is best-effort: a failed delivery is logged and the
committed transition stands.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, time
from enum import Enum

import httpx
from fastapi import BackgroundTasks

from clinic_scheduler.core import config
from clinic_scheduler.scheduling.slots import format_slot_time
from clinic_scheduler.store.base import AppointmentRecord

logger = logging.getLogger(__name__)


class AppointmentEventType(str, Enum):
    CREATED = 'created'
    RESCHEDULED = 'rescheduled'
    CANCELLED = 'cancelled'
    COMPLETED = 'completed'


@dataclass(frozen=True)
class AppointmentEvent:
    event: AppointmentEventType
    appointment: AppointmentRecord
    previous_date: date | None = None
    previous_time: time | None = None

    @property
    def tenant_id(self) -> str:
        return self.appointment.tenant_id

    def to_payload(self) -> dict:
        appointment = self.appointment
        payload = {
            'event': self.event.value,
            'tenantId': appointment.tenant_id,
            'appointment': {
                'id': appointment.id,
                'doctorId': appointment.doctor_id,
                'date': appointment.appointment_date.isoformat(),
                'time': format_slot_time(appointment.appointment_time),
                'patientRef': appointment.patient_ref,
                'status': appointment.status.value,
                'version': appointment.version,
            },
        }
        if self.previous_date is not None and self.previous_time is not None:
            payload['previous'] = {
                'date': self.previous_date.isoformat(),
                'time': format_slot_time(self.previous_time),
            }
        return payload


class NotificationDispatcher(ABC):
    @abstractmethod
    def dispatch(self, event: AppointmentEvent) -> None:
        """Deliver ``event``. May raise; callers go through ``deliver``."""


class LoggingDispatcher(NotificationDispatcher):
    def dispatch(self, event: AppointmentEvent) -> None:
        logger.info(
            'Appointment %s %s (tenant %s, doctor %s, %s %s)',
            event.appointment.id,
            event.event.value,
            event.tenant_id,
            event.appointment.doctor_id,
            event.appointment.appointment_date.isoformat(),
            format_slot_time(event.appointment.appointment_time),
        )


class WebhookDispatcher(NotificationDispatcher):
    def __init__(self, url: str, timeout_seconds: float | None = None):
        self.url = url
        self.timeout_seconds = timeout_seconds or config.NOTIFICATION_TIMEOUT_SECONDS

    def dispatch(self, event: AppointmentEvent) -> None:
        with httpx.Client(timeout=self.timeout_seconds) as client:
            resp = client.post(
                self.url,
                json=event.to_payload(),
                headers={config.TENANT_HEADER: event.tenant_id},
            )
            resp.raise_for_status()


class BackgroundTaskDispatcher(NotificationDispatcher):
    """Defers delivery until FastAPI has sent the response."""

    def __init__(self, background_tasks: BackgroundTasks, delegate: NotificationDispatcher):
        self.background_tasks = background_tasks
        self.delegate = delegate

    def dispatch(self, event: AppointmentEvent) -> None:
        self.background_tasks.add_task(deliver, self.delegate, event)


def deliver(dispatcher: NotificationDispatcher, event: AppointmentEvent) -> bool:
    try:
        dispatcher.dispatch(event)
    except Exception:
        logger.exception(
            'Failed to deliver %s notification for appointment %s',
            event.event.value,
            event.appointment.id,
        )
        return False
    return True


def get_notification_dispatcher() -> NotificationDispatcher:
    if config.NOTIFICATION_WEBHOOK_URL:
        return WebhookDispatcher(config.NOTIFICATION_WEBHOOK_URL)
    return LoggingDispatcher()
