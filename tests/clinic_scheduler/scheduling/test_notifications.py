import json
import logging
from datetime import date, datetime, time

import httpx
import pytest
import respx
from fastapi import BackgroundTasks

from clinic_scheduler.scheduling import notifications
from clinic_scheduler.scheduling.notifications import (
    AppointmentEvent,
    AppointmentEventType,
    BackgroundTaskDispatcher,
    LoggingDispatcher,
    WebhookDispatcher,
    deliver,
    get_notification_dispatcher,
)
from clinic_scheduler.scheduling.status import AppointmentStatus
from clinic_scheduler.store.base import AppointmentRecord

WEBHOOK_URL = 'https://hooks.example.com/appointments'


@pytest.fixture
def event() -> AppointmentEvent:
    appointment = AppointmentRecord(
        id=42,
        tenant_id='clinic_a',
        doctor_id=7,
        appointment_date=date(2025, 3, 10),
        appointment_time=time(10, 15),
        patient_ref='Jane Doe',
        status=AppointmentStatus.RESCHEDULED,
        version=2,
        created_at=datetime(2025, 3, 1, 9, 0),
        updated_at=datetime(2025, 3, 2, 9, 0),
    )
    return AppointmentEvent(
        event=AppointmentEventType.RESCHEDULED,
        appointment=appointment,
        previous_date=date(2025, 3, 10),
        previous_time=time(10, 0),
    )


def test_event_payload_carries_new_state_and_previous_slot(event: AppointmentEvent) -> None:
    assert event.to_payload() == {
        'event': 'rescheduled',
        'tenantId': 'clinic_a',
        'appointment': {
            'id': 42,
            'doctorId': 7,
            'date': '2025-03-10',
            'time': '10:15',
            'patientRef': 'Jane Doe',
            'status': 'rescheduled',
            'version': 2,
        },
        'previous': {'date': '2025-03-10', 'time': '10:00'},
    }


def test_webhook_dispatcher_posts_payload_with_tenant_header(event: AppointmentEvent) -> None:
    with respx.mock() as m:
        route = m.post(WEBHOOK_URL).respond(202)

        WebhookDispatcher(WEBHOOK_URL, timeout_seconds=2).dispatch(event)

        assert route.called
        request = route.calls.last.request
        assert json.loads(request.content) == event.to_payload()
        assert request.headers['X-Tenant-Code'] == 'clinic_a'


def test_deliver_swallows_webhook_failure(event: AppointmentEvent, caplog: pytest.LogCaptureFixture) -> None:
    with respx.mock() as m:
        m.post(WEBHOOK_URL).respond(500)

        with caplog.at_level(logging.ERROR, logger=notifications.__name__):
            delivered = deliver(WebhookDispatcher(WEBHOOK_URL), event)

    assert delivered is False
    assert 'Failed to deliver rescheduled notification for appointment 42' in caplog.text


def test_deliver_swallows_connection_errors(event: AppointmentEvent) -> None:
    with respx.mock() as m:
        m.post(WEBHOOK_URL).mock(side_effect=httpx.ConnectError('refused'))

        assert deliver(WebhookDispatcher(WEBHOOK_URL), event) is False


def test_logging_dispatcher_logs_event(event: AppointmentEvent, caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.INFO, logger=notifications.__name__):
        assert deliver(LoggingDispatcher(), event) is True

    assert 'Appointment 42 rescheduled (tenant clinic_a, doctor 7, 2025-03-10 10:15)' in caplog.text


def test_background_dispatcher_defers_delivery(event: AppointmentEvent) -> None:
    delivered = []

    class Recorder(LoggingDispatcher):
        def dispatch(self, dispatched_event) -> None:
            delivered.append(dispatched_event)

    background_tasks = BackgroundTasks()
    BackgroundTaskDispatcher(background_tasks, Recorder()).dispatch(event)

    assert delivered == []
    assert len(background_tasks.tasks) == 1

    task = background_tasks.tasks[0]
    task.func(*task.args, **task.kwargs)
    assert delivered == [event]


def test_get_notification_dispatcher_uses_webhook_when_configured(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(notifications.config, 'NOTIFICATION_WEBHOOK_URL', WEBHOOK_URL)
    dispatcher = get_notification_dispatcher()
    assert isinstance(dispatcher, WebhookDispatcher)
    assert dispatcher.url == WEBHOOK_URL

    monkeypatch.setattr(notifications.config, 'NOTIFICATION_WEBHOOK_URL', '')
    assert isinstance(get_notification_dispatcher(), LoggingDispatcher)
