import logging
from datetime import date, datetime, time

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException, Query, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic_scheduler.core import config
from clinic_scheduler.database import SessionLocal, ensure_appointment_schema
from clinic_scheduler.scheduling.availability import SlotAvailability
from clinic_scheduler.scheduling.errors import SchedulingError, TenantRequired, Unavailable
from clinic_scheduler.scheduling.lifecycle import AppointmentLifecycle
from clinic_scheduler.scheduling.notifications import BackgroundTaskDispatcher, get_notification_dispatcher
from clinic_scheduler.scheduling.slots import format_slot_time, parse_slot_time
from clinic_scheduler.store.base import AppointmentRecord
from clinic_scheduler.store.sql_store import SqlAlchemyAppointmentStore

router = APIRouter(tags=['appointments'])

logger = logging.getLogger(__name__)

MAX_PATIENT_REF_LENGTH = 200
MAX_APPOINTMENT_NOTES_LENGTH = 600


def _coerce_slot_time(value):
    if isinstance(value, str):
        return parse_slot_time(value)
    return value


class CreateAppointmentRequest(BaseModel):
    doctor_id: int = Field(alias='doctorId', gt=0)
    slot_date: date = Field(alias='date')
    slot_time: time = Field(alias='time')
    patient_ref: str = Field(alias='patientRef')
    notes: str | None = None

    class Config:
        populate_by_name = True

    @field_validator('slot_time', mode='before')
    @classmethod
    def validate_slot_time(cls, value):
        return _coerce_slot_time(value)

    @field_validator('patient_ref')
    @classmethod
    def validate_patient_ref(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Patient reference is required.')
        if len(normalized) > MAX_PATIENT_REF_LENGTH:
            raise ValueError(f'Patient reference must be {MAX_PATIENT_REF_LENGTH} characters or fewer.')
        return normalized

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip()
        if not normalized:
            return None

        if len(normalized) > MAX_APPOINTMENT_NOTES_LENGTH:
            raise ValueError(f'Notes must be {MAX_APPOINTMENT_NOTES_LENGTH} characters or fewer.')

        return normalized


class RescheduleAppointmentRequest(BaseModel):
    slot_date: date = Field(alias='date')
    slot_time: time = Field(alias='time')
    version: int | None = Field(default=None, gt=0)

    class Config:
        populate_by_name = True

    @field_validator('slot_time', mode='before')
    @classmethod
    def validate_slot_time(cls, value):
        return _coerce_slot_time(value)


class AppointmentResponse(BaseModel):
    id: int
    doctor_id: int = Field(alias='doctorId')
    slot_date: date = Field(alias='date')
    slot_time: str = Field(alias='time')
    patient_ref: str = Field(alias='patientRef')
    notes: str | None = None
    status: str
    version: int
    is_overdue: bool = Field(alias='isOverdue')
    created_at: datetime = Field(alias='createdAt')
    updated_at: datetime = Field(alias='updatedAt')

    class Config:
        populate_by_name = True

    @classmethod
    def from_record(cls, record: AppointmentRecord, now: datetime | None = None) -> 'AppointmentResponse':
        return cls(
            id=record.id,
            doctor_id=record.doctor_id,
            slot_date=record.appointment_date,
            slot_time=format_slot_time(record.appointment_time),
            patient_ref=record.patient_ref,
            notes=record.notes,
            status=record.status.value,
            version=record.version,
            is_overdue=record.is_overdue(now or datetime.now()),
            created_at=record.created_at,
            updated_at=record.updated_at,
        )


class SlotResponse(BaseModel):
    slot_date: date = Field(alias='date')
    slot_time: str = Field(alias='time')
    is_booked: bool = Field(alias='isBooked')

    class Config:
        populate_by_name = True

    @classmethod
    def from_availability(cls, slot: SlotAvailability) -> 'SlotResponse':
        return cls(
            slot_date=slot.slot_date,
            slot_time=format_slot_time(slot.slot_time),
            is_booked=slot.is_booked,
        )


def ensure_database_ready() -> None:
    try:
        ensure_appointment_schema()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=Unavailable('Database unavailable. Verify DATABASE_URL and database credentials.').to_detail(),
        ) from exc


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_tenant_id(tenant_code: str | None = Header(default=None, alias=config.TENANT_HEADER)) -> str:
    normalized = (tenant_code or '').strip()
    if not normalized:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=TenantRequired(f'{config.TENANT_HEADER} header is required.').to_detail(),
        )
    return normalized


def get_lifecycle(background_tasks: BackgroundTasks, db: Session = Depends(get_db)) -> AppointmentLifecycle:
    return AppointmentLifecycle(
        SqlAlchemyAppointmentStore(db),
        dispatcher=BackgroundTaskDispatcher(background_tasks, get_notification_dispatcher()),
    )


def to_http_exception(exc: SchedulingError) -> HTTPException:
    if exc.status_code >= 500:
        logger.warning('Scheduling request failed: %s', exc.message)
    return HTTPException(status_code=exc.status_code, detail=exc.to_detail())


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: CreateAppointmentRequest,
    tenant_id: str = Depends(get_tenant_id),
    lifecycle: AppointmentLifecycle = Depends(get_lifecycle),
):
    ensure_database_ready()

    try:
        appointment = lifecycle.create(
            tenant_id,
            data.doctor_id,
            data.slot_date,
            data.slot_time,
            data.patient_ref,
            notes=data.notes,
        )
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    return AppointmentResponse.from_record(appointment)


@router.get('', response_model=list[AppointmentResponse])
def list_active_appointments(
    doctor_id: int = Query(..., alias='doctorId'),
    slot_date: date = Query(..., alias='date'),
    tenant_id: str = Depends(get_tenant_id),
    lifecycle: AppointmentLifecycle = Depends(get_lifecycle),
):
    ensure_database_ready()

    try:
        appointments = lifecycle.list_active(tenant_id, doctor_id, slot_date)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    now = datetime.now()
    return [AppointmentResponse.from_record(appointment, now) for appointment in appointments]


@router.get('/slots', response_model=list[SlotResponse])
def list_day_slots(
    doctor_id: int = Query(..., alias='doctorId'),
    slot_date: date = Query(..., alias='date'),
    exclude_appointment_id: int | None = Query(default=None, alias='excludeAppointmentId'),
    tenant_id: str = Depends(get_tenant_id),
    lifecycle: AppointmentLifecycle = Depends(get_lifecycle),
):
    ensure_database_ready()

    try:
        slots = lifecycle.day_view(
            tenant_id,
            doctor_id,
            slot_date,
            exclude_appointment_id=exclude_appointment_id,
        )
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    return [SlotResponse.from_availability(slot) for slot in slots]


@router.get('/{appointment_id}', response_model=AppointmentResponse)
def get_appointment(
    appointment_id: int,
    tenant_id: str = Depends(get_tenant_id),
    lifecycle: AppointmentLifecycle = Depends(get_lifecycle),
):
    ensure_database_ready()

    try:
        appointment = lifecycle.get(tenant_id, appointment_id)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    return AppointmentResponse.from_record(appointment)


@router.patch('/{appointment_id}', response_model=AppointmentResponse)
def reschedule_appointment(
    appointment_id: int,
    data: RescheduleAppointmentRequest,
    tenant_id: str = Depends(get_tenant_id),
    lifecycle: AppointmentLifecycle = Depends(get_lifecycle),
):
    ensure_database_ready()

    try:
        appointment = lifecycle.reschedule(
            tenant_id,
            appointment_id,
            data.slot_date,
            data.slot_time,
            expected_version=data.version,
        )
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    return AppointmentResponse.from_record(appointment)


@router.post('/{appointment_id}/cancel', response_model=AppointmentResponse)
def cancel_appointment(
    appointment_id: int,
    tenant_id: str = Depends(get_tenant_id),
    lifecycle: AppointmentLifecycle = Depends(get_lifecycle),
):
    ensure_database_ready()

    try:
        appointment = lifecycle.cancel(tenant_id, appointment_id)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    return AppointmentResponse.from_record(appointment)


@router.post('/{appointment_id}/complete', response_model=AppointmentResponse)
def complete_appointment(
    appointment_id: int,
    tenant_id: str = Depends(get_tenant_id),
    lifecycle: AppointmentLifecycle = Depends(get_lifecycle),
):
    ensure_database_ready()

    try:
        appointment = lifecycle.complete(tenant_id, appointment_id)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    return AppointmentResponse.from_record(appointment)
