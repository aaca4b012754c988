"""Appointment model definitions."""

from sqlalchemy import Column, Date, DateTime, Index, Integer, String, Time, text

from clinic_scheduler.database import Base
from clinic_scheduler.scheduling.status import ACTIVE_STATUS_VALUES, AppointmentStatus

ACTIVE_SLOT_INDEX_NAME = 'uq_appointments_active_slot'
_ACTIVE_STATUS_SQL = ', '.join(f"'{value}'" for value in ACTIVE_STATUS_VALUES)
ACTIVE_SLOT_PREDICATE = f'status IN ({_ACTIVE_STATUS_SQL})'


class Appointment(Base):
    """Represents a booked appointment. Rows are never deleted."""
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(String, nullable=False, index=True)
    doctor_id = Column(Integer, nullable=False)
    appointment_date = Column(Date, nullable=False)
    appointment_time = Column(Time, nullable=False)
    patient_ref = Column(String, nullable=False)
    notes = Column(String)
    status = Column(String, nullable=False, default=AppointmentStatus.SCHEDULED.value)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)

    __table_args__ = (
        # Slot exclusivity lives here: at most one active row per tenant/doctor/date/time.
        Index(
            ACTIVE_SLOT_INDEX_NAME,
            'tenant_id',
            'doctor_id',
            'appointment_date',
            'appointment_time',
            unique=True,
            postgresql_where=text(ACTIVE_SLOT_PREDICATE),
            sqlite_where=text(ACTIVE_SLOT_PREDICATE),
        ),
        Index('idx_appointments_doctor_day', 'tenant_id', 'doctor_id', 'appointment_date'),
    )
