"""Appointment data models."""

from datetime import datetime
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class AppointmentStatus(str, Enum):
    """Possible appointment statuses."""
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    NO_SHOW = "no_show"
    RESCHEDULED = "rescheduled"


# Statuses a caller can still edit or cancel over the phone.
OPEN_STATUSES = (AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED)


def _trim_clock(value):
    # Postgres TIME columns come back as HH:MM:SS
    if isinstance(value, str) and len(value) == 8 and value.count(":") == 2:
        return value[:5]
    return value


class TimeSlot(BaseModel):
    """Represents a bookable time slot."""
    date: str = Field(..., description="Date in YYYY-MM-DD format")
    time: str = Field(..., description="Time in HH:MM format (24-hour)")
    duration_minutes: int = Field(default=30, description="Slot duration in minutes")
    is_available: bool = Field(default=True, description="Whether slot is available")

    @property
    def datetime_str(self) -> str:
        """Get formatted datetime string."""
        return f"{self.date} at {self.time}"


class Appointment(BaseModel):
    """Represents a stored appointment row."""
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    id: str = Field(..., description="Unique appointment ID")
    user_id: str = Field(..., description="Owning user ID")
    patient_name: str
    patient_phone: str = Field(..., description="Canonical phone number")
    appointment_date: str = Field(..., description="Business-local date (YYYY-MM-DD)")
    appointment_time: str = Field(..., description="Business-local time (HH:MM)")
    start_time_utc: datetime
    end_time_utc: datetime
    duration_minutes: int = Field(default=30, gt=0)
    reason: Optional[str] = None
    status: AppointmentStatus = Field(default=AppointmentStatus.SCHEDULED)
    call_sid: Optional[str] = None
    session_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    created_by: str = "system"
    notes: Optional[str] = None

    @field_validator("id", "user_id", mode="before")
    @classmethod
    def _stringify_id(cls, value):
        return str(value) if value is not None else value

    @field_validator("appointment_time", mode="before")
    @classmethod
    def _trim_time(cls, value):
        return _trim_clock(value)

    @property
    def datetime_str(self) -> str:
        """Get formatted datetime string."""
        return f"{self.appointment_date} at {self.appointment_time}"


class CreateAppointmentInput(BaseModel):
    """Fields needed to book an appointment."""
    patient_name: str = Field(..., min_length=1, max_length=100)
    patient_phone: str
    appointment_date: str
    appointment_time: str
    reason: Optional[str] = Field(default=None, max_length=500)
    duration_minutes: Optional[int] = Field(default=None, gt=0)
    call_sid: Optional[str] = None
    session_id: Optional[str] = None


class UpdateAppointmentInput(BaseModel):
    """Partial update; unset fields are left alone."""
    model_config = ConfigDict(use_enum_values=True)

    appointment_date: Optional[str] = None
    appointment_time: Optional[str] = None
    reason: Optional[str] = Field(default=None, max_length=500)
    status: Optional[AppointmentStatus] = None
    notes: Optional[str] = None

    @property
    def changes_schedule(self) -> bool:
        return bool(self.appointment_date or self.appointment_time)


class AppointmentFilters(BaseModel):
    """Query filters for listing appointments."""
    user_id: Optional[str] = None
    patient_phone: Optional[str] = None
    status: Optional[Union[AppointmentStatus, list[AppointmentStatus]]] = None
    date_from: Optional[str] = None
    date_to: Optional[str] = None
    limit: int = Field(default=20, gt=0, le=1000)
    offset: int = Field(default=0, ge=0)

    def status_values(self) -> list[str]:
        if self.status is None:
            return []
        statuses = self.status if isinstance(self.status, list) else [self.status]
        return [AppointmentStatus(s).value for s in statuses]
