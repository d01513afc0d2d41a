"""Data models package."""

from .appointment import (
    Appointment,
    AppointmentFilters,
    AppointmentStatus,
    CreateAppointmentInput,
    TimeSlot,
    UpdateAppointmentInput,
)
from .call_log import CallLog
from .user import CallSession, User

__all__ = [
    "Appointment",
    "AppointmentFilters",
    "AppointmentStatus",
    "CreateAppointmentInput",
    "TimeSlot",
    "UpdateAppointmentInput",
    "CallLog",
    "CallSession",
    "User",
]
