"""Persistence layer over Supabase tables."""

from .appointment_repository import AppointmentRepository
from .call_log_repository import CallLogRepository
from .user_repository import UserRepository

__all__ = [
    "AppointmentRepository",
    "CallLogRepository",
    "UserRepository",
]
