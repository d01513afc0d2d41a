"""Shared fixtures: in-memory repositories, a fixed clock and wired services."""

import uuid
from datetime import datetime, timezone
from typing import Optional

import pytest

from config.settings import Settings
from voice_scheduler.models import (
    Appointment,
    AppointmentFilters,
    AppointmentStatus,
    CallLog,
    CreateAppointmentInput,
    UpdateAppointmentInput,
    User,
)
from voice_scheduler.services.appointment_service import AppointmentService
from voice_scheduler.utils.date_utils import BusinessHours, calculate_end_time, local_to_utc
from voice_scheduler.utils.errors import NotFoundError
from voice_scheduler.utils.phone_utils import normalize_phone_number

TIMEZONE = "America/New_York"

# Sunday 2026-03-01 07:00 in New York
NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeAppointmentRepository:
    """Dict-backed stand-in with the same overlap semantics as the SQL query."""

    def __init__(self, timezone_name: str = TIMEZONE, default_duration_minutes: int = 30):
        self.timezone = timezone_name
        self.default_duration_minutes = default_duration_minutes
        self.rows: dict[str, Appointment] = {}

    async def create(self, data: CreateAppointmentInput, user_id: str) -> Appointment:
        duration = data.duration_minutes or self.default_duration_minutes
        start = local_to_utc(data.appointment_date, data.appointment_time, self.timezone)
        appointment = Appointment(
            id=str(uuid.uuid4()),
            user_id=user_id,
            patient_name=data.patient_name,
            patient_phone=data.patient_phone,
            appointment_date=data.appointment_date,
            appointment_time=data.appointment_time,
            start_time_utc=start,
            end_time_utc=calculate_end_time(start, duration),
            duration_minutes=duration,
            reason=data.reason,
            call_sid=data.call_sid,
            session_id=data.session_id,
            created_at=NOW,
            updated_at=NOW,
        )
        self.rows[appointment.id] = appointment
        return appointment

    async def find_by_id(self, appointment_id: str) -> Appointment:
        if appointment_id not in self.rows:
            raise NotFoundError("Appointment", appointment_id)
        return self.rows[appointment_id]

    async def update(self, appointment_id: str, updates: UpdateAppointmentInput) -> Appointment:
        existing = await self.find_by_id(appointment_id)
        changes = {}
        if updates.changes_schedule:
            new_date = updates.appointment_date or existing.appointment_date
            new_time = updates.appointment_time or existing.appointment_time
            start = local_to_utc(new_date, new_time, self.timezone)
            changes.update(
                appointment_date=new_date,
                appointment_time=new_time,
                start_time_utc=start,
                end_time_utc=calculate_end_time(start, existing.duration_minutes),
            )
        for name in ("reason", "status", "notes"):
            value = getattr(updates, name)
            if value is not None:
                changes[name] = value
        updated = existing.model_copy(update=changes)
        self.rows[appointment_id] = updated
        return updated

    async def cancel(self, appointment_id: str, reason: Optional[str] = None) -> Appointment:
        existing = await self.find_by_id(appointment_id)
        changes = {"status": AppointmentStatus.CANCELLED.value}
        if reason:
            changes["notes"] = reason
        updated = existing.model_copy(update=changes)
        self.rows[appointment_id] = updated
        return updated

    async def list_appointments(self, filters: Optional[AppointmentFilters] = None) -> list[Appointment]:
        filters = filters or AppointmentFilters()
        statuses = filters.status_values()
        rows = [
            a for a in self.rows.values()
            if (not filters.user_id or a.user_id == filters.user_id)
            and (not filters.patient_phone or a.patient_phone == filters.patient_phone)
            and (not statuses or a.status in statuses)
            and (not filters.date_from or a.appointment_date >= filters.date_from)
            and (not filters.date_to or a.appointment_date <= filters.date_to)
        ]
        rows.sort(key=lambda a: a.start_time_utc)
        return rows[filters.offset:filters.offset + filters.limit]

    async def find_conflicts(self, start_utc, end_utc, exclude_appointment_id=None) -> list[Appointment]:
        return sorted(
            (
                a for a in self.rows.values()
                if a.status != AppointmentStatus.CANCELLED.value
                and a.id != exclude_appointment_id
                and a.start_time_utc < end_utc
                and a.end_time_utc > start_utc
            ),
            key=lambda a: a.start_time_utc,
        )

    def force_status(self, appointment_id: str, status: AppointmentStatus) -> None:
        self.rows[appointment_id] = self.rows[appointment_id].model_copy(update={"status": status.value})


class FakeUserRepository:

    def __init__(self):
        self.rows: dict[str, User] = {}
        self.increments: list[str] = []
        self.fail_increment = False

    async def create_anonymous_user(self) -> User:
        user = User(id=str(uuid.uuid4()), metadata={"anonymous": True, "session_id": f"anon_{uuid.uuid4().hex[:12]}"})
        self.rows[user.id] = user
        return user

    async def find_or_create(self, phone_number, name=None) -> User:
        normalized = normalize_phone_number(phone_number)
        if not normalized:
            return await self.create_anonymous_user()
        existing = await self.find_by_phone(normalized)
        if existing:
            if name and not existing.name:
                existing = await self.update(existing.id, {"name": name})
            return existing
        user = User(id=str(uuid.uuid4()), phone_number=normalized, name=name)
        self.rows[user.id] = user
        return user

    async def find_by_phone(self, phone_number) -> Optional[User]:
        normalized = normalize_phone_number(phone_number)
        return next((u for u in self.rows.values() if u.phone_number == normalized), None)

    async def find_by_id(self, user_id: str) -> User:
        if user_id not in self.rows:
            raise NotFoundError("User", user_id)
        return self.rows[user_id]

    async def update(self, user_id: str, updates: dict) -> User:
        user = (await self.find_by_id(user_id)).model_copy(update=updates)
        self.rows[user_id] = user
        return user

    async def update_last_call(self, user_id: str) -> None:
        pass

    async def increment_appointment_count(self, user_id: str) -> None:
        # mirrors the real repository: failures are swallowed
        if self.fail_increment:
            return
        self.increments.append(user_id)
        user = self.rows[user_id]
        self.rows[user_id] = user.model_copy(update={"total_appointments": user.total_appointments + 1})


class FakeCallLogRepository:

    def __init__(self):
        self.created: list[CallLog] = []
        self.updates: list[tuple[str, dict]] = []

    async def create(self, log: CallLog) -> CallLog:
        self.created.append(log)
        return log

    async def update(self, call_sid: str, updates: dict) -> None:
        self.updates.append((call_sid, updates))

    async def mark_completed(self, call_sid: str, duration=None) -> None:
        await self.update(call_sid, {"status": "completed", "duration": duration})

    async def mark_failed(self, call_sid: str, error_message: str) -> None:
        await self.update(call_sid, {"status": "failed", "error_message": error_message})

    async def update_intent(self, call_sid: str, intent_type: str, intent_data: dict) -> None:
        await self.update(call_sid, {"intent_type": intent_type, "intent_data": intent_data})


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        environment="test",
        api_key="test-key",
        business_timezone=TIMEZONE,
        business_hours_start="09:00",
        business_hours_end="18:00",
        business_days=[0, 1, 2, 3, 4],
        appointment_duration_minutes=30,
        appointment_buffer_minutes=15,
        slot_step_minutes=15,
        redis_enabled=False,
        twilio_webhook_signature_validation=False,
        transfer_phone_number="+18005550100",
    )


@pytest.fixture
def business_hours() -> BusinessHours:
    return BusinessHours.uniform("09:00", "18:00", [0, 1, 2, 3, 4])


@pytest.fixture
def appointment_repo() -> FakeAppointmentRepository:
    return FakeAppointmentRepository()


@pytest.fixture
def user_repo() -> FakeUserRepository:
    return FakeUserRepository()


@pytest.fixture
def call_log_repo() -> FakeCallLogRepository:
    return FakeCallLogRepository()


@pytest.fixture
def service(appointment_repo, user_repo, business_hours) -> AppointmentService:
    return AppointmentService(
        appointments=appointment_repo,
        users=user_repo,
        timezone=TIMEZONE,
        business_hours=business_hours,
        buffer_minutes=15,
        default_duration_minutes=30,
        slot_step_minutes=15,
        clock=lambda: NOW,
    )


def booking(date: str = "2026-03-02", time: str = "10:00", **overrides) -> CreateAppointmentInput:
    fields = {
        "patient_name": "Jane Doe",
        "patient_phone": "8185551234",
        "appointment_date": date,
        "appointment_time": time,
        "reason": "cleaning",
    }
    fields.update(overrides)
    return CreateAppointmentInput(**fields)
