"""
Appointment service: the single authority on whether a booking write is legal.

Validation order for a new or moved appointment:
past check, business hours, buffered conflict check, then persist.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Callable, Optional, Sequence, Union

from ..models import (
    Appointment,
    AppointmentFilters,
    AppointmentStatus,
    CreateAppointmentInput,
    TimeSlot,
    UpdateAppointmentInput,
)
from ..models.appointment import OPEN_STATUSES
from ..repositories import AppointmentRepository, UserRepository
from ..utils.date_utils import (
    BusinessHours,
    calculate_end_time,
    is_past_date_time,
    is_within_business_hours,
    local_to_utc,
    minutes_to_time,
    parse_date,
    today_in,
    utc_now,
)
from ..utils.errors import BusinessRuleError, ConflictError, ValidationError
from ..utils.phone_utils import are_phone_numbers_equal, mask_phone_number, normalize_phone_number
from .slot_generator import SlotGenerator

logger = logging.getLogger(__name__)

S = AppointmentStatus

# Directed; a status never transitions to itself.
ALLOWED_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    S.SCHEDULED: frozenset({S.CONFIRMED, S.CANCELLED, S.RESCHEDULED}),
    S.CONFIRMED: frozenset({S.COMPLETED, S.CANCELLED, S.NO_SHOW, S.RESCHEDULED}),
    S.CANCELLED: frozenset(),
    S.COMPLETED: frozenset(),
    S.NO_SHOW: frozenset({S.RESCHEDULED}),
    S.RESCHEDULED: frozenset({S.SCHEDULED}),
}

TERMINAL_FOR_CANCEL = (S.CANCELLED, S.COMPLETED)

# Upper bound on rows returned by one per-user lookup.
USER_APPOINTMENTS_LIMIT = 500

StatusFilter = Union[AppointmentStatus, Sequence[AppointmentStatus], None]


def validate_status_transition(current: Union[str, AppointmentStatus], new: Union[str, AppointmentStatus]) -> None:
    """Raise ``BusinessRuleError`` unless ``current -> new`` is in the transition table."""
    current, new = AppointmentStatus(current), AppointmentStatus(new)
    if new not in ALLOWED_TRANSITIONS[current]:
        raise BusinessRuleError(
            f"Cannot change appointment status from {current.value} to {new.value}",
            context={"from": current.value, "to": new.value},
        )


class AppointmentService:
    """Business rules for booking, moving, cancelling and listing appointments."""

    def __init__(
        self,
        appointments: AppointmentRepository,
        users: UserRepository,
        timezone: str,
        business_hours: BusinessHours,
        buffer_minutes: int = 15,
        default_duration_minutes: int = 30,
        slot_step_minutes: int = 15,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.appointments = appointments
        self.users = users
        self.timezone = timezone
        self.business_hours = business_hours
        self.buffer_minutes = buffer_minutes
        self.default_duration_minutes = default_duration_minutes
        self.clock = clock
        self.slot_generator = SlotGenerator(
            business_hours=business_hours,
            timezone=timezone,
            step_minutes=slot_step_minutes,
            buffer_minutes=buffer_minutes,
            default_slot_duration=default_duration_minutes,
        )

    def today(self) -> date:
        """Current business-local date."""
        return today_in(self.timezone, self.clock())

    def _validate_schedule(self, date_str: str, time_str: str) -> None:
        if is_past_date_time(date_str, time_str, self.timezone, now=self.clock()):
            raise BusinessRuleError(
                "Cannot book appointments in the past",
                context={"date": date_str, "time": time_str},
            )
        if not is_within_business_hours(date_str, time_str, self.business_hours):
            raise BusinessRuleError(
                f"Requested time is outside business hours ({self.business_hours.describe()})",
                context={"date": date_str, "time": time_str},
            )

    async def _check_conflicts(
        self,
        date_str: str,
        time_str: str,
        duration_minutes: int,
        exclude_appointment_id: Optional[str] = None,
    ) -> None:
        start = local_to_utc(date_str, time_str, self.timezone)
        end = calculate_end_time(start, duration_minutes)
        buffer = timedelta(minutes=self.buffer_minutes)

        conflicts = await self.appointments.find_conflicts(
            start - buffer,
            end + buffer,
            exclude_appointment_id=exclude_appointment_id,
        )
        if conflicts:
            ids = [a.id for a in conflicts]
            logger.info(f"Conflict for {date_str} {time_str}: {ids}")
            raise ConflictError(
                "The requested time conflicts with an existing appointment",
                conflicts=ids,
                context={"date": date_str, "time": time_str},
            )

    async def create_appointment(
        self,
        data: CreateAppointmentInput,
        caller_phone: Optional[str] = None,
    ) -> Appointment:
        """
        Book a new appointment.

        The patient phone falls back to the caller's own number when it does
        not normalize.

        Raises:
            ValidationError: no usable phone number
            BusinessRuleError: past date or outside business hours
            ConflictError: buffered overlap with a non-cancelled appointment
        """
        phone = normalize_phone_number(data.patient_phone) or normalize_phone_number(caller_phone)
        if not phone:
            raise ValidationError("A valid phone number is required to book an appointment")
        if caller_phone and not are_phone_numbers_equal(phone, caller_phone):
            logger.info(f"Booking for {mask_phone_number(phone)} on behalf of caller {mask_phone_number(caller_phone)}")

        user = await self.users.find_or_create(phone, data.patient_name)

        self._validate_schedule(data.appointment_date, data.appointment_time)
        duration = data.duration_minutes or self.default_duration_minutes
        await self._check_conflicts(data.appointment_date, data.appointment_time, duration)

        created = await self.appointments.create(
            data.model_copy(update={"patient_phone": phone, "duration_minutes": duration}),
            user_id=user.id,
        )
        await self.users.increment_appointment_count(user.id)

        logger.info(
            f"Booked {created.id} on {created.appointment_date} {created.appointment_time} "
            f"for {mask_phone_number(phone)}"
        )
        return created

    async def update_appointment(self, appointment_id: str, updates: UpdateAppointmentInput) -> Appointment:
        """Apply a status change and/or a move, re-validating a move like a new booking."""
        existing = await self.appointments.find_by_id(appointment_id)

        if updates.status is not None:
            validate_status_transition(existing.status, updates.status)

        if updates.changes_schedule:
            new_date = updates.appointment_date or existing.appointment_date
            new_time = updates.appointment_time or existing.appointment_time
            if (new_date, new_time) != (existing.appointment_date, existing.appointment_time):
                self._validate_schedule(new_date, new_time)
                await self._check_conflicts(
                    new_date,
                    new_time,
                    existing.duration_minutes,
                    exclude_appointment_id=existing.id,
                )

        return await self.appointments.update(appointment_id, updates)

    async def cancel_appointment(self, appointment_id: str, reason: Optional[str] = None) -> Appointment:
        """Soft-cancel; cancelled and completed appointments cannot be cancelled again."""
        existing = await self.appointments.find_by_id(appointment_id)

        if AppointmentStatus(existing.status) in TERMINAL_FOR_CANCEL:
            raise BusinessRuleError(
                f"Cannot cancel an appointment that is already {existing.status}",
                context={"status": existing.status},
            )

        return await self.appointments.cancel(appointment_id, reason)

    async def get_appointment(self, appointment_id: str) -> Appointment:
        return await self.appointments.find_by_id(appointment_id)

    async def list_appointments(self, filters: Optional[AppointmentFilters] = None) -> list[Appointment]:
        return await self.appointments.list_appointments(filters)

    async def find_user_appointments(self, phone: Optional[str], status_filter: StatusFilter = None) -> list[Appointment]:
        """
        Appointments of the user owning ``phone``, earliest first.

        Unknown or unparseable phones have none. At most
        ``USER_APPOINTMENTS_LIMIT`` rows are returned.
        """
        canonical = normalize_phone_number(phone)
        if not canonical:
            return []

        user = await self.users.find_by_phone(canonical)
        if not user:
            return []

        if status_filter is not None and not isinstance(status_filter, AppointmentStatus):
            status_filter = list(status_filter)
        return await self.appointments.list_appointments(
            AppointmentFilters(user_id=user.id, status=status_filter, limit=USER_APPOINTMENTS_LIMIT)
        )

    async def find_open_appointment(self, phone: Optional[str], date_str: str) -> Optional[Appointment]:
        """The caller's scheduled or confirmed appointment on exactly ``date_str``, if any."""
        candidates = await self.find_user_appointments(phone, list(OPEN_STATUSES))
        for appointment in candidates:
            if appointment.appointment_date == date_str:
                return appointment
        return None

    async def get_available_time_slots(self, date_str: str, duration_minutes: Optional[int] = None) -> list[TimeSlot]:
        """Free slots on ``date_str`` as ``TimeSlot`` objects, ascending."""
        window = self.business_hours.window_for(parse_date(date_str))
        if window is None:
            return []

        buffer = timedelta(minutes=self.buffer_minutes)
        day_start = local_to_utc(date_str, minutes_to_time(window[0]), self.timezone)
        day_end = local_to_utc(date_str, minutes_to_time(window[1]), self.timezone)
        # only scheduled and confirmed appointments take a slot off the list
        candidates = await self.appointments.find_conflicts(day_start - buffer, day_end + buffer)
        booked = [a for a in candidates if AppointmentStatus(a.status) in OPEN_STATUSES]

        return self.slot_generator.get_available_slots(
            date_str,
            duration_minutes=duration_minutes,
            booked=[(a.start_time_utc, a.end_time_utc) for a in booked],
            now=self.clock(),
        )

    async def get_available_slots(self, date_str: str, duration_minutes: Optional[int] = None) -> list[str]:
        """Free ``HH:MM`` start times on ``date_str``, ascending."""
        slots = await self.get_available_time_slots(date_str, duration_minutes)
        return [slot.time for slot in slots]
