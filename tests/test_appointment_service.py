"""
Tests for booking rules: past and hours checks, buffered conflicts,
status transitions and slot availability.

Run with: python -m pytest tests/test_appointment_service.py -v
"""

import logging
from datetime import datetime, timezone
from itertools import product
from unittest.mock import AsyncMock

import pytest

from conftest import NOW, TIMEZONE, booking
from voice_scheduler.models import AppointmentStatus, UpdateAppointmentInput
from voice_scheduler.services.appointment_service import (
    ALLOWED_TRANSITIONS,
    USER_APPOINTMENTS_LIMIT,
    AppointmentService,
    validate_status_transition,
)
from voice_scheduler.utils.date_utils import BusinessHours
from voice_scheduler.utils.errors import (
    BusinessRuleError,
    ConflictError,
    NotFoundError,
    ValidationError,
)

S = AppointmentStatus


class TestCreateAppointment:

    @pytest.mark.asyncio
    async def test_books_and_normalizes_phone(self, service, appointment_repo):
        appointment = await service.create_appointment(booking())

        assert appointment.patient_phone == "+18185551234"
        assert appointment.status == "scheduled"
        assert appointment.duration_minutes == 30
        assert appointment.start_time_utc == datetime(2026, 3, 2, 15, 0, tzinfo=timezone.utc)
        assert appointment.id in appointment_repo.rows

    @pytest.mark.asyncio
    async def test_increments_user_counter(self, service, user_repo):
        appointment = await service.create_appointment(booking())

        assert user_repo.increments == [appointment.user_id]
        assert user_repo.rows[appointment.user_id].total_appointments == 1

    @pytest.mark.asyncio
    async def test_counter_failure_does_not_fail_booking(self, service, user_repo, appointment_repo):
        user_repo.fail_increment = True

        appointment = await service.create_appointment(booking())

        assert appointment.id in appointment_repo.rows
        assert user_repo.increments == []

    @pytest.mark.asyncio
    async def test_same_phone_reuses_user(self, service):
        first = await service.create_appointment(booking(time="10:00"))
        second = await service.create_appointment(booking(time="15:00", patient_phone="(818) 555-1234"))

        assert first.user_id == second.user_id

    @pytest.mark.asyncio
    async def test_falls_back_to_caller_phone(self, service):
        appointment = await service.create_appointment(
            booking(patient_phone="n/a"),
            caller_phone="+13105550000",
        )

        assert appointment.patient_phone == "+13105550000"

    @pytest.mark.asyncio
    async def test_booking_for_another_number_is_logged(self, service, caplog):
        with caplog.at_level(logging.INFO, logger="voice_scheduler.services.appointment_service"):
            await service.create_appointment(booking(), caller_phone="+13105550000")

        assert "on behalf of caller ***-***-0000" in caplog.text

    @pytest.mark.asyncio
    async def test_own_number_is_not_flagged(self, service, caplog):
        with caplog.at_level(logging.INFO, logger="voice_scheduler.services.appointment_service"):
            await service.create_appointment(booking(), caller_phone="(818) 555-1234")

        assert "on behalf of" not in caplog.text

    @pytest.mark.asyncio
    async def test_booking_names_a_nameless_user(self, service, user_repo):
        """A caller first seen on an inbound call has no name until they book."""
        caller = await user_repo.find_or_create("+18185551234")
        assert caller.name is None

        await service.create_appointment(booking(patient_name="Jane Doe"))

        assert (await user_repo.find_by_id(caller.id)).name == "Jane Doe"

    @pytest.mark.asyncio
    async def test_requires_some_phone(self, service):
        with pytest.raises(ValidationError):
            await service.create_appointment(booking(patient_phone="n/a"), caller_phone="anonymous")

    @pytest.mark.asyncio
    async def test_rejects_past_date(self, service, appointment_repo):
        with pytest.raises(BusinessRuleError, match="past"):
            await service.create_appointment(booking(date="2026-02-28"))
        assert appointment_repo.rows == {}

    @pytest.mark.asyncio
    async def test_rejects_outside_business_hours(self, service):
        with pytest.raises(BusinessRuleError, match="business hours"):
            await service.create_appointment(booking(time="08:00"))

    @pytest.mark.asyncio
    async def test_rejects_closed_day(self, service):
        """NOW is early Sunday, so Sunday afternoon is in the future but closed."""
        with pytest.raises(BusinessRuleError):
            await service.create_appointment(booking(date="2026-03-01", time="14:00"))

    @pytest.mark.asyncio
    async def test_custom_duration(self, service):
        appointment = await service.create_appointment(booking(duration_minutes=60))

        assert appointment.duration_minutes == 60
        assert (appointment.end_time_utc - appointment.start_time_utc).seconds == 3600


class TestConflictDetection:

    @pytest.mark.asyncio
    async def test_buffer_blocks_nearby_start(self, service):
        existing = await service.create_appointment(booking(time="14:00"))

        with pytest.raises(ConflictError) as exc_info:
            await service.create_appointment(booking(time="14:35", patient_phone="3105550000"))

        assert exc_info.value.conflicts == [existing.id]

    @pytest.mark.asyncio
    async def test_start_after_buffer_succeeds(self, service):
        await service.create_appointment(booking(time="14:00"))

        appointment = await service.create_appointment(booking(time="14:46", patient_phone="3105550000"))

        assert appointment.appointment_time == "14:46"

    @pytest.mark.asyncio
    async def test_exactly_at_buffer_edge_succeeds(self, service):
        await service.create_appointment(booking(time="14:00"))

        assert await service.create_appointment(booking(time="14:45", patient_phone="3105550000"))
        assert await service.create_appointment(booking(time="13:15", patient_phone="3105550001"))

    @pytest.mark.asyncio
    async def test_cancelled_appointments_do_not_block(self, service):
        existing = await service.create_appointment(booking(time="14:00"))
        await service.cancel_appointment(existing.id)

        appointment = await service.create_appointment(booking(time="14:00", patient_phone="3105550000"))

        assert appointment.appointment_time == "14:00"

    @pytest.mark.asyncio
    async def test_completed_appointments_still_block(self, service, appointment_repo):
        existing = await service.create_appointment(booking(time="14:00"))
        appointment_repo.force_status(existing.id, S.COMPLETED)

        with pytest.raises(ConflictError):
            await service.create_appointment(booking(time="14:00", patient_phone="3105550000"))


class TestUpdateAppointment:

    @pytest.mark.asyncio
    async def test_move_excludes_itself_from_conflicts(self, service):
        appointment = await service.create_appointment(booking(time="10:00"))

        moved = await service.update_appointment(appointment.id, UpdateAppointmentInput(appointment_time="10:15"))

        assert moved.appointment_time == "10:15"
        assert moved.start_time_utc == datetime(2026, 3, 2, 15, 15, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_move_into_another_booking_conflicts(self, service):
        await service.create_appointment(booking(time="10:00"))
        other = await service.create_appointment(booking(time="15:00", patient_phone="3105550000"))

        with pytest.raises(ConflictError):
            await service.update_appointment(other.id, UpdateAppointmentInput(appointment_time="10:30"))

    @pytest.mark.asyncio
    async def test_move_into_past_rejected(self, service):
        appointment = await service.create_appointment(booking())

        with pytest.raises(BusinessRuleError):
            await service.update_appointment(appointment.id, UpdateAppointmentInput(appointment_date="2026-02-27"))

    @pytest.mark.asyncio
    async def test_reason_only_update_keeps_status(self, service):
        appointment = await service.create_appointment(booking())

        updated = await service.update_appointment(appointment.id, UpdateAppointmentInput(reason="checkup"))

        assert updated.reason == "checkup"
        assert updated.status == "scheduled"

    @pytest.mark.asyncio
    async def test_legal_status_change(self, service):
        appointment = await service.create_appointment(booking())

        confirmed = await service.update_appointment(appointment.id, UpdateAppointmentInput(status=S.CONFIRMED))

        assert confirmed.status == "confirmed"

    @pytest.mark.asyncio
    async def test_illegal_status_change(self, service):
        appointment = await service.create_appointment(booking())

        with pytest.raises(BusinessRuleError, match="scheduled to completed"):
            await service.update_appointment(appointment.id, UpdateAppointmentInput(status=S.COMPLETED))

    @pytest.mark.asyncio
    async def test_unknown_id(self, service):
        with pytest.raises(NotFoundError):
            await service.update_appointment("missing", UpdateAppointmentInput(reason="x"))


class TestStatusTransitions:

    def test_table_covers_every_status(self):
        assert set(ALLOWED_TRANSITIONS) == set(AppointmentStatus)

    @pytest.mark.parametrize("current, new", list(product(AppointmentStatus, AppointmentStatus)))
    def test_every_pair(self, current, new):
        if new in ALLOWED_TRANSITIONS[current]:
            validate_status_transition(current, new)
        else:
            with pytest.raises(BusinessRuleError):
                validate_status_transition(current, new)

    def test_no_self_transitions(self):
        for status in AppointmentStatus:
            assert status not in ALLOWED_TRANSITIONS[status]

    def test_accepts_plain_strings(self):
        validate_status_transition("scheduled", "confirmed")

    @pytest.mark.asyncio
    async def test_service_applies_table_to_stored_status(self, service, appointment_repo):
        appointment = await service.create_appointment(booking())
        appointment_repo.force_status(appointment.id, S.NO_SHOW)

        with pytest.raises(BusinessRuleError):
            await service.update_appointment(appointment.id, UpdateAppointmentInput(status=S.CONFIRMED))
        updated = await service.update_appointment(appointment.id, UpdateAppointmentInput(status=S.RESCHEDULED))
        assert updated.status == "rescheduled"


class TestCancelAppointment:

    @pytest.mark.asyncio
    async def test_cancel_records_reason(self, service):
        appointment = await service.create_appointment(booking())

        cancelled = await service.cancel_appointment(appointment.id, "feeling better")

        assert cancelled.status == "cancelled"
        assert cancelled.notes == "feeling better"

    @pytest.mark.asyncio
    async def test_cancel_twice_rejected(self, service):
        appointment = await service.create_appointment(booking())
        await service.cancel_appointment(appointment.id)

        with pytest.raises(BusinessRuleError):
            await service.cancel_appointment(appointment.id)

    @pytest.mark.asyncio
    async def test_cancel_completed_rejected(self, service, appointment_repo):
        appointment = await service.create_appointment(booking())
        appointment_repo.force_status(appointment.id, S.COMPLETED)

        with pytest.raises(BusinessRuleError):
            await service.cancel_appointment(appointment.id)

    @pytest.mark.asyncio
    async def test_cancel_no_show_allowed(self, service, appointment_repo):
        appointment = await service.create_appointment(booking())
        appointment_repo.force_status(appointment.id, S.NO_SHOW)

        cancelled = await service.cancel_appointment(appointment.id)

        assert cancelled.status == "cancelled"


class TestLookups:

    @pytest.mark.asyncio
    async def test_find_user_appointments_by_any_phone_format(self, service):
        await service.create_appointment(booking(time="10:00"))
        await service.create_appointment(booking(date="2026-03-03", time="11:00"))

        found = await service.find_user_appointments("(818) 555-1234")

        assert [a.appointment_date for a in found] == ["2026-03-02", "2026-03-03"]

    @pytest.mark.asyncio
    async def test_find_user_appointments_uses_documented_cap(self, service, appointment_repo):
        await service.create_appointment(booking())
        list_spy = AsyncMock(return_value=[])
        appointment_repo.list_appointments = list_spy

        await service.find_user_appointments("8185551234")

        filters = list_spy.await_args.args[0]
        assert filters.limit == USER_APPOINTMENTS_LIMIT
        assert filters.offset == 0

    @pytest.mark.asyncio
    async def test_find_user_appointments_status_filter(self, service):
        first = await service.create_appointment(booking(time="10:00"))
        await service.create_appointment(booking(date="2026-03-03", time="11:00"))
        await service.cancel_appointment(first.id)

        found = await service.find_user_appointments("8185551234", S.CANCELLED)

        assert [a.id for a in found] == [first.id]

    @pytest.mark.asyncio
    async def test_unknown_or_bad_phone_has_no_appointments(self, service):
        assert await service.find_user_appointments("3105559999") == []
        assert await service.find_user_appointments("anonymous") == []

    @pytest.mark.asyncio
    async def test_find_open_appointment(self, service):
        appointment = await service.create_appointment(booking())

        assert (await service.find_open_appointment("8185551234", "2026-03-02")).id == appointment.id
        assert await service.find_open_appointment("8185551234", "2026-03-03") is None

        await service.cancel_appointment(appointment.id)
        assert await service.find_open_appointment("8185551234", "2026-03-02") is None

    def test_today_uses_business_timezone(self, service):
        """NOW is 12:00 UTC on March 1, still March 1 in New York."""
        assert service.today().isoformat() == "2026-03-01"


class TestAvailableSlots:

    @pytest.mark.asyncio
    async def test_short_day_lists_fitting_starts(self, appointment_repo, user_repo):
        service = AppointmentService(
            appointments=appointment_repo,
            users=user_repo,
            timezone=TIMEZONE,
            business_hours=BusinessHours.uniform("09:00", "10:00", [0, 1, 2, 3, 4]),
            clock=lambda: NOW,
        )

        assert await service.get_available_slots("2026-03-02", 30) == ["09:00", "09:15", "09:30"]

    @pytest.mark.asyncio
    async def test_booking_removes_buffered_neighbours(self, service):
        await service.create_appointment(booking(time="14:00"))

        slots = await service.get_available_slots("2026-03-02")

        for blocked in ("13:30", "13:45", "14:00", "14:15", "14:30"):
            assert blocked not in slots
        assert "13:15" in slots
        assert "14:45" in slots

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [S.COMPLETED, S.NO_SHOW, S.RESCHEDULED])
    async def test_only_open_appointments_take_slots(self, service, appointment_repo, status):
        appointment = await service.create_appointment(booking(time="14:00"))
        appointment_repo.force_status(appointment.id, status)

        slots = await service.get_available_slots("2026-03-02")

        assert "14:00" in slots
        assert "13:45" in slots

    @pytest.mark.asyncio
    async def test_confirmed_appointment_takes_its_slot(self, service, appointment_repo):
        appointment = await service.create_appointment(booking(time="14:00"))
        appointment_repo.force_status(appointment.id, S.CONFIRMED)

        assert "14:00" not in await service.get_available_slots("2026-03-02")

    @pytest.mark.asyncio
    async def test_slots_are_sorted_and_step_aligned(self, service):
        slots = await service.get_available_slots("2026-03-02")

        assert slots == sorted(slots)
        assert slots[0] == "09:00"
        assert slots[-1] == "17:30"
        assert all(int(s[3:]) % 15 == 0 for s in slots)

    @pytest.mark.asyncio
    async def test_closed_day_has_no_slots(self, service):
        assert await service.get_available_slots("2026-03-07") == []

    @pytest.mark.asyncio
    async def test_past_starts_are_dropped(self, appointment_repo, user_repo, business_hours):
        # Monday 10:05 in New York
        service = AppointmentService(
            appointments=appointment_repo,
            users=user_repo,
            timezone=TIMEZONE,
            business_hours=business_hours,
            clock=lambda: datetime(2026, 3, 2, 15, 5, tzinfo=timezone.utc),
        )

        slots = await service.get_available_slots("2026-03-02")

        assert slots[0] == "10:15"

    @pytest.mark.asyncio
    async def test_listed_slots_can_be_booked(self, service):
        await service.create_appointment(booking(time="11:00"))
        slots = await service.get_available_slots("2026-03-02", 30)

        assert "10:15" in slots
        assert "10:30" not in slots
        appointment = await service.create_appointment(booking(time="10:15", patient_phone="3105550000"))

        assert appointment.appointment_time == "10:15"
