"""Slot generator for available appointment times."""

import logging
from datetime import datetime
from typing import Iterable, List, Optional

from ..models import TimeSlot
from ..utils.date_utils import (
    BusinessHours,
    calculate_end_time,
    has_time_conflict,
    local_to_utc,
    minutes_to_time,
    parse_date,
    time_to_minutes,
    utc_now,
)
from ..utils.helpers import friendly_date, friendly_time, join_for_speech

logger = logging.getLogger(__name__)


class SlotGenerator:
    """Generates bookable start times for a single business day."""

    def __init__(
        self,
        business_hours: BusinessHours,
        timezone: str,
        step_minutes: int = 15,
        buffer_minutes: int = 15,
        default_slot_duration: int = 30,
    ):
        """
        Initialize slot generator.

        Args:
            business_hours: Opening window per weekday (0=Monday)
            timezone: IANA timezone the business hours are expressed in
            step_minutes: Granularity of candidate start times
            buffer_minutes: Gap kept around existing appointments
            default_slot_duration: Slot duration when the caller gives none
        """
        self.business_hours = business_hours
        self.timezone = timezone
        self.step_minutes = step_minutes
        self.buffer_minutes = buffer_minutes
        self.default_slot_duration = default_slot_duration

    def candidate_times(self, date: str, duration_minutes: Optional[int] = None) -> List[str]:
        """Every step-aligned start time whose end still fits before closing."""
        duration = duration_minutes or self.default_slot_duration
        window = self.business_hours.window_for(parse_date(date))
        if window is None:
            return []

        opening, closing = window
        return [
            minutes_to_time(start)
            for start in range(opening, closing, self.step_minutes)
            if start + duration <= closing
        ]

    def generate_slots(
        self,
        date: str,
        duration_minutes: Optional[int] = None,
        booked: Optional[Iterable[tuple[datetime, datetime]]] = None,
        now: Optional[datetime] = None,
    ) -> List[TimeSlot]:
        """
        Generate all candidate slots on ``date`` with their availability.

        Args:
            date: Business-local date (YYYY-MM-DD)
            duration_minutes: Requested slot duration
            booked: UTC ``(start, end)`` intervals of blocking appointments
            now: Reference instant for dropping past candidates

        Returns:
            Candidates in ascending time order; past ones are omitted,
            conflicting ones are marked unavailable
        """
        duration = duration_minutes or self.default_slot_duration
        intervals = list(booked or [])
        now = now or utc_now()
        slots = []

        for time_str in self.candidate_times(date, duration):
            start = local_to_utc(date, time_str, self.timezone)
            if start < now:
                continue
            end = calculate_end_time(start, duration)

            is_available = not any(
                has_time_conflict(start, end, existing_start, existing_end, self.buffer_minutes)
                for existing_start, existing_end in intervals
            )
            slots.append(TimeSlot(
                date=date,
                time=time_str,
                duration_minutes=duration,
                is_available=is_available,
            ))

        return slots

    def get_available_slots(
        self,
        date: str,
        duration_minutes: Optional[int] = None,
        booked: Optional[Iterable[tuple[datetime, datetime]]] = None,
        now: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[TimeSlot]:
        """Get only available (not conflicting, not past) slots."""
        available = [
            slot for slot in self.generate_slots(date, duration_minutes, booked, now)
            if slot.is_available
        ]
        logger.debug(f"{len(available)} available slots on {date}")

        if limit:
            return available[:limit]
        return available

    @staticmethod
    def closest_to(slots: List[TimeSlot], time_str: str, limit: int = 5) -> List[TimeSlot]:
        """Pick the ``limit`` slots nearest to ``time_str``, returned in time order."""
        target = time_to_minutes(time_str)
        nearest = sorted(slots, key=lambda s: (abs(time_to_minutes(s.time) - target), s.time))[:limit]
        return sorted(nearest, key=lambda s: s.time)

    def format_slots_for_speech(
        self,
        slots: List[TimeSlot],
        max_slots: int = 5,
    ) -> str:
        """
        Format slots for verbal output.

        Args:
            slots: List of TimeSlot objects
            max_slots: Maximum slots to include in speech

        Returns:
            Human-readable string for TTS
        """
        if not slots:
            return "I don't have any available slots for that day."

        display_slots = slots[:max_slots]
        total = len(slots)

        # Group by date for cleaner output
        by_date: dict[str, list[str]] = {}
        for slot in display_slots:
            by_date.setdefault(slot.date, []).append(friendly_time(slot.time))

        parts = [
            f"{friendly_date(date_str)} at {join_for_speech(times)}"
            for date_str, times in by_date.items()
        ]
        result = "; ".join(parts)

        if total > max_slots:
            result += f". I have {total - max_slots} more slots available if these don't work for you."

        return result
