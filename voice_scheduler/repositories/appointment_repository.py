"""Appointment persistence against the Supabase ``appointments`` table."""

import logging
from datetime import datetime
from typing import Optional

from ..models import Appointment, AppointmentFilters, AppointmentStatus, CreateAppointmentInput, UpdateAppointmentInput
from ..services.database import Database
from ..utils.date_utils import calculate_end_time, local_to_utc, to_iso_utc, utc_now
from ..utils.errors import NotFoundError

logger = logging.getLogger(__name__)

TABLE = "appointments"


class AppointmentRepository:
    """
    CRUD plus the UTC range-overlap query used for conflict detection.

    The repository derives ``start_time_utc``/``end_time_utc`` from the civil
    date and time on every write, so the stored interval always matches the
    displayed one.
    """

    def __init__(self, db: Database, timezone: str, default_duration_minutes: int = 30):
        self.db = db
        self.timezone = timezone
        self.default_duration_minutes = default_duration_minutes

    def _interval(self, date: str, time: str, duration_minutes: int) -> tuple[str, str]:
        start = local_to_utc(date, time, self.timezone)
        end = calculate_end_time(start, duration_minutes)
        return to_iso_utc(start), to_iso_utc(end)

    async def create(self, data: CreateAppointmentInput, user_id: str) -> Appointment:
        """Insert a new ``scheduled`` appointment."""
        duration = data.duration_minutes or self.default_duration_minutes
        start_iso, end_iso = self._interval(data.appointment_date, data.appointment_time, duration)
        now = to_iso_utc(utc_now())

        row = {
            "user_id": user_id,
            "patient_name": data.patient_name,
            "patient_phone": data.patient_phone,
            "appointment_date": data.appointment_date,
            "appointment_time": data.appointment_time,
            "start_time_utc": start_iso,
            "end_time_utc": end_iso,
            "duration_minutes": duration,
            "reason": data.reason,
            "status": AppointmentStatus.SCHEDULED.value,
            "call_sid": data.call_sid,
            "session_id": data.session_id,
            "created_at": now,
            "updated_at": now,
            "created_by": "system",
        }

        response = await self.db.execute(self.db.table(TABLE).insert(row), "create appointment")
        created = Appointment(**response.data[0])
        logger.info(f"Created appointment {created.id} for user {user_id} on {created.appointment_date}")
        return created

    async def find_by_id(self, appointment_id: str) -> Appointment:
        response = await self.db.execute(
            self.db.table(TABLE).select("*").eq("id", appointment_id).limit(1),
            "find appointment",
        )
        if not response.data:
            raise NotFoundError("Appointment", appointment_id)
        return Appointment(**response.data[0])

    async def update(self, appointment_id: str, updates: UpdateAppointmentInput) -> Appointment:
        """Apply a partial update, recomputing the UTC interval when the schedule moves."""
        row: dict = {"updated_at": to_iso_utc(utc_now())}

        if updates.changes_schedule:
            existing = await self.find_by_id(appointment_id)
            new_date = updates.appointment_date or existing.appointment_date
            new_time = updates.appointment_time or existing.appointment_time
            start_iso, end_iso = self._interval(new_date, new_time, existing.duration_minutes)
            row.update({
                "appointment_date": new_date,
                "appointment_time": new_time,
                "start_time_utc": start_iso,
                "end_time_utc": end_iso,
            })

        if updates.reason is not None:
            row["reason"] = updates.reason
        if updates.status is not None:
            row["status"] = AppointmentStatus(updates.status).value
        if updates.notes is not None:
            row["notes"] = updates.notes

        response = await self.db.execute(
            self.db.table(TABLE).update(row).eq("id", appointment_id),
            "update appointment",
        )
        if not response.data:
            raise NotFoundError("Appointment", appointment_id)

        logger.info(f"Updated appointment {appointment_id}: {sorted(row)}")
        return Appointment(**response.data[0])

    async def cancel(self, appointment_id: str, reason: Optional[str] = None) -> Appointment:
        """Soft delete: status becomes ``cancelled``, the row stays."""
        row = {
            "status": AppointmentStatus.CANCELLED.value,
            "updated_at": to_iso_utc(utc_now()),
        }
        if reason:
            row["notes"] = reason

        response = await self.db.execute(
            self.db.table(TABLE).update(row).eq("id", appointment_id),
            "cancel appointment",
        )
        if not response.data:
            raise NotFoundError("Appointment", appointment_id)

        logger.info(f"Cancelled appointment {appointment_id}")
        return Appointment(**response.data[0])

    async def list_appointments(self, filters: Optional[AppointmentFilters] = None) -> list[Appointment]:
        filters = filters or AppointmentFilters()
        query = self.db.table(TABLE).select("*")

        if filters.user_id:
            query = query.eq("user_id", filters.user_id)
        if filters.patient_phone:
            query = query.eq("patient_phone", filters.patient_phone)

        statuses = filters.status_values()
        if len(statuses) == 1:
            query = query.eq("status", statuses[0])
        elif statuses:
            query = query.in_("status", statuses)

        if filters.date_from:
            query = query.gte("appointment_date", filters.date_from)
        if filters.date_to:
            query = query.lte("appointment_date", filters.date_to)

        query = (
            query.order("start_time_utc", desc=False)
            .range(filters.offset, filters.offset + filters.limit - 1)
        )
        response = await self.db.execute(query, "list appointments")
        return [Appointment(**row) for row in response.data]

    async def find_conflicts(
        self,
        start_utc: datetime,
        end_utc: datetime,
        exclude_appointment_id: Optional[str] = None,
    ) -> list[Appointment]:
        """
        Non-cancelled appointments whose stored interval intersects
        ``(start_utc, end_utc)``. Callers pass an already-buffered window.
        """
        query = (
            self.db.table(TABLE)
            .select("*")
            .neq("status", AppointmentStatus.CANCELLED.value)
            .lt("start_time_utc", to_iso_utc(end_utc))
            .gt("end_time_utc", to_iso_utc(start_utc))
        )
        if exclude_appointment_id:
            query = query.neq("id", exclude_appointment_id)

        response = await self.db.execute(query.order("start_time_utc", desc=False), "check appointment conflicts")
        return [Appointment(**row) for row in response.data]
