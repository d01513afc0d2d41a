"""Appointment management tools called back by the voice agent."""

import logging
from typing import Any, Optional

from pydantic import BaseModel
from pydantic import ValidationError as SchemaError

from ..models import Appointment, CreateAppointmentInput, UpdateAppointmentInput
from ..models.appointment import OPEN_STATUSES
from ..models.webhooks import (
    AvailableSlotsRequest,
    CancelAppointmentRequest,
    CheckAppointmentRequest,
    CreateAppointmentRequest,
    EditAppointmentRequest,
    EndCallRequest,
    ToolResponse,
    TransferCallRequest,
)
from ..repositories import CallLogRepository
from ..services.appointment_service import AppointmentService
from ..services.session_cache import SessionCache
from ..services.twilio_service import TwilioService
from ..utils.date_utils import normalize_date_string, normalize_time_string
from ..utils.errors import (
    AppError,
    BusinessRuleError,
    ConflictError,
    ParseError,
    ValidationError,
)
from ..utils.helpers import friendly_date, friendly_time, join_for_speech
from ..utils.phone_utils import format_phone_for_display, mask_phone_number, to_digits

logger = logging.getLogger(__name__)

# Short codes returned in ``ToolResponse.error``
VALIDATION_ERROR = "validation_error"
BOOKING_FAILED = "booking_failed"
APPOINTMENT_NOT_FOUND = "appointment_not_found"
UPDATE_FAILED = "update_failed"
CANCELLATION_FAILED = "cancellation_failed"
LOOKUP_FAILED = "lookup_failed"
TRANSFER_FAILED = "transfer_failed"
END_CALL_FAILED = "end_call_failed"

TOOL_SCHEMAS: dict[str, type[BaseModel]] = {
    "create_appointment": CreateAppointmentRequest,
    "check_appointment": CheckAppointmentRequest,
    "edit_appointment": EditAppointmentRequest,
    "cancel_appointment": CancelAppointmentRequest,
    "available_slots": AvailableSlotsRequest,
    "transfer_call": TransferCallRequest,
    "end_call": EndCallRequest,
}


def _failure(message: str, error: str, data: Optional[dict[str, Any]] = None) -> ToolResponse:
    return ToolResponse(success=False, message=message, error=error, data=data)


def _appointment_data(appointment: Appointment) -> dict[str, Any]:
    return {
        "appointment_id": appointment.id,
        "date": appointment.appointment_date,
        "time": appointment.appointment_time,
        "patient_name": appointment.patient_name,
        "phone_number": to_digits(appointment.patient_phone),
        "reason": appointment.reason,
        "status": appointment.status,
    }


class AppointmentTools:
    """
    Tool implementations behind the agent's HTTP callbacks.

    Every tool returns a ``ToolResponse``; errors become ``success=False``
    with a short error code and a message the agent can speak.
    """

    def __init__(
        self,
        appointment_service: AppointmentService,
        twilio_service: Optional[TwilioService] = None,
        call_logs: Optional[CallLogRepository] = None,
        session_cache: Optional[SessionCache] = None,
        transfer_phone_number: Optional[str] = None,
        max_alternatives: int = 5,
    ):
        self.appointments = appointment_service
        self.twilio = twilio_service
        self.call_logs = call_logs
        self.sessions = session_cache
        self.transfer_phone_number = transfer_phone_number
        self.max_alternatives = max_alternatives

    def _normalize_date(self, text: str) -> str:
        return normalize_date_string(text, reference=self.appointments.today())

    async def _caller_phone(self, session_id: Optional[str]) -> Optional[str]:
        if not session_id or self.sessions is None:
            return None
        try:
            session = await self.sessions.get_session(session_id)
        except Exception as e:
            logger.warning(f"Session lookup failed for {session_id}: {e}")
            return None
        return session.phone_number if session else None

    async def _alternatives(self, date: str, time: str) -> list[str]:
        """Free times on the same day closest to the one that was refused."""
        try:
            slots = await self.appointments.get_available_time_slots(date)
        except Exception as e:
            logger.warning(f"Could not compute alternatives for {date}: {e}")
            return []
        nearest = self.appointments.slot_generator.closest_to(slots, time, limit=self.max_alternatives)
        return [slot.time for slot in nearest]

    async def _conflict_response(self, error: ConflictError, date: str, time: str, code: str) -> ToolResponse:
        alternatives = await self._alternatives(date, time)
        message = f"I'm sorry, {friendly_time(time)} on {friendly_date(date)} is not available."
        if alternatives:
            message += f" I could do {join_for_speech([friendly_time(t) for t in alternatives])} that day instead."
        else:
            message += " Would you like to try a different day?"
        return _failure(
            message,
            code,
            data={"date": date, "time": time, "alternatives": alternatives, "conflicts": error.conflicts},
        )

    async def create_appointment(
        self,
        request: CreateAppointmentRequest,
        caller_phone: Optional[str] = None,
    ) -> ToolResponse:
        """Book a new appointment from the agent's collected details."""
        try:
            date = self._normalize_date(request.preferred_date)
            time = normalize_time_string(request.preferred_time)
        except ParseError as e:
            return _failure(
                f"I couldn't understand that date and time. {e.message}. Could you say it again?",
                VALIDATION_ERROR,
            )

        caller_phone = caller_phone or await self._caller_phone(request.session_id)

        try:
            appointment = await self.appointments.create_appointment(
                CreateAppointmentInput(
                    patient_name=request.full_name,
                    patient_phone=request.phone_number,
                    appointment_date=date,
                    appointment_time=time,
                    reason=request.reason_for_visit,
                    call_sid=request.call_sid,
                    session_id=request.session_id,
                ),
                caller_phone=caller_phone,
            )
        except ConflictError as e:
            return await self._conflict_response(e, date, time, BOOKING_FAILED)
        except BusinessRuleError as e:
            return _failure(e.message, BOOKING_FAILED, data={"date": date, "time": time})
        except ValidationError as e:
            return _failure(e.message, VALIDATION_ERROR)
        except Exception as e:
            logger.exception(f"Error booking appointment: {e}")
            return _failure("I had trouble booking that appointment. Please try again.", BOOKING_FAILED)

        reason_text = f" for {appointment.reason}" if appointment.reason else ""
        return ToolResponse(
            success=True,
            message=(
                f"Your appointment is booked for {friendly_date(appointment.appointment_date)} "
                f"at {friendly_time(appointment.appointment_time)}{reason_text}."
            ),
            data=_appointment_data(appointment),
        )

    async def check_appointment(self, request: CheckAppointmentRequest) -> ToolResponse:
        """List the caller's scheduled and confirmed appointments."""
        try:
            appointments = await self.appointments.find_user_appointments(
                request.phone_number, list(OPEN_STATUSES)
            )
        except Exception as e:
            logger.exception(f"Error looking up appointments for {mask_phone_number(request.phone_number)}: {e}")
            return _failure("I had trouble looking up your appointments. Please try again.", LOOKUP_FAILED)

        if not appointments:
            return ToolResponse(
                success=True,
                message=(
                    f"I don't see any upcoming appointments for {format_phone_for_display(request.phone_number)}. "
                    "Would you like to book one?"
                ),
                data={"appointments": [], "count": 0},
            )

        summaries = [
            f"{friendly_date(a.appointment_date)} at {friendly_time(a.appointment_time)}"
            for a in appointments
        ]
        noun = "appointment" if len(appointments) == 1 else "appointments"
        return ToolResponse(
            success=True,
            message=f"You have {len(appointments)} upcoming {noun}: {join_for_speech(summaries, 'and')}.",
            data={"appointments": [_appointment_data(a) for a in appointments], "count": len(appointments)},
        )

    async def edit_appointment(self, request: EditAppointmentRequest) -> ToolResponse:
        """Move the caller's appointment found by phone and original date."""
        if not request.new_date and not request.new_time:
            return _failure(
                "What would you like to change the appointment to? Please tell me the new date or time.",
                VALIDATION_ERROR,
            )

        try:
            original_date = self._normalize_date(request.original_date)
            new_date = self._normalize_date(request.new_date) if request.new_date else None
            new_time = normalize_time_string(request.new_time) if request.new_time else None
        except ParseError as e:
            return _failure(f"I couldn't understand that date or time. {e.message}.", VALIDATION_ERROR)

        try:
            existing = await self.appointments.find_open_appointment(request.phone_number, original_date)
        except Exception as e:
            logger.exception(f"Error finding appointment to edit: {e}")
            return _failure("I had trouble finding that appointment. Please try again.", UPDATE_FAILED)

        if existing is None:
            return _failure(
                f"I couldn't find an appointment on {friendly_date(original_date)} for that number.",
                APPOINTMENT_NOT_FOUND,
            )

        target_date = new_date or existing.appointment_date
        target_time = new_time or existing.appointment_time
        try:
            updated = await self.appointments.update_appointment(
                existing.id,
                UpdateAppointmentInput(appointment_date=new_date, appointment_time=new_time),
            )
        except ConflictError as e:
            return await self._conflict_response(e, target_date, target_time, UPDATE_FAILED)
        except BusinessRuleError as e:
            return _failure(e.message, UPDATE_FAILED, data={"date": target_date, "time": target_time})
        except ValidationError as e:
            return _failure(e.message, VALIDATION_ERROR)
        except Exception as e:
            logger.exception(f"Error updating appointment {existing.id}: {e}")
            return _failure("I had trouble changing that appointment. Please try again.", UPDATE_FAILED)

        data = _appointment_data(updated)
        data.update({"previous_date": existing.appointment_date, "previous_time": existing.appointment_time})
        return ToolResponse(
            success=True,
            message=(
                f"Your appointment has been moved to {friendly_date(updated.appointment_date)} "
                f"at {friendly_time(updated.appointment_time)}."
            ),
            data=data,
        )

    async def cancel_appointment(self, request: CancelAppointmentRequest) -> ToolResponse:
        """Cancel the caller's appointment found by phone and date."""
        try:
            date = self._normalize_date(request.appointment_date)
        except ParseError as e:
            return _failure(f"I couldn't understand that date. {e.message}.", VALIDATION_ERROR)

        try:
            existing = await self.appointments.find_open_appointment(request.phone_number, date)
        except Exception as e:
            logger.exception(f"Error finding appointment to cancel: {e}")
            return _failure("I had trouble finding that appointment. Please try again.", CANCELLATION_FAILED)

        if existing is None:
            return _failure(
                f"I couldn't find an appointment on {friendly_date(date)} for that number.",
                APPOINTMENT_NOT_FOUND,
            )

        try:
            cancelled = await self.appointments.cancel_appointment(existing.id, request.cancellation_reason)
        except AppError as e:
            return _failure(e.message, CANCELLATION_FAILED)
        except Exception as e:
            logger.exception(f"Error cancelling appointment {existing.id}: {e}")
            return _failure("I had trouble cancelling that appointment. Please try again.", CANCELLATION_FAILED)

        return ToolResponse(
            success=True,
            message=(
                f"Your appointment on {friendly_date(cancelled.appointment_date)} "
                f"at {friendly_time(cancelled.appointment_time)} has been cancelled."
            ),
            data=_appointment_data(cancelled),
        )

    async def available_slots(self, request: AvailableSlotsRequest) -> ToolResponse:
        """Free start times on a given day."""
        try:
            date = self._normalize_date(request.date)
        except ParseError as e:
            return _failure(f"I couldn't understand that date. {e.message}.", VALIDATION_ERROR)

        try:
            slots = await self.appointments.get_available_time_slots(date, request.duration_minutes)
        except Exception as e:
            logger.exception(f"Error fetching slots for {date}: {e}")
            return _failure("I had trouble checking availability. Please try again.", LOOKUP_FAILED)

        if not slots:
            message = f"I'm sorry, there are no available times on {friendly_date(date)}. Would you like to check another day?"
        else:
            verbal = self.appointments.slot_generator.format_slots_for_speech(slots, max_slots=5)
            message = f"I have some availability. {verbal}. Which time works best?"

        return ToolResponse(
            success=True,
            message=message,
            data={"date": date, "slots": [s.time for s in slots]},
        )

    async def transfer_call(self, request: TransferCallRequest) -> ToolResponse:
        """Hand the live call over to staff."""
        if not request.call_sid or self.twilio is None or not self.transfer_phone_number:
            logger.warning(f"Transfer requested without a call or staff number (reason: {request.reason})")
            return _failure(
                "I'm not able to transfer the call right now. Can I help you with anything else?",
                TRANSFER_FAILED,
            )

        try:
            await self.twilio.transfer_call(
                request.call_sid,
                self.transfer_phone_number,
                announcement="Please hold while I connect you with a member of our staff.",
            )
        except Exception as e:
            logger.error(f"Error transferring call {request.call_sid}: {e}")
            return _failure(
                "I'm sorry, I couldn't transfer the call. Can I help you with anything else?",
                TRANSFER_FAILED,
            )

        if self.call_logs is not None:
            await self.call_logs.update_intent(
                request.call_sid, "transfer", {"reason": request.reason, "notes": request.notes}
            )

        return ToolResponse(
            success=True,
            message="I'm transferring you to a member of our staff now.",
            data={"call_sid": request.call_sid, "reason": request.reason},
        )

    async def end_call(self, request: EndCallRequest) -> ToolResponse:
        """Record how the conversation ended."""
        logger.info(f"Call ended by agent: outcome={request.outcome} call_sid={request.call_sid}")
        try:
            if request.call_sid and self.call_logs is not None:
                await self.call_logs.update_intent(
                    request.call_sid, "end_call", {"outcome": request.outcome, "summary": request.summary}
                )
        except Exception as e:
            logger.error(f"Error recording end of call {request.call_sid}: {e}")
            return _failure("Thank you for calling. Goodbye!", END_CALL_FAILED)

        return ToolResponse(
            success=True,
            message="Thank you for calling. Have a great day!",
            data={"outcome": request.outcome},
        )

    async def execute_tool(self, tool_name: str, payload: dict[str, Any]) -> ToolResponse:
        """
        Validate ``payload`` against the tool's schema and run it.

        Args:
            tool_name: One of ``TOOL_SCHEMAS``
            payload: Raw JSON body from the agent

        Returns:
            ToolResponse from the tool execution
        """
        tool_map = {
            "create_appointment": self.create_appointment,
            "check_appointment": self.check_appointment,
            "edit_appointment": self.edit_appointment,
            "cancel_appointment": self.cancel_appointment,
            "available_slots": self.available_slots,
            "transfer_call": self.transfer_call,
            "end_call": self.end_call,
        }

        if tool_name not in tool_map:
            return _failure(f"Unknown tool: {tool_name}", VALIDATION_ERROR)

        try:
            request = TOOL_SCHEMAS[tool_name].model_validate(payload)
        except SchemaError as e:
            fields = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors()})
            logger.info(f"Rejected {tool_name} payload: {fields}")
            return _failure(
                f"Some details are missing or invalid: {', '.join(fields)}.",
                VALIDATION_ERROR,
                data={"fields": fields},
            )

        return await tool_map[tool_name](request)
