"""
Legacy end-of-session callback handling.

The agent posts a single callback with loosely structured extracted data.
It is validated into ``UltravoxCallback`` by the route, normalized here into a
``ParsedIntent`` and dispatched to the appointment service.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Optional

from ..models import CreateAppointmentInput, UpdateAppointmentInput
from ..models.appointment import OPEN_STATUSES
from ..models.webhooks import IntentParameters, IntentType, ParsedIntent, UltravoxCallback
from ..repositories import CallLogRepository
from ..utils.date_utils import normalize_date_string, normalize_time_string
from ..utils.errors import AppError, ParseError, ValidationError
from ..utils.phone_utils import normalize_phone_number
from .appointment_service import AppointmentService
from .session_cache import SessionCache

logger = logging.getLogger(__name__)

APPOINTMENT_TYPE_INTENTS: dict[str, IntentType] = {
    "create": "create_appointment",
    "edit": "edit_appointment",
    "cancel": "cancel_appointment",
    "status": "check_status",
}

# Checked in order against the lower-cased intent name; edit first so
# "reschedule" is not taken for "schedule".
INTENT_KEYWORDS: list[tuple[IntentType, tuple[str, ...]]] = [
    ("edit_appointment", ("edit", "change", "reschedule")),
    ("create_appointment", ("book", "create", "schedule")),
    ("cancel_appointment", ("cancel", "delete")),
    ("check_status", ("check", "status", "list")),
]


@dataclass
class IntentResult:
    """Outcome of a processed callback."""
    success: bool
    intent: str
    message: str
    data: dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None


def map_intent_name(name: str) -> IntentType:
    lowered = name.lower()
    for intent_type, keywords in INTENT_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return intent_type
    return "unknown"


class IntentService:
    """Parses legacy callbacks and routes them to the appointment service."""

    def __init__(
        self,
        appointment_service: AppointmentService,
        call_logs: Optional[CallLogRepository] = None,
        session_cache: Optional[SessionCache] = None,
    ):
        self.appointments = appointment_service
        self.call_logs = call_logs
        self.sessions = session_cache

    def parse_intent(self, callback: UltravoxCallback) -> ParsedIntent:
        """
        Normalize a callback into a typed intent.

        ``extractedData.appointmentType`` wins over the free-form intent name.
        Dates and times that do not parse are dropped, not guessed.
        """
        extracted = callback.extractedData
        intent_type: IntentType = "unknown"

        if extracted and extracted.appointmentType:
            intent_type = APPOINTMENT_TYPE_INTENTS[extracted.appointmentType]
        elif callback.intent and callback.intent.name:
            intent_type = map_intent_name(callback.intent.name)

        params = IntentParameters()
        if extracted:
            if extracted.appointmentDate:
                try:
                    params.date = normalize_date_string(
                        extracted.appointmentDate, reference=self.appointments.today()
                    )
                except ParseError:
                    logger.warning(f"Failed to normalize date: {extracted.appointmentDate}")
            if extracted.appointmentTime:
                try:
                    params.time = normalize_time_string(extracted.appointmentTime)
                except ParseError:
                    logger.warning(f"Failed to normalize time: {extracted.appointmentTime}")
            if extracted.patientName:
                params.patient_name = extracted.patientName.strip()
            if extracted.patientPhone:
                params.patient_phone = normalize_phone_number(extracted.patientPhone)
            params.reason = extracted.reason
            params.appointment_id = extracted.existingAppointmentId

        confidence = callback.intent.confidence if callback.intent else 0.8
        return ParsedIntent(type=intent_type, confidence=confidence, parameters=params)

    @staticmethod
    def _caller_phone(callback: UltravoxCallback, params: IntentParameters) -> Optional[str]:
        return (
            params.patient_phone
            or normalize_phone_number(callback.metadata.get("phoneNumber"))
            or normalize_phone_number(callback.metadata.get("from"))
        )

    async def process_callback(self, callback: UltravoxCallback) -> IntentResult:
        """Run the callback's intent; failures come back as ``success=False``."""
        if callback.status in ("failed", "timeout"):
            message = callback.error.message if callback.error else "AI session failed or timed out"
            logger.error(f"Callback for {callback.callSid} reported {callback.status}: {message}")
            return IntentResult(success=False, intent="error", message=message, error=message)

        intent = self.parse_intent(callback)
        logger.info(f"Intent parsed: {intent.type} ({intent.confidence:.2f}) for {callback.callSid}")

        handlers = {
            "create_appointment": self._handle_create,
            "edit_appointment": self._handle_edit,
            "cancel_appointment": self._handle_cancel,
            "check_status": self._handle_check,
        }
        handler = handlers.get(intent.type)
        if handler is None:
            logger.warning(f"Unknown or unclear intent for {callback.callSid}")
            return IntentResult(
                success=False,
                intent="unknown",
                message="Unable to understand your request. Please try again or speak with a representative.",
            )

        try:
            return await handler(intent.parameters, callback)
        except AppError as e:
            logger.info(f"{intent.type} rejected for {callback.callSid}: {e.message}")
            return IntentResult(success=False, intent=intent.type, message=e.message, error=e.code)
        except Exception as e:
            logger.exception(f"Failed to process {intent.type} for {callback.callSid}: {e}")
            return IntentResult(success=False, intent=intent.type, message="Failed to process request", error=str(e))

    async def _handle_create(self, params: IntentParameters, callback: UltravoxCallback) -> IntentResult:
        if not params.date or not params.time:
            raise ValidationError("Missing required appointment date or time")
        if not params.patient_name:
            raise ValidationError("Missing required patient name")

        phone = self._caller_phone(callback, params)
        if not phone:
            raise ValidationError("Unable to determine patient phone number")

        appointment = await self.appointments.create_appointment(
            CreateAppointmentInput(
                patient_name=params.patient_name,
                patient_phone=phone,
                appointment_date=params.date,
                appointment_time=params.time,
                reason=params.reason,
                call_sid=callback.callSid,
                session_id=callback.sessionId,
            ),
            caller_phone=phone,
        )
        return IntentResult(
            success=True,
            intent="create_appointment",
            message=f"Appointment successfully scheduled for {appointment.datetime_str}",
            data={"appointment_id": appointment.id},
        )

    async def _handle_edit(self, params: IntentParameters, callback: UltravoxCallback) -> IntentResult:
        if not params.appointment_id:
            raise ValidationError("Missing appointment ID for edit operation")

        appointment = await self.appointments.update_appointment(
            params.appointment_id,
            UpdateAppointmentInput(
                appointment_date=params.date,
                appointment_time=params.time,
                reason=params.reason,
            ),
        )
        return IntentResult(
            success=True,
            intent="edit_appointment",
            message=f"Appointment successfully updated to {appointment.datetime_str}",
            data={"appointment_id": appointment.id},
        )

    async def _handle_cancel(self, params: IntentParameters, callback: UltravoxCallback) -> IntentResult:
        if not params.appointment_id:
            raise ValidationError("Missing appointment ID for cancellation")

        appointment = await self.appointments.cancel_appointment(params.appointment_id, params.reason)
        return IntentResult(
            success=True,
            intent="cancel_appointment",
            message="Appointment successfully cancelled",
            data={"appointment_id": appointment.id},
        )

    async def _handle_check(self, params: IntentParameters, callback: UltravoxCallback) -> IntentResult:
        phone = self._caller_phone(callback, params)
        if not phone:
            raise ValidationError("Unable to determine caller phone number")

        appointments = await self.appointments.find_user_appointments(phone, list(OPEN_STATUSES))
        if not appointments:
            return IntentResult(
                success=True,
                intent="check_status",
                message="No upcoming appointments found",
                data={"appointments": []},
            )

        listing = ", ".join(a.datetime_str for a in appointments)
        return IntentResult(
            success=True,
            intent="check_status",
            message=f"You have {len(appointments)} upcoming appointment(s): {listing}",
            data={"appointments": [a.id for a in appointments]},
        )

    async def handle_callback(self, callback: UltravoxCallback) -> dict[str, Any]:
        """
        Process a callback end to end: run the intent, record it on the call
        log, mark the call completed and drop the cached session.
        """
        started = time.monotonic()

        if self.sessions is not None:
            try:
                session = await self.sessions.get_session(callback.sessionId)
                if session:
                    logger.debug(f"Session {callback.sessionId} belongs to call {session.call_sid}")
            except Exception as e:
                logger.warning(f"Session lookup failed for {callback.sessionId}: {e}")

        result = await self.process_callback(callback)

        if self.call_logs is not None:
            await self.call_logs.update_intent(
                callback.callSid,
                result.intent,
                {"success": result.success, "message": result.message, "data": result.data, "error": result.error},
            )
            await self.call_logs.mark_completed(callback.callSid, callback.duration)

        if self.sessions is not None:
            try:
                await self.sessions.delete_session(callback.sessionId)
            except Exception as e:
                logger.warning(f"Failed to clear session {callback.sessionId}: {e}")

        elapsed_ms = int((time.monotonic() - started) * 1000)
        logger.info(f"Callback for {callback.callSid} handled in {elapsed_ms}ms")
        return {
            "status": "success",
            "result": {"intent": result.intent, "success": result.success, "message": result.message},
            "processingTime": elapsed_ms,
        }
