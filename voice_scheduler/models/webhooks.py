"""Request and response schemas for the telephony and AI-agent webhooks."""

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ToolRequest(BaseModel):
    """Base for AI tool callback bodies; unknown keys are dropped."""
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)


class CreateAppointmentRequest(ToolRequest):
    full_name: str = Field(..., min_length=1, max_length=100)
    phone_number: str = Field(..., min_length=10)
    preferred_date: str = Field(..., min_length=1)
    preferred_time: str = Field(..., min_length=1)
    reason_for_visit: Optional[str] = Field(default=None, max_length=500)
    call_sid: Optional[str] = None
    session_id: Optional[str] = None


class CheckAppointmentRequest(ToolRequest):
    phone_number: str = Field(..., min_length=10)
    full_name: Optional[str] = None


class EditAppointmentRequest(ToolRequest):
    phone_number: str = Field(..., min_length=10)
    full_name: Optional[str] = None
    original_date: str = Field(..., min_length=1)
    new_date: Optional[str] = None
    new_time: Optional[str] = None


class CancelAppointmentRequest(ToolRequest):
    phone_number: str = Field(..., min_length=10)
    full_name: Optional[str] = None
    appointment_date: str = Field(..., min_length=1)
    cancellation_reason: Optional[str] = Field(default=None, max_length=500)


class AvailableSlotsRequest(ToolRequest):
    date: str = Field(..., min_length=1)
    duration_minutes: Optional[int] = Field(default=None, gt=0, le=480)


class TransferCallRequest(ToolRequest):
    reason: str = Field(..., min_length=1)
    notes: Optional[str] = None
    call_sid: Optional[str] = None


class EndCallRequest(ToolRequest):
    outcome: str = Field(..., min_length=1)
    summary: Optional[str] = None
    call_sid: Optional[str] = None


class ToolResponse(BaseModel):
    """
    Body returned to the AI agent for every tool callback.

    Always delivered with HTTP 200; failures are carried in ``success`` and
    ``error`` so the agent has something to say instead of retrying.
    """
    success: bool
    message: str
    data: Optional[dict[str, Any]] = None
    error: Optional[str] = None

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class TwilioInboundCall(BaseModel):
    """Subset of Twilio's voice webhook form fields."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    call_sid: str = Field(..., alias="CallSid", min_length=1)
    from_number: Optional[str] = Field(default=None, alias="From")
    to_number: Optional[str] = Field(default=None, alias="To")
    call_status: Optional[str] = Field(default=None, alias="CallStatus")
    direction: Optional[str] = Field(default=None, alias="Direction")
    caller_name: Optional[str] = Field(default=None, alias="CallerName")
    from_city: Optional[str] = Field(default=None, alias="FromCity")
    from_state: Optional[str] = Field(default=None, alias="FromState")
    from_country: Optional[str] = Field(default=None, alias="FromCountry")


class TwilioCallStatus(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    call_sid: str = Field(..., alias="CallSid", min_length=1)
    call_status: str = Field(..., alias="CallStatus")
    call_duration: Optional[int] = Field(default=None, alias="CallDuration")
    error_code: Optional[str] = Field(default=None, alias="ErrorCode")
    error_message: Optional[str] = Field(default=None, alias="ErrorMessage")

    @field_validator("call_duration", mode="before")
    @classmethod
    def _blank_duration(cls, value):
        return value or None


# ==================== Legacy unified callback ====================


class ExtractedData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    appointmentType: Optional[Literal["create", "edit", "cancel", "status"]] = None
    appointmentDate: Optional[str] = None
    appointmentTime: Optional[str] = None
    patientName: Optional[str] = Field(default=None, min_length=2, max_length=100)
    patientPhone: Optional[str] = None
    reason: Optional[str] = Field(default=None, max_length=500)
    existingAppointmentId: Optional[str] = None


class CallbackIntent(BaseModel):
    name: str
    confidence: float = Field(..., ge=0, le=1)
    parameters: Optional[dict[str, Any]] = None


class CallbackError(BaseModel):
    code: str
    message: str


class UltravoxCallback(BaseModel):
    """End-of-session callback carrying the agent's extracted intent."""
    model_config = ConfigDict(extra="ignore")

    sessionId: str = Field(..., min_length=10)
    callSid: str = Field(..., pattern=r"^CA")
    status: Literal["completed", "failed", "timeout"]
    duration: int = Field(default=0, ge=0)
    transcript: Optional[str] = None
    intent: Optional[CallbackIntent] = None
    extractedData: Optional[ExtractedData] = None
    error: Optional[CallbackError] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


IntentType = Literal["create_appointment", "edit_appointment", "cancel_appointment", "check_status", "unknown"]


class IntentParameters(BaseModel):
    date: Optional[str] = None
    time: Optional[str] = None
    patient_name: Optional[str] = None
    patient_phone: Optional[str] = None
    reason: Optional[str] = None
    appointment_id: Optional[str] = None


class ParsedIntent(BaseModel):
    """Normalized intent produced from a callback; dates and times are canonical or absent."""
    type: IntentType = "unknown"
    confidence: float = 0.8
    parameters: IntentParameters = Field(default_factory=IntentParameters)
