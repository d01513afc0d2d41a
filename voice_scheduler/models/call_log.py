"""Call log models."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field


class CallLog(BaseModel):
    """Audit row for one telephony call."""
    id: Optional[str] = Field(default=None)
    call_sid: str = Field(..., description="Twilio Call SID")
    session_id: Optional[str] = Field(default=None, description="AI session identifier")
    user_id: Optional[str] = None
    from_number: Optional[str] = Field(default=None, description="Caller number, None when withheld")
    to_number: Optional[str] = None
    direction: str = "inbound"
    status: str = "initiated"
    duration: Optional[int] = Field(default=None, description="Call duration in seconds")
    intent_type: Optional[str] = None
    intent_data: Optional[dict[str, Any]] = None
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
