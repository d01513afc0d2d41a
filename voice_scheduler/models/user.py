"""User and call correlation models."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator


class User(BaseModel):
    """A caller, keyed by canonical phone number (None for anonymous callers)."""
    id: str = Field(..., description="User ID")
    phone_number: Optional[str] = Field(default=None, description="Canonical phone number")
    name: Optional[str] = Field(default=None, description="User's name")
    email: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    last_call_at: Optional[datetime] = None
    total_appointments: int = Field(default=0, description="Total appointments made")
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value):
        return str(value) if value is not None else value

    @field_validator("metadata", mode="before")
    @classmethod
    def _default_metadata(cls, value):
        return value or {}

    @property
    def is_anonymous(self) -> bool:
        return self.phone_number is None

    def get_greeting_context(self) -> str:
        """Get context for personalized greeting."""
        if self.name and self.total_appointments > 0:
            return f"returning user {self.name} with {self.total_appointments} previous appointments"
        elif self.name:
            return f"known user {self.name}"
        elif self.total_appointments > 0:
            return f"returning user with {self.total_appointments} previous appointments"
        return "new user"


class CallSession(BaseModel):
    """Cache entry correlating an AI session with the originating call."""
    call_sid: str
    user_id: Optional[str] = None
    phone_number: Optional[str] = None
    is_anonymous: bool = False
