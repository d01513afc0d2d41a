"""Services package.

Only the leaf clients are re-exported here; the appointment, user and intent
services depend on the repositories and are imported from their modules.
"""

from .database import Database
from .session_cache import SessionCache
from .slot_generator import SlotGenerator
from .twilio_service import TwilioService
from .ultravox_service import UltravoxService

__all__ = [
    "Database",
    "SessionCache",
    "SlotGenerator",
    "TwilioService",
    "UltravoxService",
]
