"""User persistence against the Supabase ``users`` table."""

import logging
import uuid
from typing import Optional

from ..models import User
from ..services.database import Database
from ..utils.date_utils import to_iso_utc, utc_now
from ..utils.errors import NotFoundError
from ..utils.phone_utils import mask_phone_number, normalize_phone_number

logger = logging.getLogger(__name__)

TABLE = "users"


class UserRepository:
    """Find-or-create by canonical phone, anonymous fallback, counter bookkeeping."""

    def __init__(self, db: Database):
        self.db = db

    async def create_anonymous_user(self) -> User:
        """Create a phone-less user for a caller whose ID is withheld."""
        now = to_iso_utc(utc_now())
        row = {
            "phone_number": None,
            "name": None,
            "created_at": now,
            "updated_at": now,
            "last_call_at": now,
            "total_appointments": 0,
            "metadata": {"anonymous": True, "session_id": f"anon_{uuid.uuid4().hex[:12]}"},
        }
        response = await self.db.execute(self.db.table(TABLE).insert(row), "create anonymous user")
        user = User(**response.data[0])
        logger.info(f"Anonymous user created: {user.id}")
        return user

    async def find_or_create(self, phone_number: Optional[str], name: Optional[str] = None) -> User:
        """
        Return the user owning ``phone_number``, creating one if needed.

        Numbers that do not normalize get a fresh anonymous user. A known user
        without a name picks up ``name`` when one is supplied.
        """
        normalized = normalize_phone_number(phone_number)
        if not normalized:
            return await self.create_anonymous_user()

        existing = await self.find_by_phone(normalized)
        if existing:
            await self.update_last_call(existing.id)
            if name and not existing.name:
                existing = await self.update(existing.id, {"name": name})
            return existing

        now = to_iso_utc(utc_now())
        row = {
            "phone_number": normalized,
            "name": name,
            "created_at": now,
            "updated_at": now,
            "last_call_at": now,
            "total_appointments": 0,
            "metadata": {},
        }
        response = await self.db.execute(self.db.table(TABLE).insert(row), "create user")
        user = User(**response.data[0])
        logger.info(f"New user created: {user.id} ({mask_phone_number(normalized)})")
        return user

    async def find_by_phone(self, phone_number: str) -> Optional[User]:
        normalized = normalize_phone_number(phone_number)
        if not normalized:
            return None
        response = await self.db.execute(
            self.db.table(TABLE).select("*").eq("phone_number", normalized).limit(1),
            "find user by phone",
        )
        if not response.data:
            return None
        return User(**response.data[0])

    async def find_by_id(self, user_id: str) -> User:
        response = await self.db.execute(
            self.db.table(TABLE).select("*").eq("id", user_id).limit(1),
            "find user",
        )
        if not response.data:
            raise NotFoundError("User", user_id)
        return User(**response.data[0])

    async def update(self, user_id: str, updates: dict) -> User:
        row = {**updates, "updated_at": to_iso_utc(utc_now())}
        response = await self.db.execute(
            self.db.table(TABLE).update(row).eq("id", user_id),
            "update user",
        )
        if not response.data:
            raise NotFoundError("User", user_id)
        logger.info(f"User updated: {user_id}")
        return User(**response.data[0])

    async def update_last_call(self, user_id: str) -> None:
        """Best effort; a failure here never blocks the call."""
        now = to_iso_utc(utc_now())
        try:
            await self.db.execute(
                self.db.table(TABLE).update({"last_call_at": now, "updated_at": now}).eq("id", user_id),
                "update last call",
            )
        except Exception as e:
            logger.warning(f"Error updating last call for user {user_id}: {e}")

    async def increment_appointment_count(self, user_id: str) -> None:
        """Atomic increment through the ``increment_appointment_count`` RPC. Best effort."""
        try:
            await self.db.rpc("increment_appointment_count", {"user_id": user_id}, "increment appointment count")
        except Exception as e:
            logger.warning(f"Error incrementing appointment count for user {user_id}: {e}")
