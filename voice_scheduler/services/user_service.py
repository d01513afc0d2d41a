"""Caller identification on top of the user repository."""

import logging
from typing import Optional

from ..models import User
from ..repositories import UserRepository
from ..utils.phone_utils import mask_phone_number, normalize_phone_number

logger = logging.getLogger(__name__)


class UserService:
    """Resolves callers to users, creating them on first contact."""

    def __init__(self, users: UserRepository):
        self.users = users

    async def verify_user(self, phone_number: Optional[str], name: Optional[str] = None) -> User:
        """
        Find or create the user behind an inbound call.

        Withheld or unparseable caller IDs get a fresh anonymous user. A known
        user without a name picks up ``name`` when one is supplied.
        """
        normalized = normalize_phone_number(phone_number)
        if not normalized:
            logger.info("Caller ID withheld, creating anonymous user")
            return await self.users.create_anonymous_user()

        user = await self.users.find_by_phone(normalized)
        if not user:
            logger.info(f"New caller {mask_phone_number(normalized)}, creating account")
            return await self.users.find_or_create(normalized, name)

        await self.users.update_last_call(user.id)
        if name and not user.name:
            user = await self.users.update(user.id, {"name": name})

        logger.info(f"User verified: {user.id}")
        return user
