"""Redis-backed correlation between AI sessions and telephony calls."""

import json
import logging
from typing import Optional

import redis.asyncio as redis

from ..models import CallSession

logger = logging.getLogger(__name__)

KEY_PREFIX = "session:"


class SessionCache:
    """
    TTL-bounded ``session_id -> CallSession`` store.

    When disabled every write is a no-op and every read misses, so callers
    never need to branch on whether Redis is configured.
    """

    def __init__(
        self,
        url: str,
        password: Optional[str] = None,
        db: int = 0,
        ttl_seconds: int = 3600,
        enabled: bool = True,
        client: Optional[redis.Redis] = None,
    ):
        self.ttl_seconds = ttl_seconds
        self.enabled = enabled
        self._client = client
        if self._client is None and enabled:
            self._client = redis.from_url(url, password=password, db=db, decode_responses=True)

    @staticmethod
    def _key(session_id: str) -> str:
        return f"{KEY_PREFIX}{session_id}"

    async def set_session(self, session_id: str, session: CallSession, ttl_seconds: Optional[int] = None) -> None:
        if not self.enabled:
            return
        await self._client.set(
            self._key(session_id),
            session.model_dump_json(),
            ex=ttl_seconds or self.ttl_seconds,
        )
        logger.debug(f"Cached session {session_id} for call {session.call_sid}")

    async def get_session(self, session_id: str) -> Optional[CallSession]:
        if not self.enabled:
            return None
        raw = await self._client.get(self._key(session_id))
        if not raw:
            return None
        try:
            return CallSession(**json.loads(raw))
        except (ValueError, TypeError) as e:
            logger.warning(f"Discarding malformed session entry {session_id}: {e}")
            return None

    async def delete_session(self, session_id: str) -> None:
        if not self.enabled:
            return
        await self._client.delete(self._key(session_id))

    async def ping(self) -> bool:
        """True when healthy; a disabled cache counts as healthy."""
        if not self.enabled:
            return True
        try:
            return bool(await self._client.ping())
        except redis.RedisError as e:
            logger.error(f"Redis health check failed: {e}")
            return False

    async def close(self) -> None:
        if self._client is None:
            return
        try:
            await self._client.aclose()
        except redis.RedisError as e:
            logger.warning(f"Error closing Redis connection: {e}")
        self._client = None
        logger.info("Redis client closed")
