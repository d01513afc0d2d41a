"""Supabase connection handle shared by the repositories."""

import asyncio
import logging
from typing import Any, Optional

from supabase import AsyncClient, acreate_client

from ..utils.errors import ConflictError, DatabaseError

logger = logging.getLogger(__name__)

# Postgres SQLSTATE raised by the appointments exclusion constraint
EXCLUSION_VIOLATION = "23P01"


class Database:
    """
    Owns the async Supabase client.

    Created once at process start, closed at shutdown, and passed to every
    repository. Each query is bounded by ``timeout_seconds``.
    """

    def __init__(self, url: str, key: str, timeout_seconds: float = 10.0):
        self.url = url
        self.key = key
        self.timeout_seconds = timeout_seconds
        self._client: Optional[AsyncClient] = None

    async def connect(self) -> AsyncClient:
        if self._client is None:
            self._client = await acreate_client(self.url, self.key)
            logger.info("Supabase client initialized")
        return self._client

    @property
    def client(self) -> AsyncClient:
        if self._client is None:
            raise DatabaseError("Database client is not connected")
        return self._client

    def table(self, name: str):
        return self.client.table(name)

    async def execute(self, query, operation: str) -> Any:
        """
        Run a PostgREST query builder and return its response.

        Timeouts and driver errors are re-raised as ``DatabaseError``; an
        exclusion-constraint violation becomes a ``ConflictError``.
        """
        try:
            return await asyncio.wait_for(query.execute(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            logger.error(f"Database timeout during {operation}")
            raise DatabaseError(f"Database timeout during {operation}") from e
        except Exception as e:
            if getattr(e, "code", None) == EXCLUSION_VIOLATION:
                logger.warning(f"Exclusion constraint rejected {operation}: {e}")
                raise ConflictError("Time slot was booked by another request") from e
            logger.error(f"Database error during {operation}: {e}")
            raise DatabaseError(f"Failed to {operation}") from e

    async def rpc(self, function: str, params: dict, operation: str) -> Any:
        return await self.execute(self.client.rpc(function, params), operation)

    async def check_health(self) -> bool:
        try:
            await self.execute(self.table("appointments").select("id").limit(1), "check health")
            return True
        except DatabaseError:
            return False

    async def close(self) -> None:
        if self._client is None:
            return
        try:
            await self._client.postgrest.aclose()
        except Exception as e:
            logger.warning(f"Error closing Supabase client: {e}")
        self._client = None
        logger.info("Supabase client closed")
