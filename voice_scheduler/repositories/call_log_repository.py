"""Call log persistence. Apart from ``create``, every write here is best effort."""

import logging
from typing import Any, Optional

from ..models import CallLog
from ..services.database import Database
from ..utils.date_utils import to_iso_utc, utc_now

logger = logging.getLogger(__name__)

TABLE = "call_logs"


class CallLogRepository:

    def __init__(self, db: Database):
        self.db = db

    async def create(self, log: CallLog) -> CallLog:
        row = log.model_dump(exclude={"id", "ended_at"}, exclude_none=True)
        row["created_at"] = to_iso_utc(utc_now())
        response = await self.db.execute(self.db.table(TABLE).insert(row), "create call log")
        created = CallLog(**response.data[0])
        logger.debug(f"Call log created: {created.call_sid}")
        return created

    async def update(self, call_sid: str, updates: dict[str, Any]) -> None:
        try:
            await self.db.execute(
                self.db.table(TABLE).update(updates).eq("call_sid", call_sid),
                "update call log",
            )
            logger.debug(f"Call log updated: {call_sid} {sorted(updates)}")
        except Exception as e:
            logger.warning(f"Error updating call log {call_sid}: {e}")

    async def mark_completed(self, call_sid: str, duration: Optional[int] = None) -> None:
        updates: dict[str, Any] = {"status": "completed", "ended_at": to_iso_utc(utc_now())}
        if duration is not None:
            updates["duration"] = duration
        await self.update(call_sid, updates)

    async def mark_failed(self, call_sid: str, error_message: str) -> None:
        await self.update(call_sid, {
            "status": "failed",
            "error_message": error_message,
            "ended_at": to_iso_utc(utc_now()),
        })

    async def update_intent(self, call_sid: str, intent_type: str, intent_data: dict[str, Any]) -> None:
        await self.update(call_sid, {"intent_type": intent_type, "intent_data": intent_data})
