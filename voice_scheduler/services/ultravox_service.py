"""
Ultravox voice agent integration.
Starts agent calls wired to a Twilio media stream and manages their lifetime.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from ..utils.errors import ExternalServiceError

logger = logging.getLogger(__name__)

SERVICE_NAME = "Ultravox"


class UltravoxService:
    """
    Client for the Ultravox REST API.

    ``start_call`` returns the ``joinUrl`` Twilio streams the caller's audio
    to. Every request is bounded by ``timeout_seconds``.
    """

    def __init__(
        self,
        api_key: str,
        agent_id: str,
        base_url: str = "https://api.ultravox.ai/api",
        timeout_seconds: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize Ultravox service.

        Args:
            api_key: Ultravox API key
            agent_id: Agent configured with the scheduling tools
            base_url: REST API base URL
            timeout_seconds: Per-request timeout
            client: Pre-built HTTP client, mainly for tests
        """
        self.agent_id = agent_id
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "X-API-Key": api_key,
                "Content-Type": "application/json",
                "User-Agent": "voice-scheduler/1.0.0",
            },
            timeout=timeout_seconds,
        )

    async def start_call(
        self,
        call_sid: str,
        phone_number: Optional[str],
        metadata: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """
        Start an agent call for an inbound Twilio call.

        Args:
            call_sid: Twilio Call SID
            phone_number: Caller's canonical number, None when withheld
            metadata: Extra values forwarded to the agent

        Returns:
            ``{"call_id": ..., "join_url": ...}``

        Raises:
            ExternalServiceError: on network failure, timeout or non-2xx
        """
        started = time.monotonic()
        payload = {
            "medium": {"twilio": {}},
            "metadata": {
                "callSid": call_sid,
                "phoneNumber": phone_number or "anonymous",
                "isAnonymous": str(phone_number is None).lower(),
                "direction": "inbound",
                "timestamp": datetime.now(timezone.utc).isoformat(),
                **{k: str(v) for k, v in (metadata or {}).items()},
            },
        }

        logger.info(f"Starting Ultravox call for {call_sid}")
        try:
            response = await self._client.post(f"/agents/{self.agent_id}/calls", json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"Ultravox returned {e.response.status_code} for {call_sid}: {e.response.text}")
            raise ExternalServiceError(SERVICE_NAME, "Failed to start AI voice session", {"call_sid": call_sid}) from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Ultravox request failed for {call_sid}: {e}")
            raise ExternalServiceError(SERVICE_NAME, "Failed to start AI voice session", {"call_sid": call_sid}) from e

        call_id, join_url = data.get("callId"), data.get("joinUrl")
        if not call_id or not join_url:
            raise ExternalServiceError(SERVICE_NAME, "Response missing callId or joinUrl", {"call_sid": call_sid})

        elapsed_ms = int((time.monotonic() - started) * 1000)
        logger.info(f"Ultravox call {call_id} started for {call_sid} in {elapsed_ms}ms")
        return {"call_id": call_id, "join_url": join_url}

    async def close(self):
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
