"""
Tests for the Ultravox REST client.

Run with: python -m pytest tests/test_ultravox_service.py -v
"""

import json

import httpx
import pytest

from voice_scheduler.services.ultravox_service import UltravoxService
from voice_scheduler.utils.errors import ExternalServiceError

BASE_URL = "https://api.ultravox.test/api"


def make_service(handler) -> tuple[UltravoxService, list[httpx.Request]]:
    seen: list[httpx.Request] = []

    def record(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    client = httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(record))
    return UltravoxService(api_key="uv-key", agent_id="agent-1", base_url=BASE_URL, client=client), seen


class TestStartCall:

    @pytest.mark.asyncio
    async def test_returns_call_id_and_join_url(self):
        service, seen = make_service(
            lambda request: httpx.Response(201, json={"callId": "uv-1", "joinUrl": "wss://join/uv-1"})
        )

        result = await service.start_call("CA1", "+18185551234", metadata={"userId": 42})

        assert result == {"call_id": "uv-1", "join_url": "wss://join/uv-1"}
        request = seen[0]
        assert request.method == "POST"
        assert request.url.path == "/api/agents/agent-1/calls"
        body = json.loads(request.content)
        assert body["medium"] == {"twilio": {}}
        assert body["metadata"]["callSid"] == "CA1"
        assert body["metadata"]["isAnonymous"] == "false"
        assert body["metadata"]["userId"] == "42"
        await service.close()

    @pytest.mark.asyncio
    async def test_anonymous_caller(self):
        service, seen = make_service(
            lambda request: httpx.Response(200, json={"callId": "uv-2", "joinUrl": "wss://join/uv-2"})
        )

        await service.start_call("CA2", None)

        metadata = json.loads(seen[0].content)["metadata"]
        assert metadata["phoneNumber"] == "anonymous"
        assert metadata["isAnonymous"] == "true"
        await service.close()

    @pytest.mark.asyncio
    async def test_http_error(self):
        service, _ = make_service(lambda request: httpx.Response(503, text="unavailable"))

        with pytest.raises(ExternalServiceError) as exc_info:
            await service.start_call("CA1", "+18185551234")

        assert exc_info.value.context == {"call_sid": "CA1"}
        await service.close()

    @pytest.mark.asyncio
    async def test_network_error(self):
        def fail(request):
            raise httpx.ConnectError("connection refused", request=request)

        service, _ = make_service(fail)

        with pytest.raises(ExternalServiceError):
            await service.start_call("CA1", "+18185551234")
        await service.close()

    @pytest.mark.asyncio
    async def test_missing_join_url(self):
        service, _ = make_service(lambda request: httpx.Response(200, json={"callId": "uv-3"}))

        with pytest.raises(ExternalServiceError, match="joinUrl"):
            await service.start_call("CA1", "+18185551234")
        await service.close()


class TestClientLifecycle:

    @pytest.mark.asyncio
    async def test_context_manager_closes_client(self):
        service, _ = make_service(lambda request: httpx.Response(200, json={}))

        async with service as entered:
            assert entered is service

        assert service._client.is_closed
