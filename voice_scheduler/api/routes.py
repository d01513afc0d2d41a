"""
API routes for the voice scheduler backend.
Provides endpoints for:
- Twilio voice and status webhooks
- Ultravox tool callbacks and the legacy unified callback
- Health checks
- Admin appointment listing and lookup
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from aiohttp import web
from pydantic import ValidationError as SchemaError

from .. import __version__
from ..models import AppointmentFilters, AppointmentStatus, CallLog
from ..models.webhooks import TwilioCallStatus, UltravoxCallback
from ..models.user import CallSession
from ..utils.errors import ValidationError
from ..utils.phone_utils import is_anonymous_caller, mask_phone_number, normalize_phone_number
from ..utils.twiml import build_error_response, build_stream_response
from .middleware import error_middleware, request_logger_middleware, verify_api_key, verify_twilio_request

logger = logging.getLogger(__name__)

SERVICE_NAME = "voice-scheduler"

# URL suffix under /api/v1/webhooks/ultravox -> tool name
TOOL_ROUTES = {
    "appointment/create": "create_appointment",
    "appointment/check": "check_appointment",
    "appointment/edit": "edit_appointment",
    "appointment/cancel": "cancel_appointment",
    "appointment/slots": "available_slots",
    "call/transfer": "transfer_call",
    "call/end": "end_call",
}


def create_app(services, api_key: str, debug: bool = False) -> web.Application:
    """
    Create the aiohttp application with routes.

    Args:
        services: ServiceContainer holding the wired services
        api_key: Shared key for tool callbacks and admin routes
        debug: Expose unexpected error messages in responses

    Returns:
        Configured aiohttp Application
    """
    app = web.Application(middlewares=[request_logger_middleware, error_middleware])

    # Store services in app
    app["services"] = services
    app["api_key"] = api_key
    app["debug"] = debug

    # Add routes
    app.router.add_get("/", index)
    app.router.add_get("/health", health_check)
    app.router.add_post("/api/v1/twilio/voice", twilio_voice)
    app.router.add_post("/api/v1/twilio/inbound", twilio_voice)
    app.router.add_post("/api/v1/twilio/status", twilio_status)
    app.router.add_get("/api/v1/webhooks/health", webhooks_health)
    app.router.add_post("/api/v1/webhooks/ultravox", ultravox_callback)
    for suffix, tool_name in TOOL_ROUTES.items():
        app.router.add_post(f"/api/v1/webhooks/ultravox/{suffix}", _tool_handler(tool_name))
    app.router.add_get("/api/v1/admin/appointments", get_appointments)
    app.router.add_get("/api/v1/admin/appointments/{appointment_id}", get_appointment)

    app.on_startup.append(_on_startup)
    app.on_cleanup.append(_on_cleanup)

    return app


async def _on_startup(app: web.Application) -> None:
    await app["services"].startup()


async def _on_cleanup(app: web.Application) -> None:
    await app["services"].shutdown()


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _xml(twiml: str) -> web.Response:
    return web.Response(text=twiml, content_type="text/xml")


async def index(request: web.Request) -> web.Response:
    return web.json_response({
        "name": SERVICE_NAME,
        "version": __version__,
        "status": "running",
        "timestamp": _now_iso(),
    })


async def health_check(request: web.Request) -> web.Response:
    """Health check endpoint. Always 200; a failing dependency reports ``degraded``."""
    services = request.app["services"]
    db_healthy = await services.database.check_health()
    cache = services.session_cache
    redis_healthy = await cache.ping()

    if not cache.enabled:
        redis_state = "disabled"
    else:
        redis_state = "up" if redis_healthy else "down"

    return web.json_response({
        "status": "healthy" if db_healthy and redis_healthy else "degraded",
        "timestamp": _now_iso(),
        "services": {
            "database": "up" if db_healthy else "down",
            "redis": redis_state,
        },
    })


async def webhooks_health(request: web.Request) -> web.Response:
    return web.json_response({"status": "healthy", "timestamp": _now_iso(), "version": __version__})


async def _read_json(request: web.Request) -> Optional[Any]:
    try:
        return await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None


def _tool_handler(tool_name: str):
    async def handler(request: web.Request) -> web.Response:
        verify_api_key(request)
        tools = request.app["services"].tools

        payload = await _read_json(request)
        if not isinstance(payload, dict):
            payload = {}

        result = await tools.execute_tool(tool_name, payload)
        logger.info(f"Tool {tool_name}: success={result.success} error={result.error}")
        return web.json_response(result.to_json())

    handler.__name__ = f"tool_{tool_name}"
    return handler


async def ultravox_callback(request: web.Request) -> web.Response:
    """
    Legacy unified callback.

    Request body:
    {
        "sessionId": "...",
        "callSid": "CA...",
        "status": "completed",
        "duration": 120,
        "extractedData": {...},
        "intent": {"name": "...", "confidence": 0.9}
    }
    """
    verify_api_key(request)

    payload = await _read_json(request)
    try:
        callback = UltravoxCallback.model_validate(payload)
    except SchemaError as e:
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors()})
        raise ValidationError("Invalid callback payload", context={"fields": fields}) from e

    intents = request.app["services"].intents
    try:
        body = await intents.handle_callback(callback)
    except Exception as e:
        # a 5xx would make the agent platform retry
        logger.exception(f"Failed to handle callback for {callback.callSid}: {e}")
        body = {"status": "error", "error": str(e)}
    return web.json_response(body)


async def twilio_voice(request: web.Request) -> web.Response:
    """
    Inbound call webhook.

    Registers the caller, starts an Ultravox call and connects the call's
    media stream to it. Any failure ends the call with a spoken apology.
    """
    params = await verify_twilio_request(request)
    services = request.app["services"]
    call_sid = params.get("CallSid")

    try:
        call = services.twilio.extract_caller_info(params)
        anonymous = is_anonymous_caller(call.from_number)
        phone = None if anonymous else normalize_phone_number(call.from_number)
        logger.info(f"Inbound call {call.call_sid} from {'anonymous' if anonymous else mask_phone_number(phone)}")

        user = await services.users.verify_user(phone)
        await services.call_logs.create(CallLog(
            call_sid=call.call_sid,
            user_id=user.id,
            from_number=phone,
            to_number=call.to_number,
            direction="inbound",
            status="initiated",
        ))

        session = await services.ultravox.start_call(
            call.call_sid,
            phone,
            metadata={
                "userId": user.id,
                "userName": user.name or "",
                "userContext": user.get_greeting_context(),
                "callerCity": call.from_city or "",
                "callerState": call.from_state or "",
            },
        )
        session_id = session["call_id"]

        try:
            await services.session_cache.set_session(session_id, CallSession(
                call_sid=call.call_sid,
                user_id=user.id,
                phone_number=phone,
                is_anonymous=phone is None,
            ))
        except Exception as e:
            logger.warning(f"Failed to cache session {session_id}: {e}")

        await services.call_logs.update(call.call_sid, {"session_id": session_id, "status": "connected"})
        logger.info(f"Call {call.call_sid} connected to agent session {session_id}")
        return _xml(build_stream_response(session["join_url"], call.call_sid))

    except Exception as e:
        logger.error(f"Failed to handle inbound call {call_sid}: {e}")
        if call_sid:
            await services.call_logs.mark_failed(call_sid, str(e))
        return _xml(build_error_response())


async def twilio_status(request: web.Request) -> web.Response:
    """Call status webhook. Always answers 200 so Twilio does not retry."""
    params = await verify_twilio_request(request)
    call_logs = request.app["services"].call_logs

    try:
        update = TwilioCallStatus.model_validate(params)
    except SchemaError as e:
        logger.warning(f"Ignoring malformed status callback: {e}")
        return web.Response(text="OK")

    logger.info(f"Call {update.call_sid} status: {update.call_status}")
    if update.call_status == "completed":
        await call_logs.mark_completed(update.call_sid, update.call_duration)
    elif update.call_status == "failed":
        await call_logs.mark_failed(update.call_sid, update.error_message or f"Error code: {update.error_code}")
    else:
        await call_logs.update(update.call_sid, {"status": update.call_status})

    return web.Response(text="OK")


async def get_appointments(request: web.Request) -> web.Response:
    """
    List appointments (API key required).

    Query params:
    - status: Comma-separated statuses
    - date_from / date_to: YYYY-MM-DD bounds
    - limit: Max appointments (default 20)
    - offset: Pagination offset (default 0)
    """
    verify_api_key(request)

    query = request.query
    try:
        statuses = [AppointmentStatus(s.strip()) for s in query.get("status", "").split(",") if s.strip()]
        filters = AppointmentFilters(
            status=statuses or None,
            date_from=query.get("date_from"),
            date_to=query.get("date_to"),
            limit=int(query.get("limit", 20)),
            offset=int(query.get("offset", 0)),
        )
    except (ValueError, SchemaError) as e:
        raise ValidationError(f"Invalid query parameters: {e}") from e

    appointments = await request.app["services"].appointment_service.list_appointments(filters)
    return web.json_response({
        "appointments": [a.model_dump(mode="json") for a in appointments],
        "count": len(appointments),
        "limit": filters.limit,
        "offset": filters.offset,
    })


async def get_appointment(request: web.Request) -> web.Response:
    """Fetch one appointment by id (API key required). Unknown ids answer 404."""
    verify_api_key(request)

    service = request.app["services"].appointment_service
    appointment = await service.get_appointment(request.match_info["appointment_id"])
    return web.json_response(appointment.model_dump(mode="json"))
