"""
aiohttp middlewares and request guards.
Correlation ids, request logging, error mapping and authentication checks.
"""

import hmac
import logging
import time
import uuid
from typing import Any

from aiohttp import web

from ..utils.errors import AppError, AuthenticationError

logger = logging.getLogger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"


@web.middleware
async def request_logger_middleware(request: web.Request, handler):
    """Tag each request with a correlation id and log it with its duration."""
    correlation_id = (
        request.headers.get(CORRELATION_HEADER)
        or request.headers.get("X-Request-ID")
        or str(uuid.uuid4())
    )
    request["correlation_id"] = correlation_id
    started = time.monotonic()

    logger.info(f"[{correlation_id}] Incoming {request.method} {request.path}")
    status = 500
    try:
        response = await handler(request)
        status = response.status
    except web.HTTPException as e:
        status = e.status
        raise
    finally:
        elapsed_ms = int((time.monotonic() - started) * 1000)
        logger.info(f"[{correlation_id}] {request.method} {request.path} -> {status} in {elapsed_ms}ms")

    response.headers[CORRELATION_HEADER] = correlation_id
    return response


@web.middleware
async def error_middleware(request: web.Request, handler):
    """Map ``AppError`` to its status code and anything unexpected to a 500."""
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except AppError as e:
        if e.status_code >= 500:
            logger.error(f"{request.method} {request.path} failed: {e.message}")
        else:
            logger.warning(f"{request.method} {request.path} rejected: {e.message}")
        body: dict[str, Any] = {"status": "error", **e.to_dict()}
        body["correlationId"] = request.get("correlation_id")
        return web.json_response(body, status=e.status_code)
    except Exception as e:
        logger.exception(f"Unhandled error on {request.method} {request.path}: {e}")
        debug = request.app.get("debug", False)
        return web.json_response(
            {
                "status": "error",
                "message": str(e) if debug else "Internal server error",
                "code": "internal_error",
                "correlationId": request.get("correlation_id"),
            },
            status=500,
        )


def verify_api_key(request: web.Request) -> None:
    """
    Check ``X-API-Key`` (or ``?apiKey=``) against the configured key.

    Raises:
        AuthenticationError: key missing, wrong, or none configured
    """
    expected = request.app["api_key"]
    provided = request.headers.get("X-API-Key") or request.query.get("apiKey")

    if not provided:
        raise AuthenticationError("Missing API key")
    if not expected or not hmac.compare_digest(provided, expected):
        raise AuthenticationError("Invalid API key")


async def verify_twilio_request(request: web.Request) -> dict[str, str]:
    """
    Read a Twilio form post and verify its signature.

    Returns:
        The form parameters

    Raises:
        AuthenticationError: missing or invalid signature
    """
    params = {key: str(value) for key, value in (await request.post()).items()}
    twilio = request.app["services"].twilio
    twilio.validate_signature(
        request.headers.get("X-Twilio-Signature"),
        str(request.url),
        params,
    )
    return params
