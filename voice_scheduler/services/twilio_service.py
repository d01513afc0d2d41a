"""Twilio webhook verification and live-call control."""

import asyncio
import logging
from typing import Any, Mapping, Optional

from requests.exceptions import RequestException
from twilio.base.exceptions import TwilioException, TwilioRestException
from twilio.http.http_client import TwilioHttpClient
from twilio.request_validator import RequestValidator
from twilio.rest import Client

from ..models.webhooks import TwilioInboundCall
from ..utils.errors import AuthenticationError, ExternalServiceError
from ..utils.phone_utils import mask_phone_number
from ..utils.twiml import build_dial_response

logger = logging.getLogger(__name__)

SERVICE_NAME = "Twilio"


def format_twilio_error(error: Exception) -> str:
    if isinstance(error, TwilioRestException):
        return f"Twilio API Error {error.status}: {error.msg}"
    return str(error) or "Unknown Twilio error"


class TwilioService:
    """Wraps the Twilio request validator and REST client."""

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        signature_validation: bool = True,
        timeout_seconds: float = 10.0,
        client: Optional[Client] = None,
    ):
        self.signature_validation = signature_validation
        self._validator = RequestValidator(auth_token)
        self._account_sid = account_sid
        self._auth_token = auth_token
        self.timeout_seconds = timeout_seconds
        self._client = client

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = Client(
                self._account_sid,
                self._auth_token,
                http_client=TwilioHttpClient(timeout=self.timeout_seconds),
            )
        return self._client

    @staticmethod
    def extract_caller_info(params: Mapping[str, Any]) -> TwilioInboundCall:
        return TwilioInboundCall.model_validate(dict(params))

    def validate_signature(self, signature: Optional[str], url: str, params: Mapping[str, Any]) -> None:
        """
        Verify ``X-Twilio-Signature`` for a webhook request.

        Raises:
            AuthenticationError: missing or invalid signature
        """
        if not self.signature_validation:
            logger.debug("Twilio webhook signature validation is disabled")
            return

        if not signature:
            raise AuthenticationError("Missing Twilio signature header")

        if not self._validator.validate(url, dict(params), signature):
            logger.error(f"Invalid Twilio webhook signature for {url}")
            raise AuthenticationError("Invalid Twilio webhook signature")

    async def transfer_call(self, call_sid: str, phone_number: str, announcement: Optional[str] = None) -> None:
        """
        Redirect a live call to ``phone_number``.

        Raises:
            ExternalServiceError: the REST update failed or timed out
        """
        twiml = build_dial_response(phone_number, announcement=announcement)
        logger.info(f"Transferring call {call_sid} to {mask_phone_number(phone_number)}")
        try:
            # the twilio client is synchronous
            await asyncio.to_thread(lambda: self.client.calls(call_sid).update(twiml=twiml))
        except (TwilioException, RequestException) as e:
            logger.error(f"Transfer of {call_sid} failed: {format_twilio_error(e)}")
            raise ExternalServiceError(SERVICE_NAME, "Failed to transfer call", {"call_sid": call_sid}) from e
