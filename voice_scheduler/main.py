"""
Main entry point for the Voice Scheduler backend.
Wires the services together and starts the HTTP server.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from aiohttp import web
from dotenv import load_dotenv

from config.settings import Settings, get_settings
from voice_scheduler.api.routes import create_app
from voice_scheduler.repositories import AppointmentRepository, CallLogRepository, UserRepository
from voice_scheduler.services import Database, SessionCache, TwilioService, UltravoxService
from voice_scheduler.services.appointment_service import AppointmentService
from voice_scheduler.services.intent_service import IntentService
from voice_scheduler.services.user_service import UserService
from voice_scheduler.tools.appointment_tools import AppointmentTools
from voice_scheduler.utils.date_utils import utc_now

logger = logging.getLogger(__name__)

# Buffer baked into the no_overlapping_appointments constraint in scripts/setup.sql
SCHEMA_BUFFER_MINUTES = 15


class ServiceContainer:
    """
    Explicitly constructed service handles.

    Built once per process, connected in ``startup`` and closed in
    ``shutdown``. Tests build one from in-memory repositories.
    """

    def __init__(
        self,
        settings: Settings,
        database: Database,
        appointments: AppointmentRepository,
        users: UserRepository,
        call_logs: CallLogRepository,
        session_cache: SessionCache,
        ultravox: UltravoxService,
        twilio: TwilioService,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.settings = settings
        self.database = database
        self.appointments = appointments
        self.call_logs = call_logs
        self.session_cache = session_cache
        self.ultravox = ultravox
        self.twilio = twilio

        self.appointment_service = AppointmentService(
            appointments=appointments,
            users=users,
            timezone=settings.business_timezone,
            business_hours=settings.build_business_hours(),
            buffer_minutes=settings.appointment_buffer_minutes,
            default_duration_minutes=settings.appointment_duration_minutes,
            slot_step_minutes=settings.slot_step_minutes,
            clock=clock,
        )
        self.users = UserService(users)
        self.intents = IntentService(self.appointment_service, call_logs, session_cache)
        self.tools = AppointmentTools(
            self.appointment_service,
            twilio_service=twilio,
            call_logs=call_logs,
            session_cache=session_cache,
            transfer_phone_number=settings.transfer_phone_number,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "ServiceContainer":
        database = Database(
            url=settings.supabase_url,
            key=settings.supabase_service_role_key,
            timeout_seconds=settings.db_timeout_seconds,
        )
        return cls(
            settings=settings,
            database=database,
            appointments=AppointmentRepository(
                database,
                timezone=settings.business_timezone,
                default_duration_minutes=settings.appointment_duration_minutes,
            ),
            users=UserRepository(database),
            call_logs=CallLogRepository(database),
            session_cache=SessionCache(
                url=settings.redis_url,
                password=settings.redis_password,
                db=settings.redis_db,
                ttl_seconds=settings.session_ttl_seconds,
                enabled=settings.redis_enabled,
            ),
            ultravox=UltravoxService(
                api_key=settings.ultravox_api_key,
                agent_id=settings.ultravox_agent_id,
                base_url=settings.ultravox_api_url,
                timeout_seconds=settings.ultravox_timeout_seconds,
            ),
            twilio=TwilioService(
                account_sid=settings.twilio_account_sid,
                auth_token=settings.twilio_auth_token,
                signature_validation=settings.twilio_webhook_signature_validation,
                timeout_seconds=settings.twilio_timeout_seconds,
            ),
        )

    async def startup(self) -> None:
        await self.database.connect()
        if self.session_cache.enabled and not await self.session_cache.ping():
            logger.warning("Redis unavailable, continuing without session cache")
        if self.settings.appointment_buffer_minutes != SCHEMA_BUFFER_MINUTES:
            logger.warning(
                f"APPOINTMENT_BUFFER_MINUTES={self.settings.appointment_buffer_minutes} but the database "
                f"exclusion constraint assumes {SCHEMA_BUFFER_MINUTES}; update scripts/setup.sql to match"
            )
        logger.info(f"Services started (business hours: {self.appointment_service.business_hours.describe()})")

    async def shutdown(self) -> None:
        await self.ultravox.close()
        await self.session_cache.close()
        await self.database.close()
        logger.info("Services stopped")


def build_app(settings: Optional[Settings] = None) -> web.Application:
    settings = settings or get_settings()
    services = ServiceContainer.from_settings(settings)
    return create_app(services, api_key=settings.api_key, debug=settings.debug)


def main():
    """Main entry point."""
    load_dotenv()
    settings = get_settings()

    # Configure logging
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if not settings.api_key:
        logger.warning("API_KEY is not set; tool callbacks and admin routes will reject every request")

    logger.info(f"Starting voice scheduler on {settings.host}:{settings.port} ({settings.environment})")
    web.run_app(build_app(settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
