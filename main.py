import asyncio
import logging
import signal
import sys
from typing import Optional

from core.logging import setup_logging
from data.database import get_engine, get_session_local, init_db
from data.repositories import NotificationLogRepository
from models import Channel
from services.feed import ChangeFeed
from services.notifications.dispatcher import Dispatcher
from services.notifications.policy import PolicyEngine
from services.notifications.senders import build_senders
from services.pipeline import NotificationPipeline, StaticRecipientDirectory
from services.realtime.registry import SubscriptionRegistry
from settings import Settings, settings as default_settings


logger = logging.getLogger(__name__)


def check_startup_requirements(settings: Settings) -> bool:
    """
    Perform basic startup checks.

    Args:
        settings: Application settings

    Returns:
        True if every external channel is configured, False otherwise
    """
    checks_passed = True

    if not settings.resend_api_key:
        logger.warning("RESEND_API_KEY is not set, email delivery disabled")
        checks_passed = False

    if not all([
        settings.twilio_account_sid,
        settings.twilio_auth_token,
        settings.twilio_phone_number,
    ]):
        logger.warning("Twilio credentials are incomplete, SMS and calls disabled")
        checks_passed = False

    if not settings.recipient_addresses:
        logger.info("NOTIFICATION_RECIPIENTS is empty, announcements go out by push only")

    return checks_passed


class NotificationApplication:
    """Owns the feed, registry, dispatcher and pipeline for one process."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or default_settings
        self.feed: Optional[ChangeFeed] = None
        self.registry: Optional[SubscriptionRegistry] = None
        self.dispatcher: Optional[Dispatcher] = None
        self.pipeline: Optional[NotificationPipeline] = None

    def initialize(self) -> None:
        """Build every component from settings."""
        engine = get_engine(self.settings.database_url)
        init_db(engine)
        log_store = NotificationLogRepository(get_session_local(engine))

        self.feed = ChangeFeed(owner_cache_size=self.settings.complaint_cache_size)
        self.registry = SubscriptionRegistry(self.feed, self.settings.display_dedupe_window)
        senders = build_senders(self.registry, self.settings)
        self.dispatcher = Dispatcher(senders, log_store)
        self.pipeline = NotificationPipeline(
            self.feed,
            PolicyEngine(),
            self.dispatcher,
            StaticRecipientDirectory(self.settings.recipient_addresses),
            cache_size=self.settings.complaint_cache_size,
        )

        missing = [c.value for c in Channel if c not in senders]
        if missing:
            logger.warning("Channels without a sender: %s", ", ".join(missing))
        logger.info("Application initialized")

    async def start(self) -> None:
        if self.pipeline is None:
            self.initialize()
        await self.pipeline.start()

    async def shutdown(self) -> None:
        """Release live subscriptions, then finish in-flight deliveries."""
        if self.registry is not None:
            await self.registry.close()
        if self.pipeline is not None:
            await self.pipeline.stop()
        logger.info("Application shut down")


async def main() -> None:
    """Main application entry point."""
    settings = default_settings
    logger.info("Log level: %s", settings.log_level)
    logger.info("Database URL: %s", settings.database_url)

    if not check_startup_requirements(settings):
        logger.warning("Some startup checks failed, but application will continue")

    app = NotificationApplication(settings)
    await app.start()

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Signal handlers are unavailable on Windows event loops
            pass

    logger.info("Notification pipeline is running")
    try:
        await stop.wait()
    finally:
        await app.shutdown()


if __name__ == "__main__":
    setup_logging(
        log_level=default_settings.log_level,
        log_dir=default_settings.log_dir,
        app_name="grievance_notify",
    )
    logger.info("Grievance notification service starting...")

    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Application interrupted by user")
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        sys.exit(1)
