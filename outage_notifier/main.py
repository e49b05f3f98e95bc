"""Main entry point for the outage notifier bot"""
import asyncio
import signal
import sys

from .config import Config
from .storage.database import Database
from .services.change_dispatcher import ChangeDispatcher
from .services.check_runner import CheckRunner
from .services.commands import register_commands
from .services.discord_client import DiscordClient
from .services.notification_service import NotificationService
from .services.probe_pool import ProbePool
from .services.schedule_fetcher import DtekScheduleFetcher
from .services.scheduler import CycleScheduler
from .utils.health import FailureTracker, TransportHealth
from .utils.logger import setup_logger

logger = setup_logger(__name__)


class OutageBot:
    """Main bot orchestrator"""
    
    def __init__(self):
        """Initialize bot components"""
        self.config = Config()
        settings = self.config.settings
        self.running = False
        
        self.database = Database(db_path=self.config.database_path)
        self.database.sync_addresses(self.config.addresses)
        
        self.health = TransportHealth(settings.transport_failure_threshold)
        self.failures = FailureTracker(
            alert_threshold=settings.failure_alert_threshold,
            cooldown_base_minutes=settings.failure_cooldown_base_minutes,
            cooldown_max_minutes=settings.failure_cooldown_max_minutes
        )
        
        # Initialize services
        self.discord_client = DiscordClient(
            token=self.config.discord_bot_token,
            command_prefix=self.config.command_prefix,
            health=self.health,
            max_retries=settings.notify_max_retries
        )
        self.fetcher = DtekScheduleFetcher(self.config.fetcher_url, self.config.fetcher_timeout)
        self.pool = ProbePool(
            self.fetcher,
            size=settings.probe_pool_size,
            admission_timeout=settings.admission_timeout_seconds,
            retries=settings.probe_retries,
            retry_delay=settings.probe_retry_delay_seconds
        )
        self.dispatcher = ChangeDispatcher(self.database, self.discord_client, settings.timezone)
        self.notification_service = NotificationService(
            database=self.database,
            notifier=self.discord_client,
            addresses=self.config.addresses,
            health=self.health,
            timezone=settings.timezone,
            warn_start_minutes=settings.warning_window_start_minutes,
            warn_end_minutes=settings.warning_window_end_minutes,
            rollover_window_start=settings.rollover_window_start,
            rollover_window_end=settings.rollover_window_end
        )
        self.runner = CheckRunner(
            database=self.database,
            pool=self.pool,
            dispatcher=self.dispatcher,
            notifier=self.discord_client,
            addresses=self.config.addresses,
            failures=self.failures,
            settings=settings
        )
        self.scheduler = CycleScheduler(
            runner=self.runner,
            warnings=self.notification_service,
            database=self.database,
            health=self.health,
            settings=settings,
            addresses=self.config.addresses,
            ping=self.discord_client.ping
        )
        register_commands(self.discord_client.bot, self.database, self.config.addresses, self.scheduler)
    
    def _signal_handler(self, signum, frame):
        """Handle shutdown signals"""
        logger.info(f"Received signal {signum}, shutting down gracefully...")
        self.running = False
    
    async def start(self):
        """Start the bot"""
        # Setup signal handlers for graceful shutdown
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)
        
        self.running = True
        logger.info("Starting outage notifier bot...")
        
        # Start Discord client in background
        discord_task = asyncio.create_task(self.discord_client.start())
        
        # Wait a bit for Discord to connect
        await asyncio.sleep(2)
        
        self.scheduler.start()
        
        try:
            # Run until stopped
            while self.running:
                if discord_task.done():
                    logger.error("Discord client stopped unexpectedly")
                    error = None if discord_task.cancelled() else discord_task.exception()
                    if error:
                        raise error
                    break
                await asyncio.sleep(1)
        finally:
            # Stop services
            logger.info("Stopping services...")
            await self.scheduler.stop()
            self.pool.shutdown()
            
            # Close Discord client
            await self.discord_client.close()
            discord_task.cancel()
            
            logger.info("Bot stopped")


async def main():
    """Main entry point"""
    try:
        bot = OutageBot()
        await bot.start()
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


def run():
    """Console script entry point"""
    asyncio.run(main())


if __name__ == "__main__":
    run()
