"""Operator diagnostics: probe one address or send a test message"""
import argparse
import asyncio
import sys

from .config import Config
from .storage.models import ScheduleDay
from .services.discord_client import DiscordClient
from .services.probe_pool import ProbePool
from .services.schedule_fetcher import DtekScheduleFetcher
from .services.messages import format_intervals
from .utils.logger import setup_logger

logger = setup_logger(__name__)


async def run_probe(config: Config, address_key: str, day: ScheduleDay):
    """
    Probe one configured address through the real fetcher and print the result
    
    Args:
        config: Configuration object
        address_key: Key of the address to probe
        day: Which day's schedule to read
    """
    addresses = {address.key: address for address in config.addresses}
    address = addresses.get(address_key)
    if address is None:
        logger.error(f"Unknown address '{address_key}'. Known: {', '.join(addresses)}")
        sys.exit(1)
    
    settings = config.settings
    pool = ProbePool(
        DtekScheduleFetcher(config.fetcher_url, config.fetcher_timeout),
        size=1,
        admission_timeout=settings.admission_timeout_seconds,
        retries=settings.probe_retries,
        retry_delay=settings.probe_retry_delay_seconds
    )
    try:
        logger.info(f"Probing {address.name} ({day.value})...")
        result = await pool.probe(address, day)
    finally:
        pool.shutdown()
    
    logger.info(f"✓ Group: {result.group_name}")
    for line in format_intervals(result.intervals).splitlines():
        logger.info(line)


async def run_message(config: Config, user_id: int):
    """
    Send a test direct message to a user
    
    Args:
        config: Configuration object
        user_id: Discord user ID
    """
    discord_client = DiscordClient(
        token=config.discord_bot_token,
        command_prefix=config.command_prefix
    )
    
    # Start Discord client
    discord_task = asyncio.create_task(discord_client.start())
    
    # Wait for Discord to connect
    logger.info("Connecting to Discord...")
    await asyncio.sleep(3)
    
    try:
        logger.info("Sending test message...")
        success = await discord_client.send(user_id, "🔌 Test message from the outage notifier bot")
        
        if success:
            logger.info("✓ Test message sent successfully!")
        else:
            logger.error("✗ Failed to send test message")
            sys.exit(1)
    finally:
        # Clean up
        await discord_client.close()
        discord_task.cancel()
        try:
            await discord_task
        except asyncio.CancelledError:
            pass


def main():
    """Main entry point"""
    parser = argparse.ArgumentParser(
        description="Diagnostics for the outage notifier bot"
    )
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument(
        "--probe",
        metavar="ADDRESS_KEY",
        help="Probe one configured address and print its schedule"
    )
    group.add_argument(
        "--message",
        metavar="USER_ID",
        type=int,
        help="Send a test direct message to a Discord user"
    )
    parser.add_argument(
        "--tomorrow",
        action="store_true",
        help="With --probe, read tomorrow's schedule instead of today's"
    )
    
    args = parser.parse_args()
    
    # Load configuration
    try:
        config = Config()
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)
    
    if args.probe:
        day = ScheduleDay.TOMORROW if args.tomorrow else ScheduleDay.TODAY
        asyncio.run(run_probe(config, args.probe, day))
    else:
        asyncio.run(run_message(config, args.message))


if __name__ == "__main__":
    main()
