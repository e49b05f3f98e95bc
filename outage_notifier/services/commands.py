"""Chat commands for subscriptions and on-demand checks"""
from typing import Optional, Sequence, Tuple

from discord.ext import commands

from ..storage.database import Database
from ..storage.models import Address, ScheduleDay
from ..utils.logger import setup_logger
from . import messages
from .scheduler import CycleScheduler

logger = setup_logger(__name__)

QUEUE_FULL_REPLY = "⏳ Too many checks are waiting right now, please try again in a few minutes."


def cached_schedule_text(database: Database, address: Address) -> Tuple[str, bool]:
    """
    Render the stored schedule of an address
    
    Returns:
        (message text, whether a today schedule was cached)
    """
    group_name = database.get_group_for_address(address.key)
    today = database.get_group_schedule(group_name, ScheduleDay.TODAY) if group_name else None
    tomorrow = database.get_group_schedule(group_name, ScheduleDay.TOMORROW) if group_name else None
    text = messages.format_cached_schedule(
        address,
        group_name,
        today.intervals if today else None,
        tomorrow.intervals if tomorrow else None
    )
    return text, today is not None


def schedule_reply(
    database: Database,
    scheduler: CycleScheduler,
    address: Address,
    requester_id: int
) -> str:
    """
    Cached schedule of an address, requesting a check when nothing is cached
    
    Returns:
        Reply text; says whether the check was queued
    """
    text, cached = cached_schedule_text(database, address)
    if cached:
        return text
    if scheduler.force_check_address(address.key, requester_id):
        return f"{text} A check has been requested."
    return f"{text}\n{QUEUE_FULL_REPLY}"


def register_commands(
    bot: commands.Bot,
    database: Database,
    addresses: Sequence[Address],
    scheduler: CycleScheduler
):
    """
    Register the bot's chat commands
    
    Args:
        bot: Discord bot
        database: Database instance
        addresses: Monitored addresses
        scheduler: Scheduler accepting forced checks
    """
    by_key = {address.key: address for address in addresses}
    
    def subscribed_address(user_id: int) -> Optional[Address]:
        user = database.get_user(user_id)
        if user and user.subscribed_address_key:
            return by_key.get(user.subscribed_address_key)
        return None
    
    async def require_subscription(ctx: commands.Context) -> Optional[Address]:
        address = subscribed_address(ctx.author.id)
        if address is None:
            await ctx.send(
                f"ℹ️ You are not subscribed to an address. "
                f"Use `{ctx.prefix}addresses` and `{ctx.prefix}subscribe <key>`."
            )
        return address
    
    @bot.before_invoke
    async def register_author(ctx: commands.Context):
        # First contact creates the user
        database.register_user(ctx.author.id, ctx.author.display_name)
    
    @bot.command(name="addresses", help="List monitored addresses")
    async def list_addresses(ctx: commands.Context):
        current = subscribed_address(ctx.author.id)
        await ctx.send(messages.format_address_list(addresses, current.key if current else None))
    
    @bot.command(name="subscribe", help="Subscribe to outage updates for an address")
    async def subscribe(ctx: commands.Context, address_key: str):
        address = by_key.get(address_key)
        if address is None:
            await ctx.send(f"⚠️ Unknown address `{address_key}`. Use `{ctx.prefix}addresses` to list them.")
            return
        
        database.set_user_address(ctx.author.id, address.key)
        logger.info(f"User {ctx.author.id} subscribed to {address.key}")
        
        text = schedule_reply(database, scheduler, address, ctx.author.id)
        await ctx.send(f"🔔 Subscribed to **{address.name}**.\n{text}")
    
    @bot.command(name="unsubscribe", help="Stop outage updates")
    async def unsubscribe(ctx: commands.Context):
        database.set_user_address(ctx.author.id, None)
        logger.info(f"User {ctx.author.id} unsubscribed")
        await ctx.send("🔕 Unsubscribed. You will no longer receive outage updates.")
    
    @bot.command(name="schedule", help="Show the cached schedule of your address")
    async def schedule(ctx: commands.Context):
        address = await require_subscription(ctx)
        if address is None:
            return
        await ctx.send(schedule_reply(database, scheduler, address, ctx.author.id))
    
    @bot.command(name="check", help="Check the schedule of your address now")
    async def check(ctx: commands.Context):
        address = await require_subscription(ctx)
        if address is None:
            return
        if scheduler.force_check_address(address.key, ctx.author.id):
            await ctx.send(f"🔍 Checking **{address.name}**, the result will arrive as a direct message.")
        else:
            await ctx.send(QUEUE_FULL_REPLY)
    
    @bot.command(name="checkall", help="Check every monitored address now")
    async def check_all(ctx: commands.Context):
        if scheduler.force_check_all(ctx.author.id):
            await ctx.send("🔍 Checking every address, a summary will arrive as a direct message.")
        else:
            await ctx.send(QUEUE_FULL_REPLY)
    
    @bot.command(name="tomorrow", help="Check tomorrow's schedule of your address")
    async def tomorrow(ctx: commands.Context):
        address = await require_subscription(ctx)
        if address is None:
            return
        if scheduler.force_check_next_day(address.key, ctx.author.id):
            await ctx.send(f"🔍 Checking tomorrow's schedule for **{address.name}**.")
        else:
            await ctx.send(QUEUE_FULL_REPLY)
