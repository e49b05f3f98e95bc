"""Containment of failures raised by scheduled task bodies"""
from typing import Awaitable, Callable, Optional, TypeVar

import discord

from .health import TransportHealth
from .logger import setup_logger

logger = setup_logger(__name__)

T = TypeVar("T")


async def run_guarded(
    name: str,
    func: Callable[[], Awaitable[T]],
    health: Optional[TransportHealth] = None
) -> Optional[T]:
    """
    Run a task body so that nothing it raises reaches the scheduler.
    
    Discord errors additionally mark the transport unhealthy.
    
    Args:
        name: Task name used in log messages
        func: Coroutine function to run
        health: Transport health to flag on Discord errors
    
    Returns:
        The task's result, or None if it failed
    """
    try:
        return await func()
    except discord.DiscordException as e:
        logger.error(f"Task '{name}' failed with a Discord error: {e}", exc_info=True)
        if health is not None:
            health.mark_unhealthy(f"{type(e).__name__} in task '{name}'")
    except Exception as e:
        logger.error(f"Task '{name}' failed: {e}", exc_info=True)
    return None
