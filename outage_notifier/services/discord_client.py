"""Discord bot client for direct-message notifications"""
import asyncio
from typing import Optional
import discord
from discord.ext import commands

from ..utils.health import TransportHealth
from ..utils.logger import setup_logger

logger = setup_logger(__name__)

SENT = "sent"
RECIPIENT_FAILED = "recipient_failed"
TRANSPORT_FAILED = "transport_failed"


class DiscordClient:
    """Discord bot client for notifications"""
    
    def __init__(
        self,
        token: str,
        command_prefix: str = '!',
        health: Optional[TransportHealth] = None,
        max_retries: int = 3
    ):
        """
        Initialize Discord client
        
        Args:
            token: Discord bot token
            command_prefix: Prefix of chat commands
            health: Transport health fed by every send
            max_retries: Attempts per message before giving up on a recipient
        """
        self.token = token
        self.health = health or TransportHealth()
        self.max_retries = max_retries
        
        intents = discord.Intents.default()
        intents.message_content = True
        self.bot = commands.Bot(command_prefix=command_prefix, intents=intents)
        
        self._setup_events()
    
    def _setup_events(self):
        """Set up Discord bot events"""
        @self.bot.event
        async def on_ready():
            logger.info(f"Discord bot logged in as {self.bot.user}")
            self.health.mark_healthy()
        
        @self.bot.event
        async def on_disconnect():
            logger.warning("Discord connection lost")
        
        @self.bot.event
        async def on_command_error(ctx: commands.Context, error: commands.CommandError):
            if isinstance(error, commands.CommandNotFound):
                return
            if isinstance(error, (commands.MissingRequiredArgument, commands.BadArgument)):
                await ctx.send(f"⚠️ {error}. Try `{ctx.prefix}help {ctx.command}`.")
                return
            logger.error(f"Error in command '{ctx.command}': {error}")
            await ctx.send("❌ Something went wrong, please try again later.")
    
    async def start(self):
        """Start the Discord bot"""
        await self.bot.start(self.token)
    
    async def close(self):
        """Close the Discord bot connection"""
        await self.bot.close()
    
    async def send(self, user_id: int, text: str) -> bool:
        """
        Send a direct message to a user
        
        Args:
            user_id: Discord user ID
            text: Message text
        
        Returns:
            True if the message was sent successfully
        """
        return await self._send_once(user_id, text) == SENT
    
    async def _send_once(self, user_id: int, text: str) -> str:
        try:
            user = self.bot.get_user(user_id) or await self.bot.fetch_user(user_id)
            await user.send(text)
            logger.debug(f"Sent direct message to user {user_id}")
            return SENT
        
        except discord.errors.NotFound:
            logger.error(f"User {user_id} not found")
            return RECIPIENT_FAILED
        except discord.errors.Forbidden as e:
            logger.error(f"Cannot send direct messages to user {user_id}: {e}")
            logger.error("The user may have direct messages from server members disabled.")
            return RECIPIENT_FAILED
        except discord.errors.HTTPException as e:
            logger.error(f"Discord API error sending to user {user_id}: {e}")
            return TRANSPORT_FAILED
        except Exception as e:
            logger.error(f"Error sending to user {user_id}: {e}")
            return TRANSPORT_FAILED
    
    async def send_with_retry(self, user_id: int, text: str, max_retries: Optional[int] = None) -> bool:
        """
        Send a direct message with exponential backoff retry
        
        Failures caused by the recipient (unknown user, closed DMs) are not
        retried. Exhausted retries count against the transport health.
        
        Args:
            user_id: Discord user ID
            text: Message text
            max_retries: Maximum number of attempts, defaults to the client's setting
        
        Returns:
            True if the message was sent successfully
        """
        max_retries = max_retries or self.max_retries
        for attempt in range(max_retries):
            status = await self._send_once(user_id, text)
            if status == SENT:
                self.health.record_success()
                return True
            if status == RECIPIENT_FAILED:
                return False
            
            if attempt < max_retries - 1:
                wait_time = 2 ** attempt  # Exponential backoff
                logger.info(f"Retrying message to user {user_id} in {wait_time} seconds...")
                await asyncio.sleep(wait_time)
        
        logger.error(f"Failed to send message to user {user_id} after {max_retries} attempts")
        self.health.record_failure()
        return False
    
    async def ping(self) -> bool:
        """Lightweight request used to check that Discord is reachable"""
        try:
            await self.bot.application_info()
            return True
        except discord.DiscordException as e:
            logger.warning(f"Discord health check failed: {e}")
            return False
