"""
Service Control Bot - Main entry point.

Discord slash commands for starting, stopping and inspecting systemd
services, with a per-guild allow-list of services.

Slash commands:
    /service <action> <service>  - start, stop or restart an allowed service
    /status                      - up/down for every allowed service
    /logs <service> [lines]      - recent journal lines of an allowed service
    /add_service <service>       - allow a service in this guild (owner only)

Usage:
    python -m src.service_bot.main

Environment Variables:
    DISCORD_TOKEN   - Discord bot token (required)
    SERVICE_BOT_ENV - "development" or "production" (default production)
    SERVERS_FILE    - Override the servers file path (optional)
"""

import asyncio
import base64
import logging
import os
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import List, Optional

import aiohttp
import discord
from discord import app_commands
from discord.ext import commands
from dotenv import load_dotenv

from .commands import CommandHandlers, CommandReply
from .config import BotConfig, load_config
from .executor import ServiceInvoker
from .gate import SERVICE_ACTIONS, AuthorizationGate, ServiceRequest
from .persistence import ServersFile
from .store import TenantAuthorizationStore

# Load environment variables from .env file
load_dotenv()

MAX_RECONNECT_ATTEMPTS = 5
RECONNECT_DELAY_BASE = 5  # seconds
RECONNECT_DELAY_MAX = 300

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
LOG_MAX_BYTES = 10 * 1024 * 1024
LOG_BACKUP_COUNT = 5

GUILD_ONLY_MESSAGE = "This command only works in a server."
COMMAND_FAILED_MESSAGE = "Something went wrong running that command."

logger = logging.getLogger("service_bot")


def setup_logging(log_dir: Path) -> logging.Logger:
    """Log everything to a daily rotating file in log_dir and INFO and up to stdout."""
    log_dir.mkdir(parents=True, exist_ok=True)
    formatter = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    log_file = log_dir / f"service_bot_{datetime.now():%Y%m%d}.log"

    file_handler = RotatingFileHandler(
        log_file, maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUP_COUNT, encoding="utf-8"
    )
    file_handler.setFormatter(formatter)
    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setLevel(logging.INFO)
    stdout_handler.setFormatter(formatter)

    logger.handlers.clear()
    logger.setLevel(logging.DEBUG)
    logger.addHandler(file_handler)
    logger.addHandler(stdout_handler)

    # Gateway warnings go to the file only
    discord.utils.setup_logging(
        handler=file_handler, formatter=formatter, level=logging.WARNING, root=False
    )

    logger.info(f"Logging to {log_file}")
    return logger


def validate_discord_token(token: str) -> tuple[bool, str]:
    """
    Validate Discord token format.

    Discord tokens have a specific format:
    - Base64 encoded user ID
    - Timestamp
    - HMAC
    """
    if not token:
        return False, "Discord token is empty"

    parts = token.split(".")
    if len(parts) != 3:
        return False, "Discord token format invalid (expected 3 parts separated by dots)"

    try:
        padded = parts[0] + "=" * (-len(parts[0]) % 4)
        base64.b64decode(padded, validate=True)
    except ValueError:
        return False, "Discord token format invalid (first part not valid base64)"

    return True, "Token format valid"


class ServiceControlBot(commands.Bot):
    """Discord bot exposing service control slash commands."""

    def __init__(
        self,
        config: BotConfig,
        store: TenantAuthorizationStore,
        servers_file: ServersFile,
        handlers: CommandHandlers,
    ):
        """Initialize the bot with its injected components."""
        super().__init__(command_prefix="!", intents=discord.Intents.default())
        self.config = config
        self.store = store
        self.servers_file = servers_file
        self.handlers = handlers
        self.application_owner_id: Optional[int] = None

    async def setup_hook(self):
        """Register slash commands globally and resolve the application owner."""
        self.tree.on_error = self.on_app_command_error

        for command in (service_command, status_command, logs_command, add_service_command):
            self.tree.add_command(command)

        synced = await self.tree.sync()
        logger.info(f"Synced {len(synced)} global slash commands")
        for cmd in synced:
            logger.info(f"  - /{cmd.name}: {cmd.description}")

        await self.fetch_application_owner_id()

    async def fetch_application_owner_id(self) -> Optional[int]:
        """Owner of the application (team owner for team-owned apps), cached."""
        if self.application_owner_id is None:
            app_info = await self.application_info()
            if app_info.team is not None:
                self.application_owner_id = app_info.team.owner_id
            elif app_info.owner is not None:
                self.application_owner_id = app_info.owner.id
            logger.info(f"Application owner: {self.application_owner_id}")
        return self.application_owner_id

    async def on_app_command_error(self, interaction: discord.Interaction, error: app_commands.AppCommandError):
        """Log the failure in full; the caller only gets a generic ephemeral notice."""
        name = interaction.command.name if interaction.command else "unknown"
        logger.error(f"/{name} failed in guild {interaction.guild_id}", exc_info=error)
        await send_reply(interaction, CommandReply(COMMAND_FAILED_MESSAGE, ephemeral=True))

    async def on_ready(self):
        """Called when bot successfully connects to Discord."""
        logger.info("=" * 60)
        logger.info("DISCORD BOT CONNECTED SUCCESSFULLY")
        logger.info(f"  Bot User: {self.user} (ID: {self.user.id})")
        logger.info(f"  Guilds: {len(self.guilds)}")
        for guild in self.guilds:
            logger.info(
                f"    - {guild.name} (ID: {guild.id}): "
                f"{len(self.store.services(guild.id))} allowed service(s)"
            )
        logger.info(f"  Latency: {self.latency * 1000:.2f}ms")
        logger.info(f"  Servers file: {self.servers_file.path}")
        logger.info(f"  Dry run: {self.handlers.invoker.dry_run}")
        logger.info("=" * 60)

    async def on_disconnect(self):
        """Called when bot disconnects from Discord."""
        logger.warning("Disconnected from Discord gateway")

    async def on_resumed(self):
        """Called when bot resumes a session after disconnect."""
        logger.info("Session resumed after disconnect")

    async def on_error(self, event_method: str, *args, **kwargs):
        """Called when an error occurs in an event handler."""
        logger.error(f"Error in event {event_method}", exc_info=True)

    async def close(self):
        """Flush the servers file before disconnecting."""
        await asyncio.to_thread(self.handlers.gate.flush)
        await super().close()


async def send_reply(interaction: discord.Interaction, reply: CommandReply):
    """Send a reply, as a followup if the interaction was deferred."""
    try:
        if interaction.response.is_done():
            await interaction.followup.send(reply.text, ephemeral=reply.ephemeral)
        else:
            await interaction.response.send_message(reply.text, ephemeral=reply.ephemeral)
    except discord.HTTPException as e:
        logger.error(f"Failed to send reply to {interaction.user}: {e}")


async def reject_outside_guild(interaction: discord.Interaction) -> bool:
    """Reply and return True when the interaction did not come from a guild."""
    if interaction.guild_id is not None:
        return False
    await send_reply(interaction, CommandReply(GUILD_ONLY_MESSAGE, ephemeral=True))
    return True


async def service_choices(
    interaction: discord.Interaction, current: str
) -> List[app_commands.Choice[str]]:
    """Autocomplete the service option from the guild's allow-list."""
    if interaction.guild_id is None:
        return []
    bot: ServiceControlBot = interaction.client
    return [
        app_commands.Choice(name=service, value=service)
        for service in bot.handlers.autocomplete(interaction.guild_id, current)
    ]


# ============================================================================
# SLASH COMMANDS
# ============================================================================

@app_commands.command(name="service", description="manages server services")
@app_commands.describe(action="what to do with the service", service="the service in question")
@app_commands.choices(
    action=[app_commands.Choice(name=action, value=action) for action in SERVICE_ACTIONS]
)
@app_commands.autocomplete(service=service_choices)
async def service_command(interaction: discord.Interaction, action: str, service: str):
    """Start, stop or restart an allowed service."""
    if await reject_outside_guild(interaction):
        return
    bot: ServiceControlBot = interaction.client

    await interaction.response.defer(thinking=True)
    reply = await bot.handlers.service(
        ServiceRequest(
            tenant_id=interaction.guild_id,
            action=action,
            service=service,
            caller_id=interaction.user.id,
        )
    )
    await send_reply(interaction, reply)


@app_commands.command(name="status", description="list statuses")
async def status_command(interaction: discord.Interaction):
    """Show up/down for each allowed service."""
    if await reject_outside_guild(interaction):
        return
    bot: ServiceControlBot = interaction.client

    await interaction.response.defer(ephemeral=True, thinking=True)
    reply = await bot.handlers.status(interaction.guild_id)
    await send_reply(interaction, reply)


@app_commands.command(name="logs", description="show recent journal entries of a service")
@app_commands.describe(
    service="the service in question",
    lines="Number of journal lines to show (default 50, max 200)",
)
@app_commands.autocomplete(service=service_choices)
async def logs_command(interaction: discord.Interaction, service: str, lines: Optional[int] = None):
    """Show recent journal lines of an allowed service."""
    if await reject_outside_guild(interaction):
        return
    bot: ServiceControlBot = interaction.client

    await interaction.response.defer(ephemeral=True, thinking=True)
    reply = await bot.handlers.logs(interaction.guild_id, service, lines)
    await send_reply(interaction, reply)


@app_commands.command(name="add_service", description="admin thing")
@app_commands.describe(service="which service to add")
async def add_service_command(interaction: discord.Interaction, service: str):
    """Allow a service in this guild. Application owner only."""
    if await reject_outside_guild(interaction):
        return
    bot: ServiceControlBot = interaction.client

    owner_id = await bot.fetch_application_owner_id()
    reply = await bot.handlers.add_service(
        ServiceRequest(
            tenant_id=interaction.guild_id,
            service=service,
            caller_id=interaction.user.id,
        ),
        owner_id,
    )
    await send_reply(interaction, reply)


# ============================================================================
# BOT CREATION AND LIFECYCLE
# ============================================================================

def create_bot(
    config: BotConfig, store: TenantAuthorizationStore, servers_file: ServersFile
) -> ServiceControlBot:
    """Wire the gate, invoker and handlers around an already loaded store."""
    gate = AuthorizationGate(store, servers_file, save_retries=config.save_retries)
    invoker = ServiceInvoker(
        timeout=config.command_timeout,
        max_output=config.max_output_size,
        dry_run=config.is_development,
    )
    handlers = CommandHandlers(
        gate,
        invoker,
        default_log_lines=config.default_log_lines,
        max_log_lines=config.max_log_lines,
    )
    return ServiceControlBot(config, store, servers_file, handlers)


async def run_bot_with_reconnect(config: BotConfig):
    """
    Keep the bot connected, retrying connection failures with exponential backoff.

    The store is loaded once and handed to every bot instance, so a
    reconnect never re-reads the servers file. Anything other than a
    connection failure propagates to main().
    """
    servers_file = ServersFile(config.servers_file)
    store = servers_file.load()

    for attempt in range(1, MAX_RECONNECT_ATTEMPTS + 1):
        bot = create_bot(config, store, servers_file)
        try:
            async with bot:
                await bot.start(config.discord_token)
            logger.info("Bot stopped")
            return
        except discord.LoginFailure as e:
            logger.error(f"Discord rejected the token: {e}")
            sys.exit(1)
        except (aiohttp.ClientError, discord.GatewayNotFound, discord.HTTPException) as e:
            logger.error(f"Connection attempt {attempt}/{MAX_RECONNECT_ATTEMPTS} failed: {e}")
            if attempt < MAX_RECONNECT_ATTEMPTS:
                delay = min(RECONNECT_DELAY_BASE * 2 ** (attempt - 1), RECONNECT_DELAY_MAX)
                logger.warning(f"Reconnecting in {delay}s")
                await asyncio.sleep(delay)

    logger.error("Giving up after repeated connection failures")
    sys.exit(1)


def main():
    """Main entry point with validation."""
    config = load_config()
    setup_logging(config.log_dir)

    logger.info("=" * 60)
    logger.info("SERVICE CONTROL BOT STARTING")
    logger.info(f"  Time: {datetime.now().isoformat()}")
    logger.info(f"  PID: {os.getpid()}")
    logger.info(f"  Environment: {config.environment}")
    logger.info(f"  Log directory: {config.log_dir}")
    logger.info("=" * 60)

    is_valid, error_msg = config.validate()
    if not is_valid:
        logger.error(f"Configuration validation failed: {error_msg}")
        sys.exit(1)

    token_valid, token_msg = validate_discord_token(config.discord_token)
    if not token_valid:
        logger.error(f"Discord token validation failed: {token_msg}")
        sys.exit(1)
    logger.info(f"  Discord token: {token_msg}")

    logger.info("Configuration loaded successfully:")
    logger.info(f"  Servers file: {config.servers_file}")
    logger.info(f"  Command timeout: {config.command_timeout}s")
    logger.info(f"  Save retries: {config.save_retries}")

    try:
        asyncio.run(run_bot_with_reconnect(config))
    except KeyboardInterrupt:
        logger.info("Bot shutdown by keyboard interrupt (Ctrl+C)")
    except SystemExit as e:
        logger.info(f"Bot exiting with code {e.code}")
        raise
    except Exception as e:
        logger.error(f"Bot crashed with unexpected error: {e}", exc_info=True)
        sys.exit(1)
    finally:
        logger.info("Bot shutdown complete")


if __name__ == "__main__":
    main()
