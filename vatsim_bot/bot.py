"""
VATSIM Discord Bot

Answers flight status lookups, keeps member roles in step with their
VATSIM ratings and flight hours, and relays schedule/rules announcements
pushed to its webhook API.
"""

import asyncio
import logging
import sys
from typing import List, Optional, Set

import aiohttp
import discord
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from discord import app_commands
from discord.ext import commands

from . import flight
from .config import Config, load_config, setup_logging
from .sync import BatchReport, RoleSyncer
from .vatsim import NotLinkedError, VatsimClient, VatsimError
from .webhooks import WebhookServer


class VatsimBot(commands.Bot):
    """Discord bot for VATSIM flight status, role sync and announcements."""

    def __init__(self, config: Config, start_services: bool = True):
        intents = discord.Intents.default()
        intents.members = True

        super().__init__(
            command_prefix=commands.when_mentioned,
            intents=intents,
            description="VATSIM flight status and role sync bot",
            help_command=None
        )

        self.config = config
        self.start_services = start_services
        self.http_session: Optional[aiohttp.ClientSession] = None
        self.vatsim: Optional[VatsimClient] = None
        self.syncer: Optional[RoleSyncer] = None
        self.scheduler: Optional[AsyncIOScheduler] = None
        self.webhooks: Optional[WebhookServer] = None

        self._sync_lock = asyncio.Lock()
        self._background_tasks: Set[asyncio.Task] = set()

        # Add commands
        self.add_commands()

    def add_commands(self) -> None:
        """Add slash commands."""

        @self.tree.command(name='whereis', description="Show a pilot's live VATSIM flight status")
        @app_commands.describe(cid="VATSIM CID of the pilot (defaults to the configured pilot)")
        async def where_is(interaction: discord.Interaction, cid: Optional[int] = None):
            await interaction.response.defer()
            await interaction.followup.send(embed=await self.flight_status(cid))

        @self.tree.command(name='sync', description="Sync your roles with your VATSIM ratings and hours")
        @app_commands.guild_only()
        async def sync_roles(interaction: discord.Interaction):
            await interaction.response.defer(ephemeral=True)
            await interaction.followup.send(embed=await self.sync_for(interaction.user), ephemeral=True)

        @self.tree.command(name='syncall', description="Sync roles for every member of this server")
        @app_commands.guild_only()
        @app_commands.default_permissions(manage_roles=True)
        @app_commands.checks.has_permissions(manage_roles=True)
        async def sync_all(interaction: discord.Interaction):
            if self._sync_lock.locked():
                await interaction.response.send_message("A role sync is already running.", ephemeral=True)
                return

            await interaction.response.send_message("Starting role sync for all members...", ephemeral=True)
            task = asyncio.create_task(self._manual_guild_sync(interaction.guild, interaction.channel))
            self._background_tasks.add(task)
            task.add_done_callback(self._background_tasks.discard)

        @sync_all.error
        async def sync_all_error(interaction: discord.Interaction, error: app_commands.AppCommandError):
            if isinstance(error, app_commands.MissingPermissions):
                await interaction.response.send_message("You need Manage Roles to do that.", ephemeral=True)
            else:
                raise error

    async def setup_hook(self) -> None:
        """Called when the bot is starting up."""
        # Create HTTP session
        self.http_session = aiohttp.ClientSession()
        self.vatsim = VatsimClient(self.http_session)
        self.syncer = RoleSyncer(self.vatsim, self.config.roles)

        if not self.start_services:
            return

        # Setup scheduler for periodic role sync
        interval = self.config.roles.auto_sync_interval
        if interval > 0 and self.config.guild_id:
            self.scheduler = AsyncIOScheduler()
            self.scheduler.add_job(
                self.sync_configured_guild,
                'interval',
                minutes=interval,
                id='role_sync',
                replace_existing=True,
                max_instances=1,
                coalesce=True
            )
            self.scheduler.start()
            logging.info(f"Automatic role sync every {interval} minute(s)")
        else:
            logging.info("Automatic role sync disabled")

        if self.config.webhook_enabled:
            self.webhooks = WebhookServer(
                self,
                secret=self.config.webhook_secret,
                schedule_channel_id=self.config.schedule_channel_id,
                rules_channel_id=self.config.rules_channel_id,
                host=self.config.webhook_host,
                port=self.config.webhook_port
            )
            await self.webhooks.start()

        logging.info("Bot setup complete")

    async def on_ready(self) -> None:
        """Called when the bot is ready."""
        logging.info(f"Logged in as {self.user} (ID: {self.user.id})")
        logging.info(f"Connected to {len(self.guilds)} guild(s)")

        await self.change_presence(
            activity=discord.Activity(
                type=discord.ActivityType.watching,
                name="the VATSIM network"
            )
        )

    async def close(self) -> None:
        """Clean up when bot is shutting down."""
        if self.scheduler:
            self.scheduler.shutdown(wait=False)
        if self.webhooks:
            await self.webhooks.stop()
        if self.http_session:
            await self.http_session.close()
        await super().close()

    async def flight_status(self, cid: Optional[int]) -> discord.Embed:
        """Build the reply for a flight status lookup."""
        cid = cid or self.config.vatsim_cid
        if not cid:
            return flight.error_embed("No CID given and no default pilot configured.")

        try:
            pilot = await self.vatsim.find_pilot(cid)
        except VatsimError as e:
            logging.error(f"Error fetching VATSIM data: {e}")
            return flight.error_embed()

        if pilot is None:
            return flight.offline_embed(cid)
        return flight.flight_embed(pilot)

    async def sync_for(self, member: discord.Member) -> discord.Embed:
        """Sync one member's roles and build the reply."""
        try:
            result = await self.syncer.sync_member(member)
        except NotLinkedError:
            return flight.not_linked_embed()
        except VatsimError as e:
            logging.error(f"Role sync for {member} failed: {e}")
            return flight.error_embed()
        return flight.sync_embed(result)

    async def sync_guild(self, guild: discord.Guild) -> Optional[BatchReport]:
        """Run a full role sync for a guild unless one is already running."""
        if self._sync_lock.locked():
            logging.info(f"Role sync for {guild.name} already running, skipping")
            return None

        async with self._sync_lock:
            members: List[discord.Member] = [m async for m in guild.fetch_members(limit=None)]
            return await self.syncer.sync_members(members)

    async def sync_configured_guild(self) -> None:
        """Scheduled job: sync the guild named in the config."""
        guild = self.get_guild(self.config.guild_id)
        if guild is None:
            logging.error(f"Could not find guild {self.config.guild_id}")
            return
        await self.sync_guild(guild)

    async def _manual_guild_sync(self, guild: discord.Guild, channel) -> None:
        report = await self.sync_guild(guild)
        if report is None or channel is None:
            return
        try:
            await channel.send(embed=flight.batch_embed(report))
        except discord.DiscordException as e:
            logging.error(f"Failed to send sync summary: {e}")

    async def sync_commands(self) -> List[app_commands.AppCommand]:
        """Register slash commands with Discord."""
        if self.config.guild_id:
            guild = discord.Object(id=self.config.guild_id)
            self.tree.copy_global_to(guild=guild)
            return await self.tree.sync(guild=guild)
        return await self.tree.sync()


def _load_or_exit() -> Config:
    try:
        return load_config()
    except FileNotFoundError as e:
        print(f"Error: {e}")
        sys.exit(1)
    except ValueError as e:
        print(f"Configuration error: {e}")
        sys.exit(1)


async def register_commands(config: Config) -> None:
    bot = VatsimBot(config, start_services=False)
    async with bot:
        await bot.login(config.bot_token)
        synced = await bot.sync_commands()
        scope = f"guild {config.guild_id}" if config.guild_id else "globally"
        logging.info(f"Registered {len(synced)} application command(s) {scope}")
        if not config.guild_id:
            logging.info("Note: Global commands may take up to 1 hour to propagate.")


def register_main():
    """Entry point for registering slash commands."""
    config = _load_or_exit()
    setup_logging(config)

    try:
        asyncio.run(register_commands(config))
    except discord.LoginFailure:
        logging.error("Invalid Discord bot token. Please check your configuration.")
        sys.exit(1)
    except discord.HTTPException as e:
        logging.error(f"Error registering commands: {e}")
        sys.exit(1)


def main():
    """Main entry point for the bot."""
    config = _load_or_exit()

    setup_logging(config)
    logging.info("Starting VATSIM Bot...")

    # Create and run bot
    bot = VatsimBot(config)

    try:
        bot.run(config.bot_token, log_handler=None)
    except discord.LoginFailure:
        logging.error("Invalid Discord bot token. Please check your configuration.")
        sys.exit(1)
    except Exception as e:
        logging.error(f"Bot crashed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
