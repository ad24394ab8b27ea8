import discord
from discord.ext import commands
from discord import Intents, Member

import logging
import os
import sys
import traceback
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from admin_commands import AdminCommandHandler
from ban_engine import BanEngine
from ban_store import LedgerStore, OffsetStore
from config import LOGGER_NAME, load_config, setup_logging
from discord_platform import DiscordModerationPlatform, snapshot_member
from moderation import ModerationOrchestrator, ModerationSettings, OutcomeKind

logger = logging.getLogger(LOGGER_NAME)


# --- Bot Implementation ---
class AutobanBot(commands.Bot):
    def __init__(self, config: Dict[str, Any], engine: BanEngine):
        intents = Intents.default()
        intents.members = True # Required for member update events and fetching
        intents.message_content = True # Required for prefix commands

        super().__init__(command_prefix=config['commands']['prefix'], intents=intents,
                         case_insensitive=True, help_command=None)
        self.config = config
        self.guild_id = config['guild_id']
        self.engine = engine
        self.platform = DiscordModerationPlatform(self)
        self.engine.status_publisher = self.platform.set_status

        log_channel_id = config['channels'].get('mod_log_channel_id')
        self.orchestrator = ModerationOrchestrator(self.platform, engine, ModerationSettings(
            guild_id=str(self.guild_id),
            role_id=str(config['roles']['monitored_role_id']),
            log_channel_id=str(log_channel_id) if log_channel_id else None,
            dm_message=config['messages']['dm_message'],
            ban_reason=config['messages']['ban_reason'],
            dm_delay_seconds=config['moderation']['dm_delay_seconds'],
        ))
        self.startup_complete = False

    async def setup_hook(self):
        """Load the ban record and register commands before connecting."""
        logger.info("Running setup_hook...")
        await self.engine.load()
        await self.add_cog(BanCommands(self, AdminCommandHandler(self.engine, self.config['commands']['prefix'])))

    async def on_ready(self):
        """Called when the bot is fully connected and ready."""
        logger.info(f'Logged in as {self.user} ({self.user.id})')
        logger.info(f'discord.py version: {discord.__version__}')

        # on_ready fires again after reconnects; seed only once per process
        if self.startup_complete:
            await self.engine.republish()
            return
        self.startup_complete = True

        try:
            await self.perform_startup_seed()
        except Exception as e:
            logger.error(f"Unexpected error during startup seeding: {e}", exc_info=True)

    async def perform_startup_seed(self):
        """Seeds the ban record from the guild's ban list and reports to the mod log."""
        logger.info("Performing startup seed...")
        report = ["**Autoban startup**"]

        if self.get_guild(self.guild_id) is None:
            logger.warning("Target guild not found in cache at startup; trying an API fetch.")
        seeded = await self.orchestrator.seed_ledger()
        if seeded is None:
            report.append("Ban list seeding skipped (could not fetch guild bans).")
        else:
            report.append(f"Seeded {seeded} new IDs from guild bans.")

        await self.engine.republish()
        report.append(f"Recorded bans: {self.engine.recorded_count}")
        report.append(f"Offset: {self.engine.offset}")
        report.append(f"Displayed: {self.engine.displayed_count()}")

        log_channel_id = self.orchestrator.settings.log_channel_id
        if log_channel_id:
            try:
                await self.platform.send_channel_message(log_channel_id, "\n".join(report))
            except Exception as e:
                logger.warning(f"Failed to post startup report to mod-log channel: {e}")
        logger.info("Startup seed complete.")

    # --- Event Handlers ---
    async def on_member_update(self, before: Member, after: Member):
        """Ban members who just received the monitored role."""
        if after.guild.id != self.guild_id: return
        try:
            outcome = await self.orchestrator.handle_member_update(snapshot_member(before), snapshot_member(after))
            if outcome is not None:
                logger.info(f"Role-add for {after} ({after.id}) finished: {outcome.kind.value}")
                if outcome.kind is OutcomeKind.BAN_FAILED:
                    logger.warning(f"Ban for {after.id} failed; it will be retried on the next role-add.")
        except Exception as e:
            logger.error(f"Unexpected error in member update handler: {e}", exc_info=True)

    async def on_command_error(self, ctx: commands.Context, error: commands.CommandError):
        # Other bots share the prefix, and foreign-guild commands fail the cog check
        if isinstance(error, (commands.CommandNotFound, commands.CheckFailure)): return
        logger.warning(f"Command error in '{ctx.message.content}': {error}",
                       exc_info=getattr(error, 'original', None) is not None)

    async def on_error(self, event_method: str, *args, **kwargs):
        logger.error(f"Unhandled error in event '{event_method}':\n{traceback.format_exc()}")


# --- Admin Commands ---
class BanCommands(commands.Cog):
    """Prefix commands for the ban count and ban record."""
    def __init__(self, bot: AutobanBot, handler: AdminCommandHandler):
        self.bot = bot
        self.handler = handler

    async def cog_check(self, ctx: commands.Context) -> bool:
        return ctx.guild is not None and ctx.guild.id == self.bot.guild_id

    @staticmethod
    def is_admin(member: Optional[Member]) -> bool:
        try:
            return isinstance(member, Member) and member.guild_permissions.administrator
        except AttributeError:
            return False

    async def _reply(self, ctx: commands.Context, text: str):
        await ctx.reply(text, mention_author=False)

    @commands.command(name="addbans")
    async def addbans(self, ctx: commands.Context, amount: Optional[str] = None):
        await self._reply(ctx, await self.handler.addbans(self.is_admin(ctx.author), amount))

    @commands.command(name="setbans")
    async def setbans(self, ctx: commands.Context, amount: Optional[str] = None):
        await self._reply(ctx, await self.handler.setbans(self.is_admin(ctx.author), amount))

    @commands.command(name="bancount")
    async def bancount(self, ctx: commands.Context):
        await self._reply(ctx, await self.handler.bancount(self.is_admin(ctx.author)))

    @commands.command(name="unmarkban")
    async def unmarkban(self, ctx: commands.Context, user_id: Optional[str] = None):
        await self._reply(ctx, await self.handler.unmarkban(self.is_admin(ctx.author), user_id))

    @commands.command(name="banhelp")
    async def banhelp(self, ctx: commands.Context):
        await self._reply(ctx, await self.handler.banhelp(self.is_admin(ctx.author)))


def build_engine(config: Dict[str, Any]) -> BanEngine:
    return BanEngine(
        LedgerStore(config['storage']['ban_record_file']),
        OffsetStore(config['storage']['ban_offset_file']),
        status_template=config['messages']['status_template'],
    )


# --- Main Function and Bot Startup ---
def main():
    config = load_config()
    setup_logging(config)

    # Load environment variables (after getting var name from config)
    load_dotenv()
    token_env_var = config.get('discord_token_env')
    bot_token = os.getenv(token_env_var) if token_env_var else None
    if not bot_token:
        logger.critical(f"CRITICAL ERROR: Discord bot token environment variable '{token_env_var}' not found or not set.")
        sys.exit(1)

    bot = AutobanBot(config=config, engine=build_engine(config))

    # --- Start the Bot ---
    try:
        logger.info("Starting bot...")
        # Pass None for handler so discord.py keeps our logging setup
        bot.run(bot_token, log_handler=None)
    except discord.LoginFailure:
        logger.critical("Failed to log in: Invalid Discord token.")
        sys.exit(1)
    except discord.PrivilegedIntentsRequired:
        logger.critical("Failed to start: Required Privileged Intents (Server Members, Message Content) are not enabled in the Discord Developer Portal.")
        sys.exit(1)
    except Exception as e:
        logger.critical(f"Critical error during bot execution: {e}", exc_info=True)
        sys.exit(1)
    finally:
        logger.info("Bot process terminated.")


if __name__ == "__main__":
    main()
