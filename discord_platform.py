import logging
from typing import Set

import discord

from moderation import MemberSnapshot, ModerationPlatform, PlatformError

logger = logging.getLogger("AutobanBot.platform")


def snapshot_member(member: discord.Member) -> MemberSnapshot:
    """Copies the fields the orchestrator needs out of a discord.py Member."""
    top_role = member.top_role
    return MemberSnapshot(
        user_id=str(member.id),
        tag=str(member),
        guild_id=str(member.guild.id),
        guild_name=member.guild.name,
        role_ids=frozenset(str(role.id) for role in member.roles),
        top_role_position=top_role.position if top_role else 0,
    )


def _platform_error(e: discord.HTTPException) -> PlatformError:
    return PlatformError(e.text or str(e), code=e.code)


class DiscordModerationPlatform(ModerationPlatform):
    """ModerationPlatform backed by a connected discord.py client."""

    def __init__(self, client: discord.Client):
        self.client = client

    async def _guild(self, guild_id: str) -> discord.Guild:
        guild = self.client.get_guild(int(guild_id))
        if guild: return guild
        try:
            return await self.client.fetch_guild(int(guild_id))
        except discord.HTTPException as e:
            raise _platform_error(e) from e

    async def _agent_member(self, guild: discord.Guild) -> discord.Member:
        if guild.me: return guild.me
        if not self.client.user: raise PlatformError("Client is not logged in.")
        try:
            return await guild.fetch_member(self.client.user.id)
        except discord.HTTPException as e:
            raise _platform_error(e) from e

    async def fetch_member(self, guild_id: str, user_id: str) -> MemberSnapshot:
        guild = await self._guild(guild_id)
        try:
            member = await guild.fetch_member(int(user_id))
        except discord.HTTPException as e:
            raise _platform_error(e) from e
        return snapshot_member(member)

    async def fetch_ban_list(self, guild_id: str) -> Set[str]:
        guild = await self._guild(guild_id)
        try:
            ban_ids = {str(entry.user.id) async for entry in guild.bans(limit=None)}
        except discord.HTTPException as e:
            raise _platform_error(e) from e
        logger.debug(f"Fetched {len(ban_ids)} bans from guild {guild_id}")
        return ban_ids

    async def agent_can_ban(self, guild_id: str) -> bool:
        me = await self._agent_member(await self._guild(guild_id))
        return me.guild_permissions.ban_members

    async def agent_top_role_position(self, guild_id: str) -> int:
        me = await self._agent_member(await self._guild(guild_id))
        return me.top_role.position if me.top_role else 0

    async def ban(self, guild_id: str, user_id: str, reason: str):
        guild = await self._guild(guild_id)
        try:
            await guild.ban(discord.Object(id=int(user_id)), reason=reason, delete_message_seconds=0)
        except discord.HTTPException as e:
            raise _platform_error(e) from e

    async def send_direct_message(self, user_id: str, text: str):
        try:
            user = self.client.get_user(int(user_id)) or await self.client.fetch_user(int(user_id))
            await user.send(text)
        except discord.HTTPException as e: # Forbidden when the user has DMs closed
            raise _platform_error(e) from e

    async def send_channel_message(self, channel_id: str, text: str):
        try:
            channel = self.client.get_channel(int(channel_id)) or await self.client.fetch_channel(int(channel_id))
        except discord.HTTPException as e:
            raise _platform_error(e) from e
        if not isinstance(channel, discord.abc.Messageable):
            raise PlatformError(f"Channel {channel_id} is not text-based.")
        try:
            for chunk in [text[i:i+1990] for i in range(0, len(text), 1990)]:
                await channel.send(chunk)
        except discord.HTTPException as e:
            raise _platform_error(e) from e

    async def set_status(self, text: str):
        try:
            await self.client.change_presence(activity=discord.Game(name=text), status=discord.Status.online)
        except discord.HTTPException as e:
            raise _platform_error(e) from e
