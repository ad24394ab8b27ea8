import abc
import asyncio
from dataclasses import dataclass, field
import enum
import logging
from typing import FrozenSet, Optional, Set

from ban_engine import BanEngine

logger = logging.getLogger("AutobanBot.moderation")


# --- Platform Capability Interface ---
class PlatformError(Exception):
    """A failed platform call. ``code`` is the platform's error code, if any."""

    def __init__(self, message: str, code: Optional[int] = None):
        super().__init__(message)
        self.code = code


@dataclass(frozen=True)
class MemberSnapshot:
    user_id: str
    tag: str
    guild_id: str
    guild_name: str
    role_ids: FrozenSet[str] = field(default_factory=frozenset)
    top_role_position: int = 0

    def has_role(self, role_id) -> bool:
        return str(role_id) in self.role_ids


class ModerationPlatform(abc.ABC):
    """What the orchestrator needs from the chat platform. Every call may raise
    PlatformError."""

    @abc.abstractmethod
    async def fetch_member(self, guild_id: str, user_id: str) -> MemberSnapshot: ...

    @abc.abstractmethod
    async def fetch_ban_list(self, guild_id: str) -> Set[str]: ...

    @abc.abstractmethod
    async def agent_can_ban(self, guild_id: str) -> bool: ...

    @abc.abstractmethod
    async def agent_top_role_position(self, guild_id: str) -> int: ...

    @abc.abstractmethod
    async def ban(self, guild_id: str, user_id: str, reason: str): ...

    @abc.abstractmethod
    async def send_direct_message(self, user_id: str, text: str): ...

    @abc.abstractmethod
    async def send_channel_message(self, channel_id: str, text: str): ...

    @abc.abstractmethod
    async def set_status(self, text: str): ...


# --- Outcomes ---
class OutcomeKind(enum.Enum):
    SKIPPED = "skipped"
    PERMISSION_DENIED = "permission_denied"
    HIERARCHY_VIOLATION = "hierarchy_violation"
    BANNED = "banned"
    BAN_FAILED = "ban_failed"


@dataclass
class ModerationOutcome:
    kind: OutcomeKind
    note: str
    dm_delivered: bool = False
    error: Optional[PlatformError] = None


@dataclass
class ModerationSettings:
    guild_id: str
    role_id: str
    log_channel_id: Optional[str]
    dm_message: str
    ban_reason: str
    dm_delay_seconds: float = 1.0


def format_mod_log(member: MemberSnapshot, outcome: ModerationOutcome) -> str:
    """Builds the mod-log channel message for a terminal outcome."""
    lines = [
        "**Moderation action**",
        f"User: {member.tag} ({member.user_id})",
        f"Guild: {member.guild_name} ({member.guild_id})",
        f"Note: {outcome.note}",
    ]
    if outcome.error is not None:
        code = outcome.error.code if outcome.error.code is not None else "N/A"
        lines.append(f"Error: {code} - {outcome.error}")
    return "\n".join(lines)


# --- Orchestrator ---
class ModerationOrchestrator:
    def __init__(self, platform: ModerationPlatform, engine: BanEngine, settings: ModerationSettings):
        self.platform = platform
        self.engine = engine
        self.settings = settings

    def role_was_added(self, before: Optional[MemberSnapshot], after: MemberSnapshot) -> bool:
        had_role_before = before is not None and before.has_role(self.settings.role_id)
        return not had_role_before and after.has_role(self.settings.role_id)

    async def handle_member_update(self, before: Optional[MemberSnapshot], after: MemberSnapshot) -> Optional[ModerationOutcome]:
        """Runs one role-add event to a terminal outcome. Returns None when the
        event is not a monitored role being added in the monitored guild."""
        if str(after.guild_id) != str(self.settings.guild_id):
            return None

        logger.debug(f"[EVENT] member update member={after.tag} id={after.user_id}")

        # The cached snapshot may be stale; ask the platform for the current roles
        member = after
        try:
            member = await self.platform.fetch_member(after.guild_id, after.user_id)
        except PlatformError as e:
            logger.warning(f"Failed to fetch fresh member {after.user_id}: {e.code or e}")

        logger.debug(f"old roles: {', '.join(sorted(before.role_ids)) if before and before.role_ids else 'none'}")
        logger.debug(f"new roles: {', '.join(sorted(member.role_ids)) or 'none'}")

        if not self.role_was_added(before, member):
            return None
        logger.debug(f"Monitored role added to {member.tag} ({member.user_id})")

        outcome = await self._process(member)
        await self._notify(member, outcome)
        return outcome

    async def _process(self, member: MemberSnapshot) -> ModerationOutcome:
        # 1. Ledger check first, so a recorded user never reaches the ban call
        if self.engine.is_banned(member.user_id):
            logger.info(f"Skipping ban for {member.tag} ({member.user_id}): user is in ban-record (was banned previously).")
            return ModerationOutcome(OutcomeKind.SKIPPED, "Skipped ban: user was previously banned (ban-record).")

        # 2. Preflight checks
        can_ban = await self.platform.agent_can_ban(member.guild_id)
        logger.debug(f"agent has ban permission: {can_ban}")
        if not can_ban:
            logger.error("Missing BAN_MEMBERS permission. Aborting ban.")
            return ModerationOutcome(OutcomeKind.PERMISSION_DENIED, "Attempted to ban but bot lacks BAN_MEMBERS permission.")

        agent_position = await self.platform.agent_top_role_position(member.guild_id)
        logger.debug(f"role positions -> bot: {agent_position} target: {member.top_role_position}")
        if agent_position <= member.top_role_position:
            logger.error("Bot role is not higher than target user. Aborting ban.")
            return ModerationOutcome(OutcomeKind.HIERARCHY_VIOLATION,
                                     "Attempted to ban but bot role is below or equal to the target user's highest role.")

        # 3. Best-effort DM before the account becomes unreachable
        dm_delivered = False
        dm_error: Optional[PlatformError] = None
        try:
            await self.platform.send_direct_message(member.user_id, self.settings.dm_message)
            dm_delivered = True
            logger.info(f"DM sent to {member.tag}")
            await asyncio.sleep(self.settings.dm_delay_seconds)
        except PlatformError as e:
            dm_error = e
            logger.warning(f"Could not DM {member.tag}: {e.code or e}")

        # 4. Ban, then record. A failed ban leaves the ledger alone so a later role-add retries it
        try:
            await self.platform.ban(member.guild_id, member.user_id, self.settings.ban_reason)
        except PlatformError as e:
            logger.error(f"Failed to ban {member.tag}: {e}")
            return ModerationOutcome(OutcomeKind.BAN_FAILED, "Failed to ban user - see bot logs.", dm_delivered=dm_delivered, error=e)

        logger.info(f"Banned {member.tag} ({member.user_id}) - reason: {self.settings.ban_reason}")
        await self.engine.mark(member.user_id)
        return ModerationOutcome(OutcomeKind.BANNED, f"Banned user ({self.settings.ban_reason}). DM sent: {str(dm_delivered).lower()}",
                                 dm_delivered=dm_delivered, error=dm_error)

    async def _notify(self, member: MemberSnapshot, outcome: ModerationOutcome) -> bool:
        """Sends one mod-log line for the outcome. Never raises."""
        if not self.settings.log_channel_id:
            return False
        try:
            await self.platform.send_channel_message(self.settings.log_channel_id, format_mod_log(member, outcome))
        except Exception as e:
            logger.warning(f"Failed to send message to mod-log channel {self.settings.log_channel_id}: {e}")
            return False
        logger.info("Sent mod-log message")
        return True

    # --- Startup ---
    async def seed_ledger(self) -> Optional[int]:
        """Pulls the guild's ban list into the ledger. Returns the number of new
        IDs, or None if the list could not be fetched."""
        logger.info("Fetching current guild bans to seed ban-record...")
        try:
            ban_list = await self.platform.fetch_ban_list(self.settings.guild_id)
        except PlatformError as e:
            logger.warning(f"Could not fetch guild bans to seed ban record: {e}")
            return None
        return await self.engine.seed_from_authoritative_source(ban_list)
