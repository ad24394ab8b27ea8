import pytest

from ban_engine import BanEngine
from ban_store import LedgerStore, OffsetStore
from moderation import MemberSnapshot, ModerationPlatform, ModerationSettings

GUILD_ID = "1000"
ROLE_ID = "2000"
LOG_CHANNEL_ID = "3000"


class FakePlatform(ModerationPlatform):
    """In-memory stand-in for the chat platform. Records every call."""

    def __init__(self):
        self.members = {}
        self.ban_list = set()
        self.can_ban = True
        self.agent_position = 10
        self.ban_error = None
        self.dm_error = None
        self.fetch_error = None
        self.ban_list_error = None
        self.channel_error = None
        self.status_error = None
        self.banned = []
        self.dms = []
        self.channel_messages = []
        self.statuses = []

    async def fetch_member(self, guild_id, user_id):
        if self.fetch_error: raise self.fetch_error
        return self.members[user_id]

    async def fetch_ban_list(self, guild_id):
        if self.ban_list_error: raise self.ban_list_error
        return set(self.ban_list)

    async def agent_can_ban(self, guild_id):
        return self.can_ban

    async def agent_top_role_position(self, guild_id):
        return self.agent_position

    async def ban(self, guild_id, user_id, reason):
        if self.ban_error: raise self.ban_error
        self.banned.append((guild_id, user_id, reason))

    async def send_direct_message(self, user_id, text):
        if self.dm_error: raise self.dm_error
        self.dms.append((user_id, text))

    async def send_channel_message(self, channel_id, text):
        if self.channel_error: raise self.channel_error
        self.channel_messages.append((channel_id, text))

    async def set_status(self, text):
        if self.status_error: raise self.status_error
        self.statuses.append(text)


def make_member(user_id="42", roles=(), position=1, guild_id=GUILD_ID):
    return MemberSnapshot(
        user_id=user_id,
        tag=f"user{user_id}",
        guild_id=guild_id,
        guild_name="Test Guild",
        role_ids=frozenset(roles),
        top_role_position=position,
    )


@pytest.fixture
def platform():
    return FakePlatform()


@pytest.fixture
def engine(tmp_path, platform):
    return BanEngine(
        LedgerStore(str(tmp_path / "banned_ids.json")),
        OffsetStore(str(tmp_path / "ban_offset.json")),
        status_publisher=platform.set_status,
    )


@pytest.fixture
def settings():
    return ModerationSettings(
        guild_id=GUILD_ID,
        role_id=ROLE_ID,
        log_channel_id=LOG_CHANNEL_ID,
        dm_message="You have been banned.",
        ban_reason="Restricted role",
        dm_delay_seconds=0,
    )
