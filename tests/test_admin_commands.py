import pytest

from admin_commands import ADMIN_ONLY_MESSAGE, NOT_IN_RECORD_MESSAGE, AdminCommandHandler, parse_int_arg


@pytest.fixture
def handler(engine):
    return AdminCommandHandler(engine, prefix="!")


@pytest.mark.parametrize("raw, expected", [
    ("5", 5),
    ("-2", -2),
    ("+3", 3),
    ("  12", 12),
    ("5abc", 5),
    ("abc", None),
    ("", None),
    (None, None),
    ("-", None),
])
def test_parse_int_arg(raw, expected):
    assert parse_int_arg(raw) == expected


@pytest.mark.asyncio
async def test_setbans_then_addbans(handler, engine):
    assert await handler.setbans(True, "5") == "Ban offset set to 5. Displayed count: 5"
    assert await handler.addbans(True, "-2") == "Added -2 to ban offset. New offset: 3. Displayed count: 3"
    assert engine.offset == 3


@pytest.mark.asyncio
@pytest.mark.parametrize("command", ["addbans", "setbans"])
async def test_offset_commands_require_admin(handler, engine, command):
    reply = await getattr(handler, command)(False, "5")
    assert reply == ADMIN_ONLY_MESSAGE
    assert engine.offset == 0


@pytest.mark.asyncio
async def test_offset_commands_usage(handler):
    assert await handler.addbans(True, None) == "Usage: `!addbans <integer>`"
    assert await handler.setbans(True, "many") == "Usage: `!setbans <integer>`"


@pytest.mark.asyncio
async def test_bancount_for_members_and_admins(handler, engine):
    await engine.mark("A")
    await engine.set_offset(2)
    assert await handler.bancount(False) == "Displayed ban count: 3"
    assert await handler.bancount(True) == "Recorded bans: 1\nOffset: 2\nDisplayed: 3"


@pytest.mark.asyncio
async def test_unmarkban(handler, engine):
    await engine.mark("A")
    await engine.mark("B")
    assert await handler.unmarkban(True, "A") == "Removed A from ban-record. Displayed count: 1"
    assert not engine.is_banned("A")


@pytest.mark.asyncio
async def test_unmarkban_rejections(handler, engine):
    await engine.mark("A")
    assert await handler.unmarkban(True, "Z") == NOT_IN_RECORD_MESSAGE
    assert await handler.unmarkban(True, None) == "Usage: `!unmarkban <userId>`"
    assert await handler.unmarkban(False, "A") == ADMIN_ONLY_MESSAGE
    assert engine.is_banned("A")


@pytest.mark.asyncio
async def test_banhelp_hides_admin_commands(engine):
    handler = AdminCommandHandler(engine, prefix="?")
    member_help = await handler.banhelp(False)
    admin_help = await handler.banhelp(True)
    assert "`?bancount`" in member_help
    assert "setbans" not in member_help
    assert "`?setbans <integer>`" in admin_help
