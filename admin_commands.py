import logging
import re
from typing import Optional

from ban_engine import BanEngine

logger = logging.getLogger("AutobanBot.commands")

_LEADING_INT = re.compile(r"\s*([+-]?\d+)")

ADMIN_ONLY_MESSAGE = "You must be a server Administrator to use this command."
NOT_IN_RECORD_MESSAGE = "That ID is not in the ban-record."


def parse_int_arg(raw: Optional[str]) -> Optional[int]:
    """Lenient integer parse: optional sign and digits, trailing text ignored
    ("5abc" -> 5). Returns None when there are no leading digits."""
    if raw is None:
        return None
    match = _LEADING_INT.match(raw)
    return int(match.group(1)) if match else None


class AdminCommandHandler:
    """Reply text for the prefix commands. The discord Cog in bot.py only
    routes messages here and sends whatever comes back."""

    def __init__(self, engine: BanEngine, prefix: str = "!"):
        self.engine = engine
        self.prefix = prefix

    def _usage(self, command: str, arg: str) -> str:
        return f"Usage: `{self.prefix}{command} <{arg}>`"

    async def addbans(self, is_admin: bool, raw_amount: Optional[str]) -> str:
        if not is_admin: return ADMIN_ONLY_MESSAGE
        amount = parse_int_arg(raw_amount)
        if amount is None: return self._usage("addbans", "integer")
        displayed = await self.engine.apply_offset_delta(amount)
        logger.info(f"Ban offset adjusted by {amount}; offset now {self.engine.offset}")
        return f"Added {amount} to ban offset. New offset: {self.engine.offset}. Displayed count: {displayed}"

    async def setbans(self, is_admin: bool, raw_amount: Optional[str]) -> str:
        if not is_admin: return ADMIN_ONLY_MESSAGE
        amount = parse_int_arg(raw_amount)
        if amount is None: return self._usage("setbans", "integer")
        displayed = await self.engine.set_offset(amount)
        logger.info(f"Ban offset set to {self.engine.offset}")
        return f"Ban offset set to {self.engine.offset}. Displayed count: {displayed}"

    async def bancount(self, is_admin: bool) -> str:
        # Readable by everyone; admins also see the raw numbers
        if not is_admin:
            return f"Displayed ban count: {self.engine.displayed_count()}"
        return (f"Recorded bans: {self.engine.recorded_count}\n"
                f"Offset: {self.engine.offset}\n"
                f"Displayed: {self.engine.displayed_count()}")

    async def unmarkban(self, is_admin: bool, user_id: Optional[str]) -> str:
        if not is_admin: return ADMIN_ONLY_MESSAGE
        if not user_id: return self._usage("unmarkban", "userId")
        if not self.engine.is_banned(user_id):
            return NOT_IN_RECORD_MESSAGE
        await self.engine.unmark(user_id)
        logger.info(f"Removed {user_id} from ban-record")
        return f"Removed {user_id} from ban-record. Displayed count: {self.engine.displayed_count()}"

    async def banhelp(self, is_admin: bool) -> str:
        p = self.prefix
        lines = ["**Autoban commands**", f"`{p}bancount` - show the displayed ban count"]
        if is_admin:
            lines += [
                f"`{p}addbans <integer>` - add to the manual ban offset",
                f"`{p}setbans <integer>` - set the manual ban offset",
                f"`{p}unmarkban <userId>` - remove an ID from the ban-record",
            ]
        return "\n".join(lines)
