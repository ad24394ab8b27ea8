"""Ban ledger and displayed-count bookkeeping.

The engine is the only owner of the in-memory ban record and offset. Stores
are called after every mutation; a failed save is logged by the store and the
in-memory values stay authoritative for the running process.
"""

import logging
from typing import Awaitable, Callable, FrozenSet, Iterable, Optional, Set

from ban_store import LedgerStore, OffsetStore

logger = logging.getLogger("AutobanBot.engine")

DEFAULT_STATUS_TEMPLATE = "Banned ({count}) Minors"

StatusPublisher = Callable[[str], Awaitable[None]]


def compute_displayed_count(recorded: int, offset: int) -> int:
    """Recorded bans plus offset, floored at zero."""
    return max(0, recorded + offset)


class BanEngine:
    def __init__(self, ledger_store: LedgerStore, offset_store: OffsetStore,
                 status_publisher: Optional[StatusPublisher] = None,
                 status_template: str = DEFAULT_STATUS_TEMPLATE):
        self.ledger_store = ledger_store
        self.offset_store = offset_store
        self.status_publisher = status_publisher
        self.status_template = status_template
        self._banned: Set[str] = set()
        self._offset: int = 0

    async def load(self):
        """Loads the ledger and offset from disk. Called once at startup."""
        self._banned = set(await self.ledger_store.load())
        self._offset = await self.offset_store.load()
        logger.info(f"Engine loaded: {len(self._banned)} recorded bans, offset {self._offset}, displayed {self.displayed_count()}")

    # --- Read side ---
    @property
    def recorded_count(self) -> int:
        return len(self._banned)

    @property
    def offset(self) -> int:
        return self._offset

    @property
    def banned_ids(self) -> FrozenSet[str]:
        return frozenset(self._banned)

    def is_banned(self, user_id) -> bool:
        return str(user_id) in self._banned

    def displayed_count(self) -> int:
        return compute_displayed_count(len(self._banned), self._offset)

    def status_text(self) -> str:
        return self.status_template.format(count=self.displayed_count())

    # --- Ledger mutations ---
    async def mark(self, user_id):
        """Records a user as banned. Calling it twice is harmless."""
        self._banned.add(str(user_id))
        await self.ledger_store.save(self._banned)
        await self.republish()

    async def unmark(self, user_id):
        """Removes a user from the record; absent IDs are ignored."""
        self._banned.discard(str(user_id))
        await self.ledger_store.save(self._banned)
        await self.republish()

    async def seed_from_authoritative_source(self, external_ids: Iterable) -> int:
        """Unions the platform's ban list into the ledger and returns how many
        IDs were new. Never removes: a partial fetch must not unban anyone."""
        before = len(self._banned)
        self._banned.update(str(user_id) for user_id in external_ids)
        added = len(self._banned) - before
        await self.ledger_store.save(self._banned)
        logger.info(f"Seeded ban record from guild bans: {added} new, {len(self._banned)} entries")
        await self.republish()
        return added

    # --- Offset mutations ---
    async def apply_offset_delta(self, delta) -> int:
        self._offset += int(delta)
        await self.offset_store.save(self._offset)
        await self.republish()
        return self.displayed_count()

    async def set_offset(self, value) -> int:
        self._offset = int(value)
        await self.offset_store.save(self._offset)
        await self.republish()
        return self.displayed_count()

    # --- Status ---
    async def republish(self) -> bool:
        """Pushes the status text to the publisher. Failures are logged and
        reported as False; callers are free to ignore the result."""
        if self.status_publisher is None:
            return False
        try:
            status_text = self.status_text()
            await self.status_publisher(status_text)
        except Exception as e:
            logger.warning(f"Failed to update presence: {e}")
            return False
        logger.info(f"Updated presence to: {status_text}")
        return True
