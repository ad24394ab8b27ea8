import asyncio
import json
import logging
import math
import os
import tempfile
from typing import Any, Iterable, Optional, Set

logger = logging.getLogger("AutobanBot.store")


def _write_atomic(path: str, payload: str):
    """Writes payload to a temp file beside path, then swaps it into place."""
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    fd, temp_path = tempfile.mkstemp(prefix=os.path.basename(path) + ".", suffix=".tmp", dir=directory)
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_path, path)
    except BaseException:
        try: os.remove(temp_path)
        except OSError: pass
        raise


def _read_text(path: str) -> Optional[str]:
    """Returns file contents, or None when the file does not exist."""
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return f.read()
    except FileNotFoundError:
        return None


class _JsonFileStore:
    """Shared plumbing for the two crash-safe JSON stores."""

    def __init__(self, path: str, label: str):
        self.path = path
        self.label = label
        self.lock = asyncio.Lock() # Serialises saves so the newest snapshot lands last

    def _read_json(self) -> Any:
        raw = _read_text(self.path)
        if raw is None or not raw.strip():
            return None
        return json.loads(raw)

    async def _save_payload(self, build_payload) -> bool:
        async with self.lock:
            try:
                payload = build_payload() # Snapshot taken inside the lock
                loop = asyncio.get_running_loop()
                await loop.run_in_executor(None, _write_atomic, self.path, payload)
                return True
            except Exception as e:
                logger.error(f"Failed to save {self.label} to {self.path}: {e}", exc_info=True)
                return False


class LedgerStore(_JsonFileStore):
    """Persists the set of previously banned user IDs as a JSON array."""

    def __init__(self, path: str):
        super().__init__(path, "ban record")

    async def load(self) -> Set[str]:
        """Reads the ledger. Missing or malformed files yield an empty set."""
        loop = asyncio.get_running_loop()
        try:
            data = await loop.run_in_executor(None, self._read_json)
        except Exception as e:
            logger.warning(f"Failed to load ban record file {self.path}: {e}")
            return set()

        if data is None:
            logger.info("No existing ban record file; starting fresh.")
            return set()
        if not isinstance(data, list):
            logger.warning("Ban record file malformed (expected a JSON array); ignoring.")
            return set()

        ids = {str(item) for item in data}
        logger.info(f"Loaded ban record: {len(ids)} entries")
        return ids

    async def save(self, ids: Iterable[str]) -> bool:
        """Writes the whole ledger. Returns False (and logs) on failure."""
        ok = await self._save_payload(lambda: json.dumps(sorted(str(i) for i in ids), indent=2))
        if ok: logger.debug(f"Saved ban record to {self.path}")
        return ok


class OffsetStore(_JsonFileStore):
    """Persists the manual ban-count offset as a bare JSON integer."""

    def __init__(self, path: str):
        super().__init__(path, "ban offset")

    @staticmethod
    def _coerce(data: Any) -> Optional[int]:
        # Accepts a bare number or the older {"offset": n} form
        if isinstance(data, dict):
            data = data.get('offset')
        if isinstance(data, bool) or not isinstance(data, (int, float)):
            return None
        if isinstance(data, float) and not math.isfinite(data):
            return None
        return int(data) # Truncates toward zero

    async def load(self) -> int:
        """Reads the offset. Missing or malformed files yield 0."""
        loop = asyncio.get_running_loop()
        try:
            data = await loop.run_in_executor(None, self._read_json)
        except Exception as e:
            logger.warning(f"Failed to load ban offset file {self.path}: {e}")
            return 0

        if data is None:
            logger.info("No ban offset file; using 0.")
            return 0
        offset = self._coerce(data)
        if offset is None:
            logger.warning("Ban offset file malformed; resetting to 0.")
            return 0
        logger.info(f"Loaded ban offset: {offset}")
        return offset

    async def save(self, value: int) -> bool:
        """Writes the offset in bare-integer form. Returns False on failure."""
        ok = await self._save_payload(lambda: json.dumps(int(value)))
        if ok: logger.debug(f"Saved ban offset: {value}")
        return ok
