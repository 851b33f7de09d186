import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict


class _Entry:
    __slots__ = ("lock", "holders")

    def __init__(self):
        self.lock = asyncio.Lock()
        self.holders = 0


class SessionLocks:
    """One asyncio lock per session id.

    Entries live only while some task holds or waits on them, so unrelated
    sessions never share a lock and finished sessions leave nothing behind.
    """

    def __init__(self):
        self._entries: Dict[str, _Entry] = {}

    @asynccontextmanager
    async def hold(self, session_id: str) -> AsyncIterator[None]:
        entry = self._entries.get(session_id)
        if entry is None:
            entry = self._entries[session_id] = _Entry()
        entry.holders += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.holders -= 1
            if entry.holders == 0:
                del self._entries[session_id]

    def __len__(self) -> int:
        return len(self._entries)
