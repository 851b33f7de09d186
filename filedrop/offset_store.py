"""Keyed store of upload session records.

The record is the single source of truth for resume decisions. A ``put``
must be durable and visible to every later ``get`` before the append that
caused it is acknowledged.
"""

import asyncio
import json
import os
from pathlib import Path
from typing import Dict, List, Optional, Protocol

import aiofiles
import aiofiles.os

from .models import UploadSession

RECORD_SUFFIX = ".json"


class OffsetStore(Protocol):
    async def get(self, session_id: str) -> Optional[UploadSession]: ...

    async def create(self, session: UploadSession) -> None: ...

    async def put(self, session_id: str, offset: int, complete: bool) -> None: ...

    async def delete(self, session_id: str) -> bool: ...

    async def list_ids(self) -> List[str]: ...


class MemoryOffsetStore:
    def __init__(self):
        self._records: Dict[str, UploadSession] = {}

    async def get(self, session_id: str) -> Optional[UploadSession]:
        session = self._records.get(session_id)
        return session.model_copy(deep=True) if session else None

    async def create(self, session: UploadSession) -> None:
        self._records[session.id] = session.model_copy(deep=True)

    async def put(self, session_id: str, offset: int, complete: bool) -> None:
        session = self._records[session_id]
        session.offset = offset
        session.complete = complete

    async def delete(self, session_id: str) -> bool:
        return self._records.pop(session_id, None) is not None

    async def list_ids(self) -> List[str]:
        return list(self._records)


class FileOffsetStore:
    """Sidecar JSON record per session, next to the blob."""

    def __init__(self, directory: Path):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, session_id: str) -> Path:
        return self.directory / f"{session_id}{RECORD_SUFFIX}"

    async def _write(self, session: UploadSession):
        path = self._path(session.id)
        tmp_path = path.with_name(path.name + ".tmp")
        async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
            await f.write(session.model_dump_json())
            await f.flush()
            await asyncio.to_thread(os.fsync, f.fileno())
        await aiofiles.os.replace(tmp_path, path)

    async def get(self, session_id: str) -> Optional[UploadSession]:
        try:
            async with aiofiles.open(self._path(session_id), "r", encoding="utf-8") as f:
                raw = await f.read()
        except FileNotFoundError:
            return None
        return UploadSession.model_validate(json.loads(raw))

    async def create(self, session: UploadSession) -> None:
        await self._write(session)

    async def put(self, session_id: str, offset: int, complete: bool) -> None:
        session = await self.get(session_id)
        if session is None:
            raise KeyError(session_id)
        session.offset = offset
        session.complete = complete
        await self._write(session)

    async def delete(self, session_id: str) -> bool:
        try:
            await aiofiles.os.remove(self._path(session_id))
        except FileNotFoundError:
            return False
        return True

    async def list_ids(self) -> List[str]:
        names = await aiofiles.os.listdir(self.directory)
        return [name[: -len(RECORD_SUFFIX)] for name in names if name.endswith(RECORD_SUFFIX)]
