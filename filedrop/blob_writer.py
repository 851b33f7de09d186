import asyncio
import logging
import os
from pathlib import Path
from typing import AsyncIterable, AsyncIterator, Optional

import aiofiles
import aiofiles.os

from .errors import OversizedChunk, StorageDesync

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 64 * 1024


class BlobWriter:
    """Append-only byte objects, one file per upload session."""

    def __init__(self, directory: Path):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def path(self, session_id: str) -> Path:
        return self.directory / session_id

    async def create_empty(self, session_id: str):
        async with aiofiles.open(self.path(session_id), "xb"):
            pass

    async def size(self, session_id: str) -> Optional[int]:
        try:
            stat = await aiofiles.os.stat(self.path(session_id))
        except FileNotFoundError:
            return None
        return stat.st_size

    async def append_at(
        self,
        session_id: str,
        expected_length: int,
        chunks: AsyncIterable[bytes],
        limit: int,
    ) -> int:
        """Append ``chunks`` at ``expected_length`` and return the number of bytes written.

        The blob must currently hold exactly ``expected_length`` bytes. At most
        ``limit`` bytes are accepted; crossing it raises ``OversizedChunk``.
        On any failure the blob is truncated back to ``expected_length`` so a
        partially received chunk never survives.
        """
        actual_length = await self.size(session_id)
        if actual_length != expected_length:
            logger.critical(
                f"Blob {session_id} holds {actual_length} bytes but the offset record says {expected_length}"
            )
            raise StorageDesync(session_id, expected_length, actual_length)

        path = self.path(session_id)
        written = 0
        try:
            async with aiofiles.open(path, "ab") as f:
                async for chunk in chunks:
                    if not chunk:
                        continue
                    if written + len(chunk) > limit:
                        raise OversizedChunk(session_id, expected_length, expected_length + limit)
                    await f.write(chunk)
                    written += len(chunk)
                await f.flush()
                await asyncio.to_thread(os.fsync, f.fileno())
        except BaseException:
            logger.warning(f"Discarding partial chunk for {session_id} ({written} bytes received)")
            await asyncio.to_thread(os.truncate, path, expected_length)
            raise
        return written

    async def truncate(self, session_id: str, length: int):
        await asyncio.to_thread(os.truncate, self.path(session_id), length)

    async def read_range(self, session_id: str, start: int, end: int) -> AsyncIterator[bytes]:
        async with aiofiles.open(self.path(session_id), "rb") as f:
            await f.seek(start)
            remaining = end - start + 1
            while remaining > 0:
                chunk = await f.read(min(READ_CHUNK_SIZE, remaining))
                if not chunk:
                    break
                yield chunk
                remaining -= len(chunk)

    async def delete(self, session_id: str) -> bool:
        try:
            await aiofiles.os.remove(self.path(session_id))
        except FileNotFoundError:
            return False
        return True
