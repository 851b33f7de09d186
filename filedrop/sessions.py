"""Resumable upload state machine.

A session moves ``Created -> Receiving -> Complete``; ``Cancelled`` is
reachable from the first two only. State is reloaded from the offset store
on every call, and every mutation of one session runs under that session's
lock so the offset check and the append act as one step.
"""

import logging
import re
import uuid
from typing import AsyncIterable, AsyncIterator, Dict, List, Optional, Union

from .binder import MetadataBinder
from .blob_writer import BlobWriter
from .errors import (
    Conflict,
    InvalidRequest,
    NotFound,
    OffsetMismatch,
    OversizedChunk,
    UploadTooLarge,
)
from .locks import SessionLocks
from .models import UploadSession
from .offset_store import OffsetStore
from .schemas import SessionHandle, SessionStatus

logger = logging.getLogger(__name__)

SESSION_ID_RE = re.compile(r"^[0-9a-f]{32}$")
DEFAULT_FILENAME = "unknown"
DEFAULT_CONTENT_TYPE = "application/octet-stream"

Body = Union[bytes, AsyncIterable[bytes], None]


def is_session_id(value: str) -> bool:
    return bool(SESSION_ID_RE.match(value))


async def iter_body(body: Body) -> AsyncIterator[bytes]:
    if body is None:
        return
    if isinstance(body, (bytes, bytearray, memoryview)):
        if body:
            yield bytes(body)
        return
    async for chunk in body:
        yield chunk


def _known_length(body: Body, content_length: Optional[int]) -> Optional[int]:
    if content_length is not None:
        return content_length
    if body is None:
        return 0
    if isinstance(body, (bytes, bytearray, memoryview)):
        return len(body)
    return None


async def _reject_any_bytes(session_id: str, body: Body, content_length: Optional[int]):
    length = _known_length(body, content_length)
    if length is None:
        async for chunk in iter_body(body):
            if chunk:
                raise OversizedChunk(session_id, 0, 0)
    elif length:
        raise OversizedChunk(session_id, 0, 0)


class UploadSessionManager:
    def __init__(
        self,
        store: OffsetStore,
        blobs: BlobWriter,
        binder: MetadataBinder,
        max_upload_size: int,
        locks: Optional[SessionLocks] = None,
    ):
        self.store = store
        self.blobs = blobs
        self.binder = binder
        self.max_upload_size = max_upload_size
        self.locks = locks or SessionLocks()

    async def create_session(
        self,
        declared_size: int,
        metadata: Dict[str, str],
        body: Body = None,
        content_length: Optional[int] = None,
    ) -> SessionHandle:
        if declared_size < 0:
            raise InvalidRequest(f"Invalid upload length: {declared_size}")
        if declared_size > self.max_upload_size:
            raise UploadTooLarge(declared_size, self.max_upload_size)
        transfer_id = metadata.get("transferId")
        if not transfer_id:
            raise InvalidRequest("Missing transferId in metadata")
        self.binder.check_transfer(transfer_id)

        session = UploadSession(
            id=uuid.uuid4().hex,
            declared_size=declared_size,
            metadata=dict(metadata),
            complete=declared_size == 0,
        )
        async with self.locks.hold(session.id):
            await self.store.create(session)
            try:
                await self.blobs.create_empty(session.id)
                self.binder.attach_upload(
                    transfer_id,
                    session.id,
                    metadata.get("filename") or DEFAULT_FILENAME,
                    declared_size,
                    metadata.get("filetype") or DEFAULT_CONTENT_TYPE,
                )
                offset = 0
                if session.complete:
                    await _reject_any_bytes(session.id, body, content_length)
                    self.binder.mark_complete(session.id, 0)
                elif _known_length(body, content_length) != 0:
                    offset = await self._append_locked(session, 0, body, content_length)
            except BaseException:
                await self._discard(session.id)
                raise

        logger.info(
            f"Created upload {session.id} for transfer {transfer_id} "
            f"({declared_size} bytes declared, {offset} received)"
        )
        return SessionHandle(id=session.id, offset=offset)

    async def append_chunk(
        self,
        session_id: str,
        claimed_offset: int,
        body: Body,
        content_length: Optional[int] = None,
    ) -> int:
        if not is_session_id(session_id):
            raise NotFound(session_id)
        async with self.locks.hold(session_id):
            session = await self.store.get(session_id)
            if session is None:
                raise NotFound(session_id)
            return await self._append_locked(session, claimed_offset, body, content_length)

    async def _append_locked(
        self,
        session: UploadSession,
        claimed_offset: int,
        body: Body,
        content_length: Optional[int],
    ) -> int:
        if session.complete:
            raise Conflict(f"Upload {session.id} is already complete", session.id)
        if claimed_offset != session.offset:
            raise OffsetMismatch(session.id, claimed_offset, session.offset)

        length = _known_length(body, content_length)
        if length is not None and length > session.remaining:
            raise OversizedChunk(session.id, session.offset, session.declared_size)
        if length == 0:
            return session.offset

        written = await self.blobs.append_at(session.id, session.offset, iter_body(body), session.remaining)
        if written == 0:
            return session.offset

        new_offset = session.offset + written
        complete = new_offset == session.declared_size
        try:
            await self.store.put(session.id, new_offset, complete)
        except Exception:
            logger.error(f"Could not persist offset {new_offset} for {session.id}", exc_info=True)
            await self.blobs.truncate(session.id, session.offset)
            raise

        self.binder.record_progress(session.id, new_offset)
        if complete:
            self.binder.mark_complete(session.id, new_offset)
            logger.info(f"Upload {session.id} complete ({new_offset} bytes)")
        return new_offset

    async def get_status(self, session_id: str) -> SessionStatus:
        session = await self.store.get(session_id) if is_session_id(session_id) else None
        if session is None:
            raise NotFound(session_id)
        return SessionStatus(
            id=session.id,
            offset=session.offset,
            declared_size=session.declared_size,
            complete=session.complete,
            metadata=session.metadata,
        )

    async def cancel_session(self, session_id: str):
        if not is_session_id(session_id):
            return
        async with self.locks.hold(session_id):
            session = await self.store.get(session_id)
            if session is None:
                return
            if session.complete:
                logger.info(f"Ignoring cancel of completed upload {session_id}")
                return
            await self._discard(session_id)
        logger.info(f"Cancelled upload {session_id} at offset {session.offset}")

    async def purge_session(self, session_id: str) -> bool:
        """Remove a session in any state. Used by retention, not by clients."""
        if not is_session_id(session_id):
            return False
        async with self.locks.hold(session_id):
            return await self._discard(session_id)

    async def list_sessions(self) -> List[UploadSession]:
        sessions = []
        for session_id in await self.store.list_ids():
            session = await self.store.get(session_id)
            if session is not None:
                sessions.append(session)
        return sessions

    async def _discard(self, session_id: str) -> bool:
        had_record = await self.store.delete(session_id)
        had_blob = await self.blobs.delete(session_id)
        had_file = self.binder.detach_upload(session_id)
        return had_record or had_blob or had_file
