"""Error taxonomy for the resumable upload core.

Every error carries the HTTP status the protocol adapter answers with, so
the mapping lives next to the meaning of each error rather than in the
router.
"""

from typing import Optional


class UploadError(Exception):
    """Base class for upload protocol errors."""

    status_code = 500

    def __init__(self, message: str, session_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.session_id = session_id


class InvalidRequest(UploadError):
    status_code = 400


class ReferenceNotFound(UploadError):
    """Creation referenced a transfer that is unknown, expired or deleted."""

    status_code = 404

    def __init__(self, transfer_id: str):
        super().__init__(f"Transfer not found: {transfer_id}")
        self.transfer_id = transfer_id


class NotFound(UploadError):
    status_code = 404

    def __init__(self, session_id: str):
        super().__init__(f"Upload not found: {session_id}", session_id)


class OffsetMismatch(UploadError):
    """The claimed offset differs from the stored one.

    ``current_offset`` is the authoritative value the client resumes from.
    """

    status_code = 409

    def __init__(self, session_id: str, claimed_offset: int, current_offset: int):
        super().__init__(
            f"Offset mismatch for {session_id}: claimed {claimed_offset}, expected {current_offset}",
            session_id,
        )
        self.claimed_offset = claimed_offset
        self.current_offset = current_offset


class Conflict(UploadError):
    status_code = 409


class OversizedChunk(UploadError):
    status_code = 413

    def __init__(self, session_id: str, offset: int, declared_size: int):
        super().__init__(
            f"Chunk for {session_id} would exceed declared size {declared_size} (offset {offset})",
            session_id,
        )
        self.offset = offset
        self.declared_size = declared_size


class UploadTooLarge(UploadError):
    status_code = 413

    def __init__(self, declared_size: int, max_size: int):
        super().__init__(f"Declared size {declared_size} exceeds maximum {max_size}")
        self.declared_size = declared_size
        self.max_size = max_size


class UnsupportedVersion(UploadError):
    status_code = 412


class StorageDesync(UploadError):
    """Blob length disagrees with the offset record.

    Indicates unserialized writers or storage corruption. Never retried.
    """

    status_code = 500

    def __init__(self, session_id: str, expected_length: int, actual_length: Optional[int]):
        super().__init__(
            f"Storage desync for {session_id}: expected {expected_length} bytes, found {actual_length}",
            session_id,
        )
        self.expected_length = expected_length
        self.actual_length = actual_length
