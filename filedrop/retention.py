import asyncio
import contextlib
import logging
from datetime import datetime, timedelta
from typing import Optional

from .models import TransferRegistry, utcnow
from .sessions import UploadSessionManager

logger = logging.getLogger(__name__)


class RetentionService:
    """Removes uploads whose transfer expired, was deleted, or no longer exists."""

    def __init__(self, registry: TransferRegistry, uploads: UploadSessionManager, stale_after: int):
        self.registry = registry
        self.uploads = uploads
        self.stale_after = timedelta(seconds=stale_after)

    async def sweep(self, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        purged = 0

        expired = [t for t in self.registry.all() if not t.is_available(now) and (t.files or t.status != "deleted")]
        logger.info(f"Found {len(expired)} expired transfers to clean up")
        for transfer in expired:
            for file_id in list(transfer.files):
                if await self.uploads.purge_session(file_id):
                    purged += 1
            transfer.status = "deleted"
            logger.info(f"Marked transfer {transfer.id} as deleted")

        for transfer in self.registry.all():
            if transfer.status == "deleted" and not transfer.files:
                self.registry.remove(transfer.id)
                logger.info(f"Dropped transfer {transfer.id}")

        for session in await self.uploads.list_sessions():
            if self.registry.get_file(session.id) is not None:
                continue
            if now - session.created_at > self.stale_after:
                if await self.uploads.purge_session(session.id):
                    logger.info(f"Purged orphaned upload {session.id}")
                    purged += 1

        return purged


class Lifecycle:
    """Owns the periodic retention task for one application instance."""

    def __init__(self, retention: RetentionService, interval: int, enabled: bool = True):
        self.retention = retention
        self.interval = interval
        self.enabled = enabled
        self._task: Optional[asyncio.Task] = None

    @property
    def started(self) -> bool:
        return self._task is not None

    def start(self):
        if self._task is not None or not self.enabled:
            return
        self._task = asyncio.create_task(self._run())
        logger.info(f"Cleanup scheduler started (runs every {self.interval}s)")

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def _run(self):
        while True:
            try:
                await self.retention.sweep()
            except Exception:
                logger.error("Cleanup sweep failed", exc_info=True)
            await asyncio.sleep(self.interval)
