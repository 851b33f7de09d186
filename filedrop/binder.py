import logging

from .errors import ReferenceNotFound
from .models import FileRecord, TransferRegistry

logger = logging.getLogger(__name__)


class MetadataBinder:
    """The only path by which uploads mutate transfer-owned file records."""

    def __init__(self, registry: TransferRegistry):
        self.registry = registry

    def check_transfer(self, transfer_id: str):
        transfer = self.registry.get(transfer_id)
        if transfer is None or not transfer.is_available():
            raise ReferenceNotFound(transfer_id)

    def attach_upload(
        self,
        transfer_id: str,
        session_id: str,
        declared_name: str,
        declared_size: int,
        content_type: str,
    ) -> FileRecord:
        self.check_transfer(transfer_id)
        record = FileRecord(
            id=session_id,
            transfer_id=transfer_id,
            original_name=declared_name,
            size=declared_size,
            mime_type=content_type,
        )
        self.registry.add_file(record)
        return record

    def record_progress(self, session_id: str, offset: int):
        record = self.registry.get_file(session_id)
        if record is not None:
            record.upload_offset = offset

    def mark_complete(self, session_id: str, final_size: int):
        record = self.registry.get_file(session_id)
        if record is None:
            logger.warning(f"Upload {session_id} completed but has no file record")
            return
        record.upload_offset = final_size
        record.size = final_size
        record.upload_complete = True
        logger.info(f"File {session_id} of transfer {record.transfer_id} finished ({final_size} bytes)")

    def detach_upload(self, session_id: str) -> bool:
        return self.registry.remove_file(session_id)
