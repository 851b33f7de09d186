from datetime import datetime, timezone
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UploadSession(BaseModel):
    id: str
    declared_size: int
    offset: int = 0
    metadata: Dict[str, str] = Field(default_factory=dict)
    complete: bool = False
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def remaining(self) -> int:
        return self.declared_size - self.offset


class FileRecord(BaseModel):
    id: str
    transfer_id: str
    original_name: str
    size: int
    mime_type: str
    upload_offset: int = 0
    upload_complete: bool = False
    created_at: datetime = Field(default_factory=utcnow)


class Transfer(BaseModel):
    id: str
    title: Optional[str] = None
    message: Optional[str] = None
    owner: Optional[str] = None
    expires_at: datetime
    created_at: datetime = Field(default_factory=utcnow)
    status: str = "pending"  # 'pending', 'complete' or 'deleted'
    total_size: int = 0
    download_count: int = 0
    files: Dict[str, FileRecord] = Field(default_factory=dict)

    def is_available(self, now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        return self.status != "deleted" and now <= self.expires_at

    def completed_files(self) -> List[FileRecord]:
        files = [f for f in self.files.values() if f.upload_complete]
        return sorted(files, key=lambda f: f.created_at)


class TransferRegistry:
    """In-process store of transfers and their file records."""

    def __init__(self):
        self._transfers: Dict[str, Transfer] = {}
        self._file_index: Dict[str, str] = {}

    def add(self, transfer: Transfer):
        self._transfers[transfer.id] = transfer

    def get(self, transfer_id: str) -> Optional[Transfer]:
        return self._transfers.get(transfer_id)

    def all(self) -> List[Transfer]:
        return list(self._transfers.values())

    def remove(self, transfer_id: str):
        transfer = self._transfers.pop(transfer_id, None)
        if transfer is None:
            return
        for file_id in transfer.files:
            self._file_index.pop(file_id, None)

    def add_file(self, record: FileRecord):
        self._transfers[record.transfer_id].files[record.id] = record
        self._file_index[record.id] = record.transfer_id

    def get_file(self, file_id: str) -> Optional[FileRecord]:
        transfer_id = self._file_index.get(file_id)
        if transfer_id is None or transfer_id not in self._transfers:
            return None
        return self._transfers[transfer_id].files.get(file_id)

    def remove_file(self, file_id: str) -> bool:
        transfer_id = self._file_index.pop(file_id, None)
        if transfer_id is None or transfer_id not in self._transfers:
            return False
        return self._transfers[transfer_id].files.pop(file_id, None) is not None
