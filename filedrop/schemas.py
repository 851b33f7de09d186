from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class User(BaseModel):
    username: str


class SessionHandle(BaseModel):
    id: str
    offset: int


class SessionStatus(BaseModel):
    id: str
    offset: int
    declared_size: int
    complete: bool
    metadata: Dict[str, str]


class CreateTransferRequest(BaseModel):
    title: Optional[str] = None
    message: Optional[str] = None
    expires_in_days: Optional[int] = Field(default=None, ge=1)


class TransferFile(BaseModel):
    id: str
    original_name: str
    size: int
    mime_type: str


class TransferResponse(BaseModel):
    id: str
    title: Optional[str] = None
    message: Optional[str] = None
    download_url: str
    expires_at: datetime
    created_at: datetime
    status: str
    total_size: int
    download_count: int
    file_count: int
    files: List[TransferFile] = []
