import logging
import uuid
from datetime import timedelta
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse

from .auth import get_current_user, get_optional_user
from .blob_writer import BlobWriter
from .models import Transfer, TransferRegistry, utcnow
from .schemas import CreateTransferRequest, TransferFile, TransferResponse, User
from .sessions import UploadSessionManager

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/transfers")


def get_registry(request: Request) -> TransferRegistry:
    return request.app.state.registry


def get_manager(request: Request) -> UploadSessionManager:
    return request.app.state.uploads


def get_blobs(request: Request) -> BlobWriter:
    return request.app.state.blobs


def download_url(request: Request, transfer_id: str) -> str:
    base = request.app.state.settings.BASE_URL or str(request.base_url)
    return f"{base.rstrip('/')}/download/{transfer_id}"


def to_response(request: Request, transfer: Transfer) -> TransferResponse:
    files = transfer.completed_files()
    return TransferResponse(
        id=transfer.id,
        title=transfer.title,
        message=transfer.message,
        download_url=download_url(request, transfer.id),
        expires_at=transfer.expires_at,
        created_at=transfer.created_at,
        status=transfer.status,
        total_size=transfer.total_size,
        download_count=transfer.download_count,
        file_count=len(files),
        files=[
            TransferFile(id=f.id, original_name=f.original_name, size=f.size, mime_type=f.mime_type)
            for f in files
        ],
    )


def get_available_transfer(registry: TransferRegistry, transfer_id: str) -> Transfer:
    transfer = registry.get(transfer_id)
    if transfer is None:
        raise HTTPException(status_code=404, detail="Transfer not found")
    if not transfer.is_available():
        raise HTTPException(status_code=410, detail="Transfer has expired or been deleted")
    return transfer


@router.post("")
async def create_transfer(
    payload: CreateTransferRequest,
    request: Request,
    user: Optional[User] = Depends(get_optional_user),
) -> TransferResponse:
    settings = request.app.state.settings
    expires_in_days = min(payload.expires_in_days or settings.DEFAULT_EXPIRY_DAYS, settings.MAX_EXPIRY_DAYS)
    transfer = Transfer(
        id=uuid.uuid4().hex,
        title=payload.title or None,
        message=payload.message or None,
        owner=user.username if user else None,
        expires_at=utcnow() + timedelta(days=expires_in_days),
    )
    get_registry(request).add(transfer)
    logger.info(f"Created transfer {transfer.id} expiring {transfer.expires_at.isoformat()}")
    return to_response(request, transfer)


@router.get("/{transfer_id}")
async def get_transfer(transfer_id: str, request: Request) -> TransferResponse:
    transfer = get_available_transfer(get_registry(request), transfer_id)
    return to_response(request, transfer)


@router.post("/{transfer_id}/complete")
async def complete_transfer(transfer_id: str, request: Request) -> TransferResponse:
    transfer = get_available_transfer(get_registry(request), transfer_id)
    transfer.total_size = sum(f.size for f in transfer.completed_files())
    transfer.status = "complete"
    logger.info(f"Transfer {transfer.id} complete with {len(transfer.completed_files())} files")
    return to_response(request, transfer)


@router.get("/{transfer_id}/files/{file_id}")
async def download_file(transfer_id: str, file_id: str, request: Request):
    transfer = get_available_transfer(get_registry(request), transfer_id)
    record = transfer.files.get(file_id)
    if record is None or not record.upload_complete:
        raise HTTPException(status_code=404, detail="File not found")

    blobs = get_blobs(request)
    file_size = await blobs.size(file_id)
    if file_size is None:
        raise HTTPException(status_code=404, detail="File not found on disk")

    headers = {
        "Content-Disposition": f"attachment; filename=\"{quote(record.original_name)}\"",
        "Accept-Ranges": "bytes",
    }
    range_header = request.headers.get("range")

    if range_header:
        start, end = parse_range_header(range_header, file_size)
        headers["Content-Range"] = f"bytes {start}-{end}/{file_size}"
        headers["Content-Length"] = str(end - start + 1)
        return StreamingResponse(
            blobs.read_range(file_id, start, end),
            status_code=206,
            headers=headers,
            media_type=record.mime_type,
        )

    transfer.download_count += 1
    headers["Content-Length"] = str(file_size)
    return StreamingResponse(
        blobs.read_range(file_id, 0, file_size - 1),
        headers=headers,
        media_type=record.mime_type,
    )


@router.delete("/{transfer_id}")
async def delete_transfer(
    transfer_id: str,
    request: Request,
    user: User = Depends(get_current_user),
):
    registry = get_registry(request)
    transfer = registry.get(transfer_id)
    if transfer is None:
        raise HTTPException(status_code=404, detail="Transfer not found")
    if transfer.owner != user.username:
        raise HTTPException(status_code=403, detail="Forbidden")

    manager = get_manager(request)
    for file_id in list(transfer.files):
        await manager.purge_session(file_id)
    registry.remove(transfer_id)
    logger.info(f"Deleted transfer {transfer_id}")
    return {"success": True}


def parse_range_header(range_header: str, file_size: int) -> tuple[int, int]:
    try:
        unit, ranges = range_header.split("=")
        if unit.strip() != "bytes":
            raise ValueError
        start_str, end_str = ranges.split("-")
        start = int(start_str)
        end = int(end_str) if end_str else file_size - 1
        if start >= file_size or end >= file_size or start > end:
            raise ValueError
        return start, end
    except ValueError:
        raise HTTPException(
            status_code=416,
            detail="Requested range not satisfiable",
            headers={"Content-Range": f"bytes */{file_size}"},
        )
