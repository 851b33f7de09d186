"""tus 1.0.0 endpoints for resumable uploads.

Supported extensions: creation, creation-with-upload, termination.
"""

import base64
import binascii
import logging
from typing import Dict, Optional

from fastapi import APIRouter, FastAPI, Request, Response
from fastapi.responses import PlainTextResponse
from starlette.requests import ClientDisconnect

from .config import Settings
from .errors import InvalidRequest, OffsetMismatch, StorageDesync, UnsupportedVersion, UploadError
from .sessions import UploadSessionManager

logger = logging.getLogger(__name__)

TUS_VERSION = "1.0.0"
TUS_EXTENSIONS = "creation,creation-with-upload,termination"
OFFSET_CONTENT_TYPE = "application/offset+octet-stream"

EXPOSED_HEADERS = [
    "Upload-Offset",
    "Upload-Length",
    "Upload-Metadata",
    "Location",
    "Tus-Resumable",
    "Tus-Version",
    "Tus-Extension",
    "Tus-Max-Size",
]
ALLOWED_HEADERS = [
    "Content-Type",
    "Content-Length",
    "Upload-Length",
    "Upload-Offset",
    "Upload-Metadata",
    "Tus-Resumable",
    "Authorization",
]

router = APIRouter(prefix="/api/tus")


def tus_headers(settings: Settings) -> Dict[str, str]:
    return {
        "Tus-Resumable": TUS_VERSION,
        "Tus-Version": TUS_VERSION,
        "Tus-Extension": TUS_EXTENSIONS,
        "Tus-Max-Size": str(settings.MAX_UPLOAD_SIZE),
    }


def parse_metadata(header: Optional[str]) -> Dict[str, str]:
    """Parse ``key base64value`` pairs; undecodable values are kept as sent."""
    result: Dict[str, str] = {}
    if not header:
        return result
    for pair in header.split(","):
        parts = pair.strip().split(" ", 1)
        key = parts[0]
        if not key:
            continue
        value = parts[1].strip() if len(parts) > 1 else ""
        try:
            result[key] = base64.b64decode(value, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError):
            result[key] = value
    return result


def encode_metadata(metadata: Dict[str, str]) -> str:
    return ",".join(
        f"{key} {base64.b64encode(value.encode('utf-8')).decode('ascii')}" if value else key
        for key, value in metadata.items()
    )


def parse_int_header(request: Request, name: str, required: bool = True) -> Optional[int]:
    raw = request.headers.get(name)
    if raw is None:
        if required:
            raise InvalidRequest(f"Missing {name} header")
        return None
    raw = raw.strip()
    if not (raw.isascii() and raw.isdigit()):
        raise InvalidRequest(f"Invalid {name} header: {raw}")
    return int(raw)


def check_version(request: Request):
    version = request.headers.get("tus-resumable")
    if version is not None and version != TUS_VERSION:
        raise UnsupportedVersion(f"Unsupported tus version: {version}")


def has_offset_body(request: Request) -> bool:
    content_type = request.headers.get("content-type", "").split(";")[0].strip().lower()
    return content_type == OFFSET_CONTENT_TYPE


def base_url(request: Request) -> str:
    configured = request.app.state.settings.BASE_URL
    return (configured or str(request.base_url)).rstrip("/")


def get_manager(request: Request) -> UploadSessionManager:
    return request.app.state.uploads


@router.options("")
@router.options("/{session_id}")
async def options(request: Request):
    return Response(status_code=204, headers=tus_headers(request.app.state.settings))


@router.post("")
async def create_upload(request: Request):
    check_version(request)
    upload_length = parse_int_header(request, "upload-length")
    metadata = parse_metadata(request.headers.get("upload-metadata"))
    content_length = parse_int_header(request, "content-length", required=False)

    body = None
    chunked = "chunked" in request.headers.get("transfer-encoding", "").lower()
    if content_length or chunked:
        if not has_offset_body(request):
            return PlainTextResponse(
                f"Content-Type must be {OFFSET_CONTENT_TYPE}",
                status_code=415,
                headers=tus_headers(request.app.state.settings),
            )
        body = request.stream()

    handle = await get_manager(request).create_session(upload_length, metadata, body, content_length)

    headers = tus_headers(request.app.state.settings)
    headers["Location"] = f"{base_url(request)}{router.prefix}/{handle.id}"
    headers["Upload-Offset"] = str(handle.offset)
    return Response(status_code=201, headers=headers)


@router.patch("/{session_id}")
async def append_chunk(session_id: str, request: Request):
    check_version(request)
    if not has_offset_body(request):
        return PlainTextResponse(
            f"Content-Type must be {OFFSET_CONTENT_TYPE}",
            status_code=415,
            headers=tus_headers(request.app.state.settings),
        )
    claimed_offset = parse_int_header(request, "upload-offset")
    content_length = parse_int_header(request, "content-length", required=False)

    new_offset = await get_manager(request).append_chunk(
        session_id, claimed_offset, request.stream(), content_length
    )

    headers = tus_headers(request.app.state.settings)
    headers["Upload-Offset"] = str(new_offset)
    return Response(status_code=204, headers=headers)


@router.head("/{session_id}")
async def upload_status(session_id: str, request: Request):
    check_version(request)
    status = await get_manager(request).get_status(session_id)

    headers = tus_headers(request.app.state.settings)
    headers["Upload-Offset"] = str(status.offset)
    headers["Upload-Length"] = str(status.declared_size)
    headers["Cache-Control"] = "no-store"
    if status.metadata:
        headers["Upload-Metadata"] = encode_metadata(status.metadata)
    return Response(status_code=200, headers=headers)


@router.delete("/{session_id}")
async def cancel_upload(session_id: str, request: Request):
    check_version(request)
    await get_manager(request).cancel_session(session_id)
    return Response(status_code=204, headers=tus_headers(request.app.state.settings))


async def upload_error_handler(request: Request, exc: UploadError):
    headers = tus_headers(request.app.state.settings)
    message = exc.message
    if isinstance(exc, OffsetMismatch):
        headers["Upload-Offset"] = str(exc.current_offset)
        logger.info(exc.message)
    elif isinstance(exc, StorageDesync):
        logger.critical(f"Storage integrity failure on {request.method} {request.url.path}: {exc.message}")
        message = "Internal server error"
    elif exc.status_code >= 500:
        logger.error(exc.message, exc_info=exc)
        message = "Internal server error"
    else:
        logger.warning(f"{request.method} {request.url.path} rejected: {exc.message}")

    content = "" if request.method == "HEAD" else message
    return PlainTextResponse(content, status_code=exc.status_code, headers=headers)


async def client_disconnect_handler(request: Request, exc: ClientDisconnect):
    logger.info(f"Client disconnected during {request.method} {request.url.path}")
    return PlainTextResponse("Client disconnected", status_code=400, headers=tus_headers(request.app.state.settings))


async def storage_error_handler(request: Request, exc: OSError):
    logger.error(f"Storage error during {request.method} {request.url.path}", exc_info=exc)
    return PlainTextResponse("Internal server error", status_code=500, headers=tus_headers(request.app.state.settings))


def register_exception_handlers(app: FastAPI):
    app.add_exception_handler(UploadError, upload_error_handler)
    app.add_exception_handler(ClientDisconnect, client_disconnect_handler)
    app.add_exception_handler(OSError, storage_error_handler)
