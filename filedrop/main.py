import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import transfers, tus
from .binder import MetadataBinder
from .blob_writer import BlobWriter
from .config import Settings, settings as default_settings
from .models import TransferRegistry
from .offset_store import FileOffsetStore, OffsetStore
from .retention import Lifecycle, RetentionService
from .sessions import UploadSessionManager

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, store: Optional[OffsetStore] = None) -> FastAPI:
    settings = settings or default_settings
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Setup upload directory
    upload_dir = Path(settings.UPLOAD_DIR)
    upload_dir.mkdir(parents=True, exist_ok=True)

    registry = TransferRegistry()
    blobs = BlobWriter(upload_dir)
    uploads = UploadSessionManager(
        store=store or FileOffsetStore(upload_dir),
        blobs=blobs,
        binder=MetadataBinder(registry),
        max_upload_size=settings.MAX_UPLOAD_SIZE,
    )
    lifecycle = Lifecycle(
        RetentionService(registry, uploads, settings.STALE_UPLOAD_SECONDS),
        interval=settings.CLEANUP_INTERVAL,
        enabled=settings.RETENTION_ENABLED,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        lifecycle.start()
        yield
        await lifecycle.stop()

    app = FastAPI(title="filedrop", lifespan=lifespan)
    app.state.settings = settings
    app.state.registry = registry
    app.state.blobs = blobs
    app.state.uploads = uploads
    app.state.lifecycle = lifecycle

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_methods=["GET", "POST", "PATCH", "HEAD", "DELETE", "OPTIONS"],
        allow_headers=tus.ALLOWED_HEADERS,
        expose_headers=tus.EXPOSED_HEADERS,
    )
    tus.register_exception_handlers(app)
    app.include_router(tus.router)
    app.include_router(transfers.router)

    logger.info(f"Storing uploads in {upload_dir.resolve()}")
    return app


app = create_app()
