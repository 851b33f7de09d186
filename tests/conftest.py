from datetime import timedelta
from typing import Generator

import pytest
from fastapi.testclient import TestClient

from filedrop.binder import MetadataBinder
from filedrop.blob_writer import BlobWriter
from filedrop.config import Settings
from filedrop.main import create_app
from filedrop.models import Transfer, TransferRegistry, utcnow
from filedrop.offset_store import MemoryOffsetStore
from filedrop.sessions import UploadSessionManager


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        UPLOAD_DIR=str(tmp_path / "uploads"),
        MAX_UPLOAD_SIZE=1024,
        BASE_URL="http://files.test",
        RETENTION_ENABLED=False,
        SECRET_KEY="test-secret",
    )


@pytest.fixture
def registry() -> TransferRegistry:
    return TransferRegistry()


@pytest.fixture
def transfer(registry) -> Transfer:
    transfer = Transfer(id="t" * 32, title="Holiday", expires_at=utcnow() + timedelta(days=7))
    registry.add(transfer)
    return transfer


@pytest.fixture
def blobs(tmp_path) -> BlobWriter:
    return BlobWriter(tmp_path / "blobs")


@pytest.fixture
def manager(registry, blobs) -> UploadSessionManager:
    return UploadSessionManager(
        store=MemoryOffsetStore(),
        blobs=blobs,
        binder=MetadataBinder(registry),
        max_upload_size=1024,
    )


@pytest.fixture
def client(settings) -> Generator[TestClient, None, None]:
    app = create_app(settings)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def api_transfer(client) -> dict:
    response = client.post("/api/transfers", json={"title": "Holiday"})
    assert response.status_code == 200
    return response.json()
