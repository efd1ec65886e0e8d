"""Shared test fixtures."""

import io
from unittest.mock import MagicMock

import mongomock
import numpy as np
import pytest
from PIL import Image

from memory_studio.config import Settings
from memory_studio.dataset_db import DatasetDatabase
from memory_studio.dataset_service import DatasetService
from memory_studio.face_embedding import FaceEmbedder
from memory_studio.file_storage import FileStorage
from memory_studio.fine_tuning import FineTuningClient
from memory_studio.memory_db import MemoryDatabase
from memory_studio.memory_service import MemoryService


def make_image_bytes(seed: int = 0, size=(64, 64), fmt: str = "PNG", mode: str = "RGB") -> bytes:
    """Random-noise image encoded in the given format."""
    rng = np.random.default_rng(seed)
    channels = {"RGB": 3, "RGBA": 4}.get(mode)
    shape = (size[1], size[0], channels) if channels else (size[1], size[0])
    pixels = rng.integers(0, 256, shape, dtype=np.uint8)
    buffer = io.BytesIO()
    Image.fromarray(pixels).save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture
def mongo_client():
    return mongomock.MongoClient()


@pytest.fixture
def memory_db(mongo_client):
    return MemoryDatabase(database_name="memory_studio_test", client=mongo_client)


@pytest.fixture
def dataset_db(memory_db):
    return DatasetDatabase(memory_db.db)


@pytest.fixture
def storage(tmp_path):
    return FileStorage(tmp_path / "uploads", tmp_path / "temp")


@pytest.fixture
def embedder():
    """Real embedder that embeds the whole frame, so synthetic images work."""
    return FaceEmbedder(require_face=False, max_processing_ms=0)


@pytest.fixture
def memory_service(memory_db, embedder, storage):
    return MemoryService(memory_db, embedder, storage)


@pytest.fixture
def openai_client():
    client = MagicMock()
    client.files.create.return_value = MagicMock(id="file-abc")
    client.fine_tuning.jobs.create.return_value = MagicMock(id="ftjob-123", status="validating_files")
    return client


@pytest.fixture
def dataset_service(dataset_db, storage, openai_client):
    return DatasetService(dataset_db, storage, FineTuningClient(api_key="test-key", client=openai_client))


@pytest.fixture
def settings(tmp_path):
    return Settings(upload_folder=tmp_path / "uploads", temp_folder=tmp_path / "temp")


@pytest.fixture
def client(settings, memory_service, dataset_service):
    from memory_studio.app import create_app

    app = create_app(settings, memory_service=memory_service, dataset_service=dataset_service)
    app.config["TESTING"] = True
    return app.test_client()
