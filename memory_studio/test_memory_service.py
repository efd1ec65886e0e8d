"""Tests for MemoryService: learning, recognising and logging interactions."""

from pathlib import Path
from unittest.mock import patch

import pytest

from memory_studio.conftest import make_image_bytes
from memory_studio.errors import EmbeddingError, NotFoundError, ValidationError
from memory_studio.memory_service import MemoryService


@pytest.fixture
def anna(memory_service):
    return memory_service.create_memory(
        name="  Anna ",
        image_bytes=make_image_bytes(seed=11),
        filename="anna.png",
        notes="Plays the cello",
        tags=["neighbour"],
        category="family",
    )


def test_create_memory_stores_photo(anna):
    assert anna.name == "Anna"
    assert anna.category == "family"
    assert len(anna.embedding) == 768
    assert Path(anna.image_path).is_file()
    assert Path(anna.image_path).name.startswith("face-")


def test_create_memory_validation(memory_service):
    with pytest.raises(ValidationError):
        memory_service.create_memory(name=" ", image_bytes=make_image_bytes())
    with pytest.raises(ValidationError):
        memory_service.create_memory(name="Bob", image_bytes=make_image_bytes(), category="boss")


def test_create_memory_embedding_failure_stores_nothing(memory_service, storage):
    with pytest.raises(EmbeddingError):
        memory_service.create_memory(name="Bob", image_bytes=b"garbage" * 20)
    assert memory_service.db.count_entries() == 0
    assert not storage.upload_folder.exists() or list(storage.upload_folder.iterdir()) == []


def test_create_memory_db_failure_removes_photo(memory_service, storage):
    with patch.object(memory_service.db, "create_entry", side_effect=RuntimeError("db down")):
        with pytest.raises(RuntimeError):
            memory_service.create_memory(name="Bob", image_bytes=make_image_bytes(seed=4))
    assert list(storage.upload_folder.iterdir()) == []


def test_recognize_same_photo(memory_service, anna):
    memory_service.create_memory(name="Bob", image_bytes=make_image_bytes(seed=12))

    result = memory_service.recognize_face(make_image_bytes(seed=11), threshold=0.8)
    assert result.recognized is True
    assert result.entry.id == anna.id
    assert result.confidence == pytest.approx(1.0)
    assert result.method == "local"
    assert result.similar[0].id == anna.id


def test_recognize_unknown_face(memory_service, anna):
    result = memory_service.recognize_face(make_image_bytes(seed=99), threshold=0.8)
    assert result.recognized is False
    assert result.entry is None
    assert result.confidence < 0.8


def test_recognize_empty_store(memory_service):
    result = memory_service.recognize_face(make_image_bytes(seed=1))
    assert result.recognized is False
    assert result.confidence == 0.0


def test_update_memory(memory_service, anna):
    updated = memory_service.update_memory(anna.id, {"notes": "Plays the viola", "embedding": [0.0] * 768})
    assert updated.notes == "Plays the viola"
    assert updated.embedding == pytest.approx(anna.embedding)

    with pytest.raises(ValidationError):
        memory_service.update_memory(anna.id, {"category": "boss"})
    with pytest.raises(ValidationError):
        memory_service.update_memory(anna.id, {"tags": "not-a-list"})
    with pytest.raises(NotFoundError):
        memory_service.update_memory("missing", {"notes": "x"})


def test_delete_memory_removes_photo(memory_service, anna):
    memory_service.delete_memory(anna.id)
    assert memory_service.get_memory(anna.id) is None
    assert not Path(anna.image_path).exists()
    with pytest.raises(NotFoundError):
        memory_service.delete_memory(anna.id)


def test_delete_memory_survives_missing_photo(memory_service, anna):
    Path(anna.image_path).unlink()
    assert memory_service.delete_memory(anna.id).id == anna.id


def test_list_and_search(memory_service, anna):
    bob = memory_service.create_memory(name="Bob", image_bytes=make_image_bytes(seed=12))

    assert {m.id for m in memory_service.list_memories()} == {anna.id, bob.id}
    assert [m.id for m in memory_service.list_memories(categories=["family"])] == [anna.id]
    assert memory_service.list_memories(categories=["acquaintance"]) == []
    assert [m.id for m in memory_service.search_memories("NEIGH")] == [anna.id]
    assert [m.id for m in memory_service.search_memories("cello")] == [anna.id]
    assert memory_service.search_memories("nobody") == []


def test_record_interaction_updates_entry(memory_service, anna):
    memory_service.record_interaction(anna.id, "meeting", context="Coffee")
    memory_service.record_interaction(anna.id, "conversation", emotion="happy")

    entry = memory_service.get_memory(anna.id)
    assert entry.interaction_count == 2
    assert entry.last_seen >= anna.last_seen

    history = memory_service.get_interaction_history(anna.id)
    assert [i.kind for i in history] == ["conversation", "meeting"]
    assert [i.kind for i in memory_service.get_interaction_history(anna.id, sort_order="asc")] == [
        "meeting",
        "conversation",
    ]
    assert [i.kind for i in memory_service.get_interaction_history(anna.id, kind="meeting")] == ["meeting"]


def test_record_interaction_unknown_entry(memory_service):
    with pytest.raises(NotFoundError):
        memory_service.record_interaction("5f1d7f0e9b1e8a3d4c2b1a00", "meeting")


def test_stats(memory_service, anna):
    memory_service.create_memory(name="Bob", image_bytes=make_image_bytes(seed=12))
    memory_service.record_interaction(anna.id, "meeting")

    stats = memory_service.get_memory_stats()
    assert stats["totalMemories"] == 2
    assert stats["totalInteractions"] == 1
    assert stats["relationshipTypeCounts"] == {"family": 1, "friend": 1}
    assert stats["averageInteractionsPerMemory"] == 0.5


def test_stats_empty(memory_db, embedder):
    stats = MemoryService(memory_db, embedder).get_memory_stats()
    assert stats["totalMemories"] == 0
    assert stats["averageInteractionsPerMemory"] == 0
