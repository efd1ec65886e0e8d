"""
Memory management: ties the face embedder, the entry store, stored photos
and the similarity engine together.
"""

import logging
import time
from typing import Any, Dict, List, Optional, Sequence

from .errors import NotFoundError, ValidationError
from .face_embedding import FaceEmbedder, detect_mime_type
from .file_storage import FileStorage
from .memory_db import MemoryDatabase
from .models import (
    CATEGORIES,
    DEFAULT_CATEGORY,
    INTERACTION_KINDS,
    MAX_SIMILARITY_RESULTS,
    Interaction,
    MemoryEntry,
    RecognitionResult,
    SearchOptions,
    SimilarityResult,
)
from .similarity import SimilaritySearch

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("name", "notes", "preferences", "tags", "category")
DEFAULT_RECOGNITION_THRESHOLD = 0.75


class MemoryService:
    """
    High-level operations on remembered people.

    Args:
        database: entry and interaction store
        embedder: produces face embeddings from image bytes
        storage: where learned face photos are kept (optional)
    """

    def __init__(self, database: MemoryDatabase, embedder: FaceEmbedder, storage: Optional[FileStorage] = None):
        self.db = database
        self.embedder = embedder
        self.storage = storage
        self.search = SimilaritySearch(database)

    # ==================== ENTRIES ====================

    def create_memory(
        self,
        name: str,
        image_bytes: bytes,
        filename: Optional[str] = None,
        introduced_by: Optional[str] = None,
        notes: Optional[str] = None,
        preferences: Optional[List[str]] = None,
        tags: Optional[List[str]] = None,
        category: Optional[str] = None,
    ) -> MemoryEntry:
        """
        Register a new person from a face photo.

        Raises:
            ValidationError: missing name or unknown category
            EmbeddingError: no embedding could be produced for the photo
        """
        if not name or not name.strip():
            raise ValidationError("Name is required")
        category = category or DEFAULT_CATEGORY
        if category not in CATEGORIES:
            raise ValidationError("Relationship type must be friend, family, or acquaintance")

        result = self.embedder.generate_embedding(image_bytes)

        image_path = None
        if self.storage is not None:
            stored_name = f"face-{int(time.time() * 1000)}-{filename or 'photo'}"
            mime_type = detect_mime_type(image_bytes) or "application/octet-stream"
            image_path = self.storage.store_file(image_bytes, stored_name, mime_type).file_path

        try:
            return self.db.create_entry(
                name=name.strip(),
                embedding=result.embedding,
                introduced_by=introduced_by,
                notes=notes,
                preferences=preferences,
                tags=tags,
                category=category,
                image_path=image_path,
            )
        except Exception:
            if image_path:
                self.storage.delete_file(image_path)
            raise

    def get_memory(self, entry_id: str) -> Optional[MemoryEntry]:
        return self.db.get_entry(entry_id)

    def update_memory(self, entry_id: str, updates: Dict[str, Any]) -> MemoryEntry:
        """Edit metadata. Only name, notes, preferences, tags and category can change."""
        fields = {k: v for k, v in updates.items() if k in EDITABLE_FIELDS and v is not None}

        if "category" in fields and fields["category"] not in CATEGORIES:
            raise ValidationError("Invalid relationship type")
        if "name" in fields:
            if not isinstance(fields["name"], str) or not fields["name"].strip():
                raise ValidationError("Name is required")
            fields["name"] = fields["name"].strip()
        for key in ("preferences", "tags"):
            if key in fields and not isinstance(fields[key], list):
                raise ValidationError(f"{key.capitalize()} must be an array")

        return self.db.update_entry(entry_id, fields)

    def delete_memory(self, entry_id: str) -> MemoryEntry:
        """
        Delete an entry. The stored photo is removed on a best-effort basis;
        a failure there is logged and does not fail the delete.
        """
        entry = self.db.delete_entry(entry_id)
        if entry is None:
            raise NotFoundError("Memory not found")

        if entry.image_path and self.storage is not None:
            if not self.storage.delete_file(entry.image_path):
                logger.warning(f"Stored photo for {entry_id} could not be removed: {entry.image_path}")
        return entry

    def list_memories(self, categories: Optional[Sequence[str]] = None) -> List[MemoryEntry]:
        """All entries, optionally limited to some categories. Callers sort and paginate."""
        memories = self.db.get_all_entries()
        if categories:
            memories = [m for m in memories if m.category in categories]
        return memories

    def search_memories(self, query: str) -> List[MemoryEntry]:
        """Case-insensitive match against name, tags and notes."""
        term = query.lower()
        return [
            m for m in self.db.get_all_entries()
            if term in m.name.lower()
            or any(term in tag.lower() for tag in m.tags)
            or (m.notes and term in m.notes.lower())
        ]

    # ==================== INTERACTIONS ====================

    def record_interaction(
        self,
        entry_id: str,
        kind: str,
        context: Optional[str] = None,
        generated_response: Optional[str] = None,
        emotion: Optional[str] = None,
        actions: Optional[List[str]] = None,
    ) -> Interaction:
        """Log an interaction, then bump the entry's counter and last_seen."""
        interaction = self.db.create_interaction(
            entry_id=entry_id,
            kind=kind,
            context=context,
            generated_response=generated_response,
            emotion=emotion,
            actions=actions,
        )
        self.db.increment_interaction_count(entry_id)
        return interaction

    def get_interaction_history(
        self,
        entry_id: str,
        kind: Optional[str] = None,
        sort_order: str = "desc",
    ) -> List[Interaction]:
        interactions = self.db.get_interactions(entry_id)
        if kind in INTERACTION_KINDS:
            interactions = [i for i in interactions if i.kind == kind]
        if sort_order == "asc":
            interactions.reverse()
        return interactions

    # ==================== RECOGNITION ====================

    def find_similar(self, embedding: Sequence[float], options: SearchOptions) -> List[SimilarityResult]:
        return self.search.find_similar(embedding, options)

    def recognize_face(
        self,
        image_bytes: bytes,
        threshold: float = DEFAULT_RECOGNITION_THRESHOLD,
        top_k: int = MAX_SIMILARITY_RESULTS,
    ) -> RecognitionResult:
        """Embed a photo and apply the best-match rule against every stored entry."""
        embedding = self.embedder.generate_embedding(image_bytes)
        result = self.search.recognize(embedding.embedding, threshold, top_k)
        result.processing_time_ms = embedding.processing_time_ms
        result.method = embedding.method

        if result.recognized:
            logger.info(f"Recognized {result.entry.name} (confidence {result.confidence:.3f})")
        else:
            logger.info(f"No match above {threshold} (best {result.confidence:.3f})")
        return result

    # ==================== STATS ====================

    def get_memory_stats(self) -> Dict[str, Any]:
        memories = self.db.get_all_entries()
        total = len(memories)
        total_interactions = sum(m.interaction_count for m in memories)

        counts: Dict[str, int] = {}
        for m in memories:
            counts[m.category] = counts.get(m.category, 0) + 1

        return {
            "totalMemories": total,
            "totalInteractions": total_interactions,
            "relationshipTypeCounts": counts,
            "averageInteractionsPerMemory": total_interactions / total if total else 0,
        }
