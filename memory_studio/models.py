"""
Data models for the memory studio.
Simple dataclasses plus the validation helpers shared by the store and services.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from numbers import Real
from typing import Any, Dict, List, Optional, Sequence

EMBEDDING_DIMENSION = 768
SIMILARITY_THRESHOLD = 0.8
MAX_SIMILARITY_RESULTS = 10
MIN_FINE_TUNE_IMAGES = 10

CATEGORIES = ("friend", "family", "acquaintance")
DEFAULT_CATEGORY = "friend"
INTERACTION_KINDS = ("meeting", "recognition", "conversation")


def utcnow() -> datetime:
    # MongoDB keeps millisecond precision and hands back naive UTC datetimes
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)


def isoformat(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.isoformat(timespec="milliseconds") + "Z"
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds")


@dataclass
class MemoryEntry:
    """A remembered person: one face embedding plus descriptive metadata."""
    id: str
    name: str
    embedding: List[float]
    first_met: datetime = field(default_factory=utcnow)
    last_seen: datetime = field(default_factory=utcnow)
    interaction_count: int = 0
    category: str = DEFAULT_CATEGORY
    tags: List[str] = field(default_factory=list)
    preferences: List[str] = field(default_factory=list)
    introduced_by: Optional[str] = None
    notes: Optional[str] = None
    image_path: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> "MemoryEntry":
        return cls(
            id=str(doc["_id"]),
            name=doc["name"],
            embedding=[float(x) for x in doc.get("embedding") or []],
            first_met=doc["first_met"],
            last_seen=doc["last_seen"],
            interaction_count=doc.get("interaction_count", 0),
            category=doc.get("category", DEFAULT_CATEGORY),
            tags=list(doc.get("tags", [])),
            preferences=list(doc.get("preferences", [])),
            introduced_by=doc.get("introduced_by"),
            notes=doc.get("notes"),
            image_path=doc.get("image_path"),
            created_at=doc["created_at"],
            updated_at=doc["updated_at"],
        )

    def to_dict(self, include_embedding: bool = True) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "name": self.name,
            "firstMet": isoformat(self.first_met),
            "lastSeen": isoformat(self.last_seen),
            "interactionCount": self.interaction_count,
            "relationshipType": self.category,
            "tags": self.tags,
            "preferences": self.preferences,
            "introducedBy": self.introduced_by,
            "notes": self.notes,
            "createdAt": isoformat(self.created_at),
            "updatedAt": isoformat(self.updated_at),
        }
        if include_embedding:
            data["embedding"] = self.embedding
        return data


@dataclass
class Interaction:
    """One logged interaction with a remembered person."""
    id: str
    entry_id: str
    kind: str
    context: Optional[str] = None
    generated_response: Optional[str] = None
    emotion: Optional[str] = None
    actions: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> "Interaction":
        return cls(
            id=str(doc["_id"]),
            entry_id=str(doc["entry_id"]),
            kind=doc["kind"],
            context=doc.get("context"),
            generated_response=doc.get("generated_response"),
            emotion=doc.get("emotion"),
            actions=list(doc.get("actions", [])),
            created_at=doc["created_at"],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "memoryEntryId": self.entry_id,
            "interactionType": self.kind,
            "context": self.context,
            "responseGenerated": self.generated_response,
            "emotion": self.emotion,
            "actions": self.actions,
            "createdAt": isoformat(self.created_at),
        }


@dataclass
class SearchOptions:
    threshold: float = SIMILARITY_THRESHOLD
    top_k: int = MAX_SIMILARITY_RESULTS
    categories: Optional[Sequence[str]] = None
    exclude_ids: Optional[Sequence[str]] = None


@dataclass
class SimilarityResult:
    """Transient match produced by a similarity query."""
    id: str
    similarity: float
    entry: MemoryEntry

    def to_dict(self, include_embedding: bool = False) -> Dict[str, Any]:
        return {
            "id": self.id,
            "similarity": self.similarity,
            "metadata": self.entry.to_dict(include_embedding=include_embedding),
        }


@dataclass
class RecognitionResult:
    recognized: bool
    confidence: float
    entry: Optional[MemoryEntry] = None
    similar: List[SimilarityResult] = field(default_factory=list)
    processing_time_ms: float = 0.0
    method: str = "local"


@dataclass
class EmbeddingResult:
    embedding: List[float]
    processing_time_ms: float
    method: str = "local"


@dataclass
class ImageRecord:
    """An annotated image in the fine-tuning dataset."""
    id: str
    filename: str
    annotation: str
    file_path: str
    file_size: int
    mime_type: str
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> "ImageRecord":
        return cls(
            id=str(doc["_id"]),
            filename=doc["filename"],
            annotation=doc.get("annotation", ""),
            file_path=doc["file_path"],
            file_size=doc.get("file_size", 0),
            mime_type=doc.get("mime_type", "application/octet-stream"),
            created_at=doc["created_at"],
            updated_at=doc.get("updated_at", doc["created_at"]),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "filename": self.filename,
            "annotation": self.annotation,
            "filePath": self.file_path,
            "fileSize": self.file_size,
            "mimeType": self.mime_type,
            "createdAt": isoformat(self.created_at),
            "updatedAt": isoformat(self.updated_at),
        }


@dataclass
class Job:
    """Local record of a fine-tuning submission."""
    id: str
    status: str = "pending"
    openai_job_id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> "Job":
        return cls(
            id=str(doc["_id"]),
            status=doc.get("status", "pending"),
            openai_job_id=doc.get("openai_job_id"),
            created_at=doc["created_at"],
            updated_at=doc.get("updated_at", doc["created_at"]),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status,
            "openaiJobId": self.openai_job_id,
            "createdAt": isoformat(self.created_at),
            "updatedAt": isoformat(self.updated_at),
        }


# ==================== VALIDATION HELPERS ====================

def is_number(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


def validate_embedding(embedding: Any, dimension: int = EMBEDDING_DIMENSION) -> bool:
    """True when embedding is a list of `dimension` finite numbers."""
    if not isinstance(embedding, (list, tuple)) or len(embedding) != dimension:
        return False
    return all(is_finite_number(x) for x in embedding)


def is_finite_number(value: Any) -> bool:
    if not is_number(value):
        return False
    try:
        return math.isfinite(value)
    except OverflowError:
        # ints too large for a float
        return False


def validate_entry_data(
    name: Optional[str],
    embedding: Any,
    category: Optional[str] = None,
    tags: Any = None,
    preferences: Any = None,
) -> List[str]:
    errors = []

    if not name or not name.strip():
        errors.append("Name is required")

    if not validate_embedding(embedding):
        errors.append(f"Embedding must be a {EMBEDDING_DIMENSION}-dimensional vector")

    if preferences is not None and not isinstance(preferences, list):
        errors.append("Preferences must be an array")

    if tags is not None and not isinstance(tags, list):
        errors.append("Tags must be an array")

    if category is not None and category not in CATEGORIES:
        errors.append("Relationship type must be friend, family, or acquaintance")

    return errors


def validate_interaction_data(entry_id: Optional[str], kind: Optional[str], actions: Any = None) -> List[str]:
    errors = []

    if not entry_id or not str(entry_id).strip():
        errors.append("Memory entry ID is required")

    if kind not in INTERACTION_KINDS:
        errors.append("Valid interaction type is required (meeting, recognition, conversation)")

    if actions is not None and not isinstance(actions, list):
        errors.append("Actions must be an array")

    return errors
