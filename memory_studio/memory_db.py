"""
MongoDB store for remembered people (memory entries) and their interactions.
The face embedding lives on the entry document itself.
"""

import logging
import re
from typing import Any, Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import DESCENDING, MongoClient, ReturnDocument
from pymongo.errors import PyMongoError

from .errors import NotFoundError, ValidationError
from .models import (
    DEFAULT_CATEGORY,
    EMBEDDING_DIMENSION,
    Interaction,
    MemoryEntry,
    utcnow,
    validate_embedding,
    validate_entry_data,
    validate_interaction_data,
)

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = (
    "name",
    "embedding",
    "last_seen",
    "interaction_count",
    "introduced_by",
    "notes",
    "preferences",
    "tags",
    "category",
    "image_path",
)


def as_object_id(value: Any) -> Optional[ObjectId]:
    """Parse an id, returning None for anything that is not a valid ObjectId."""
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


class MemoryDatabase:
    """
    Database manager for memory entries and interactions.
    """

    def __init__(
        self,
        connection_string: str = "mongodb://localhost:27017/",
        database_name: str = "memory_studio",
        client: Optional[MongoClient] = None,
    ):
        """
        Initialize MongoDB connection and setup collections.

        Args:
            connection_string: MongoDB connection URI
            database_name: Name of the database
            client: Already-constructed client (skips the connectivity check)
        """
        try:
            if client is None:
                client = MongoClient(connection_string, serverSelectionTimeoutMS=5000)
                client.admin.command("ping")
            self.client = client
            self.db = self.client[database_name]

            self.entries = self.db.memory_entries
            self.interactions = self.db.interactions

            logger.info(f"Connected to MongoDB: {database_name}")
            self._create_indexes()

        except PyMongoError as e:
            logger.error(f"Failed to connect to MongoDB: {e}")
            raise

    def _create_indexes(self):
        try:
            self.entries.create_index("name")
            self.entries.create_index("last_seen", name="last_seen_idx")
            self.entries.create_index("category", name="category_idx")

            self.interactions.create_index("entry_id", name="entry_id_idx")
            self.interactions.create_index("created_at", name="created_at_idx")
            self.interactions.create_index("kind", name="kind_idx")

            logger.info("Indexes created successfully")
        except PyMongoError as e:
            logger.error(f"Error creating indexes: {e}")

    # ==================== ENTRY OPERATIONS ====================

    def create_entry(
        self,
        name: str,
        embedding: List[float],
        introduced_by: Optional[str] = None,
        notes: Optional[str] = None,
        preferences: Optional[List[str]] = None,
        tags: Optional[List[str]] = None,
        category: Optional[str] = None,
        image_path: Optional[str] = None,
    ) -> MemoryEntry:
        """
        Insert a new memory entry.

        Raises:
            ValidationError: name, embedding or category is invalid
        """
        errors = validate_entry_data(name, embedding, category, tags, preferences)
        if errors:
            raise ValidationError(errors[0], details=errors)

        now = utcnow()
        doc = {
            "name": name,
            "embedding": [float(x) for x in embedding],
            "first_met": now,
            "last_seen": now,
            "interaction_count": 0,
            "introduced_by": introduced_by,
            "notes": notes,
            "preferences": list(preferences or []),
            "tags": list(tags or []),
            "category": category or DEFAULT_CATEGORY,
            "image_path": image_path,
            "created_at": now,
            "updated_at": now,
        }

        result = self.entries.insert_one(doc)
        doc["_id"] = result.inserted_id
        logger.info(f"Memory entry created: {name} ({result.inserted_id})")
        return MemoryEntry.from_doc(doc)

    def get_entry(self, entry_id: str) -> Optional[MemoryEntry]:
        oid = as_object_id(entry_id)
        if oid is None:
            return None
        doc = self.entries.find_one({"_id": oid})
        return MemoryEntry.from_doc(doc) if doc else None

    def get_all_entries(self) -> List[MemoryEntry]:
        """Full scan of the entry collection, most recently seen first."""
        docs = self.entries.find().sort("last_seen", DESCENDING)
        return [MemoryEntry.from_doc(doc) for doc in docs]

    def count_entries(self) -> int:
        return self.entries.count_documents({})

    def update_entry(self, entry_id: str, updates: Dict[str, Any]) -> MemoryEntry:
        """
        Apply a partial update. Unknown keys are ignored.

        Raises:
            ValidationError: a supplied embedding is malformed
            NotFoundError: no entry with this id
        """
        fields = {k: v for k, v in updates.items() if k in UPDATABLE_FIELDS and v is not None}

        if "embedding" in fields:
            if not validate_embedding(fields["embedding"]):
                raise ValidationError(
                    f"Embedding must be a {EMBEDDING_DIMENSION}-dimensional vector"
                )
            fields["embedding"] = [float(x) for x in fields["embedding"]]

        fields["updated_at"] = utcnow()

        oid = as_object_id(entry_id)
        doc = None
        if oid is not None:
            doc = self.entries.find_one_and_update(
                {"_id": oid},
                {"$set": fields},
                return_document=ReturnDocument.AFTER,
            )
        if doc is None:
            logger.warning(f"Memory entry not found: {entry_id}")
            raise NotFoundError("Memory not found")

        logger.info(f"Memory entry updated: {entry_id}")
        return MemoryEntry.from_doc(doc)

    def delete_entry(self, entry_id: str) -> Optional[MemoryEntry]:
        """Delete an entry and its interactions. Returns the deleted entry, or None."""
        oid = as_object_id(entry_id)
        if oid is None:
            return None

        doc = self.entries.find_one_and_delete({"_id": oid})
        if doc is None:
            logger.warning(f"Memory entry not found: {entry_id}")
            return None

        removed = self.interactions.delete_many({"entry_id": oid}).deleted_count
        logger.info(f"Memory entry deleted: {entry_id} ({removed} interactions removed)")
        return MemoryEntry.from_doc(doc)

    def search_entries_by_name(self, name: str) -> List[MemoryEntry]:
        """Case-insensitive substring match on the name."""
        pattern = re.compile(re.escape(name), re.IGNORECASE)
        docs = self.entries.find({"name": pattern}).sort("last_seen", DESCENDING)
        return [MemoryEntry.from_doc(doc) for doc in docs]

    def increment_interaction_count(self, entry_id: str) -> MemoryEntry:
        """Add one to the interaction counter and move last_seen forward."""
        oid = as_object_id(entry_id)
        now = utcnow()
        doc = None
        if oid is not None:
            doc = self.entries.find_one_and_update(
                {"_id": oid},
                {
                    "$inc": {"interaction_count": 1},
                    "$max": {"last_seen": now},
                    "$set": {"updated_at": now},
                },
                return_document=ReturnDocument.AFTER,
            )
        if doc is None:
            raise NotFoundError("Memory entry not found")
        return MemoryEntry.from_doc(doc)

    # ==================== INTERACTION OPERATIONS ====================

    def create_interaction(
        self,
        entry_id: str,
        kind: str,
        context: Optional[str] = None,
        generated_response: Optional[str] = None,
        emotion: Optional[str] = None,
        actions: Optional[List[str]] = None,
    ) -> Interaction:
        """
        Insert an interaction for an existing entry.

        Raises:
            ValidationError: kind or actions are invalid
            NotFoundError: the entry does not exist
        """
        errors = validate_interaction_data(entry_id, kind, actions)
        if errors:
            raise ValidationError(errors[0], details=errors)

        oid = as_object_id(entry_id)
        if oid is None or self.entries.find_one({"_id": oid}, {"_id": 1}) is None:
            raise NotFoundError("Memory entry not found")

        doc = {
            "entry_id": oid,
            "kind": kind,
            "context": context,
            "generated_response": generated_response,
            "emotion": emotion,
            "actions": list(actions or []),
            "created_at": utcnow(),
        }
        result = self.interactions.insert_one(doc)
        doc["_id"] = result.inserted_id
        logger.info(f"Interaction recorded: {kind} for {entry_id}")
        return Interaction.from_doc(doc)

    def get_interactions(self, entry_id: str) -> List[Interaction]:
        """Interactions for one entry, newest first."""
        oid = as_object_id(entry_id)
        if oid is None:
            return []
        docs = self.interactions.find({"entry_id": oid}).sort(
            [("created_at", DESCENDING), ("_id", DESCENDING)]
        )
        return [Interaction.from_doc(doc) for doc in docs]
