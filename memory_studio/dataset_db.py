"""MongoDB store for the fine-tuning dataset: annotated images and job records."""

import logging
from typing import List, Optional

from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import PyMongoError

from .memory_db import as_object_id
from .models import ImageRecord, Job, utcnow

logger = logging.getLogger(__name__)


class DatasetDatabase:
    def __init__(self, db: Database):
        self.db = db
        self.images = db.images
        self.jobs = db.jobs
        self._create_indexes()

    def _create_indexes(self):
        try:
            self.images.create_index("created_at", name="image_created_at_idx")
            self.jobs.create_index("created_at", name="job_created_at_idx")
            self.jobs.create_index("openai_job_id", name="openai_job_id_idx")
        except PyMongoError as e:
            logger.error(f"Error creating indexes: {e}")

    # ==================== IMAGES ====================

    def list_images(self) -> List[ImageRecord]:
        docs = self.images.find().sort("created_at", DESCENDING)
        return [ImageRecord.from_doc(doc) for doc in docs]

    def create_image(
        self,
        filename: str,
        annotation: str,
        file_path: str,
        file_size: int,
        mime_type: str,
    ) -> ImageRecord:
        now = utcnow()
        doc = {
            "filename": filename,
            "annotation": annotation,
            "file_path": file_path,
            "file_size": file_size,
            "mime_type": mime_type,
            "created_at": now,
            "updated_at": now,
        }
        doc["_id"] = self.images.insert_one(doc).inserted_id
        logger.info(f"Image stored: {filename}")
        return ImageRecord.from_doc(doc)

    def get_image(self, image_id: str) -> Optional[ImageRecord]:
        oid = as_object_id(image_id)
        if oid is None:
            return None
        doc = self.images.find_one({"_id": oid})
        return ImageRecord.from_doc(doc) if doc else None

    def get_images(self, image_ids: List[str]) -> List[ImageRecord]:
        oids = [oid for oid in (as_object_id(i) for i in image_ids) if oid is not None]
        if not oids:
            return []
        docs = self.images.find({"_id": {"$in": oids}}).sort("created_at", DESCENDING)
        return [ImageRecord.from_doc(doc) for doc in docs]

    def update_annotation(self, image_id: str, annotation: str) -> Optional[ImageRecord]:
        oid = as_object_id(image_id)
        if oid is None:
            return None
        doc = self.images.find_one_and_update(
            {"_id": oid},
            {"$set": {"annotation": annotation, "updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        return ImageRecord.from_doc(doc) if doc else None

    def delete_image(self, image_id: str) -> Optional[ImageRecord]:
        oid = as_object_id(image_id)
        if oid is None:
            return None
        doc = self.images.find_one_and_delete({"_id": oid})
        if doc is None:
            return None
        logger.info(f"Image deleted: {image_id}")
        return ImageRecord.from_doc(doc)

    def clear_images(self) -> int:
        count = self.images.delete_many({}).deleted_count
        logger.info(f"Cleared {count} images")
        return count

    # ==================== JOBS ====================

    def list_jobs(self) -> List[Job]:
        docs = self.jobs.find().sort("created_at", DESCENDING)
        return [Job.from_doc(doc) for doc in docs]

    def create_job(self, openai_job_id: Optional[str] = None, status: str = "pending") -> Job:
        now = utcnow()
        doc = {
            "status": status,
            "openai_job_id": openai_job_id,
            "created_at": now,
            "updated_at": now,
        }
        doc["_id"] = self.jobs.insert_one(doc).inserted_id
        logger.info(f"Job created: {doc['_id']}")
        return Job.from_doc(doc)

    def update_job(self, job_id: str, **fields) -> Optional[Job]:
        oid = as_object_id(job_id)
        if oid is None:
            return None
        fields["updated_at"] = utcnow()
        doc = self.jobs.find_one_and_update(
            {"_id": oid},
            {"$set": fields},
            return_document=ReturnDocument.AFTER,
        )
        return Job.from_doc(doc) if doc else None
