"""
Dataset curation and fine-tuning submission.
"""

import logging
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

from .dataset_db import DatasetDatabase
from .errors import NotFoundError, ValidationError
from .file_storage import FileStorage
from .fine_tuning import FineTuningClient
from .image_validation import OPENAI_VISION_REQUIREMENTS, ImageRequirements, validate_upload
from .jsonl_generator import generate_jsonl, validate_jsonl
from .models import MIN_FINE_TUNE_IMAGES, ImageRecord, Job

logger = logging.getLogger(__name__)


class DatasetService:
    def __init__(
        self,
        database: DatasetDatabase,
        storage: FileStorage,
        fine_tuning: FineTuningClient,
        requirements: ImageRequirements = OPENAI_VISION_REQUIREMENTS,
    ):
        self.db = database
        self.storage = storage
        self.fine_tuning = fine_tuning
        self.requirements = requirements

    # ==================== IMAGES ====================

    def list_images(self) -> List[ImageRecord]:
        return self.db.list_images()

    def add_image(self, data: bytes, filename: str, content_type: Optional[str], annotation: str = "") -> ImageRecord:
        validation = validate_upload(data, content_type, self.requirements)
        if not validation.is_valid:
            raise ValidationError("Image validation failed", details=validation.errors)

        # the declared content type is only trusted to say "image"
        mime_type = f"image/{validation.metadata['format']}"
        stored = self.storage.store_file(data, f"{int(time.time() * 1000)}-{filename}", mime_type)
        return self.db.create_image(
            filename=filename,
            annotation=(annotation or "").strip(),
            file_path=stored.file_path,
            file_size=stored.file_size,
            mime_type=stored.mime_type,
        )

    def update_annotation(self, image_id: str, annotation: str) -> ImageRecord:
        if not annotation:
            raise ValidationError("Annotation is required")
        image = self.db.update_annotation(image_id, annotation)
        if image is None:
            raise NotFoundError("Image not found")
        return image

    def delete_image(self, image_id: str) -> ImageRecord:
        image = self.db.get_image(image_id)
        if image is None:
            raise NotFoundError("Image not found")
        self.storage.delete_file(image.file_path)
        return self.db.delete_image(image_id) or image

    def clear_images(self) -> int:
        return self.db.clear_images()

    # ==================== JOBS ====================

    def list_jobs(self) -> List[Job]:
        return self.db.list_jobs()

    def create_job(self, openai_job_id: Optional[str] = None) -> Job:
        return self.db.create_job(openai_job_id=openai_job_id)

    def list_fine_tuning_jobs(self) -> List[Dict[str, Any]]:
        return self.fine_tuning.list_jobs()

    def submit_job(self, image_ids: List[str]) -> Dict[str, Any]:
        """
        Build the training file from the selected images and start a
        fine-tuning job. The per-job temp folder is always cleaned up.
        """
        if not image_ids or not isinstance(image_ids, list):
            raise ValidationError("Image IDs are required")
        if len(image_ids) < MIN_FINE_TUNE_IMAGES:
            raise ValidationError(f"Minimum {MIN_FINE_TUNE_IMAGES} images required for fine-tuning")

        images = self.db.get_images(image_ids)
        if not images:
            raise ValidationError("No images found with provided IDs")

        job = self.db.create_job()
        temp_dir = self.storage.create_temp_job_folder(job.id)

        try:
            staged = []
            for image in images:
                name = Path(image.file_path).name or f"{image.id}.jpg"
                try:
                    path = self.storage.copy_file_to_temp(image.file_path, temp_dir, name)
                except OSError as e:
                    # missing files surface as skipped images from the generator
                    logger.warning(f"Could not stage {image.file_path}: {e}")
                    path = image.file_path
                staged.append(
                    ImageRecord(
                        id=image.id,
                        filename=image.filename,
                        annotation=image.annotation,
                        file_path=str(path),
                        file_size=image.file_size,
                        mime_type=image.mime_type,
                        created_at=image.created_at,
                        updated_at=image.updated_at,
                    )
                )

            result = generate_jsonl(staged, self.requirements)

            if result.validation_errors:
                raise ValidationError(
                    "Dataset validation failed",
                    details=result.validation_errors + [
                        f"{s['filename']}: {s['reason']}" for s in result.skipped_images
                    ],
                )

            if result.valid_examples == 0:
                raise ValidationError(
                    "No valid training examples found",
                    details=[f"{s['filename']}: {s['reason']}" for s in result.skipped_images],
                )

            valid, errors = validate_jsonl(result.jsonl)
            if not valid:
                raise ValidationError("Invalid training data format", details=errors)

            submitted = self.fine_tuning.submit(result.jsonl)
            updated = self.db.update_job(job.id, openai_job_id=submitted.job_id) or job
        finally:
            self.storage.cleanup_temp_job_folder(job.id)

        response = updated.to_dict()
        response.update({
            "openaiFileId": submitted.file_id,
            "trainingDataSize": result.valid_examples,
            "skippedImages": result.skipped_images,
        })
        return response
