"""
Local file storage for uploads and per-job temp folders.
Deletion and cleanup are best-effort: failures are logged, never raised.
"""

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Union

from werkzeug.utils import secure_filename

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


@dataclass
class StoredFile:
    file_path: str
    file_size: int
    mime_type: str


class FileStorage:
    def __init__(self, upload_folder: PathLike, temp_folder: PathLike):
        self.upload_folder = Path(upload_folder)
        self.temp_folder = Path(temp_folder)

    def ensure_upload_dir(self):
        self.upload_folder.mkdir(parents=True, exist_ok=True)

    def store_file(self, data: bytes, filename: str, mime_type: str) -> StoredFile:
        self.ensure_upload_dir()
        safe_name = secure_filename(filename) or "upload"
        file_path = self.upload_folder / safe_name
        file_path.write_bytes(data)
        logger.debug(f"Stored file {file_path} ({len(data)} bytes)")
        return StoredFile(file_path=str(file_path), file_size=len(data), mime_type=mime_type)

    def delete_file(self, file_path: PathLike) -> bool:
        try:
            Path(file_path).unlink()
            return True
        except OSError as e:
            logger.warning(f"Error deleting file {file_path}: {e}")
            return False

    def resolve_upload(self, filename: str) -> Path:
        """Path of an uploaded file, confined to the upload folder."""
        return self.upload_folder / secure_filename(filename)

    @staticmethod
    def file_url(filename: str) -> str:
        return f"/uploads/{Path(filename).name}"

    # ==================== TEMP JOB FOLDERS ====================

    def create_temp_job_folder(self, job_id: str) -> Path:
        job_dir = self.temp_folder / secure_filename(job_id)
        job_dir.mkdir(parents=True, exist_ok=True)
        return job_dir

    def copy_file_to_temp(self, source_path: PathLike, temp_dir: PathLike, filename: str) -> Path:
        target = Path(temp_dir) / secure_filename(filename)
        shutil.copyfile(source_path, target)
        return target

    def cleanup_temp_job_folder(self, job_id: str):
        job_dir = self.temp_folder / secure_filename(job_id)
        try:
            if job_dir.exists():
                shutil.rmtree(job_dir)
        except OSError as e:
            logger.error(f"Error cleaning up temp folder {job_dir}: {e}")
