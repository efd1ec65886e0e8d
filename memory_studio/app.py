'''
Flask API for the memory studio
1) Remember people: learn faces, recognise them later, log interactions
2) Curate an annotated image dataset and submit it for vision fine-tuning
'''

import logging
import math
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from flask import Flask, jsonify, request, send_from_directory
from pymongo.errors import PyMongoError

from .config import Settings, configure_logging
from .dataset_db import DatasetDatabase
from .dataset_service import DatasetService
from .errors import NotFoundError, StudioError, ValidationError
from .face_embedding import FaceEmbedder
from .file_storage import FileStorage
from .fine_tuning import FineTuningClient
from .memory_db import MemoryDatabase
from .memory_service import MemoryService
from .models import (
    CATEGORIES,
    EMBEDDING_DIMENSION,
    INTERACTION_KINDS,
    SIMILARITY_THRESHOLD,
    MAX_SIMILARITY_RESULTS,
    SearchOptions,
    isoformat,
)
from .similarity import SIMILARITY_EPSILON, confidence_level

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100
SORT_KEYS = {
    "name": lambda m: m.name.lower(),
    "firstMet": lambda m: m.first_met,
    "lastSeen": lambda m: m.last_seen,
    "interactionCount": lambda m: m.interaction_count,
}


# ==================== REQUEST HELPERS ====================

def _split_list(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _optional_text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _threshold_arg(value: Any, default: float = SIMILARITY_THRESHOLD) -> float:
    """Parse a similarity threshold; missing means the default, anything non-numeric is rejected."""
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise ValidationError("threshold must be a number")
    try:
        parsed = float(value)
    except (TypeError, ValueError, OverflowError):
        raise ValidationError("threshold must be a number")
    if not math.isfinite(parsed):
        raise ValidationError("threshold must be a finite number")
    return parsed


def _int_arg(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _page_args(default_limit: int = 20) -> Tuple[int, int]:
    page = max(_int_arg(request.args.get("page"), 1), 1)
    limit = min(max(_int_arg(request.args.get("limit"), default_limit), 1), MAX_PAGE_SIZE)
    return page, limit


def _pagination(page: int, limit: int, total: int) -> Dict[str, int]:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "totalPages": math.ceil(total / limit) if limit else 0,
    }


def _json_body() -> Dict[str, Any]:
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


def _uploaded_image(field: str = "image"):
    image = request.files.get(field)
    if image is None or image.filename == "":
        raise ValidationError("Image is required")
    return image


# ==================== RECOGNITION OPERATIONS ====================

class RecognitionOperation(str, Enum):
    IDENTIFY = "identify"
    LEARN = "learn"
    SEARCH = "search"


def handle_identify(memory_service) -> Tuple[Dict[str, Any], int]:
    """
    Identify a face from an uploaded photo.

    Expected form data:
    - image: image file
    - threshold: optional, default 0.8
    - topK: optional, default 5
    """
    image = _uploaded_image()
    threshold = _threshold_arg(request.form.get("threshold"))
    top_k = max(_int_arg(request.form.get("topK"), 5), 1)

    result = memory_service.recognize_face(image.read(), threshold=threshold, top_k=top_k)

    matches = [
        {
            "memoryId": match.id,
            "name": match.entry.name,
            "similarity": match.similarity,
            "confidence": confidence_level(match.similarity),
            "metadata": {
                "relationshipType": match.entry.category,
                "lastSeen": isoformat(match.entry.last_seen),
                "interactionCount": match.entry.interaction_count,
            },
        }
        for match in result.similar
        # only candidates that clear the threshold
        if match.similarity + SIMILARITY_EPSILON >= threshold
    ]
    return {
        "recognized": result.recognized,
        "confidence": result.confidence,
        "memoryId": result.entry.id if result.entry else None,
        "matches": matches,
        "processingTime": result.processing_time_ms,
        "method": result.method,
    }, 200


def handle_learn(memory_service) -> Tuple[Dict[str, Any], int]:
    """Learn a new face. Same form fields as POST /api/memories."""
    memory = _create_memory_from_form(memory_service)
    return {
        "memory": memory.to_dict(),
        "method": "local",
    }, 201


def handle_search(memory_service) -> Tuple[Dict[str, Any], int]:
    """
    Similarity search with a raw embedding.

    Expected JSON:
    {
      "embedding": [...],          // 768 floats
      "threshold": 0.8,            // optional
      "topK": 10,                  // optional
      "relationshipTypes": [...],  // optional
      "excludeIds": [...]          // optional
    }
    """
    body = _json_body()
    embedding = body.get("embedding")
    if not isinstance(embedding, list) or len(embedding) != EMBEDDING_DIMENSION:
        raise ValidationError(f"Valid {EMBEDDING_DIMENSION}-dimensional embedding is required")

    categories = body.get("relationshipTypes")
    exclude_ids = body.get("excludeIds")
    for value in (categories, exclude_ids):
        if value is not None and not isinstance(value, list):
            raise ValidationError("relationshipTypes and excludeIds must be arrays")

    options = SearchOptions(
        threshold=_threshold_arg(body.get("threshold")),
        top_k=body.get("topK", MAX_SIMILARITY_RESULTS),
        categories=categories or None,
        exclude_ids=exclude_ids or None,
    )
    started = time.perf_counter()
    results = memory_service.find_similar(embedding, options)
    elapsed_ms = (time.perf_counter() - started) * 1000

    return {
        "results": [r.to_dict() for r in results],
        "processingTime": elapsed_ms,
    }, 200


RECOGNITION_HANDLERS: Dict[RecognitionOperation, Callable] = {
    RecognitionOperation.IDENTIFY: handle_identify,
    RecognitionOperation.LEARN: handle_learn,
    RecognitionOperation.SEARCH: handle_search,
}


def _create_memory_from_form(memory_service):
    name = request.form.get("name", "")
    if not name.strip():
        raise ValidationError("Name is required")
    image = _uploaded_image()

    category = request.form.get("relationshipType") or "friend"
    if category not in CATEGORIES:
        raise ValidationError("Relationship type must be friend, family, or acquaintance")

    return memory_service.create_memory(
        name=name.strip(),
        image_bytes=image.read(),
        filename=image.filename,
        introduced_by=_optional_text(request.form.get("introducedBy")),
        notes=_optional_text(request.form.get("notes")),
        preferences=_split_list(request.form.get("preferences")),
        tags=_split_list(request.form.get("tags")),
        category=category,
    )


# ==================== APPLICATION ====================

def build_services(settings: Settings):
    """Wire the default MongoDB / OpenAI backed services."""
    memory_db = MemoryDatabase(settings.mongo_uri, settings.mongo_db)
    storage = FileStorage(settings.upload_folder, settings.temp_folder)
    embedder = FaceEmbedder(
        require_face=settings.require_face,
        max_processing_ms=settings.embedding_max_processing_ms,
    )
    memory_service = MemoryService(memory_db, embedder, storage)
    dataset_service = DatasetService(
        DatasetDatabase(memory_db.db),
        storage,
        FineTuningClient(api_key=settings.openai_api_key, model=settings.fine_tune_model),
    )
    return memory_service, dataset_service


def create_app(settings: Optional[Settings] = None, memory_service=None, dataset_service=None) -> Flask:
    settings = settings or Settings.from_env()
    if memory_service is None or dataset_service is None:
        default_memory, default_dataset = build_services(settings)
        memory_service = memory_service or default_memory
        dataset_service = dataset_service or default_dataset

    app = Flask(__name__)
    app.config["MAX_CONTENT_LENGTH"] = settings.max_content_length
    app.config["UPLOAD_FOLDER"] = str(settings.upload_folder)
    settings.upload_folder.mkdir(parents=True, exist_ok=True)

    @app.errorhandler(StudioError)
    def handle_studio_error(error: StudioError):
        if error.status_code >= 500:
            logger.error(f"{request.method} {request.path} failed: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(PyMongoError)
    def handle_database_error(error: PyMongoError):
        logger.error(f"Database error on {request.method} {request.path}: {error}", exc_info=True)
        return jsonify({"error": "Internal server error"}), 500

    # ==================== HEALTH ====================

    @app.route("/api", methods=["GET"])
    def api_status():
        return jsonify({
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "message": "API is running",
        })

    @app.route("/api/health", methods=["GET"])
    def health_check():
        """Check if API is running and database is connected."""
        try:
            count = memory_service.db.count_entries()
            return jsonify({"status": "healthy", "database": "connected", "memoryCount": count})
        except PyMongoError as e:
            return jsonify({"status": "unhealthy", "error": str(e)}), 500

    # ==================== MEMORIES ====================

    @app.route("/api/memories", methods=["POST"])
    def create_memory():
        """
        Create a new memory from a face photo.

        Expected form data:
        - image: image file
        - name: person's name
        - introducedBy, notes: optional text
        - preferences, tags: optional comma separated lists
        - relationshipType: friend | family | acquaintance (default friend)
        """
        memory = _create_memory_from_form(memory_service)
        return jsonify(memory.to_dict()), 201

    @app.route("/api/memories", methods=["GET"])
    def list_memories():
        page, limit = _page_args()
        category = request.args.get("relationshipType")
        search = request.args.get("search")
        sort_by = request.args.get("sortBy", "name")
        sort_order = request.args.get("sortOrder", "asc")

        if search:
            memories = memory_service.search_memories(search)
        else:
            memories = memory_service.list_memories(categories=[category] if category else None)

        memories.sort(key=SORT_KEYS.get(sort_by, SORT_KEYS["name"]), reverse=sort_order == "desc")
        total = len(memories)
        offset = (page - 1) * limit

        return jsonify({
            "memories": [m.to_dict(include_embedding=False) for m in memories[offset:offset + limit]],
            "pagination": _pagination(page, limit, total),
        })

    @app.route("/api/memories/stats", methods=["GET"])
    def memory_stats():
        return jsonify(memory_service.get_memory_stats())

    @app.route("/api/memories/<memory_id>", methods=["GET"])
    def get_memory(memory_id):
        memory = memory_service.get_memory(memory_id)
        if memory is None:
            raise NotFoundError("Memory not found")
        return jsonify(memory.to_dict())

    @app.route("/api/memories/<memory_id>", methods=["PUT"])
    def update_memory(memory_id):
        body = _json_body()
        if memory_service.get_memory(memory_id) is None:
            raise NotFoundError("Memory not found")

        updates = {
            "name": body.get("name"),
            "notes": body.get("notes"),
            "preferences": body.get("preferences"),
            "tags": body.get("tags"),
            "category": body.get("relationshipType"),
        }
        memory = memory_service.update_memory(memory_id, updates)
        return jsonify(memory.to_dict())

    @app.route("/api/memories/<memory_id>", methods=["DELETE"])
    def delete_memory(memory_id):
        memory_service.delete_memory(memory_id)
        return jsonify({"success": True, "message": "Memory deleted successfully"})

    # ==================== INTERACTIONS ====================

    @app.route("/api/interactions", methods=["POST"])
    def record_interaction():
        """
        Record an interaction.

        Expected JSON:
        {
          "memoryEntryId": "...",
          "interactionType": "meeting" | "recognition" | "conversation",
          "context": "...", "responseGenerated": "...", "emotion": "...",
          "actions": ["wave", "smile"]
        }
        """
        body = _json_body()
        entry_id = body.get("memoryEntryId")
        kind = body.get("interactionType")

        if not isinstance(entry_id, str) or not entry_id.strip():
            raise ValidationError("Memory entry ID is required")
        if kind not in INTERACTION_KINDS:
            raise ValidationError(
                "Valid interaction type is required (meeting, recognition, conversation)"
            )

        actions = body.get("actions")
        interaction = memory_service.record_interaction(
            entry_id=entry_id.strip(),
            kind=kind,
            context=_optional_text(body.get("context")),
            generated_response=_optional_text(body.get("responseGenerated")),
            emotion=_optional_text(body.get("emotion")),
            actions=actions if isinstance(actions, list) else [],
        )
        return jsonify(interaction.to_dict()), 201

    @app.route("/api/interactions/<memory_id>", methods=["GET"])
    def interaction_history(memory_id):
        if memory_service.get_memory(memory_id) is None:
            raise NotFoundError("Memory not found")

        page, limit = _page_args()
        interactions = memory_service.get_interaction_history(
            memory_id,
            kind=request.args.get("interactionType"),
            sort_order=request.args.get("sortOrder", "desc"),
        )
        offset = (page - 1) * limit
        return jsonify({
            "interactions": [i.to_dict() for i in interactions[offset:offset + limit]],
            "pagination": _pagination(page, limit, len(interactions)),
        })

    # ==================== RECOGNITION ====================

    @app.route("/api/recognition/<operation>", methods=["POST"])
    def recognition(operation):
        try:
            op = RecognitionOperation(operation)
        except ValueError:
            return jsonify({"error": "Invalid recognition endpoint"}), 404

        body, status = RECOGNITION_HANDLERS[op](memory_service)
        return jsonify(body), status

    # ==================== DATASET IMAGES ====================

    def image_dict(image):
        data = image.to_dict()
        data["url"] = dataset_service.storage.file_url(image.file_path)
        return data

    @app.route("/api/images", methods=["GET"])
    def list_images():
        return jsonify([image_dict(image) for image in dataset_service.list_images()])

    @app.route("/api/images", methods=["POST"])
    def add_image():
        """Upload an image for the dataset. Form data: file, annotation (optional)."""
        upload = request.files.get("file")
        if upload is None or upload.filename == "":
            raise ValidationError("File is required")

        image = dataset_service.add_image(
            data=upload.read(),
            filename=upload.filename,
            content_type=upload.mimetype,
            annotation=request.form.get("annotation", ""),
        )
        return jsonify(image_dict(image)), 201

    @app.route("/api/images/clear", methods=["DELETE"])
    def clear_images():
        count = dataset_service.clear_images()
        return jsonify({"message": "All images cleared successfully", "count": count})

    @app.route("/api/images/<image_id>", methods=["PATCH"])
    def update_image(image_id):
        body = _json_body()
        image = dataset_service.update_annotation(image_id, body.get("annotation"))
        return jsonify(image_dict(image))

    @app.route("/api/images/<image_id>", methods=["DELETE"])
    def delete_image(image_id):
        image = dataset_service.delete_image(image_id)
        return jsonify(image_dict(image))

    @app.route("/uploads/<filename>", methods=["GET"])
    def serve_upload(filename):
        path = dataset_service.storage.resolve_upload(filename)
        if not path.is_file():
            raise NotFoundError("File not found")
        return send_from_directory(path.parent, path.name, max_age=31536000)

    # ==================== JOBS ====================

    @app.route("/api/jobs", methods=["GET"])
    def list_jobs():
        return jsonify([job.to_dict() for job in dataset_service.list_jobs()])

    @app.route("/api/jobs", methods=["POST"])
    def create_job():
        body = request.get_json(silent=True) or {}
        job = dataset_service.create_job(openai_job_id=body.get("openaiJobId"))
        return jsonify(job.to_dict()), 201

    @app.route("/api/jobs/submit", methods=["POST"])
    def submit_job():
        """Submit selected images for fine-tuning. JSON: {"imageIds": [...]} (at least 10)."""
        body = _json_body()
        result = dataset_service.submit_job(body.get("imageIds"))
        return jsonify(result), 201

    @app.route("/api/fine-tuning-jobs", methods=["GET"])
    def list_fine_tuning_jobs():
        jobs = dataset_service.list_fine_tuning_jobs()
        return jsonify({"jobs": jobs, "total": len(jobs)})

    return app


def main():
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    app = create_app(settings)

    print("Starting Memory Studio backend...")
    print(f"Upload folder: {settings.upload_folder}")
    print("API Endpoints:")
    print("  POST /api/memories - Learn a new face")
    print("  POST /api/recognition/<identify|learn|search> - Recognition operations")
    print("  POST /api/interactions - Record an interaction")
    print("  POST /api/jobs/submit - Submit dataset for fine-tuning")
    print("  GET  /api/health - Health check")
    app.run(host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    main()
