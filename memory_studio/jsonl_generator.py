"""
Build and check the JSONL training file for vision fine-tuning.

Each annotated image becomes one line holding a three-message conversation:
system prompt, user message carrying the image as a data URL, and the
assistant reply carrying the annotation.
"""

import base64
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Tuple

from .image_validation import (
    OPENAI_VISION_REQUIREMENTS,
    ImageRequirements,
    validate_dataset_size,
    validate_image_bytes,
    validate_training_example,
)
from .models import ImageRecord

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = "You are an assistant that identifies uncommon cheeses."


@dataclass
class JSONLResult:
    jsonl: str
    valid_examples: int
    skipped_images: List[Dict[str, str]] = field(default_factory=list)
    validation_errors: List[str] = field(default_factory=list)


def build_example(data_url: str, annotation: str, system_prompt: str = DEFAULT_SYSTEM_PROMPT) -> Dict:
    return {
        "messages": [
            {"role": "system", "content": system_prompt},
            {
                "role": "user",
                "content": [{"type": "image_url", "image_url": {"url": data_url}}],
            },
            {
                "role": "assistant",
                "content": [{"type": "text", "text": annotation}],
            },
        ]
    }


def count_images(example: Dict) -> int:
    """Number of image parts across all messages of one training example."""
    return sum(
        1
        for message in example["messages"]
        if isinstance(message.get("content"), list)
        for part in message["content"]
        if isinstance(part, dict) and part.get("type") == "image_url"
    )


def generate_jsonl(
    images: Iterable[ImageRecord],
    requirements: ImageRequirements = OPENAI_VISION_REQUIREMENTS,
    system_prompt: str = DEFAULT_SYSTEM_PROMPT,
) -> JSONLResult:
    """
    Turn image records into JSONL. A bad image is skipped with a reason;
    dataset-level limit violations are reported in validation_errors.
    """
    images = list(images)
    lines = []
    skipped = []

    validation_errors = validate_dataset_size(len(images), requirements)

    for image in images:
        try:
            data = Path(image.file_path).read_bytes()
        except OSError as e:
            logger.error(f"Error processing image {image.filename}: {e}")
            skipped.append({"filename": image.filename, "reason": f"Processing error: {e}"})
            continue

        validation = validate_image_bytes(data, requirements)
        if not validation.is_valid:
            skipped.append({"filename": image.filename, "reason": "; ".join(validation.errors)})
            continue

        encoded = base64.b64encode(data).decode("utf-8")
        data_url = f"data:image/{validation.metadata['format']};base64,{encoded}"
        example = build_example(data_url, image.annotation, system_prompt)

        example_errors = validate_training_example(count_images(example), requirements)
        if example_errors:
            skipped.append({"filename": image.filename, "reason": "; ".join(example_errors)})
            continue

        lines.append(json.dumps(example))

    if skipped:
        logger.warning(f"Skipped {len(skipped)} of {len(images)} images while building JSONL")

    return JSONLResult(
        jsonl="\n".join(lines),
        valid_examples=len(lines),
        skipped_images=skipped,
        validation_errors=validation_errors,
    )


def _has_part(content, part_type: str, key: str) -> bool:
    return any(isinstance(c, dict) and c.get("type") == part_type and c.get(key) for c in content)


def validate_jsonl(jsonl: str) -> Tuple[bool, List[str]]:
    """Check every line has the system / user-with-image / assistant-with-text shape."""
    errors = []
    lines = jsonl.strip().split("\n")

    if not jsonl.strip():
        return False, ["JSONL file is empty"]

    for number, line in enumerate(lines, start=1):
        if not line.strip():
            continue

        try:
            parsed = json.loads(line)
        except json.JSONDecodeError as e:
            errors.append(f"Line {number}: Invalid JSON - {e}")
            continue

        messages = parsed.get("messages") if isinstance(parsed, dict) else None
        if not isinstance(messages, list):
            errors.append(f"Line {number}: Missing or invalid 'messages' array")
            continue

        if len(messages) != 3:
            errors.append(f"Line {number}: Expected exactly 3 messages (system, user and assistant)")
            continue

        if not all(isinstance(m, dict) for m in messages):
            errors.append(f"Line {number}: Messages must be objects")
            continue

        system, user, assistant = messages

        if system.get("role") != "system" or not system.get("content"):
            errors.append(f"Line {number}: First message must be a non-empty 'system' message")

        if user.get("role") != "user":
            errors.append(f"Line {number}: Second message must have role 'user'")
        if not isinstance(user.get("content"), list):
            errors.append(f"Line {number}: User message missing content array")
        elif not _has_part(user["content"], "image_url", "image_url"):
            errors.append(f"Line {number}: User message missing image content")

        if assistant.get("role") != "assistant":
            errors.append(f"Line {number}: Third message must have role 'assistant'")
        if not isinstance(assistant.get("content"), list):
            errors.append(f"Line {number}: Assistant message missing content array")
        elif not _has_part(assistant["content"], "text", "text"):
            errors.append(f"Line {number}: Assistant message missing text content")

    return not errors, errors
