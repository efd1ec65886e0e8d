"""
Image checks against the OpenAI vision fine-tuning requirements.
Metadata is read with Pillow; nothing is decoded beyond what that needs.
"""

import io
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)

MIN_SIDE_PX = 50
MAX_SIDE_PX = 4000


@dataclass(frozen=True)
class ImageRequirements:
    max_size_bytes: int = 10 * 1024 * 1024  # 10MB
    allowed_formats: Tuple[str, ...] = ("jpeg", "png", "webp")
    # Pillow modes; palette images are sRGB
    allowed_color_modes: Tuple[str, ...] = ("RGB", "RGBA", "P")
    max_width: Optional[int] = None
    max_height: Optional[int] = None
    max_images_per_example: int = 64
    max_examples_per_file: int = 50000


OPENAI_VISION_REQUIREMENTS = ImageRequirements()


@dataclass
class ImageValidationResult:
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    metadata: Optional[Dict[str, Any]] = None


def _format_mb(size: int) -> str:
    return f"{size / 1024 / 1024:.2f}MB"


def _size_warnings(width: int, height: int) -> List[str]:
    warnings = []
    if width < MIN_SIDE_PX or height < MIN_SIDE_PX:
        warnings.append("Image is very small and might not be suitable for training")
    if width > MAX_SIDE_PX or height > MAX_SIDE_PX:
        warnings.append("Image is very large and might not be suitable for training")
    return warnings


def validate_image_bytes(
    data: bytes,
    requirements: ImageRequirements = OPENAI_VISION_REQUIREMENTS,
) -> ImageValidationResult:
    """
    Validate raw image bytes: format, colour mode, dimensions and size.

    Returns an ImageValidationResult; never raises for bad input.
    """
    errors = []

    try:
        with Image.open(io.BytesIO(data)) as img:
            image_format = (img.format or "").lower()
            mode = img.mode
            width, height = img.size
    except (UnidentifiedImageError, OSError, ValueError) as e:
        return ImageValidationResult(False, [f"Failed to process image: {e}"])

    if image_format not in requirements.allowed_formats:
        errors.append(
            f"Image format '{image_format or 'unknown'}' is not supported. "
            f"Allowed formats: {', '.join(requirements.allowed_formats)}"
        )

    if mode not in requirements.allowed_color_modes:
        errors.append(
            f"Image color mode '{mode}' is not supported. "
            f"Allowed color modes: {', '.join(requirements.allowed_color_modes)}"
        )

    if requirements.max_width and width > requirements.max_width:
        errors.append(f"Image width {width}px exceeds maximum {requirements.max_width}px")

    if requirements.max_height and height > requirements.max_height:
        errors.append(f"Image height {height}px exceeds maximum {requirements.max_height}px")

    if len(data) > requirements.max_size_bytes:
        errors.append(
            f"File size {_format_mb(len(data))} exceeds maximum "
            f"{requirements.max_size_bytes // (1024 * 1024)}MB"
        )

    errors.extend(_size_warnings(width, height))

    is_valid = not errors
    metadata = None
    if is_valid:
        metadata = {
            "width": width,
            "height": height,
            "format": image_format,
            "colorMode": mode,
            "hasAlpha": "A" in mode,
            "size": len(data),
        }
    return ImageValidationResult(is_valid, errors, metadata)


def validate_upload(
    data: bytes,
    content_type: Optional[str],
    requirements: ImageRequirements = OPENAI_VISION_REQUIREMENTS,
) -> ImageValidationResult:
    """Validate an uploaded file, checking the declared content type first."""
    if not content_type or not content_type.startswith("image/"):
        return ImageValidationResult(False, ["File must be an image"])
    return validate_image_bytes(data, requirements)


def validate_dataset_size(
    image_count: int,
    requirements: ImageRequirements = OPENAI_VISION_REQUIREMENTS,
) -> List[str]:
    if image_count > requirements.max_examples_per_file:
        return [
            f"Dataset contains {image_count} images, which exceeds the maximum of "
            f"{requirements.max_examples_per_file} images per training file"
        ]
    return []


def validate_training_example(
    image_count: int,
    requirements: ImageRequirements = OPENAI_VISION_REQUIREMENTS,
) -> List[str]:
    if image_count > requirements.max_images_per_example:
        return [
            f"Training example contains {image_count} images, which exceeds the maximum of "
            f"{requirements.max_images_per_example} images per example"
        ]
    return []
