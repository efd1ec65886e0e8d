import pytest

from memory_studio.conftest import make_image_bytes
from memory_studio.image_validation import (
    ImageRequirements,
    validate_dataset_size,
    validate_image_bytes,
    validate_training_example,
    validate_upload,
)


def test_valid_png_has_metadata():
    data = make_image_bytes(size=(80, 60))
    result = validate_image_bytes(data)
    assert result.is_valid
    assert result.errors == []
    assert result.metadata["width"] == 80
    assert result.metadata["height"] == 60
    assert result.metadata["format"] == "png"
    assert result.metadata["hasAlpha"] is False
    assert result.metadata["size"] == len(data)


@pytest.mark.parametrize("fmt", ["JPEG", "PNG", "WEBP"])
def test_allowed_formats(fmt):
    assert validate_image_bytes(make_image_bytes(fmt=fmt)).is_valid


def test_rgba_allowed():
    result = validate_image_bytes(make_image_bytes(mode="RGBA"))
    assert result.is_valid
    assert result.metadata["hasAlpha"] is True


def test_grayscale_rejected():
    result = validate_image_bytes(make_image_bytes(mode="L"))
    assert not result.is_valid
    assert "color mode 'L'" in result.errors[0]
    assert result.metadata is None


def test_gif_rejected():
    result = validate_image_bytes(make_image_bytes(fmt="GIF"))
    assert not result.is_valid
    assert any("format 'gif'" in e for e in result.errors)


def test_tiny_image_rejected():
    result = validate_image_bytes(make_image_bytes(size=(20, 20)))
    assert not result.is_valid
    assert "very small" in result.errors[0]


def test_size_limit():
    requirements = ImageRequirements(max_size_bytes=100)
    result = validate_image_bytes(make_image_bytes(), requirements)
    assert not result.is_valid
    assert any("exceeds maximum" in e for e in result.errors)


def test_dimension_limits():
    requirements = ImageRequirements(max_width=60, max_height=60)
    result = validate_image_bytes(make_image_bytes(size=(64, 64)), requirements)
    assert len(result.errors) == 2


def test_garbage_bytes():
    result = validate_image_bytes(b"definitely not an image")
    assert not result.is_valid
    assert result.errors[0].startswith("Failed to process image")


def test_upload_requires_image_content_type():
    result = validate_upload(make_image_bytes(), "text/plain")
    assert not result.is_valid
    assert result.errors == ["File must be an image"]
    assert validate_upload(make_image_bytes(), None).errors == ["File must be an image"]
    assert validate_upload(make_image_bytes(), "image/png").is_valid


def test_dataset_and_example_limits():
    requirements = ImageRequirements(max_examples_per_file=5, max_images_per_example=2)
    assert validate_dataset_size(5, requirements) == []
    assert len(validate_dataset_size(6, requirements)) == 1
    assert validate_training_example(2, requirements) == []
    assert len(validate_training_example(3, requirements)) == 1
