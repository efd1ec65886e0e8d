import base64
import json

from memory_studio.conftest import make_image_bytes
from memory_studio.image_validation import ImageRequirements
from memory_studio.jsonl_generator import (
    DEFAULT_SYSTEM_PROMPT,
    build_example,
    count_images,
    generate_jsonl,
    validate_jsonl,
)
from memory_studio.models import ImageRecord


def _record(tmp_path, name, data, annotation="Brie"):
    path = tmp_path / name
    path.write_bytes(data)
    return ImageRecord(
        id=name,
        filename=name,
        annotation=annotation,
        file_path=str(path),
        file_size=len(data),
        mime_type="image/png",
    )


def test_generate_jsonl_line_shape(tmp_path):
    data = make_image_bytes(seed=1)
    result = generate_jsonl([_record(tmp_path, "a.png", data, "Comté")])

    assert result.valid_examples == 1
    assert result.skipped_images == []
    assert result.validation_errors == []

    line = json.loads(result.jsonl)
    system, user, assistant = line["messages"]
    assert system == {"role": "system", "content": DEFAULT_SYSTEM_PROMPT}
    url = user["content"][0]["image_url"]["url"]
    assert url.startswith("data:image/png;base64,")
    assert base64.b64decode(url.split(",", 1)[1]) == data
    assert assistant["content"] == [{"type": "text", "text": "Comté"}]


def test_invalid_and_missing_images_are_skipped(tmp_path):
    records = [
        _record(tmp_path, "good.png", make_image_bytes(seed=2)),
        _record(tmp_path, "gray.png", make_image_bytes(mode="L")),
        ImageRecord(
            id="gone",
            filename="gone.png",
            annotation="x",
            file_path=str(tmp_path / "missing.png"),
            file_size=0,
            mime_type="image/png",
        ),
    ]
    result = generate_jsonl(records)

    assert result.valid_examples == 1
    assert [s["filename"] for s in result.skipped_images] == ["gray.png", "gone.png"]
    assert result.skipped_images[1]["reason"].startswith("Processing error")
    assert len(result.jsonl.splitlines()) == 1


def test_dataset_limit_reported(tmp_path):
    records = [_record(tmp_path, f"{i}.png", make_image_bytes(seed=i)) for i in range(3)]
    result = generate_jsonl(records, ImageRequirements(max_examples_per_file=2))
    assert len(result.validation_errors) == 1


def test_custom_system_prompt(tmp_path):
    result = generate_jsonl([_record(tmp_path, "a.png", make_image_bytes())], system_prompt="Name the person.")
    assert json.loads(result.jsonl)["messages"][0]["content"] == "Name the person."


def test_generated_output_validates(tmp_path):
    records = [_record(tmp_path, f"{i}.png", make_image_bytes(seed=i)) for i in range(3)]
    valid, errors = validate_jsonl(generate_jsonl(records).jsonl)
    assert valid
    assert errors == []


def test_validate_empty():
    assert validate_jsonl("") == (False, ["JSONL file is empty"])
    assert validate_jsonl("  \n ")[0] is False


def test_validate_reports_bad_lines():
    good = json.dumps(build_example("data:image/png;base64,AAAA", "Gouda"))
    two_messages = json.dumps({"messages": [{"role": "user", "content": []}, {"role": "assistant", "content": []}]})
    no_image = build_example("data:image/png;base64,AAAA", "Gouda")
    no_image["messages"][1]["content"] = [{"type": "text", "text": "hi"}]

    jsonl = "\n".join([good, "{not json", two_messages, json.dumps(no_image), json.dumps({"messages": [1, 2, 3]})])
    valid, errors = validate_jsonl(jsonl)

    assert not valid
    assert errors[0].startswith("Line 2: Invalid JSON")
    assert errors[1].startswith("Line 3: Expected exactly 3 messages")
    assert errors[2] == "Line 4: User message missing image content"
    assert errors[3] == "Line 5: Messages must be objects"


def test_data_url_uses_detected_format(tmp_path):
    # stored as image/png but the bytes are a JPEG
    result = generate_jsonl([_record(tmp_path, "a.png", make_image_bytes(fmt="JPEG"))])
    url = json.loads(result.jsonl)["messages"][1]["content"][0]["image_url"]["url"]
    assert url.startswith("data:image/jpeg;base64,")


def test_count_images():
    assert count_images(build_example("data:image/png;base64,AAAA", "Brie")) == 1
    assert count_images({"messages": [{"role": "system", "content": "hi"}]}) == 0


def test_per_example_image_limit(tmp_path):
    records = [_record(tmp_path, f"{i}.png", make_image_bytes(seed=i)) for i in range(2)]
    result = generate_jsonl(records, ImageRequirements(max_images_per_example=0))
    assert result.valid_examples == 0
    assert result.jsonl == ""
    assert len(result.skipped_images) == 2
    assert all("images per example" in s["reason"] for s in result.skipped_images)
