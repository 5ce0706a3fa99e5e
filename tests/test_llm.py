import base64
import io

import pytest
from openai import OpenAIError
from PIL import Image

from marksheet_ai.llm import (
    AIServiceError,
    InputFile,
    InputFileError,
    build_openai_client,
    call_json_model,
    check_input_file,
    file_input_content,
    parse_json_output,
)
from marksheet_ai.settings import ConfigurationError, Settings


def test_parse_json_output_plain_and_fenced():
    assert parse_json_output('{"a": 1}') == {"a": 1}
    assert parse_json_output('```json\n{"a": [1, 2]}\n```') == {"a": [1, 2]}


@pytest.mark.parametrize("text", ["", "   ", "```\n```"])
def test_parse_json_output_rejects_empty(text):
    with pytest.raises(AIServiceError, match="empty"):
        parse_json_output(text)


def test_parse_json_output_rejects_invalid_json():
    with pytest.raises(AIServiceError, match="invalid JSON"):
        parse_json_output("I cannot read this sheet.")


def test_call_json_model_sends_instructions_and_content(fake_openai):
    client = fake_openai('{"ok": true}')
    content = [{"type": "input_text", "text": "hello"}]
    result = call_json_model(client, instructions="Be brief.", content=content, model="gpt-test")
    assert result == {"ok": True}
    (call,) = client.responses.calls
    assert call["model"] == "gpt-test"
    assert call["instructions"] == "Be brief."
    assert call["input"] == [{"role": "user", "content": content}]
    assert call["text"] == {"format": {"type": "json_object"}}


def test_call_json_model_wraps_client_errors(fake_openai):
    client = fake_openai(OpenAIError("quota exceeded"))
    with pytest.raises(AIServiceError, match="quota exceeded"):
        call_json_model(client, instructions="", content=[], model="gpt-test")


def test_input_file_mime_type(tmp_path):
    assert InputFile(tmp_path / "scan.png").resolved_mime_type == "image/png"
    assert InputFile(tmp_path / "exam.pdf").is_image is False
    assert InputFile(tmp_path / "scan", mime_type="IMAGE/JPEG").is_image is True


def test_check_input_file(tmp_path):
    with pytest.raises(InputFileError, match="does not exist"):
        check_input_file(InputFile(tmp_path / "missing.png"))
    notes = tmp_path / "notes.txt"
    notes.write_text("hello")
    with pytest.raises(InputFileError, match="Unsupported"):
        check_input_file(InputFile(notes))


def test_image_content_is_downscaled_jpeg(tmp_path):
    path = tmp_path / "wide.png"
    Image.new("RGB", (4096, 1024), "white").save(path)
    part = file_input_content(InputFile(path))
    assert part["type"] == "input_image"
    assert part["detail"] == "high"
    prefix = "data:image/jpeg;base64,"
    assert part["image_url"].startswith(prefix)
    with Image.open(io.BytesIO(base64.b64decode(part["image_url"][len(prefix):]))) as decoded:
        assert decoded.size == (2048, 512)


def test_pdf_content_is_inline_file(tmp_path):
    path = tmp_path / "exam.pdf"
    path.write_bytes(b"%PDF-1.4\n%%EOF\n")
    part = file_input_content(InputFile(path))
    assert part["type"] == "input_file"
    assert part["filename"] == "exam.pdf"
    assert part["file_data"] == "data:application/pdf;base64," + base64.b64encode(b"%PDF-1.4\n%%EOF\n").decode()


def test_build_openai_client_requires_key(tmp_path):
    with pytest.raises(ConfigurationError, match="API key not configured"):
        build_openai_client(Settings(data_dir=tmp_path))


def test_build_openai_client_uses_retry_setting(tmp_path):
    client = build_openai_client(Settings(api_key="sk-test", data_dir=tmp_path, max_retries=5))
    assert client.max_retries == 5
