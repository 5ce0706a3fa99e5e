import json
from types import SimpleNamespace

import pytest
from PIL import Image

from marksheet_ai.normalize import normalize_exam

ENV_VARS = (
    "OPENAI_API_KEY",
    "MARKSHEET_MODEL",
    "MARKSHEET_DEBUG",
    "MARKSHEET_DATA_DIR",
    "MARKSHEET_TIMEOUT",
    "MARKSHEET_MAX_RETRIES",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    # tests must never pick up a developer's key or data directory
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class FakeResponses:
    """Stands in for ``client.responses``; replays canned outputs in order."""

    def __init__(self, outputs):
        self.outputs = list(outputs)
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        output = self.outputs.pop(0)
        if isinstance(output, Exception):
            raise output
        if not isinstance(output, str):
            output = json.dumps(output, ensure_ascii=False)
        return SimpleNamespace(output_text=output)


class FakeOpenAI:
    def __init__(self, *outputs):
        self.responses = FakeResponses(outputs)


@pytest.fixture
def fake_openai():
    return FakeOpenAI


@pytest.fixture
def exam_data():
    return {
        "title": "Unit 1 Quiz",
        "questions": [
            {
                "id": "q1",
                "label": "Q1",
                "points": 5,
                "type": "mark",
                "optionsCount": 4,
                "optionStyle": "alphabet",
                "correctOptions": [0],
            },
            {
                "id": "q2",
                "label": "Q2",
                "points": 10,
                "type": "mark",
                "optionsCount": 4,
                "optionStyle": "number",
                "correctOptions": [1],
            },
            {"id": "q3", "label": "Essay", "points": 20, "type": "text", "boxHeight": "large"},
        ],
    }


@pytest.fixture
def exam(exam_data):
    return normalize_exam(exam_data)


@pytest.fixture
def exam_file(tmp_path, exam_data):
    path = tmp_path / "exam.json"
    path.write_text(json.dumps(exam_data), encoding="utf-8")
    return path


@pytest.fixture
def sheet_png(tmp_path):
    path = tmp_path / "sheet.png"
    Image.new("RGB", (320, 480), "white").save(path)
    return path
