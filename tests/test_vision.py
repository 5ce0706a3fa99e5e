import pytest

from marksheet_ai.grading import GradingSession
from marksheet_ai.llm import AIServiceError, InputFile
from marksheet_ai.models import VisionGradeResult
from marksheet_ai.normalize import normalize_exam
from marksheet_ai.vision import (
    OpenAIDetector,
    detect_marks,
    generate_exam_config,
    generate_exam_config_from_text,
    parse_vision_response,
)


def test_detect_marks_filters_unknown_ids_and_indices(fake_openai, exam, sheet_png):
    client = fake_openai(
        {
            "results": [
                {"id": "q1", "filled": [0, 9]},
                {"id": "zzz", "filled": [1]},
                {"id": "q2", "filled": []},
                {"id": "q1", "filled": [2]},
            ]
        }
    )
    results = detect_marks(client, exam, InputFile(sheet_png), model="gpt-test")
    assert results == [VisionGradeResult("q1", (0,)), VisionGradeResult("q2", None)]

    (call,) = client.responses.calls
    text_part, image_part = call["input"][0]["content"]
    assert '"id": "q1"' in text_part["text"]
    assert "q3" not in text_part["text"]
    assert image_part["type"] == "input_image"


def test_detect_marks_accepts_fenced_bare_list(fake_openai, exam, sheet_png):
    client = fake_openai('```json\n[{"id": "q2", "filled": [1]}]\n```')
    assert detect_marks(client, exam, InputFile(sheet_png)) == [VisionGradeResult("q2", (1,))]


def test_detect_marks_skips_call_without_mark_questions(fake_openai, sheet_png):
    client = fake_openai()
    exam = normalize_exam({"title": "Essay", "questions": [{"id": "t", "type": "text"}]})
    assert detect_marks(client, exam, InputFile(sheet_png)) == []
    assert client.responses.calls == []


def test_malformed_detection_is_a_service_error(fake_openai, exam, sheet_png):
    client = fake_openai({"results": [{"id": "q1", "filled": "abc"}]})
    with pytest.raises(AIServiceError, match="schema"):
        detect_marks(client, exam, InputFile(sheet_png))


def test_parse_vision_response_allows_null_filled():
    response = parse_vision_response({"results": [{"id": "q1", "filled": None}]})
    assert response.results[0].filled is None


def test_detector_drives_grading_session(fake_openai, exam, sheet_png):
    client = fake_openai({"results": [{"id": "q1", "filled": [0]}, {"id": "q2", "filled": [1]}]})
    session = GradingSession(exam)
    session.grade(OpenAIDetector(client, "gpt-test"), InputFile(sheet_png))
    assert session.totals.percentage == 100
    assert client.responses.calls[0]["model"] == "gpt-test"


def test_failed_detection_keeps_session_rows(fake_openai, exam, sheet_png):
    client = fake_openai("not json")
    session = GradingSession.build(exam, [VisionGradeResult("q1", (0,))])
    with pytest.raises(AIServiceError):
        session.grade(OpenAIDetector(client), InputFile(sheet_png))
    assert session.row("q1").filled == (0,)


def test_generate_exam_config_from_text_normalises_output(fake_openai):
    client = fake_openai(
        {
            "title": "  Chapter 3  ",
            "questions": [
                {
                    "id": "q1",
                    "label": "1-イ",
                    "points": 2,
                    "type": "mark",
                    "optionsCount": 4,
                    "optionStyle": "iroha",
                    "correctOptions": [1, 9],
                },
                {"label": "Essay", "type": "text", "boxHeight": "large"},
            ],
        }
    )
    config = generate_exam_config_from_text(client, "1. ...", model="gpt-test")
    assert config.title == "Chapter 3"
    first, second = config.questions
    assert first.correct_options == [1]
    assert first.option_style == "iroha"
    assert second.type == "text"
    assert second.box_height == "large"
    assert second.id.startswith("q_")
    assert "1. ..." in client.responses.calls[0]["input"][0]["content"][0]["text"]


def test_generate_exam_config_rejects_unknown_question_type(fake_openai):
    client = fake_openai({"title": "T", "questions": [{"type": "essay"}]})
    with pytest.raises(AIServiceError):
        generate_exam_config_from_text(client, "text")


def test_generate_exam_config_sends_answer_key(fake_openai, tmp_path, sheet_png):
    key = tmp_path / "key.pdf"
    key.write_bytes(b"%PDF-1.4\n%%EOF\n")
    client = fake_openai({"title": "Quiz", "questions": [{"id": "a", "type": "mark", "correctOptions": [3]}]})
    config = generate_exam_config(client, InputFile(sheet_png), InputFile(key))
    assert config.questions[0].correct_options == [3]
    parts = client.responses.calls[0]["input"][0]["content"]
    assert [part["type"] for part in parts] == ["input_text", "input_image", "input_text", "input_file"]
