import math

import pytest

from marksheet_ai.models import ExamConfig, Question
from marksheet_ai.normalize import create_id, normalize_exam, normalize_question, sample_exam


def test_defaults_for_empty_record():
    question = normalize_question({}, 2)
    assert question.id.startswith("q_")
    assert question.label == "Q3"
    assert question.points == 0
    assert question.type == "text"
    assert question.box_height == "medium"


def test_mark_question_defaults():
    question = normalize_question({"id": "q1", "type": "mark"}, 0)
    assert question.options_count == 4
    assert question.option_style == "alphabet"
    assert question.correct_options == []
    assert question.box_height is None


@pytest.mark.parametrize(
    "raw, expected",
    [
        (1, 2),
        (0, 2),
        (6, 6),
        (7.8, 7),
        ("5", 4),
        (None, 4),
    ],
)
def test_options_count_is_clamped(raw, expected):
    question = normalize_question({"id": "q", "type": "mark", "optionsCount": raw}, 0)
    assert question.options_count == expected


@pytest.mark.parametrize("raw", ["5", None, math.nan, math.inf, True])
def test_non_finite_points_become_zero(raw):
    assert normalize_question({"id": "q", "points": raw}, 0).points == 0


def test_unknown_option_style_defaults_to_alphabet():
    question = normalize_question({"id": "q", "type": "mark", "optionStyle": "roman"}, 0)
    assert question.option_style == "alphabet"


def test_unknown_box_height_defaults_to_medium():
    question = normalize_question({"id": "q", "type": "text", "boxHeight": "huge"}, 0)
    assert question.box_height == "medium"


def test_unknown_type_becomes_text():
    question = normalize_question({"id": "q", "type": "essay"}, 0)
    assert question.type == "text"


def test_correct_options_are_filtered_deduplicated_and_sorted():
    question = normalize_question(
        {
            "id": "q",
            "type": "mark",
            "optionsCount": 4,
            "correctOptions": [3, 1, 1, 7, 2.0, -1, "0", 1.5, True],
        },
        0,
    )
    assert question.correct_options == [1, 2, 3]


def test_legacy_correct_option_is_migrated():
    question = normalize_question({"id": "q", "type": "mark", "correctOption": 2}, 0)
    assert question.correct_options == [2]


def test_legacy_correct_option_ignored_when_list_present():
    question = normalize_question(
        {"id": "q", "type": "mark", "correctOption": 2, "correctOptions": []}, 0
    )
    assert question.correct_options == []


def test_legacy_null_correct_option():
    question = normalize_question({"id": "q", "type": "mark", "correctOption": None}, 0)
    assert question.correct_options == []


def test_legacy_out_of_range_correct_option_is_dropped():
    question = normalize_question(
        {"id": "q", "type": "mark", "optionsCount": 3, "correctOption": 5}, 0
    )
    assert question.correct_options == []


@pytest.mark.parametrize(
    "raw",
    [
        {},
        {"type": "mark", "optionsCount": 1, "correctOption": 1},
        {"id": "q9", "label": "Nine", "points": 3.5, "type": "mark", "correctOptions": [2, 0, 0]},
        {"id": "t", "type": "text", "boxHeight": "small", "points": -2},
    ],
)
def test_normalize_is_idempotent(raw):
    once = normalize_question(raw, 4)
    assert normalize_question(once, 4) == once


def test_normalize_accepts_question_instances():
    question = Question(id="q1", label="", points=2, type="mark", options_count=12, correct_options=[11, 3])
    normalized = normalize_question(question, 0)
    assert normalized.label == "Q1"
    assert normalized.option_style == "alphabet"
    assert normalized.correct_options == [3, 11]


def test_create_id_is_unique_enough():
    assert len({create_id() for _ in range(50)}) == 50


def test_normalize_exam_defaults_title_and_skips_non_records():
    config = normalize_exam({"title": "   ", "questions": [1, "x", {"id": "a", "type": "mark"}]})
    assert config.title == "Untitled Exam"
    assert [question.id for question in config.questions] == ["a"]
    assert config.questions[0].label == "Q1"


def test_normalize_exam_handles_missing_input():
    assert normalize_exam(None) == ExamConfig(title="Untitled Exam", questions=[])
    assert normalize_exam({"title": "Quiz", "questions": "oops"}).questions == []


def test_normalize_exam_trims_title():
    assert normalize_exam({"title": "  Midterm  "}).title == "Midterm"


def test_sample_exam():
    config = sample_exam()
    assert [question.type for question in config.questions] == ["mark", "mark", "text"]
    assert config.questions[1].correct_options == [2]
