"""
Turn raw question records (legacy storage, hand-written files or AI output)
into canonical :class:`~marksheet_ai.models.Question` instances.
"""

from __future__ import annotations

import logging
import math
import random
import time
from typing import Any, Iterable, List, Mapping, Optional, Union

from .models import (
    DEFAULT_BOX_HEIGHT,
    DEFAULT_EXAM_TITLE,
    DEFAULT_OPTION_STYLE,
    DEFAULT_OPTIONS_COUNT,
    OPTION_STYLES,
    TEXT_BOX_HEIGHTS,
    ExamConfig,
    Question,
)

logger = logging.getLogger(__name__)

RawQuestion = Union[Question, Mapping[str, Any]]


def create_id() -> str:
    """Generate a question id from a microsecond timestamp plus randomness."""
    return f"q_{time.time_ns() // 1000}_{random.randrange(100000)}"


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _finite_points(value: Any) -> Any:
    if _is_number(value) and math.isfinite(value):
        return value
    return 0


def _options_count(value: Any) -> int:
    if _is_number(value) and math.isfinite(value):
        return max(2, int(value))
    return DEFAULT_OPTIONS_COUNT


def raw_correct_options(raw: Mapping[str, Any]) -> Iterable[Any]:
    """
    Resolve the answer key from either record version.

    Current records carry a ``correctOptions`` list; legacy records carry a
    single nullable ``correctOption`` index, used only when the list is absent.
    """
    current = raw.get("correctOptions")
    if isinstance(current, (list, tuple, set, frozenset)):
        return current
    legacy = raw.get("correctOption")
    if current is None and _is_number(legacy):
        logger.debug("Migrating legacy correctOption=%r for question %r", legacy, raw.get("id"))
        return [legacy]
    return []


def _as_mapping(raw: RawQuestion) -> Mapping[str, Any]:
    if isinstance(raw, Question):
        return raw.to_dict()
    if isinstance(raw, Mapping):
        return raw
    return {}


def normalize_question(raw: RawQuestion, index: int) -> Question:
    """
    Fill defaults and canonicalise a question found at position `index`.

    The function never fails and is idempotent: normalising an already
    canonical question returns an equal question.
    """
    data = _as_mapping(raw)
    question_id = data.get("id")
    question_id = str(question_id) if question_id not in (None, "") else create_id()
    label = data.get("label")
    label = str(label) if label not in (None, "") else f"Q{index + 1}"
    points = _finite_points(data.get("points"))

    if data.get("type") == "mark":
        options_count = _options_count(data.get("optionsCount"))
        option_style = data.get("optionStyle")
        if option_style not in OPTION_STYLES:
            option_style = DEFAULT_OPTION_STYLE
        correct_options = sorted(
            {
                int(value)
                for value in raw_correct_options(data)
                if _is_number(value) and float(value).is_integer() and 0 <= value < options_count
            }
        )
        return Question(
            id=question_id,
            label=label,
            points=points,
            type="mark",
            options_count=options_count,
            option_style=option_style,
            correct_options=correct_options,
        )

    box_height = data.get("boxHeight")
    if box_height not in TEXT_BOX_HEIGHTS:
        box_height = DEFAULT_BOX_HEIGHT
    return Question(
        id=question_id,
        label=label,
        points=points,
        type="text",
        box_height=box_height,
    )


def normalize_exam(raw: Union[ExamConfig, Mapping[str, Any], None]) -> ExamConfig:
    """
    Normalise a whole exam configuration.

    Entries of ``questions`` that are not records are skipped; the title
    defaults to ``"Untitled Exam"``.
    """
    if isinstance(raw, ExamConfig):
        title: Optional[str] = raw.title
        raw_questions: List[Any] = list(raw.questions)
    elif isinstance(raw, Mapping):
        title = raw.get("title")
        questions_value = raw.get("questions")
        raw_questions = list(questions_value) if isinstance(questions_value, (list, tuple)) else []
    else:
        title, raw_questions = None, []

    title = str(title).strip() if title is not None else ""
    records = [entry for entry in raw_questions if isinstance(entry, (Question, Mapping))]
    return ExamConfig(
        title=title or DEFAULT_EXAM_TITLE,
        questions=[normalize_question(entry, index) for index, entry in enumerate(records)],
    )


def sample_exam() -> ExamConfig:
    """Starter template offered when a new exam is created."""
    return normalize_exam(
        {
            "title": "Sample Exam",
            "questions": [
                {"id": "q1", "label": "Q1", "points": 5, "type": "mark", "optionsCount": 4, "correctOption": 0},
                {"id": "q2", "label": "Q2", "points": 5, "type": "mark", "optionsCount": 4, "correctOption": 2},
                {"id": "q3", "label": "Q3", "points": 10, "type": "text", "boxHeight": "medium"},
            ],
        }
    )
