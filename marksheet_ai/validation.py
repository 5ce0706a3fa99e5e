"""
Structural checks run before an exam configuration is saved or exported,
plus a few input guards used at the application boundary.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional

from .models import ExamConfig, Question
from .normalize import normalize_question, raw_correct_options

MAX_TITLE_LENGTH = 100
MAX_QUESTIONS = 100
MAX_LABEL_LENGTH = 50
MAX_POINTS = 1000
MIN_OPTIONS = 2
MAX_OPTIONS = 10
DEFAULT_MAX_UPLOAD_MB = 20

ALLOWED_MIME_TYPES = {"image/jpeg", "image/jpg", "image/png", "application/pdf"}
ALLOWED_EXTENSIONS = {"jpg", "jpeg", "png", "pdf"}

_JAVASCRIPT_RE = re.compile(r"javascript:", re.IGNORECASE)


@dataclass(frozen=True)
class ValidationError:
    """A single field-level problem."""

    field: str
    message: str


def _blank(value: Optional[str]) -> bool:
    return not value or not str(value).strip()


def validate_exam_config(config: ExamConfig) -> List[ValidationError]:
    """
    Collect every structural problem of `config`; an empty list means valid.

    Checks are independent and never short-circuit.
    """
    errors: List[ValidationError] = []

    if _blank(config.title):
        errors.append(ValidationError("title", "Exam title is required"))
    elif len(config.title) > MAX_TITLE_LENGTH:
        errors.append(
            ValidationError("title", f"Exam title must be at most {MAX_TITLE_LENGTH} characters")
        )

    questions = config.questions or []
    if not questions:
        errors.append(ValidationError("questions", "At least one question is required"))
    elif len(questions) > MAX_QUESTIONS:
        errors.append(
            ValidationError("questions", f"Maximum {MAX_QUESTIONS} questions allowed")
        )

    for index, question in enumerate(questions):
        errors.extend(validate_question(question, index))
    return errors


def validate_question(question: Question, index: int) -> List[ValidationError]:
    errors: List[ValidationError] = []
    prefix = f"questions[{index}]"
    number = index + 1

    def add(field_name: str, message: str) -> None:
        errors.append(ValidationError(f"{prefix}.{field_name}", f"Question {number}: {message}"))

    if _blank(question.id):
        add("id", "ID is required")

    if _blank(question.label):
        add("label", "Label is required")
    elif len(question.label) > MAX_LABEL_LENGTH:
        add("label", f"Label must be at most {MAX_LABEL_LENGTH} characters")

    points = question.points
    if points is None:
        add("points", "Points value is required")
    elif isinstance(points, bool) or not isinstance(points, (int, float)):
        add("points", "Points must be a number")
    elif points < 0:
        add("points", "Points cannot be negative")
    elif points > MAX_POINTS:
        add("points", f"Points value is too high (max {MAX_POINTS})")

    if question.type == "mark":
        options_count = question.options_count
        if not options_count or options_count < MIN_OPTIONS:
            add("optionsCount", f"At least {MIN_OPTIONS} options required for multiple choice")
        elif options_count > MAX_OPTIONS:
            add("optionsCount", f"Maximum {MAX_OPTIONS} options allowed")

        if not question.option_style:
            add("optionStyle", "Option style is required")

        for option_index in question.correct_options or []:
            if option_index < 0 or option_index >= (options_count or 0):
                add("correctOptions", f"Correct option index {option_index} is out of range")
    elif question.type == "text":
        if not question.box_height:
            add("boxHeight", "Box height is required for text questions")

    return errors


def validate_raw_answer_keys(raw: Any) -> List[ValidationError]:
    """
    Report answer-key entries of a raw exam record that normalisation would drop.

    :func:`~marksheet_ai.normalize.normalize_exam` silently filters
    ``correctOptions`` to indices within ``[0, optionsCount)``, so exam files
    must be checked before they are normalised. Indices follow the order
    ``normalize_exam`` gives the questions.
    """
    if not isinstance(raw, Mapping):
        return []
    questions = raw.get("questions")
    if not isinstance(questions, (list, tuple)):
        return []

    records = [entry for entry in questions if isinstance(entry, Mapping)]
    errors: List[ValidationError] = []
    for index, record in enumerate(records):
        if record.get("type") != "mark":
            continue
        kept = set(normalize_question(record, index).correct_options or [])
        for value in raw_correct_options(record):
            valid_index = (
                isinstance(value, (int, float))
                and not isinstance(value, bool)
                and float(value).is_integer()
                and int(value) in kept
            )
            if not valid_index:
                errors.append(
                    ValidationError(
                        f"questions[{index}].correctOptions",
                        f"Question {index + 1}: Correct option index {value!r} is out of range",
                    )
                )
    return errors


def format_validation_errors(errors: List[ValidationError]) -> str:
    if not errors:
        return ""
    if len(errors) == 1:
        return errors[0].message
    lines = [f"{position}. {error.message}" for position, error in enumerate(errors, start=1)]
    return f"Found {len(errors)} validation errors:\n" + "\n".join(lines)


def validate_api_key(api_key: Optional[str]) -> bool:
    """
    Loose format check for OpenAI keys: ``sk-`` prefix and a plausible length.
    """
    key = (api_key or "").strip()
    if not key.startswith("sk-"):
        return False
    if key.startswith("sk-proj-"):
        return len(key) >= 56
    return len(key) >= 40


def validate_file_size(size_in_bytes: int, max_size_mb: float = DEFAULT_MAX_UPLOAD_MB) -> bool:
    return size_in_bytes <= max_size_mb * 1024 * 1024


def validate_file_type(mime_type: Optional[str], name: str) -> bool:
    """Accept JPEG, PNG and PDF by MIME type, falling back to the extension."""
    if mime_type and mime_type.lower() in ALLOWED_MIME_TYPES:
        return True
    extension = name.lower().rsplit(".", 1)[-1] if "." in name else ""
    return extension in ALLOWED_EXTENSIONS


def sanitize_input(text: str) -> str:
    """Strip angle brackets and ``javascript:`` from free-text input."""
    return _JAVASCRIPT_RE.sub("", text.replace("<", "").replace(">", "")).strip()
