"""
AI collaborators: bubble detection on scanned answer sheets and exam template
generation from a source document.

Model answers are validated against Pydantic schemas before anything reaches
the grading core.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Literal, Optional

from openai import OpenAI
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from .llm import AIServiceError, InputFile, call_json_model, file_input_content
from .models import DEFAULT_EXAM_TITLE, DEFAULT_OPTIONS_COUNT, ExamConfig, VisionGradeResult
from .normalize import normalize_exam
from .settings import DEFAULT_MODEL

logger = logging.getLogger(__name__)

DETECTION_INSTRUCTIONS = "\n".join(
    [
        "You are a marksheet grader.",
        'Return only a JSON object {"results": [{"id": string, "filled": number[] | null}]}.',
        "filled must be an array of ALL 0-based selected option indices. "
        "If nothing is selected, return null or an empty array.",
        "Do not return IDs that are not in the provided schema.",
    ]
)

GENERATION_INSTRUCTIONS = "\n".join(
    [
        "You convert exam text/images/files into structured JSON for a marksheet grading system.",
        'Return a JSON object: {"title": string, "questions": Question[]}.',
        "",
        "CRITICAL RULES FOR QUESTION PARSING:",
        "1. Each individual answer bubble/option set = ONE separate question entry.",
        "2. If a question says 'イ~ハまでそれぞれ選べ' or 'A to D', create MULTIPLE questions: one for each sub-part.",
        "3. EXPAND RANGES: 'イ～ニ' becomes questions for イ, ロ, ハ, ニ. '1～3' becomes questions 1, 2, 3.",
        "4. Use labels like '1-イ', '1-ロ' or '問1(1)', '問1(2)' for sub-questions.",
        "5. Never combine multiple answer bubbles into one question.",
        "6. If an Answer Key source is provided, use it to populate 'correctOptions' (0-based indices).",
        "7. If multiple answers are correct, include all of them in 'correctOptions'.",
        "",
        'Question type must be "mark" (multiple choice) or "text" (written answer).',
        'For mark questions include optionsCount (2-10), optionStyle ("number" | "alphabet" | "kana" | "iroha") '
        "and correctOptions.",
        'For text questions include boxHeight ("small" | "medium" | "large").',
        "Set stable unique IDs (q1, q1a, q1b, etc.) for each question.",
    ]
)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DetectedSelection(_CamelModel):
    """Selections reported for one question."""

    id: str = Field(..., min_length=1)
    filled: Optional[List[int]] = None


class VisionGradeResponse(_CamelModel):
    results: List[DetectedSelection] = Field(default_factory=list)


class GeneratedQuestion(_CamelModel):
    id: str = ""
    label: str = ""
    points: int = Field(0, ge=0)
    type: Literal["mark", "text"]
    options_count: Optional[int] = Field(None, ge=2, le=10)
    option_style: Optional[Literal["number", "alphabet", "kana", "iroha"]] = None
    correct_options: Optional[List[int]] = None
    box_height: Optional[Literal["small", "medium", "large"]] = None


class ExamConfigResponse(_CamelModel):
    title: str = DEFAULT_EXAM_TITLE
    questions: List[GeneratedQuestion] = Field(default_factory=list)


def parse_vision_response(payload: Any) -> VisionGradeResponse:
    """Validate a detection answer; a bare list is accepted as ``results``."""
    if isinstance(payload, list):
        payload = {"results": payload}
    try:
        return VisionGradeResponse.model_validate(payload)
    except ValidationError as exc:
        raise AIServiceError(f"Unexpected detection response: {exc.error_count()} schema error(s).") from exc


def parse_exam_response(payload: Any) -> ExamConfig:
    """Validate a generation answer and normalise it into an exam configuration."""
    try:
        parsed = ExamConfigResponse.model_validate(payload)
    except ValidationError as exc:
        raise AIServiceError(f"Unexpected exam response: {exc.error_count()} schema error(s).") from exc
    return normalize_exam(parsed.model_dump(by_alias=True))


def _mark_question_schema(exam: ExamConfig) -> List[Dict[str, Any]]:
    return [
        {
            "id": question.id,
            "label": question.label,
            "optionsCount": question.options_count or DEFAULT_OPTIONS_COUNT,
        }
        for question in exam.mark_questions()
    ]


def filter_detections(
    response: VisionGradeResponse,
    schema: List[Dict[str, Any]],
) -> List[VisionGradeResult]:
    """
    Keep only requested ids and in-range indices.

    A selection left empty after filtering is reported as ``None``.
    """
    options_by_id = {entry["id"]: entry["optionsCount"] for entry in schema}
    results: List[VisionGradeResult] = []
    seen = set()
    for item in response.results:
        options_count = options_by_id.get(item.id)
        if options_count is None or item.id in seen:
            logger.debug("Dropping detection for %r", item.id)
            continue
        seen.add(item.id)
        valid = sorted({index for index in item.filled or [] if 0 <= index < options_count})
        results.append(VisionGradeResult(id=item.id, filled=tuple(valid) if valid else None))
    return results


def detect_marks(
    client: OpenAI,
    exam: ExamConfig,
    sheet: InputFile,
    *,
    model: str = DEFAULT_MODEL,
    user: Optional[str] = None,
) -> List[VisionGradeResult]:
    """
    Ask the vision model which bubbles are filled on `sheet`.

    Only mark questions are sent; an exam without any returns ``[]`` without
    calling the API.
    """
    schema = _mark_question_schema(exam)
    if not schema:
        return []

    content = [
        {
            "type": "input_text",
            "text": "\n".join(
                [
                    "Detect selected options for each question in this marksheet.",
                    f"Question schema: {json.dumps(schema, ensure_ascii=False)}",
                ]
            ),
        },
        file_input_content(sheet),
    ]
    payload = call_json_model(
        client,
        instructions=DETECTION_INSTRUCTIONS,
        content=content,
        model=model,
        user=user,
    )
    results = filter_detections(parse_vision_response(payload), schema)
    logger.debug("Detected selections for %d/%d question(s)", len(results), len(schema))
    return results


def generate_exam_config(
    client: OpenAI,
    source: InputFile,
    answer_key: Optional[InputFile] = None,
    *,
    model: str = DEFAULT_MODEL,
    user: Optional[str] = None,
) -> ExamConfig:
    """Build an exam template from a source document and optional answer key."""
    content: List[Dict[str, Any]] = [
        {"type": "input_text", "text": "Build an exam config from this uploaded source file."},
        file_input_content(source),
    ]
    if answer_key is not None:
        content.append(
            {"type": "input_text", "text": "Below is the ANSWER KEY/SOURCE for the exam above:"}
        )
        content.append(file_input_content(answer_key))
    payload = call_json_model(
        client,
        instructions=GENERATION_INSTRUCTIONS,
        content=content,
        model=model,
        user=user,
    )
    return parse_exam_response(payload)


def generate_exam_config_from_text(
    client: OpenAI,
    text: str,
    *,
    model: str = DEFAULT_MODEL,
    user: Optional[str] = None,
) -> ExamConfig:
    payload = call_json_model(
        client,
        instructions=GENERATION_INSTRUCTIONS,
        content=[
            {
                "type": "input_text",
                "text": f"Build an exam config from the following source text:\n{text}",
            }
        ],
        model=model,
        user=user,
    )
    return parse_exam_response(payload)


class OpenAIDetector:
    """Detector callable bound to a client and model, usable with a grading session."""

    def __init__(self, client: OpenAI, model: str = DEFAULT_MODEL, user: Optional[str] = None) -> None:
        self.client = client
        self.model = model
        self.user = user

    def __call__(self, exam: ExamConfig, sheet: InputFile) -> List[VisionGradeResult]:
        return detect_marks(self.client, exam, sheet, model=self.model, user=self.user)
