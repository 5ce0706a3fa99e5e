"""
Plain data records shared across the grading core.

Records serialise to the camelCase shape used by the persisted JSON blobs and
by the AI collaborators (``optionsCount``, ``correctOptions`` ...).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

QUESTION_TYPES: Tuple[str, ...] = ("mark", "text")
OPTION_STYLES: Tuple[str, ...] = ("number", "alphabet", "kana", "iroha")
TEXT_BOX_HEIGHTS: Tuple[str, ...] = ("small", "medium", "large")

DEFAULT_OPTIONS_COUNT = 4
DEFAULT_OPTION_STYLE = "alphabet"
DEFAULT_BOX_HEIGHT = "medium"
DEFAULT_EXAM_TITLE = "Untitled Exam"


@dataclass
class Question:
    """
    One scorable (``mark``) or free-response (``text``) item.

    Mark-only fields are ``options_count``, ``option_style`` and
    ``correct_options``; ``box_height`` only applies to text questions.
    """

    id: str
    label: str
    points: Any = 0
    type: str = "mark"
    options_count: Optional[int] = None
    option_style: Optional[str] = None
    correct_options: Optional[List[int]] = None
    box_height: Optional[str] = None

    @property
    def is_mark(self) -> bool:
        return self.type == "mark"

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "label": self.label,
            "points": self.points,
            "type": self.type,
        }
        if self.type == "mark":
            data["optionsCount"] = self.options_count
            data["optionStyle"] = self.option_style
            data["correctOptions"] = (
                list(self.correct_options) if self.correct_options is not None else None
            )
        else:
            data["boxHeight"] = self.box_height
        return data


@dataclass
class ExamConfig:
    """A named, ordered sequence of questions."""

    title: str
    questions: List[Question] = field(default_factory=list)

    def mark_questions(self) -> List[Question]:
        return [question for question in self.questions if question.is_mark]

    def question(self, question_id: str) -> Optional[Question]:
        for question in self.questions:
            if question.id == question_id:
                return question
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "questions": [question.to_dict() for question in self.questions],
        }


@dataclass(frozen=True)
class SavedExam:
    """Persisted exam template entry."""

    id: str
    created_at: str
    updated_at: str
    config: ExamConfig

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "config": self.config.to_dict(),
        }


@dataclass(frozen=True)
class VisionGradeResult:
    """Selections detected by the AI collaborator for one question."""

    id: str
    filled: Optional[Tuple[int, ...]]


@dataclass(frozen=True)
class GradeRow:
    """
    One question's detection, correction and derived score in a grading session.

    ``filled`` is ``None`` when nothing was ever detected; an empty tuple means a
    blank answer. Rows are immutable: the session replaces a row whenever its
    selection changes so that ``correct`` and ``points`` never go stale.
    """

    id: str
    label: str
    filled: Optional[Tuple[int, ...]]
    correct: bool
    points: Any
    options_count: int
    option_style: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "filled": list(self.filled) if self.filled is not None else None,
            "correct": self.correct,
            "points": self.points,
            "optionsCount": self.options_count,
            "optionStyle": self.option_style,
        }


@dataclass(frozen=True)
class QuestionResultRecord:
    """Per-question breakdown stored with a grading record."""

    question_id: str
    label: str
    points: Any
    max_points: Any
    correct: bool
    filled: Optional[List[int]]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "questionId": self.question_id,
            "label": self.label,
            "points": self.points,
            "maxPoints": self.max_points,
            "correct": self.correct,
            "filled": list(self.filled) if self.filled is not None else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QuestionResultRecord":
        filled = data.get("filled")
        return cls(
            question_id=str(data["questionId"]),
            label=str(data.get("label") or ""),
            points=data.get("points", 0),
            max_points=data.get("maxPoints", 0),
            correct=bool(data.get("correct", False)),
            filled=[int(value) for value in filled] if isinstance(filled, list) else None,
        )


@dataclass(frozen=True)
class GradingRecord:
    """One completed grading session kept in the append-only history."""

    id: str
    exam_id: str
    exam_title: str
    score: Any
    total_points: Any
    percentage: float
    graded_at: str
    question_results: Tuple[QuestionResultRecord, ...] = ()
    student_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "examId": self.exam_id,
            "examTitle": self.exam_title,
            "score": self.score,
            "totalPoints": self.total_points,
            "percentage": self.percentage,
            "gradedAt": self.graded_at,
            "questionResults": [entry.to_dict() for entry in self.question_results],
        }
        if self.student_name is not None:
            data["studentName"] = self.student_name
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GradingRecord":
        student_name = data.get("studentName")
        return cls(
            id=str(data["id"]),
            exam_id=str(data.get("examId") or ""),
            exam_title=str(data.get("examTitle") or ""),
            score=data.get("score", 0),
            total_points=data.get("totalPoints", 0),
            percentage=float(data.get("percentage") or 0.0),
            graded_at=str(data.get("gradedAt") or ""),
            question_results=tuple(
                QuestionResultRecord.from_dict(entry)
                for entry in data.get("questionResults") or []
            ),
            student_name=str(student_name) if student_name is not None else None,
        )
