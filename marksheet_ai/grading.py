"""
Answer reconciliation and the per-sheet grading session.

A session maps the selections detected on one scanned answer sheet onto the
mark questions of an exam, scores them all-or-nothing, and lets the user
correct any row by hand. Scores are always derived from the current rows.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from .models import (
    DEFAULT_OPTION_STYLE,
    DEFAULT_OPTIONS_COUNT,
    ExamConfig,
    GradeRow,
    Question,
    QuestionResultRecord,
    VisionGradeResult,
)

logger = logging.getLogger(__name__)

Selection = Optional[Iterable[int]]
Detector = Callable[[ExamConfig, Any], Sequence[VisionGradeResult]]


class GradingBusyError(RuntimeError):
    """Raised when a detection is requested while another one is in flight."""


@dataclass(frozen=True)
class Totals:
    """Score summary of a session."""

    earned: Any
    max_points: Any
    percentage: int


def answers_match(detected: Selection, correct: Selection) -> bool:
    """
    Return True when both selections hold exactly the same option indices.

    ``None`` counts as the empty selection; order and duplicates are ignored.
    """
    return set(detected or ()) == set(correct or ())


def clamp_selection(selection: Selection, options_count: int) -> Optional[Tuple[int, ...]]:
    """
    Drop indices outside ``[0, options_count)`` and canonicalise the rest.

    ``None`` (nothing detected) is preserved; anything else becomes a sorted
    tuple of unique indices, possibly empty.
    """
    if selection is None:
        return None
    kept = set()
    for value in selection:
        if isinstance(value, bool) or not isinstance(value, int):
            continue
        if 0 <= value < options_count:
            kept.add(value)
    return tuple(sorted(kept))


def _question_points(question: Question) -> Any:
    return question.points if question.points is not None else 0


def score_row(question: Question, filled: Selection) -> GradeRow:
    """Build the row for `question` with `filled` as the current selection."""
    options_count = question.options_count or DEFAULT_OPTIONS_COUNT
    filled = clamp_selection(filled, options_count)
    correct = answers_match(filled, question.correct_options)
    return GradeRow(
        id=question.id,
        label=question.label,
        filled=filled,
        correct=correct,
        points=_question_points(question) if correct else 0,
        options_count=options_count,
        option_style=question.option_style or DEFAULT_OPTION_STYLE,
    )


def build_rows(exam: ExamConfig, detected: Iterable[VisionGradeResult]) -> List[GradeRow]:
    """
    Score every mark question of `exam` against the detected selections.

    Text questions are never auto-scored and produce no row. Detected entries
    for unknown question ids are ignored; when an id appears twice the first
    entry wins.
    """
    by_id: Dict[str, VisionGradeResult] = {}
    for result in detected:
        by_id.setdefault(result.id, result)

    rows: List[GradeRow] = []
    for question in exam.mark_questions():
        found = by_id.pop(question.id, None)
        rows.append(score_row(question, found.filled if found else None))
    if by_id:
        logger.debug("Ignoring detections for unknown question ids: %s", sorted(by_id))
    return rows


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def compute_totals(exam: ExamConfig, rows: Iterable[GradeRow]) -> Totals:
    max_points = sum(_question_points(question) for question in exam.mark_questions())
    earned = sum(row.points for row in rows)
    percentage = _round_half_up(100 * earned / max_points) if max_points > 0 else 0
    return Totals(earned=earned, max_points=max_points, percentage=percentage)


class GradingSession:
    """
    Mutable grading state for one exam and one answer sheet.

    The exam configuration is read-only for the lifetime of the session. Every
    change to a row goes through :meth:`set_selection`, which re-scores that row
    and leaves the others untouched.
    """

    def __init__(self, exam: ExamConfig, rows: Optional[Sequence[GradeRow]] = None) -> None:
        self.exam = exam
        self._rows: List[GradeRow] = list(rows or [])
        self.correcting: Optional[str] = None
        self._busy = False

    @classmethod
    def build(cls, exam: ExamConfig, detected: Iterable[VisionGradeResult]) -> "GradingSession":
        return cls(exam, build_rows(exam, detected))

    @property
    def rows(self) -> Tuple[GradeRow, ...]:
        return tuple(self._rows)

    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def totals(self) -> Totals:
        return compute_totals(self.exam, self._rows)

    def row(self, row_id: str) -> GradeRow:
        return self._rows[self._index(row_id)]

    def _index(self, row_id: str) -> int:
        for position, row in enumerate(self._rows):
            if row.id == row_id:
                return position
        raise KeyError(f"Unknown grade row: {row_id}")

    def _question(self, row_id: str) -> Question:
        question = self.exam.question(row_id)
        if question is None or not question.is_mark:
            raise KeyError(f"Unknown mark question: {row_id}")
        return question

    def apply_detection(self, detected: Iterable[VisionGradeResult]) -> Tuple[GradeRow, ...]:
        """Replace all rows with a fresh scoring of `detected`."""
        self._rows = build_rows(self.exam, detected)
        self.correcting = None
        return self.rows

    def grade(self, detector: Detector, sheet: Any) -> Tuple[GradeRow, ...]:
        """
        Run `detector` on `sheet` and apply its result.

        Only one detection may be in flight per session. When the detector
        raises, the exception propagates and the current rows are kept.
        """
        if self._busy:
            raise GradingBusyError("Grading already in progress for this answer sheet.")
        self._busy = True
        try:
            detected = list(detector(self.exam, sheet))
        finally:
            self._busy = False
        return self.apply_detection(detected)

    def set_selection(self, row_id: str, selection: Selection) -> GradeRow:
        """Replace the selection of one row (``None`` clears the detection)."""
        position = self._index(row_id)
        updated = score_row(self._question(row_id), selection)
        self._rows[position] = updated
        return updated

    def toggle_selection(self, row_id: str, option_index: int) -> GradeRow:
        """
        Flip `option_index` in the row's selection.

        Removing the last index leaves an empty (blank) selection, not ``None``.
        Indices outside the row's options are ignored.
        """
        current = self.row(row_id)
        if not 0 <= option_index < current.options_count:
            logger.debug("Ignoring toggle of option %s on %s", option_index, row_id)
            return current
        selected = set(current.filled or ())
        selected ^= {option_index}
        return self.set_selection(row_id, selected)

    def clear(self, row_id: str) -> GradeRow:
        return self.set_selection(row_id, None)

    def start_correction(self, row_id: str) -> GradeRow:
        row = self.row(row_id)
        self.correcting = row_id
        return row

    def finish_correction(self) -> None:
        self.correcting = None

    def question_results(self) -> List[QuestionResultRecord]:
        """Per-question breakdown as stored in the grading history."""
        results: List[QuestionResultRecord] = []
        for row in self._rows:
            question = self.exam.question(row.id)
            results.append(
                QuestionResultRecord(
                    question_id=row.id,
                    label=row.label,
                    points=row.points,
                    max_points=_question_points(question) if question else 0,
                    correct=row.correct,
                    filled=list(row.filled) if row.filled is not None else None,
                )
            )
        return results
