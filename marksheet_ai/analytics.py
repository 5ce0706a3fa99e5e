"""
Aggregate statistics over many graded answer sheets of the same exam.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Iterable, List, Sequence, Tuple

from .grading import compute_totals
from .models import ExamConfig, GradeRow

# (label, lowest percentage, highest percentage), inclusive bounds
SCORE_BUCKETS: Tuple[Tuple[str, int, int], ...] = (
    ("90-100%", 90, 100),
    ("80-89%", 80, 89),
    ("70-79%", 70, 79),
    ("60-69%", 60, 69),
    ("50-59%", 50, 59),
    ("Below 50%", 0, 49),
)

DIFFICULTY_TIERS: Tuple[Tuple[float, str], ...] = (
    (80.0, "Easy"),
    (60.0, "Medium"),
    (40.0, "Hard"),
)
HARDEST_TIER = "Very Hard"

GRADE_LETTERS: Tuple[Tuple[float, str], ...] = (
    (90.0, "A"),
    (80.0, "B"),
    (70.0, "C"),
    (60.0, "D"),
)


@dataclass(frozen=True)
class QuestionOutcome:
    question_id: str
    correct: bool


@dataclass(frozen=True)
class StudentResult:
    """Score of one student, independent of every other student."""

    score: float
    total_points: float
    question_results: Tuple[QuestionOutcome, ...] = ()

    @property
    def percentage(self) -> float:
        if not self.total_points:
            return 0.0
        return self.score * 100.0 / self.total_points

    @classmethod
    def from_rows(cls, exam: ExamConfig, rows: Iterable[GradeRow]) -> "StudentResult":
        """One grading session's rows as a result; the total comes from `exam`."""
        rows = list(rows)
        totals = compute_totals(exam, rows)
        return cls(
            score=totals.earned,
            total_points=totals.max_points,
            question_results=tuple(QuestionOutcome(row.id, row.correct) for row in rows),
        )


@dataclass(frozen=True)
class ScoreBucket:
    range: str
    count: int
    percentage: float


@dataclass(frozen=True)
class QuestionAnalytics:
    question_id: str
    label: str
    total_attempts: int
    correct_count: int
    incorrect_count: int
    accuracy: float
    difficulty: str


@dataclass(frozen=True)
class ExamAnalytics:
    exam_title: str
    total_students: int
    average_score: float
    highest_score: float
    lowest_score: float
    median_score: float
    standard_deviation: float
    score_distribution: Tuple[ScoreBucket, ...] = field(default_factory=tuple)
    question_analytics: Tuple[QuestionAnalytics, ...] = field(default_factory=tuple)


def difficulty_for(accuracy: float) -> str:
    for threshold, tier in DIFFICULTY_TIERS:
        if accuracy >= threshold:
            return tier
    return HARDEST_TIER


def grade_letter(percentage: float) -> str:
    for threshold, letter in GRADE_LETTERS:
        if percentage >= threshold:
            return letter
    return "F"


def _median(values: Sequence[float]) -> float:
    ordered = sorted(values)
    middle = len(ordered) // 2
    if len(ordered) % 2:
        return ordered[middle]
    return (ordered[middle - 1] + ordered[middle]) / 2


def _bucket_index(percentage: float) -> int:
    # bounds are whole percents: 89.5 belongs to 80-89
    whole = min(100, max(0, math.floor(percentage)))
    for position, (_, low, high) in enumerate(SCORE_BUCKETS):
        if low <= whole <= high:
            return position
    return len(SCORE_BUCKETS) - 1


def _distribution(results: Sequence[StudentResult]) -> Tuple[ScoreBucket, ...]:
    counts = [0] * len(SCORE_BUCKETS)
    for result in results:
        counts[_bucket_index(result.percentage)] += 1
    total = len(results)
    return tuple(
        ScoreBucket(
            range=label,
            count=count,
            percentage=(count / total * 100.0) if total else 0.0,
        )
        for (label, _, _), count in zip(SCORE_BUCKETS, counts)
    )


def _question_analytics(config: ExamConfig, results: Sequence[StudentResult]) -> Tuple[QuestionAnalytics, ...]:
    entries: List[QuestionAnalytics] = []
    for question in config.questions:
        attempts = 0
        correct = 0
        for result in results:
            outcome = next(
                (item for item in result.question_results if item.question_id == question.id),
                None,
            )
            if outcome is None:
                continue
            attempts += 1
            if outcome.correct:
                correct += 1
        accuracy = (correct / attempts * 100.0) if attempts else 0.0
        entries.append(
            QuestionAnalytics(
                question_id=question.id,
                label=question.label,
                total_attempts=attempts,
                correct_count=correct,
                incorrect_count=attempts - correct,
                accuracy=accuracy,
                difficulty=difficulty_for(accuracy),
            )
        )
    return tuple(entries)


def empty_analytics(config: ExamConfig) -> ExamAnalytics:
    """Zero-filled analytics used when no student has been graded yet."""
    return ExamAnalytics(
        exam_title=config.title,
        total_students=0,
        average_score=0.0,
        highest_score=0.0,
        lowest_score=0.0,
        median_score=0.0,
        standard_deviation=0.0,
        score_distribution=_distribution(()),
        question_analytics=tuple(
            QuestionAnalytics(
                question_id=question.id,
                label=question.label,
                total_attempts=0,
                correct_count=0,
                incorrect_count=0,
                accuracy=0.0,
                difficulty="Medium",
            )
            for question in config.questions
        ),
    )


def compute_analytics(config: ExamConfig, results: Sequence[StudentResult]) -> ExamAnalytics:
    """
    Compute score statistics, the percentage histogram and per-question
    difficulty for `results`.

    The standard deviation is the population one (divided by N).
    """
    results = list(results)
    if not results:
        return empty_analytics(config)

    scores = [float(result.score) for result in results]
    count = len(scores)
    mean = sum(scores) / count
    variance = sum((score - mean) ** 2 for score in scores) / count
    return ExamAnalytics(
        exam_title=config.title,
        total_students=count,
        average_score=mean,
        highest_score=max(scores),
        lowest_score=min(scores),
        median_score=_median(scores),
        standard_deviation=math.sqrt(variance),
        score_distribution=_distribution(results),
        question_analytics=_question_analytics(config, results),
    )
