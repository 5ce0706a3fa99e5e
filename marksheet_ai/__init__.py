"""Grade scanned multiple-choice answer sheets with a vision model."""

from .grading import GradingSession, build_rows, compute_totals
from .models import ExamConfig, GradeRow, Question, VisionGradeResult
from .normalize import normalize_exam, normalize_question

__version__ = "0.1.0"

__all__ = [
    "ExamConfig",
    "GradeRow",
    "GradingSession",
    "Question",
    "VisionGradeResult",
    "build_rows",
    "compute_totals",
    "normalize_exam",
    "normalize_question",
]
