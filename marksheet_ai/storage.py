"""
Local persistence for saved exam templates and grading history.

Each collection is one JSON list written in full on every change (last writer
wins). Missing or malformed files load as empty collections.
"""

from __future__ import annotations

import copy
import logging
import re
import secrets
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

from .analytics import QuestionOutcome, StudentResult
from .grading import GradingSession
from .models import DEFAULT_EXAM_TITLE, ExamConfig, GradeRow, GradingRecord, SavedExam
from .normalize import normalize_exam
from .utils import read_json, write_json

logger = logging.getLogger(__name__)

EXAMS_FILENAME = "exams.json"
HISTORY_FILENAME = "grading-history.json"

Clock = Callable[[], datetime]


class StorageError(RuntimeError):
    """Raised when a collection cannot be written."""


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(moment: datetime) -> str:
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def new_record_id() -> str:
    return f"{int(time.time() * 1000)}_{secrets.token_hex(3)}"


class JsonListStore:
    """A list of JSON objects kept in a single file."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def load(self) -> List[Dict[str, Any]]:
        if not self.path.exists():
            return []
        try:
            data = read_json(self.path)
        except (OSError, ValueError) as exc:
            logger.debug("Ignoring unreadable store %s: %s", self.path, exc)
            return []
        if not isinstance(data, list):
            logger.debug("Ignoring store %s: expected a list, got %s", self.path, type(data).__name__)
            return []
        return [item for item in data if isinstance(item, dict)]

    def save(self, items: List[Dict[str, Any]]) -> None:
        try:
            write_json(self.path, items)
        except OSError as exc:
            raise StorageError(f"Could not write {self.path}: {exc}") from exc


def _saved_exam_from_dict(data: Dict[str, Any]) -> SavedExam:
    return SavedExam(
        id=str(data["id"]),
        created_at=str(data.get("createdAt") or ""),
        updated_at=str(data.get("updatedAt") or ""),
        config=normalize_exam(data.get("config")),
    )


class ExamLibrary:
    """Saved exam templates, most recently updated first."""

    def __init__(self, store: JsonListStore, *, clock: Clock = _utc_now) -> None:
        self.store = store
        self.clock = clock
        self._exams: List[SavedExam] = []
        for item in store.load():
            try:
                self._exams.append(_saved_exam_from_dict(item))
            except KeyError:
                logger.debug("Skipping saved exam without an id: %r", item)

    @classmethod
    def in_directory(cls, data_dir: Path, **kwargs: Any) -> "ExamLibrary":
        return cls(JsonListStore(data_dir / EXAMS_FILENAME), **kwargs)

    @property
    def exams(self) -> List[SavedExam]:
        return list(self._exams)

    def get(self, exam_id: str) -> Optional[SavedExam]:
        return next((exam for exam in self._exams if exam.id == exam_id), None)

    def _persist(self, exams: List[SavedExam]) -> None:
        self.store.save([exam.to_dict() for exam in exams])
        self._exams = exams

    def save(
        self,
        config: ExamConfig,
        exam_id: Optional[str] = None,
        title_override: Optional[str] = None,
    ) -> SavedExam:
        """
        Store `config`, updating `exam_id` in place when it already exists.

        The saved entry always moves to the front of the list.
        """
        now = _iso(self.clock())
        title = (title_override if title_override is not None else config.title).strip()
        snapshot = ExamConfig(title=title or DEFAULT_EXAM_TITLE, questions=copy.deepcopy(config.questions))

        existing = self.get(exam_id) if exam_id else None
        if existing is not None:
            entry = SavedExam(id=existing.id, created_at=existing.created_at, updated_at=now, config=snapshot)
        else:
            entry = SavedExam(id=new_record_id(), created_at=now, updated_at=now, config=snapshot)
        others = [exam for exam in self._exams if exam.id != entry.id]
        self._persist([entry, *others])
        return entry

    def delete(self, exam_id: str) -> bool:
        remaining = [exam for exam in self._exams if exam.id != exam_id]
        if len(remaining) == len(self._exams):
            return False
        self._persist(remaining)
        return True

    def duplicate(self, exam_id: str) -> Optional[SavedExam]:
        found = self.get(exam_id)
        if found is None:
            return None
        now = _iso(self.clock())
        clone = SavedExam(
            id=new_record_id(),
            created_at=now,
            updated_at=now,
            config=ExamConfig(
                title=f"{found.config.title} (Copy)",
                questions=copy.deepcopy(found.config.questions),
            ),
        )
        self._persist([clone, *self._exams])
        return clone


def exam_identifier(title: str) -> str:
    return "exam_" + re.sub(r"[^a-z0-9]", "_", title, flags=re.IGNORECASE)


class GradingHistory:
    """Append-only record of completed grading sessions, newest first."""

    def __init__(self, store: JsonListStore, *, clock: Clock = _utc_now) -> None:
        self.store = store
        self.clock = clock
        self._records: List[GradingRecord] = []
        for item in store.load():
            try:
                self._records.append(GradingRecord.from_dict(item))
            except (KeyError, TypeError, ValueError):
                logger.debug("Skipping malformed grading record: %r", item)

    @classmethod
    def in_directory(cls, data_dir: Path, **kwargs: Any) -> "GradingHistory":
        return cls(JsonListStore(data_dir / HISTORY_FILENAME), **kwargs)

    @property
    def records(self) -> List[GradingRecord]:
        return list(self._records)

    def _persist(self, records: List[GradingRecord]) -> None:
        self.store.save([record.to_dict() for record in records])
        self._records = records

    def add(
        self,
        config: ExamConfig,
        rows: Sequence[GradeRow],
        student_name: Optional[str] = None,
    ) -> GradingRecord:
        """Record the graded `rows` of one answer sheet for `config`."""
        session = GradingSession(config, rows)
        totals = session.totals
        record = GradingRecord(
            id=new_record_id(),
            exam_id=exam_identifier(config.title),
            exam_title=config.title,
            score=totals.earned,
            total_points=totals.max_points,
            percentage=(totals.earned * 100.0 / totals.max_points) if totals.max_points > 0 else 0.0,
            graded_at=_iso(self.clock()),
            question_results=tuple(session.question_results()),
            student_name=student_name or None,
        )
        self._persist([record, *self._records])
        return record

    def delete(self, record_id: str) -> bool:
        remaining = [record for record in self._records if record.id != record_id]
        if len(remaining) == len(self._records):
            return False
        self._persist(remaining)
        return True

    def clear(self) -> None:
        self._persist([])

    def for_exam(self, exam_title: str) -> List[GradingRecord]:
        return [record for record in self._records if record.exam_title == exam_title]

    def student_results(self, exam_title: str) -> List[StudentResult]:
        """Records of one exam as inputs for :func:`~marksheet_ai.analytics.compute_analytics`."""
        return [
            StudentResult(
                score=record.score,
                total_points=record.total_points,
                question_results=tuple(
                    QuestionOutcome(entry.question_id, entry.correct)
                    for entry in record.question_results
                ),
            )
            for record in self.for_exam(exam_title)
        ]
