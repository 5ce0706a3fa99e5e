"""
Export helpers: CSV files for grading results and exam templates, an Excel
scoreboard of the grading history and a Markdown analytics report.
"""

from __future__ import annotations

import csv
import io
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, List, Optional, Sequence

from openpyxl import Workbook

from .analytics import ExamAnalytics, grade_letter
from .models import ExamConfig, GradingRecord
from .utils import ensure_directory, write_text

GRADING_HEADERS = [
    "Student",
    "Exam",
    "Score",
    "Total Points",
    "Percentage",
    "Graded At",
    "Question Details",
]

EXAM_HEADERS = [
    "Question #",
    "Label",
    "Type",
    "Points",
    "Options Count",
    "Option Style",
    "Correct Options",
    "Box Height",
]

_FORMULA_PREFIXES = ("=", "+", "-", "@")


def escape_csv_value(value: Any) -> Any:
    """
    Neutralise text a spreadsheet would evaluate as a formula by prefixing it
    with an apostrophe. Quoting is left to the CSV writer.
    """
    if value is None:
        return ""
    if isinstance(value, str) and value.startswith(_FORMULA_PREFIXES):
        return "'" + value
    return value


def _csv_text(rows: Iterable[Sequence[Any]]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    for row in rows:
        writer.writerow([escape_csv_value(value) for value in row])
    return buffer.getvalue()


def _number(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _display_time(stamp: str) -> str:
    try:
        moment = datetime.fromisoformat(stamp.replace("Z", "+00:00"))
    except ValueError:
        return stamp
    return moment.strftime("%Y-%m-%d %H:%M:%S")


def question_details(record: GradingRecord) -> str:
    return "; ".join(
        f"{entry.label}: {'✓' if entry.correct else '✗'}" for entry in record.question_results
    )


def grading_results_csv(records: Sequence[GradingRecord]) -> str:
    """Render grading records as CSV, one line per graded sheet."""
    if not records:
        raise ValueError("No results to export")
    rows: List[Sequence[Any]] = [GRADING_HEADERS]
    for record in records:
        rows.append(
            [
                record.student_name or "Unknown",
                record.exam_title,
                _number(record.score),
                _number(record.total_points),
                f"{record.percentage:.1f}%",
                _display_time(record.graded_at),
                question_details(record),
            ]
        )
    return _csv_text(rows)


def exam_config_csv(config: ExamConfig) -> str:
    """Render an exam template as CSV for sharing."""
    rows: List[Sequence[Any]] = [[f"Exam: {config.title}"], [], EXAM_HEADERS]
    for position, question in enumerate(config.questions, start=1):
        correct = question.correct_options or []
        rows.append(
            [
                position,
                question.label,
                question.type,
                _number(question.points),
                question.options_count if question.options_count is not None else "",
                question.option_style or "",
                ", ".join(str(index) for index in correct),
                question.box_height or "",
            ]
        )
    return _csv_text(rows)


def default_csv_name(prefix: str, title: Optional[str] = None, now: Optional[datetime] = None) -> str:
    stamp = (now or datetime.now()).strftime("%Y-%m-%dT%H-%M-%S")
    if title:
        return f"{prefix}-{re.sub(r'[^a-z0-9]', '-', title, flags=re.IGNORECASE)}-{stamp}.csv"
    return f"{prefix}-{stamp}.csv"


def write_csv(path: Path, text: str) -> Path:
    ensure_directory(path.parent)
    write_text(path, text)
    return path


def write_history_workbook(records: Sequence[GradingRecord], out_path: Path) -> Path:
    """
    Write the grading history as an Excel scoreboard: one row per record and
    one column per question label.
    """
    if not records:
        raise ValueError("No results to export")

    labels: List[str] = []
    for record in records:
        for entry in record.question_results:
            if entry.label not in labels:
                labels.append(entry.label)

    wb = Workbook()
    ws = wb.active
    ws.title = "Results"
    ws.append(["Student", "Exam", *labels, "Score", "Total Points", "Percentage", "Grade", "Graded At"])
    for record in records:
        by_label = {entry.label: entry.points for entry in record.question_results}
        ws.append(
            [
                record.student_name or "Unknown",
                record.exam_title,
                *[by_label.get(label) for label in labels],
                record.score,
                record.total_points,
                round(record.percentage, 1),
                grade_letter(record.percentage),
                _display_time(record.graded_at),
            ]
        )
    ensure_directory(out_path.parent)
    wb.save(out_path)
    return out_path


def analytics_markdown(analytics: ExamAnalytics) -> str:
    """Markdown summary of an exam's analytics."""
    lines = [f"# Analytics: {analytics.exam_title}", ""]
    if analytics.total_students == 0:
        lines.append("No graded answer sheets yet.")
        return "\n".join(lines) + "\n"

    lines.extend(
        [
            f"- Students graded: {analytics.total_students}",
            f"- Average score: {analytics.average_score:.2f}",
            f"- Median score: {analytics.median_score:.2f}",
            f"- Highest / lowest: {_number(analytics.highest_score)} / {_number(analytics.lowest_score)}",
            f"- Standard deviation: {analytics.standard_deviation:.2f}",
            "",
            "## Score distribution",
            "",
            "| Range | Students | Share |",
            "| --- | ---: | ---: |",
        ]
    )
    for bucket in analytics.score_distribution:
        lines.append(f"| {bucket.range} | {bucket.count} | {bucket.percentage:.1f}% |")

    lines.extend(
        [
            "",
            "## Questions",
            "",
            "| Question | Attempts | Correct | Accuracy | Difficulty |",
            "| --- | ---: | ---: | ---: | --- |",
        ]
    )
    for entry in analytics.question_analytics:
        lines.append(
            f"| {entry.label} | {entry.total_attempts} | {entry.correct_count} "
            f"| {entry.accuracy:.1f}% | {entry.difficulty} |"
        )
    return "\n".join(lines) + "\n"


def write_analytics_markdown(analytics: ExamAnalytics, out_path: Path) -> Path:
    ensure_directory(out_path.parent)
    write_text(out_path, analytics_markdown(analytics))
    return out_path
