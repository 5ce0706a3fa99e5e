"""
Typer command-line interface exposing marksheet grading, the exam library,
the grading history and analytics.
"""

from __future__ import annotations

import json
from contextlib import contextmanager
from dataclasses import replace
from pathlib import Path
from typing import Annotated, Any, Dict, Iterator, List, Optional, Tuple

import typer
import yaml
from rich import box
from rich.console import Console
from rich.table import Table
from rich.traceback import install as install_rich_traceback

from .analytics import ExamAnalytics, compute_analytics, grade_letter
from .export import (
    default_csv_name,
    exam_config_csv,
    grading_results_csv,
    write_analytics_markdown,
    write_csv,
    write_history_workbook,
)
from .grading import GradingBusyError, GradingSession
from .labels import format_selection, option_labels
from .llm import AIServiceError, InputFile, InputFileError, build_openai_client
from .logs import configure_logging
from .models import OPTION_STYLES, ExamConfig, Question
from .normalize import normalize_exam, sample_exam
from .settings import ConfigurationError, Settings, load_settings, update_settings
from .storage import ExamLibrary, GradingHistory, StorageError
from .utils import read_structured, write_json
from .validation import (
    ValidationError,
    format_validation_errors,
    sanitize_input,
    validate_api_key,
    validate_exam_config,
    validate_raw_answer_keys,
)
from .vision import OpenAIDetector, generate_exam_config, generate_exam_config_from_text

console = Console()

app = typer.Typer(
    help="Grade scanned multiple-choice answer sheets with a vision model.",
    no_args_is_help=True,
)
exams_app = typer.Typer(help="Manage the saved exam library.", no_args_is_help=True)
history_app = typer.Typer(help="Inspect and export the grading history.", no_args_is_help=True)
config_app = typer.Typer(help="Show or change persisted preferences.", no_args_is_help=True)
app.add_typer(exams_app, name="exams")
app.add_typer(history_app, name="history")
app.add_typer(config_app, name="config")

install_rich_traceback(show_locals=False)

TEXT_SOURCE_SUFFIXES = {".txt", ".md"}

OPERATION_ERRORS = (
    ConfigurationError,
    AIServiceError,
    InputFileError,
    StorageError,
    GradingBusyError,
)


@contextmanager
def _reported_errors() -> Iterator[None]:
    """Turn operation failures into a red message and exit code 1."""
    try:
        yield
    except OPERATION_ERRORS as exc:
        console.print(f"[bold red]Error:[/] {exc}")
        raise typer.Exit(code=1) from exc


def _settings(ctx: typer.Context) -> Settings:
    return ctx.obj


def _library(ctx: typer.Context) -> ExamLibrary:
    return ExamLibrary.in_directory(_settings(ctx).data_dir)


def _history(ctx: typer.Context) -> GradingHistory:
    return GradingHistory.in_directory(_settings(ctx).data_dir)


def _read_exam_file(path: Path) -> Any:
    try:
        return read_structured(path)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        raise typer.BadParameter(f"Cannot read exam file {path}: {exc}") from exc


def _report_validation(errors: List[ValidationError]) -> None:
    table = Table(title="Validation errors", box=box.SIMPLE_HEAVY)
    table.add_column("Field", style="cyan", no_wrap=True)
    table.add_column("Message")
    for error in errors:
        table.add_row(error.field, error.message)
    console.print(table)
    console.print(f"[bold red]{format_validation_errors(errors).splitlines()[0]}[/]")


def _load_valid_exam(path: Path) -> ExamConfig:
    """Normalise an exam file, exiting with code 2 when it does not validate."""
    raw = _read_exam_file(path)
    config = normalize_exam(raw)
    errors = validate_exam_config(config) + validate_raw_answer_keys(raw)
    if errors:
        _report_validation(errors)
        raise typer.Exit(code=2)
    return config


def _parse_assignment(raw: str, option: str) -> Tuple[str, str]:
    question_id, sep, value = raw.partition("=")
    if not sep or not question_id.strip():
        raise typer.BadParameter(f"{option} expects ID=VALUE, got {raw!r}")
    return question_id.strip(), value.strip()


def _parse_indices(value: str, option: str) -> Tuple[int, ...]:
    if not value:
        return ()
    try:
        return tuple(int(part) for part in value.split(",") if part.strip())
    except ValueError as exc:
        raise typer.BadParameter(f"{option} expects 0-based option indices, got {value!r}") from exc


@app.callback()
def main(
    ctx: typer.Context,
    debug: Annotated[
        bool,
        typer.Option("--debug", help="Enable verbose logging (AI requests, parsing, storage)."),
    ] = False,
    data_dir: Annotated[
        Optional[Path],
        typer.Option(
            "--data-dir",
            help="Directory holding settings, the exam library and the grading history.",
            file_okay=False,
        ),
    ] = None,
) -> None:
    settings = load_settings(data_dir=data_dir)
    if debug:
        settings = replace(settings, debug=True)
    configure_logging(settings.debug)
    ctx.obj = settings


@app.command()
def labels(
    style: Annotated[str, typer.Argument(help="Option style: number, alphabet, kana or iroha.")],
    count: Annotated[int, typer.Option("-n", "--count", min=1, help="Number of labels.")] = 4,
) -> None:
    """
    Print the labels used for answer options in the given style.
    """
    if style not in OPTION_STYLES:
        raise typer.BadParameter(f"Unknown option style {style!r} (expected one of {', '.join(OPTION_STYLES)}).")
    typer.echo(" ".join(option_labels(style, count)))


@app.command()
def validate(
    exam_file: Annotated[
        Path,
        typer.Argument(help="Exam template (JSON or YAML).", exists=True, readable=True, dir_okay=False),
    ],
) -> None:
    """
    Normalise an exam template and check it for errors.
    """
    config = _load_valid_exam(exam_file)
    marks = len(config.mark_questions())
    console.print(
        f"[bold green]Valid[/] : {config.title} "
        f"({len(config.questions)} question(s), {marks} auto-graded)"
    )


@app.command()
def generate(
    ctx: typer.Context,
    source: Annotated[
        Path,
        typer.Argument(help="Exam document (PDF, PNG or JPEG), or plain text (.txt, .md).", exists=True, readable=True, dir_okay=False),
    ],
    answer_key: Annotated[
        Optional[Path],
        typer.Option("--answer-key", help="Answer key document used to fill correct options.", exists=True, readable=True),
    ] = None,
    output: Annotated[
        Optional[Path],
        typer.Option("-o", "--output", help="Write the generated template to this JSON file.", dir_okay=False),
    ] = None,
    save: Annotated[
        bool,
        typer.Option("--save/--no-save", help="Add the generated template to the exam library."),
    ] = False,
) -> None:
    """
    Build an exam template from a document with the AI model.
    """
    settings = _settings(ctx)
    with _reported_errors():
        client = build_openai_client(settings)
        with console.status("Generating exam template..."):
            if source.suffix.lower() in TEXT_SOURCE_SUFFIXES:
                config = generate_exam_config_from_text(
                    client,
                    source.read_text(encoding="utf-8"),
                    model=settings.model,
                )
            else:
                config = generate_exam_config(
                    client,
                    InputFile(source),
                    InputFile(answer_key) if answer_key else None,
                    model=settings.model,
                )
        saved = _library(ctx).save(config) if save else None

    if output:
        write_json(output, config.to_dict())
        console.print(f"[bold green]Template saved[/] → {output}")
    else:
        typer.echo(json.dumps(config.to_dict(), ensure_ascii=False, indent=2))
    if saved is not None:
        console.print(f"[bold green]Added to library[/] : {saved.id}")

    errors = validate_exam_config(config)
    if errors:
        console.print(f"[bold yellow]Warning:[/] {format_validation_errors(errors)}")


def _print_rows(session: GradingSession) -> None:
    table = Table(title=session.exam.title, box=box.SIMPLE_HEAVY)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Question")
    table.add_column("Answer")
    table.add_column("Expected")
    table.add_column("Result", justify="center")
    table.add_column("Points", justify="right")
    for row in session.rows:
        question = session.exam.question(row.id)
        expected = question.correct_options if question else None
        table.add_row(
            row.id,
            row.label,
            format_selection(row.option_style, row.filled),
            format_selection(row.option_style, expected or []),
            "[green]✓[/]" if row.correct else "[red]✗[/]",
            str(row.points),
        )
    console.print(table)
    totals = session.totals
    console.print(
        f"[bold]Score[/bold] : {totals.earned} / {totals.max_points} "
        f"({totals.percentage}%, grade {grade_letter(totals.percentage)})"
    )


@app.command()
def grade(
    ctx: typer.Context,
    exam_file: Annotated[
        Path,
        typer.Argument(help="Exam template (JSON or YAML).", exists=True, readable=True, dir_okay=False),
    ],
    sheet: Annotated[
        Path,
        typer.Argument(help="Scanned answer sheet (PDF, PNG or JPEG).", exists=True, readable=True, dir_okay=False),
    ],
    student: Annotated[
        Optional[str],
        typer.Option("--student", help="Student name stored with the result."),
    ] = None,
    set_: Annotated[
        Optional[List[str]],
        typer.Option("--set", help="Replace a detected answer: ID=0,2 (empty value for a blank answer)."),
    ] = None,
    toggle: Annotated[
        Optional[List[str]],
        typer.Option("--toggle", help="Flip one option of a detected answer: ID=1."),
    ] = None,
    save: Annotated[
        bool,
        typer.Option("--save/--no-save", help="Record the result in the grading history."),
    ] = True,
) -> None:
    """
    Detect the filled bubbles on an answer sheet and score them.
    """
    settings = _settings(ctx)
    config = _load_valid_exam(exam_file)

    session = GradingSession(config)
    with _reported_errors():
        detector = OpenAIDetector(build_openai_client(settings), settings.model)
        with console.status("Reading answer sheet..."):
            session.grade(detector, InputFile(sheet))

    question_id = ""
    try:
        for raw in set_ or []:
            question_id, value = _parse_assignment(raw, "--set")
            session.set_selection(question_id, _parse_indices(value, "--set"))
        for raw in toggle or []:
            question_id, value = _parse_assignment(raw, "--toggle")
            for index in _parse_indices(value, "--toggle"):
                session.toggle_selection(question_id, index)
    except KeyError as exc:
        raise typer.BadParameter(f"Unknown question id: {question_id}") from exc

    _print_rows(session)

    if save:
        with _reported_errors():
            record = _history(ctx).add(
                config,
                session.rows,
                student_name=sanitize_input(student) if student else None,
            )
        console.print(f"[bold green]Saved to history[/] : {record.id}")


@exams_app.command("list")
def exams_list(ctx: typer.Context) -> None:
    """List saved exam templates, most recently updated first."""
    exams = _library(ctx).exams
    if not exams:
        console.print("No saved exams.")
        return
    table = Table(title="Saved exams", box=box.SIMPLE_HEAVY)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Title")
    table.add_column("Questions", justify="right")
    table.add_column("Updated")
    for exam in exams:
        table.add_row(exam.id, exam.config.title, str(len(exam.config.questions)), exam.updated_at)
    console.print(table)


@exams_app.command("sample")
def exams_sample(
    output: Annotated[
        Path,
        typer.Argument(help="Where to write the starter template (JSON).", dir_okay=False),
    ],
) -> None:
    """Write a starter exam template to edit by hand."""
    write_json(output, sample_exam().to_dict())
    console.print(f"[bold green]Template written[/] → {output}")


@exams_app.command("save")
def exams_save(
    ctx: typer.Context,
    exam_file: Annotated[
        Path,
        typer.Argument(help="Exam template (JSON or YAML).", exists=True, readable=True, dir_okay=False),
    ],
    exam_id: Annotated[
        Optional[str],
        typer.Option("--id", help="Update this saved exam instead of adding a new one."),
    ] = None,
    title: Annotated[
        Optional[str],
        typer.Option("--title", help="Save under a different title."),
    ] = None,
) -> None:
    """Add an exam template to the library or update an existing one."""
    config = _load_valid_exam(exam_file)
    with _reported_errors():
        saved = _library(ctx).save(config, exam_id=exam_id, title_override=title)
    console.print(f"[bold green]Saved[/] : {saved.config.title} ({saved.id})")


@exams_app.command("delete")
def exams_delete(
    ctx: typer.Context,
    exam_id: Annotated[str, typer.Argument(help="Saved exam id.")],
) -> None:
    """Remove a saved exam template."""
    with _reported_errors():
        deleted = _library(ctx).delete(exam_id)
    if not deleted:
        console.print(f"[bold red]Error:[/] no saved exam with id {exam_id}")
        raise typer.Exit(code=1)
    console.print(f"Deleted {exam_id}")


@exams_app.command("duplicate")
def exams_duplicate(
    ctx: typer.Context,
    exam_id: Annotated[str, typer.Argument(help="Saved exam id.")],
) -> None:
    """Copy a saved exam template under a new id."""
    with _reported_errors():
        copy = _library(ctx).duplicate(exam_id)
    if copy is None:
        console.print(f"[bold red]Error:[/] no saved exam with id {exam_id}")
        raise typer.Exit(code=1)
    console.print(f"[bold green]Duplicated[/] : {copy.config.title} ({copy.id})")


@exams_app.command("show")
def exams_show(
    ctx: typer.Context,
    exam_id: Annotated[str, typer.Argument(help="Saved exam id.")],
    csv_out: Annotated[
        Optional[Path],
        typer.Option("--csv", help="Write the template as CSV to this path.", dir_okay=False),
    ] = None,
) -> None:
    """Print a saved exam template as JSON, or export it as CSV."""
    found = _library(ctx).get(exam_id)
    if found is None:
        console.print(f"[bold red]Error:[/] no saved exam with id {exam_id}")
        raise typer.Exit(code=1)
    if csv_out:
        write_csv(csv_out, exam_config_csv(found.config))
        console.print(f"[bold green]CSV written[/] → {csv_out}")
        return
    typer.echo(json.dumps(found.config.to_dict(), ensure_ascii=False, indent=2))


@history_app.command("list")
def history_list(
    ctx: typer.Context,
    exam: Annotated[Optional[str], typer.Option("--exam", help="Only show results of this exam title.")] = None,
) -> None:
    """List graded answer sheets, newest first."""
    history = _history(ctx)
    records = history.for_exam(exam) if exam else history.records
    if not records:
        console.print("No grading results.")
        return
    table = Table(title="Grading history", box=box.SIMPLE_HEAVY)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Student")
    table.add_column("Exam")
    table.add_column("Score", justify="right")
    table.add_column("%", justify="right")
    table.add_column("Graded at")
    for record in records:
        table.add_row(
            record.id,
            record.student_name or "Unknown",
            record.exam_title,
            f"{record.score} / {record.total_points}",
            f"{record.percentage:.1f}",
            record.graded_at,
        )
    console.print(table)


@history_app.command("delete")
def history_delete(
    ctx: typer.Context,
    record_id: Annotated[str, typer.Argument(help="Grading record id.")],
) -> None:
    """Remove one grading result."""
    with _reported_errors():
        deleted = _history(ctx).delete(record_id)
    if not deleted:
        console.print(f"[bold red]Error:[/] no grading record with id {record_id}")
        raise typer.Exit(code=1)
    console.print(f"Deleted {record_id}")


@history_app.command("clear")
def history_clear(
    ctx: typer.Context,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Do not ask for confirmation.")] = False,
) -> None:
    """Remove every grading result."""
    if not yes:
        typer.confirm("Delete the whole grading history?", abort=True)
    with _reported_errors():
        _history(ctx).clear()
    console.print("Grading history cleared.")


@history_app.command("export")
def history_export(
    ctx: typer.Context,
    output: Annotated[
        Optional[Path],
        typer.Argument(help="Destination file (.csv or .xlsx).", dir_okay=False),
    ] = None,
    exam: Annotated[Optional[str], typer.Option("--exam", help="Only export results of this exam title.")] = None,
) -> None:
    """Export grading results as CSV or as an Excel scoreboard."""
    history = _history(ctx)
    records = history.for_exam(exam) if exam else history.records
    target = output or Path(default_csv_name("grading-results"))
    try:
        if target.suffix.lower() == ".xlsx":
            write_history_workbook(records, target)
        else:
            write_csv(target, grading_results_csv(records))
    except ValueError as exc:
        console.print(f"[bold red]Error:[/] {exc}")
        raise typer.Exit(code=1) from exc
    console.print(f"[bold green]Exported {len(records)} result(s)[/] → {target}")


def _analytics_config(ctx: typer.Context, title: str, history: GradingHistory) -> Optional[ExamConfig]:
    for saved in _library(ctx).exams:
        if saved.config.title == title:
            return saved.config
    records = history.for_exam(title)
    if not records:
        return None
    # No saved template: rebuild the question list from the latest record.
    questions = [
        Question(id=entry.question_id, label=entry.label, points=entry.max_points)
        for entry in records[0].question_results
    ]
    return ExamConfig(title=title, questions=questions)


def _print_analytics(analytics: ExamAnalytics) -> None:
    summary = Table(title=f"Analytics: {analytics.exam_title}", box=box.SIMPLE_HEAVY)
    summary.add_column("Indicator", style="cyan", no_wrap=True)
    summary.add_column("Value", justify="right")
    summary.add_row("Students", str(analytics.total_students))
    summary.add_row("Average", f"{analytics.average_score:.2f}")
    summary.add_row("Median", f"{analytics.median_score:.2f}")
    summary.add_row("Highest", f"{analytics.highest_score:g}")
    summary.add_row("Lowest", f"{analytics.lowest_score:g}")
    summary.add_row("Std deviation", f"{analytics.standard_deviation:.2f}")
    console.print(summary)

    distribution = Table(title="Score distribution", box=box.SIMPLE_HEAVY)
    distribution.add_column("Range", style="cyan")
    distribution.add_column("Students", justify="right")
    distribution.add_column("Share", justify="right")
    for bucket in analytics.score_distribution:
        distribution.add_row(bucket.range, str(bucket.count), f"{bucket.percentage:.1f}%")
    console.print(distribution)

    questions = Table(title="Questions", box=box.SIMPLE_HEAVY)
    questions.add_column("Question", style="cyan")
    questions.add_column("Attempts", justify="right")
    questions.add_column("Correct", justify="right")
    questions.add_column("Accuracy", justify="right")
    questions.add_column("Difficulty")
    for entry in analytics.question_analytics:
        questions.add_row(
            entry.label,
            str(entry.total_attempts),
            str(entry.correct_count),
            f"{entry.accuracy:.1f}%",
            entry.difficulty,
        )
    console.print(questions)


@app.command()
def analytics(
    ctx: typer.Context,
    title: Annotated[str, typer.Argument(help="Exam title as recorded in the grading history.")],
    markdown: Annotated[
        Optional[Path],
        typer.Option("--markdown", help="Also write a Markdown report to this path.", dir_okay=False),
    ] = None,
) -> None:
    """
    Summarise the graded answer sheets of one exam.
    """
    history = _history(ctx)
    config = _analytics_config(ctx, title, history)
    if config is None:
        console.print(f"[bold red]Error:[/] no saved exam or grading results titled {title!r}")
        raise typer.Exit(code=1)

    result = compute_analytics(config, history.student_results(title))
    _print_analytics(result)
    if markdown:
        write_analytics_markdown(result, markdown)
        console.print(f"[bold green]Report written[/] → {markdown}")


@config_app.command("show")
def config_show(ctx: typer.Context) -> None:
    """Print the effective settings (the API key is never shown)."""
    table = Table(title="Settings", box=box.SIMPLE_HEAVY)
    table.add_column("Key", style="cyan", no_wrap=True)
    table.add_column("Value")
    summary: Dict[str, object] = _settings(ctx).summary()
    api_key = _settings(ctx).api_key
    if not api_key:
        summary["api_key"] = "missing"
    elif validate_api_key(api_key):
        summary["api_key"] = "configured"
    else:
        summary["api_key"] = "configured (unexpected format)"
    for key, value in summary.items():
        table.add_row(key, str(value))
    console.print(table)


@config_app.command("set")
def config_set(
    ctx: typer.Context,
    model: Annotated[Optional[str], typer.Option("--model", help="Model used for detection and generation.")] = None,
    debug: Annotated[
        Optional[bool],
        typer.Option("--debug/--no-debug", help="Persist the debug logging preference."),
    ] = None,
) -> None:
    """Persist the model and debug preferences in the data directory."""
    changes: Dict[str, object] = {}
    if model:
        changes["model"] = model.strip()
    if debug is not None:
        changes["debug"] = debug
    if not changes:
        raise typer.BadParameter("Nothing to change: pass --model and/or --debug/--no-debug.")
    # start from the stored preferences, not the per-run --debug override
    current = load_settings(data_dir=_settings(ctx).data_dir)
    try:
        updated = update_settings(current, **changes)
    except OSError as exc:
        console.print(f"[bold red]Error:[/] could not write {_settings(ctx).settings_path}: {exc}")
        raise typer.Exit(code=1) from exc
    console.print(f"[bold green]Saved[/] → {updated.settings_path}")
