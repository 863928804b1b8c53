"""CLI entry-point: import sections, run and inspect question backfills."""

import json
import logging
from pathlib import Path

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from quizfill.backfill import (
    BackfillError,
    ChainConflictError,
    start_question_backfill,
    sweep_expired_jobs,
    worker_from_settings,
)
from quizfill.config import get_settings
from quizfill.content.store import get_content_store
from quizfill.jobs.dispatch import QueueDispatcher
from quizfill.jobs.store import get_job_store
from quizfill.schemas.api import JobStatusResponse, SectionQuestionsStatus
from quizfill.schemas.content import Question, Section

app = typer.Typer(help="Self-chaining quiz question backfill")
console = Console()


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at DEBUG level")):
    settings = get_settings()
    logging.basicConfig(
        level=logging.DEBUG if verbose else getattr(logging, settings.qf_log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command("import-section")
def import_section(
    path: str = typer.Argument(..., help="JSON file with one section or a list of sections"),
):
    """Load section records (and optional seed questions) into the content store."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            payload = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        console.print(f"[red]Error: cannot read {path}: {e}[/red]")
        raise typer.Exit(1)

    store = get_content_store()
    items = payload if isinstance(payload, list) else [payload]
    for item in items:
        seed = item.pop("questions", []) if isinstance(item, dict) else []
        try:
            section = Section.model_validate(item)
            questions = [
                Question.model_validate({**q, "course_id": section.course_id, "section_id": section.section_id})
                for q in seed
            ]
        except ValidationError as e:
            console.print(f"[red]Invalid section in {Path(path).name}: {e}[/red]")
            raise typer.Exit(1)
        store.save_section(section)
        if questions:
            store.add_questions(questions)
        console.print(f"Imported section [bold]{section.section_id}[/bold] ({len(questions)} seed questions)")


@app.command()
def backfill(
    course: str = typer.Option(..., "--course", help="Course id"),
    section: str = typer.Option(..., "--section", help="Section id"),
    target: int = typer.Option(10, "--target", help="Target question count (1-30)"),
    provider: str = typer.Option(None, help="LLM provider: openai | anthropic (default from env)"),
):
    """Start a backfill chain and run every step in this process."""
    settings = get_settings()
    dispatcher = QueueDispatcher()
    worker = worker_from_settings(settings, dispatcher, provider)
    try:
        job = start_question_backfill(
            course,
            section,
            target,
            job_store=worker.job_store,
            content_store=worker.content_store,
            dispatcher=dispatcher,
        )
    except ChainConflictError as e:
        console.print(f"[yellow]{e}[/yellow]")
        raise typer.Exit(2)
    except BackfillError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    console.print(f"Started chain [bold]{job.job_id}[/bold] (target {job.target_count}, max attempts {job.max_attempts})")
    steps = dispatcher.drain(worker.process)
    result = worker.content_store.get_section(section)
    if result is None:
        raise typer.Exit(1)
    color = "green" if result.questions_status.value == "COMPLETED" else "red"
    console.print(
        f"[{color}]{result.questions_status.value}[/{color}] after {steps} step(s): "
        f"{result.questions_count} questions"
    )
    if result.questions_error_message:
        console.print(f"[dim]{result.questions_error_message}[/dim]")


@app.command("process-job")
def process_job(
    job_id: str = typer.Argument(..., help="Job id to run"),
    provider: str = typer.Option(None, help="LLM provider: openai | anthropic (default from env)"),
    follow: bool = typer.Option(False, "--follow", help="Also run queued continuations"),
):
    """Run a single backfill step for an existing PENDING job."""
    settings = get_settings()
    dispatcher = QueueDispatcher()
    worker = worker_from_settings(settings, dispatcher, provider)
    job = worker.process(job_id)
    if job is None:
        console.print(f"[yellow]Job {job_id} was not claimed (missing, already running or finished).[/yellow]")
        raise typer.Exit(1)
    console.print_json(JobStatusResponse.from_job(job).model_dump_json())
    if follow:
        steps = dispatcher.drain(worker.process)
        console.print(f"Ran {steps} continuation step(s)")
    elif dispatcher.dispatched:
        console.print(f"Continuation queued: {', '.join(dispatcher.dispatched)}")


@app.command()
def sweep(
    drain: bool = typer.Option(False, "--drain", help="Run continuations queued by the sweep"),
    provider: str = typer.Option(None, help="LLM provider used with --drain"),
):
    """Fail expired RUNNING jobs and repair sections left GENERATING."""
    settings = get_settings()
    dispatcher = QueueDispatcher()
    report = sweep_expired_jobs(
        job_store=get_job_store(),
        content_store=get_content_store(),
        dispatcher=dispatcher,
        lease_seconds=settings.qf_job_lease_seconds,
        sample_limit=settings.qf_question_sample_limit,
    )
    console.print(
        f"Expired: {len(report.expired)}  Continued: {len(report.continued)}  "
        f"Re-dispatched: {len(report.redispatched)}  Repaired sections: {len(report.repaired_sections)}"
    )
    if drain and len(dispatcher):
        worker = worker_from_settings(settings, dispatcher, provider)
        console.print(f"Ran {dispatcher.drain(worker.process)} step(s)")


@app.command()
def status(section_id: str = typer.Argument(..., help="Section id")):
    """Show a section's question status and its active job."""
    section = get_content_store().get_section(section_id)
    if section is None:
        console.print(f"[red]Section {section_id} not found[/red]")
        raise typer.Exit(1)
    info = SectionQuestionsStatus.from_section(section)
    table = Table(title=f"Section {section_id}")
    table.add_column("Field")
    table.add_column("Value")
    for key, value in info.model_dump(exclude={"question_gen_stats"}).items():
        table.add_row(key, "" if value is None else str(value))
    console.print(table)
    if section.active_question_job_id:
        job = get_job_store().get(section.active_question_job_id)
        if job is not None:
            console.print(
                f"Active job {job.job_id}: {job.status.value}, attempt {job.attempt}/{job.max_attempts}, "
                f"streak {job.no_progress_streak}"
            )


if __name__ == "__main__":
    app()
