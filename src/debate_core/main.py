"""CLI entrypoint for debate-core."""

import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any

import rich_click as click

from debate_core import __version__
from debate_core.conversation.controllers import (
    ContextCleanupCommand,
    ContextCliController,
    ContextInitCommand,
    ContextLookupCommand,
    ContextRecordCommand,
    ContextRegisterCommand,
)
from debate_core.errors import DebateCoreError
from debate_core.jobs.controllers import (
    JobCleanupCommand,
    JobListCommand,
    JobLookupCommand,
    JobsCliController,
    JobSubmitCommand,
    JobWorkerCommand,
)
from debate_core.jobs.models import JobStatus, JobType

click.rich_click.USE_MARKDOWN = True
JOBS_CONTROLLER = JobsCliController()
CONTEXT_CONTROLLER = ContextCliController()


@click.group()
@click.version_option(version=__version__, prog_name="debate-core")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Logging level for stderr output.",
)
def debate_core(log_level: str) -> None:
    """Debate job queue and conversation context CLI."""

    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@debate_core.group()
def jobs() -> None:
    """Job queue and worker commands."""


@jobs.command("submit")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--type",
    "job_type",
    type=click.Choice([kind.value for kind in JobType]),
    required=True,
    help="Job type.",
)
@click.option("--payload", "payload_json", required=True, help="Job payload as a JSON object.")
@click.option("--job-id", default=None, help="Optional caller-chosen job id.")
@click.option("--conversation-id", default=None, help="Conversation the job belongs to.")
@click.option("--user-id", default=None, help="User the job was submitted for.")
@click.option(
    "--max-attempts",
    type=click.IntRange(min=1),
    default=None,
    help="Attempt budget override; defaults to DEBATE_CORE_MAX_ATTEMPTS.",
)
def jobs_submit(  # noqa: PLR0913
    db_path: Path | None,
    job_type: str,
    payload_json: str,
    job_id: str | None,
    conversation_id: str | None,
    user_id: str | None,
    max_attempts: int | None,
) -> None:
    """Validate and enqueue a job."""

    _emit_lines(
        _run(
            JOBS_CONTROLLER.submit,
            JobSubmitCommand(
                db_path=db_path,
                job_type=job_type,
                payload_json=payload_json,
                job_id=job_id,
                conversation_id=conversation_id,
                user_id=user_id,
                max_attempts=max_attempts,
            ),
        ),
    )


@jobs.command("status")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.argument("job_id")
def jobs_status(db_path: Path | None, job_id: str) -> None:
    """Print the status response of one job as JSON."""

    _emit_lines(_run(JOBS_CONTROLLER.status, JobLookupCommand(db_path=db_path, job_id=job_id)))


@jobs.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--conversation-id", default=None, help="Only jobs of this conversation.")
@click.option(
    "--status",
    type=click.Choice([status.value for status in JobStatus]),
    default=None,
    help="Optional status filter.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=1000),
    default=50,
    show_default=True,
    help="Maximum jobs to display.",
)
def jobs_list(
    db_path: Path | None,
    conversation_id: str | None,
    status: str | None,
    limit: int,
) -> None:
    """List jobs, newest first."""

    _emit_lines(
        _run(
            JOBS_CONTROLLER.list_jobs,
            JobListCommand(
                db_path=db_path,
                conversation_id=conversation_id,
                status=status,
                limit=limit,
            ),
        ),
    )


@jobs.command("inspect")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.argument("job_id")
def jobs_inspect(db_path: Path | None, job_id: str) -> None:
    """Show job details and its event history."""

    _emit_lines(_run(JOBS_CONTROLLER.inspect, JobLookupCommand(db_path=db_path, job_id=job_id)))


@jobs.command("cancel")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.argument("job_id")
def jobs_cancel(db_path: Path | None, job_id: str) -> None:
    """Cancel a pending or processing job."""

    _emit_lines(_run(JOBS_CONTROLLER.cancel, JobLookupCommand(db_path=db_path, job_id=job_id)))


@jobs.command("worker")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--once/--loop",
    default=True,
    show_default=True,
    help="Run one claim-execute cycle or loop until idle.",
)
@click.option(
    "--max-jobs",
    type=click.IntRange(min=1),
    default=None,
    help="Optional cap for processed jobs in loop mode.",
)
@click.option(
    "--pool",
    is_flag=True,
    default=False,
    help="Run a worker pool until SIGINT/SIGTERM instead of a single worker.",
)
@click.option(
    "--concurrency",
    type=click.IntRange(min=1),
    default=None,
    help="Pool size; defaults to DEBATE_CORE_WORKER_CONCURRENCY.",
)
def jobs_worker(
    db_path: Path | None,
    once: bool,
    max_jobs: int | None,
    pool: bool,
    concurrency: int | None,
) -> None:
    """Run job workers."""

    _emit_lines(
        _run(
            JOBS_CONTROLLER.run_worker,
            JobWorkerCommand(
                db_path=db_path,
                once=once,
                max_jobs=max_jobs,
                pool=pool,
                concurrency=concurrency,
            ),
        ),
    )


@jobs.command("cleanup")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--older-than-hours",
    type=click.FloatRange(min=0),
    default=None,
    help="Delete terminal jobs finished before this age; defaults to 24h.",
)
@click.option(
    "--retention",
    "use_retention",
    is_flag=True,
    default=False,
    help="Apply per-status retention windows instead of a single age.",
)
def jobs_cleanup(
    db_path: Path | None,
    older_than_hours: float | None,
    use_retention: bool,
) -> None:
    """Delete old completed, failed and cancelled jobs."""

    _emit_lines(
        _run(
            JOBS_CONTROLLER.cleanup,
            JobCleanupCommand(
                db_path=db_path,
                older_than_hours=older_than_hours,
                use_retention=use_retention,
            ),
        ),
    )


@debate_core.group()
def context() -> None:
    """Conversation context commands."""


@context.command("init")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--participant",
    "participants",
    multiple=True,
    help="Participant id in speaking order. Can be repeated.",
)
@click.option("--user-id", default=None, help="Owner of the conversation.")
@click.argument("conversation_id")
@click.argument("topic")
def context_init(
    db_path: Path | None,
    participants: tuple[str, ...],
    user_id: str | None,
    conversation_id: str,
    topic: str,
) -> None:
    """Create the context of a conversation."""

    _emit_lines(
        _run(
            CONTEXT_CONTROLLER.init,
            ContextInitCommand(
                db_path=db_path,
                conversation_id=conversation_id,
                topic=topic,
                participants=participants,
                user_id=user_id,
            ),
        ),
    )


@context.command("record")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--role",
    type=click.Choice(["user", "assistant", "system"]),
    default="assistant",
    show_default=True,
    help="Message role.",
)
@click.option("--speaker-id", required=True, help="Participant or user id of the speaker.")
@click.option("--speaker-name", default=None, help="Display name; keys the participant context.")
@click.option("--message-id", default=None, help="Message id; generated when omitted.")
@click.argument("conversation_id")
@click.argument("content")
def context_record(  # noqa: PLR0913
    db_path: Path | None,
    role: str,
    speaker_id: str,
    speaker_name: str | None,
    message_id: str | None,
    conversation_id: str,
    content: str,
) -> None:
    """Fold one message into the conversation context."""

    _emit_lines(
        _run(
            CONTEXT_CONTROLLER.record,
            ContextRecordCommand(
                db_path=db_path,
                conversation_id=conversation_id,
                role=role,
                content=content,
                speaker_id=speaker_id,
                message_id=message_id,
                speaker_name=speaker_name,
            ),
        ),
    )


@context.command("register")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--name", default=None, help="Participant display name.")
@click.argument("conversation_id")
@click.argument("participant_id")
def context_register(
    db_path: Path | None,
    name: str | None,
    conversation_id: str,
    participant_id: str,
) -> None:
    """Add a participant to the speaking rotation."""

    _emit_lines(
        _run(
            CONTEXT_CONTROLLER.register,
            ContextRegisterCommand(
                db_path=db_path,
                conversation_id=conversation_id,
                participant_id=participant_id,
                name=name,
            ),
        ),
    )


@context.command("summary")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.argument("conversation_id")
def context_summary(db_path: Path | None, conversation_id: str) -> None:
    """Print the prompt-ready summary of a conversation."""

    _emit_lines(
        _run(
            CONTEXT_CONTROLLER.summary,
            ContextLookupCommand(db_path=db_path, conversation_id=conversation_id),
        ),
    )


@context.command("next-speaker")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.argument("conversation_id")
def context_next_speaker(db_path: Path | None, conversation_id: str) -> None:
    """Print who should speak next."""

    _emit_lines(
        _run(
            CONTEXT_CONTROLLER.next_speaker,
            ContextLookupCommand(db_path=db_path, conversation_id=conversation_id),
        ),
    )


@context.command("show")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.argument("conversation_id")
def context_show(db_path: Path | None, conversation_id: str) -> None:
    """Dump the stored context as JSON."""

    _emit_lines(
        _run(
            CONTEXT_CONTROLLER.show,
            ContextLookupCommand(db_path=db_path, conversation_id=conversation_id),
        ),
    )


@context.command("cleanup")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def context_cleanup(db_path: Path | None) -> None:
    """Delete expired durable cache entries."""

    _emit_lines(_run(CONTEXT_CONTROLLER.cleanup, ContextCleanupCommand(db_path=db_path)))


def _run(handler: Callable[[Any], list[str]], command: object) -> list[str]:
    try:
        return handler(command)
    except (DebateCoreError, ValueError) as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    debate_core()
