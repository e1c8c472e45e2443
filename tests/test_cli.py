from __future__ import annotations

import json
from pathlib import Path

import allure
import pytest
from click.testing import CliRunner

from debate_core.main import debate_core

pytestmark = [
    allure.epic("Operations"),
    allure.feature("CLI"),
]

_SUMMARY_PAYLOAD = json.dumps(
    {
        "topic": "Cities",
        "messages": [
            {"role": "assistant", "speaker": "Ada", "content": "Trains are fast. Rail is clean."},
        ],
    },
)


@pytest.fixture(autouse=True)
def _echo_backend(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DEBATE_CORE_LLM_BACKEND", "echo")
    monkeypatch.setenv("DEBATE_CORE_STALE_AFTER_SECONDS", "0")


def _invoke(runner: CliRunner, *args: str):
    result = runner.invoke(debate_core, list(args))
    assert result.exit_code == 0, result.output
    return result


def test_jobs_submit_worker_status_inspect_cleanup(tmp_path: Path) -> None:
    db_path = str(tmp_path / "cli.db")
    runner = CliRunner()

    submitted = _invoke(
        runner,
        "jobs",
        "submit",
        "--db-path",
        db_path,
        "--type",
        "generate-summary",
        "--payload",
        _SUMMARY_PAYLOAD,
        "--job-id",
        "job-cli",
        "--conversation-id",
        "conv-1",
    )
    assert "Job submitted: job_id=job-cli type=generate-summary" in submitted.output
    assert "Status: pending" in submitted.output

    worker = _invoke(runner, "jobs", "worker", "--db-path", db_path, "--once")
    assert "processed=1 succeeded=1" in worker.output

    status = json.loads(_invoke(runner, "jobs", "status", "--db-path", db_path, "job-cli").output)
    assert status["status"] == "completed"
    assert status["progress"] == 100
    assert status["result"]["keyPoints"] == ["Ada: Trains are fast.", "Rail is clean."]

    listed = _invoke(runner, "jobs", "list", "--db-path", db_path, "--conversation-id", "conv-1")
    assert "Jobs: 1" in listed.output

    inspected = _invoke(runner, "jobs", "inspect", "--db-path", db_path, "job-cli")
    assert "Status: completed" in inspected.output
    assert "Events: 3" in inspected.output

    cancelled = _invoke(runner, "jobs", "cancel", "--db-path", db_path, "job-cli")
    assert "not cancellable" in cancelled.output

    cleaned = _invoke(
        runner,
        "jobs",
        "cleanup",
        "--db-path",
        db_path,
        "--older-than-hours",
        "0",
    )
    assert "Deleted terminal jobs older than 0h: 1" in cleaned.output


def test_jobs_submit_rejects_invalid_payload(tmp_path: Path) -> None:
    runner = CliRunner()

    result = runner.invoke(
        debate_core,
        [
            "jobs",
            "submit",
            "--db-path",
            str(tmp_path / "cli.db"),
            "--type",
            "select-experts",
            "--payload",
            json.dumps({"topic": "Cities", "expertType": "robot"}),
        ],
    )

    assert result.exit_code != 0
    assert "expertType must be one of" in result.output


def test_context_commands_round_trip(tmp_path: Path) -> None:
    db_path = str(tmp_path / "ctx.db")
    runner = CliRunner()

    initialized = _invoke(
        runner,
        "context",
        "init",
        "--db-path",
        db_path,
        "--participant",
        "ada",
        "--participant",
        "bob",
        "--user-id",
        "u1",
        "conv-1",
        "Should cities ban cars?",
    )
    assert "Participants: ada, bob" in initialized.output

    recorded = _invoke(
        runner,
        "context",
        "record",
        "--db-path",
        db_path,
        "--role",
        "user",
        "--speaker-id",
        "u1",
        "--message-id",
        "m1",
        "conv-1",
        "Are trains really cheaper?",
    )
    assert "Next speaker: ada" in recorded.output

    summary = _invoke(runner, "context", "summary", "--db-path", db_path, "conv-1")
    assert "Current Debate Context:" in summary.output
    assert "- Are trains really cheaper?" in summary.output
    assert "The next speaker should be: ada" in summary.output

    next_speaker = _invoke(runner, "context", "next-speaker", "--db-path", db_path, "conv-1")
    assert "Next speaker: ada" in next_speaker.output

    shown = json.loads(_invoke(runner, "context", "show", "--db-path", db_path, "conv-1").output)
    assert shown["userId"] == "u1"
    assert shown["turnHistory"][0]["speakerId"] == "user"

    missing = _invoke(runner, "context", "summary", "--db-path", db_path, "conv-404")
    assert "The debate is just starting." in missing.output


def test_context_register_and_named_speaker(tmp_path: Path) -> None:
    db_path = str(tmp_path / "register.db")
    runner = CliRunner()
    _invoke(
        runner,
        "context",
        "init",
        "--db-path",
        db_path,
        "--participant",
        "ada",
        "conv-1",
        "Rail",
    )
    _invoke(
        runner,
        "context",
        "record",
        "--db-path",
        db_path,
        "--speaker-id",
        "ada",
        "--speaker-name",
        "Ada Lovelace",
        "conv-1",
        "Trains are fast.",
    )

    registered = _invoke(
        runner,
        "context",
        "register",
        "--db-path",
        db_path,
        "--name",
        "Bob",
        "conv-1",
        "bob",
    )

    assert "Participants: ada, bob" in registered.output
    assert "Next speaker: bob" in registered.output
    shown = json.loads(_invoke(runner, "context", "show", "--db-path", db_path, "conv-1").output)
    assert shown["participantContexts"]["Ada Lovelace"]["participantId"] == "ada"
    assert shown["participantContexts"]["Bob"]["participantId"] == "bob"


def test_context_cleanup_purges_expired_cache_entries(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    db_path = str(tmp_path / "purge.db")
    runner = CliRunner()
    monkeypatch.setenv("DEBATE_CORE_CACHE_TTL_HOURS", "0.000001")
    _invoke(runner, "context", "init", "--db-path", db_path, "conv-1", "Rail")

    first = _invoke(runner, "context", "cleanup", "--db-path", db_path)
    second = _invoke(runner, "context", "cleanup", "--db-path", db_path)

    assert "Purged expired cache entries: 1" in first.output
    assert "Purged expired cache entries: 0" in second.output
    shown = json.loads(_invoke(runner, "context", "show", "--db-path", db_path, "conv-1").output)
    assert shown["topic"] == "Rail"
