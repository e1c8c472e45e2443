from __future__ import annotations

from datetime import UTC, datetime

import allure

from debate_core.conversation.models import (
    UNCONSTRAINED_SPEAKER,
    USER_SPEAKER_ID,
    ConversationMessage,
    MessageRole,
    TurnRecord,
)
from debate_core.conversation.turns import next_speaker, normalize_turns

pytestmark = [
    allure.epic("Conversation Context"),
    allure.feature("Turn Taking"),
]

_TS = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def _turns(*speakers: str) -> list[TurnRecord]:
    return [
        TurnRecord(speaker_id=speaker, timestamp=_TS, message_id=f"m{index}")
        for index, speaker in enumerate(speakers)
    ]


def test_empty_history_is_unconstrained() -> None:
    assert next_speaker([]) == UNCONSTRAINED_SPEAKER
    assert next_speaker([], ["alice", "bob"]) == UNCONSTRAINED_SPEAKER


def test_user_is_followed_by_first_participant() -> None:
    assert next_speaker(_turns(USER_SPEAKER_ID), ["alice", "bob"]) == "alice"


def test_participants_rotate_round_robin_from_history() -> None:
    history = _turns(USER_SPEAKER_ID, "alice", USER_SPEAKER_ID, "bob")

    assert next_speaker(history) == "alice"
    assert next_speaker(_turns(USER_SPEAKER_ID, "alice")) != "alice"


def test_round_robin_never_repeats_a_participant() -> None:
    participants = ["alice", "bob", "carol"]
    history: list[str] = [USER_SPEAKER_ID]
    for _ in range(6):
        speaker = next_speaker(_turns(*history), participants)
        assert speaker != history[-1]
        history.append(speaker)

    assert history[1:] == ["alice", "bob", "carol", "alice", "bob", "carol"]


def test_single_participant_alternates_with_user() -> None:
    assert next_speaker(_turns(USER_SPEAKER_ID), ["alice"]) == "alice"
    assert next_speaker(_turns(USER_SPEAKER_ID, "alice"), ["alice"]) == USER_SPEAKER_ID


def test_normalize_turns_accepts_messages_and_dicts() -> None:
    message = ConversationMessage(
        message_id="m1",
        conversation_id="c1",
        role=MessageRole.USER,
        content="Hi?",
        speaker_id="u-42",
        timestamp=_TS,
    )
    records = normalize_turns(
        [
            message,
            {"role": "assistant", "senderId": "alice", "id": "m2"},
            {"speakerId": "bob", "messageId": "m3", "timestamp": "2026-03-01T12:05:00"},
        ],
    )

    assert [record.speaker_id for record in records] == [USER_SPEAKER_ID, "alice", "bob"]
    assert records[1].message_id == "m2"
    assert records[2].timestamp.tzinfo is not None
