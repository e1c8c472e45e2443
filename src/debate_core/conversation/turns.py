"""Deterministic turn-taking: who speaks next."""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from debate_core.conversation.models import (
    UNCONSTRAINED_SPEAKER,
    USER_SPEAKER_ID,
    ConversationMessage,
    MessageRole,
    TurnRecord,
)
from debate_core.storage.common import from_iso, utc_now

TurnLike = TurnRecord | ConversationMessage | Mapping[str, Any]


def normalize_turns(history: Iterable[TurnLike]) -> list[TurnRecord]:
    """Normalize mixed history shapes to canonical turn records.

    Accepts turn records, conversation messages, and dicts in either the
    turn-record shape (``speakerId``) or message shape (``role`` plus
    ``speakerId``/``senderId``). User-authored messages always map to the
    user speaker id.
    """

    return [_normalize_turn(item) for item in history]


def next_speaker(
    turn_history: Sequence[TurnLike],
    participants: Sequence[str] = (),
) -> str:
    """Return the id of the participant expected to speak next.

    Empty history yields the unconstrained sentinel. Participants are ordered
    by registration, then by first appearance in the history. With one
    participant the user and participant alternate; with several, the user is
    followed by the first participant and a participant by the next one in
    round-robin order, so no participant speaks twice in a row.
    """

    if not turn_history:
        return UNCONSTRAINED_SPEAKER

    records = normalize_turns(turn_history)
    speakers = _ordered_speakers(records, participants)
    last_speaker = records[-1].speaker_id

    if not speakers:
        return UNCONSTRAINED_SPEAKER
    if len(speakers) == 1:
        return speakers[0] if last_speaker == USER_SPEAKER_ID else USER_SPEAKER_ID
    if last_speaker == USER_SPEAKER_ID:
        return speakers[0]
    if last_speaker in speakers:
        return speakers[(speakers.index(last_speaker) + 1) % len(speakers)]
    return speakers[0]


def _ordered_speakers(records: list[TurnRecord], participants: Sequence[str]) -> list[str]:
    ordered: list[str] = []
    seen: set[str] = set()
    for speaker_id in (*participants, *(record.speaker_id for record in records)):
        if speaker_id == USER_SPEAKER_ID or not speaker_id or speaker_id in seen:
            continue
        seen.add(speaker_id)
        ordered.append(speaker_id)
    return ordered


def _normalize_turn(item: TurnLike) -> TurnRecord:
    if isinstance(item, TurnRecord):
        return item
    if isinstance(item, ConversationMessage):
        speaker_id = USER_SPEAKER_ID if item.is_user else item.speaker_id
        return TurnRecord(
            speaker_id=speaker_id,
            timestamp=item.timestamp,
            message_id=item.message_id,
        )
    return _turn_from_mapping(item)


def _turn_from_mapping(data: Mapping[str, Any]) -> TurnRecord:
    role = data.get("role")
    if role == MessageRole.USER.value:
        speaker_id = USER_SPEAKER_ID
    else:
        speaker_id = str(
            data.get("speakerId") or data.get("senderId") or data.get("name") or "unknown",
        )
    raw_timestamp = data.get("timestamp")
    timestamp = from_iso(str(raw_timestamp)) if raw_timestamp else utc_now()
    message_id = str(data.get("messageId") or data.get("id") or "unknown-message")
    return TurnRecord(speaker_id=speaker_id, timestamp=timestamp, message_id=message_id)
