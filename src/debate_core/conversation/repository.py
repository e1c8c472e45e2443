"""Durable persistence for conversation contexts."""

from __future__ import annotations

import json
from pathlib import Path

from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlmodel import Session, col, select

from debate_core.conversation.models import ConversationContext
from debate_core.storage.alembic_runner import upgrade_head
from debate_core.storage.common import build_sqlite_engine, dump_json, to_db_datetime, utc_now
from debate_core.storage.sqlmodel_models import ConversationContextRecord


class ContextRepository:
    """Context persistence facade backed by SQLModel + SQLite.

    Each save is a single upsert statement; concurrent writers to the same
    conversation resolve as last writer wins.
    """

    def __init__(self, db_path: Path, *, sqlite_busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=sqlite_busy_timeout_ms)

    def close(self) -> None:
        self.engine.dispose()

    def init_schema(self) -> None:
        upgrade_head(self.db_path)

    def save(self, context: ConversationContext) -> None:
        now = to_db_datetime(utc_now())
        statement = sqlite_insert(ConversationContextRecord).values(
            conversation_id=context.conversation_id,
            user_id=context.user_id,
            context_json=dump_json(context.to_dict()),
            created_at=now,
            updated_at=now,
        )
        statement = statement.on_conflict_do_update(
            index_elements=["conversation_id"],
            set_={
                "user_id": statement.excluded.user_id,
                "context_json": statement.excluded.context_json,
                "updated_at": statement.excluded.updated_at,
            },
        )
        with Session(self.engine) as session:
            session.exec(statement)  # type: ignore[call-overload]
            session.commit()

    def get(self, conversation_id: str) -> ConversationContext | None:
        with Session(self.engine) as session:
            row = session.get(ConversationContextRecord, conversation_id)
            if row is None:
                return None
            return ConversationContext.from_dict(json.loads(row.context_json))

    def list_for_user(self, user_id: str) -> list[ConversationContext]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(ConversationContextRecord)
                .where(ConversationContextRecord.user_id == user_id)
                .order_by(col(ConversationContextRecord.updated_at).desc()),
            ).all()
        return [ConversationContext.from_dict(json.loads(row.context_json)) for row in rows]
