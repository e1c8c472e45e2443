"""Durable cache tier backed by the shared SQLite store."""

from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlmodel import Session, col, delete, select

from debate_core.storage.alembic_runner import upgrade_head
from debate_core.storage.common import (
    build_sqlite_engine,
    dump_json,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from debate_core.storage.sqlmodel_models import CacheEntryRecord


@dataclass(frozen=True, slots=True)
class CacheEntry:
    """One cached value with absolute expiry."""

    key: str
    value: Any
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at


class CacheBackend(Protocol):
    """Durable shared tier consumed by ``LayeredCache``."""

    def read(self, key: str) -> CacheEntry | None:
        """Return the unexpired entry for key, or None."""

    def write(self, entry: CacheEntry) -> None:
        """Insert or replace an entry."""

    def delete(self, key: str) -> None:
        """Remove an entry if present."""

    def list_keys(self, prefix: str = "") -> list[str]:
        """Keys of unexpired entries starting with prefix."""


class SqlCacheBackend:
    """Cache entries persisted in the ``cache_entries`` table."""

    def __init__(
        self,
        db_path: Path,
        *,
        sqlite_busy_timeout_ms: int = 5_000,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.db_path = db_path
        self._clock = clock
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=sqlite_busy_timeout_ms)

    def close(self) -> None:
        self.engine.dispose()

    def init_schema(self) -> None:
        upgrade_head(self.db_path)

    def read(self, key: str) -> CacheEntry | None:
        with Session(self.engine) as session:
            row = session.get(CacheEntryRecord, key)
            if row is None:
                return None
            expires_at = to_utc_aware_datetime(row.expires_at)
            if self._clock() > expires_at:
                return None
            return CacheEntry(
                key=row.cache_key,
                value=json.loads(row.value_json),
                expires_at=expires_at,
            )

    def write(self, entry: CacheEntry) -> None:
        statement = sqlite_insert(CacheEntryRecord).values(
            cache_key=entry.key,
            value_json=dump_json(entry.value),
            expires_at=to_db_datetime(entry.expires_at),
            updated_at=to_db_datetime(self._clock()),
        )
        statement = statement.on_conflict_do_update(
            index_elements=["cache_key"],
            set_={
                "value_json": statement.excluded.value_json,
                "expires_at": statement.excluded.expires_at,
                "updated_at": statement.excluded.updated_at,
            },
        )
        with Session(self.engine) as session:
            session.exec(statement)  # type: ignore[call-overload]
            session.commit()

    def delete(self, key: str) -> None:
        with Session(self.engine) as session:
            session.exec(delete(CacheEntryRecord).where(col(CacheEntryRecord.cache_key) == key))
            session.commit()

    def list_keys(self, prefix: str = "") -> list[str]:
        with Session(self.engine) as session:
            statement = select(CacheEntryRecord.cache_key).where(
                col(CacheEntryRecord.expires_at) >= to_db_datetime(self._clock()),
            )
            if prefix:
                statement = statement.where(col(CacheEntryRecord.cache_key).startswith(prefix))
            rows = session.exec(statement.order_by(col(CacheEntryRecord.cache_key).asc())).all()
        return list(rows)

    def purge_expired(self) -> int:
        """Delete expired rows; returns deleted count."""

        with Session(self.engine) as session:
            result = session.exec(
                delete(CacheEntryRecord).where(
                    col(CacheEntryRecord.expires_at) < to_db_datetime(self._clock()),
                ),
            )
            session.commit()
            return int(result.rowcount or 0)
