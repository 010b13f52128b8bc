"""Durable storage layer for workflow states, board cards, and the timeline."""

from __future__ import annotations

import hashlib
import json
import logging
import os
import shutil
import sqlite3
import tempfile
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, List, Mapping, Optional, Sequence

from .schema import (
    CardSource,
    CardStatus,
    Deliverable,
    PlanCard,
    Stage,
    TimelineEvent,
    WorkflowState,
    utc_now,
)

DEFAULT_DB_PATH = Path("data/journeyboard.sqlite")
LOGGER = logging.getLogger(__name__)


def _as_iso(timestamp: datetime) -> str:
    """Serialise a timestamp to a timezone-aware ISO 8601 string."""
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return timestamp.astimezone(timezone.utc).isoformat()


def _from_iso(value: str) -> datetime:
    """Parse an ISO 8601 timestamp produced by `_as_iso`."""
    return datetime.fromisoformat(value)


def _optional_iso(timestamp: Optional[datetime]) -> Optional[str]:
    if timestamp is None:
        return None
    return _as_iso(timestamp)


def _optional_from_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return _from_iso(value)


def _dump_json(data: Any, *, default: Any) -> str:
    """Convert arbitrary JSON-like payloads into a persisted string."""
    if data is None:
        serialisable = default
    else:
        if isinstance(data, set):
            serialisable = list(data)
        else:
            serialisable = data
    return json.dumps(serialisable, ensure_ascii=False, default=str)


def _load_json(value: Optional[str], *, default: Any) -> Any:
    """Decode JSON columns while falling back to the provided default."""
    if not value:
        return default
    data = json.loads(value)
    if data is None:
        return default
    return data


class MemoryStore:
    """SQLite-backed persistence for journeys and their task boards.

    Cards expose insert, update and deprecate operations only; there is no
    way to physically delete a card through this class.
    """

    @staticmethod
    def _is_writable(path: Path) -> bool:
        parent = path.parent
        try:
            parent.mkdir(parents=True, exist_ok=True)
        except OSError:
            return False
        if path.exists():
            return os.access(path, os.W_OK)
        return os.access(parent, os.W_OK)

    @staticmethod
    def _fallback_db_path(source: Path) -> Path:
        digest = hashlib.sha1(source.as_posix().encode("utf-8")).hexdigest()[:12]
        fallback_dir = Path(tempfile.gettempdir()) / "journeyboard" / "db" / digest
        fallback_dir.mkdir(parents=True, exist_ok=True)
        return fallback_dir / source.name

    @classmethod
    def _resolve_db_path(cls, requested: Path) -> Path:
        resolved = requested.resolve()
        if cls._is_writable(resolved):
            return resolved
        fallback = cls._fallback_db_path(resolved)
        if not fallback.exists():
            if resolved.exists() and os.access(resolved, os.R_OK):
                try:
                    shutil.copy2(resolved, fallback)
                except OSError:
                    fallback.touch(exist_ok=True)
            else:
                fallback.touch(exist_ok=True)
        try:
            fallback.chmod(0o600)
        except OSError:
            pass
        if not cls._is_writable(fallback):
            raise OSError(f"Unable to locate writable database path (attempted {requested})")
        return fallback

    def __init__(self, db_path: Path | str = DEFAULT_DB_PATH) -> None:
        requested_path = Path(db_path)
        self.db_path = self._resolve_db_path(requested_path)
        if self.db_path != requested_path.resolve():
            LOGGER.warning(
                "Database path %s is not writable; using fallback %s",
                requested_path,
                self.db_path,
            )
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = self._open_connection()
        self._bootstrap()

    def close(self) -> None:
        if getattr(self, "_conn", None) is not None:
            try:
                self._conn.close()
            finally:
                self._conn = None

    def __enter__(self) -> "MemoryStore":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def _open_connection(self) -> sqlite3.Connection:
        connection = sqlite3.connect(str(self.db_path))
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON")
        return connection

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "MemoryStore":
        paths = config.get("paths") or {}
        db_path = paths.get("db_path")
        if db_path:
            return cls(Path(db_path))

        data_path = paths.get("data") or "data"
        return cls(Path(data_path) / "journeyboard.sqlite")

    def _bootstrap(self) -> None:
        self._conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS workflow_states (
                session_id TEXT PRIMARY KEY,
                user_id TEXT,
                journey_id TEXT,
                stage TEXT NOT NULL,
                context TEXT NOT NULL,
                pending_validation TEXT,
                checklist TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS plan_cards (
                id TEXT PRIMARY KEY,
                session_id TEXT NOT NULL,
                plan_key TEXT NOT NULL,
                title TEXT NOT NULL,
                description TEXT NOT NULL,
                assignee TEXT NOT NULL,
                due_at TEXT,
                status TEXT NOT NULL,
                plan_hash TEXT NOT NULL,
                plan_version INTEGER NOT NULL DEFAULT 1,
                source TEXT NOT NULL,
                deprecated INTEGER NOT NULL DEFAULT 0,
                deprecated_version INTEGER,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_plan_cards_session_key
                ON plan_cards(session_id, plan_key, deprecated);

            CREATE TABLE IF NOT EXISTS deliverables (
                id TEXT PRIMARY KEY,
                session_id TEXT NOT NULL,
                journey_id TEXT NOT NULL,
                kind TEXT NOT NULL,
                title TEXT NOT NULL,
                slug TEXT NOT NULL,
                html_body TEXT NOT NULL,
                stage TEXT,
                created_at TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_deliverables_session
                ON deliverables(session_id, created_at);

            CREATE TABLE IF NOT EXISTS timeline_events (
                id TEXT PRIMARY KEY,
                session_id TEXT NOT NULL,
                kind TEXT NOT NULL,
                payload TEXT NOT NULL,
                created_at TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_timeline_session
                ON timeline_events(session_id, created_at);
            """
        )
        self._conn.commit()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        try:
            yield self._conn
            self._conn.commit()
        except Exception:
            self._conn.rollback()
            raise

    # Workflow state operations --------------------------------------------------------
    def get_state(self, session_id: str) -> Optional[WorkflowState]:
        cursor = self._conn.execute(
            "SELECT * FROM workflow_states WHERE session_id = ?", (session_id,)
        )
        row = cursor.fetchone()
        if not row:
            return None
        return self._row_to_state(row)

    def save_state(self, state: WorkflowState) -> WorkflowState:
        record = state.model_copy(update={"updated_at": utc_now()})
        with self._transaction():
            self._conn.execute(
                """
                INSERT INTO workflow_states (
                    session_id, user_id, journey_id, stage, context,
                    pending_validation, checklist, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(session_id) DO UPDATE SET
                    user_id = excluded.user_id,
                    journey_id = excluded.journey_id,
                    stage = excluded.stage,
                    context = excluded.context,
                    pending_validation = excluded.pending_validation,
                    checklist = excluded.checklist,
                    updated_at = excluded.updated_at
                """,
                (
                    record.session_id,
                    record.user_id,
                    record.journey_id,
                    record.stage.value,
                    _dump_json(record.context, default={}),
                    record.pending_validation,
                    _dump_json(record.checklist, default={}),
                    _as_iso(record.created_at),
                    _as_iso(record.updated_at),
                ),
            )
        return record

    def get_or_create_state(self, session_id: str, *, user_id: Optional[str] = None) -> WorkflowState:
        state = self.get_state(session_id)
        if state is not None:
            return state
        LOGGER.info("Creating workflow state for session %s", session_id)
        return self.save_state(WorkflowState(session_id=session_id, user_id=user_id))

    def get_journey_id(self, session_id: str) -> Optional[str]:
        cursor = self._conn.execute(
            "SELECT journey_id FROM workflow_states WHERE session_id = ?", (session_id,)
        )
        row = cursor.fetchone()
        if not row:
            return None
        return row["journey_id"]

    # Card operations ------------------------------------------------------------------
    def insert_cards(self, cards: Sequence[PlanCard]) -> List[str]:
        """Insert ``cards`` in a single transaction and return their ids."""
        if not cards:
            return []
        rows = [self._card_params(card) for card in cards]
        with self._transaction():
            self._conn.executemany(
                """
                INSERT INTO plan_cards (
                    id, session_id, plan_key, title, description, assignee, due_at,
                    status, plan_hash, plan_version, source, deprecated,
                    deprecated_version, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                rows,
            )
        return [card.id for card in cards]

    def get_card(self, card_id: str) -> Optional[PlanCard]:
        cursor = self._conn.execute("SELECT * FROM plan_cards WHERE id = ?", (card_id,))
        row = cursor.fetchone()
        if not row:
            return None
        return self._row_to_card(row)

    def list_cards(
        self,
        session_id: str,
        *,
        plan_key: Optional[str] = None,
        statuses: Optional[Sequence[CardStatus]] = None,
        include_deprecated: bool = False,
    ) -> List[PlanCard]:
        query = "SELECT * FROM plan_cards WHERE session_id = ?"
        params: List[Any] = [session_id]
        if plan_key is not None:
            query += " AND plan_key = ?"
            params.append(plan_key)
        if statuses:
            placeholders = ",".join("?" for _ in statuses)
            query += f" AND status IN ({placeholders})"
            params.extend(status.value for status in statuses)
        if not include_deprecated:
            query += " AND deprecated = 0"
        query += " ORDER BY plan_version ASC, created_at ASC, rowid ASC"

        cursor = self._conn.execute(query, params)
        return [self._row_to_card(row) for row in cursor.fetchall()]

    def count_cards(self, session_id: str) -> int:
        cursor = self._conn.execute(
            "SELECT COUNT(*) AS total FROM plan_cards WHERE session_id = ?", (session_id,)
        )
        return int(cursor.fetchone()["total"])

    def update_card_descriptions(self, updates: Sequence[tuple[str, str]], plan_version: int) -> int:
        """Rewrite description and version for ``(card_id, description)`` pairs."""
        if not updates:
            return 0
        timestamp = _as_iso(utc_now())
        with self._transaction():
            self._conn.executemany(
                """
                UPDATE plan_cards
                SET description = ?, plan_version = ?, updated_at = ?
                WHERE id = ? AND deprecated = 0
                """,
                [(description, plan_version, timestamp, card_id) for card_id, description in updates],
            )
        return len(updates)

    def deprecate_cards(self, card_ids: Sequence[str], deprecated_version: int) -> int:
        """Flag cards as deprecated without touching their status or progress."""
        if not card_ids:
            return 0
        timestamp = _as_iso(utc_now())
        placeholders = ",".join("?" for _ in card_ids)
        with self._transaction():
            cursor = self._conn.execute(
                f"""
                UPDATE plan_cards
                SET deprecated = 1, deprecated_version = ?, updated_at = ?
                WHERE id IN ({placeholders}) AND deprecated = 0
                """,
                (deprecated_version, timestamp, *card_ids),
            )
        return cursor.rowcount

    def update_card_status(self, card_id: str, status: CardStatus) -> bool:
        timestamp = _as_iso(utc_now())
        with self._transaction():
            cursor = self._conn.execute(
                "UPDATE plan_cards SET status = ?, updated_at = ? WHERE id = ?",
                (status.value, timestamp, card_id),
            )
        return cursor.rowcount > 0

    # Deliverable operations -----------------------------------------------------------
    def insert_deliverable(self, deliverable: Deliverable) -> str:
        record = deliverable.model_copy()
        with self._transaction():
            self._conn.execute(
                """
                INSERT INTO deliverables (
                    id, session_id, journey_id, kind, title, slug, html_body, stage, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.id,
                    record.session_id,
                    record.journey_id,
                    record.kind,
                    record.title,
                    record.slug,
                    record.html_body,
                    record.stage,
                    _as_iso(record.created_at),
                ),
            )
        return record.id

    def list_deliverables(self, session_id: str, *, kind: Optional[str] = None) -> List[Deliverable]:
        query = "SELECT * FROM deliverables WHERE session_id = ?"
        params: List[Any] = [session_id]
        if kind:
            query += " AND kind = ?"
            params.append(kind)
        query += " ORDER BY created_at ASC, rowid ASC"
        cursor = self._conn.execute(query, params)
        return [
            Deliverable(
                id=row["id"],
                session_id=row["session_id"],
                journey_id=row["journey_id"],
                kind=row["kind"],
                title=row["title"],
                slug=row["slug"],
                html_body=row["html_body"],
                stage=row["stage"],
                created_at=_from_iso(row["created_at"]),
            )
            for row in cursor.fetchall()
        ]

    # Timeline operations --------------------------------------------------------------
    def append_event(self, event: TimelineEvent) -> None:
        record = event.model_copy()
        with self._transaction():
            self._conn.execute(
                """
                INSERT INTO timeline_events (id, session_id, kind, payload, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    record.id,
                    record.session_id,
                    record.kind,
                    _dump_json(record.payload, default={}),
                    _as_iso(record.created_at),
                ),
            )

    def list_events(self, session_id: str, *, kind: Optional[str] = None) -> List[TimelineEvent]:
        query = "SELECT * FROM timeline_events WHERE session_id = ?"
        params: List[Any] = [session_id]
        if kind:
            query += " AND kind = ?"
            params.append(kind)
        query += " ORDER BY created_at ASC, rowid ASC"
        cursor = self._conn.execute(query, params)
        return [
            TimelineEvent(
                id=row["id"],
                session_id=row["session_id"],
                kind=row["kind"],
                payload=_load_json(row["payload"], default={}),
                created_at=_from_iso(row["created_at"]),
            )
            for row in cursor.fetchall()
        ]

    # Row helpers ----------------------------------------------------------------------
    @staticmethod
    def _card_params(card: PlanCard) -> tuple[Any, ...]:
        return (
            card.id,
            card.session_id,
            card.plan_key,
            card.title,
            card.description,
            card.assignee,
            _optional_iso(card.due_at),
            card.status.value,
            card.plan_hash,
            card.plan_version,
            card.source.value,
            1 if card.deprecated else 0,
            card.deprecated_version,
            _as_iso(card.created_at),
            _as_iso(card.updated_at),
        )

    def _row_to_card(self, row: sqlite3.Row) -> PlanCard:
        return PlanCard(
            id=row["id"],
            session_id=row["session_id"],
            plan_key=row["plan_key"],
            title=row["title"],
            description=row["description"],
            assignee=row["assignee"],
            due_at=_optional_from_iso(row["due_at"]),
            status=CardStatus(row["status"]),
            plan_hash=row["plan_hash"],
            plan_version=row["plan_version"],
            source=CardSource(row["source"]),
            deprecated=bool(row["deprecated"]),
            deprecated_version=row["deprecated_version"],
            created_at=_from_iso(row["created_at"]),
            updated_at=_from_iso(row["updated_at"]),
        )

    def _row_to_state(self, row: sqlite3.Row) -> WorkflowState:
        return WorkflowState(
            session_id=row["session_id"],
            user_id=row["user_id"],
            journey_id=row["journey_id"],
            stage=Stage(row["stage"]),
            context=_load_json(row["context"], default={}),
            pending_validation=row["pending_validation"],
            checklist=_load_json(row["checklist"], default={}),
            created_at=_from_iso(row["created_at"]),
            updated_at=_from_iso(row["updated_at"]),
        )
