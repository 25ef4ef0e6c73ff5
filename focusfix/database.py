from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Sequence

from .models import ClassificationEvent, ThemeNode
from .taxonomy import DEFAULT_THEMES


class FocusDatabase:
    def __init__(self, db_file: Path):
        self._db_file = Path(db_file)
        self._db_file.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_file, timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        return conn

    @contextmanager
    def _connection(self):
        conn = self._connect()
        try:
            yield conn
        finally:
            conn.close()

    def _init_schema(self) -> None:
        with self._lock, self._connection() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS app_settings (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS themes (
                    id INTEGER PRIMARY KEY,
                    position INTEGER NOT NULL,
                    category TEXT NOT NULL,
                    subcategory TEXT NOT NULL DEFAULT '',
                    specific TEXT NOT NULL DEFAULT ''
                );

                CREATE TABLE IF NOT EXISTS classification_events (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    occurred_at TEXT NOT NULL,
                    day TEXT NOT NULL,
                    theme_id INTEGER NOT NULL,
                    category TEXT NOT NULL,
                    subcategory TEXT NOT NULL DEFAULT '',
                    specific TEXT NOT NULL DEFAULT '',
                    analysis TEXT NOT NULL DEFAULT '',
                    confidence REAL NOT NULL,
                    degraded INTEGER NOT NULL DEFAULT 0,
                    model_used TEXT NOT NULL DEFAULT ''
                );

                CREATE INDEX IF NOT EXISTS idx_classification_events_day
                ON classification_events(day, occurred_at);

                CREATE TABLE IF NOT EXISTS meta (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );
                """
            )
            conn.commit()

    def get_setting(self, key: str, default: str | None = None) -> str | None:
        with self._lock, self._connection() as conn:
            row = conn.execute(
                "SELECT value FROM app_settings WHERE key = ?",
                (key,),
            ).fetchone()
        if row is None:
            return default
        return str(row["value"])

    def get_setting_float(self, key: str, default: float) -> float:
        value = self.get_setting(key)
        if value is None:
            return default
        try:
            parsed = float(value)
        except ValueError:
            return default
        if parsed <= 0:
            return default
        return parsed

    def set_setting(self, key: str, value: str) -> None:
        with self._lock, self._connection() as conn:
            conn.execute(
                """
                INSERT INTO app_settings(key, value)
                VALUES(?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value
                """,
                (key, value),
            )
            conn.commit()

    def load_taxonomy(self) -> list[ThemeNode]:
        """Return the stored themes, seeding the defaults on first use.

        An explicitly emptied taxonomy stays empty; starting the tracker
        with it is a configuration error.
        """
        with self._lock, self._connection() as conn:
            seeded = conn.execute("SELECT value FROM meta WHERE key = 'themes_seeded'").fetchone()
            if seeded is None:
                self._write_themes(conn, DEFAULT_THEMES)
                conn.execute("INSERT INTO meta(key, value) VALUES ('themes_seeded', '1')")
                conn.commit()
            rows = conn.execute(
                """
                SELECT id, category, subcategory, specific
                FROM themes
                ORDER BY position ASC, id ASC
                """
            ).fetchall()
        return [
            ThemeNode(
                id=int(row["id"]),
                category=str(row["category"]),
                subcategory=str(row["subcategory"]),
                specific=str(row["specific"]),
            )
            for row in rows
        ]

    def save_taxonomy(self, nodes: Sequence[ThemeNode]) -> None:
        with self._lock, self._connection() as conn:
            self._write_themes(conn, nodes)
            conn.execute(
                """
                INSERT INTO meta(key, value) VALUES ('themes_seeded', '1')
                ON CONFLICT(key) DO NOTHING
                """
            )
            conn.commit()

    def append_event(self, event: ClassificationEvent) -> int:
        occurred_at = event.occurred_at.astimezone()
        with self._lock, self._connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO classification_events(
                    occurred_at, day, theme_id, category, subcategory, specific,
                    analysis, confidence, degraded, model_used
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    occurred_at.isoformat(),
                    occurred_at.date().isoformat(),
                    int(event.theme.id),
                    event.theme.category,
                    event.theme.subcategory,
                    event.theme.specific,
                    event.analysis_text,
                    float(event.confidence),
                    1 if event.degraded else 0,
                    event.model_used,
                ),
            )
            conn.commit()
            return int(cursor.lastrowid)

    def load_events(
        self,
        start_day: date | None = None,
        end_day: date | None = None,
    ) -> list[ClassificationEvent]:
        clauses: list[str] = []
        params: list[str] = []
        if start_day is not None:
            clauses.append("day >= ?")
            params.append(start_day.isoformat())
        if end_day is not None:
            clauses.append("day <= ?")
            params.append(end_day.isoformat())
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        with self._lock, self._connection() as conn:
            rows = conn.execute(
                f"""
                SELECT occurred_at, theme_id, category, subcategory, specific,
                       analysis, confidence, degraded, model_used
                FROM classification_events
                {where}
                ORDER BY occurred_at ASC, id ASC
                """,
                params,
            ).fetchall()
        return [event for event in (self._row_to_event(row) for row in rows) if event is not None]

    def count_events(self) -> int:
        with self._lock, self._connection() as conn:
            row = conn.execute("SELECT COUNT(*) AS total FROM classification_events").fetchone()
        return int(row["total"]) if row is not None else 0

    def prune_events_before(self, day: date) -> int:
        with self._lock, self._connection() as conn:
            cursor = conn.execute(
                "DELETE FROM classification_events WHERE day < ?",
                (day.isoformat(),),
            )
            conn.commit()
            return int(cursor.rowcount)

    @staticmethod
    def _write_themes(conn: sqlite3.Connection, nodes: Sequence[ThemeNode]) -> None:
        conn.execute("DELETE FROM themes")
        for position, node in enumerate(nodes):
            conn.execute(
                """
                INSERT INTO themes(id, position, category, subcategory, specific)
                VALUES (?, ?, ?, ?, ?)
                """,
                (int(node.id), position, node.category, node.subcategory, node.specific),
            )

    @staticmethod
    def _row_to_event(row: sqlite3.Row) -> ClassificationEvent | None:
        try:
            occurred_at = datetime.fromisoformat(str(row["occurred_at"]))
        except ValueError:
            return None

        return ClassificationEvent(
            theme=ThemeNode(
                id=int(row["theme_id"]),
                category=str(row["category"]),
                subcategory=str(row["subcategory"]),
                specific=str(row["specific"]),
            ),
            analysis_text=str(row["analysis"]),
            confidence=float(row["confidence"]),
            occurred_at=occurred_at,
            degraded=bool(row["degraded"]),
            model_used=str(row["model_used"]),
        )
