"""SQLite-backed reference store for adaptloop.

This module provides the schema and the storage operations the rule engine
consumes: active spec lookup, recent score windows, and attribute/target
upserts. Any object exposing the same methods can stand in for it.
"""

from __future__ import annotations

import json
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable

from ..core.models import (
    AttributeRecord,
    OutputType,
    ParameterDefinition,
    ScoreEvent,
    SpecificationRecord,
    TargetRecord,
)
from .locks import KeyedLocks
from .schemas import (
    AttributeDBRecord,
    ScoreEventDBRecord,
    SpecDBRecord,
    TargetDBRecord,
)


def _now_iso() -> str:
    return datetime.now().isoformat()


def _dumps(data: Any) -> str:
    return json.dumps(data, default=str)


def _loads(text: str | None, fallback: Any) -> Any:
    if not text:
        return fallback
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return fallback


class AdaptStore:
    """SQLite-backed store for specs, score events, attributes and targets."""

    def __init__(self, path: Path | str):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(str(self.path), check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        # Shared by every engine writing through this store
        self.target_locks = KeyedLocks()
        self._set_pragmas()
        self.init_schema()

    def _set_pragmas(self) -> None:
        cursor = self.conn.cursor()
        cursor.execute("PRAGMA journal_mode = WAL")
        cursor.execute("PRAGMA synchronous = NORMAL")
        cursor.execute("PRAGMA temp_store = MEMORY")
        self.conn.commit()

    def init_schema(self) -> None:
        """Create schema and indexes."""
        cursor = self.conn.cursor()
        cursor.executescript(
            """
            CREATE TABLE IF NOT EXISTS specs (
                slug TEXT PRIMARY KEY,
                name TEXT NOT NULL DEFAULT '',
                output_type TEXT NOT NULL,
                is_active INTEGER NOT NULL DEFAULT 1,
                is_dirty INTEGER NOT NULL DEFAULT 0,
                config_json TEXT NOT NULL,
                depends_on_json TEXT NOT NULL,
                raw_spec_json TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS parameters (
                parameter_id TEXT PRIMARY KEY,
                name TEXT NOT NULL DEFAULT '',
                kind TEXT NOT NULL,
                is_adjustable INTEGER NOT NULL DEFAULT 1,
                interpretation_high TEXT,
                interpretation_low TEXT
            );

            CREATE TABLE IF NOT EXISTS score_events (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                caller_id TEXT NOT NULL,
                parameter_id TEXT NOT NULL,
                score REAL NOT NULL,
                confidence REAL NOT NULL,
                scored_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS caller_attributes (
                caller_id TEXT NOT NULL,
                key TEXT NOT NULL,
                scope TEXT NOT NULL,
                value TEXT NOT NULL,
                confidence REAL NOT NULL,
                updated_at TEXT NOT NULL,
                PRIMARY KEY (caller_id, key, scope)
            );

            CREATE TABLE IF NOT EXISTS caller_targets (
                caller_id TEXT NOT NULL,
                parameter_id TEXT NOT NULL,
                target_value REAL NOT NULL,
                confidence REAL NOT NULL,
                source_spec TEXT,
                rationale TEXT,
                updated_at TEXT NOT NULL,
                PRIMARY KEY (caller_id, parameter_id)
            );

            CREATE INDEX IF NOT EXISTS idx_specs_output_type ON specs(output_type, is_active, is_dirty);
            CREATE INDEX IF NOT EXISTS idx_score_events_window
            ON score_events(caller_id, parameter_id, scored_at);
            """
        )
        self.conn.commit()

    def close(self) -> None:
        self.conn.close()

    def __enter__(self) -> "AdaptStore":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False

    # ── Specs ──

    def save_spec(self, spec: SpecificationRecord) -> None:
        rec = SpecDBRecord(
            slug=spec.slug,
            name=spec.name,
            output_type=spec.output_type.value,
            is_active=spec.is_active,
            is_dirty=spec.is_dirty,
            config_json=spec.config,
            depends_on_json=spec.depends_on,
            raw_spec_json=spec.raw_spec,
        )
        with self._lock:
            self.conn.execute(
                """
                INSERT OR REPLACE INTO specs
                (slug, name, output_type, is_active, is_dirty, config_json,
                 depends_on_json, raw_spec_json, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    rec.slug,
                    rec.name,
                    rec.output_type,
                    int(rec.is_active),
                    int(rec.is_dirty),
                    _dumps(rec.config_json),
                    _dumps(rec.depends_on_json),
                    _dumps(rec.raw_spec_json),
                    _now_iso(),
                ),
            )
            self.conn.commit()

    def set_spec_flags(
        self,
        slug: str,
        *,
        is_active: bool | None = None,
        is_dirty: bool | None = None,
    ) -> bool:
        """Toggle lifecycle flags. Returns False when the slug is unknown."""
        assignments = []
        params: list[Any] = []
        if is_active is not None:
            assignments.append("is_active = ?")
            params.append(int(is_active))
        if is_dirty is not None:
            assignments.append("is_dirty = ?")
            params.append(int(is_dirty))
        if not assignments:
            return self.get_spec(slug) is not None
        assignments.append("updated_at = ?")
        params.extend([_now_iso(), slug])
        with self._lock:
            cursor = self.conn.execute(
                f"UPDATE specs SET {', '.join(assignments)} WHERE slug = ?",
                params,
            )
            self.conn.commit()
            return cursor.rowcount > 0

    def _row_to_spec(self, row: sqlite3.Row) -> SpecificationRecord:
        return SpecificationRecord(
            slug=row["slug"],
            name=row["name"],
            output_type=OutputType(row["output_type"]),
            is_active=bool(row["is_active"]),
            is_dirty=bool(row["is_dirty"]),
            config=_loads(row["config_json"], {}),
            depends_on=_loads(row["depends_on_json"], []),
            raw_spec=_loads(row["raw_spec_json"], {}),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    def get_spec(self, slug: str) -> SpecificationRecord | None:
        with self._lock:
            row = self.conn.execute(
                "SELECT * FROM specs WHERE slug = ?", (slug,)
            ).fetchone()
        return self._row_to_spec(row) if row else None

    def get_specs(self, slugs: Iterable[str]) -> list[SpecificationRecord]:
        """Fetch specs by slug regardless of lifecycle flags, in input order."""
        found = []
        for slug in slugs:
            spec = self.get_spec(slug)
            if spec is not None:
                found.append(spec)
        return found

    def list_specs(self, *, active_only: bool = False) -> list[SpecificationRecord]:
        sql = "SELECT * FROM specs"
        if active_only:
            sql += " WHERE is_active = 1 AND is_dirty = 0"
        sql += " ORDER BY slug"
        with self._lock:
            rows = self.conn.execute(sql).fetchall()
        return [self._row_to_spec(row) for row in rows]

    def find_active_specs_by_output_type(
        self, output_type: OutputType | str
    ) -> list[SpecificationRecord]:
        value = output_type.value if isinstance(output_type, OutputType) else output_type
        with self._lock:
            rows = self.conn.execute(
                """
                SELECT * FROM specs
                WHERE output_type = ? AND is_active = 1 AND is_dirty = 0
                ORDER BY slug
                """,
                (value,),
            ).fetchall()
        return [self._row_to_spec(row) for row in rows]

    # ── Parameters ──

    def save_parameter(self, parameter: ParameterDefinition) -> None:
        with self._lock:
            self.conn.execute(
                """
                INSERT OR REPLACE INTO parameters
                (parameter_id, name, kind, is_adjustable, interpretation_high, interpretation_low)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    parameter.parameter_id,
                    parameter.name,
                    parameter.kind,
                    int(parameter.is_adjustable),
                    parameter.interpretation_high,
                    parameter.interpretation_low,
                ),
            )
            self.conn.commit()

    def get_parameter(self, parameter_id: str) -> ParameterDefinition | None:
        with self._lock:
            row = self.conn.execute(
                "SELECT * FROM parameters WHERE parameter_id = ?", (parameter_id,)
            ).fetchone()
        if not row:
            return None
        return ParameterDefinition(
            parameter_id=row["parameter_id"],
            name=row["name"],
            kind=row["kind"],
            is_adjustable=bool(row["is_adjustable"]),
            interpretation_high=row["interpretation_high"],
            interpretation_low=row["interpretation_low"],
        )

    # ── Score events ──

    def record_score(
        self,
        caller_id: str,
        parameter_id: str,
        score: float,
        confidence: float,
        scored_at: datetime | None = None,
    ) -> int:
        rec = ScoreEventDBRecord(
            caller_id=caller_id,
            parameter_id=parameter_id,
            score=score,
            confidence=confidence,
        )
        stamp = (scored_at or datetime.now()).isoformat()
        with self._lock:
            cursor = self.conn.execute(
                """
                INSERT INTO score_events (caller_id, parameter_id, score, confidence, scored_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (rec.caller_id, rec.parameter_id, rec.score, rec.confidence, stamp),
            )
            self.conn.commit()
            return int(cursor.lastrowid)

    def find_recent_scores(
        self, caller_id: str, parameter_id: str, window_size: int
    ) -> list[ScoreEvent]:
        """Most recent ``window_size`` events, most-recent-first."""
        with self._lock:
            rows = self.conn.execute(
                """
                SELECT caller_id, parameter_id, score, confidence, scored_at
                FROM score_events
                WHERE caller_id = ? AND parameter_id = ?
                ORDER BY scored_at DESC, id DESC
                LIMIT ?
                """,
                (caller_id, parameter_id, int(window_size)),
            ).fetchall()
        return [
            ScoreEvent(
                caller_id=row["caller_id"],
                parameter_id=row["parameter_id"],
                score=row["score"],
                confidence=row["confidence"],
                scored_at=datetime.fromisoformat(row["scored_at"]),
            )
            for row in rows
        ]

    # ── Attributes ──

    def upsert_attribute(
        self,
        caller_id: str,
        key: str,
        value: str,
        confidence: float,
        scope: str,
    ) -> None:
        rec = AttributeDBRecord(
            caller_id=caller_id,
            key=key,
            value=value,
            confidence=confidence,
            scope=scope,
        )
        with self._lock:
            self.conn.execute(
                """
                INSERT INTO caller_attributes (caller_id, key, scope, value, confidence, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(caller_id, key, scope) DO UPDATE SET
                    value = excluded.value,
                    confidence = excluded.confidence,
                    updated_at = excluded.updated_at
                """,
                (rec.caller_id, rec.key, rec.scope, rec.value, rec.confidence, _now_iso()),
            )
            self.conn.commit()

    def get_attributes(
        self, caller_id: str, scope: str | None = None
    ) -> list[AttributeRecord]:
        sql = "SELECT * FROM caller_attributes WHERE caller_id = ?"
        params: list[Any] = [caller_id]
        if scope is not None:
            sql += " AND scope = ?"
            params.append(scope)
        sql += " ORDER BY scope, key"
        with self._lock:
            rows = self.conn.execute(sql, params).fetchall()
        return [
            AttributeRecord(
                caller_id=row["caller_id"],
                key=row["key"],
                value=row["value"],
                confidence=row["confidence"],
                scope=row["scope"],
                updated_at=datetime.fromisoformat(row["updated_at"]),
            )
            for row in rows
        ]

    # ── Targets ──

    def upsert_target(
        self,
        caller_id: str,
        parameter_id: str,
        value: float,
        confidence: float,
        source_spec: str | None,
        rationale: str | None,
    ) -> None:
        rec = TargetDBRecord(
            caller_id=caller_id,
            parameter_id=parameter_id,
            target_value=value,
            confidence=confidence,
            source_spec=source_spec,
            rationale=rationale,
        )
        with self._lock:
            self.conn.execute(
                """
                INSERT INTO caller_targets
                (caller_id, parameter_id, target_value, confidence, source_spec, rationale, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(caller_id, parameter_id) DO UPDATE SET
                    target_value = excluded.target_value,
                    confidence = excluded.confidence,
                    source_spec = excluded.source_spec,
                    rationale = excluded.rationale,
                    updated_at = excluded.updated_at
                """,
                (
                    rec.caller_id,
                    rec.parameter_id,
                    rec.target_value,
                    rec.confidence,
                    rec.source_spec,
                    rec.rationale,
                    _now_iso(),
                ),
            )
            self.conn.commit()

    def _row_to_target(self, row: sqlite3.Row) -> TargetRecord:
        return TargetRecord(
            caller_id=row["caller_id"],
            parameter_id=row["parameter_id"],
            target_value=row["target_value"],
            confidence=row["confidence"],
            source_spec=row["source_spec"],
            rationale=row["rationale"],
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    def get_target(self, caller_id: str, parameter_id: str) -> TargetRecord | None:
        with self._lock:
            row = self.conn.execute(
                "SELECT * FROM caller_targets WHERE caller_id = ? AND parameter_id = ?",
                (caller_id, parameter_id),
            ).fetchone()
        return self._row_to_target(row) if row else None

    def list_targets(self, caller_id: str) -> list[TargetRecord]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT * FROM caller_targets WHERE caller_id = ? ORDER BY parameter_id",
                (caller_id,),
            ).fetchall()
        return [self._row_to_target(row) for row in rows]

    # ── Erasure ──

    def erase_caller_data(self, caller_id: str) -> dict[str, int]:
        """Delete every attribute, target and score event for a caller."""
        counts: dict[str, int] = {}
        with self._lock:
            for table in ("caller_attributes", "caller_targets", "score_events"):
                cursor = self.conn.execute(
                    f"DELETE FROM {table} WHERE caller_id = ?", (caller_id,)
                )
                counts[table] = cursor.rowcount
            self.conn.commit()
        return counts


def open_store(path: Path | str) -> AdaptStore:
    """Open the store and ensure schema exists."""
    return AdaptStore(path)
