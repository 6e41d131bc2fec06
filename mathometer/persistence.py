from __future__ import annotations

import json
import logging
import sqlite3
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1


def open_db(path: Path) -> sqlite3.Connection:
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path)
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    _migrate(conn)
    return conn


def _utc_now_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(time.time()))


def _migrate(conn: sqlite3.Connection) -> None:
    row = conn.execute("PRAGMA user_version;").fetchone()
    ver = int(row[0]) if row else 0
    if ver >= SCHEMA_VERSION:
        return

    with conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS subject_params (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                created_at_utc TEXT NOT NULL,
                updated_at_utc TEXT NOT NULL
            );
            """
        )
        conn.execute(f"PRAGMA user_version={SCHEMA_VERSION};")


def _begin_write(conn: sqlite3.Connection) -> None:
    # Take the write lock before reading so read-modify-write is atomic across processes.
    conn.execute("BEGIN IMMEDIATE;")


def subject_str(subject_id: int) -> str:
    return f"{int(subject_id):02d}"


def params_key(subject_id: int) -> str:
    return f"mmo_params_subj_{subject_str(subject_id)}"


@dataclass(frozen=True, slots=True)
class ProgressRecord:
    run_order: tuple[int, ...]
    last_run_completed: int = 0
    created_at_utc: str = ""
    updated_at_utc: str = ""

    def is_complete(self) -> bool:
        return self.last_run_completed >= len(self.run_order)

    def to_dict(self) -> dict[str, Any]:
        return {
            "runOrder": list(self.run_order),
            "lastRunCompleted": int(self.last_run_completed),
            "createdAt_utc": self.created_at_utc,
            "updatedAt_utc": self.updated_at_utc,
        }

    @classmethod
    def from_dict(cls, data: object, *, total_runs: int) -> "ProgressRecord | None":
        """Parse a stored record. Anything malformed yields None."""

        if not isinstance(data, dict):
            return None
        raw_order = data.get("runOrder")
        if not isinstance(raw_order, list) or len(raw_order) != total_runs:
            return None
        try:
            run_order = tuple(int(v) for v in raw_order)
        except (TypeError, ValueError):
            return None
        if sorted(run_order) != list(range(1, total_runs + 1)):
            return None

        raw_last = data.get("lastRunCompleted", 0)
        if isinstance(raw_last, bool):
            return None
        try:
            last = int(raw_last or 0)
        except (TypeError, ValueError):
            return None
        if not (0 <= last <= total_runs):
            return None

        return cls(
            run_order=run_order,
            last_run_completed=last,
            created_at_utc=str(data.get("createdAt_utc", "")),
            updated_at_utc=str(data.get("updatedAt_utc", "")),
        )


class ProgressStore:
    """Per-subject run order and completion counter, keyed by zero-padded subject number.

    The store is the only writer of progress records. ``run_order`` never
    changes once saved and ``last_run_completed`` never decreases.
    """

    def __init__(self, db_path: Path, *, total_runs: int) -> None:
        if total_runs <= 0:
            raise ValueError("total_runs must be > 0")
        self._db_path = db_path
        self._total_runs = int(total_runs)

    @property
    def total_runs(self) -> int:
        return self._total_runs

    def load(self, subject_id: int) -> ProgressRecord | None:
        conn = open_db(self._db_path)
        try:
            return self._load(conn, subject_id)
        finally:
            conn.close()

    def save(self, subject_id: int, record: ProgressRecord) -> ProgressRecord:
        """Create the subject's record, or merge into the existing one.

        An existing ``run_order`` always wins and ``last_run_completed`` never
        goes down. Returns the record as stored.
        """

        self._check(record)
        conn = open_db(self._db_path)
        try:
            with conn:
                _begin_write(conn)
                current = self._load(conn, subject_id)
                now = _utc_now_iso()
                if current is None:
                    stored = ProgressRecord(
                        run_order=tuple(record.run_order),
                        last_run_completed=int(record.last_run_completed),
                        created_at_utc=record.created_at_utc or now,
                        updated_at_utc=now,
                    )
                else:
                    if current.run_order != tuple(record.run_order):
                        logger.warning(
                            "subject %s already has run order %s; keeping it",
                            subject_str(subject_id),
                            list(current.run_order),
                        )
                    stored = ProgressRecord(
                        run_order=current.run_order,
                        last_run_completed=max(current.last_run_completed, int(record.last_run_completed)),
                        created_at_utc=current.created_at_utc or now,
                        updated_at_utc=now,
                    )
                self._write(conn, subject_id, stored, now=now)
        finally:
            conn.close()
        logger.info(
            "saved progress for subject %s: run order %s, last run completed %d",
            subject_str(subject_id),
            list(stored.run_order),
            stored.last_run_completed,
        )
        return stored

    def advance(self, subject_id: int, completed_run_index: int) -> ProgressRecord | None:
        completed_run_index = int(completed_run_index)
        if not (1 <= completed_run_index <= self._total_runs):
            raise ValueError(
                f"completed run index must be in 1..{self._total_runs}, got {completed_run_index}"
            )
        conn = open_db(self._db_path)
        try:
            with conn:
                _begin_write(conn)
                current = self._load(conn, subject_id)
                if current is None:
                    logger.warning(
                        "cannot advance subject %s to run %d: no progress record",
                        subject_str(subject_id),
                        completed_run_index,
                    )
                    return None
                now = _utc_now_iso()
                updated = ProgressRecord(
                    run_order=current.run_order,
                    last_run_completed=max(current.last_run_completed, completed_run_index),
                    created_at_utc=current.created_at_utc or now,
                    updated_at_utc=now,
                )
                self._write(conn, subject_id, updated, now=now)
        finally:
            conn.close()

        if updated.last_run_completed != completed_run_index:
            logger.info(
                "subject %s already at run %d; advance to %d ignored",
                subject_str(subject_id),
                updated.last_run_completed,
                completed_run_index,
            )
        return updated

    def reset(self, subject_id: int) -> None:
        conn = open_db(self._db_path)
        try:
            with conn:
                conn.execute("DELETE FROM subject_params WHERE key = ?", (params_key(subject_id),))
        finally:
            conn.close()
        logger.info("progress reset for subject %s", subject_str(subject_id))

    def _check(self, record: ProgressRecord) -> None:
        if ProgressRecord.from_dict(record.to_dict(), total_runs=self._total_runs) is None:
            raise ValueError(
                f"invalid progress record for {self._total_runs} runs: "
                f"run order {list(record.run_order)}, last run completed {record.last_run_completed}"
            )

    def _load(self, conn: sqlite3.Connection, subject_id: int) -> ProgressRecord | None:
        row = conn.execute(
            "SELECT value FROM subject_params WHERE key = ?", (params_key(subject_id),)
        ).fetchone()
        if row is None:
            return None
        try:
            payload = json.loads(row[0])
        except (TypeError, ValueError):
            payload = None
        record = ProgressRecord.from_dict(payload, total_runs=self._total_runs)
        if record is None:
            logger.warning(
                "ignoring malformed progress record for subject %s", subject_str(subject_id)
            )
        return record

    def _write(
        self,
        conn: sqlite3.Connection,
        subject_id: int,
        record: ProgressRecord,
        *,
        now: str,
    ) -> None:
        conn.execute(
            """
            INSERT INTO subject_params(key, value, created_at_utc, updated_at_utc)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
                value = excluded.value,
                updated_at_utc = excluded.updated_at_utc
            """,
            (params_key(subject_id), json.dumps(record.to_dict()), now, now),
        )
