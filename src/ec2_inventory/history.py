from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from uuid import uuid4

from .models import BulkActionReport

DEFAULT_HISTORY_DB_PATH = Path("ec2-action-history.db")

_COLUMNS = (
    "record_id, batch_id, action, instance_id, profile, started_at, "
    "outcome, previous_state, current_state, message"
)


@dataclass(slots=True, frozen=True)
class ActionRecord:
    record_id: str
    batch_id: str
    action: str
    instance_id: str
    profile: str | None
    started_at: str
    outcome: str
    previous_state: str | None
    current_state: str | None
    message: str | None = None


class ActionHistoryStore:
    def __init__(self, path: str | Path | None = None) -> None:
        self.path = Path(path).expanduser() if path else DEFAULT_HISTORY_DB_PATH
        self._init_db()

    def record_report(self, report: BulkActionReport, *, profile: str | None) -> list[ActionRecord]:
        batch_id = uuid4().hex
        started_at = utc_now()
        records = [
            ActionRecord(
                record_id=uuid4().hex,
                batch_id=batch_id,
                action=report.action,
                instance_id=result.instance_id,
                profile=profile,
                started_at=started_at,
                outcome="succeeded" if result.ok else "failed",
                previous_state=result.previous_state,
                current_state=result.current_state,
                message=result.message or None,
            )
            for result in report.results
        ]
        with self._connect() as conn:
            conn.executemany(
                f"INSERT INTO action_history ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                [
                    (
                        record.record_id,
                        record.batch_id,
                        record.action,
                        record.instance_id,
                        record.profile,
                        record.started_at,
                        record.outcome,
                        record.previous_state,
                        record.current_state,
                        record.message,
                    )
                    for record in records
                ],
            )
        return records

    def list_for_instance(self, instance_id: str) -> list[ActionRecord]:
        with self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT {_COLUMNS}
                FROM action_history
                WHERE instance_id = ?
                ORDER BY started_at DESC, rowid DESC
                """,
                (instance_id,),
            ).fetchall()
        return [self._record_from_row(row) for row in rows]

    def list_recent(self, limit: int = 200) -> list[ActionRecord]:
        with self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT {_COLUMNS}
                FROM action_history
                ORDER BY started_at DESC, rowid DESC
                LIMIT ?
                """,
                (limit,),
            ).fetchall()
        return [self._record_from_row(row) for row in rows]

    def _init_db(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS action_history (
                    record_id TEXT PRIMARY KEY,
                    batch_id TEXT NOT NULL,
                    action TEXT NOT NULL,
                    instance_id TEXT NOT NULL,
                    profile TEXT,
                    started_at TEXT NOT NULL,
                    outcome TEXT NOT NULL,
                    previous_state TEXT,
                    current_state TEXT,
                    message TEXT
                )
                """
            )
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_action_history_instance_started
                ON action_history (instance_id, started_at DESC)
                """
            )

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.path)
        conn.row_factory = sqlite3.Row
        return conn

    @staticmethod
    def _record_from_row(row: sqlite3.Row) -> ActionRecord:
        return ActionRecord(
            record_id=str(row["record_id"]),
            batch_id=str(row["batch_id"]),
            action=str(row["action"]),
            instance_id=str(row["instance_id"]),
            profile=str(row["profile"]) if row["profile"] else None,
            started_at=str(row["started_at"]),
            outcome=str(row["outcome"]),
            previous_state=str(row["previous_state"]) if row["previous_state"] else None,
            current_state=str(row["current_state"]) if row["current_state"] else None,
            message=str(row["message"]) if row["message"] else None,
        )


def utc_now() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()
