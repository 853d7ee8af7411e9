"""
SQLiteDocumentStore: SQLite + WAL mode document store for questions, learner
state, telemetry and validation reports.
"""

import sqlite3
import json
from pathlib import Path
from typing import Optional, Dict, Any, List, Iterable
from contextlib import contextmanager

from src.mastery.models import Question, TelemetryRecord
from src.persistence.interfaces import (
    QuestionBank,
    LearnerStateRepository,
    TelemetrySink,
    LearnerState,
)
from src.shared.config import settings
from src.shared.exceptions import PersistenceError, TelemetryError
from src.shared.logging import get_logger

logger = get_logger(__name__)


class SQLiteDocumentStore(QuestionBank, LearnerStateRepository, TelemetrySink):
    """Single-file store implementing every persistence collaborator."""

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = Path(db_path or settings.persistence.db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._init_database()

    def _init_database(self):
        """Initialize database schema."""
        with self._get_connection() as conn:
            conn.execute("PRAGMA journal_mode=WAL")

            conn.executescript("""
                CREATE TABLE IF NOT EXISTS questions (
                    id TEXT PRIMARY KEY,
                    concept_id TEXT NOT NULL,
                    payload_json TEXT NOT NULL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                );

                CREATE TABLE IF NOT EXISTS learner_state (
                    user_id TEXT PRIMARY KEY,
                    state_json TEXT NOT NULL,
                    sequence INTEGER DEFAULT 0,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                );

                CREATE TABLE IF NOT EXISTS telemetry (
                    question_id TEXT NOT NULL,
                    timestamp INTEGER NOT NULL,
                    user_id TEXT,
                    session_id TEXT,
                    record_json TEXT NOT NULL,
                    audited BOOLEAN DEFAULT 0,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    PRIMARY KEY (question_id, timestamp)
                );

                CREATE TABLE IF NOT EXISTS validation_reports (
                    question_id TEXT NOT NULL,
                    timestamp INTEGER NOT NULL,
                    status TEXT NOT NULL,
                    quality_score REAL,
                    report_json TEXT NOT NULL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    PRIMARY KEY (question_id, timestamp)
                );

                CREATE INDEX IF NOT EXISTS idx_questions_concept ON questions(concept_id);
                CREATE INDEX IF NOT EXISTS idx_telemetry_user ON telemetry(user_id);
                CREATE INDEX IF NOT EXISTS idx_telemetry_audited ON telemetry(audited);
            """)

    @contextmanager
    def _get_connection(self):
        """Get database connection; sqlite errors surface as PersistenceError."""
        try:
            conn = sqlite3.connect(str(self.db_path), timeout=30.0)
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot open {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise PersistenceError(str(e)) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    # Question bank

    def add_questions(self, questions: Iterable[Question]) -> int:
        """Insert or replace questions; returns how many were written."""
        rows = [
            (q.id, q.concept_id, q.model_dump_json())
            for q in questions
        ]
        with self._get_connection() as conn:
            conn.executemany(
                """INSERT OR REPLACE INTO questions (id, concept_id, payload_json)
                   VALUES (?, ?, ?)""",
                rows
            )
        return len(rows)

    def fetch_all(self) -> List[Question]:
        with self._get_connection() as conn:
            result = conn.execute("SELECT payload_json FROM questions ORDER BY id ASC")
            return [Question.model_validate_json(row["payload_json"]) for row in result.fetchall()]

    # Learner state

    def load(self, user_id: str) -> LearnerState:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT state_json FROM learner_state WHERE user_id = ?",
                (user_id,)
            ).fetchone()

        if row is None:
            return LearnerState()
        return LearnerState.from_dict(json.loads(row["state_json"]))

    def save(self, user_id: str, state: LearnerState, sequence: int = 0) -> bool:
        with self._get_connection() as conn:
            conn.execute(
                """INSERT INTO learner_state (user_id, state_json, sequence, updated_at)
                   VALUES (?, ?, ?, CURRENT_TIMESTAMP)
                   ON CONFLICT(user_id) DO UPDATE SET
                       state_json = excluded.state_json,
                       sequence = excluded.sequence,
                       updated_at = CURRENT_TIMESTAMP""",
                (user_id, json.dumps(state.to_dict()), sequence)
            )
        logger.debug(f"Saved learner state for {user_id} (seq {sequence})")
        return True

    def saved_sequence(self, user_id: str) -> Optional[int]:
        """Sequence number of the last saved state, if any."""
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT sequence FROM learner_state WHERE user_id = ?",
                (user_id,)
            ).fetchone()
        return row["sequence"] if row else None

    # Telemetry

    def append(self, record: TelemetryRecord) -> bool:
        wire = record.to_wire()
        try:
            with self._get_connection() as conn:
                cursor = conn.execute(
                    """INSERT OR IGNORE INTO telemetry
                       (question_id, timestamp, user_id, session_id, record_json, audited)
                       VALUES (?, ?, ?, ?, ?, 0)""",
                    (
                        record.question_id,
                        record.timestamp,
                        record.user_id,
                        record.session_id,
                        json.dumps(wire),
                    )
                )
                inserted = cursor.rowcount == 1
        except PersistenceError as e:
            raise TelemetryError(f"Cannot append telemetry for {record.question_id}: {e}") from e

        if not inserted:
            logger.debug(f"Duplicate telemetry skipped: {record.question_id}@{record.timestamp}")
        return inserted

    def get_unaudited(self, limit: int = 100) -> List[Dict[str, Any]]:
        """Telemetry rows not yet audited, oldest first."""
        with self._get_connection() as conn:
            result = conn.execute(
                """SELECT rowid, record_json FROM telemetry
                   WHERE audited = 0
                   ORDER BY rowid ASC
                   LIMIT ?""",
                (limit,)
            )
            return [
                {"rowid": row["rowid"], "record": json.loads(row["record_json"])}
                for row in result.fetchall()
            ]

    def recent_history(
        self,
        user_id: Optional[str],
        before_rowid: Optional[int] = None,
        limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """Most recent telemetry of `user_id` before `before_rowid`, oldest first."""
        limit = limit or settings.persistence.history_limit
        query = "SELECT record_json FROM telemetry WHERE user_id IS ?"
        params: List[Any] = [user_id]
        if before_rowid is not None:
            query += " AND rowid < ?"
            params.append(before_rowid)
        query += " ORDER BY rowid DESC LIMIT ?"
        params.append(limit)

        with self._get_connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [json.loads(row["record_json"]) for row in reversed(rows)]

    def save_report(self, question_id: str, timestamp: int, report: Dict[str, Any]):
        """Store (or overwrite) the validation report of one telemetry row."""
        with self._get_connection() as conn:
            conn.execute(
                """INSERT OR REPLACE INTO validation_reports
                   (question_id, timestamp, status, quality_score, report_json)
                   VALUES (?, ?, ?, ?, ?)""",
                (
                    question_id,
                    timestamp,
                    report["status"],
                    report.get("qualityScore"),
                    json.dumps(report),
                )
            )

    def mark_audited(self, rowid: int):
        with self._get_connection() as conn:
            conn.execute("UPDATE telemetry SET audited = 1 WHERE rowid = ?", (rowid,))

    def get_report(self, question_id: str, timestamp: int) -> Optional[Dict[str, Any]]:
        with self._get_connection() as conn:
            row = conn.execute(
                """SELECT report_json FROM validation_reports
                   WHERE question_id = ? AND timestamp = ?""",
                (question_id, timestamp)
            ).fetchone()
        return json.loads(row["report_json"]) if row else None
