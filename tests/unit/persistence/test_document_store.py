"""
Tests for the SQLite document store.
"""

import sqlite3
import pytest

from src.mastery.models import TelemetryRecord, SpeedRating
from src.persistence.interfaces import LearnerState
from src.persistence.store import SQLiteDocumentStore
from src.shared.exceptions import PersistenceError


def make_record(question_id="q1", timestamp=1_700_000_000_000, user_id="u1", **kwargs):
    fields = dict(
        question_id=question_id,
        student_answer="4",
        correct_answer="4",
        is_correct=True,
        time_spent=5000,
        speed_rating=SpeedRating.STEADY,
        mastery_before=0.5,
        mastery_after=0.6,
        atom_id="A",
        timestamp=timestamp,
        user_id=user_id,
    )
    fields.update(kwargs)
    return TelemetryRecord(**fields)


@pytest.fixture
def doc_store(tmp_path):
    return SQLiteDocumentStore(tmp_path / "engine.sqlite")


def test_wal_mode_enabled(doc_store):
    conn = sqlite3.connect(str(doc_store.db_path))
    mode = conn.execute("PRAGMA journal_mode").fetchone()[0]
    conn.close()
    assert mode.lower() == "wal"


def test_question_bank_round_trip(doc_store, question_factory):
    questions = [question_factory("q2", tags=["SIGN_IGNORANCE"]), question_factory("q1", difficulty=3)]
    assert doc_store.add_questions(questions) == 2
    fetched = doc_store.fetch_all()
    assert [q.id for q in fetched] == ["q1", "q2"]
    assert fetched[1].misconception_tags == {"SIGN_IGNORANCE"}
    assert fetched[0].difficulty == 3


def test_empty_bank_fetches_nothing(doc_store):
    assert doc_store.fetch_all() == []


def test_learner_state_load_and_save(doc_store):
    assert doc_store.load("new") == LearnerState()

    state = LearnerState(
        mastery={"A": 0.7},
        hurdles={"SIGN_IGNORANCE": {"tag": "SIGN_IGNORANCE", "miss_count": 2}},
    )
    assert doc_store.save("u1", state, sequence=4)
    assert doc_store.load("u1") == state
    assert doc_store.saved_sequence("u1") == 4

    doc_store.save("u1", LearnerState(mastery={"A": 0.8}), sequence=5)
    assert doc_store.load("u1").mastery == {"A": 0.8}


def test_telemetry_is_append_only_by_key(doc_store):
    """Test that the sink ignores a second record with the same (questionId, timestamp)."""
    assert doc_store.append(make_record()) is True
    assert doc_store.append(make_record(is_correct=False)) is False
    assert doc_store.append(make_record(timestamp=1_700_000_000_001)) is True

    rows = doc_store.get_unaudited()
    assert len(rows) == 2
    assert rows[0]["record"]["isCorrect"] is True


def test_unaudited_rows_and_history(doc_store):
    for i in range(3):
        doc_store.append(make_record(question_id=f"q{i}", timestamp=1000 + i))
    doc_store.append(make_record(question_id="other", timestamp=5000, user_id="u2"))

    rows = doc_store.get_unaudited()
    last_u1 = rows[2]
    history = doc_store.recent_history("u1", before_rowid=last_u1["rowid"])
    assert [h["questionId"] for h in history] == ["q0", "q1"]

    doc_store.save_report("q0", 1000, {"status": "PASS", "qualityScore": 1.0})
    assert doc_store.get_report("q0", 1000)["status"] == "PASS"

    doc_store.mark_audited(rows[0]["rowid"])
    assert [r["record"]["questionId"] for r in doc_store.get_unaudited()] == ["q1", "q2", "other"]


def test_sqlite_errors_become_persistence_errors(tmp_path):
    store = SQLiteDocumentStore(tmp_path / "engine.sqlite")
    with pytest.raises(PersistenceError):
        with store._get_connection() as conn:
            conn.execute("SELECT * FROM missing_table")
