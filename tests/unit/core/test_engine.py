"""
Tests for the MasteryEngine facade.
"""

import asyncio
import random
import pytest
from unittest.mock import MagicMock

from src.core.engine import MasteryEngine
from src.mastery.models import ResponseEvent, SpeedRating
from src.persistence.interfaces import QuestionBank, LearnerState, LearnerStateRepository
from src.persistence.store import SQLiteDocumentStore
from src.session.controller import CompletionReason, SessionState
from src.shared.config import EngineSettings, TimingConfig
from src.shared.exceptions import PersistenceError, TelemetryError
from src.validation.models import ValidationStatus


@pytest.fixture
def doc_store(tmp_path, bank):
    store = SQLiteDocumentStore(tmp_path / "engine.sqlite")
    store.add_questions(bank)
    return store


@pytest.fixture
def engine(doc_store):
    return MasteryEngine(
        bank=doc_store, repository=doc_store, sink=doc_store, rng=random.Random(9)
    )


async def answer(engine, controller, choice="4", thinking_time_ms=5000):
    event = ResponseEvent.from_choice(controller.current_question, choice, thinking_time_ms)
    return await engine.submit_answer(controller, event)


@pytest.mark.asyncio
async def test_diagnostic_round_trip_persists_state_and_telemetry(engine, doc_store):
    controller = await engine.start_diagnostic("u1")
    assert controller.total_questions == 12

    first = await answer(engine, controller, choice="w0")
    await first.checkpoint
    assert first.report.status == ValidationStatus.PASS
    assert first.record.diagnostic_tag == "SIGN_IGNORANCE"

    await answer(engine, controller)
    summary = await engine.finish(controller)

    assert summary.answered == 2
    assert summary.flow_gained == 15
    state = doc_store.load("u1")
    assert state.mastery == controller.store.snapshot()
    assert state.hurdles["SIGN_IGNORANCE"]["miss_count"] == 1
    assert len(doc_store.get_unaudited()) == 2


@pytest.mark.asyncio
async def test_untagged_miss_fails_schema_but_session_continues(engine):
    controller = await engine.start_diagnostic("u1")
    result = await answer(engine, controller, choice="untagged")
    assert result.report.status == ValidationStatus.FAIL
    assert controller.state == SessionState.ACTIVE
    await engine.finish(controller)


@pytest.mark.asyncio
async def test_practice_targets_persisted_hurdles(engine, doc_store):
    doc_store.save("u1", LearnerState(
        mastery={"A": 0.5, "B": 0.5, "C": 0.5},
        hurdles={"UNIT_CONFUSION": {"tag": "UNIT_CONFUSION", "miss_count": 2}},
    ))
    controller = await engine.start_practice("u1")

    assert controller.total_questions == 10
    targeted = [q for q in controller.questions if "UNIT_CONFUSION" in q.misconception_tags]
    assert len(targeted) >= 4
    await engine.finish(controller)


@pytest.mark.asyncio
async def test_extended_practice_uses_slot_plan(engine):
    controller = await engine.start_practice("u1", extended=True)
    assert controller.total_questions == 12
    await engine.finish(controller)


@pytest.mark.asyncio
async def test_unavailable_bank_gives_empty_session(doc_store):
    bank = MagicMock(spec=QuestionBank)
    bank.fetch_all.side_effect = PersistenceError("bank offline")
    engine = MasteryEngine(bank=bank, repository=doc_store, sink=doc_store)

    controller = await engine.start_diagnostic("u1")
    assert controller.is_complete
    assert controller.completion_reason == CompletionReason.EMPTY

    summary = await engine.finish(controller)
    assert summary.answered == 0


@pytest.mark.asyncio
async def test_save_failure_surfaces_but_memory_stays_authoritative(doc_store):
    repository = MagicMock(spec=LearnerStateRepository)
    repository.load.return_value = LearnerState()
    repository.save.side_effect = PersistenceError("write rejected")
    engine = MasteryEngine(bank=doc_store, repository=repository, sink=doc_store)

    controller = await engine.start_diagnostic("u1")
    await answer(engine, controller)

    with pytest.raises(PersistenceError):
        await engine.finish(controller)
    assert controller.store.get("A") == pytest.approx(0.6)


@pytest.mark.asyncio
async def test_sink_failure_raises_after_in_memory_update(doc_store):
    sink = MagicMock()
    sink.append.side_effect = PersistenceError("sink down")
    engine = MasteryEngine(bank=doc_store, repository=doc_store, sink=sink)

    controller = await engine.start_diagnostic("u1")
    with pytest.raises(TelemetryError):
        await answer(engine, controller)
    assert len(controller.records) == 1
    await engine.finish(controller)


@pytest.mark.asyncio
async def test_validation_uses_engine_speed_bands(doc_store):
    config = EngineSettings(timing=TimingConfig(diagnostic_sprint_ms=6000))
    engine = MasteryEngine(bank=doc_store, repository=doc_store, sink=doc_store, config=config)

    controller = await engine.start_diagnostic("u1")
    result = await answer(engine, controller, thinking_time_ms=5000)

    assert result.record.speed_rating == SpeedRating.SPRINT
    assert "TIMING_RATING_MISMATCH" not in [w.code for w in result.report.warnings]
    await engine.finish(controller)


@pytest.mark.asyncio
async def test_written_checkpoints_are_not_retained(engine):
    controller = await engine.start_diagnostic("u1")
    result = await answer(engine, controller)
    await result.checkpoint
    await asyncio.sleep(0)

    assert controller.session_id not in engine._pending
    await engine.finish(controller)


@pytest.mark.asyncio
async def test_abandon_settles_writes_without_raising(doc_store):
    repository = MagicMock(spec=LearnerStateRepository)
    repository.load.return_value = LearnerState()
    repository.save.side_effect = PersistenceError("write rejected")
    engine = MasteryEngine(bank=doc_store, repository=repository, sink=doc_store)

    controller = await engine.start_diagnostic("u1")
    await answer(engine, controller)
    await engine.abandon(controller)

    assert controller.state == SessionState.ABANDONED
    assert engine._pending == {}
