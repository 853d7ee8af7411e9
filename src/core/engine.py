"""
MasteryEngine: wires question bank, learner state, session controllers,
mission selection, validation and persistence together.
"""

import asyncio
import functools
import logging
import random
from dataclasses import dataclass
from typing import Dict, List, Optional

from src.mastery.estimator import MasteryEstimator
from src.mastery.hurdles import HurdleTracker
from src.mastery.models import Question, ResponseEvent, TelemetryRecord
from src.mastery.store import MasteryStore
from src.mission.selector import MissionSelector
from src.persistence.interfaces import (
    QuestionBank,
    LearnerStateRepository,
    TelemetrySink,
    LearnerState,
)
from src.persistence.store import SQLiteDocumentStore
from src.persistence.writer import SerializedStateWriter
from src.session.controller import (
    SessionController,
    DiagnosticSessionController,
    PracticeSessionController,
    SessionSummary,
)
from src.shared.config import settings, EngineSettings
from src.shared.exceptions import PersistenceError, TelemetryError
from src.shared.logging import get_logger, log_with_context
from src.validation.models import ValidationReport
from src.validation.pipeline import ValidationPipeline

logger = get_logger(__name__)


@dataclass
class AnswerResult:
    """What the presentation layer gets back for one answer."""
    record: TelemetryRecord
    report: ValidationReport
    checkpoint: Optional["asyncio.Task[bool]"] = None


class MasteryEngine:
    """Main facade; one instance serves many learners, one session each."""

    def __init__(
        self,
        bank: Optional[QuestionBank] = None,
        repository: Optional[LearnerStateRepository] = None,
        sink: Optional[TelemetrySink] = None,
        pipeline: Optional[ValidationPipeline] = None,
        selector: Optional[MissionSelector] = None,
        writer: Optional[SerializedStateWriter] = None,
        config: Optional[EngineSettings] = None,
        rng: Optional[random.Random] = None
    ):
        self.config = config or settings
        if bank is None or repository is None or sink is None:
            store = SQLiteDocumentStore(self.config.persistence.db_path)
            bank = bank or store
            repository = repository or store
            sink = sink or store

        self.bank = bank
        self.repository = repository
        self.sink = sink
        self.estimator = MasteryEstimator(self.config.mastery, self.config.timing)
        self.pipeline = pipeline or ValidationPipeline(
            self.config.validation, estimator=self.estimator
        )
        self.selector = selector or MissionSelector(
            self.config.mission, rng=rng, prior=self.config.mastery.prior
        )
        self.writer = writer or SerializedStateWriter(
            self.repository, self.config.persistence.write_timeout_seconds
        )
        self._pending: Dict[str, List["asyncio.Task[bool]"]] = {}

    async def start_diagnostic(self, user_id: str) -> DiagnosticSessionController:
        """Adaptive diagnostic over the whole bank."""
        questions = await self._fetch_questions(user_id)
        store, tracker = await self._load_state(user_id)
        controller = DiagnosticSessionController(
            questions,
            store,
            tracker,
            estimator=self.estimator,
            user_id=user_id,
            config=self.config.session,
        )
        self._started(controller)
        return controller

    async def start_practice(self, user_id: str, extended: bool = False) -> PracticeSessionController:
        """Daily practice over a mission chosen from current mastery and hurdles."""
        questions = await self._fetch_questions(user_id)
        store, tracker = await self._load_state(user_id)

        if extended:
            mission = self.selector.select_extended(questions, store, tracker)
        else:
            mission = self.selector.select(questions, store, tracker)

        controller = PracticeSessionController(
            mission,
            store,
            tracker,
            estimator=self.estimator,
            user_id=user_id,
            config=self.config.session,
        )
        self._started(controller)
        return controller

    async def submit_answer(self, controller: SessionController, event: ResponseEvent) -> AnswerResult:
        """
        Apply one answer, append its telemetry, validate it and checkpoint state.

        Validation never raises. A telemetry append failure raises
        TelemetryError after the in-memory update has been applied.
        """
        record = controller.submit_answer(event)
        history = controller.records[:-1]
        report = self.pipeline.run(record, history)

        checkpoint = None
        if self.config.session.checkpoint_every_answer and controller.user_id:
            checkpoint = self._checkpoint(controller)

        try:
            await asyncio.to_thread(self.sink.append, record)
        except (TelemetryError, PersistenceError) as e:
            log_with_context(
                logger,
                logging.ERROR,
                f"Telemetry append failed for {record.question_id}: {str(e)}",
                user_id=controller.user_id,
                action="telemetry_append_failed",
                session_id=controller.session_id,
            )
            if isinstance(e, TelemetryError):
                raise
            raise TelemetryError(str(e)) from e

        return AnswerResult(record=record, report=report, checkpoint=checkpoint)

    async def finish(self, controller: SessionController) -> SessionSummary:
        """
        Write a final checkpoint and wait for every pending write of the session.

        Raises the first PersistenceError seen; the in-memory state stays valid.
        """
        if controller.user_id:
            self._checkpoint(controller)

        pending = self._pending.pop(controller.session_id, [])
        results = await asyncio.gather(*pending, return_exceptions=True)
        failures = [r for r in results if isinstance(r, Exception)]

        log_with_context(
            logger,
            logging.INFO,
            f"Session finished: {controller.summary.answered} answered, "
            f"{controller.summary.flow_gained} flow points",
            user_id=controller.user_id,
            action="session_finished",
            session_id=controller.session_id,
            state=controller.state.value,
        )

        if failures:
            raise failures[0]
        return controller.summary

    async def abandon(self, controller: SessionController):
        """
        Abandon the session and settle its pending writes without raising.

        Nothing is written for the unanswered question.
        """
        controller.abandon()
        pending = self._pending.pop(controller.session_id, [])
        results = await asyncio.gather(*pending, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                log_with_context(
                    logger,
                    logging.WARNING,
                    f"Checkpoint of abandoned session failed: {str(result)}",
                    user_id=controller.user_id,
                    action="abandoned_checkpoint_failed",
                    session_id=controller.session_id,
                )

    def _checkpoint(self, controller: SessionController) -> "asyncio.Task[bool]":
        state = LearnerState(
            mastery=controller.store.snapshot(),
            hurdles=controller.tracker.snapshot(),
        )
        task = self.writer.submit(controller.user_id, state)
        self._pending.setdefault(controller.session_id, []).append(task)
        task.add_done_callback(functools.partial(self._forget_written, controller.session_id))
        return task

    def _forget_written(self, session_id: str, task: "asyncio.Task[bool]"):
        # Failed writes stay pending so finish() can raise them
        if task.cancelled() or task.exception() is not None:
            return
        tasks = self._pending.get(session_id)
        if tasks is None:
            return
        if task in tasks:
            tasks.remove(task)
        if not tasks:
            del self._pending[session_id]

    async def _fetch_questions(self, user_id: str) -> List[Question]:
        try:
            return await asyncio.to_thread(self.bank.fetch_all)
        except PersistenceError as e:
            # An unavailable bank is treated like an empty one
            log_with_context(
                logger,
                logging.ERROR,
                f"Question bank unavailable: {str(e)}",
                user_id=user_id,
                action="question_bank_unavailable",
            )
            return []

    async def _load_state(self, user_id: str):
        state = await asyncio.to_thread(self.repository.load, user_id)
        store = MasteryStore(state.mastery, self.config.mastery)
        tracker = HurdleTracker.from_snapshot(
            state.hurdles, clear_streak=self.config.session.hurdle_clear_streak
        )
        return store, tracker

    def _started(self, controller: SessionController):
        log_with_context(
            logger,
            logging.INFO,
            f"{controller.mode.value} session started with {controller.total_questions} questions",
            user_id=controller.user_id,
            action="session_started",
            session_id=controller.session_id,
        )
