"""
Session controllers: drive one learner through a question set, updating
mastery and hurdles and emitting one telemetry record per answered question.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Callable, Sequence

from src.mastery.estimator import MasteryEstimator, Outcome, recovery_velocity
from src.mastery.hurdles import HurdleTracker
from src.mastery.models import (
    Question,
    ResponseEvent,
    TelemetryRecord,
    SessionMode,
    SpeedRating,
)
from src.mastery.store import MasteryStore
from src.shared.config import settings, SessionConfig
from src.shared.exceptions import SessionClosedError, QuestionMismatchError
from src.shared.logging import get_logger, log_with_context

logger = get_logger(__name__)


class SessionState(str, Enum):
    """Controller lifecycle."""
    ACTIVE = "ACTIVE"
    COMPLETE = "COMPLETE"
    ABANDONED = "ABANDONED"


class CompletionReason(str, Enum):
    """Which stopping rule ended the session."""
    EXHAUSTED = "EXHAUSTED"
    CONFIDENT = "CONFIDENT"
    EMPTY = "EMPTY"


@dataclass
class SessionSummary:
    """Running totals for the session results screen."""
    answered: int = 0
    correct_count: int = 0
    recovered_count: int = 0
    flow_gained: int = 0
    sprint_count: int = 0
    hurdles_targeted: List[str] = field(default_factory=list)
    hurdles_defeated: List[str] = field(default_factory=list)


def _wall_clock_ms() -> int:
    return int(time.time() * 1000)


def _monotonic_ms() -> int:
    return int(time.monotonic() * 1000)


class SessionController:
    """
    Shared ACTIVE -> COMPLETE state machine.

    Subclasses set the mode and may add a stopping rule via `_is_confident`.
    """

    mode: SessionMode = SessionMode.DIAGNOSTIC

    def __init__(
        self,
        questions: Optional[Sequence[Question]],
        store: MasteryStore,
        tracker: HurdleTracker,
        estimator: Optional[MasteryEstimator] = None,
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
        config: Optional[SessionConfig] = None,
        clock: Callable[[], int] = _monotonic_ms,
        wall_clock: Callable[[], int] = _wall_clock_ms,
    ):
        self.questions: List[Question] = list(questions or [])
        self.store = store
        self.tracker = tracker
        self.estimator = estimator or MasteryEstimator()
        self.user_id = user_id
        self.session_id = session_id or f"{self.mode.value.lower()}_{uuid.uuid4().hex[:12]}"
        self.config = config or settings.session
        self._clock = clock
        self._wall_clock = wall_clock

        self.index = 0
        self.records: List[TelemetryRecord] = []
        self.summary = SessionSummary()
        self.completion_reason: Optional[CompletionReason] = None
        self._follow_up_started_at: Optional[int] = None

        if self.questions:
            self.state = SessionState.ACTIVE
        else:
            # Starvation: an empty question source completes immediately
            self.state = SessionState.COMPLETE
            self.completion_reason = CompletionReason.EMPTY
            log_with_context(
                logger,
                logging.WARNING,
                "No questions available; session completed empty",
                user_id=self.user_id,
                action="session_empty",
                session_id=self.session_id,
            )

    @property
    def total_questions(self) -> int:
        return len(self.questions)

    @property
    def is_complete(self) -> bool:
        return self.state == SessionState.COMPLETE

    @property
    def current_question(self) -> Optional[Question]:
        if self.state != SessionState.ACTIVE:
            return None
        return self.questions[self.index]

    def begin_follow_up(self):
        """Start the recovery timer when the guided follow-up is shown."""
        self._ensure_active()
        self._follow_up_started_at = self._clock()

    def abandon(self):
        """Drop the session; nothing is emitted for the unanswered question."""
        if self.state == SessionState.ACTIVE:
            self.state = SessionState.ABANDONED
            self._follow_up_started_at = None
            log_with_context(
                logger,
                logging.INFO,
                f"Session abandoned at question {self.index + 1}/{self.total_questions}",
                user_id=self.user_id,
                action="session_abandoned",
                session_id=self.session_id,
            )

    def submit_answer(self, event: ResponseEvent) -> TelemetryRecord:
        """
        Process one answer and return its telemetry record.

        Raises:
            SessionClosedError if the session is no longer ACTIVE
            QuestionMismatchError if the event is for another question
        """
        self._ensure_active()
        question = self.questions[self.index]
        if event.question_id != question.id:
            raise QuestionMismatchError(
                f"Expected answer for {question.id}, got {event.question_id}"
            )

        difficulty = question.difficulty
        speed = self.estimator.classify_speed(event.thinking_time_ms, self.mode, difficulty)

        velocity = None
        if event.is_recovered:
            velocity = recovery_velocity(event.thinking_time_ms, self._recovery_time(event))
        self._follow_up_started_at = None

        outcome = Outcome(
            is_correct=event.is_correct,
            is_recovered=event.is_recovered,
            recovery_velocity=velocity,
        )

        concept_id = question.concept_id
        mastery_before = self.store.score(concept_id)
        mastery_after = self.estimator.update(mastery_before, outcome, self.mode)
        self.store.set(concept_id, mastery_after)

        # A recovered answer still counts as a miss for its hurdle
        tag = event.misconception_tag
        if tag:
            targeted = [tag]
        elif event.is_correct:
            # Untagged correct answer: credit every active hurdle the question targets
            targeted = sorted(question.misconception_tags & self.tracker.active_tags())
        else:
            targeted = []
        defeated = []
        for hurdle_tag in targeted:
            before = self.tracker.get(hurdle_tag)
            was_active = bool(before and before.is_active)
            hurdle = self.tracker.on_answer(hurdle_tag, event.is_correct)
            if was_active and not hurdle.is_active:
                defeated.append(hurdle_tag)

        record = TelemetryRecord(
            question_id=question.id,
            student_answer=event.student_choice,
            correct_answer=event.correct_choice,
            is_correct=event.is_correct or event.is_recovered,
            time_spent=event.thinking_time_ms,
            speed_rating=speed,
            mastery_before=mastery_before,
            mastery_after=mastery_after,
            diagnostic_tag=None if event.is_correct else tag,
            is_recovered=event.is_recovered,
            recovery_velocity=velocity,
            atom_id=concept_id,
            timestamp=self._wall_clock(),
            mode=self.mode,
            difficulty=difficulty,
            behavior=self.estimator.classify_behavior(outcome, speed, tag),
            session_id=self.session_id,
            user_id=self.user_id,
        )
        self.records.append(record)
        self._update_summary(record, targeted, defeated)

        log_with_context(
            logger,
            logging.DEBUG,
            f"Mastery {concept_id}: {mastery_before:.2f} -> {mastery_after:.2f}",
            user_id=self.user_id,
            action="mastery_update",
            session_id=self.session_id,
            question_id=question.id,
        )

        self._advance()
        return record

    def mean_touched_mastery(self) -> float:
        return self.store.mean()

    def _is_confident(self) -> bool:
        return False

    def _advance(self):
        if self._is_confident():
            self._complete(CompletionReason.CONFIDENT)
        elif self.index >= len(self.questions) - 1:
            self._complete(CompletionReason.EXHAUSTED)
        else:
            self.index += 1

    def _complete(self, reason: CompletionReason):
        self.state = SessionState.COMPLETE
        self.completion_reason = reason
        log_with_context(
            logger,
            logging.INFO,
            f"Session complete ({reason.value}) after {len(self.records)} answers",
            user_id=self.user_id,
            action="session_complete",
            session_id=self.session_id,
            mean_mastery=round(self.mean_touched_mastery(), 4),
        )

    def _recovery_time(self, event: ResponseEvent) -> int:
        if event.recovery_time_ms is not None:
            return event.recovery_time_ms
        if self._follow_up_started_at is not None:
            return max(0, self._clock() - self._follow_up_started_at)
        log_with_context(
            logger,
            logging.WARNING,
            "Recovered answer without follow-up timing; assuming no speed-up",
            user_id=self.user_id,
            action="recovery_timing_missing",
            session_id=self.session_id,
        )
        return event.thinking_time_ms

    def _update_summary(self, record: TelemetryRecord, targeted: List[str], defeated: List[str]):
        points = self.config.flow_points
        summary = self.summary
        summary.answered += 1
        if record.is_recovered:
            summary.recovered_count += 1
            summary.flow_gained += points.get("recovered", 0)
        elif record.is_correct:
            summary.correct_count += 1
            summary.flow_gained += points.get("correct", 0)
        else:
            summary.flow_gained += points.get("miss", 0)
        if record.speed_rating == SpeedRating.SPRINT:
            summary.sprint_count += 1
        for tag in targeted:
            if tag not in summary.hurdles_targeted:
                summary.hurdles_targeted.append(tag)
        for tag in defeated:
            if tag not in summary.hurdles_defeated:
                summary.hurdles_defeated.append(tag)

    def _ensure_active(self):
        if self.state != SessionState.ACTIVE:
            raise SessionClosedError(
                f"Session {self.session_id} is {self.state.value}"
            )


class DiagnosticSessionController(SessionController):
    """Adaptive diagnostic: stops early once session mastery is confident."""

    mode = SessionMode.DIAGNOSTIC

    def __init__(self, questions, store, tracker, confidence_threshold: Optional[float] = None, **kwargs):
        # Easiest questions first
        ordered = sorted(
            questions or [],
            key=lambda q: q.difficulty if q.difficulty is not None else 0
        )
        super().__init__(ordered, store, tracker, **kwargs)
        self.confidence_threshold = (
            confidence_threshold
            if confidence_threshold is not None
            else self.config.confidence_threshold
        )

    def _is_confident(self) -> bool:
        return self.mean_touched_mastery() > self.confidence_threshold


class PracticeSessionController(SessionController):
    """Fixed-length practice over a pre-selected mission."""

    mode = SessionMode.PRACTICE
