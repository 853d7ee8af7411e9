"""
Mastery estimator: next score, speed rating and behavior pattern for one response.
"""

from dataclasses import dataclass
from typing import Optional

from src.mastery.models import SpeedRating, SessionMode, BehaviorPattern
from src.shared.config import settings, MasteryConfig, TimingConfig


@dataclass(frozen=True)
class Outcome:
    """The parts of a response the score update depends on."""
    is_correct: bool
    is_recovered: bool = False
    recovery_velocity: Optional[float] = None


def recovery_velocity(initial_time_ms: int, recovery_time_ms: int) -> float:
    """
    Normalized speed-up of the follow-up answer versus the first attempt.

    (initial - recovery) / initial, clamped to [0, 1]. A zero initial time
    gives 0.0.
    """
    if initial_time_ms <= 0:
        return 0.0
    velocity = (initial_time_ms - recovery_time_ms) / initial_time_ms
    return min(1.0, max(0.0, velocity))


class MasteryEstimator:
    """Pure score and classification rules; owns no state."""

    def __init__(
        self,
        mastery_config: Optional[MasteryConfig] = None,
        timing_config: Optional[TimingConfig] = None
    ):
        self.config = mastery_config or settings.mastery
        self.timing = timing_config or settings.timing

    def update(
        self,
        prior: float,
        outcome: Outcome,
        mode: SessionMode = SessionMode.DIAGNOSTIC
    ) -> float:
        """
        Next mastery score for `prior` after `outcome`.

        Recovery is checked first since a recovered response always has a
        missed first attempt.
        """
        prior = self._clamp(prior)

        if outcome.is_recovered:
            velocity = outcome.recovery_velocity or 0.0
            if velocity > self.config.latent_velocity_threshold:
                delta = self.config.latent_knowledge_delta
            else:
                delta = self.config.slow_repair_delta
        elif outcome.is_correct:
            delta = self.config.correct_delta
        elif mode == SessionMode.PRACTICE:
            delta = -self.config.practice_miss_delta
        else:
            delta = -self.config.diagnostic_miss_delta

        return round(self._clamp(prior + delta), self.config.precision)

    def _clamp(self, score: float) -> float:
        return min(self.config.ceiling, max(self.config.floor, score))

    def speed_bounds(
        self,
        mode: SessionMode = SessionMode.DIAGNOSTIC,
        difficulty: Optional[int] = None
    ) -> tuple:
        """(SPRINT upper bound, STEADY upper bound) in milliseconds."""
        if mode == SessionMode.PRACTICE:
            level = difficulty or self.timing.default_difficulty
            deep_boundary = level * self.timing.practice_seconds_per_difficulty * 1000
            return (deep_boundary * self.timing.practice_sprint_ratio, deep_boundary)
        return (self.timing.diagnostic_sprint_ms, self.timing.diagnostic_steady_ms)

    def classify_speed(
        self,
        thinking_time_ms: int,
        mode: SessionMode = SessionMode.DIAGNOSTIC,
        difficulty: Optional[int] = None
    ) -> SpeedRating:
        sprint_below, steady_below = self.speed_bounds(mode, difficulty)
        if thinking_time_ms < sprint_below:
            return SpeedRating.SPRINT
        if thinking_time_ms < steady_below:
            return SpeedRating.STEADY
        return SpeedRating.DEEP

    def classify_behavior(
        self,
        outcome: Outcome,
        speed: SpeedRating,
        misconception_tag: Optional[str] = None
    ) -> BehaviorPattern:
        if outcome.is_recovered:
            velocity = outcome.recovery_velocity or 0.0
            if velocity > self.config.latent_velocity_threshold:
                return BehaviorPattern.LATENT_KNOWLEDGE
            return BehaviorPattern.SLOW_REPAIR

        if outcome.is_correct:
            if speed == SpeedRating.DEEP:
                return BehaviorPattern.DELIBERATE
            return BehaviorPattern.FLUENT

        if misconception_tag:
            return BehaviorPattern.MISCONCEPTION
        return BehaviorPattern.STRUGGLE
