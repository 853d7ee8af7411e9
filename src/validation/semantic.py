"""
Semantic tier: cross-field plausibility checks on a well-formed record.

Each check yields at most one issue and checks never short-circuit each
other. A check whose inputs are missing or mistyped is skipped; the schema
tier already reports those.
"""

import time
from typing import List, Mapping, Any, Optional, Callable

from src.mastery.estimator import MasteryEstimator
from src.mastery.models import SpeedRating, SessionMode
from src.shared.config import settings, ValidationConfig
from src.validation.models import ValidationIssue, ValidationTier, Severity
from src.validation.schema import is_bool, is_int, is_number


def _number(record: Mapping[str, Any], key: str) -> Optional[float]:
    value = record.get(key)
    return float(value) if is_number(value) else None


def _flag(record: Mapping[str, Any], key: str) -> Optional[bool]:
    value = record.get(key)
    return value if is_bool(value) else None


def _speed(record: Mapping[str, Any]) -> Optional[SpeedRating]:
    try:
        return SpeedRating(record.get("speedRating"))
    except ValueError:
        return None


class SemanticValidator:
    """Pedagogical plausibility rules."""

    def __init__(
        self,
        config: Optional[ValidationConfig] = None,
        estimator: Optional[MasteryEstimator] = None
    ):
        self.config = config or settings.validation
        self.estimator = estimator or MasteryEstimator()
        self.checks: List[Callable[[Mapping[str, Any], int], Optional[ValidationIssue]]] = [
            self._mastery_inversion,
            self._timing_rating_mismatch,
            self._likely_guess,
            self._confidence_paradox,
            self._resistant_misconception,
            self._undiagnosed_struggle,
            self._hidden_misconception,
            self._tag_on_correct_answer,
            self._answer_contradiction,
            self._automation_suspected,
            self._abandonment_suspected,
            self._clock_skew,
        ]

    def validate(self, record: Mapping[str, Any], now_ms: Optional[int] = None) -> List[ValidationIssue]:
        now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
        issues = []
        for check in self.checks:
            issue = check(record, now_ms)
            if issue is not None:
                issues.append(issue)
        return issues

    def _mastery_inversion(self, record, now_ms):
        before = _number(record, "masteryBefore")
        after = _number(record, "masteryAfter")
        if _flag(record, "isCorrect") is False and before is not None and after is not None:
            if after > before:
                return self._issue(
                    "masteryAfter",
                    Severity.ERROR,
                    "MASTERY_INVERSION",
                    f"Mastery rose from {before:.2f} to {after:.2f} after an incorrect answer",
                )
        return None

    def _timing_rating_mismatch(self, record, now_ms):
        speed = _speed(record)
        time_spent = record.get("timeSpent")
        if speed is None or not is_int(time_spent):
            return None

        try:
            mode = SessionMode(record.get("mode") or SessionMode.DIAGNOSTIC)
        except ValueError:
            mode = SessionMode.DIAGNOSTIC
        difficulty = record.get("difficulty") if is_int(record.get("difficulty")) else None

        expected = self.estimator.classify_speed(time_spent, mode, difficulty)
        if expected != speed:
            return self._issue(
                "speedRating",
                Severity.ERROR,
                "TIMING_RATING_MISMATCH",
                f"speedRating {speed.value} inconsistent with timeSpent {time_spent}ms "
                f"(expected {expected.value})",
            )
        return None

    def _likely_guess(self, record, now_ms):
        after = _number(record, "masteryAfter")
        if (
            _speed(record) == SpeedRating.SPRINT
            and _flag(record, "isCorrect") is True
            and after is not None
            and after < self.config.guess_mastery_ceiling
        ):
            return self._issue(
                "isCorrect",
                Severity.WARNING,
                "LIKELY_GUESS",
                f"Fast correct answer with low mastery ({after:.2f})",
            )
        return None

    def _confidence_paradox(self, record, now_ms):
        before = _number(record, "masteryBefore")
        after = _number(record, "masteryAfter")
        if _flag(record, "isCorrect") is True and before is not None and after is not None:
            if after < before - self.config.confidence_paradox_drop:
                return self._issue(
                    "masteryAfter",
                    Severity.WARNING,
                    "CONFIDENCE_PARADOX",
                    f"Mastery dropped from {before:.2f} to {after:.2f} after a correct answer",
                )
        return None

    def _resistant_misconception(self, record, now_ms):
        velocity = _number(record, "recoveryVelocity")
        if _flag(record, "isRecovered") is True and velocity is not None:
            if velocity < self.config.resistant_velocity_ceiling:
                return self._issue(
                    "recoveryVelocity",
                    Severity.ERROR,
                    "RESISTANT_MISCONCEPTION",
                    f"Recovery velocity {velocity:.2f} suggests an entrenched misconception",
                )
        return None

    def _undiagnosed_struggle(self, record, now_ms):
        if (
            _speed(record) == SpeedRating.DEEP
            and _flag(record, "isCorrect") is False
            and not record.get("diagnosticTag")
        ):
            return self._issue(
                "diagnosticTag",
                Severity.WARNING,
                "UNDIAGNOSED_STRUGGLE",
                "Slow incorrect answer without a misconception tag",
            )
        return None

    def _hidden_misconception(self, record, now_ms):
        before = _number(record, "masteryBefore")
        if _flag(record, "isCorrect") is False and before is not None:
            if before >= self.config.hidden_misconception_floor:
                return self._issue(
                    "isCorrect",
                    Severity.ERROR,
                    "HIDDEN_MISCONCEPTION",
                    f"Incorrect answer despite high prior mastery ({before:.2f})",
                )
        return None

    def _tag_on_correct_answer(self, record, now_ms):
        if (
            _flag(record, "isCorrect") is True
            and _flag(record, "isRecovered") is not True
            and record.get("diagnosticTag")
        ):
            return self._issue(
                "diagnosticTag",
                Severity.WARNING,
                "TAG_ON_CORRECT_ANSWER",
                f"First-attempt correct answer carries tag {record.get('diagnosticTag')}",
            )
        return None

    def _answer_contradiction(self, record, now_ms):
        student = record.get("studentAnswer")
        correct = record.get("correctAnswer")
        if not (isinstance(student, str) and isinstance(correct, str)):
            return None
        if _flag(record, "isCorrect") is False and student.strip().lower() == correct.strip().lower():
            return self._issue(
                "isCorrect",
                Severity.ERROR,
                "ANSWER_CONTRADICTION",
                "studentAnswer matches correctAnswer but isCorrect is false",
            )
        return None

    def _automation_suspected(self, record, now_ms):
        time_spent = record.get("timeSpent")
        if is_int(time_spent) and 0 <= time_spent < self.config.automation_floor_ms:
            return self._issue(
                "timeSpent",
                Severity.WARNING,
                "AUTOMATION_SUSPECTED",
                f"Answer submitted in {time_spent}ms",
            )
        return None

    def _abandonment_suspected(self, record, now_ms):
        time_spent = record.get("timeSpent")
        if is_int(time_spent) and time_spent > self.config.abandonment_ms:
            return self._issue(
                "timeSpent",
                Severity.WARNING,
                "ABANDONMENT_SUSPECTED",
                f"Answer took {time_spent}ms; the student may have left",
            )
        return None

    def _clock_skew(self, record, now_ms):
        timestamp = record.get("timestamp")
        if is_int(timestamp) and timestamp > now_ms + self.config.max_clock_skew_ms:
            return self._issue(
                "timestamp",
                Severity.WARNING,
                "CLOCK_SKEW",
                f"Timestamp {timestamp} is {timestamp - now_ms}ms in the future",
            )
        return None

    @staticmethod
    def _issue(field_name: str, severity: Severity, code: str, message: str) -> ValidationIssue:
        return ValidationIssue(
            field=field_name,
            tier=ValidationTier.SEMANTIC,
            severity=severity,
            code=code,
            message=message,
        )
