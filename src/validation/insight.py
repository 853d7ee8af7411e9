"""
Insight tier: patterns across a learner's recent records that may call for
an intervention. Informational only; never affects the verdict.
"""

from typing import List, Dict, Any, Optional, Mapping, Sequence

from src.shared.config import settings, ValidationConfig
from src.validation.models import Insight, InsightSeverity
from src.validation.schema import is_number


RECOMMENDATIONS = {
    "FIRST_ATTEMPT": "No history yet; keep collecting evidence",
    "LEARNING_BREAKTHROUGH": "Reinforce with a similar question while it is fresh",
    "REGRESSION_DETECTED": "Revisit the concept; a previously solid skill slipped",
    "SPEED_SLOWDOWN": "Check for fatigue or a harder variant",
    "SPEED_IMPROVEMENT": "Fluency is growing; consider raising difficulty",
    "GUESSING_PATTERN": "Wrong answers are much faster than right ones; slow the student down",
    "STRUGGLING_STREAK": "Step in with a worked example before continuing",
    "MASTERY_ACHIEVED": "Move on to the next concept",
}


def _correct(record: Mapping[str, Any]) -> bool:
    return record.get("isCorrect") is True


def _time(record: Mapping[str, Any]) -> Optional[float]:
    value = record.get("timeSpent")
    return float(value) if is_number(value) else None


def _mean(values: List[float]) -> float:
    return sum(values) / len(values)


class InsightDetector:
    """Compares a record against the learner's history for the same hurdle or concept."""

    def __init__(self, config: Optional[ValidationConfig] = None):
        self.config = config or settings.validation

    def related_history(
        self,
        record: Mapping[str, Any],
        history: Sequence[Mapping[str, Any]]
    ) -> List[Mapping[str, Any]]:
        """
        Earlier records sharing the record's diagnostic tag, or its atom when
        the record carries no tag. Oldest first.
        """
        tag = record.get("diagnosticTag")
        if tag:
            return [h for h in history if h.get("diagnosticTag") == tag]
        atom = record.get("atomId")
        return [h for h in history if h.get("atomId") == atom]

    def check(
        self,
        record: Mapping[str, Any],
        history: Optional[Sequence[Mapping[str, Any]]] = None
    ) -> List[Insight]:
        related = self.related_history(record, history or [])
        recent = related[-self.config.insight_window:]

        if not recent:
            return [self._insight("FIRST_ATTEMPT", InsightSeverity.INFO, "First record for this hurdle or concept")]

        insights = []
        is_correct = _correct(record)
        success_rate = sum(1 for r in recent if _correct(r)) / len(recent)
        context = {"success_rate": round(success_rate, 4), "window": len(recent)}

        if is_correct and success_rate < self.config.breakthrough_success_rate:
            insights.append(self._insight(
                "LEARNING_BREAKTHROUGH",
                InsightSeverity.LOW,
                f"Correct answer after a {success_rate:.0%} success rate",
                context,
            ))

        if not is_correct and success_rate > self.config.regression_success_rate:
            insights.append(self._insight(
                "REGRESSION_DETECTED",
                InsightSeverity.HIGH,
                f"Incorrect answer after a {success_rate:.0%} success rate",
                context,
            ))

        speed_insight = self._check_speed(record, recent)
        if speed_insight:
            insights.append(speed_insight)

        window = recent + [record]
        if self._check_guessing(window):
            insights.append(self._insight(
                "GUESSING_PATTERN",
                InsightSeverity.MEDIUM,
                "Incorrect answers are much faster than correct ones",
            ))

        failures = self._trailing_streak(window, correct=False)
        if not is_correct and failures >= self.config.failure_streak:
            insights.append(self._insight(
                "STRUGGLING_STREAK",
                InsightSeverity.CRITICAL,
                f"{failures} incorrect answers in a row",
                {"streak": failures},
            ))

        successes = self._trailing_streak(window, correct=True)
        if successes >= self.config.success_streak:
            insights.append(self._insight(
                "MASTERY_ACHIEVED",
                InsightSeverity.INFO,
                f"{successes} correct answers in a row",
                {"streak": successes},
            ))

        return insights

    def persistence_score(
        self,
        record: Mapping[str, Any],
        history: Optional[Sequence[Mapping[str, Any]]] = None
    ) -> Optional[float]:
        """
        Share of the tag's occurrences that stayed wrong (not recovered).

        None when the record carries no diagnostic tag.
        """
        tag = record.get("diagnosticTag")
        if not tag:
            return None
        occurrences = [h for h in (history or []) if h.get("diagnosticTag") == tag] + [record]
        unrecovered = sum(1 for r in occurrences if not _correct(r))
        return round(unrecovered / len(occurrences), 4)

    def _check_speed(self, record, recent) -> Optional[Insight]:
        current = _time(record)
        times = [t for t in (_time(r) for r in recent) if t is not None]
        if current is None or not times:
            return None
        average = _mean(times)
        if average <= 0:
            return None

        change = (current - average) / average
        context = {"change": round(change, 4), "average_ms": round(average)}
        if change > self.config.speed_change_ratio:
            return self._insight(
                "SPEED_SLOWDOWN",
                InsightSeverity.MEDIUM,
                f"Answer {change:.0%} slower than recent average",
                context,
            )
        if change < -self.config.speed_change_ratio:
            return self._insight(
                "SPEED_IMPROVEMENT",
                InsightSeverity.INFO,
                f"Answer {-change:.0%} faster than recent average",
                context,
            )
        return None

    def _check_guessing(self, window) -> bool:
        correct_times = []
        wrong_times = []
        for record in window:
            spent = _time(record)
            if spent is None:
                continue
            if _correct(record):
                correct_times.append(spent)
            else:
                wrong_times.append(spent)
        if not correct_times or len(wrong_times) <= 2:
            return False
        return _mean(wrong_times) < self.config.guessing_time_ratio * _mean(correct_times)

    @staticmethod
    def _trailing_streak(window, correct: bool) -> int:
        streak = 0
        for record in reversed(window):
            if _correct(record) != correct:
                break
            streak += 1
        return streak

    @staticmethod
    def _insight(
        code: str,
        severity: InsightSeverity,
        message: str,
        context: Optional[Dict[str, Any]] = None
    ) -> Insight:
        return Insight(
            code=code,
            severity=severity,
            message=message,
            recommendation=RECOMMENDATIONS[code],
            context=context or {},
        )
