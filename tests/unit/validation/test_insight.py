"""
Tests for the insight tier.
"""

import pytest

from src.validation.insight import InsightDetector
from src.validation.models import InsightSeverity


@pytest.fixture
def detector():
    return InsightDetector()


def miss(wire_factory, tag="SIGN_IGNORANCE", time_spent=5000, **kwargs):
    return wire_factory(
        isCorrect=False, studentAnswer="-4", diagnosticTag=tag,
        masteryAfter=0.4, timeSpent=time_spent, **kwargs
    )


def hit(wire_factory, tag="SIGN_IGNORANCE", time_spent=5000):
    return wire_factory(diagnosticTag=tag, timeSpent=time_spent)


def codes(insights):
    return [i.code for i in insights]


def test_first_attempt_without_history(detector, wire_factory):
    insights = detector.check(wire_factory(), [])
    assert codes(insights) == ["FIRST_ATTEMPT"]
    assert insights[0].severity == InsightSeverity.INFO


def test_history_is_scoped_to_tag_or_atom(detector, wire_factory):
    other_tag = [miss(wire_factory, tag="UNIT_CONFUSION")]
    assert codes(detector.check(miss(wire_factory), other_tag)) == ["FIRST_ATTEMPT"]

    other_atom = [wire_factory(atomId="B")]
    assert codes(detector.check(wire_factory(), other_atom)) == ["FIRST_ATTEMPT"]


def test_breakthrough_after_mostly_misses(detector, wire_factory):
    history = [miss(wire_factory) for _ in range(3)] + [hit(wire_factory)] + [miss(wire_factory)]
    assert "LEARNING_BREAKTHROUGH" in codes(detector.check(hit(wire_factory), history))


def test_regression_after_mostly_hits(detector, wire_factory):
    history = [hit(wire_factory) for _ in range(4)]
    insights = detector.check(miss(wire_factory), history)
    regression = [i for i in insights if i.code == "REGRESSION_DETECTED"]
    assert len(regression) == 1
    assert regression[0].severity == InsightSeverity.HIGH


def test_speed_changes(detector, wire_factory):
    history = [hit(wire_factory, time_spent=10000) for _ in range(2)]
    assert "SPEED_SLOWDOWN" in codes(detector.check(hit(wire_factory, time_spent=16000), history))
    assert "SPEED_IMPROVEMENT" in codes(detector.check(hit(wire_factory, time_spent=4000), history))
    steady = codes(detector.check(hit(wire_factory, time_spent=12000), history))
    assert "SPEED_SLOWDOWN" not in steady
    assert "SPEED_IMPROVEMENT" not in steady


def test_guessing_pattern(detector, wire_factory):
    history = [
        hit(wire_factory, time_spent=20000),
        miss(wire_factory, time_spent=2000),
        miss(wire_factory, time_spent=2500),
    ]
    assert "GUESSING_PATTERN" in codes(detector.check(miss(wire_factory, time_spent=3000), history))


def test_struggling_streak_is_critical(detector, wire_factory):
    history = [miss(wire_factory) for _ in range(3)]
    insights = detector.check(miss(wire_factory), history)
    streak = [i for i in insights if i.code == "STRUGGLING_STREAK"]
    assert len(streak) == 1
    assert streak[0].severity == InsightSeverity.CRITICAL
    assert streak[0].context["streak"] == 4


def test_mastery_achieved_after_five_in_a_row(detector, wire_factory):
    history = [hit(wire_factory) for _ in range(4)]
    assert "MASTERY_ACHIEVED" in codes(detector.check(hit(wire_factory), history))
    assert "MASTERY_ACHIEVED" not in codes(detector.check(hit(wire_factory), history[:3]))


def test_persistence_score(detector, wire_factory):
    recovered = wire_factory(diagnosticTag="SIGN_IGNORANCE", isRecovered=True, recoveryVelocity=0.6)
    history = [miss(wire_factory), recovered, miss(wire_factory)]
    assert detector.persistence_score(miss(wire_factory), history) == 0.75
    assert detector.persistence_score(wire_factory(), history) is None
