"""
Pytest fixtures for mastery engine tests.
"""

import random
import pytest
from typing import Dict, Any, List, Optional

from src.mastery.hurdles import HurdleTracker
from src.mastery.models import Question, Distractor
from src.mastery.store import MasteryStore


def make_question(
    qid: str,
    concept_id: str = "A",
    difficulty: Optional[int] = 1,
    tags: Optional[List[str]] = None,
    template_id: Optional[str] = None,
    correct: str = "4"
) -> Question:
    """Question with one tagged distractor per tag (options w0, w1, ...)."""
    distractors = [
        Distractor(option=f"w{i}", misconception_tag=tag)
        for i, tag in enumerate(tags or [])
    ]
    distractors.append(Distractor(option="untagged"))
    return Question(
        id=qid,
        concept_id=concept_id,
        prompt=f"Question {qid}",
        correct_answer=correct,
        distractors=distractors,
        difficulty=difficulty,
        template_id=template_id,
    )


def make_wire(**overrides) -> Dict[str, Any]:
    """A valid camelCase telemetry record; overrides replace fields."""
    record = {
        "questionId": "q1",
        "studentAnswer": "4",
        "correctAnswer": "4",
        "isCorrect": True,
        "timeSpent": 5000,
        "speedRating": "STEADY",
        "masteryBefore": 0.5,
        "masteryAfter": 0.6,
        "diagnosticTag": None,
        "isRecovered": False,
        "recoveryVelocity": None,
        "atomId": "A",
        "timestamp": 1_700_000_000_000,
    }
    record.update(overrides)
    return record


class FakeClock:
    """Manually advanced millisecond clock."""

    def __init__(self, start: int = 0):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int):
        self.now += ms


@pytest.fixture
def question_factory():
    return make_question


@pytest.fixture
def wire_factory():
    return make_wire


@pytest.fixture
def clock():
    return FakeClock(start=1_000)


@pytest.fixture
def wall_clock():
    return FakeClock(start=1_700_000_000_000)


@pytest.fixture
def store():
    return MasteryStore()


@pytest.fixture
def tracker():
    return HurdleTracker()


@pytest.fixture
def rng():
    return random.Random(42)


@pytest.fixture
def bank():
    """Twelve questions over three concepts, increasing difficulty."""
    questions = []
    for i in range(12):
        concept = "ABC"[i % 3]
        questions.append(make_question(
            f"q{i + 1}",
            concept_id=concept,
            difficulty=i // 3 + 1,
            tags=["SIGN_IGNORANCE"] if i % 2 == 0 else ["UNIT_CONFUSION"],
        ))
    return questions
