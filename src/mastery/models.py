"""
Pydantic models and enums shared by the mastery, session and validation layers.
"""

from enum import Enum
from typing import Optional, List, Dict, Any

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class SpeedRating(str, Enum):
    """Thinking-time band of one answer."""
    SPRINT = "SPRINT"
    STEADY = "STEADY"
    DEEP = "DEEP"


class SessionMode(str, Enum):
    """Session variants; the mode selects miss penalty and timing bands."""
    DIAGNOSTIC = "DIAGNOSTIC"
    PRACTICE = "PRACTICE"


class BehaviorPattern(str, Enum):
    """Learning-behavior label attached to every telemetry record."""
    FLUENT = "FLUENT"
    DELIBERATE = "DELIBERATE"
    LATENT_KNOWLEDGE = "LATENT_KNOWLEDGE"
    SLOW_REPAIR = "SLOW_REPAIR"
    MISCONCEPTION = "MISCONCEPTION"
    STRUGGLE = "STRUGGLE"


class Distractor(BaseModel):
    """Wrong answer option, optionally tagged with the misconception it reveals."""
    option: str
    misconception_tag: Optional[str] = None


class Question(BaseModel):
    """Question bank entry."""
    id: str
    concept_id: str
    prompt: str = ""
    correct_answer: str
    distractors: List[Distractor] = Field(default_factory=list)
    difficulty: Optional[int] = Field(default=None, ge=1)
    template_id: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @property
    def misconception_tags(self) -> set:
        """Tags carried by any of the distractors."""
        return {d.misconception_tag for d in self.distractors if d.misconception_tag}

    def tag_for(self, choice: str) -> Optional[str]:
        """Misconception tag of the distractor matching `choice`, if any."""
        for distractor in self.distractors:
            if distractor.option == choice:
                return distractor.misconception_tag
        return None

    def is_correct(self, choice: str) -> bool:
        return choice.strip().lower() == self.correct_answer.strip().lower()


class ConceptMastery(BaseModel):
    """Mastery score for one concept."""
    concept_id: str
    score: float = Field(ge=0.1, le=0.99)


class ResponseEvent(BaseModel):
    """
    One submitted answer, as reported by the presentation layer.

    `is_correct` is the first-attempt outcome. `is_recovered` is True when the
    student missed first and then answered the guided follow-up correctly.
    `misconception_tag` is the tag of the chosen distractor for a miss, or the
    hurdle the question targets for a correct answer.
    """
    question_id: str
    concept_id: str
    student_choice: str
    correct_choice: str
    is_correct: bool
    is_recovered: bool = False
    misconception_tag: Optional[str] = None
    thinking_time_ms: int = Field(ge=0)
    prior_score: Optional[float] = None
    recovery_time_ms: Optional[int] = Field(default=None, ge=0)

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def _recovery_requires_miss(self) -> "ResponseEvent":
        if self.is_recovered and self.is_correct:
            raise ValueError("is_recovered requires a missed first attempt")
        return self

    @classmethod
    def from_choice(
        cls,
        question: Question,
        choice: str,
        thinking_time_ms: int,
        is_recovered: bool = False,
        recovery_time_ms: Optional[int] = None,
    ) -> "ResponseEvent":
        """Build an event for `question` from the option the student picked."""
        is_correct = question.is_correct(choice)
        tag = None if is_correct else question.tag_for(choice)
        return cls(
            question_id=question.id,
            concept_id=question.concept_id,
            student_choice=choice,
            correct_choice=question.correct_answer,
            is_correct=is_correct,
            is_recovered=is_recovered and not is_correct,
            misconception_tag=tag,
            thinking_time_ms=thinking_time_ms,
            recovery_time_ms=recovery_time_ms,
        )


class TelemetryRecord(BaseModel):
    """
    Append-only record of one answered question.

    Field names serialize to the camelCase wire shape (questionId,
    studentAnswer, timeSpent, atomId, ...).
    """
    question_id: str
    student_answer: str
    correct_answer: str
    is_correct: bool
    time_spent: int
    speed_rating: SpeedRating
    mastery_before: float
    mastery_after: float
    diagnostic_tag: Optional[str] = None
    is_recovered: bool = False
    recovery_velocity: Optional[float] = None
    atom_id: str
    timestamp: int

    # Context carried beyond the wire minimum
    mode: Optional[SessionMode] = None
    difficulty: Optional[int] = None
    behavior: Optional[BehaviorPattern] = None
    session_id: Optional[str] = None
    user_id: Optional[str] = None

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_wire(self) -> Dict[str, Any]:
        """Serialize to the camelCase wire dict consumed by validation and sinks."""
        return self.model_dump(by_alias=True, mode="json")
