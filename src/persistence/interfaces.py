"""
Boundary contracts for the external collaborators the engine talks to.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional

from src.mastery.models import Question, TelemetryRecord


@dataclass
class LearnerState:
    """Persisted mastery map and hurdle counters of one learner."""
    mastery: Dict[str, float] = field(default_factory=dict)
    hurdles: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"mastery": dict(self.mastery), "hurdles": dict(self.hurdles)}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "LearnerState":
        data = data or {}
        return cls(
            mastery=dict(data.get("mastery") or {}),
            hurdles=dict(data.get("hurdles") or {}),
        )


class QuestionBank(ABC):
    """Read access to the question bank."""

    @abstractmethod
    def fetch_all(self) -> List[Question]:
        pass


class LearnerStateRepository(ABC):
    """Load/save of per-learner mastery and hurdle state."""

    @abstractmethod
    def load(self, user_id: str) -> LearnerState:
        """State for `user_id`; an empty state for a new learner."""
        pass

    @abstractmethod
    def save(self, user_id: str, state: LearnerState) -> bool:
        pass


class TelemetrySink(ABC):
    """Append-only telemetry log keyed by (questionId, timestamp)."""

    @abstractmethod
    def append(self, record: TelemetryRecord) -> bool:
        """Returns False when a record with the same key already exists."""
        pass


class ReportPublisher(ABC):
    """Downstream consumer of audited telemetry (dashboards)."""

    @abstractmethod
    async def publish(self, record: Dict[str, Any], report: Dict[str, Any]):
        pass
