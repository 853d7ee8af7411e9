"""
In-memory mastery map owned by one learner's session.
"""

from typing import Dict, Optional, Iterable, Mapping

from src.mastery.models import ConceptMastery
from src.shared.config import settings, MasteryConfig


class MasteryStore:
    """Concept -> mastery score, clamped to the configured bounds."""

    def __init__(
        self,
        scores: Optional[Mapping[str, float]] = None,
        config: Optional[MasteryConfig] = None
    ):
        self.config = config or settings.mastery
        self._scores: Dict[str, float] = {}
        self._touched: set = set()

        for concept_id, score in (scores or {}).items():
            self._scores[concept_id] = self.clamp(score)

    def clamp(self, score: float) -> float:
        return min(self.config.ceiling, max(self.config.floor, float(score)))

    def has_seen(self, concept_id: str) -> bool:
        return concept_id in self._scores

    def get(self, concept_id: str) -> Optional[float]:
        """Stored score, or None for a concept never encountered."""
        return self._scores.get(concept_id)

    def score(self, concept_id: str) -> float:
        """Stored score, falling back to the prior for unseen concepts."""
        return self._scores.get(concept_id, self.config.prior)

    def set(self, concept_id: str, score: float) -> ConceptMastery:
        """Write a score for `concept_id` and mark it as touched this session."""
        clamped = self.clamp(score)
        self._scores[concept_id] = clamped
        self._touched.add(concept_id)
        return ConceptMastery(concept_id=concept_id, score=clamped)

    @property
    def touched(self) -> frozenset:
        """Concepts written since the store was created or last reset."""
        return frozenset(self._touched)

    def reset_touched(self):
        self._touched.clear()

    def mean(self, concept_ids: Optional[Iterable[str]] = None) -> float:
        """Mean score over `concept_ids` (default: touched concepts); 0.0 if empty."""
        ids = list(self._touched if concept_ids is None else concept_ids)
        if not ids:
            return 0.0
        return sum(self.score(c) for c in ids) / len(ids)

    def entries(self) -> list:
        return [ConceptMastery(concept_id=c, score=s) for c, s in sorted(self._scores.items())]

    def snapshot(self) -> Dict[str, float]:
        """Copy of the full map for persistence."""
        return dict(self._scores)

    def __contains__(self, concept_id: str) -> bool:
        return concept_id in self._scores

    def __len__(self) -> int:
        return len(self._scores)
