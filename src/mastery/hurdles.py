"""
Misconception ("hurdle") counters with the consecutive-success clear rule.
"""

import logging
from dataclasses import dataclass, asdict
from typing import Dict, Optional, List, Mapping, Any

from src.shared.config import settings
from src.shared.logging import get_logger, log_with_context

logger = get_logger(__name__)


@dataclass
class HurdleState:
    """Counters for one misconception tag."""
    tag: str
    miss_count: int = 0
    consecutive_correct: int = 0
    times_cleared: int = 0

    @property
    def is_active(self) -> bool:
        return self.miss_count > 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class HurdleTracker:
    """Tracks misses per tag; a hurdle clears after N correct answers in a row."""

    def __init__(
        self,
        states: Optional[Mapping[str, HurdleState]] = None,
        clear_streak: Optional[int] = None
    ):
        self.clear_streak = clear_streak or settings.session.hurdle_clear_streak
        self._states: Dict[str, HurdleState] = dict(states or {})

    @classmethod
    def from_snapshot(cls, snapshot: Mapping[str, Any], **kwargs) -> "HurdleTracker":
        """Rebuild from a persisted map; plain integers are read as miss counts."""
        states = {}
        for tag, value in (snapshot or {}).items():
            if isinstance(value, Mapping):
                states[tag] = HurdleState(
                    tag=tag,
                    miss_count=max(0, int(value.get("miss_count", 0))),
                    consecutive_correct=max(0, int(value.get("consecutive_correct", 0))),
                    times_cleared=max(0, int(value.get("times_cleared", 0))),
                )
            else:
                states[tag] = HurdleState(tag=tag, miss_count=max(0, int(value)))
        return cls(states, **kwargs)

    def on_answer(self, tag: Optional[str], is_correct: bool) -> Optional[HurdleState]:
        """
        Apply one answer to the hurdle for `tag`.

        Returns the updated state, or None when the answer carries no tag.
        """
        if not tag:
            return None

        state = self._states.get(tag)
        if state is None:
            state = HurdleState(tag=tag)
            self._states[tag] = state

        if not is_correct:
            state.miss_count += 1
            state.consecutive_correct = 0
            return state

        state.consecutive_correct += 1
        if state.consecutive_correct == self.clear_streak:
            was_active = state.is_active
            state.miss_count = 0
            state.consecutive_correct = 0
            if was_active:
                state.times_cleared += 1
                log_with_context(
                    logger,
                    logging.INFO,
                    f"Hurdle {tag} defeated",
                    action="hurdle_cleared",
                    tag=tag,
                )

        return state

    def get(self, tag: str) -> Optional[HurdleState]:
        return self._states.get(tag)

    def active_hurdles(self) -> List[HurdleState]:
        """All hurdles with missCount > 0."""
        return [s for s in self._states.values() if s.is_active]

    def active_tags(self) -> set:
        return {s.tag for s in self.active_hurdles()}

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        return {tag: state.to_dict() for tag, state in self._states.items()}
