"""
Mission selector: assembles a balanced practice set from mastery and hurdle state.

The default plan is the "3-4-3" mix (warm-ups, hurdle-killers, frontier),
topped up with random questions. The extended plan fills 14 template- and
phase-constrained slots.
"""

import random
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Dict, Optional, Sequence, Mapping, Iterable, Union, FrozenSet

from src.mastery.hurdles import HurdleTracker, HurdleState
from src.mastery.models import Question
from src.mastery.store import MasteryStore
from src.mission.phases import MissionPhase, PhaseSpec, MISSION_PHASES
from src.shared.config import settings, MissionConfig
from src.shared.logging import get_logger, log_with_context

logger = get_logger(__name__)

MasteryInput = Union[MasteryStore, Mapping[str, float], None]
HurdleInput = Union[HurdleTracker, Mapping[str, Any], Iterable[HurdleState], None]


class MissionCategory(str, Enum):
    """Why a question was picked."""
    WARM_UP = "WARM_UP"
    HURDLE_KILLER = "HURDLE_KILLER"
    FRONTIER = "FRONTIER"
    FILL = "FILL"
    PHASE = "PHASE"


@dataclass(frozen=True)
class MissionSlot:
    """One position of the extended mission."""
    slot_index: int
    phase: MissionPhase
    intent: str
    template_constraint: FrozenSet[str]
    selected_concept_id: Optional[str] = None
    question_id: Optional[str] = None


@dataclass
class MissionPick:
    question: Question
    category: MissionCategory
    slot: Optional[MissionSlot] = None


@dataclass
class MissionPlan:
    """Ordered picks plus the category/slot each came from."""
    picks: List[MissionPick] = field(default_factory=list)

    @property
    def questions(self) -> List[Question]:
        return [p.question for p in self.picks]

    @property
    def slots(self) -> List[MissionSlot]:
        return [p.slot for p in self.picks if p.slot is not None]

    def by_category(self, category: MissionCategory) -> List[Question]:
        return [p.question for p in self.picks if p.category == category]

    def diversity(self) -> Dict[str, float]:
        """Template variety of the plan."""
        total = len(self.picks)
        templates = {p.question.template_id for p in self.picks if p.question.template_id}
        return {
            "unique_templates": len(templates),
            "total_questions": total,
            "diversity_ratio": (len(templates) / total) if total else 0.0,
        }

    def __len__(self) -> int:
        return len(self.picks)


def _scores(mastery: MasteryInput) -> Dict[str, float]:
    if mastery is None:
        return {}
    if isinstance(mastery, MasteryStore):
        return mastery.snapshot()
    return dict(mastery)


def _active_tags(hurdles: HurdleInput) -> set:
    if hurdles is None:
        return set()
    if isinstance(hurdles, HurdleTracker):
        return hurdles.active_tags()
    if isinstance(hurdles, Mapping):
        return HurdleTracker.from_snapshot(hurdles).active_tags()
    return {h.tag for h in hurdles if h.miss_count > 0}


class MissionSelector:
    """Builds the question list served by a practice session."""

    def __init__(
        self,
        config: Optional[MissionConfig] = None,
        rng: Optional[random.Random] = None,
        prior: Optional[float] = None
    ):
        self.config = config or settings.mission
        self.rng = rng or random.Random()
        self.prior = prior if prior is not None else settings.mastery.prior

    def select(
        self,
        all_questions: Sequence[Question],
        mastery: MasteryInput,
        hurdles: HurdleInput,
        target: Optional[int] = None
    ) -> List[Question]:
        """Ordered question list for the 3-4-3 mission."""
        return self.plan(all_questions, mastery, hurdles, target).questions

    def select_extended(
        self,
        all_questions: Sequence[Question],
        mastery: MasteryInput,
        hurdles: HurdleInput
    ) -> List[Question]:
        """Ordered question list for the 14-slot phased mission."""
        return self.plan_extended(all_questions, mastery, hurdles).questions

    def plan(
        self,
        all_questions: Sequence[Question],
        mastery: MasteryInput,
        hurdles: HurdleInput,
        target: Optional[int] = None
    ) -> MissionPlan:
        target = target or self.config.target
        scores = _scores(mastery)
        active = _active_tags(hurdles)
        used: set = set()
        picks: List[MissionPick] = []

        categories = [
            (
                MissionCategory.WARM_UP,
                self.config.warm_up_quota,
                lambda q: self._is_warm_up(q, scores),
            ),
            (
                MissionCategory.HURDLE_KILLER,
                self.config.hurdle_killer_quota,
                lambda q: bool(q.misconception_tags & active),
            ),
            (
                MissionCategory.FRONTIER,
                self.config.frontier_quota,
                lambda q: self._is_frontier(q, scores),
            ),
        ]

        for category, quota, eligible in categories:
            pool = [q for q in all_questions if q.id not in used and eligible(q)]
            for question in self._sample(pool, quota):
                used.add(question.id)
                picks.append(MissionPick(question, category))

        if len(picks) < target:
            remaining = [q for q in all_questions if q.id not in used]
            for question in self._sample(remaining, target - len(picks)):
                used.add(question.id)
                picks.append(MissionPick(question, MissionCategory.FILL))

        self.rng.shuffle(picks)
        self._log_plan(picks, len(all_questions), active)
        return MissionPlan(picks)

    def plan_extended(
        self,
        all_questions: Sequence[Question],
        mastery: MasteryInput,
        hurdles: HurdleInput,
        phases: Sequence[PhaseSpec] = MISSION_PHASES
    ) -> MissionPlan:
        scores = _scores(mastery)
        active = _active_tags(hurdles)
        used: set = set()
        picks: List[MissionPick] = []
        slot_index = 0

        for spec in phases:
            for i in range(spec.slots):
                if slot_index >= self.config.extended_target:
                    break
                remaining = [q for q in all_questions if q.id not in used]
                if not remaining:
                    break

                template = spec.templates[i % len(spec.templates)]
                candidates = self._phase_candidates(spec.phase, remaining, scores, active)
                question = self._pick_for_slot(candidates, remaining, template, spec)

                used.add(question.id)
                slot = MissionSlot(
                    slot_index=slot_index,
                    phase=spec.phase,
                    intent=spec.intent,
                    template_constraint=frozenset({template}),
                    selected_concept_id=question.concept_id,
                    question_id=question.id,
                )
                picks.append(MissionPick(question, MissionCategory.PHASE, slot))
                slot_index += 1

        plan = MissionPlan(picks)
        logger.info(
            f"Extended mission planned: {len(picks)} slots from {len(all_questions)} questions, "
            f"diversity={plan.diversity()['diversity_ratio']:.2f}"
        )
        return plan

    def _pick_for_slot(
        self,
        candidates: List[Question],
        remaining: List[Question],
        template: str,
        spec: PhaseSpec
    ) -> Question:
        # Exact template, then any template of the phase, then the phase pool,
        # then the whole remaining bank
        for question in candidates:
            if question.template_id == template:
                return question
        for question in candidates:
            if question.template_id in spec.templates:
                return question
        if candidates:
            return candidates[0]
        return self.rng.choice(remaining)

    def _phase_candidates(
        self,
        phase: MissionPhase,
        remaining: List[Question],
        scores: Dict[str, float],
        active: set
    ) -> List[Question]:
        pool = list(remaining)
        self.rng.shuffle(pool)
        score = lambda q: scores.get(q.concept_id, self.prior)

        if phase == MissionPhase.WARM_UP:
            return [q for q in pool if self._is_warm_up(q, scores)]

        if phase == MissionPhase.DIAGNOSE:
            killers = [q for q in pool if q.misconception_tags & active]
            struggling = [
                q for q in pool
                if q not in killers and q.misconception_tags and score(q) < self.config.warm_up_floor
            ]
            return killers + struggling

        if phase == MissionPhase.GUIDED_PRACTICE:
            weak = [q for q in pool if score(q) < 0.6]
            strong = [q for q in pool if score(q) >= self.config.warm_up_floor]
            mixed: List[Question] = []
            for pair in zip(weak, strong):
                mixed.extend(pair)
            longer = weak if len(weak) > len(strong) else strong
            mixed.extend(longer[min(len(weak), len(strong)):])
            return mixed

        if phase == MissionPhase.ADVANCED:
            return sorted(
                [q for q in pool if score(q) >= 0.5],
                key=score,
                reverse=True,
            )

        return [q for q in pool if score(q) >= 0.6]

    def _is_warm_up(self, question: Question, scores: Dict[str, float]) -> bool:
        value = scores.get(question.concept_id)
        return value is not None and value > self.config.warm_up_floor

    def _is_frontier(self, question: Question, scores: Dict[str, float]) -> bool:
        value = scores.get(question.concept_id)
        return value is None or value < self.config.frontier_ceiling

    def _sample(self, pool: List[Question], count: int) -> List[Question]:
        if count <= 0 or not pool:
            return []
        return self.rng.sample(pool, min(count, len(pool)))

    def _log_plan(self, picks: List[MissionPick], bank_size: int, active: set):
        counts = {c.value: 0 for c in MissionCategory}
        for pick in picks:
            counts[pick.category.value] += 1
        log_with_context(
            logger,
            logging.INFO,
            f"Mission planned: {len(picks)} questions from bank of {bank_size}",
            action="mission_planned",
            categories=counts,
            active_hurdles=sorted(active),
        )
