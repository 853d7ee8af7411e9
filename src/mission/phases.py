"""
Phase plan for the extended 14-slot daily mission.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Tuple


class MissionPhase(str, Enum):
    """Pedagogical phases, in serving order."""
    WARM_UP = "WARM_UP"
    DIAGNOSE = "DIAGNOSE"
    GUIDED_PRACTICE = "GUIDED_PRACTICE"
    ADVANCED = "ADVANCED"
    REFLECTION = "REFLECTION"


@dataclass(frozen=True)
class PhaseSpec:
    phase: MissionPhase
    slots: int
    intent: str
    templates: Tuple[str, ...]


MISSION_PHASES: Tuple[PhaseSpec, ...] = (
    PhaseSpec(
        MissionPhase.WARM_UP,
        3,
        "Review concepts the student already holds",
        ("MCQ_CONCEPT", "NUMBER_LINE_PLACE", "NUMERIC_INPUT"),
    ),
    PhaseSpec(
        MissionPhase.DIAGNOSE,
        3,
        "Target active misconceptions",
        ("ERROR_ANALYSIS", "MCQ_CONCEPT", "MATCHING"),
    ),
    PhaseSpec(
        MissionPhase.GUIDED_PRACTICE,
        3,
        "Balanced practice across weak and strong concepts",
        ("BALANCE_OPS", "CLASSIFY_SORT", "DRAG_DROP_MATCH"),
    ),
    PhaseSpec(
        MissionPhase.ADVANCED,
        3,
        "Deep reasoning on the strongest concepts",
        ("STEP_BUILDER", "MULTI_STEP_WORD", "EXPRESSION_INPUT"),
    ),
    PhaseSpec(
        MissionPhase.REFLECTION,
        2,
        "Transfer and consolidation",
        ("SHORT_EXPLAIN", "TRANSFER_MINI"),
    ),
)
