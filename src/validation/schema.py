"""
Schema tier: field presence, primitive types, enum membership and bounds.

Works on the camelCase wire dict. Pure: the same record always yields the
same issue list.
"""

from dataclasses import dataclass
from typing import List, Mapping, Any, Optional, Tuple

from src.mastery.models import SpeedRating
from src.shared.config import settings, ValidationConfig
from src.validation.models import ValidationIssue, ValidationTier, Severity

MISSING_REQUIRED = "MISSING_REQUIRED"
TYPE_MISMATCH = "TYPE_MISMATCH"
OUT_OF_RANGE = "OUT_OF_RANGE"
INVALID_ENUM = "INVALID_ENUM"


@dataclass(frozen=True)
class FieldContract:
    name: str
    kind: str  # "str", "bool", "int", "float"
    bounds: Optional[Tuple[float, float]] = None
    enum: Optional[Tuple[str, ...]] = None


def is_bool(value: Any) -> bool:
    return isinstance(value, bool)


def is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class SchemaValidator:
    """Single source of truth for the telemetry field contracts."""

    def __init__(self, config: Optional[ValidationConfig] = None):
        self.config = config or settings.validation
        tags = tuple(self.config.diagnostic_tags)
        speeds = tuple(s.value for s in SpeedRating)

        self.required = (
            FieldContract("questionId", "str"),
            FieldContract("studentAnswer", "str"),
            FieldContract("correctAnswer", "str"),
            FieldContract("isCorrect", "bool"),
            FieldContract("timeSpent", "int", bounds=(0, self.config.time_spent_max_ms)),
            FieldContract("speedRating", "str", enum=speeds),
            FieldContract("masteryBefore", "float", bounds=(0.0, 1.0)),
            FieldContract("masteryAfter", "float", bounds=(0.0, 1.0)),
            FieldContract("isRecovered", "bool"),
            FieldContract("atomId", "str"),
            FieldContract("timestamp", "int", bounds=(0, float("inf"))),
        )
        self.diagnostic_tag = FieldContract("diagnosticTag", "str", enum=tags)
        self.recovery_velocity = FieldContract("recoveryVelocity", "float", bounds=(0.0, 1.0))

    def validate(self, record: Mapping[str, Any]) -> List[ValidationIssue]:
        issues: List[ValidationIssue] = []

        for contract in self.required:
            issues.extend(self._check(record, contract, required=True))

        for name in ("studentAnswer", "correctAnswer"):
            value = record.get(name)
            if isinstance(value, str) and value:
                length = len(value)
                if not self.config.answer_min_length <= length <= self.config.answer_max_length:
                    issues.append(self._issue(
                        name,
                        OUT_OF_RANGE,
                        f"{name} length {length} outside "
                        f"[{self.config.answer_min_length}, {self.config.answer_max_length}]",
                    ))

        # Conditionally required fields
        is_correct = record.get("isCorrect")
        issues.extend(self._check(
            record, self.diagnostic_tag, required=is_correct is False
        ))

        is_recovered = record.get("isRecovered")
        issues.extend(self._check(
            record, self.recovery_velocity, required=is_recovered is True
        ))

        return issues

    def _check(self, record: Mapping[str, Any], contract: FieldContract, required: bool) -> List[ValidationIssue]:
        name = contract.name
        value = record.get(name)

        if value is None or (contract.kind == "str" and value == "" and contract.enum is None):
            if required:
                return [self._issue(name, MISSING_REQUIRED, f"{name} is required")]
            return []

        if not self._type_ok(contract.kind, value):
            return [self._issue(
                name,
                TYPE_MISMATCH,
                f"{name} must be {contract.kind}, got {type(value).__name__}",
            )]

        if contract.enum is not None and value not in contract.enum:
            return [self._issue(
                name,
                INVALID_ENUM,
                f"{name} '{value}' not in {list(contract.enum)}",
            )]

        if contract.bounds is not None:
            low, high = contract.bounds
            if not low <= value <= high:
                return [self._issue(
                    name,
                    OUT_OF_RANGE,
                    f"{name} {value} outside [{low}, {high}]",
                )]

        return []

    @staticmethod
    def _type_ok(kind: str, value: Any) -> bool:
        if kind == "str":
            return isinstance(value, str)
        if kind == "bool":
            return is_bool(value)
        if kind == "int":
            return is_int(value)
        return is_number(value)

    @staticmethod
    def _issue(field_name: str, code: str, message: str) -> ValidationIssue:
        return ValidationIssue(
            field=field_name,
            tier=ValidationTier.SCHEMA,
            severity=Severity.ERROR,
            code=code,
            message=message,
        )
