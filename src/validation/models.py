"""
Validation issues, insights and the per-record report.
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import List, Dict, Any, Optional


class ValidationTier(str, Enum):
    SCHEMA = "SCHEMA"
    SEMANTIC = "SEMANTIC"


class Severity(str, Enum):
    ERROR = "ERROR"
    WARNING = "WARNING"


class ValidationStatus(str, Enum):
    PASS = "PASS"
    FAIL = "FAIL"


class InsightSeverity(str, Enum):
    """Insight severity levels."""
    INFO = "INFO"
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


@dataclass(frozen=True)
class ValidationIssue:
    """One problem found on a record; never mutates the record."""
    field: str
    tier: ValidationTier
    severity: Severity
    code: str
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field": self.field,
            "tier": self.tier.value,
            "severity": self.severity.value,
            "code": self.code,
            "message": self.message,
        }


@dataclass(frozen=True)
class Insight:
    """Informational pattern found across a learner's recent records."""
    code: str
    severity: InsightSeverity
    message: str
    recommendation: str
    context: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["severity"] = self.severity.value
        return data


@dataclass
class ValidationReport:
    """
    Outcome of running every tier against one record.

    Only schema issues decide the status; semantic issues are reported as
    warnings whatever their severity.
    """
    question_id: Optional[str]
    timestamp: Optional[int]
    issues: List[ValidationIssue] = field(default_factory=list)
    insights: List[Insight] = field(default_factory=list)
    user_id: Optional[str] = None
    persistence_score: Optional[float] = None

    @property
    def schema_issues(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.tier == ValidationTier.SCHEMA]

    @property
    def semantic_issues(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.tier == ValidationTier.SEMANTIC]

    @property
    def errors(self) -> List[ValidationIssue]:
        """Blocking issues."""
        return [i for i in self.schema_issues if i.severity == Severity.ERROR]

    @property
    def warnings(self) -> List[ValidationIssue]:
        """Non-blocking issues."""
        return self.semantic_issues + [
            i for i in self.schema_issues if i.severity != Severity.ERROR
        ]

    @property
    def status(self) -> ValidationStatus:
        return ValidationStatus.FAIL if self.errors else ValidationStatus.PASS

    @property
    def passed(self) -> bool:
        return self.status == ValidationStatus.PASS

    @property
    def quality_score(self) -> float:
        semantic = self.semantic_issues
        score = (
            1.0
            - 0.3 * len(self.errors)
            - 0.15 * sum(1 for i in semantic if i.severity == Severity.ERROR)
            - 0.05 * sum(1 for i in semantic if i.severity == Severity.WARNING)
        )
        return round(min(1.0, max(0.0, score)), 4)

    def codes(self) -> List[str]:
        return [i.code for i in self.issues]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "questionId": self.question_id,
            "timestamp": self.timestamp,
            "userId": self.user_id,
            "status": self.status.value,
            "qualityScore": self.quality_score,
            "persistenceScore": self.persistence_score,
            "errors": [i.to_dict() for i in self.errors],
            "warnings": [i.to_dict() for i in self.warnings],
            "insights": [i.to_dict() for i in self.insights],
        }
