"""
ValidationPipeline: schema -> semantic -> insight tiers over one telemetry record.
"""

import logging
from typing import List, Dict, Any, Optional, Mapping, Sequence, Union, Iterable

from src.mastery.estimator import MasteryEstimator
from src.mastery.models import TelemetryRecord
from src.shared.config import settings, ValidationConfig
from src.shared.logging import get_logger, log_with_context
from src.validation.insight import InsightDetector
from src.validation.models import ValidationReport
from src.validation.schema import SchemaValidator
from src.validation.semantic import SemanticValidator

logger = get_logger(__name__)

RecordInput = Union[TelemetryRecord, Mapping[str, Any]]


def to_wire(record: RecordInput) -> Dict[str, Any]:
    """Wire dict for a model or an already-decoded mapping."""
    if isinstance(record, TelemetryRecord):
        return record.to_wire()
    return dict(record)


class ValidationPipeline:
    """
    Runs all tiers independently and collects their output into one report.

    The status is FAIL iff the schema tier found an error.
    """

    def __init__(
        self,
        config: Optional[ValidationConfig] = None,
        insights_enabled: bool = True,
        estimator: Optional[MasteryEstimator] = None
    ):
        self.config = config or settings.validation
        self.schema = SchemaValidator(self.config)
        # Speed bands must match the estimator that produced the records
        self.semantic = SemanticValidator(self.config, estimator)
        self.insights = InsightDetector(self.config)
        self.insights_enabled = insights_enabled

    def run(
        self,
        record: RecordInput,
        history: Optional[Sequence[RecordInput]] = None,
        now_ms: Optional[int] = None
    ) -> ValidationReport:
        wire = to_wire(record)
        past = [to_wire(h) for h in (history or [])]

        issues = self.schema.validate(wire)
        issues.extend(self.semantic.validate(wire, now_ms=now_ms))

        report = ValidationReport(
            question_id=wire.get("questionId"),
            timestamp=wire.get("timestamp"),
            issues=issues,
            user_id=wire.get("userId"),
        )

        if self.insights_enabled:
            report.insights = self.insights.check(wire, past)
            report.persistence_score = self.insights.persistence_score(wire, past)

        self._log_report(report, wire)
        return report

    def run_many(self, records: Iterable[RecordInput], now_ms: Optional[int] = None) -> List[ValidationReport]:
        """
        Validate records in order; each record's history is the earlier
        records of the same user.
        """
        history: Dict[Optional[str], List[Dict[str, Any]]] = {}
        reports = []
        for record in records:
            wire = to_wire(record)
            past = history.setdefault(wire.get("userId"), [])
            reports.append(self.run(wire, past, now_ms=now_ms))
            past.append(wire)
        return reports

    def _log_report(self, report: ValidationReport, wire: Mapping[str, Any]):
        session_id = wire.get("sessionId")
        if not report.passed:
            log_with_context(
                logger,
                logging.WARNING,
                f"Telemetry FAIL for {report.question_id}: {[i.code for i in report.errors]}",
                user_id=report.user_id,
                action="validation_fail",
                session_id=session_id,
            )
        for issue in report.semantic_issues:
            log_with_context(
                logger,
                logging.INFO,
                f"Semantic {issue.severity.value} {issue.code} on {report.question_id}: {issue.message}",
                user_id=report.user_id,
                action="validation_warning",
                session_id=session_id,
                code=issue.code,
            )
