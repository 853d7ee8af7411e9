"""
Tests for the schema tier.
"""

import pytest

from src.validation.models import ValidationTier, Severity
from src.validation.schema import (
    SchemaValidator,
    MISSING_REQUIRED,
    TYPE_MISMATCH,
    OUT_OF_RANGE,
    INVALID_ENUM,
)


@pytest.fixture
def validator():
    return SchemaValidator()


def codes_for(issues, field_name):
    return [i.code for i in issues if i.field == field_name]


def test_valid_record_has_no_issues(validator, wire_factory):
    assert validator.validate(wire_factory()) == []


def test_missing_required_fields(validator, wire_factory):
    record = wire_factory()
    del record["questionId"]
    record["atomId"] = None
    issues = validator.validate(record)
    assert codes_for(issues, "questionId") == [MISSING_REQUIRED]
    assert codes_for(issues, "atomId") == [MISSING_REQUIRED]
    assert all(i.tier == ValidationTier.SCHEMA and i.severity == Severity.ERROR for i in issues)


def test_booleans_must_be_real_booleans(validator, wire_factory):
    issues = validator.validate(wire_factory(isCorrect=1, isRecovered="false"))
    assert codes_for(issues, "isCorrect") == [TYPE_MISMATCH]
    assert codes_for(issues, "isRecovered") == [TYPE_MISMATCH]


def test_time_spent_must_be_integer_within_bounds(validator, wire_factory):
    assert codes_for(validator.validate(wire_factory(timeSpent=300001)), "timeSpent") == [OUT_OF_RANGE]
    assert codes_for(validator.validate(wire_factory(timeSpent=-1)), "timeSpent") == [OUT_OF_RANGE]
    assert codes_for(validator.validate(wire_factory(timeSpent=12.5)), "timeSpent") == [TYPE_MISMATCH]
    assert codes_for(validator.validate(wire_factory(timeSpent=True)), "timeSpent") == [TYPE_MISMATCH]
    assert validator.validate(wire_factory(timeSpent=300000)) == []


def test_mastery_must_be_within_unit_interval(validator, wire_factory):
    issues = validator.validate(wire_factory(masteryBefore=1.2, masteryAfter="0.5"))
    assert codes_for(issues, "masteryBefore") == [OUT_OF_RANGE]
    assert codes_for(issues, "masteryAfter") == [TYPE_MISMATCH]


def test_enums_are_closed(validator, wire_factory):
    issues = validator.validate(wire_factory(
        speedRating="LIGHTNING",
        isCorrect=False,
        masteryAfter=0.4,
        diagnosticTag="MADE_UP",
    ))
    assert codes_for(issues, "speedRating") == [INVALID_ENUM]
    assert codes_for(issues, "diagnosticTag") == [INVALID_ENUM]


def test_diagnostic_tag_required_only_for_incorrect(validator, wire_factory):
    missing = validator.validate(wire_factory(isCorrect=False, masteryAfter=0.4))
    assert codes_for(missing, "diagnosticTag") == [MISSING_REQUIRED]

    tagged = validator.validate(wire_factory(
        isCorrect=False, masteryAfter=0.4, diagnosticTag="SIGN_IGNORANCE"
    ))
    assert tagged == []


def test_recovery_velocity_required_only_when_recovered(validator, wire_factory):
    missing = validator.validate(wire_factory(isRecovered=True))
    assert codes_for(missing, "recoveryVelocity") == [MISSING_REQUIRED]

    out_of_range = validator.validate(wire_factory(isRecovered=True, recoveryVelocity=1.5))
    assert codes_for(out_of_range, "recoveryVelocity") == [OUT_OF_RANGE]

    assert validator.validate(wire_factory(isRecovered=True, recoveryVelocity=0.7)) == []


def test_answer_length_bounds(validator, wire_factory):
    issues = validator.validate(wire_factory(studentAnswer="x" * 501, correctAnswer=""))
    assert codes_for(issues, "studentAnswer") == [OUT_OF_RANGE]
    assert codes_for(issues, "correctAnswer") == [MISSING_REQUIRED]


def test_schema_tier_is_idempotent(validator, wire_factory):
    """Test that validating the same record twice yields the same issues."""
    record = wire_factory(isCorrect="yes", timeSpent=999999, speedRating=None, isRecovered=True)
    snapshot = dict(record)
    first = validator.validate(record)
    second = validator.validate(record)
    assert first == second
    assert first
    assert record == snapshot
