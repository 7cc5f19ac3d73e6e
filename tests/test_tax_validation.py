"""Tests for rule validation."""

from __future__ import annotations

from dataclasses import replace
from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from services.taxes.errors import ErrorCode
from services.taxes.types import (
    ExemptionType,
    TaxCalculationMethod,
    TaxExemption,
    TaxJurisdiction,
    TaxRule,
    TaxThreshold,
    TaxType,
    TaxValidationRule,
)
from services.taxes.validation import RuleValidator, validate_structure

START = datetime(2024, 1, 1, tzinfo=UTC)


def make_rule(**overrides: object) -> TaxRule:
    """Build a valid rule with a one-month window."""
    rule = TaxRule(
        id="r1",
        name="Rule One",
        type=TaxType.SALES,
        jurisdiction=TaxJurisdiction.STATE,
        rate=Decimal("5"),
        valid_from=START,
        valid_until=START + timedelta(days=30),
    )
    return replace(rule, **overrides)


def validation_rule(check_type: str, *, is_active: bool = True) -> TaxValidationRule:
    """Build a validation rule of a given type."""
    return TaxValidationRule(id=f"vr_{check_type}", name=check_type, type=check_type,
                             is_active=is_active)


class TestValidateStructure:
    """Tests for the structural checks."""

    def test_valid_rule(self) -> None:
        """A well-formed rule should produce no errors."""
        assert validate_structure(make_rule()) == []

    def test_missing_id_and_name(self) -> None:
        """Empty id and name should both be reported."""
        errors = validate_structure(make_rule(id="", name=""))

        assert [e.field for e in errors] == ["id", "name"]
        assert all(e.code is ErrorCode.REQUIRED for e in errors)

    def test_negative_rate(self) -> None:
        """Negative rates should be rejected."""
        errors = validate_structure(make_rule(rate=Decimal("-1")))

        assert errors[0].field == "rate"
        assert errors[0].code is ErrorCode.OUT_OF_RANGE

    def test_percentage_rate_above_hundred(self) -> None:
        """Percentage rates above 100 should be rejected."""
        errors = validate_structure(make_rule(rate=Decimal("100.01")))

        assert [e.field for e in errors] == ["rate"]

    def test_fixed_rate_above_hundred_allowed(self) -> None:
        """The 100 cap applies only to percentage rules."""
        rule = make_rule(method=TaxCalculationMethod.FIXED, rate=Decimal("250"))

        assert validate_structure(rule) == []

    def test_empty_window(self) -> None:
        """valid_from must be strictly before valid_until."""
        errors = validate_structure(make_rule(valid_until=START))

        assert errors[0].field == "valid_from"
        assert errors[0].code is ErrorCode.INVALID_WINDOW

    def test_naive_window_reported(self) -> None:
        """Timezone-naive window bounds should be errors, not comparison failures."""
        errors = validate_structure(make_rule(valid_from=datetime(2024, 1, 1)))

        assert [e.field for e in errors] == ["valid_from"]
        assert errors[0].code is ErrorCode.INVALID_WINDOW
        assert errors[0].message == "valid from date must be timezone-aware"

    def test_naive_exemption_window_reported(self) -> None:
        """Rule exemptions with naive dates should be reported by index."""
        exemption = TaxExemption(
            id="e", type=ExemptionType.ITEM, categories=("food",),
            valid_until=datetime(2025, 1, 1),
        )

        errors = validate_structure(make_rule(exemptions=(exemption,)))

        assert [e.field for e in errors] == ["exemptions[0]"]

    def test_naive_window_skips_date_range_check(self) -> None:
        """The date_range check should leave naive windows to the structural check."""
        rule = make_rule(valid_until=datetime(2030, 1, 1))

        errors = RuleValidator().validate(rule, [validation_rule("date_range")])

        assert [e.field for e in errors] == ["valid_until"]

    def test_amount_bounds(self) -> None:
        """Negative minimum and max below min should be rejected."""
        errors = validate_structure(
            make_rule(min_amount=Decimal("-5"), max_amount=Decimal("-10"))
        )

        assert [e.field for e in errors] == ["min_amount", "max_amount"]

    def test_zero_max_means_unbounded(self) -> None:
        """max_amount 0 should not be compared with min_amount."""
        assert validate_structure(make_rule(min_amount=Decimal("10"))) == []

    def test_threshold_errors(self) -> None:
        """Every threshold should be checked and named by index."""
        rule = make_rule(
            method=TaxCalculationMethod.TIERED,
            thresholds=(
                TaxThreshold(min_amount=Decimal("0"), max_amount=Decimal("100"),
                             rate=Decimal("5")),
                TaxThreshold(min_amount=Decimal("200"), max_amount=Decimal("100"),
                             rate=Decimal("-1")),
            ),
        )

        errors = validate_structure(rule)

        assert [e.field for e in errors] == ["thresholds[1]", "thresholds[1]"]
        assert all(e.code is ErrorCode.INVALID_THRESHOLD for e in errors)

    def test_error_string(self) -> None:
        """ValidationError should render rule id, field and message."""
        error = validate_structure(make_rule(rate=Decimal("-1")))[0]

        assert str(error) == "rule r1: rate: tax rate cannot be negative"


class TestRuleValidator:
    """Tests for custom validation rules."""

    def test_rate_limit(self) -> None:
        """rate_limit should reject rates above 50."""
        validator = RuleValidator()

        errors = validator.validate(make_rule(rate=Decimal("60")), [validation_rule("rate_limit")])

        assert len(errors) == 1
        assert errors[0].field == "rate_limit"
        assert errors[0].code is ErrorCode.CUSTOM_RULE

    def test_jurisdiction_limit(self) -> None:
        """jurisdiction_limit should reject district and international rules."""
        validator = RuleValidator()
        rule = make_rule(jurisdiction=TaxJurisdiction.INTERNATIONAL)

        errors = validator.validate(rule, [validation_rule("jurisdiction_limit")])

        assert "international" in errors[0].message

    def test_date_range(self) -> None:
        """date_range should reject windows longer than 365 days."""
        validator = RuleValidator()
        one_year = make_rule(valid_until=START + timedelta(days=365))
        too_long = make_rule(valid_until=START + timedelta(days=366))

        assert validator.validate(one_year, [validation_rule("date_range")]) == []
        assert len(validator.validate(too_long, [validation_rule("date_range")])) == 1

    def test_unknown_type_is_noop(self) -> None:
        """Validation rules with no registered check should pass."""
        validator = RuleValidator()

        assert validator.validate(make_rule(), [validation_rule("no_such_check")]) == []

    def test_inactive_rule_skipped(self) -> None:
        """Inactive validation rules should not run."""
        validator = RuleValidator()
        rule = make_rule(rate=Decimal("60"))

        assert validator.validate(rule, [validation_rule("rate_limit", is_active=False)]) == []

    def test_register_check(self) -> None:
        """Registered checks should run for their type."""
        validator = RuleValidator()
        validator.register_check(
            "no_zero_rate", lambda rule, _vr: "zero rate" if rule.rate == 0 else None
        )

        errors = validator.validate(make_rule(rate=Decimal("0")), [validation_rule("no_zero_rate")])

        assert "zero rate" in errors[0].message
        assert "no_zero_rate" in validator.check_types

    def test_register_empty_type(self) -> None:
        """An empty check type should be rejected."""
        with pytest.raises(ValueError, match="check_type"):
            RuleValidator().register_check("", lambda _rule, _vr: None)

    def test_structural_and_custom_errors_combined(self) -> None:
        """Structural errors should come before custom errors."""
        validator = RuleValidator()
        rule = make_rule(name="", rate=Decimal("60"))

        errors = validator.validate(rule, [validation_rule("rate_limit")])

        assert [e.field for e in errors] == ["name", "rate_limit"]
