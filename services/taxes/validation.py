"""Structural and custom validation of tax rules."""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal
from typing import TYPE_CHECKING

from services.taxes.errors import ErrorCode, ValidationError
from services.taxes.types import TaxCalculationMethod, TaxJurisdiction

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping
    from datetime import datetime

    from services.taxes.types import TaxRule, TaxValidationRule

    # A custom check returns a failure message, or None when the rule passes.
    CustomCheck = Callable[[TaxRule, TaxValidationRule], str | None]

MAX_PERCENTAGE_RATE = Decimal("100")
RATE_LIMIT = Decimal("50")
ALLOWED_JURISDICTIONS = frozenset(
    {
        TaxJurisdiction.FEDERAL,
        TaxJurisdiction.STATE,
        TaxJurisdiction.COUNTY,
        TaxJurisdiction.CITY,
    }
)
MAX_RULE_DURATION = timedelta(days=365)


def is_naive(moment: datetime) -> bool:
    """Check if a datetime carries no usable UTC offset."""
    return moment.tzinfo is None or moment.utcoffset() is None


def has_naive_dates(rule: TaxRule) -> bool:
    """Check a rule and its exemptions for timezone-naive validity dates."""
    moments = [rule.valid_from, rule.valid_until]
    for exemption in rule.exemptions:
        moments.extend(m for m in (exemption.valid_from, exemption.valid_until) if m is not None)
    return any(is_naive(moment) for moment in moments)


def check_rate_limit(rule: TaxRule, _validation_rule: TaxValidationRule) -> str | None:
    """Reject rates above the registry-wide cap."""
    if rule.rate > RATE_LIMIT:
        return f"rate {rule.rate} exceeds maximum allowed rate {RATE_LIMIT}"
    return None


def check_jurisdiction_limit(rule: TaxRule, _validation_rule: TaxValidationRule) -> str | None:
    """Reject jurisdictions outside the allowed set."""
    if rule.jurisdiction not in ALLOWED_JURISDICTIONS:
        return f"jurisdiction {rule.jurisdiction.value} is not allowed"
    return None


def check_date_range(rule: TaxRule, _validation_rule: TaxValidationRule) -> str | None:
    """Reject validity windows longer than a year."""
    if is_naive(rule.valid_from) or is_naive(rule.valid_until):
        return None
    if (rule.valid_until - rule.valid_from).days > MAX_RULE_DURATION.days:
        return f"rule duration exceeds maximum allowed days: {MAX_RULE_DURATION.days}"
    return None


BUILTIN_CHECKS: dict[str, CustomCheck] = {
    "rate_limit": check_rate_limit,
    "jurisdiction_limit": check_jurisdiction_limit,
    "date_range": check_date_range,
}


class RuleValidator:
    """
    Validates tax rules.

    Structural checks always run. Custom checks run once per active
    validation rule, looked up by the validation rule's ``type``; types
    with no registered check pass.

    Example:
        >>> validator = RuleValidator()
        >>> validator.register_check("no_zero_rate", lambda r, _: "zero" if r.rate == 0 else None)
        >>> errors = validator.validate(rule, validation_rules)
    """

    def __init__(self, checks: Mapping[str, CustomCheck] | None = None) -> None:
        """
        Initialize the validator.

        Args:
            checks: Extra checks keyed by validation rule type, added on top
                of the built-in ones (and replacing them on key clashes).
        """
        self._checks: dict[str, CustomCheck] = dict(BUILTIN_CHECKS)
        if checks:
            self._checks.update(checks)

    def register_check(self, check_type: str, check: CustomCheck) -> None:
        """
        Register a custom check.

        Args:
            check_type: Validation rule type the check handles.
            check: The check function.

        Raises:
            ValueError: If check_type is empty.
        """
        if not check_type:
            msg = "check_type cannot be empty"
            raise ValueError(msg)
        self._checks[check_type] = check

    @property
    def check_types(self) -> list[str]:
        """Return the registered check types."""
        return list(self._checks)

    def validate(
        self,
        rule: TaxRule,
        validation_rules: Iterable[TaxValidationRule] = (),
    ) -> list[ValidationError]:
        """
        Validate a rule.

        Args:
            rule: Rule to validate.
            validation_rules: Custom validation rules to run after the
                structural checks.

        Returns:
            Every error found, empty if the rule is valid.
        """
        errors = validate_structure(rule)
        for validation_rule in validation_rules:
            if not validation_rule.is_active:
                continue
            check = self._checks.get(validation_rule.type)
            if check is None:
                continue
            message = check(rule, validation_rule)
            if message is not None:
                errors.append(
                    ValidationError(
                        field=validation_rule.type,
                        message=f"validation rule {validation_rule.name} failed: {message}",
                        code=ErrorCode.CUSTOM_RULE,
                        rule_id=rule.id,
                    )
                )
        return errors


def validate_structure(rule: TaxRule) -> list[ValidationError]:
    """
    Run the structural checks every rule must pass.

    Args:
        rule: Rule to check.

    Returns:
        Every structural error found.
    """
    errors: list[ValidationError] = []

    def fail(field: str, message: str, code: ErrorCode) -> None:
        errors.append(ValidationError(field=field, message=message, code=code, rule_id=rule.id))

    if not rule.id:
        fail("id", "rule ID is required", ErrorCode.REQUIRED)
    if not rule.name:
        fail("name", "rule name is required", ErrorCode.REQUIRED)
    if rule.rate < 0:
        fail("rate", "tax rate cannot be negative", ErrorCode.OUT_OF_RANGE)
    if rule.method is TaxCalculationMethod.PERCENTAGE and rule.rate > MAX_PERCENTAGE_RATE:
        fail("rate", "percentage tax rate cannot exceed 100%", ErrorCode.OUT_OF_RANGE)
    naive = [
        name
        for name, moment in (("valid_from", rule.valid_from), ("valid_until", rule.valid_until))
        if is_naive(moment)
    ]
    for name in naive:
        label = name.replace("_", " ")
        fail(name, f"{label} date must be timezone-aware", ErrorCode.INVALID_WINDOW)
    if not naive and rule.valid_from >= rule.valid_until:
        fail(
            "valid_from",
            "valid from date must be before valid until date",
            ErrorCode.INVALID_WINDOW,
        )
    if rule.min_amount < 0:
        fail("min_amount", "minimum amount cannot be negative", ErrorCode.INVALID_BOUNDS)
    if rule.max_amount != 0 and rule.max_amount < rule.min_amount:
        fail(
            "max_amount",
            "maximum amount must be greater than minimum amount",
            ErrorCode.INVALID_BOUNDS,
        )

    for i, exemption in enumerate(rule.exemptions):
        bounds = (exemption.valid_from, exemption.valid_until)
        if any(moment is not None and is_naive(moment) for moment in bounds):
            fail(
                f"exemptions[{i}]",
                "exemption validity dates must be timezone-aware",
                ErrorCode.INVALID_WINDOW,
            )

    for i, threshold in enumerate(rule.thresholds):
        name = f"thresholds[{i}]"
        if threshold.min_amount < 0:
            fail(name, "minimum amount cannot be negative", ErrorCode.INVALID_THRESHOLD)
        if threshold.max_amount != 0 and threshold.max_amount < threshold.min_amount:
            fail(
                name,
                "maximum amount must be greater than minimum amount",
                ErrorCode.INVALID_THRESHOLD,
            )
        if threshold.rate < 0:
            fail(name, "rate cannot be negative", ErrorCode.INVALID_THRESHOLD)
        if threshold.fixed_amount < 0:
            fail(name, "fixed amount cannot be negative", ErrorCode.INVALID_THRESHOLD)

    return errors
