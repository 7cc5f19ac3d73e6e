"""Error types for the tax rule registry and calculation engine."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from services.taxes.conflicts import RuleConflict


class ErrorCode(str, Enum):
    """Error codes for tax rule errors."""

    REQUIRED = "required"
    OUT_OF_RANGE = "out_of_range"
    INVALID_WINDOW = "invalid_window"
    INVALID_BOUNDS = "invalid_bounds"
    INVALID_THRESHOLD = "invalid_threshold"
    CUSTOM_RULE = "custom_rule"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    COERCION = "coercion"


class TaxRuleError(Exception):
    """Base error for rule registry operations."""

    code: ErrorCode

    def __init__(self, message: str) -> None:
        """Initialize with error message."""
        self.message = message
        super().__init__(message)


class ValidationError(TaxRuleError):
    """A rule failed a structural or custom validation check."""

    def __init__(
        self,
        field: str,
        message: str,
        code: ErrorCode,
        rule_id: str = "",
    ) -> None:
        """
        Initialize a validation error.

        Args:
            field: Name of the offending rule field (e.g. 'rate', 'thresholds[1]').
            message: Human-readable description.
            code: Machine-readable error code.
            rule_id: Id of the rule being validated, if known.
        """
        self.field = field
        self.code = code
        self.rule_id = rule_id
        super().__init__(message)

    def __str__(self) -> str:
        """Return string representation of the error."""
        prefix = f"rule {self.rule_id}: " if self.rule_id else ""
        return f"{prefix}{self.field}: {self.message}"


class ConflictError(TaxRuleError):
    """A rule collides with rules already in the registry."""

    code = ErrorCode.CONFLICT

    def __init__(self, rule_id: str, conflicts: list[RuleConflict]) -> None:
        """Initialize with the rejected rule id and every conflict found."""
        self.rule_id = rule_id
        self.conflicts = list(conflicts)
        details = "; ".join(str(c) for c in self.conflicts)
        super().__init__(f"rule {rule_id} conflicts with existing rules: {details}")


class RuleNotFoundError(TaxRuleError):
    """Raised when a tax rule id is not registered."""

    code = ErrorCode.NOT_FOUND

    def __init__(self, rule_id: str) -> None:
        """Initialize with the missing rule id."""
        self.rule_id = rule_id
        super().__init__(f"rule with ID {rule_id} not found")


class ValidationRuleNotFoundError(TaxRuleError):
    """Raised when a custom validation rule id is not registered."""

    code = ErrorCode.NOT_FOUND

    def __init__(self, rule_id: str) -> None:
        """Initialize with the missing validation rule id."""
        self.rule_id = rule_id
        super().__init__(f"validation rule with ID {rule_id} not found")


class CoercionError(Exception):
    """A condition value could not be converted to the representation an operator needs."""

    code = ErrorCode.COERCION

    def __init__(self, value: object, target: str) -> None:
        """Initialize with the offending value and the target representation."""
        self.value = value
        self.target = target
        super().__init__(f"cannot convert {value!r} to {target}")
