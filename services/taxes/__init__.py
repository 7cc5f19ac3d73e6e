"""Tax rule registry and tax calculation engine."""

from services.taxes.defaults import default_rules, default_validation_rules
from services.taxes.errors import (
    ConflictError,
    ErrorCode,
    RuleNotFoundError,
    TaxRuleError,
    ValidationError,
    ValidationRuleNotFoundError,
)
from services.taxes.service import (
    TaxCalculatorError,
    TaxCalculatorService,
    best_tax_scenario,
    calculate,
    summarize_results,
)
from services.taxes.store import TaxRuleStore
from services.taxes.types import (
    Address,
    AppliedTax,
    CalculationInput,
    Customer,
    TaxableItem,
    TaxBreakdown,
    TaxCalculationMethod,
    TaxCalculationResult,
    TaxCondition,
    TaxExemption,
    TaxJurisdiction,
    TaxOverride,
    TaxRule,
    TaxThreshold,
    TaxType,
    TaxValidationRule,
)

__all__ = [
    "Address",
    "AppliedTax",
    "CalculationInput",
    "ConflictError",
    "Customer",
    "ErrorCode",
    "RuleNotFoundError",
    "TaxBreakdown",
    "TaxCalculationMethod",
    "TaxCalculationResult",
    "TaxCalculatorError",
    "TaxCalculatorService",
    "TaxCondition",
    "TaxExemption",
    "TaxJurisdiction",
    "TaxOverride",
    "TaxRule",
    "TaxRuleError",
    "TaxRuleStore",
    "TaxThreshold",
    "TaxType",
    "TaxValidationRule",
    "TaxableItem",
    "ValidationError",
    "ValidationRuleNotFoundError",
    "best_tax_scenario",
    "calculate",
    "default_rules",
    "default_validation_rules",
    "summarize_results",
]
