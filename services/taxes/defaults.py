"""Stock rules for seeding a registry."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from decimal import Decimal

from services.taxes.types import (
    TaxCalculationMethod,
    TaxCondition,
    TaxJurisdiction,
    TaxRule,
    TaxType,
    TaxValidationRule,
)

DEFAULT_VALIDITY = timedelta(days=365)


def default_rules(now: datetime | None = None) -> list[TaxRule]:
    """
    Create the default tax rules.

    A state sales tax for CA, NY and TX that exempts food and medicine,
    and a federal luxury tax on expensive jewelry, cars and yachts. Both
    are valid for one year from ``now``.

    Args:
        now: Start of validity (default: UTC now).

    Returns:
        Rules ready to add to a registry.
    """
    start = now if now is not None else datetime.now(UTC)
    end = start + DEFAULT_VALIDITY
    return [
        TaxRule(
            id="default_sales_tax",
            name="Default Sales Tax",
            description="Standard sales tax rate",
            type=TaxType.SALES,
            jurisdiction=TaxJurisdiction.STATE,
            method=TaxCalculationMethod.PERCENTAGE,
            rate=Decimal("8.25"),
            valid_from=start,
            valid_until=end,
            applicable_countries=("US",),
            applicable_states=("CA", "NY", "TX"),
            exempt_categories=("food", "medicine"),
        ),
        TaxRule(
            id="luxury_tax",
            name="Luxury Tax",
            description="Tax on luxury items",
            type=TaxType.LUXURY,
            jurisdiction=TaxJurisdiction.FEDERAL,
            method=TaxCalculationMethod.PERCENTAGE,
            rate=Decimal("15"),
            min_amount=Decimal("1000"),
            valid_from=start,
            valid_until=end,
            applicable_countries=("US",),
            applicable_categories=("jewelry", "luxury_cars", "yachts"),
            conditions=(TaxCondition(type="amount", operator=">=", value=1000),),
        ),
    ]


def default_validation_rules() -> list[TaxValidationRule]:
    """Create the default validation rules: a 50% rate cap and an allowed jurisdiction list."""
    return [
        TaxValidationRule(
            id="max_rate_validation",
            name="Maximum Rate Validation",
            type="rate_limit",
            condition="rate <= 50.0",
            message="Tax rate cannot exceed 50%",
        ),
        TaxValidationRule(
            id="jurisdiction_validation",
            name="Jurisdiction Validation",
            type="jurisdiction_limit",
            condition="jurisdiction in [federal, state, county, city]",
            message="Invalid jurisdiction specified",
        ),
    ]
