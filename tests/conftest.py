"""
Pytest configuration and fixtures for the test suite.

This module contains shared fixtures used across all tests.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

import pytest

from core.config import TaxSettings
from services.taxes import (
    Address,
    CalculationInput,
    TaxableItem,
    TaxCalculationMethod,
    TaxJurisdiction,
    TaxRule,
    TaxRuleStore,
    TaxType,
)

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=UTC)


@pytest.fixture()
def now() -> datetime:
    """Return a fixed moment used as the transaction date."""
    return NOW


@pytest.fixture()
def tax_settings() -> TaxSettings:
    """Return default calculation settings, independent of the environment."""
    return TaxSettings(
        default_currency="USD",
        rounding_mode="half_up",
        rounding_precision=2,
        tax_inclusive_pricing=False,
        compound_taxes=False,
        tax_on_shipping=True,
        tax_on_discounts=True,
    )


@pytest.fixture()
def store(tax_settings: TaxSettings) -> TaxRuleStore:
    """Return an empty registry with a fixed clock."""
    return TaxRuleStore(configuration=tax_settings, clock=lambda: NOW)


@pytest.fixture()
def ny_address() -> Address:
    """Return a New York address."""
    return Address(country="US", state="NY", city="New York", postal_code="10001")


@pytest.fixture()
def ny_sales_rule() -> TaxRule:
    """Return the 8.25% New York sales tax rule."""
    return TaxRule(
        id="ny_sales",
        name="NY Sales Tax",
        type=TaxType.SALES,
        jurisdiction=TaxJurisdiction.STATE,
        method=TaxCalculationMethod.PERCENTAGE,
        rate=Decimal("8.25"),
        applicable_countries=("US",),
        applicable_states=("NY",),
    )


@pytest.fixture()
def electronics_item() -> TaxableItem:
    """Return a 100.00 electronics line item."""
    return TaxableItem(id="item-1", name="Headphones", total_amount=Decimal("100.00"),
                       category="electronics")


@pytest.fixture()
def ny_input(electronics_item: TaxableItem, ny_address: Address) -> CalculationInput:
    """Return a single-item New York transaction."""
    return CalculationInput(
        items=(electronics_item,),
        billing_address=ny_address,
        shipping_address=ny_address,
        transaction_date=NOW,
        currency="USD",
    )
