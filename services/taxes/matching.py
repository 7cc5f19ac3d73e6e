"""Rule applicability: geography, validity, relevance, conditions and item scope."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from services.taxes.conditions import evaluate_conditions

if TYPE_CHECKING:
    from collections.abc import Iterable

    from services.taxes.types import Address, CalculationInput, TaxableItem, TaxRule


def sort_by_priority(rules: Iterable[TaxRule]) -> list[TaxRule]:
    """
    Order rules for processing: descending priority, then id.

    Compound rules depend on this order, so it must be total.
    """
    return sorted(rules, key=lambda rule: (-rule.priority, rule.id))


def is_geographically_applicable(rule: TaxRule, billing: Address, shipping: Address) -> bool:
    """
    Check if a rule covers the transaction's addresses.

    A rule without countries is global. Otherwise the shipping or the
    billing country must be listed, and any state, city or postal code
    restriction must hold on an address that matched the country.

    Args:
        rule: Rule to check.
        billing: Billing address.
        shipping: Shipping address.

    Returns:
        True if the rule applies geographically.
    """
    if not rule.applicable_countries:
        return True

    countries = _folded(rule.applicable_countries)
    matched = [
        address
        for address in (shipping, billing)
        if address.country and address.country.casefold() in countries
    ]
    return any(_matches_locality(rule, address) for address in matched)


def is_rule_applicable_to_item(rule: TaxRule, item: TaxableItem) -> bool:
    """
    Check a rule's category scope and amount bounds against an item.

    An exempt category match wins over an applicable category match.

    Args:
        rule: Rule to check.
        item: Line item.

    Returns:
        True if the rule taxes this item.
    """
    if rule.exempt_categories and item.in_categories(rule.exempt_categories):
        return False
    if rule.applicable_categories and not item.in_categories(rule.applicable_categories):
        return False
    if item.total_amount < rule.min_amount:
        return False
    return rule.max_amount == 0 or item.total_amount <= rule.max_amount


def is_relevant(rule: TaxRule, calc_input: CalculationInput) -> bool:
    """Check the input's tax type and jurisdiction filters."""
    if calc_input.tax_types and rule.type not in calc_input.tax_types:
        return False
    return not calc_input.jurisdictions or rule.jurisdiction in calc_input.jurisdictions


def get_applicable_rules(
    rules: Iterable[TaxRule],
    calc_input: CalculationInput,
    item: TaxableItem | None = None,
) -> list[TaxRule]:
    """
    Select the rules that apply to a transaction.

    Keeps rules that are active, valid on the transaction date, relevant
    to the input's filters, geographically applicable and whose
    conditions hold.

    Args:
        rules: Candidate rules (the registry's or a per-call override list).
        calc_input: Transaction being taxed.
        item: Item to scope category conditions to, if any.

    Returns:
        Applicable rules by descending priority, then id.
    """
    moment = calc_input.transaction_date or datetime.now(UTC)
    applicable = [
        rule
        for rule in rules
        if rule.is_active_on(moment)
        and is_relevant(rule, calc_input)
        and is_geographically_applicable(
            rule, calc_input.billing_address, calc_input.shipping_address
        )
        and evaluate_conditions(rule.conditions, calc_input, item)
    ]
    return sort_by_priority(applicable)


def _matches_locality(rule: TaxRule, address: Address) -> bool:
    if rule.applicable_states and address.state.casefold() not in _folded(rule.applicable_states):
        return False
    if rule.applicable_cities and address.city.casefold() not in _folded(rule.applicable_cities):
        return False
    return not rule.postal_codes or address.postal_code in rule.postal_codes


def _folded(values: Iterable[str]) -> set[str]:
    return {value.casefold() for value in values}
