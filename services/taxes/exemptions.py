"""Exemption resolution for customers, items and rules."""

from __future__ import annotations

from dataclasses import replace
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from services.taxes.conditions import evaluate_conditions
from services.taxes.types import CalculationInput, ExemptionType

if TYPE_CHECKING:
    from collections.abc import Iterable

    from services.taxes.types import Customer, TaxableItem, TaxExemption


def is_exemption_applicable(
    exemption: TaxExemption,
    item: TaxableItem,
    moment: datetime | None = None,
) -> bool:
    """
    Check an exemption's validity window and category scope.

    Item exemptions must name the categories they cover; an item
    exemption without categories covers nothing. Other exemption types
    without categories cover every item.

    Args:
        exemption: Exemption to check.
        item: Line item.
        moment: When to check validity (default: now).

    Returns:
        True if the exemption covers the item at that moment.
    """
    if not exemption.is_valid_on(moment or datetime.now(UTC)):
        return False
    if exemption.categories:
        return item.in_categories(exemption.categories)
    return exemption.type is not ExemptionType.ITEM


def find_applicable_exemption(
    exemptions: Iterable[TaxExemption],
    item: TaxableItem,
    calc_input: CalculationInput,
) -> TaxExemption | None:
    """
    Return the first exemption that covers an item.

    Exemption conditions are evaluated against the transaction narrowed
    to this single item, so amount and quantity conditions see the item's
    own values.

    Args:
        exemptions: Candidate exemptions in declaration order.
        item: Line item.
        calc_input: Transaction the item belongs to.

    Returns:
        The covering exemption, or None.
    """
    moment = calc_input.transaction_date or datetime.now(UTC)
    item_input = replace(calc_input, items=(item,))
    for exemption in exemptions:
        if not is_exemption_applicable(exemption, item, moment):
            continue
        if evaluate_conditions(exemption.conditions, item_input, item):
            return exemption
    return None


def is_customer_exempt(
    customer: Customer,
    item: TaxableItem,
    calc_input: CalculationInput | None = None,
) -> bool:
    """
    Check if any of a customer's exemptions covers an item.

    Args:
        customer: Buyer.
        item: Line item.
        calc_input: Transaction context; without it the check uses a
            transaction holding only this item and customer, dated now.

    Returns:
        True if the item is exempt for this customer.
    """
    context = calc_input if calc_input is not None else CalculationInput(
        items=(item,), customer=customer
    )
    return find_applicable_exemption(customer.exemptions, item, context) is not None
