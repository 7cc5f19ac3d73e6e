"""Per-rule tax computation for each calculation method."""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

from core.config import TaxSettings
from core.logging import get_logger
from services.taxes.rounding import round_amount
from services.taxes.types import ZERO, AppliedTax, TaxCalculationMethod

if TYPE_CHECKING:
    from collections.abc import Iterable

    from services.taxes.types import TaxableItem, TaxRule, TaxThreshold

logger = get_logger(__name__)

HUNDRED = Decimal("100")


def calculate_tiered_tax(thresholds: Iterable[TaxThreshold], amount: Decimal) -> Decimal:
    """
    Tax the whole amount with the single band that contains it.

    Args:
        thresholds: Bands, in any order.
        amount: Taxable amount.

    Returns:
        The band's fixed amount when set, otherwise the amount at the
        band's rate; 0 when no band contains the amount.
    """
    for band in sorted(thresholds, key=lambda t: t.min_amount):
        if band.contains(amount):
            if band.fixed_amount > 0:
                return band.fixed_amount
            return amount * band.rate / HUNDRED
    return ZERO


def calculate_progressive_tax(thresholds: Iterable[TaxThreshold], amount: Decimal) -> Decimal:
    """
    Tax each band's marginal slice of the amount.

    Only the part of ``amount`` that falls inside a band is taxed at that
    band's rate. A band with a fixed amount charges it once when any part
    of the amount reaches it.

    Args:
        thresholds: Bands, in any order.
        amount: Taxable amount.

    Returns:
        Sum of the per-band taxes.
    """
    total = ZERO
    for band in sorted(thresholds, key=lambda t: t.min_amount):
        if amount <= band.min_amount:
            continue
        upper = amount if band.is_unbounded else min(amount, band.max_amount)
        portion = upper - band.min_amount
        if portion <= 0:
            continue
        if band.fixed_amount > 0:
            total += band.fixed_amount
        else:
            total += portion * band.rate / HUNDRED
    return total


def calculate_tax_for_rule(
    rule: TaxRule,
    taxable_amount: Decimal,
    item: TaxableItem,
    settings: TaxSettings | None = None,
    prior_tax: Decimal = ZERO,
) -> AppliedTax:
    """
    Compute one rule's tax on one item.

    Args:
        rule: Rule to apply.
        taxable_amount: Item base before any tax.
        item: Line item being taxed.
        settings: Rounding and compounding settings (default: TaxSettings()).
        prior_tax: Tax already applied to this item by rules processed
            earlier; compound rules add it to their base when compounding
            is enabled.

    Returns:
        The applied tax with a rounded amount.
    """
    settings = settings if settings is not None else TaxSettings()
    base = taxable_amount

    if rule.method is TaxCalculationMethod.FIXED:
        raw = rule.rate
    elif rule.method is TaxCalculationMethod.TIERED:
        raw = calculate_tiered_tax(rule.thresholds, base)
    elif rule.method is TaxCalculationMethod.PROGRESSIVE:
        raw = calculate_progressive_tax(rule.thresholds, base)
    else:
        if rule.method is TaxCalculationMethod.COMPOUND and settings.compound_taxes:
            base = taxable_amount + prior_tax
        raw = base * rule.rate / HUNDRED

    tax_amount = round_amount(raw, settings.rounding_precision, settings.rounding_mode)
    logger.debug(
        "Rule tax computed",
        rule_id=rule.id,
        item_id=item.id,
        method=rule.method.value,
        tax_amount=str(tax_amount),
    )
    return AppliedTax(
        rule_id=rule.id,
        name=rule.name,
        type=rule.type,
        jurisdiction=rule.jurisdiction,
        method=rule.method,
        rate=rule.rate,
        taxable_amount=base,
        tax_amount=tax_amount,
        description=rule.description,
    )
