"""Tax calculation service."""

from __future__ import annotations

import uuid
from collections import defaultdict
from dataclasses import replace
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from core.config import get_settings
from core.logging import bind_context, clear_context, get_logger
from core.result import Result, failure, success
from services.taxes.exemptions import find_applicable_exemption
from services.taxes.matching import get_applicable_rules, is_rule_applicable_to_item, sort_by_priority
from services.taxes.methods import HUNDRED, calculate_tax_for_rule
from services.taxes.rounding import round_amount
from services.taxes.types import (
    ZERO,
    OverrideType,
    TaxBreakdown,
    TaxCalculationResult,
    TaxSummary,
)
from services.taxes.validation import has_naive_dates, is_naive

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from core.config import TaxSettings
    from services.taxes.store import TaxRuleStore
    from services.taxes.types import (
        AppliedTax,
        CalculationInput,
        TaxableItem,
        TaxJurisdiction,
        TaxOverride,
        TaxRule,
        TaxType,
    )

logger = get_logger(__name__)

CUSTOMER_EXEMPTION_REASON = "Customer exemption"
TOTAL_TOLERANCE = Decimal("0.01")
RATE_PRECISION = 4


class TaxCalculatorError(Exception):
    """Error during tax calculation."""

    def __init__(self, message: str) -> None:
        """Initialize with error message."""
        self.message = message
        super().__init__(message)


class TaxCalculatorService:
    """
    Service for calculating transaction taxes.

    Rules come from, in order of preference: the input's own
    ``rule_overrides``, the rules given at construction, or the active
    rules of a registry. The calculator only reads rules and is safe to
    share between callers as long as nobody mutates the registry meanwhile.

    Example:
        >>> calculator = TaxCalculatorService(store=store)
        >>> result = calculator.calculate_tax(calc_input)
        >>> result.grand_total
        Decimal('108.25')
    """

    def __init__(
        self,
        settings: TaxSettings | None = None,
        store: TaxRuleStore | None = None,
        rules: Iterable[TaxRule] | None = None,
    ) -> None:
        """
        Initialize the tax calculator service.

        Args:
            settings: Calculation settings (default: the store's
                configuration, else the loaded application settings).
            store: Registry to read active rules from.
            rules: Fixed rule set used instead of a registry.
        """
        if settings is None:
            settings = store.configuration if store is not None else get_settings().tax
        self._settings = settings
        self._store = store
        self._rules = tuple(rules) if rules is not None else None

    @property
    def settings(self) -> TaxSettings:
        """Return the calculation settings."""
        return self._settings

    def calculate_tax(self, calc_input: CalculationInput) -> TaxCalculationResult:
        """
        Calculate taxes for a transaction.

        Structural problems with the input are reported in ``errors`` with
        ``is_valid`` False and no taxes computed. Failures on a single item
        are reported in ``warnings`` and the item contributes no tax.

        Args:
            calc_input: Transaction to tax.

        Returns:
            Item breakdowns and transaction totals.
        """
        calculation_id = uuid.uuid4().hex
        currency = calc_input.currency or self._settings.default_currency
        bind_context(calculation_id=calculation_id, currency=currency)
        try:
            return self._calculate(calc_input, currency)
        finally:
            clear_context()

    def calculate_batch(
        self,
        inputs: Sequence[CalculationInput],
    ) -> list[TaxCalculationResult]:
        """
        Calculate taxes for multiple transactions.

        Args:
            inputs: Transactions to tax.

        Returns:
            One result per input, in input order.
        """
        return [self.calculate_tax(calc_input) for calc_input in inputs]

    def calculate_item_tax(
        self,
        item: TaxableItem,
        rules: Iterable[TaxRule],
        calc_input: CalculationInput,
    ) -> TaxBreakdown:
        """
        Calculate the taxes of one item.

        Items flagged exempt, or covered by a customer exemption, get an
        exempt breakdown. Otherwise every rule that applies to the item and
        is not suppressed by one of its own exemptions is computed in
        priority order; compound rules see the tax accumulated so far.

        Args:
            item: Line item.
            rules: Rules that apply to the transaction.
            calc_input: Transaction the item belongs to.

        Returns:
            The item's breakdown.
        """
        breakdown = TaxBreakdown(
            item_id=item.id,
            item_name=item.name,
            item_amount=item.total_amount,
            taxable_amount=item.total_amount,
        )

        if item.is_exempt:
            return _exempt(breakdown, item.exemption_reason)

        exemption = find_applicable_exemption(calc_input.customer.exemptions, item, calc_input)
        if exemption is not None:
            return _exempt(breakdown, exemption.reason or CUSTOMER_EXEMPTION_REASON)

        for rule in sort_by_priority(rules):
            if not is_rule_applicable_to_item(rule, item):
                continue
            if find_applicable_exemption(rule.exemptions, item, calc_input) is not None:
                logger.debug("Rule exemption applied", rule_id=rule.id, item_id=item.id)
                continue

            applied = calculate_tax_for_rule(
                rule,
                item.total_amount,
                item,
                self._settings,
                prior_tax=breakdown.total_tax,
            )
            if applied.tax_amount > 0:
                breakdown.applied_taxes.append(applied)
                breakdown.total_tax += applied.tax_amount

        return breakdown

    def calculate_subtotal(self, calc_input: CalculationInput) -> Decimal:
        """
        Calculate the taxable subtotal of a transaction.

        The discount is subtracted when ``tax_on_discounts`` is set and the
        shipping charge is added when ``tax_on_shipping`` is set.

        Args:
            calc_input: Transaction.

        Returns:
            Adjusted subtotal.
        """
        subtotal = calculate_subtotal(calc_input.items)
        if self._settings.tax_on_discounts and calc_input.discount_amount > 0:
            subtotal -= calc_input.discount_amount
        if self._settings.tax_on_shipping and calc_input.shipping_amount > 0:
            subtotal += calc_input.shipping_amount
        return subtotal

    def _calculate(self, calc_input: CalculationInput, currency: str) -> TaxCalculationResult:
        result = TaxCalculationResult(currency=currency, calculation_date=datetime.now(UTC))

        errors = validate_input(calc_input)
        if errors:
            logger.warning("Invalid tax calculation input", errors=errors)
            result.is_valid = False
            result.errors = errors
            return result

        candidates = self._usable_rules(calc_input, result)
        subtotal = self.calculate_subtotal(calc_input)

        for item in calc_input.items:
            try:
                rules = get_applicable_rules(candidates, calc_input, item)
                breakdown = self.calculate_item_tax(item, rules, calc_input)
                if self._settings.tax_inclusive_pricing:
                    self._back_out_tax(breakdown)
            except (ArithmeticError, ValueError) as e:
                logger.warning("Item tax calculation failed", item_id=item.id, error=str(e))
                result.warnings.append(f"item {item.id}: tax calculation failed: {e}")
                breakdown = TaxBreakdown(
                    item_id=item.id,
                    item_name=item.name,
                    item_amount=item.total_amount,
                    taxable_amount=item.total_amount,
                )

            result.tax_breakdown.append(breakdown)
            result.taxable_amount += breakdown.taxable_amount
            result.exempt_amount += breakdown.exempt_amount
            result.total_tax += breakdown.total_tax
            for applied in breakdown.applied_taxes:
                _aggregate(result, applied)

        self._apply_overrides(result, calc_input.manual_overrides)

        if self._settings.tax_inclusive_pricing:
            result.grand_total = subtotal
            result.subtotal = subtotal - result.total_tax
        else:
            result.subtotal = subtotal
            result.grand_total = subtotal + result.total_tax

        if result.subtotal > 0:
            result.effective_rate = round_amount(
                result.total_tax / result.subtotal * HUNDRED, RATE_PRECISION
            )

        self._round_totals(result)
        result.warnings.extend(self._check_result(result))

        logger.debug(
            "Tax calculated",
            items=len(calc_input.items),
            rules=len(candidates),
            total_tax=str(result.total_tax),
            grand_total=str(result.grand_total),
        )
        return result

    def _candidate_rules(self, calc_input: CalculationInput) -> tuple[TaxRule, ...]:
        if calc_input.rule_overrides is not None:
            return calc_input.rule_overrides
        if self._rules is not None:
            return self._rules
        if self._store is not None:
            return tuple(self._store.rules)
        return ()

    def _usable_rules(
        self,
        calc_input: CalculationInput,
        result: TaxCalculationResult,
    ) -> list[TaxRule]:
        """Drop candidate rules whose dates cannot be compared with the transaction date."""
        usable: list[TaxRule] = []
        for rule in self._candidate_rules(calc_input):
            if has_naive_dates(rule):
                logger.warning("Rule with timezone-naive dates skipped", rule_id=rule.id)
                result.warnings.append(
                    f"rule {rule.id} skipped: validity dates must be timezone-aware"
                )
                continue
            usable.append(rule)
        return usable

    def _back_out_tax(self, breakdown: TaxBreakdown) -> None:
        """Treat the item amount as tax inclusive and extract the tax from it."""
        if breakdown.total_tax <= 0 or breakdown.item_amount <= 0:
            return

        rate = breakdown.total_tax / breakdown.item_amount
        exclusive = breakdown.item_amount / (1 + rate)
        extracted = self._round(breakdown.item_amount - exclusive)
        factor = extracted / breakdown.total_tax

        breakdown.applied_taxes = [
            replace(
                applied,
                taxable_amount=self._round(exclusive),
                tax_amount=self._round(applied.tax_amount * factor),
            )
            for applied in breakdown.applied_taxes
        ]
        breakdown.taxable_amount = self._round(exclusive)
        breakdown.total_tax = sum((a.tax_amount for a in breakdown.applied_taxes), ZERO)

    def _apply_overrides(
        self,
        result: TaxCalculationResult,
        overrides: Sequence[TaxOverride],
    ) -> None:
        """
        Apply manual overrides to the transaction-level taxes.

        Overrides replace matching entries in ``result.applied_taxes`` and
        adjust ``total_tax`` and the type and jurisdiction totals. Item
        breakdowns keep the computed taxes, so after an override the
        breakdown totals no longer sum to ``total_tax``. An exempt override
        adds the tax's base to ``exempt_amount`` and leaves
        ``taxable_amount`` as computed.
        """
        for override in overrides:
            for index, applied in enumerate(result.applied_taxes):
                if applied.type != override.tax_type:
                    continue

                if override.type is OverrideType.RATE:
                    new_amount = self._round(applied.taxable_amount * override.value / HUNDRED)
                    updated = replace(applied, rate=override.value, tax_amount=new_amount)
                elif override.type is OverrideType.AMOUNT:
                    updated = replace(applied, tax_amount=override.value)
                else:
                    updated = replace(applied, tax_amount=ZERO)
                    result.exempt_amount += applied.taxable_amount

                updated = replace(updated, is_overridden=True, override_reason=override.reason)
                difference = updated.tax_amount - applied.tax_amount
                result.applied_taxes[index] = updated
                result.total_tax += difference
                result.tax_type_totals[applied.type] += difference
                result.jurisdiction_totals[applied.jurisdiction] += difference

                logger.info(
                    "Tax override applied",
                    rule_id=applied.rule_id,
                    override_type=override.type.value,
                    approved_by=override.approved_by,
                )

    def _round_totals(self, result: TaxCalculationResult) -> None:
        result.subtotal = self._round(result.subtotal)
        result.total_tax = self._round(result.total_tax)
        result.grand_total = self._round(result.grand_total)
        result.taxable_amount = self._round(result.taxable_amount)
        result.exempt_amount = self._round(result.exempt_amount)
        for breakdown in result.tax_breakdown:
            breakdown.total_tax = self._round(breakdown.total_tax)

    def _check_result(self, result: TaxCalculationResult) -> list[str]:
        warnings: list[str] = []
        threshold = Decimal(str(self._settings.high_rate_warning_threshold))
        if result.effective_rate > threshold:
            warnings.append(f"unusually high effective tax rate: {result.effective_rate:.2f}%")
        if result.total_tax < 0:
            warnings.append("negative total tax amount calculated")
        if abs(result.subtotal + result.total_tax - result.grand_total) > TOTAL_TOLERANCE:
            warnings.append("inconsistent total calculation detected")
        return warnings

    def _round(self, amount: Decimal) -> Decimal:
        return round_amount(
            amount, self._settings.rounding_precision, self._settings.rounding_mode
        )


def calculate_subtotal(items: Iterable[TaxableItem]) -> Decimal:
    """Sum the line totals of the items."""
    return sum((item.total_amount for item in items), ZERO)


def validate_input(calc_input: CalculationInput) -> list[str]:
    """
    Check a transaction for structural problems.

    Args:
        calc_input: Transaction to check.

    Returns:
        Error messages, empty if the input can be taxed.
    """
    errors: list[str] = []
    if not calc_input.items:
        errors.append("no items provided for tax calculation")

    for index, item in enumerate(calc_input.items):
        if not item.id:
            errors.append(f"item {index} missing ID")
        if item.total_amount < 0:
            errors.append(f"item {item.id} has negative amount")
        if item.quantity <= 0:
            errors.append(f"item {item.id} has invalid quantity")

    if not calc_input.billing_address.country and not calc_input.shipping_address.country:
        errors.append("no valid address provided for tax calculation")
    if calc_input.transaction_date is None:
        errors.append("transaction date is required")
    elif is_naive(calc_input.transaction_date):
        errors.append("transaction date must be timezone-aware")

    for exemption in calc_input.customer.exemptions:
        bounds = (exemption.valid_from, exemption.valid_until)
        if any(moment is not None and is_naive(moment) for moment in bounds):
            errors.append(f"customer exemption {exemption.id} has timezone-naive validity dates")
    return errors


def calculate(
    calc_input: CalculationInput,
    settings: TaxSettings | None = None,
) -> TaxCalculationResult:
    """
    Calculate taxes using only the rules carried by the input.

    Args:
        calc_input: Transaction with ``rule_overrides`` set.
        settings: Calculation settings (default: loaded application settings).

    Returns:
        Calculation result.
    """
    return TaxCalculatorService(settings=settings).calculate_tax(calc_input)


def summarize_results(results: Iterable[TaxCalculationResult]) -> TaxSummary:
    """
    Aggregate totals across many calculation results.

    Args:
        results: Results to summarize.

    Returns:
        Summary; the average rate is total tax over total subtotal, in
        percent, and 0 when the subtotal is 0.
    """
    count = 0
    subtotal = total_tax = grand_total = ZERO
    jurisdiction_totals: defaultdict[TaxJurisdiction, Decimal] = defaultdict(lambda: ZERO)
    tax_type_totals: defaultdict[TaxType, Decimal] = defaultdict(lambda: ZERO)

    for result in results:
        count += 1
        subtotal += result.subtotal
        total_tax += result.total_tax
        grand_total += result.grand_total
        for jurisdiction, amount in result.jurisdiction_totals.items():
            jurisdiction_totals[jurisdiction] += amount
        for tax_type, amount in result.tax_type_totals.items():
            tax_type_totals[tax_type] += amount

    average = ZERO
    if subtotal > 0:
        average = round_amount(total_tax / subtotal * HUNDRED, RATE_PRECISION)

    return TaxSummary(
        total_transactions=count,
        total_subtotal=subtotal,
        total_tax=total_tax,
        total_grand_total=grand_total,
        average_tax_rate=average,
        jurisdiction_totals=dict(jurisdiction_totals),
        tax_type_totals=dict(tax_type_totals),
    )


def best_tax_scenario(
    scenarios: Sequence[CalculationInput],
    calculator: TaxCalculatorService | None = None,
) -> Result[CalculationInput, TaxCalculatorError]:
    """
    Pick the scenario with the lowest total tax.

    Invalid scenarios are never picked; ties keep the earliest scenario.

    Args:
        scenarios: Alternative versions of a transaction.
        calculator: Calculator to evaluate them with (default: one using
            only each scenario's rule overrides).

    Returns:
        Result containing the best scenario, or TaxCalculatorError when
        there are no scenarios or none is valid.
    """
    if not scenarios:
        return failure(TaxCalculatorError("no scenarios provided"))

    calculator = calculator if calculator is not None else TaxCalculatorService()
    best: CalculationInput | None = None
    lowest: Decimal | None = None
    for scenario in scenarios:
        result = calculator.calculate_tax(scenario)
        if result.is_valid and (lowest is None or result.total_tax < lowest):
            best, lowest = scenario, result.total_tax

    if best is None:
        return failure(TaxCalculatorError("no valid scenarios provided"))
    return success(best)


def _exempt(breakdown: TaxBreakdown, reason: str) -> TaxBreakdown:
    breakdown.exempt_amount = breakdown.item_amount
    breakdown.taxable_amount = ZERO
    breakdown.exemption_reason = reason
    return breakdown


def _aggregate(result: TaxCalculationResult, applied: AppliedTax) -> None:
    """Fold an item's applied tax into the per-rule list and the rollups."""
    result.jurisdiction_totals[applied.jurisdiction] = (
        result.jurisdiction_totals.get(applied.jurisdiction, ZERO) + applied.tax_amount
    )
    result.tax_type_totals[applied.type] = (
        result.tax_type_totals.get(applied.type, ZERO) + applied.tax_amount
    )

    for index, existing in enumerate(result.applied_taxes):
        if existing.rule_id == applied.rule_id:
            result.applied_taxes[index] = replace(
                existing,
                taxable_amount=existing.taxable_amount + applied.taxable_amount,
                tax_amount=existing.tax_amount + applied.tax_amount,
            )
            return
    result.applied_taxes.append(applied)
