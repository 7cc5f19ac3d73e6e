"""
Condition evaluation against a calculation input.

A condition list is a left-to-right fold, not an expression tree: each
condition after the first combines with the running result using its
own ``logic`` (AND/OR). There is no grouping or precedence, so
``a OR b AND c`` evaluates as ``(a OR b) AND c``.

Evaluation fails closed: a condition whose left-hand side cannot be
resolved, or whose operands cannot be compared, is false.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

from core.logging import get_logger
from services.taxes.errors import CoercionError
from services.taxes.types import ConditionLogic, ConditionType
from services.taxes.values import NumberValue, TextValue, as_condition_value, compare_values

if TYPE_CHECKING:
    from collections.abc import Sequence

    from services.taxes.types import Address, CalculationInput, TaxableItem, TaxCondition
    from services.taxes.values import ConditionValue

logger = get_logger(__name__)


def resolve_condition_value(
    condition_type: str,
    calc_input: CalculationInput,
    item: TaxableItem | None = None,
) -> ConditionValue | None:
    """
    Resolve the left-hand value a condition type refers to.

    Amount, quantity and weight are basket totals. Category is read from
    ``item`` when one is given, otherwise from the first item. Any other
    type is looked up in ``calc_input.context``.

    Args:
        condition_type: Condition type or context key.
        calc_input: Transaction being evaluated.
        item: Item the evaluation is scoped to, if any.

    Returns:
        The resolved value, or None when the type is undefined for this input.
    """
    items = calc_input.items

    if condition_type == ConditionType.AMOUNT:
        return NumberValue(sum((i.total_amount for i in items), Decimal("0")))
    if condition_type == ConditionType.QUANTITY:
        return NumberValue(Decimal(sum(i.quantity for i in items)))
    if condition_type == ConditionType.WEIGHT:
        return NumberValue(sum((i.weight * i.quantity for i in items), Decimal("0")))
    if condition_type == ConditionType.CATEGORY:
        subject = item if item is not None else (items[0] if items else None)
        return TextValue(subject.category) if subject is not None else None
    if condition_type == ConditionType.CUSTOMER_TYPE:
        return TextValue(calc_input.customer.type)
    if condition_type == ConditionType.TRANSACTION_TYPE:
        return TextValue(calc_input.transaction_type)
    if condition_type == ConditionType.COUNTRY:
        return TextValue(_primary_address(calc_input).country)
    if condition_type == ConditionType.STATE:
        return TextValue(_primary_address(calc_input).state)

    if condition_type in calc_input.context:
        try:
            return as_condition_value(calc_input.context[condition_type])
        except TypeError:
            return None
    return None


def evaluate_condition(
    condition: TaxCondition,
    calc_input: CalculationInput,
    item: TaxableItem | None = None,
) -> bool:
    """
    Evaluate a single condition.

    Args:
        condition: Condition to evaluate.
        calc_input: Transaction being evaluated.
        item: Item the evaluation is scoped to, if any.

    Returns:
        True if the condition holds; False if it does not, its type is
        undefined, or its operands cannot be compared.
    """
    actual = resolve_condition_value(condition.type, calc_input, item)
    if actual is None:
        logger.debug("Condition type undefined for input", condition_type=condition.type)
        return False

    try:
        return compare_values(actual, condition.operator, condition.value)
    except CoercionError as e:
        logger.debug(
            "Condition operands not comparable",
            condition_type=condition.type,
            operator=condition.operator.value,
            error=str(e),
        )
        return False


def evaluate_conditions(
    conditions: Sequence[TaxCondition],
    calc_input: CalculationInput,
    item: TaxableItem | None = None,
) -> bool:
    """
    Fold a condition list left to right.

    Args:
        conditions: Conditions in declaration order.
        calc_input: Transaction being evaluated.
        item: Item the evaluation is scoped to, if any.

    Returns:
        True for an empty list, otherwise the folded result.
    """
    if not conditions:
        return True

    result = evaluate_condition(conditions[0], calc_input, item)
    for condition in conditions[1:]:
        if condition.logic is ConditionLogic.OR:
            result = result or evaluate_condition(condition, calc_input, item)
        else:
            result = result and evaluate_condition(condition, calc_input, item)
    return result


def _primary_address(calc_input: CalculationInput) -> Address:
    if calc_input.shipping_address.country:
        return calc_input.shipping_address
    return calc_input.billing_address
