"""Tests for condition evaluation."""

from __future__ import annotations

from decimal import Decimal

import pytest

from services.taxes.conditions import (
    evaluate_condition,
    evaluate_conditions,
    resolve_condition_value,
)
from services.taxes.types import (
    Address,
    CalculationInput,
    ConditionLogic,
    Customer,
    TaxableItem,
    TaxCondition,
)
from services.taxes.values import NumberValue, TextValue


@pytest.fixture()
def basket() -> CalculationInput:
    """Return a two-item basket shipped to Texas."""
    return CalculationInput(
        items=(
            TaxableItem(id="a", total_amount=Decimal("60"), category="books", quantity=2,
                        weight=Decimal("0.5")),
            TaxableItem(id="b", total_amount=Decimal("40"), category="food", quantity=1,
                        weight=Decimal("2")),
        ),
        customer=Customer(id="c1", type="business"),
        shipping_address=Address(country="US", state="TX"),
        billing_address=Address(country="CA", state="ON"),
        transaction_type="sale",
        context={"channel": "web", "loyalty_tier": 3},
    )


class TestResolveConditionValue:
    """Tests for resolve_condition_value."""

    def test_basket_totals(self, basket: CalculationInput) -> None:
        """amount, quantity and weight should be basket totals."""
        assert resolve_condition_value("amount", basket) == NumberValue(Decimal("100"))
        assert resolve_condition_value("quantity", basket) == NumberValue(Decimal("3"))
        assert resolve_condition_value("weight", basket) == NumberValue(Decimal("3.0"))

    def test_category_defaults_to_first_item(self, basket: CalculationInput) -> None:
        """category without an item should read the first item."""
        assert resolve_condition_value("category", basket) == TextValue("books")

    def test_category_from_explicit_item(self, basket: CalculationInput) -> None:
        """category with an item should read that item."""
        value = resolve_condition_value("category", basket, basket.items[1])

        assert value == TextValue("food")

    def test_customer_and_transaction(self, basket: CalculationInput) -> None:
        """customer_type and transaction_type should come from the input."""
        assert resolve_condition_value("customer_type", basket) == TextValue("business")
        assert resolve_condition_value("transaction_type", basket) == TextValue("sale")

    def test_location_prefers_shipping(self, basket: CalculationInput) -> None:
        """country and state should come from the shipping address when it has a country."""
        assert resolve_condition_value("country", basket) == TextValue("US")
        assert resolve_condition_value("state", basket) == TextValue("TX")

    def test_context_lookup(self, basket: CalculationInput) -> None:
        """Other types should be looked up in the context."""
        assert resolve_condition_value("channel", basket) == TextValue("web")
        assert resolve_condition_value("loyalty_tier", basket) == NumberValue(Decimal("3"))

    def test_undefined_type(self, basket: CalculationInput) -> None:
        """Unknown types with no context entry should be undefined."""
        assert resolve_condition_value("coupon_code", basket) is None


class TestEvaluateCondition:
    """Tests for evaluate_condition."""

    def test_true_condition(self, basket: CalculationInput) -> None:
        """A satisfied condition should evaluate True."""
        condition = TaxCondition(type="amount", operator=">=", value=100)

        assert evaluate_condition(condition, basket) is True

    def test_undefined_type_is_false(self, basket: CalculationInput) -> None:
        """Conditions on undefined types should fail closed."""
        condition = TaxCondition(type="unknown", operator="!=", value="x")

        assert evaluate_condition(condition, basket) is False

    def test_coercion_failure_is_false(self, basket: CalculationInput) -> None:
        """Conditions whose operands cannot be compared should fail closed."""
        condition = TaxCondition(type="customer_type", operator=">", value=5)

        assert evaluate_condition(condition, basket) is False

    def test_membership(self, basket: CalculationInput) -> None:
        """in conditions should test collection membership."""
        condition = TaxCondition(type="category", operator="in", value=["books", "toys"])

        assert evaluate_condition(condition, basket) is True

    def test_condition_normalizes_plain_forms(self) -> None:
        """Operator, value and logic should be normalized on construction."""
        condition = TaxCondition(type="amount", operator=">", value=10, logic="or")

        assert condition.value == NumberValue(Decimal("10"))
        assert condition.logic is ConditionLogic.OR

    def test_condition_rejects_unknown_operator(self) -> None:
        """Unknown operators should be rejected on construction."""
        with pytest.raises(ValueError):
            TaxCondition(type="amount", operator="=~", value=10)


class TestEvaluateConditions:
    """Tests for the left-to-right fold."""

    def test_empty_list_is_true(self, basket: CalculationInput) -> None:
        """An empty condition list should hold."""
        assert evaluate_conditions([], basket) is True

    def test_and(self, basket: CalculationInput) -> None:
        """AND should require both sides."""
        conditions = [
            TaxCondition(type="amount", operator=">", value=50),
            TaxCondition(type="quantity", operator=">", value=5),
        ]

        assert evaluate_conditions(conditions, basket) is False

    def test_or(self, basket: CalculationInput) -> None:
        """OR should accept either side."""
        conditions = [
            TaxCondition(type="amount", operator=">", value=500),
            TaxCondition(type="quantity", operator="=", value=3, logic=ConditionLogic.OR),
        ]

        assert evaluate_conditions(conditions, basket) is True

    def test_first_logic_is_ignored(self, basket: CalculationInput) -> None:
        """The first condition's logic should have no effect."""
        conditions = [TaxCondition(type="amount", operator=">", value=500, logic="OR")]

        assert evaluate_conditions(conditions, basket) is False

    def test_fold_has_no_precedence(self, basket: CalculationInput) -> None:
        """a OR b AND c should evaluate as (a OR b) AND c."""
        conditions = [
            TaxCondition(type="amount", operator="=", value=100),  # true
            TaxCondition(type="quantity", operator="=", value=99, logic="OR"),  # false
            TaxCondition(type="customer_type", operator="=", value="individual"),  # false
        ]

        assert evaluate_conditions(conditions, basket) is False
