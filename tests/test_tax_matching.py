"""Tests for rule applicability matching."""

from __future__ import annotations

from dataclasses import replace
from datetime import UTC, datetime
from decimal import Decimal

from services.taxes.matching import (
    get_applicable_rules,
    is_geographically_applicable,
    is_rule_applicable_to_item,
    sort_by_priority,
)
from services.taxes.types import (
    Address,
    CalculationInput,
    TaxableItem,
    TaxCondition,
    TaxJurisdiction,
    TaxRule,
    TaxType,
)

RULE = TaxRule(
    id="rule",
    name="Rule",
    type=TaxType.SALES,
    jurisdiction=TaxJurisdiction.STATE,
    rate=Decimal("5"),
)
NY = Address(country="US", state="NY", city="New York", postal_code="10001")
TORONTO = Address(country="CA", state="ON", city="Toronto")
EMPTY = Address()


class TestSortByPriority:
    """Tests for sort_by_priority."""

    def test_descending_priority_then_id(self) -> None:
        """Rules should be ordered by priority, ties broken by id."""
        rules = [
            replace(RULE, id="b", priority=1),
            replace(RULE, id="c", priority=10),
            replace(RULE, id="a", priority=1),
        ]

        assert [r.id for r in sort_by_priority(rules)] == ["c", "a", "b"]


class TestGeographicApplicability:
    """Tests for is_geographically_applicable."""

    def test_global_rule_applies_anywhere(self) -> None:
        """A rule without countries should apply to any address, even an empty one."""
        assert is_geographically_applicable(RULE, EMPTY, EMPTY) is True
        assert is_geographically_applicable(RULE, TORONTO, NY) is True

    def test_shipping_or_billing_country(self) -> None:
        """Either the shipping or the billing country may match."""
        rule = replace(RULE, applicable_countries=("US",))

        assert is_geographically_applicable(rule, billing=TORONTO, shipping=NY) is True
        assert is_geographically_applicable(rule, billing=NY, shipping=TORONTO) is True
        assert is_geographically_applicable(rule, billing=TORONTO, shipping=TORONTO) is False

    def test_country_match_is_case_insensitive(self) -> None:
        """Country codes should match regardless of case."""
        rule = replace(RULE, applicable_countries=("us",))

        assert is_geographically_applicable(rule, NY, NY) is True

    def test_state_must_match_on_matched_address(self) -> None:
        """The state must hold on an address that matched the country."""
        rule = replace(RULE, applicable_countries=("US",), applicable_states=("NY",))
        california = Address(country="US", state="CA")
        ontario_ny = Address(country="CA", state="NY")

        assert is_geographically_applicable(rule, billing=california, shipping=NY) is True
        assert is_geographically_applicable(rule, billing=california, shipping=california) is False
        assert is_geographically_applicable(rule, billing=ontario_ny, shipping=california) is False

    def test_city_and_postal_code(self) -> None:
        """City and postal code restrictions should apply like states."""
        rule = replace(
            RULE,
            applicable_countries=("US",),
            applicable_cities=("new york",),
            postal_codes=("10001", "10002"),
        )

        assert is_geographically_applicable(rule, NY, NY) is True
        other = replace(NY, postal_code="90210")
        assert is_geographically_applicable(rule, billing=NY, shipping=other) is True
        assert is_geographically_applicable(rule, other, other) is False


class TestItemApplicability:
    """Tests for is_rule_applicable_to_item."""

    def test_no_scope_applies(self) -> None:
        """A rule without category scope or bounds should apply to any item."""
        item = TaxableItem(id="i", total_amount=Decimal("10"), category="books")

        assert is_rule_applicable_to_item(RULE, item) is True

    def test_applicable_categories(self) -> None:
        """Only listed categories should be taxed."""
        rule = replace(RULE, applicable_categories=("jewelry",))

        assert is_rule_applicable_to_item(
            rule, TaxableItem(id="i", total_amount=Decimal("10"), category="jewelry")
        )
        assert not is_rule_applicable_to_item(
            rule, TaxableItem(id="i", total_amount=Decimal("10"), category="books")
        )

    def test_subcategory_matches(self) -> None:
        """A listed subcategory should count as a match."""
        rule = replace(RULE, applicable_categories=("watches",))
        item = TaxableItem(id="i", total_amount=Decimal("10"), category="jewelry",
                           subcategory="watches")

        assert is_rule_applicable_to_item(rule, item) is True

    def test_exempt_category_wins(self) -> None:
        """An exempt category should win over an applicable one."""
        rule = replace(RULE, applicable_categories=("food",), exempt_categories=("food",))
        item = TaxableItem(id="i", total_amount=Decimal("10"), category="food")

        assert is_rule_applicable_to_item(rule, item) is False

    def test_amount_bounds_inclusive(self) -> None:
        """Item amounts should fall within [min_amount, max_amount]."""
        rule = replace(RULE, min_amount=Decimal("100"), max_amount=Decimal("500"))

        def item(amount: str) -> TaxableItem:
            return TaxableItem(id="i", total_amount=Decimal(amount))

        assert not is_rule_applicable_to_item(rule, item("99.99"))
        assert is_rule_applicable_to_item(rule, item("100"))
        assert is_rule_applicable_to_item(rule, item("500"))
        assert not is_rule_applicable_to_item(rule, item("500.01"))

    def test_zero_max_is_unbounded(self) -> None:
        """max_amount 0 should impose no upper bound."""
        rule = replace(RULE, min_amount=Decimal("1000"))

        assert is_rule_applicable_to_item(
            rule, TaxableItem(id="i", total_amount=Decimal("1000000"))
        )


class TestGetApplicableRules:
    """Tests for get_applicable_rules."""

    def make_input(self, **overrides: object) -> CalculationInput:
        """Build a New York transaction."""
        calc_input = CalculationInput(
            items=(TaxableItem(id="i", total_amount=Decimal("100"), category="books"),),
            billing_address=NY,
            shipping_address=NY,
            transaction_date=datetime(2024, 6, 1, tzinfo=UTC),
        )
        return replace(calc_input, **overrides)

    def test_filters_and_orders(self) -> None:
        """Inapplicable rules should be dropped and the rest priority-ordered."""
        rules = [
            replace(RULE, id="low", priority=1),
            replace(RULE, id="high", priority=9),
            replace(RULE, id="inactive", is_active=False),
            replace(RULE, id="expired", valid_until=datetime(2024, 1, 1, tzinfo=UTC)),
            replace(RULE, id="future", valid_from=datetime(2025, 1, 1, tzinfo=UTC)),
            replace(RULE, id="canada", applicable_countries=("CA",)),
            replace(
                RULE,
                id="big_orders",
                conditions=(TaxCondition(type="amount", operator=">", value=1000),),
            ),
        ]

        applicable = get_applicable_rules(rules, self.make_input())

        assert [r.id for r in applicable] == ["high", "low"]

    def test_validity_is_half_open(self) -> None:
        """A rule is valid at valid_from and invalid at valid_until."""
        moment = datetime(2024, 6, 1, tzinfo=UTC)
        starts = replace(RULE, id="starts", valid_from=moment)
        ends = replace(RULE, id="ends", valid_until=moment)

        applicable = get_applicable_rules([starts, ends], self.make_input())

        assert [r.id for r in applicable] == ["starts"]

    def test_type_and_jurisdiction_filters(self) -> None:
        """Input filters should restrict rules by type and jurisdiction."""
        rules = [
            replace(RULE, id="sales"),
            replace(RULE, id="vat", type=TaxType.VAT),
            replace(RULE, id="city", jurisdiction=TaxJurisdiction.CITY),
        ]

        by_type = get_applicable_rules(rules, self.make_input(tax_types=(TaxType.VAT,)))
        by_level = get_applicable_rules(
            rules, self.make_input(jurisdictions=(TaxJurisdiction.CITY,))
        )

        assert [r.id for r in by_type] == ["vat"]
        assert [r.id for r in by_level] == ["city"]

    def test_category_condition_scoped_to_item(self) -> None:
        """Category conditions should read the item being evaluated."""
        food = TaxableItem(id="f", total_amount=Decimal("5"), category="food")
        book = TaxableItem(id="b", total_amount=Decimal("5"), category="books")
        rule = replace(
            RULE, conditions=(TaxCondition(type="category", operator="=", value="food"),)
        )
        calc_input = self.make_input(items=(book, food))

        assert get_applicable_rules([rule], calc_input) == []
        assert get_applicable_rules([rule], calc_input, food) == [rule]
