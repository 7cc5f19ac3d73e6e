"""Types for the tax rule registry and calculation engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING

from services.taxes.values import ConditionOperator, ConditionValue, as_condition_value

if TYPE_CHECKING:
    from core.config import TaxSettings

ZERO = Decimal("0")

# Open-ended validity window bounds.
BEGINNING_OF_TIME = datetime(1970, 1, 1, tzinfo=UTC)
END_OF_TIME = datetime(9999, 12, 31, tzinfo=UTC)


class TaxType(str, Enum):
    """Kind of tax a rule levies."""

    SALES = "sales"
    VAT = "vat"
    GST = "gst"
    EXCISE = "excise"
    CUSTOMS = "customs"
    PROPERTY = "property"
    WITHHOLDING = "withholding"
    DIGITAL = "digital"
    ENVIRONMENTAL = "environmental"
    LUXURY = "luxury"


class TaxJurisdiction(str, Enum):
    """Governmental level that levies a tax."""

    FEDERAL = "federal"
    STATE = "state"
    COUNTY = "county"
    CITY = "city"
    DISTRICT = "district"
    INTERNATIONAL = "international"


class TaxCalculationMethod(str, Enum):
    """How a rule turns a taxable amount into a tax amount."""

    PERCENTAGE = "percentage"
    FIXED = "fixed"
    TIERED = "tiered"  # one band holds the whole amount
    PROGRESSIVE = "progressive"  # each band taxes its marginal slice
    COMPOUND = "compound"  # percentage on base plus earlier taxes


class ConditionType(str, Enum):
    """Input attributes a condition can test."""

    AMOUNT = "amount"
    QUANTITY = "quantity"
    WEIGHT = "weight"
    CATEGORY = "category"
    CUSTOMER_TYPE = "customer_type"
    TRANSACTION_TYPE = "transaction_type"
    COUNTRY = "country"
    STATE = "state"


class ConditionLogic(str, Enum):
    """How a condition combines with the running result of the ones before it."""

    AND = "AND"
    OR = "OR"


class ExemptionType(str, Enum):
    """Scope of a tax exemption."""

    CUSTOMER = "customer"
    ITEM = "item"
    TRANSACTION = "transaction"
    LOCATION = "location"


class OverrideType(str, Enum):
    """Kinds of manual adjustment applied after calculation."""

    RATE = "rate"
    AMOUNT = "amount"
    EXEMPT = "exempt"


class AuditAction(str, Enum):
    """Registry operations recorded in the audit trail."""

    ADD_RULE = "ADD_RULE"
    UPDATE_RULE = "UPDATE_RULE"
    REMOVE_RULE = "REMOVE_RULE"
    ACTIVATE_RULE = "ACTIVATE_RULE"
    DEACTIVATE_RULE = "DEACTIVATE_RULE"
    ADD_VALIDATION_RULE = "ADD_VALIDATION_RULE"
    REMOVE_VALIDATION_RULE = "REMOVE_VALIDATION_RULE"
    OPTIMIZE_RULES = "OPTIMIZE_RULES"
    IMPORT_RULES = "IMPORT_RULES"


@dataclass(frozen=True, slots=True)
class TaxThreshold:
    """
    Amount band used by tiered and progressive rules.

    Attributes:
        min_amount: Inclusive lower bound of the band.
        max_amount: Exclusive upper bound; 0 means unbounded.
        rate: Percentage applied inside the band.
        fixed_amount: Flat amount charged instead of the rate, when positive.
    """

    min_amount: Decimal
    max_amount: Decimal = ZERO
    rate: Decimal = ZERO
    fixed_amount: Decimal = ZERO

    @property
    def is_unbounded(self) -> bool:
        """Return True if the band has no upper bound."""
        return self.max_amount == 0

    def contains(self, amount: Decimal) -> bool:
        """Check if an amount falls inside ``[min_amount, max_amount)``."""
        if amount < self.min_amount:
            return False
        return self.is_unbounded or amount < self.max_amount


@dataclass(frozen=True, slots=True)
class TaxCondition:
    """
    Predicate a rule or exemption requires.

    ``operator``, ``value`` and ``logic`` accept their plain forms
    (``">"``, ``50``, ``["a", "b"]``, ``"OR"``) and are normalized on
    construction.

    Attributes:
        type: Attribute to test (a ConditionType value or a context key).
        operator: Comparison operator.
        value: Right-hand operand.
        logic: How this condition joins the result of the ones before it.
            Ignored on the first condition of a list.
    """

    type: str
    operator: ConditionOperator
    value: ConditionValue
    logic: ConditionLogic = ConditionLogic.AND

    def __post_init__(self) -> None:
        """Normalize operator, value and logic."""
        object.__setattr__(self, "operator", ConditionOperator(self.operator))
        object.__setattr__(self, "value", as_condition_value(self.value))
        if not isinstance(self.logic, ConditionLogic):
            object.__setattr__(self, "logic", ConditionLogic(self.logic.upper()))


@dataclass(frozen=True, slots=True)
class TaxExemption:
    """
    Override that suppresses tax within a validity window.

    Attributes:
        id: Exemption identifier.
        type: Scope of the exemption.
        reason: Why the exemption exists; reported on exempted items.
        name: Display name.
        certificate: Exemption certificate number, if any.
        valid_from: Start of validity (inclusive); None means always.
        valid_until: End of validity (exclusive); None means forever.
        categories: Item categories covered; empty means all categories.
        conditions: Extra predicates that must hold for the exemption.
    """

    id: str
    type: ExemptionType
    reason: str = ""
    name: str = ""
    certificate: str = ""
    valid_from: datetime | None = None
    valid_until: datetime | None = None
    categories: tuple[str, ...] = ()
    conditions: tuple[TaxCondition, ...] = ()

    def is_valid_on(self, moment: datetime) -> bool:
        """Check if the exemption is in force at a given moment."""
        if self.valid_from is not None and moment < self.valid_from:
            return False
        return self.valid_until is None or moment < self.valid_until


@dataclass(frozen=True, slots=True)
class TaxRule:
    """
    Jurisdiction, category and time scoped tax rule.

    Attributes:
        id: Unique rule identifier.
        name: Display name.
        type: Kind of tax.
        jurisdiction: Level that levies the tax.
        method: Calculation method.
        rate: Percentage for percentage/compound rules, flat amount for fixed.
        min_amount: Minimum item amount the rule applies to.
        max_amount: Maximum item amount the rule applies to; 0 means no cap.
        thresholds: Bands for tiered/progressive rules.
        applicable_categories: Categories taxed; empty means all.
        exempt_categories: Categories never taxed; wins over applicable ones.
        applicable_countries: Countries taxed; empty means global.
        applicable_states: States taxed within matching countries.
        applicable_cities: Cities taxed within matching countries.
        postal_codes: Postal codes taxed within matching countries.
        is_active: Activation flag.
        valid_from: Start of validity (inclusive).
        valid_until: End of validity (exclusive).
        priority: Processing order; higher first.
        description: Free text copied onto applied taxes.
        conditions: Predicates folded left to right with AND/OR.
        exemptions: Rule-level exemptions.
    """

    id: str
    name: str
    type: TaxType
    jurisdiction: TaxJurisdiction
    method: TaxCalculationMethod = TaxCalculationMethod.PERCENTAGE
    rate: Decimal = ZERO
    min_amount: Decimal = ZERO
    max_amount: Decimal = ZERO
    thresholds: tuple[TaxThreshold, ...] = ()
    applicable_categories: tuple[str, ...] = ()
    exempt_categories: tuple[str, ...] = ()
    applicable_countries: tuple[str, ...] = ()
    applicable_states: tuple[str, ...] = ()
    applicable_cities: tuple[str, ...] = ()
    postal_codes: tuple[str, ...] = ()
    is_active: bool = True
    valid_from: datetime = BEGINNING_OF_TIME
    valid_until: datetime = END_OF_TIME
    priority: int = 0
    description: str = ""
    conditions: tuple[TaxCondition, ...] = ()
    exemptions: tuple[TaxExemption, ...] = ()

    def is_valid_on(self, moment: datetime) -> bool:
        """Check if ``moment`` is inside ``[valid_from, valid_until)``."""
        return self.valid_from <= moment < self.valid_until

    def is_active_on(self, moment: datetime) -> bool:
        """Check the activation flag and the validity window together."""
        return self.is_active and self.is_valid_on(moment)


@dataclass(frozen=True, slots=True)
class TaxableItem:
    """
    Line item subject to tax.

    Attributes:
        id: Line identifier.
        total_amount: Line total (unit price times quantity, after line discounts).
        category: Item category used for rule and exemption scoping.
        subcategory: Optional finer category, matched like ``category``.
        name: Display name.
        quantity: Units on the line.
        unit_price: Price per unit.
        weight: Weight per unit.
        is_digital: Digital goods flag.
        is_luxury: Luxury goods flag.
        is_exempt: Item is exempt regardless of rules.
        exemption_reason: Reason reported when ``is_exempt`` is set.
    """

    id: str
    total_amount: Decimal
    category: str = ""
    subcategory: str = ""
    name: str = ""
    quantity: int = 1
    unit_price: Decimal = ZERO
    weight: Decimal = ZERO
    is_digital: bool = False
    is_luxury: bool = False
    is_exempt: bool = False
    exemption_reason: str = ""

    def in_categories(self, categories: tuple[str, ...]) -> bool:
        """Check if the item's category or subcategory is listed."""
        return self.category in categories or (
            bool(self.subcategory) and self.subcategory in categories
        )


@dataclass(frozen=True, slots=True)
class Customer:
    """Buyer of a transaction."""

    id: str = ""
    type: str = "individual"
    tax_id: str = ""
    vat_number: str = ""
    exemptions: tuple[TaxExemption, ...] = ()


@dataclass(frozen=True, slots=True)
class Address:
    """Postal address used for geographic matching."""

    country: str = ""
    state: str = ""
    city: str = ""
    postal_code: str = ""
    county: str = ""
    street1: str = ""
    street2: str = ""


@dataclass(frozen=True, slots=True)
class TaxOverride:
    """
    Manual adjustment applied to every aggregated tax of one type.

    Attributes:
        type: rate (recompute at ``value`` percent), amount (set to ``value``)
            or exempt (zero the tax).
        tax_type: Tax type the override targets.
        value: Rate or amount, depending on ``type``.
        reason: Recorded on the overridden taxes.
        approved_by: Who approved the adjustment.
    """

    type: OverrideType
    tax_type: TaxType
    value: Decimal = ZERO
    reason: str = ""
    approved_by: str = ""


@dataclass(frozen=True, slots=True)
class CalculationInput:
    """
    A transaction to compute taxes for.

    Attributes:
        items: Line items.
        customer: Buyer, with any customer-level exemptions.
        billing_address: Billing address.
        shipping_address: Shipping address.
        transaction_date: When the transaction happens; drives validity windows.
        transaction_type: e.g. sale, purchase, import, export.
        currency: Working currency; amounts are already in it.
        shipping_amount: Shipping charge.
        discount_amount: Order-level discount.
        rule_overrides: Rules to use instead of the registry for this call.
        manual_overrides: Adjustments applied after calculation.
        tax_types: Restrict to these tax types; empty means all.
        jurisdictions: Restrict to these jurisdictions; empty means all.
        context: Extra named values conditions can test by key.
    """

    items: tuple[TaxableItem, ...]
    customer: Customer = field(default_factory=Customer)
    billing_address: Address = field(default_factory=Address)
    shipping_address: Address = field(default_factory=Address)
    transaction_date: datetime | None = None
    transaction_type: str = "sale"
    currency: str = ""
    shipping_amount: Decimal = ZERO
    discount_amount: Decimal = ZERO
    rule_overrides: tuple[TaxRule, ...] | None = None
    manual_overrides: tuple[TaxOverride, ...] = ()
    tax_types: tuple[TaxType, ...] = ()
    jurisdictions: tuple[TaxJurisdiction, ...] = ()
    context: dict[str, object] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class AppliedTax:
    """
    One rule applied to one item (or, at transaction level, to all items).

    Attributes:
        rule_id: Rule that produced the tax.
        name: Rule name.
        type: Tax type.
        jurisdiction: Levying jurisdiction.
        method: Calculation method used.
        rate: Rule rate at the time of calculation.
        taxable_amount: Base the tax was computed on.
        tax_amount: Rounded tax amount.
        description: Rule description.
        is_overridden: Set when a manual override changed the amount.
        override_reason: Reason of that override.
    """

    rule_id: str
    name: str
    type: TaxType
    jurisdiction: TaxJurisdiction
    method: TaxCalculationMethod
    rate: Decimal
    taxable_amount: Decimal
    tax_amount: Decimal
    description: str = ""
    is_overridden: bool = False
    override_reason: str = ""


@dataclass(slots=True)
class TaxBreakdown:
    """
    Taxes of a single line item.

    Attributes:
        item_id: Line identifier.
        item_name: Line display name.
        item_amount: Line total.
        applied_taxes: Taxes applied, in processing order.
        total_tax: Sum of applied tax amounts.
        taxable_amount: Portion of the line that was taxable.
        exempt_amount: Portion of the line that was exempt.
        exemption_reason: Why the line was exempt, if it was.
    """

    item_id: str
    item_name: str
    item_amount: Decimal
    applied_taxes: list[AppliedTax] = field(default_factory=list)
    total_tax: Decimal = ZERO
    taxable_amount: Decimal = ZERO
    exempt_amount: Decimal = ZERO
    exemption_reason: str = ""

    @property
    def is_exempt(self) -> bool:
        """Return True if the whole line was exempted."""
        return self.exempt_amount > 0 and self.taxable_amount == 0


@dataclass(slots=True)
class TaxCalculationResult:
    """
    Transaction-level tax totals.

    Attributes:
        currency: Working currency.
        calculation_date: When the calculation ran.
        subtotal: Taxable subtotal (tax exclusive).
        total_tax: Sum of all tax.
        grand_total: Subtotal plus tax.
        taxable_amount: Sum of taxable line amounts.
        exempt_amount: Sum of exempt line amounts.
        applied_taxes: Taxes aggregated per rule across all items.
        tax_breakdown: Per-item breakdowns, in item order.
        jurisdiction_totals: Tax per jurisdiction.
        tax_type_totals: Tax per tax type.
        effective_rate: Tax as a percentage of the subtotal; 0 when the subtotal is 0.
        is_valid: False when the input was structurally invalid.
        errors: Structural errors.
        warnings: Non-fatal problems, including per-item failures.
    """

    currency: str
    calculation_date: datetime
    subtotal: Decimal = ZERO
    total_tax: Decimal = ZERO
    grand_total: Decimal = ZERO
    taxable_amount: Decimal = ZERO
    exempt_amount: Decimal = ZERO
    applied_taxes: list[AppliedTax] = field(default_factory=list)
    tax_breakdown: list[TaxBreakdown] = field(default_factory=list)
    jurisdiction_totals: dict[TaxJurisdiction, Decimal] = field(default_factory=dict)
    tax_type_totals: dict[TaxType, Decimal] = field(default_factory=dict)
    effective_rate: Decimal = ZERO
    is_valid: bool = True
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class TaxValidationRule:
    """
    Custom registry-level check run against every added or updated rule.

    Attributes:
        id: Validation rule identifier.
        name: Display name.
        type: Check to run (e.g. rate_limit); unknown types never fail.
        condition: Human-readable description of the check.
        message: Message reported when the check fails.
        severity: Severity label.
        is_active: Inactive checks are skipped.
    """

    id: str
    name: str
    type: str
    condition: str = ""
    message: str = ""
    severity: str = "error"
    is_active: bool = True


@dataclass(frozen=True, slots=True)
class TaxAuditTrail:
    """Audit log entry for one registry mutation."""

    id: str
    action: AuditAction
    reason: str
    rule_id: str
    timestamp: datetime
    user_id: str = "system"


@dataclass(frozen=True, slots=True)
class RuleStatistics:
    """Counts describing the rules held by a registry."""

    total_rules: int
    active_rules: int
    inactive_rules: int
    validation_rules: int
    audit_entries: int
    jurisdictions: dict[TaxJurisdiction, int]
    tax_types: dict[TaxType, int]
    methods: dict[TaxCalculationMethod, int]


@dataclass(frozen=True, slots=True)
class RegistryExport:
    """Interchange document for moving a registry between stores."""

    rules: tuple[TaxRule, ...]
    validation_rules: tuple[TaxValidationRule, ...]
    configuration: TaxSettings
    export_date: datetime
    version: str = "1.0"


@dataclass(frozen=True, slots=True)
class TaxSummary:
    """Totals across many calculation results."""

    total_transactions: int
    total_subtotal: Decimal
    total_tax: Decimal
    total_grand_total: Decimal
    average_tax_rate: Decimal
    jurisdiction_totals: dict[TaxJurisdiction, Decimal]
    tax_type_totals: dict[TaxType, Decimal]
