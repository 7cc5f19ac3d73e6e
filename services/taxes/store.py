"""Tax rule registry with validation, conflict checks and an audit trail."""

from __future__ import annotations

import uuid
from collections import Counter
from dataclasses import replace
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from core.config import TaxSettings
from core.logging import get_logger
from core.result import Failure, Success
from services.taxes.conflicts import ConflictKind, RuleConflict, find_rule_conflicts
from services.taxes.errors import (
    ConflictError,
    RuleNotFoundError,
    ValidationError,
    ValidationRuleNotFoundError,
)
from services.taxes.matching import sort_by_priority
from services.taxes.types import (
    AuditAction,
    RegistryExport,
    RuleStatistics,
    TaxAuditTrail,
)
from services.taxes.validation import RuleValidator

if TYPE_CHECKING:
    from collections.abc import Callable

    from core.result import Result
    from services.taxes.types import (
        TaxCalculationMethod,
        TaxJurisdiction,
        TaxRule,
        TaxType,
        TaxValidationRule,
    )

logger = get_logger(__name__)

EXPORT_VERSION = "1.0"


def _utcnow() -> datetime:
    return datetime.now(UTC)


class TaxRuleStore:
    """
    Registry of tax rules.

    Rules are keyed by id. Every mutation is validated and conflict
    checked first and either applies completely or not at all; each
    applied mutation appends one audit trail entry.

    The store does no locking. Concurrent reads are safe; callers must
    serialize mutations against all other access.

    Example:
        >>> store = TaxRuleStore()
        >>> result = store.add_rule(rule)
        >>> if result.is_failure():
        ...     print(result.error)
        >>> active = store.get_active_rules()
    """

    def __init__(
        self,
        configuration: TaxSettings | None = None,
        validator: RuleValidator | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """
        Initialize an empty registry.

        Args:
            configuration: Calculation settings stored with the rules and
                carried through export/import.
            validator: Rule validator (default: built-in checks only).
            clock: Source of the current time (default: UTC now).
        """
        self._configuration = configuration if configuration is not None else TaxSettings()
        self._validator = validator if validator is not None else RuleValidator()
        self._clock = clock if clock is not None else _utcnow
        self._rules: dict[str, TaxRule] = {}
        self._validation_rules: dict[str, TaxValidationRule] = {}
        self._audit_trail: list[TaxAuditTrail] = []

    def __len__(self) -> int:
        """Return the number of rules."""
        return len(self._rules)

    def __contains__(self, rule_id: object) -> bool:
        """Check if a rule id is registered."""
        return rule_id in self._rules

    @property
    def configuration(self) -> TaxSettings:
        """Return the calculation settings stored with the rules."""
        return self._configuration

    @property
    def rules(self) -> list[TaxRule]:
        """Return all rules in registry order."""
        return list(self._rules.values())

    @property
    def validation_rules(self) -> list[TaxValidationRule]:
        """Return all custom validation rules."""
        return list(self._validation_rules.values())

    # -- mutations ---------------------------------------------------------

    def add_rule(self, rule: TaxRule) -> Result[TaxRule, ValidationError | ConflictError]:
        """
        Add a rule after validation and conflict checks.

        Args:
            rule: Rule to add.

        Returns:
            Result containing the stored rule, or the first validation
            error, or a ConflictError listing every conflict.
        """
        errors = self._validator.validate(rule, self._validation_rules.values())
        if errors:
            return self._reject(rule.id, errors)

        conflicts = find_rule_conflicts(rule, self._rules.values())
        if conflicts:
            return self._reject_conflicts(rule.id, conflicts)

        self._rules[rule.id] = rule
        self._record(AuditAction.ADD_RULE, f"Added rule: {rule.name}", rule.id)
        logger.info("Tax rule added", rule_id=rule.id, rule_type=rule.type.value)
        return Success(rule)

    def update_rule(
        self,
        rule_id: str,
        updated_rule: TaxRule,
    ) -> Result[TaxRule, RuleNotFoundError | ValidationError | ConflictError]:
        """
        Replace a rule after validation and conflict checks.

        The rule's current version is excluded from the conflict scan. The
        updated rule may carry a new id; it keeps the old rule's position.

        Args:
            rule_id: Id of the rule to replace.
            updated_rule: New version of the rule.

        Returns:
            Result containing the stored rule, or the error that blocked it.
        """
        current = self._rules.get(rule_id)
        if current is None:
            return Failure(RuleNotFoundError(rule_id))

        errors = self._validator.validate(updated_rule, self._validation_rules.values())
        if errors:
            return self._reject(updated_rule.id, errors)

        others = (rule for rid, rule in self._rules.items() if rid != rule_id)
        conflicts = find_rule_conflicts(updated_rule, others)
        if conflicts:
            return self._reject_conflicts(updated_rule.id, conflicts)

        self._rules = {
            (updated_rule.id if rid == rule_id else rid): (
                updated_rule if rid == rule_id else rule
            )
            for rid, rule in self._rules.items()
        }
        self._record(
            AuditAction.UPDATE_RULE,
            f"Updated rule: {current.name} -> {updated_rule.name}",
            rule_id,
        )
        logger.info("Tax rule updated", rule_id=rule_id, new_rule_id=updated_rule.id)
        return Success(updated_rule)

    def remove_rule(self, rule_id: str) -> Result[TaxRule, RuleNotFoundError]:
        """
        Remove a rule.

        Args:
            rule_id: Id of the rule to remove.

        Returns:
            Result containing the removed rule or RuleNotFoundError.
        """
        rule = self._rules.pop(rule_id, None)
        if rule is None:
            return Failure(RuleNotFoundError(rule_id))
        self._record(AuditAction.REMOVE_RULE, f"Removed rule: {rule.name}", rule_id)
        logger.info("Tax rule removed", rule_id=rule_id)
        return Success(rule)

    def activate_rule(self, rule_id: str) -> Result[TaxRule, RuleNotFoundError]:
        """Set a rule's activation flag."""
        return self._set_active(rule_id, active=True)

    def deactivate_rule(self, rule_id: str) -> Result[TaxRule, RuleNotFoundError]:
        """Clear a rule's activation flag."""
        return self._set_active(rule_id, active=False)

    def add_validation_rule(self, validation_rule: TaxValidationRule) -> None:
        """
        Register a custom validation rule.

        It applies to rules added or updated afterwards and to
        ``validate_rules``; rules already stored are not re-checked.

        Args:
            validation_rule: Validation rule to register; replaces one with the same id.
        """
        self._validation_rules[validation_rule.id] = validation_rule
        self._record(
            AuditAction.ADD_VALIDATION_RULE,
            f"Added validation rule: {validation_rule.name}",
            validation_rule.id,
        )

    def remove_validation_rule(
        self,
        rule_id: str,
    ) -> Result[TaxValidationRule, ValidationRuleNotFoundError]:
        """
        Remove a custom validation rule.

        Args:
            rule_id: Id of the validation rule.

        Returns:
            Result containing the removed validation rule or an error.
        """
        validation_rule = self._validation_rules.pop(rule_id, None)
        if validation_rule is None:
            return Failure(ValidationRuleNotFoundError(rule_id))
        self._record(
            AuditAction.REMOVE_VALIDATION_RULE,
            f"Removed validation rule: {validation_rule.name}",
            rule_id,
        )
        return Success(validation_rule)

    def optimize_rules(self) -> None:
        """
        Reorder the registry by rule name.

        The sort is stable, so rules with equal names keep their relative
        order. This fixes registry order for reproducible exports and scans.
        """
        self._rules = dict(sorted(self._rules.items(), key=lambda kv: kv[1].name))
        self._record(AuditAction.OPTIMIZE_RULES, "Optimized rule order", "")

    def import_rules(self, document: RegistryExport) -> Result[int, ConflictError]:
        """
        Replace rules, validation rules and configuration from an export.

        Imported rules are not re-validated; run ``validate_rules`` to check
        them. Documents with duplicate rule ids are rejected.

        Args:
            document: Document produced by ``export_rules``.

        Returns:
            Result containing the number of imported rules, or ConflictError.
        """
        counts = Counter(rule.id for rule in document.rules)
        duplicates = [rid for rid, count in counts.items() if count > 1]
        if duplicates:
            conflicts = [RuleConflict(ConflictKind.DUPLICATE_ID, rid) for rid in duplicates]
            return self._reject_conflicts(duplicates[0], conflicts)

        self._rules = {rule.id: rule for rule in document.rules}
        self._validation_rules = {vr.id: vr for vr in document.validation_rules}
        self._configuration = document.configuration
        self._record(AuditAction.IMPORT_RULES, "Imported rules from external source", "")
        logger.info(
            "Tax rules imported",
            rule_count=len(self._rules),
            version=document.version,
        )
        return Success(len(self._rules))

    def clear_audit_trail(self) -> None:
        """Remove every audit trail entry."""
        self._audit_trail.clear()

    # -- queries -----------------------------------------------------------

    def get_rule(self, rule_id: str) -> Result[TaxRule, RuleNotFoundError]:
        """
        Get a rule by id.

        Args:
            rule_id: Id of the rule.

        Returns:
            Result containing the rule or RuleNotFoundError.
        """
        rule = self._rules.get(rule_id)
        if rule is None:
            return Failure(RuleNotFoundError(rule_id))
        return Success(rule)

    def get_rules_by_jurisdiction(self, jurisdiction: TaxJurisdiction) -> list[TaxRule]:
        """Return rules levied by a jurisdiction."""
        return [rule for rule in self._rules.values() if rule.jurisdiction == jurisdiction]

    def get_rules_by_type(self, tax_type: TaxType) -> list[TaxRule]:
        """Return rules of a tax type."""
        return [rule for rule in self._rules.values() if rule.type == tax_type]

    def get_active_rules(self, at: datetime | None = None) -> list[TaxRule]:
        """
        Return rules that are active and inside their validity window.

        Args:
            at: Moment to check against (default: now).

        Returns:
            Active rules in registry order.
        """
        moment = at if at is not None else self._clock()
        return [rule for rule in self._rules.values() if rule.is_active_on(moment)]

    def get_rules_by_name(self) -> list[TaxRule]:
        """Return all rules sorted by name."""
        return sorted(self._rules.values(), key=lambda rule: rule.name)

    def get_rules_by_priority(self) -> list[TaxRule]:
        """Return all rules by descending priority, then id."""
        return sort_by_priority(self._rules.values())

    def validate_rules(self) -> list[ValidationError]:
        """
        Validate every stored rule against the current validation rules.

        Returns:
            All errors across all rules, empty if every rule is valid.
        """
        errors: list[ValidationError] = []
        for rule in self._rules.values():
            errors.extend(self._validator.validate(rule, self._validation_rules.values()))
        return errors

    def export_rules(self) -> RegistryExport:
        """
        Export rules, validation rules and configuration.

        Returns:
            Interchange document; serializing it is up to the caller.
        """
        return RegistryExport(
            rules=tuple(self._rules.values()),
            validation_rules=tuple(self._validation_rules.values()),
            configuration=self._configuration,
            export_date=self._clock(),
            version=EXPORT_VERSION,
        )

    def get_statistics(self) -> RuleStatistics:
        """
        Summarize the registry.

        Returns:
            Rule counts overall, by activity, jurisdiction, type and method.
        """
        now = self._clock()
        active = sum(1 for rule in self._rules.values() if rule.is_active_on(now))
        jurisdictions: Counter[TaxJurisdiction] = Counter()
        tax_types: Counter[TaxType] = Counter()
        methods: Counter[TaxCalculationMethod] = Counter()
        for rule in self._rules.values():
            jurisdictions[rule.jurisdiction] += 1
            tax_types[rule.type] += 1
            methods[rule.method] += 1

        return RuleStatistics(
            total_rules=len(self._rules),
            active_rules=active,
            inactive_rules=len(self._rules) - active,
            validation_rules=len(self._validation_rules),
            audit_entries=len(self._audit_trail),
            jurisdictions=dict(jurisdictions),
            tax_types=dict(tax_types),
            methods=dict(methods),
        )

    def get_audit_trail(self) -> list[TaxAuditTrail]:
        """Return audit trail entries, oldest first."""
        return list(self._audit_trail)

    # -- internals ---------------------------------------------------------

    def _set_active(self, rule_id: str, *, active: bool) -> Result[TaxRule, RuleNotFoundError]:
        rule = self._rules.get(rule_id)
        if rule is None:
            return Failure(RuleNotFoundError(rule_id))
        updated = replace(rule, is_active=active)
        self._rules[rule_id] = updated
        if active:
            self._record(AuditAction.ACTIVATE_RULE, f"Activated rule: {rule.name}", rule_id)
        else:
            self._record(AuditAction.DEACTIVATE_RULE, f"Deactivated rule: {rule.name}", rule_id)
        return Success(updated)

    def _reject(self, rule_id: str, errors: list[ValidationError]) -> Failure[ValidationError]:
        logger.warning(
            "Tax rule rejected",
            rule_id=rule_id,
            errors=[str(e) for e in errors],
        )
        return Failure(errors[0])

    def _reject_conflicts(
        self,
        rule_id: str,
        conflicts: list[RuleConflict],
    ) -> Failure[ConflictError]:
        error = ConflictError(rule_id, conflicts)
        logger.warning("Tax rule conflicts", rule_id=rule_id, conflicts=[str(c) for c in conflicts])
        return Failure(error)

    def _record(self, action: AuditAction, reason: str, rule_id: str) -> None:
        self._audit_trail.append(
            TaxAuditTrail(
                id=f"audit_{uuid.uuid4().hex}",
                action=action,
                reason=reason,
                rule_id=rule_id,
                timestamp=self._clock(),
            )
        )
