"""Conflict detection between tax rules."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

    from services.taxes.types import TaxRule


class ConflictKind(str, Enum):
    """Why two rules cannot coexist."""

    DUPLICATE_ID = "duplicate_id"
    OVERLAP = "overlap"


@dataclass(frozen=True, slots=True)
class RuleConflict:
    """
    A conflict between a candidate rule and a registered one.

    Attributes:
        kind: Kind of conflict.
        existing_rule_id: Id of the registered rule.
    """

    kind: ConflictKind
    existing_rule_id: str

    def __str__(self) -> str:
        """Return string representation of the conflict."""
        if self.kind is ConflictKind.DUPLICATE_ID:
            return f"duplicate rule ID: {self.existing_rule_id}"
        return f"overlapping rule: {self.existing_rule_id}"


def has_time_overlap(rule1: TaxRule, rule2: TaxRule) -> bool:
    """Check if two half-open validity windows intersect."""
    return rule1.valid_from < rule2.valid_until and rule2.valid_from < rule1.valid_until


def has_geographic_overlap(rule1: TaxRule, rule2: TaxRule) -> bool:
    """
    Check if two rules cover a common country.

    A rule without countries is global and overlaps everything. Country
    codes compare case-insensitively; states, cities and postal codes are
    not consulted.
    """
    if not rule1.applicable_countries or not rule2.applicable_countries:
        return True
    return not _countries(rule1).isdisjoint(_countries(rule2))


def find_rule_conflicts(candidate: TaxRule, existing_rules: Iterable[TaxRule]) -> list[RuleConflict]:
    """
    Find every registered rule a candidate conflicts with.

    A conflict is either a shared id, or the same jurisdiction and tax
    type with overlapping validity windows and geography.

    Args:
        candidate: Rule about to be added or updated.
        existing_rules: Rules to compare against. Callers updating a rule
            exclude the rule's current version beforehand.

    Returns:
        Conflicts in registry order, empty if there are none.
    """
    conflicts: list[RuleConflict] = []
    for existing in existing_rules:
        if existing.id == candidate.id:
            conflicts.append(RuleConflict(ConflictKind.DUPLICATE_ID, existing.id))

        if (
            existing.jurisdiction == candidate.jurisdiction
            and existing.type == candidate.type
            and has_time_overlap(existing, candidate)
            and has_geographic_overlap(existing, candidate)
        ):
            conflicts.append(RuleConflict(ConflictKind.OVERLAP, existing.id))
    return conflicts


def _countries(rule: TaxRule) -> set[str]:
    return {country.casefold() for country in rule.applicable_countries}
