"""Tag-based contact classification.

Maps the tag strings on a CRM contact to exactly one Classification using
two priority-ordered rule tables:

1. EXACT rules -- a tag equals one of a set of names (active clients).
2. SUBSTRING rules -- a tag contains one of a family of fragments
   (customers first, then cold leads).

Rules are evaluated in table order and the first match wins, so an
"ACA Active 2025" tag beats a stale "cold lead" tag on the same contact.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from src.dialer_sync.config import Settings, split_csv
from src.dialer_sync.sync.schemas import Classification

TagPredicate = Callable[[str], bool]


@dataclass(frozen=True)
class TagRule:
    """A named (predicate, outcome) pair evaluated against one normalized tag."""

    name: str
    predicate: TagPredicate
    outcome: Classification


def exact_rule(name: str, values: Iterable[str], outcome: Classification) -> TagRule:
    """Rule matching a tag equal to any of ``values``."""
    wanted = frozenset(v.strip().lower() for v in values if v.strip())
    return TagRule(name=name, predicate=lambda tag: tag in wanted, outcome=outcome)


def substring_rule(name: str, fragments: Iterable[str], outcome: Classification) -> TagRule:
    """Rule matching a tag that contains any of ``fragments``."""
    wanted = tuple(f.strip().lower() for f in fragments if f.strip())
    return TagRule(
        name=name,
        predicate=lambda tag: any(fragment in tag for fragment in wanted),
        outcome=outcome,
    )


@dataclass(frozen=True)
class TagRules:
    """The two ordered rule tables. Exact rules always run first."""

    exact: tuple[TagRule, ...] = field(default_factory=tuple)
    substring: tuple[TagRule, ...] = field(default_factory=tuple)

    def ordered(self) -> tuple[TagRule, ...]:
        return self.exact + self.substring

    @classmethod
    def build(
        cls,
        active_tags: Iterable[str],
        customer_substrings: Iterable[str],
        cold_substrings: Iterable[str],
    ) -> TagRules:
        return cls(
            exact=(exact_rule("active_client", active_tags, Classification.ACTIVE_CLIENT),),
            substring=(
                substring_rule("customer_family", customer_substrings, Classification.GENERIC_CUSTOMER),
                substring_rule("cold_family", cold_substrings, Classification.COLD_LEAD),
            ),
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> TagRules:
        return cls.build(
            active_tags=split_csv(settings.ACTIVE_CLIENT_TAGS),
            customer_substrings=split_csv(settings.CUSTOMER_TAG_SUBSTRINGS),
            cold_substrings=split_csv(settings.COLD_TAG_SUBSTRINGS),
        )


DEFAULT_RULES = TagRules.build(
    active_tags=("aca active 2025", "aca active 2026"),
    customer_substrings=("customer", "client", "won", "purchased"),
    cold_substrings=("cold lead", "cold", "new lead", "prospect"),
)


def normalize_tags(tags: Iterable[str] | None) -> list[str]:
    """Lower-case and trim tags, dropping empties."""
    return [t.strip().lower() for t in (tags or []) if t and t.strip()]


def classify(
    tags: Iterable[str] | None,
    rules: TagRules = DEFAULT_RULES,
    *,
    is_customer: bool = False,
) -> Classification:
    """Classify a contact from its tags.

    Args:
        tags: Raw CRM tag strings (any case).
        rules: Rule tables to evaluate.
        is_customer: Sticky ledger flag. When set, anything short of an
            active-client match is excluded.

    Returns:
        The outcome of the first matching rule, or EXCLUDED.
    """
    normalized = normalize_tags(tags)

    outcome = Classification.EXCLUDED
    for rule in rules.ordered():
        if any(rule.predicate(tag) for tag in normalized):
            outcome = rule.outcome
            break

    if is_customer and outcome != Classification.ACTIVE_CLIENT:
        return Classification.EXCLUDED
    return outcome
