"""Evaluate cleanup rules against a branch snapshot.

Conditions inside a rule are AND-ed, enabled rules are OR-ed. Evaluation is
pure: it builds an ``EvaluationPlan`` and never touches the repository. A dry
run goes through exactly the same path; the flag is only copied onto the plan.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from types import MappingProxyType
from typing import Iterable, Optional, Sequence

from branchwise.config import (
    CleanupRule,
    Condition,
    MergedCondition,
    NoRemoteCondition,
    PatternCondition,
    Settings,
    StaleCondition,
)
from branchwise.models import BranchRecord, EvaluationPlan, Exclusion, ExclusionReason
from branchwise.patterns import is_excluded, safe_search

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RuleOutcome:
    """Result of testing one rule against one branch."""

    matched: bool
    failure: Optional[Exclusion] = None


def _check_condition(condition: Condition, record: BranchRecord, now: Optional[datetime]) -> bool:
    if isinstance(condition, MergedCondition):
        return record.is_merged == condition.value
    if isinstance(condition, StaleCondition):
        age = record.age_days(now)
        return age is not None and age >= condition.days
    if isinstance(condition, NoRemoteCondition):
        return not record.has_remote_tracking
    raise TypeError(f"Unsupported condition: {condition!r}")


def match_rule(
    rule: CleanupRule,
    record: BranchRecord,
    settings: Settings,
    now: Optional[datetime] = None,
) -> RuleOutcome:
    """Test a rule against a branch.

    Structural conditions run first so a pattern is only matched when the
    rest of the rule already holds. Patterns see the branch name without its
    remote prefix, so ``^exp/`` matches both ``exp/foo`` and ``origin/exp/foo``.
    A pattern that is invalid or times out makes the rule fail, and the
    failure is reported because it was decisive.
    """
    if not rule.conditions:
        return RuleOutcome(matched=False)

    patterns: list[PatternCondition] = []
    for condition in rule.conditions:
        if isinstance(condition, PatternCondition):
            patterns.append(condition)
        elif not _check_condition(condition, record, now):
            return RuleOutcome(matched=False)

    for condition in patterns:
        result = safe_search(condition.regex, record.short_name, timeout=settings.pattern_timeout)
        if result.timed_out:
            return RuleOutcome(
                matched=False,
                failure=Exclusion(
                    record.name,
                    ExclusionReason.PATTERN_TIMEOUT,
                    f"rule {rule.id}: pattern {condition.regex!r} timed out",
                ),
            )
        if result.error:
            logger.warning("Rule %s skipped for %s: %s", rule.id, record.name, result.error)
            return RuleOutcome(
                matched=False,
                failure=Exclusion(
                    record.name,
                    ExclusionReason.INVALID_PATTERN,
                    f"rule {rule.id}: {result.error}",
                ),
            )
        if not result.matched:
            return RuleOutcome(matched=False)

    return RuleOutcome(matched=True)


def evaluate(
    rules: Iterable[CleanupRule],
    records: Sequence[BranchRecord],
    settings: Settings,
    *,
    dry_run: bool = False,
    now: Optional[datetime] = None,
) -> EvaluationPlan:
    """Build a deletion plan from the enabled rules.

    Args:
        rules: Rule set; disabled rules are ignored
        records: Branch snapshot, in the order candidates should be listed
        settings: Exclusion globs and pattern timeout
        dry_run: Copied onto the plan unchanged
        now: Reference time for stale conditions

    Returns:
        The plan. An empty or fully disabled rule set gives an empty plan.
    """
    enabled = [rule for rule in rules if rule.enabled]
    if not enabled:
        logger.debug("No enabled cleanup rules")
        return EvaluationPlan(dry_run=dry_run)

    to_delete: list[str] = []
    skipped_protected: list[Exclusion] = []
    skipped_unsafe: list[Exclusion] = []
    matched_rules: dict[str, tuple[str, ...]] = {}
    seen: set[str] = set()

    for record in records:
        if record.name in seen:
            continue
        seen.add(record.name)

        matched_ids: list[str] = []
        failure: Optional[Exclusion] = None
        for rule in enabled:
            outcome = match_rule(rule, record, settings, now)
            if outcome.matched:
                matched_ids.append(rule.id)
            elif outcome.failure and failure is None:
                failure = outcome.failure

        if not matched_ids:
            # Fail closed, but keep the trail
            if failure is not None:
                skipped_unsafe.append(failure)
            continue

        rule_list = ", ".join(matched_ids)
        if record.is_protected:
            skipped_protected.append(Exclusion(record.name, ExclusionReason.PROTECTED, f"matched {rule_list}"))
            continue
        if record.is_current:
            skipped_unsafe.append(Exclusion(record.name, ExclusionReason.CURRENT, "checked out"))
            continue
        if is_excluded(record.short_name, settings.exclusion_patterns) or is_excluded(
            record.name, settings.exclusion_patterns
        ):
            skipped_unsafe.append(
                Exclusion(record.name, ExclusionReason.EXCLUDED_PATTERN, "matches an exclusion pattern")
            )
            continue

        logger.debug("%s selected by %s", record.name, rule_list)
        to_delete.append(record.name)
        matched_rules[record.name] = tuple(matched_ids)

    return EvaluationPlan(
        to_delete=tuple(to_delete),
        skipped_protected=tuple(skipped_protected),
        skipped_unsafe=tuple(skipped_unsafe),
        matched_rules=MappingProxyType(matched_rules),
        dry_run=dry_run,
    )


def builtin_rules(settings: Settings, kinds: Iterable[str]) -> tuple[CleanupRule, ...]:
    """Ready-made single-condition rules for command line use."""
    catalog = {
        "merged": CleanupRule(id="merged", name="Merged branches", conditions=(MergedCondition(),)),
        "stale": CleanupRule(
            id="stale",
            name=f"Unmerged, older than {settings.days_until_stale} days",
            conditions=(MergedCondition(value=False), StaleCondition(days=settings.days_until_stale)),
        ),
        "no-remote": CleanupRule(id="no-remote", name="Local only", conditions=(NoRemoteCondition(),)),
    }
    rules = []
    for kind in kinds:
        if kind not in catalog:
            raise ValueError(f"Unknown rule {kind!r}, expected one of: {', '.join(catalog)}")
        rules.append(catalog[kind])
    return tuple(rules)
