"""Final authorization of deletion plans.

The gate is the last step before an executor deletes anything. It re-checks
protection against the snapshot and, in team-safe mode, requires a known
caller identity before any branch can be authorized.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Optional, Protocol

from branchwise.config import Settings
from branchwise.models import (
    AuthorizedPlan,
    BranchRecord,
    EvaluationPlan,
    Exclusion,
    ExclusionReason,
    GateResult,
    Rejected,
)

logger = logging.getLogger(__name__)


class IdentityProvider(Protocol):
    """Source of the caller's author identity."""

    def current_identity(self) -> Optional[str]:
        """Author name of the caller, or None when it cannot be determined."""


@dataclass(frozen=True)
class SafetyContext:
    """Everything the gate needs to judge a plan."""

    records: Mapping[str, BranchRecord] = field(default_factory=dict)
    identity: Optional[str] = None
    team_safe: bool = False

    @classmethod
    def build(
        cls,
        records: Iterable[BranchRecord],
        settings: Settings,
        identity_provider: Optional[IdentityProvider] = None,
        team_safe: Optional[bool] = None,
    ) -> "SafetyContext":
        """Create a context from a snapshot.

        The identity is only looked up when team-safe mode is on. A provider
        that raises counts as "identity unknown".
        """
        team_safe = settings.team_safe_mode if team_safe is None else team_safe
        identity = None
        if team_safe and identity_provider is not None:
            try:
                identity = identity_provider.current_identity()
            except Exception as err:  # any failure means "unknown"
                logger.warning("Could not determine current identity: %s", err)
                identity = None
        return cls(records={record.name: record for record in records}, identity=identity, team_safe=team_safe)


def authorize(plan: EvaluationPlan, context: SafetyContext) -> GateResult:
    """Authorize a plan for execution.

    Args:
        plan: Candidate plan from the rule engine or gone detector
        context: Snapshot and team-safe settings

    Returns:
        AuthorizedPlan with the deletable names and the full exclusion trail,
        or Rejected when team-safe mode cannot establish who the caller is
    """
    exclusions: list[Exclusion] = list(plan.exclusions)
    candidates: list[BranchRecord] = []
    seen: set[str] = set()

    for name in plan.to_delete:
        if name in seen:
            continue
        seen.add(name)

        record = context.records.get(name)
        if record is None:
            exclusions.append(Exclusion(name, ExclusionReason.UNKNOWN_BRANCH, "not in the current snapshot"))
            continue
        if record.is_protected:
            exclusions.append(Exclusion(name, ExclusionReason.PROTECTED, "protected branch"))
            continue
        candidates.append(record)

    if context.team_safe:
        identity = (context.identity or "").strip()
        # Precondition: no identity, no deletions
        if not identity:
            logger.warning("Team-safe mode is on but the current identity is unknown, rejecting plan")
            exclusions.extend(
                Exclusion(record.name, ExclusionReason.IDENTITY_UNKNOWN, "current identity unknown")
                for record in candidates
            )
            return Rejected(
                reason=ExclusionReason.IDENTITY_UNKNOWN,
                detail="Team-safe mode requires a known identity (set git user.name)",
                exclusions=tuple(exclusions),
                dry_run=plan.dry_run,
            )

        allowed: list[BranchRecord] = []
        for record in candidates:
            if record.author is None:
                exclusions.append(Exclusion(record.name, ExclusionReason.AUTHOR_UNKNOWN, "author unknown"))
            elif record.author != identity:
                exclusions.append(
                    Exclusion(record.name, ExclusionReason.AUTHOR_MISMATCH, f"authored by {record.author}")
                )
            else:
                allowed.append(record)
        candidates = allowed

    return AuthorizedPlan(
        to_delete=tuple(record.name for record in candidates),
        exclusions=tuple(exclusions),
        dry_run=plan.dry_run,
    )
