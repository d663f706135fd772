"""Build an analyzed branch snapshot and cleanup plans for a repository."""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Callable, Iterable, Mapping, Optional, Sequence

from branchwise.config import CleanupRule, Settings
from branchwise.gone import gone_plan
from branchwise.git import GitRepo
from branchwise.health import BranchHealth, assess
from branchwise.models import BranchRecord, EvaluationPlan, GateResult, PRStatus
from branchwise.normalize import RawBranchFacts, normalize_all
from branchwise.platforms import PRLookup
from branchwise.rules import evaluate
from branchwise.safety import IdentityProvider, SafetyContext, authorize

logger = logging.getLogger(__name__)

PRLookupFn = Callable[[Sequence[str]], Mapping[str, PRStatus]]


@dataclass(frozen=True)
class Snapshot:
    """Normalized records plus health for one evaluation request."""

    records: tuple[BranchRecord, ...]
    health: Mapping[str, BranchHealth]
    base_branch: str
    taken_at: datetime

    @property
    def local(self) -> list[BranchRecord]:
        return [record for record in self.records if not record.is_remote]

    @property
    def remote(self) -> list[BranchRecord]:
        return [record for record in self.records if record.is_remote]


def _pr_branch_name(raw: RawBranchFacts) -> str:
    name = str(raw.name or "")
    if raw.is_remote and raw.remote and name.startswith(f"{raw.remote}/"):
        return name[len(raw.remote) + 1 :]
    return name


def lookup_pr_statuses(names: Sequence[str], lookups: Iterable[PRLookupFn]) -> dict[str, PRStatus]:
    """Run every lookup in parallel and merge the results.

    A lookup that raises counts as "no PR data"; earlier lookups win on
    conflicting branch names.
    """
    lookups = list(lookups)
    if not names or not lookups:
        return {}

    def run(lookup: PRLookupFn) -> Mapping[str, PRStatus]:
        try:
            return lookup(names)
        except Exception as err:  # lookups are external, treat any failure as unknown
            logger.warning("PR lookup failed, continuing without PR status: %s", err)
            return {}

    merged: dict[str, PRStatus] = {}
    with ThreadPoolExecutor(max_workers=len(lookups)) as pool:
        for statuses in pool.map(run, lookups):
            for name, status in statuses.items():
                merged.setdefault(name, status)
    return merged


def build_snapshot(
    raws: Sequence[RawBranchFacts],
    settings: Settings,
    *,
    pr_lookups: Iterable[PRLookupFn] = (),
    base_branch: str = "",
    now: Optional[datetime] = None,
) -> Snapshot:
    """Normalize raw facts, attach PR status and score every branch.

    All PR lookups complete before normalization starts. The base branch
    is always protected, along with its remote counterparts.
    """
    now = now or datetime.now(timezone.utc)
    names = list(dict.fromkeys(_pr_branch_name(raw) for raw in raws if raw.name))
    statuses = lookup_pr_statuses(names, pr_lookups)
    if statuses:
        raws = [replace(raw, pr=statuses.get(_pr_branch_name(raw), raw.pr)) for raw in raws]

    protected = settings.protected_set | {base_branch} if base_branch else settings.protected_set
    records = tuple(normalize_all(raws, protected))
    health = {record.name: assess(record, settings, now) for record in records}
    return Snapshot(records=records, health=health, base_branch=base_branch, taken_at=now)


def analyze_repository(
    repo: GitRepo,
    settings: Settings,
    *,
    include_remote: bool = True,
    with_pr_status: bool = True,
    now: Optional[datetime] = None,
) -> Snapshot:
    """Collect and analyze the current state of a repository."""
    base = settings.base_branch or repo.detect_base_branch()
    raws = repo.collect_branch_facts(base, include_remote=include_remote)

    lookups: list[PRLookup] = []
    if with_pr_status:
        for remote in repo.repo.remotes:
            lookup = PRLookup.from_remote(
                repo.remote_url(remote.name),
                timeout=settings.pr_lookup_timeout,
                max_bytes=settings.pr_lookup_max_bytes,
            )
            if lookup.info.platform is None:
                lookup.close()
                continue
            lookups.append(lookup)

    try:
        return build_snapshot(
            raws,
            settings,
            pr_lookups=[lookup.lookup for lookup in lookups],
            base_branch=base,
            now=now,
        )
    finally:
        for lookup in lookups:
            lookup.close()


def plan_cleanup(
    snapshot: Snapshot,
    settings: Settings,
    rules: Optional[Sequence[CleanupRule]] = None,
    *,
    dry_run: bool = False,
    identity_provider: Optional[IdentityProvider] = None,
    team_safe: Optional[bool] = None,
    include_remote: bool = False,
) -> tuple[EvaluationPlan, GateResult]:
    """Evaluate rules on a snapshot and pass the plan through the safety gate.

    Remote branches only take part when ``include_remote`` is set.
    """
    records = snapshot.records if include_remote else tuple(snapshot.local)
    plan = evaluate(settings.rules if rules is None else rules, records, settings, dry_run=dry_run, now=snapshot.taken_at)
    context = SafetyContext.build(records, settings, identity_provider, team_safe=team_safe)
    return plan, authorize(plan, context)


def plan_gone_cleanup(
    snapshot: Snapshot,
    settings: Settings,
    *,
    dry_run: bool = False,
    identity_provider: Optional[IdentityProvider] = None,
    team_safe: Optional[bool] = None,
) -> tuple[EvaluationPlan, GateResult]:
    """Plan deletion of orphaned local branches through the safety gate."""
    records = snapshot.local
    plan = gone_plan(records, dry_run=dry_run)
    context = SafetyContext.build(records, settings, identity_provider, team_safe=team_safe)
    return plan, authorize(plan, context)
