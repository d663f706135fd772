"""Detect branches whose remote tracking ref has disappeared."""

import logging
from typing import Iterable, Sequence

from branchwise.models import BranchRecord, EvaluationPlan, Exclusion, ExclusionReason

logger = logging.getLogger(__name__)


def find_gone(records: Iterable[BranchRecord]) -> list[str]:
    """Names of gone branches, in input order. The current branch is left out."""
    return [record.name for record in records if record.is_gone and not record.is_current]


def gone_plan(records: Sequence[BranchRecord], *, dry_run: bool = False) -> EvaluationPlan:
    """Deletion plan for gone branches, to be passed through the safety gate."""
    to_delete = []
    skipped_protected = []
    for record in records:
        if not record.is_gone or record.is_current:
            continue
        if record.is_protected:
            skipped_protected.append(Exclusion(record.name, ExclusionReason.PROTECTED, "remote gone"))
        else:
            to_delete.append(record.name)
    return EvaluationPlan(
        to_delete=tuple(dict.fromkeys(to_delete)),
        skipped_protected=tuple(skipped_protected),
        dry_run=dry_run,
    )


class GoneTracker:
    """Remembers which branches were already gone, per repository.

    Only names are kept between calls. Branches already gone when a repository
    is first seen are not reported as newly gone.
    """

    def __init__(self) -> None:
        self._known: dict[str, frozenset[str]] = {}

    def seed(self, repo_key: str, records: Iterable[BranchRecord]) -> None:
        self._known[repo_key] = frozenset(find_gone(records))

    def update(self, repo_key: str, records: Sequence[BranchRecord]) -> list[str]:
        """Record the current gone set and return the names that are new."""
        current = find_gone(records)
        previous = self._known.get(repo_key)
        self._known[repo_key] = frozenset(current)
        if previous is None:
            logger.debug("Seeding gone branches for %s: %d", repo_key, len(current))
            return []
        return [name for name in current if name not in previous]

    def forget(self, repo_key: str, names: Iterable[str]) -> None:
        """Drop deleted branches from the known set."""
        if repo_key in self._known:
            self._known[repo_key] = self._known[repo_key] - frozenset(names)
