"""Branch health scoring and status classification."""

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from branchwise.config import Settings
from branchwise.models import BranchRecord, BranchStatus, HealthLevel

BASE_SCORE = 90
MERGED_PENALTY = 40
UNPUBLISHED_WORK_BONUS = 10
AGING_PENALTY = 10
STALE_PENALTY = 20
MAX_STALE_OVERSHOOT_PENALTY = 30
GONE_PENALTY = 20
NO_REMOTE_PENALTY = 10
BEHIND_PENALTY = 5
FAR_BEHIND_PENALTY = 10

_ISSUE_PATTERNS = (
    re.compile(r"(?:^|/)(GH-\d+)(?:[-_]|$)", re.IGNORECASE),
    re.compile(r"(?:^|/)([A-Z]+-\d+)(?:[-_]|$)", re.IGNORECASE),
    re.compile(r"(?:^|/)(#?\d+)(?:[-_]|$)"),
)


@dataclass(frozen=True)
class BranchHealth:
    """Score, status and explanation for one branch."""

    score: int
    status: BranchStatus
    level: HealthLevel
    reason: str


def _age_penalty(age: Optional[int], stale_days: int) -> int:
    if age is None:
        # Unknown age is neutral, never "stale"
        return 0
    if age > stale_days:
        overshoot = age - stale_days
        extra = min(MAX_STALE_OVERSHOOT_PENALTY, overshoot * MAX_STALE_OVERSHOOT_PENALTY // stale_days)
        return STALE_PENALTY + extra
    if age > stale_days / 2:
        return AGING_PENALTY
    return 0


def _behind_penalty(behind: Optional[int], threshold: int) -> int:
    if behind is None:
        return 0
    if behind > threshold * 5 // 2:
        return FAR_BEHIND_PENALTY
    if behind > threshold:
        return BEHIND_PENALTY
    return 0


def score(record: BranchRecord, settings: Settings, now: Optional[datetime] = None) -> int:
    """Health score between 0 and 100. Lower means safer to delete.

    Args:
        record: Branch to score
        settings: Stale and behind thresholds
        now: Reference time for the age computation

    Returns:
        Integer score clamped to 0..100
    """
    value = BASE_SCORE

    if record.is_merged:
        value -= MERGED_PENALTY

    # Unpublished work makes a branch less deletable
    if record.ahead_count:
        value += UNPUBLISHED_WORK_BONUS

    value -= _age_penalty(record.age_days(now), settings.days_until_stale)

    if record.is_gone:
        value -= GONE_PENALTY
    elif not record.has_remote_tracking:
        value -= NO_REMOTE_PENALTY

    value -= _behind_penalty(record.behind_count, settings.behind_threshold)

    return max(0, min(100, value))


def classify(record: BranchRecord, settings: Settings, now: Optional[datetime] = None) -> BranchStatus:
    """Classify a branch. Merged wins over orphaned, both win over stale."""
    if record.is_merged:
        return BranchStatus.MERGED
    if record.is_gone:
        return BranchStatus.ORPHANED
    age = record.age_days(now)
    if age is not None and age > settings.days_until_stale:
        return BranchStatus.STALE
    return BranchStatus.ACTIVE


def health_level(value: int) -> HealthLevel:
    if value >= 80:
        return HealthLevel.HEALTHY
    if value >= 60:
        return HealthLevel.WARNING
    if value >= 40:
        return HealthLevel.CRITICAL
    return HealthLevel.DANGER


def health_reason(record: BranchRecord, settings: Settings, now: Optional[datetime] = None) -> str:
    """Short human readable explanation of the score."""
    reasons = []
    if record.is_merged:
        reasons.append("merged")
    age = record.age_days(now)
    if age is None:
        reasons.append("age unknown")
    elif age > settings.days_until_stale:
        reasons.append(f"{age}d old")
    if record.is_gone:
        reasons.append("remote deleted")
    elif not record.has_remote_tracking:
        reasons.append("no remote")
    if record.behind_count is not None and record.behind_count > settings.behind_threshold:
        reasons.append(f"{record.behind_count} behind")
    if record.ahead_count:
        reasons.append(f"{record.ahead_count} unmerged commits")
    return ", ".join(reasons) if reasons else "active"


def assess(record: BranchRecord, settings: Settings, now: Optional[datetime] = None) -> BranchHealth:
    value = score(record, settings, now)
    return BranchHealth(
        score=value,
        status=classify(record, settings, now),
        level=health_level(value),
        reason=health_reason(record, settings, now),
    )


def extract_issue(branch_name: str) -> Optional[str]:
    """Issue reference embedded in a branch name (``#123``, ``JIRA-42``, ``GH-7``)."""
    for pattern in _ISSUE_PATTERNS:
        match = pattern.search(branch_name)
        if match:
            return match.group(1)
    return None
