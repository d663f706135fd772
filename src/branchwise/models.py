"""Branch records and cleanup plan models."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional, Union

SECONDS_PER_DAY = 24 * 60 * 60


class BranchStatus(Enum):
    """Branch status."""

    MERGED = "merged"
    STALE = "stale"
    ORPHANED = "orphaned"
    ACTIVE = "active"


class HealthLevel(Enum):
    """Health bucket derived from the score."""

    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"
    DANGER = "danger"


class PRState(Enum):
    """Pull/merge request state."""

    OPEN = "open"
    MERGED = "merged"
    CLOSED = "closed"


class ExclusionReason(Enum):
    """Why a branch was kept out of a deletion plan."""

    PROTECTED = "protected"
    CURRENT = "current"
    EXCLUDED_PATTERN = "excluded_pattern"
    PATTERN_TIMEOUT = "pattern_timeout"
    INVALID_PATTERN = "invalid_pattern"
    AUTHOR_MISMATCH = "author_mismatch"
    AUTHOR_UNKNOWN = "author_unknown"
    IDENTITY_UNKNOWN = "identity_unknown"
    UNKNOWN_BRANCH = "unknown_branch"


@dataclass(frozen=True)
class PRStatus:
    """Pull request (or merge request) attached to a branch."""

    number: int
    state: PRState
    title: str
    url: str
    draft: bool = False


@dataclass(frozen=True)
class BranchRecord:
    """Normalized, immutable view of a single branch.

    Optional fields are ``None`` when the value is unknown. They are never
    defaulted to a value that would look "normal" (an age of zero days or an
    in-sync ahead/behind count of zero).
    """

    name: str
    is_remote: bool = False
    remote: Optional[str] = None
    last_commit_date: Optional[datetime] = None
    last_commit_subject: Optional[str] = None
    author: Optional[str] = None
    ahead_count: Optional[int] = None
    behind_count: Optional[int] = None
    is_merged: bool = False
    has_remote_tracking: bool = False
    tracking_ref: Optional[str] = None
    is_gone: bool = False
    pr_status: Optional[PRStatus] = None
    is_protected: bool = False
    is_current: bool = False

    @property
    def short_name(self) -> str:
        """Branch name without its remote prefix."""
        if self.is_remote and self.remote and self.name.startswith(f"{self.remote}/"):
            return self.name[len(self.remote) + 1 :]
        return self.name

    def age_days(self, now: Optional[datetime] = None) -> Optional[int]:
        """Whole days since the last commit, or None when the date is unknown."""
        if self.last_commit_date is None:
            return None
        now = now or datetime.now(timezone.utc)
        elapsed = (now - self.last_commit_date).total_seconds()
        # Commits dated in the future (clock skew) count as fresh
        return max(0, int(elapsed // SECONDS_PER_DAY))


@dataclass(frozen=True)
class Exclusion:
    """A branch left out of a plan, with the reason."""

    branch: str
    reason: ExclusionReason
    detail: str = ""


@dataclass(frozen=True)
class EvaluationPlan:
    """Side-effect free result of evaluating cleanup rules."""

    to_delete: tuple[str, ...] = ()
    skipped_protected: tuple[Exclusion, ...] = ()
    skipped_unsafe: tuple[Exclusion, ...] = ()
    matched_rules: Mapping[str, tuple[str, ...]] = field(default_factory=lambda: MappingProxyType({}))
    dry_run: bool = False

    @property
    def exclusions(self) -> tuple[Exclusion, ...]:
        return self.skipped_protected + self.skipped_unsafe


@dataclass(frozen=True)
class AuthorizedPlan:
    """Plan that passed the safety gate."""

    to_delete: tuple[str, ...]
    exclusions: tuple[Exclusion, ...] = ()
    dry_run: bool = False

    @property
    def may_execute(self) -> bool:
        """Whether an executor is allowed to act on this plan."""
        return not self.dry_run and bool(self.to_delete)


@dataclass(frozen=True)
class Rejected:
    """Plan refused as a whole by the safety gate."""

    reason: ExclusionReason
    detail: str
    exclusions: tuple[Exclusion, ...] = ()
    dry_run: bool = False

    @property
    def to_delete(self) -> tuple[str, ...]:
        return ()

    @property
    def may_execute(self) -> bool:
        return False


GateResult = Union[AuthorizedPlan, Rejected]
