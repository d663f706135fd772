"""Turn raw per-branch Git facts into validated branch records."""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from branchwise.models import BranchRecord, PRState, PRStatus

logger = logging.getLogger(__name__)

# ASCII unit separator. Git never writes it into refnames, author names or
# commit subjects, so it cannot collide with free text.
FIELD_SEPARATOR = "\x1f"

REF_FIELDS = (
    "refname:short",
    "committerdate:unix",
    "authorname",
    "upstream:short",
    "upstream:track",
    "contents:subject",
)

# for-each-ref expands %1f to the separator byte
REF_FORMAT = "%1f".join(f"%({name})" for name in REF_FIELDS)

_TRACK_RE = re.compile(r"(ahead|behind) (\d+)")


class MalformedBranchError(ValueError):
    """Raw branch facts cannot be turned into a record."""


@dataclass(frozen=True)
class RawBranchFacts:
    """Branch facts as delivered by the data source, not yet validated."""

    name: Any
    is_remote: bool = False
    remote: Optional[str] = None
    last_commit: Any = None
    subject: Any = None
    author: Any = None
    ahead: Any = None
    behind: Any = None
    is_merged: bool = False
    upstream: Any = None
    gone: bool = False
    pr: Any = None
    is_current: bool = False


def parse_commit_date(value: Any) -> Optional[datetime]:
    """Parse a commit date.

    Accepts datetimes, unix timestamps (numbers or numeric strings) and
    ISO-8601 strings. Anything else, including zero or negative timestamps,
    yields None.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)

    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            value = float(text)
        except ValueError:
            try:
                parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
            except ValueError:
                logger.warning("Unparseable commit date %r", value)
                return None
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)

    if isinstance(value, (int, float)):
        if value != value or value <= 0:  # NaN or epoch sentinel
            return None
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            logger.warning("Commit timestamp out of range: %r", value)
            return None

    logger.warning("Unsupported commit date type %s", type(value).__name__)
    return None


def parse_count(value: Any) -> Optional[int]:
    """Parse an ahead/behind count. Missing or invalid counts stay None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        count = int(str(value).strip())
    except ValueError:
        return None
    return count if count >= 0 else None


def parse_track(track: str) -> tuple[Optional[int], Optional[int], bool]:
    """Parse ``%(upstream:track)`` output.

    Returns:
        Tuple of (ahead, behind, gone). Empty text yields (None, None, False);
        a count missing from non-empty text is 0.
    """
    text = (track or "").strip()
    if not text:
        return None, None, False
    if text == "[gone]":
        return None, None, True

    ahead: Optional[int] = 0
    behind: Optional[int] = 0
    for kind, count in _TRACK_RE.findall(text):
        if kind == "ahead":
            ahead = int(count)
        else:
            behind = int(count)
    return ahead, behind, False


def parse_ref_line(line: str, *, is_remote: bool = False) -> Optional[RawBranchFacts]:
    """Parse one line of ``git for-each-ref --format=REF_FORMAT`` output.

    The subject is the last field and split with a bounded maxsplit, so any
    separator-looking text in it stays inside the subject.
    """
    parts = line.rstrip("\n").split(FIELD_SEPARATOR, len(REF_FIELDS) - 1)
    if len(parts) != len(REF_FIELDS):
        logger.warning("Skipping malformed ref line with %d fields", len(parts))
        return None

    name, timestamp, author, upstream, track, subject = parts
    _, _, gone = parse_track(track)
    remote = name.split("/", 1)[0] if is_remote and "/" in name else None
    return RawBranchFacts(
        name=name,
        is_remote=is_remote,
        remote=remote,
        last_commit=timestamp,
        subject=subject,
        author=author,
        upstream=upstream,
        gone=gone,
    )


def parse_pr_status(value: Any) -> Optional[PRStatus]:
    """Build a PRStatus from a mapping; anything incomplete becomes None."""
    if value is None or isinstance(value, PRStatus):
        return value
    if not isinstance(value, dict):
        return None
    try:
        state = str(value["state"]).lower()
        draft = bool(value.get("draft")) or state == "draft"
        return PRStatus(
            number=int(value["number"]),
            state=PRState.OPEN if state == "draft" else PRState(state),
            title=str(value.get("title") or ""),
            url=str(value.get("url") or ""),
            draft=draft,
        )
    except (KeyError, TypeError, ValueError):
        logger.warning("Ignoring malformed PR status %r", value)
        return None


def is_protected_name(name: str, protected: Iterable[str], remote: Optional[str] = None) -> bool:
    """Exact-token protection check.

    For a remote branch the name without its remote prefix is also compared,
    so ``origin/main`` is protected by ``main``. No prefix or substring
    matching: ``maintain`` is not ``main``.
    """
    protected_set = protected if isinstance(protected, (set, frozenset)) else set(protected)
    if name in protected_set:
        return True
    if remote and name.startswith(f"{remote}/"):
        return name[len(remote) + 1 :] in protected_set
    return False


def _optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def normalize(raw: RawBranchFacts, protected: Iterable[str]) -> BranchRecord:
    """Turn raw facts into a BranchRecord.

    Raises:
        MalformedBranchError: If the branch name is missing or blank
    """
    name = _optional_text(raw.name)
    if name is None:
        raise MalformedBranchError("branch name is empty")

    upstream = _optional_text(raw.upstream)
    remote = _optional_text(raw.remote)
    # Counts are only meaningful for branches with somewhere to sync to
    has_counts = bool(raw.is_remote) or upstream is not None
    return BranchRecord(
        name=name,
        is_remote=bool(raw.is_remote),
        remote=remote,
        last_commit_date=parse_commit_date(raw.last_commit),
        last_commit_subject=_optional_text(raw.subject),
        author=_optional_text(raw.author),
        ahead_count=parse_count(raw.ahead) if has_counts else None,
        behind_count=parse_count(raw.behind) if has_counts else None,
        is_merged=bool(raw.is_merged),
        # A remote-tracking ref is its own remote counterpart
        has_remote_tracking=bool(raw.is_remote) or (upstream is not None and not raw.gone),
        tracking_ref=upstream,
        is_gone=bool(raw.gone) and not raw.is_remote,
        pr_status=parse_pr_status(raw.pr),
        is_protected=is_protected_name(name, protected, remote if raw.is_remote else None),
        is_current=bool(raw.is_current),
    )


def normalize_all(raws: Iterable[RawBranchFacts], protected: Iterable[str]) -> list[BranchRecord]:
    """Normalize a batch, keeping input order.

    Malformed entries are logged and skipped; a repeated name keeps its first
    occurrence.
    """
    protected_set = frozenset(protected)
    records: list[BranchRecord] = []
    seen: set[str] = set()
    for raw in raws:
        try:
            record = normalize(raw, protected_set)
        except MalformedBranchError as err:
            logger.warning("Skipping branch: %s", err)
            continue
        if record.name in seen:
            logger.warning("Skipping duplicate branch %s", record.name)
            continue
        seen.add(record.name)
        records.append(record)
    return records
