"""Time-boxed matching of user supplied branch name patterns.

Patterns come from settings files, so they are untrusted. Every test goes
through ``safe_search`` which validates the pattern, caps the input length
and bounds the match time. Any failure means "no match".
"""

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Iterable, Optional

import regex

logger = logging.getLogger(__name__)

MAX_PATTERN_LENGTH = 200
MAX_INPUT_LENGTH = 1000
DEFAULT_TIMEOUT = 0.1

# Shapes prone to catastrophic backtracking
_DANGEROUS_SHAPES = (
    regex.compile(r"\([^)]*[+*]\)[+*{]"),  # (x+)+, (x*)*
    regex.compile(r"\([^|]*\|[^)]*\)[+*{]"),  # (a|b)+
    regex.compile(r"\.\*\.\*"),  # .*.*
)


class PatternError(ValueError):
    """Pattern was rejected before matching."""


@dataclass(frozen=True)
class PatternResult:
    """Outcome of one pattern test."""

    matched: bool
    error: Optional[str] = None
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None and not self.timed_out


def validate_pattern(pattern: str) -> None:
    """Reject patterns that are too long, dangerous or do not compile.

    Raises:
        PatternError: With a message describing the problem
    """
    if len(pattern) > MAX_PATTERN_LENGTH:
        raise PatternError(f"Pattern too long (max {MAX_PATTERN_LENGTH} characters)")
    for shape in _DANGEROUS_SHAPES:
        if shape.search(pattern):
            raise PatternError("Pattern contains quantifiers that may cause performance issues")
    compile_pattern(pattern)


@lru_cache(maxsize=256)
def compile_pattern(pattern: str) -> "regex.Pattern[str]":
    try:
        return regex.compile(pattern)
    except regex.error as err:
        raise PatternError(f"Invalid regex: {err}") from err


def safe_search(pattern: str, text: str, timeout: float = DEFAULT_TIMEOUT) -> PatternResult:
    """Search ``text`` for ``pattern`` within ``timeout`` seconds."""
    try:
        validate_pattern(pattern)
    except PatternError as err:
        return PatternResult(matched=False, error=str(err))

    if len(text) > MAX_INPUT_LENGTH:
        return PatternResult(matched=False, error=f"Input too long (max {MAX_INPUT_LENGTH} characters)")

    try:
        return PatternResult(matched=compile_pattern(pattern).search(text, timeout=timeout) is not None)
    except TimeoutError:
        logger.warning("Pattern %r timed out after %ss on %r", pattern, timeout, text)
        return PatternResult(matched=False, timed_out=True)


@lru_cache(maxsize=256)
def glob_to_regex(glob: str) -> "regex.Pattern[str]":
    """Translate a branch glob. ``*`` and ``?`` never cross a ``/``."""
    translated = regex.escape(glob).replace(r"\*", "[^/]*").replace(r"\?", "[^/]")
    return regex.compile(f"^{translated}$")


def is_excluded(branch_name: str, globs: Iterable[str]) -> bool:
    """Whether the branch name matches any exclusion glob."""
    return any(glob_to_regex(glob).match(branch_name) for glob in globs)
