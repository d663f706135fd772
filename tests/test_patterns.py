"""Tests for time-boxed pattern matching."""

import pytest

from branchwise import patterns
from branchwise.patterns import (
    MAX_INPUT_LENGTH,
    MAX_PATTERN_LENGTH,
    PatternError,
    glob_to_regex,
    is_excluded,
    safe_search,
    validate_pattern,
)


def test_simple_match() -> None:
    result = safe_search(r"^exp/.*", "exp/foo")
    assert result.matched
    assert result.ok


def test_anchored_pattern_does_not_match_inside() -> None:
    assert not safe_search(r"^exp\/.*", "feature/exp").matched
    assert safe_search(r"^exp\/.*", "exp/foo").matched


@pytest.mark.parametrize("pattern", ["(a+)+$", "(x*)*", "(a|aa)+", "a.*.*b"])
def test_dangerous_patterns_are_rejected(pattern: str) -> None:
    with pytest.raises(PatternError, match="performance"):
        validate_pattern(pattern)
    result = safe_search(pattern, "aaaa")
    assert not result.matched
    assert result.error


def test_invalid_pattern() -> None:
    result = safe_search("feature/[", "feature/x")
    assert not result.matched
    assert result.error is not None
    assert result.error.startswith("Invalid regex")


def test_long_pattern_is_rejected() -> None:
    result = safe_search("a" * (MAX_PATTERN_LENGTH + 1), "a")
    assert not result.matched
    assert "too long" in (result.error or "")


def test_long_input_is_rejected() -> None:
    result = safe_search("x", "x" * (MAX_INPUT_LENGTH + 1))
    assert not result.matched
    assert result.error is not None


def test_timeout_means_no_match(monkeypatch: pytest.MonkeyPatch) -> None:
    """Test that a match that runs out of time reports timed_out and no match."""

    class SlowPattern:
        def search(self, text: str, timeout: float) -> None:
            raise TimeoutError("regex timed out")

    monkeypatch.setattr(patterns, "compile_pattern", lambda pattern: SlowPattern())

    result = safe_search("^feature/", "feature/x", timeout=0.01)

    assert not result.matched
    assert result.timed_out
    assert not result.ok


@pytest.mark.parametrize(
    ("glob", "name", "expected"),
    [
        ("keep/*", "keep/this", True),
        ("keep/*", "keep/deep/this", False),
        ("release-?", "release-1", True),
        ("release-?", "release-10", False),
        ("feature.x", "featureAx", False),
        ("wip", "wip", True),
    ],
)
def test_glob_translation(glob: str, name: str, expected: bool) -> None:
    assert bool(glob_to_regex(glob).match(name)) is expected


def test_is_excluded() -> None:
    assert is_excluded("keep/this", ["other", "keep/*"])
    assert not is_excluded("feature/keep", ["keep/*"])
    assert not is_excluded("anything", [])
