"""Settings and cleanup rule definitions."""

import logging
from pathlib import Path
from typing import Annotated, Literal, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

SETTINGS_FILE = ".branchwise.yml"

DEFAULT_PROTECTED_BRANCHES = ["main", "master", "develop", "dev", "staging", "production"]


class ConfigError(ValueError):
    """Settings file could not be read or is invalid."""


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class MergedCondition(_Frozen):
    """Branch is (or is not) contained in the base branch."""

    kind: Literal["merged"] = "merged"
    value: bool = True


class StaleCondition(_Frozen):
    """Last commit is older than ``days``. Unknown ages never match."""

    kind: Literal["stale"] = "stale"
    days: int = Field(ge=1)


class PatternCondition(_Frozen):
    """Branch name matches a regular expression."""

    kind: Literal["pattern"] = "pattern"
    regex: str = Field(min_length=1)


class NoRemoteCondition(_Frozen):
    """Branch has no remote tracking ref."""

    kind: Literal["no_remote"] = "no_remote"


Condition = Annotated[
    Union[MergedCondition, StaleCondition, PatternCondition, NoRemoteCondition],
    Field(discriminator="kind"),
]


class CleanupRule(_Frozen):
    """A compound cleanup rule: the AND of its conditions."""

    id: str = Field(min_length=1)
    name: str = ""
    enabled: bool = True
    conditions: tuple[Condition, ...] = ()


class Settings(_Frozen):
    """Read-only configuration for one evaluation."""

    protected_branches: tuple[str, ...] = tuple(DEFAULT_PROTECTED_BRANCHES)
    days_until_stale: int = Field(default=30, ge=1)
    behind_threshold: int = Field(default=20, ge=0)
    team_safe_mode: bool = False
    exclusion_patterns: tuple[str, ...] = ()
    base_branch: Optional[str] = None
    pattern_timeout: float = Field(default=0.1, gt=0)
    pr_lookup_timeout: float = Field(default=10.0, gt=0)
    pr_lookup_max_bytes: int = Field(default=5 * 1024 * 1024, gt=0)
    gone_branch_action: Literal["prompt", "notify-only", "auto-delete"] = "prompt"
    rules: tuple[CleanupRule, ...] = ()

    @field_validator("protected_branches", "exclusion_patterns")
    @classmethod
    def _strip_entries(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        return tuple(entry.strip() for entry in value if entry and entry.strip())

    @field_validator("rules")
    @classmethod
    def _unique_rule_ids(cls, value: tuple[CleanupRule, ...]) -> tuple[CleanupRule, ...]:
        seen: set[str] = set()
        for rule in value:
            if rule.id in seen:
                raise ValueError(f"duplicate rule id: {rule.id}")
            seen.add(rule.id)
        return value

    @property
    def protected_set(self) -> frozenset[str]:
        return frozenset(self.protected_branches)


def load_settings(repo_path: Path) -> Settings:
    """Load settings from the repository's settings file.

    Args:
        repo_path: Repository root (or the settings file itself)

    Returns:
        Parsed settings, or defaults when no file exists

    Raises:
        ConfigError: If the file cannot be parsed or fails validation
    """
    path = repo_path if repo_path.is_file() else repo_path / SETTINGS_FILE
    if not path.exists():
        logger.debug("No settings file at %s, using defaults", path)
        return Settings()

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as err:
        raise ConfigError(f"Failed to read {path}: {err}") from err

    if not isinstance(data, dict):
        raise ConfigError(f"Invalid settings in {path}: expected a mapping")

    try:
        return Settings.model_validate(data)
    except ValidationError as err:
        raise ConfigError(f"Invalid settings in {path}:\n{err}") from err
