"""Integration tests for the branchwise CLI.

Covers listing, rule based cleanup, gone branch cleanup, team-safe mode and
restoring deleted branches.
"""

from pathlib import Path

import pytest
from git import Actor, Repo
from typer.testing import CliRunner

from branchwise.cli import app
from branchwise.config import SETTINGS_FILE
from branchwise.git import GitRepo
from branchwise.recovery import RecoveryLog


@pytest.fixture
def test_repo(test_env: tuple[Path, Path]) -> Path:
    """Local repository with the standard branch scenarios."""
    local_path, _ = test_env
    return local_path


@pytest.fixture
def runner() -> CliRunner:
    """Create a CLI test runner."""
    return CliRunner()


def local_branches(path: Path) -> set[str]:
    return {head.name for head in Repo(path).heads}


def test_list_command(test_repo: Path, runner: CliRunner) -> None:
    """Test the list command."""
    result = runner.invoke(app, ["list", "--path", str(test_repo)])
    assert result.exit_code == 0
    assert "Local Branches" in result.stdout
    assert "Remote Branches" in result.stdout
    assert "feature/merged" in result.stdout
    assert "feature/current (current)" in result.stdout
    assert "main (protected)" in result.stdout
    assert "origin/feature/remote" in result.stdout
    assert "orphaned" in result.stdout
    assert "Needs Attention" in result.stdout

    # Branch names stay on a single line
    for line in result.stdout.splitlines():
        if "│" in line and "feature/" in line:
            assert line.count("feature/") == 1


def test_list_fetches_remote_changes(test_env: tuple[Path, Path], runner: CliRunner) -> None:
    """Test that list fetches and prunes before analyzing."""
    local_path, remote_path = test_env
    Repo(remote_path).git.branch("-D", "feature/test")

    result = runner.invoke(app, ["list", "--path", str(local_path)])

    assert result.exit_code == 0
    records = {raw.name: raw for raw in GitRepo(local_path).collect_branch_facts()}
    assert records["feature/test"].gone
    assert "origin/feature/test" not in records


def test_list_invalid_repository(tmp_path: Path, runner: CliRunner) -> None:
    result = runner.invoke(app, ["list", "--path", str(tmp_path)])
    assert result.exit_code == 1
    assert "Failed to open repository" in result.stdout


def test_clean_dry_run(test_repo: Path, runner: CliRunner) -> None:
    """Test that a dry run shows the plan and deletes nothing."""
    before = local_branches(test_repo)

    result = runner.invoke(app, ["clean", "--path", str(test_repo), "--dry-run"])

    assert result.exit_code == 0
    assert "Branches to Delete" in result.stdout
    assert "feature/merged" in result.stdout
    assert "feature/other" in result.stdout
    assert "Dry run" in result.stdout
    assert local_branches(test_repo) == before


def test_clean_deletes_merged_branches(test_repo: Path, runner: CliRunner) -> None:
    result = runner.invoke(app, ["clean", "--path", str(test_repo), "-y"])

    assert result.exit_code == 0
    assert "Successfully" in result.stdout
    branches = local_branches(test_repo)
    assert "feature/merged" not in branches
    assert "feature/other" not in branches
    assert {"main", "feature/test", "feature/current", "feature/gone", "feature/local"} <= branches


def test_clean_cancelled(test_repo: Path, runner: CliRunner) -> None:
    result = runner.invoke(app, ["clean", "--path", str(test_repo)], input="n\n")

    assert result.exit_code == 0
    assert "Operation cancelled" in result.stdout
    assert "feature/merged" in local_branches(test_repo)


def test_clean_confirmed(test_repo: Path, runner: CliRunner) -> None:
    result = runner.invoke(app, ["clean", "--path", str(test_repo)], input="y\n")

    assert result.exit_code == 0
    assert "feature/merged" not in local_branches(test_repo)


def test_clean_protect_option(test_repo: Path, runner: CliRunner) -> None:
    result = runner.invoke(app, ["clean", "--path", str(test_repo), "--protect", "feature/merged", "-y"])

    assert result.exit_code == 0
    assert "Kept Branches" in result.stdout
    branches = local_branches(test_repo)
    assert "feature/merged" in branches
    assert "feature/other" not in branches


def test_clean_builtin_rule(test_repo: Path, runner: CliRunner) -> None:
    result = runner.invoke(app, ["clean", "--path", str(test_repo), "--rule", "no-remote", "-y"])

    assert result.exit_code == 0
    branches = local_branches(test_repo)
    assert "feature/local" not in branches
    assert "feature/gone" not in branches
    assert "feature/test" in branches


def test_clean_unknown_rule(test_repo: Path, runner: CliRunner) -> None:
    result = runner.invoke(app, ["clean", "--path", str(test_repo), "--rule", "everything"])
    assert result.exit_code == 1
    assert "Unknown rule" in result.stdout


def test_clean_configured_rules(test_repo: Path, runner: CliRunner) -> None:
    """Test that rules from the settings file replace the default rule."""
    (test_repo / SETTINGS_FILE).write_text(
        """
rules:
  - id: local-features
    conditions:
      - kind: no_remote
      - kind: pattern
        regex: "^feature/lo"
"""
    )

    result = runner.invoke(app, ["clean", "--path", str(test_repo), "-y"])

    assert result.exit_code == 0
    branches = local_branches(test_repo)
    assert "feature/local" not in branches
    assert "feature/merged" in branches


def test_clean_invalid_settings(test_repo: Path, runner: CliRunner) -> None:
    (test_repo / SETTINGS_FILE).write_text("days_until_stale: never\n")

    result = runner.invoke(app, ["clean", "--path", str(test_repo), "--dry-run"])

    assert result.exit_code == 1
    assert "Invalid settings" in result.stdout


def test_clean_team_safe(test_repo: Path, runner: CliRunner) -> None:
    """Test that team-safe mode only deletes branches authored by the caller."""
    result = runner.invoke(app, ["clean", "--path", str(test_repo), "--team-safe", "-y"])

    assert result.exit_code == 0
    assert "author_mismatch" in result.stdout
    branches = local_branches(test_repo)
    assert "feature/merged" not in branches
    assert "feature/other" in branches


def test_clean_team_safe_without_identity(test_repo: Path, runner: CliRunner) -> None:
    """Test that team-safe mode refuses to delete when user.name is unset."""
    with Repo(test_repo).config_writer() as config:
        config.remove_option("user", "name")
    before = local_branches(test_repo)

    result = runner.invoke(app, ["clean", "--path", str(test_repo), "--team-safe", "-y"])

    assert result.exit_code == 1
    assert "Plan rejected" in result.stdout
    assert local_branches(test_repo) == before


def test_clean_include_remote(test_env: tuple[Path, Path], runner: CliRunner) -> None:
    local_path, remote_path = test_env

    result = runner.invoke(app, ["clean", "--path", str(local_path), "--include-remote", "-y"])

    assert result.exit_code == 0
    remote_branches = {head.name for head in Repo(remote_path).heads}
    assert "feature/merged" not in remote_branches
    assert "main" in remote_branches
    assert "feature/test" in remote_branches


def test_gone_command(test_repo: Path, runner: CliRunner) -> None:
    """Test deleting branches whose remote is gone."""
    result = runner.invoke(app, ["gone", "--path", str(test_repo), "-y"])

    assert result.exit_code == 0
    branches = local_branches(test_repo)
    assert "feature/gone" not in branches
    assert "feature/local" in branches
    assert "feature/test" in branches


def test_gone_dry_run(test_repo: Path, runner: CliRunner) -> None:
    result = runner.invoke(app, ["gone", "--path", str(test_repo), "--dry-run"])

    assert result.exit_code == 0
    assert "feature/gone" in result.stdout
    assert "feature/gone" in local_branches(test_repo)


def test_gone_notify_only(test_repo: Path, runner: CliRunner) -> None:
    (test_repo / SETTINGS_FILE).write_text("gone_branch_action: notify-only\n")

    result = runner.invoke(app, ["gone", "--path", str(test_repo), "-y"])

    assert result.exit_code == 0
    assert "feature/gone" in local_branches(test_repo)


def test_restore_deleted_branch(test_repo: Path, runner: CliRunner) -> None:
    """Test that a deleted branch can be recreated from the recovery log."""
    commit_hash = GitRepo(test_repo).get_commit_hash("feature/merged")
    runner.invoke(app, ["clean", "--path", str(test_repo), "-y"])
    assert "feature/merged" not in local_branches(test_repo)

    result = runner.invoke(app, ["restore", "feature/merged", "--path", str(test_repo)])

    assert result.exit_code == 0
    assert "Restored" in result.stdout
    assert GitRepo(test_repo).get_commit_hash("feature/merged") == commit_hash
    assert RecoveryLog(GitRepo(test_repo).git_dir).find("feature/merged") is None


def test_restore_unknown_branch(test_repo: Path, runner: CliRunner) -> None:
    result = runner.invoke(app, ["restore", "feature/never", "--path", str(test_repo)])
    assert result.exit_code == 1
    assert "No recovery entry" in result.stdout


def test_clean_keeps_configured_base_branch(trunk_repo: Path, runner: CliRunner) -> None:
    """Test that a base branch missing from protected_branches survives a merged cleanup."""
    (trunk_repo / SETTINGS_FILE).write_text("base_branch: trunk\n")

    result = runner.invoke(app, ["clean", "--path", str(trunk_repo), "--no-fetch", "--rule", "merged", "-y"])

    assert result.exit_code == 0
    assert "Kept Branches" in result.stdout
    assert local_branches(trunk_repo) == {"trunk", "feature/x"}


def test_list_without_detectable_base_branch(trunk_repo: Path, runner: CliRunner) -> None:
    result = runner.invoke(app, ["list", "--path", str(trunk_repo), "--no-fetch"])

    assert result.exit_code == 0
    assert "Local Branches" in result.stdout
    assert "feature/done" in result.stdout


def test_clean_without_detectable_base_branch(trunk_repo: Path, runner: CliRunner) -> None:
    """Test that unknown merge status selects nothing for the merged rule."""
    result = runner.invoke(app, ["clean", "--path", str(trunk_repo), "--no-fetch", "-y"])

    assert result.exit_code == 0
    assert local_branches(trunk_repo) == {"trunk", "feature/done", "feature/x"}


def test_clean_author_with_markup(trunk_repo: Path, runner: CliRunner) -> None:
    """Test that author names are shown literally in the deletion table."""
    repo = Repo(trunk_repo)
    odd_author = Actor("[/x]", "x@example.com")
    repo.heads.trunk.checkout()
    head = repo.create_head("feature/odd")
    head.checkout()
    (trunk_repo / "odd.txt").write_text("odd")
    repo.index.add(["odd.txt"])
    repo.index.commit("Add odd", author=odd_author, committer=odd_author)
    repo.heads.trunk.checkout()
    repo.git.merge("feature/odd", "--no-ff")
    repo.git.checkout("feature/x")
    (trunk_repo / SETTINGS_FILE).write_text("base_branch: trunk\n")

    result = runner.invoke(app, ["clean", "--path", str(trunk_repo), "--no-fetch", "--dry-run"])

    assert result.exit_code == 0
    assert "feature/odd" in result.stdout
    assert "[/x]" in result.stdout
