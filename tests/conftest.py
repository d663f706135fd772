"""Test configuration and fixtures."""

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Generator

import pytest
from git import Actor, Repo

from branchwise.config import Settings
from branchwise.models import BranchRecord

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
AUTHOR = Actor("Test User", "test@example.com")
OTHER_AUTHOR = Actor("Someone Else", "else@example.com")


def days_ago(days: int) -> datetime:
    return NOW - timedelta(days=days)


@pytest.fixture(autouse=True)
def isolated_git_config(tmp_path_factory: pytest.TempPathFactory, monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the developer's global git config out of the tests."""
    config_dir = tmp_path_factory.mktemp("gitconfig")
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", str(config_dir / "config"))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    for var in ("GITHUB_TOKEN", "GITLAB_TOKEN", "AZURE_DEVOPS_TOKEN"):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def settings() -> Settings:
    return Settings()


@pytest.fixture
def make_record() -> Callable[..., BranchRecord]:
    """Factory for records with sensible defaults for an active tracked branch."""

    def factory(name: str = "feature/x", **fields: Any) -> BranchRecord:
        defaults: dict[str, Any] = {
            "last_commit_date": days_ago(1),
            "author": AUTHOR.name,
            "has_remote_tracking": True,
            "tracking_ref": f"origin/{name}",
            "ahead_count": 0,
            "behind_count": 0,
        }
        defaults.update(fields)
        return BranchRecord(name=name, **defaults)

    return factory


@pytest.fixture
def test_env(tmp_path: Path) -> Generator[tuple[Path, Path], None, None]:
    """Create a test environment with local and remote repositories.

    Branches:
        main             base branch, protected
        feature/test     unmerged, pushed
        feature/merged   merged into main, pushed
        feature/gone     pushed, then deleted on the remote
        feature/local    never pushed
        feature/other    authored by someone else, merged
        feature/current  checked out
        origin/feature/remote  remote only

    Returns:
        Tuple of (local_repo_path, remote_repo_path)
    """
    remote_path = tmp_path / "remote"
    local_path = tmp_path / "local"
    remote_path.mkdir()
    local_path.mkdir()

    Repo.init(remote_path, bare=True)
    local_repo = Repo.init(local_path, initial_branch="main")

    with local_repo.config_writer() as config:
        config.set_value("user", "name", AUTHOR.name)
        config.set_value("user", "email", AUTHOR.email)

    readme = local_path / "README.md"
    readme.write_text("# Test Repository")
    local_repo.index.add(["README.md"])
    local_repo.index.commit("Initial commit", author=AUTHOR, committer=AUTHOR)

    main_branch = local_repo.heads.main
    main_branch.checkout()

    origin = local_repo.create_remote("origin", url=str(remote_path))
    origin.push("main")
    main_branch.set_tracking_branch(origin.refs.main)

    def create_branch(name: str, author: Actor = AUTHOR, push: bool = True, merge: bool = False) -> None:
        """Create a branch from main with one commit."""
        main_branch.checkout()
        branch = local_repo.create_head(name)
        branch.checkout()

        test_file = local_path / f"{name}.txt"
        test_file.parent.mkdir(parents=True, exist_ok=True)
        test_file.write_text(f"{name} content")
        local_repo.index.add([f"{name}.txt"])
        # Subject with a pipe and tab to exercise the field separator
        local_repo.index.commit(f"Add {name} | part\t1", author=author, committer=author)

        if push:
            origin.push(name)
            branch.set_tracking_branch(origin.refs[name])

        if merge:
            main_branch.checkout()
            local_repo.git.merge(name, "--no-ff")
            origin.push("main")

    create_branch("feature/test")
    create_branch("feature/merged", merge=True)
    create_branch("feature/gone")
    origin.push(":feature/gone")
    create_branch("feature/local", push=False)
    create_branch("feature/other", author=OTHER_AUTHOR, push=False, merge=True)

    # Remote-only branch
    create_branch("feature/remote")
    main_branch.checkout()
    local_repo.delete_head("feature/remote", force=True)

    create_branch("feature/current")

    yield local_path, remote_path


@pytest.fixture
def trunk_repo(tmp_path: Path) -> Path:
    """Create a repository without a remote whose default branch is ``trunk``.

    Branches:
        trunk         base branch, not in protected_branches
        feature/done  merged into trunk
        feature/x     unmerged, checked out
    """
    path = tmp_path / "trunk"
    repo = Repo.init(path, initial_branch="trunk")
    with repo.config_writer() as config:
        config.set_value("user", "name", AUTHOR.name)
        config.set_value("user", "email", AUTHOR.email)

    (path / "README.md").write_text("# Trunk Repository")
    repo.index.add(["README.md"])
    repo.index.commit("Initial commit", author=AUTHOR, committer=AUTHOR)
    trunk = repo.heads.trunk

    heads = {}
    for name in ("feature/done", "feature/x"):
        trunk.checkout()
        heads[name] = repo.create_head(name)
        heads[name].checkout()
        test_file = path / f"{name}.txt"
        test_file.parent.mkdir(parents=True, exist_ok=True)
        test_file.write_text(f"{name} content")
        repo.index.add([f"{name}.txt"])
        repo.index.commit(f"Add {name}", author=AUTHOR, committer=AUTHOR)

    trunk.checkout()
    repo.git.merge("feature/done", "--no-ff")
    heads["feature/x"].checkout()
    return path
