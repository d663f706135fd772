"""Git repository operations."""

import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Optional

from git import GitCommandError, InvalidGitRepositoryError, NoSuchPathError, Repo

from branchwise.models import BranchRecord
from branchwise.normalize import REF_FORMAT, RawBranchFacts, parse_ref_line

logger = logging.getLogger(__name__)

MAX_PARALLEL_GIT_CALLS = 8


class GitError(Exception):
    """Git operation error."""

    def __init__(self, message: str, needs_confirmation: bool = False) -> None:
        """Initialize error.

        Args:
            message: Error message
            needs_confirmation: Whether this error needs user confirmation to proceed
        """
        super().__init__(message)
        self.needs_confirmation = needs_confirmation


class GitRepo:
    """Git repository operations."""

    def __init__(self, path: Path) -> None:
        """Initialize repository."""
        try:
            self.repo: Repo = Repo(path, search_parent_directories=True)
            if self.repo.bare:
                raise GitError("Cannot operate on bare repository")
        except (GitCommandError, ValueError, InvalidGitRepositoryError, NoSuchPathError) as err:
            raise GitError(f"Failed to open repository: {err}") from err

    @property
    def root(self) -> Path:
        return Path(self.repo.working_tree_dir)

    @property
    def git_dir(self) -> Path:
        return Path(self.repo.git_dir)

    def fetch_from_remotes(self) -> None:
        """Fetch latest state from all remotes, pruning deleted branches."""
        try:
            for remote in self.repo.remotes:
                remote.fetch(prune=True)
        except GitCommandError as err:
            raise GitError(f"Failed to fetch from remotes: {err}") from err

    def get_current_branch_name(self) -> str:
        """Get current branch name."""
        try:
            try:
                return self.repo.active_branch.name
            except TypeError:
                # Detached HEAD: no branch is checked out
                return ""
        except (GitCommandError, ValueError) as err:
            raise GitError(f"Failed to get current branch: {err}") from err

    def remote_url(self, name: str = "origin") -> Optional[str]:
        """URL of a remote, or None when it does not exist."""
        try:
            return self.repo.remote(name).url
        except (ValueError, GitCommandError):
            return None

    def detect_base_branch(self) -> str:
        """Determine the branch merges are measured against.

        Uses the remote HEAD when it is set, then main/master or the
        configured init.defaultBranch, then the only local branch. Returns
        an empty string when none of these exist.
        """
        try:
            head = self.repo.git.symbolic_ref("refs/remotes/origin/HEAD").strip()
            if head.startswith("refs/remotes/origin/"):
                return head[len("refs/remotes/origin/") :]
        except GitCommandError:
            # No remote HEAD configured
            pass

        remote_refs = self._list_refs("refs/remotes/")
        local_refs = self._list_refs("refs/heads/")
        candidates = ["main", "master"]
        configured = self._config_value("init.defaultBranch")
        if configured:
            candidates.append(configured)
        for candidate in candidates:
            if f"origin/{candidate}" in remote_refs or candidate in local_refs:
                return candidate

        # Never guess the current branch: its ancestors would all look merged
        if len(local_refs) == 1:
            return next(iter(local_refs))
        return ""

    def _config_value(self, key: str) -> Optional[str]:
        try:
            value = self.repo.git.config("--get", key).strip()
        except GitCommandError:
            return None
        return value or None

    def _list_refs(self, namespace: str) -> set[str]:
        try:
            output = self.repo.git.for_each_ref("--format=%(refname:short)", namespace)
        except GitCommandError:
            return set()
        return {line.strip() for line in output.splitlines() if line.strip()}

    def _base_ref(self, base: str) -> Optional[str]:
        """Local base branch when it exists, otherwise its origin counterpart."""
        if not base:
            return None
        if base in self._list_refs("refs/heads/"):
            return base
        if f"origin/{base}" in self._list_refs("refs/remotes/"):
            return f"origin/{base}"
        return None

    def _merged_into(self, base_ref: str, remote: bool) -> set[str]:
        """Branches whose tips are contained in the base branch history."""
        args = ["-r"] if remote else []
        try:
            output = self.repo.git.branch(*args, "--merged", base_ref, "--format=%(refname:short)")
        except GitCommandError as err:
            logger.warning("Could not compute merged branches against %s: %s", base_ref, err)
            return set()
        return {line.strip() for line in output.splitlines() if line.strip()}

    def _ahead_behind(self, base_ref: str, branch: str) -> tuple[Optional[int], Optional[int]]:
        """Commits the branch has that base lacks, and vice versa."""
        try:
            output = self.repo.git.rev_list("--left-right", "--count", f"{base_ref}...{branch}").strip()
            behind, ahead = output.split()
            return int(ahead), int(behind)
        except (GitCommandError, ValueError) as err:
            logger.debug("No ahead/behind counts for %s: %s", branch, err)
            return None, None

    def _read_refs(self, namespace: str, is_remote: bool) -> list[RawBranchFacts]:
        try:
            output = self.repo.git.for_each_ref(f"--format={REF_FORMAT}", namespace)
        except GitCommandError as err:
            raise GitError(f"Failed to read branches: {err}") from err

        facts = []
        for line in output.splitlines():
            if not line.strip():
                continue
            raw = parse_ref_line(line, is_remote=is_remote)
            if raw is None:
                continue
            if is_remote and (raw.remote is None or raw.name.endswith("/HEAD")):
                # Skip remote HEAD symbolic refs
                continue
            facts.append(raw)
        return facts

    def collect_branch_facts(self, base: Optional[str] = None, include_remote: bool = True) -> list[RawBranchFacts]:
        """Snapshot raw facts for every local (and optionally remote) branch.

        Args:
            base: Base branch name; detected when omitted
            include_remote: Also collect remote-tracking branches

        Returns:
            Raw facts, local branches first, each group in ref order
        """
        base = base or self.detect_base_branch()
        base_ref = self._base_ref(base)
        current = self.get_current_branch_name()

        local = self._read_refs("refs/heads/", is_remote=False)
        remote = self._read_refs("refs/remotes/", is_remote=True) if include_remote else []
        merged: set[str] = set()
        counted: list[str] = []
        if base_ref is None:
            logger.warning("No base branch found, merge status is unknown: %s", base or "(none)")
        else:
            merged = self._merged_into(base_ref, remote=False)
            if include_remote:
                merged |= self._merged_into(base_ref, remote=True)
            # Counts only for branches that have somewhere to sync to
            counted = [raw.name for raw in local + remote if raw.is_remote or raw.upstream]
        with ThreadPoolExecutor(max_workers=MAX_PARALLEL_GIT_CALLS) as pool:
            counts = dict(zip(counted, pool.map(lambda name: self._ahead_behind(base_ref, name), counted)))

        facts = []
        for raw in local + remote:
            ahead, behind = counts.get(raw.name, (None, None))
            facts.append(
                RawBranchFacts(
                    name=raw.name,
                    is_remote=raw.is_remote,
                    remote=raw.remote,
                    last_commit=raw.last_commit,
                    subject=raw.subject,
                    author=raw.author,
                    ahead=ahead,
                    behind=behind,
                    is_merged=raw.name in merged,
                    upstream=raw.upstream,
                    gone=raw.gone,
                    is_current=not raw.is_remote and raw.name == current,
                )
            )
        return facts

    def current_identity(self) -> Optional[str]:
        """Configured ``user.name``, or None when unset or unreadable."""
        return self._config_value("user.name")

    def get_commit_hash(self, branch_name: str) -> Optional[str]:
        try:
            return self.repo.git.rev_parse("--verify", f"{branch_name}^{{commit}}").strip()
        except GitCommandError:
            return None

    def create_branch(self, branch_name: str, commit_hash: str) -> None:
        """Create a branch pointing at a commit."""
        try:
            self.repo.git.branch(branch_name, commit_hash)
        except GitCommandError as err:
            raise GitError(f"Failed to create branch {branch_name}: {err}") from err

    def delete_branch(self, record: BranchRecord) -> bool:
        """Delete a single branch. Returns True if successful."""
        # Never delete protected or checked out branches
        if record.is_protected or record.is_current:
            return False

        # Handle remote branches
        if record.is_remote:
            if not record.remote:
                return False
            try:
                remote = self.repo.remote(record.remote)
                # Delete remote branch by pushing an empty reference
                remote.push(refspec=f":{record.short_name}").raise_if_error()
                return True
            except (GitCommandError, ValueError) as err:
                logger.warning("Failed to delete %s: %s", record.name, err)
                return False

        try:
            # Force delete: eligibility was decided by the safety gate
            self.repo.git.branch("-D", record.name)
            return True
        except GitCommandError as err:
            logger.warning("Failed to delete %s: %s", record.name, err)
            return False
