"""Log of deleted branches, so they can be restored."""

import json
import logging
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

RECOVERY_FILE = "branchwise-recovery.json"
MAX_RECOVERY_ENTRIES = 50


@dataclass(frozen=True)
class DeletedBranchEntry:
    """Everything needed to recreate a deleted branch."""

    branch_name: str
    commit_hash: str
    deleted_at: float
    reason: str = ""


class RecoveryLog:
    """Newest-first log stored as JSON inside the repository's git dir."""

    def __init__(self, git_dir: Path) -> None:
        self.path = git_dir / RECOVERY_FILE

    def entries(self) -> list[DeletedBranchEntry]:
        if not self.path.exists():
            return []
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            return [DeletedBranchEntry(**item) for item in data]
        except (OSError, ValueError, TypeError) as err:
            logger.warning("Ignoring unreadable recovery log %s: %s", self.path, err)
            return []

    def _write(self, entries: list[DeletedBranchEntry]) -> None:
        payload = [asdict(entry) for entry in entries[:MAX_RECOVERY_ENTRIES]]
        self.path.write_text(json.dumps(payload, indent=2), encoding="utf-8")

    def add(self, branch_name: str, commit_hash: str, reason: str = "") -> DeletedBranchEntry:
        entry = DeletedBranchEntry(branch_name, commit_hash, time.time(), reason)
        self._write([entry, *self.entries()])
        return entry

    def find(self, branch_name: str) -> Optional[DeletedBranchEntry]:
        """Most recent entry for a branch."""
        return next((entry for entry in self.entries() if entry.branch_name == branch_name), None)

    def remove(self, branch_name: str, commit_hash: str) -> None:
        self._write(
            [
                entry
                for entry in self.entries()
                if not (entry.branch_name == branch_name and entry.commit_hash == commit_hash)
            ]
        )

    def clear(self) -> None:
        self._write([])
