"""Filesystem permission modes for worktrees and repository ``.git`` directories.

The owning group always gets full access (owners reach their files through group
membership) and the setgid bit makes new files inherit the group. The worktree's
``others_fs_access`` policy only decides what everyone else gets:

    none  -> 2770  drwxrws---
    read  -> 2775  drwxrwsr-x
    write -> 2777  drwxrwsrwx
"""

from __future__ import annotations

from enum import StrEnum

import structlog

from agor_isolation.db.models import OthersFsAccess
from agor_isolation.unix.inspector import OSStateInspector
from agor_isolation.unix.mutator import MutationResult, OSMutator

log = structlog.get_logger()

WORKTREE_PERMISSION_MODES: dict[OthersFsAccess, int] = {
    OthersFsAccess.NONE: 0o2770,
    OthersFsAccess.READ: 0o2775,
    OthersFsAccess.WRITE: 0o2777,
}

# .git is shared by every worktree of the repo; only the repo group may touch it
REPO_GIT_PERMISSION_MODE = 0o2770


def mode_for(others_access: OthersFsAccess | str | None) -> int:
    """Map an ``others_fs_access`` policy to a directory mode (NULL reads as ``read``)."""
    if not isinstance(others_access, OthersFsAccess):
        others_access = OthersFsAccess.parse(others_access)
    return WORKTREE_PERMISSION_MODES[others_access]


def git_dir(local_path: str) -> str:
    return f"{local_path.rstrip('/')}/.git"


class PermissionOutcome(StrEnum):
    APPLIED = "applied"
    IN_SYNC = "in_sync"
    MISSING_PATH = "missing_path"
    FAILED = "failed"


class PermissionApplier:
    """Apply owner group and mode to a directory tree, skipping trees already in sync."""

    def __init__(self, inspector: OSStateInspector, mutator: OSMutator) -> None:
        self.inspector = inspector
        self.mutator = mutator

    def needs_apply(self, path: str, group: str, mode: int) -> PermissionOutcome | None:
        """Return ``MISSING_PATH``/``IN_SYNC`` when nothing should run, else ``None``."""
        if not path or not self.inspector.path_exists(path):
            return PermissionOutcome.MISSING_PATH
        if self.inspector.tree_matches(path, group, mode):
            return PermissionOutcome.IN_SYNC
        return None

    def apply(self, path: str, group: str, mode: int) -> tuple[PermissionOutcome, MutationResult]:
        result = self.mutator.set_tree_group_and_mode(path, group, mode)
        if not result.success:
            log.warning(
                "permissions_failed", path=path, group=group, mode=oct(mode), error=result.error
            )
            return PermissionOutcome.FAILED, result
        log.debug("permissions_applied", path=path, group=group, mode=oct(mode))
        return PermissionOutcome.APPLIED, result
