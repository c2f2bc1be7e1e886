"""Run report for a reconciliation pass.

The report is the only output of a run: per-category counters, every attempted
mutation (the run's decisions), every failure, and every skipped path. The overall
result is a function of the failure count alone.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum


class Phase(StrEnum):
    GLOBAL_GROUP = "global_group"
    REPO_BACKFILL = "repo_backfill"
    USERS = "users"
    FILESYSTEM = "filesystem"
    CLEANUP = "cleanup"


class Operation(StrEnum):
    CREATE_USER = "create_user"
    CREATE_GROUP = "create_group"
    ADD_MEMBER = "add_member"
    ADD_DAEMON_MEMBER = "add_daemon_member"
    REMOVE_MEMBER = "remove_member"
    BACKFILL_REPO = "backfill_repo"
    BACKFILL_WORKTREE = "backfill_worktree"
    SET_PERMISSIONS = "set_permissions"
    DELETE_GROUP = "delete_group"
    DELETE_USER = "delete_user"


@dataclass(frozen=True)
class Action:
    """One attempted mutation."""

    phase: Phase
    operation: Operation
    target: str
    detail: str = ""
    success: bool = True

    @property
    def decision(self) -> tuple[str, str, str]:
        return (self.operation.value, self.target, self.detail)


@dataclass(frozen=True)
class Failure:
    phase: Phase
    operation: Operation
    entity: str
    error: str


@dataclass(frozen=True)
class SkippedPath:
    entity: str
    path: str | None
    reason: str


@dataclass
class ReconcileReport:
    """Aggregated outcome of one run."""

    dry_run: bool = False
    cleanup_groups: bool = False
    cleanup_users: bool = False

    users_checked: int = 0
    users_created: int = 0
    groups_created: int = 0
    memberships_added: int = 0
    daemon_memberships_added: int = 0
    memberships_removed: int = 0

    repos_backfilled: int = 0
    worktrees_backfilled: int = 0
    worktrees_checked: int = 0
    worktrees_synced: int = 0
    repos_checked: int = 0
    repos_synced: int = 0

    users_deleted: int = 0
    groups_deleted: int = 0

    actions: list[Action] = field(default_factory=list)
    failures: list[Failure] = field(default_factory=list)
    skipped: list[SkippedPath] = field(default_factory=list)

    def record(
        self, phase: Phase, operation: Operation, target: str, detail: str = "", *, success: bool
    ) -> None:
        self.actions.append(Action(phase, operation, target, detail, success))

    def fail(self, phase: Phase, operation: Operation, entity: str, error: str | None) -> None:
        self.failures.append(Failure(phase, operation, entity, error or "unknown error"))

    def skip(self, entity: str, path: str | None, reason: str) -> None:
        self.skipped.append(SkippedPath(entity, path, reason))

    @property
    def total_errors(self) -> int:
        return len(self.failures)

    @property
    def mutation_count(self) -> int:
        return len(self.actions)

    @property
    def decisions(self) -> list[tuple[str, str, str]]:
        """What the run decided to do, in order; identical for dry and real runs."""
        return [a.decision for a in self.actions]

    @property
    def has_changes(self) -> bool:
        return bool(self.actions)

    @property
    def success(self) -> bool:
        return self.total_errors == 0

    @property
    def exit_code(self) -> int:
        return 0 if self.success else 1

    def counts(self) -> dict[str, int]:
        """Counters by category, in display order."""
        return {
            "users_checked": self.users_checked,
            "users_created": self.users_created,
            "groups_created": self.groups_created,
            "memberships_added": self.memberships_added,
            "daemon_memberships_added": self.daemon_memberships_added,
            "memberships_removed": self.memberships_removed,
            "repos_backfilled": self.repos_backfilled,
            "worktrees_backfilled": self.worktrees_backfilled,
            "worktrees_checked": self.worktrees_checked,
            "worktrees_synced": self.worktrees_synced,
            "repos_checked": self.repos_checked,
            "repos_synced": self.repos_synced,
            "paths_skipped": len(self.skipped),
            "users_deleted": self.users_deleted,
            "groups_deleted": self.groups_deleted,
            "errors": self.total_errors,
        }
