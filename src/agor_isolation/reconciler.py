"""Reconciliation loop: converge OS users, groups and permissions to the database.

A run executes five phases in a fixed order, each starting from a fresh database
read:

1. global group  - ensure ``agor_users`` exists before any per-user work
2. repo backfill - give every repo without ``unix_group`` a group and persist it
3. users         - accounts, memberships, worktree backfills, daemon memberships
4. filesystem    - group and mode on worktree trees and repo ``.git`` trees
5. cleanup       - opt-in deletion of managed groups/users absent from the database

Every mutation is checked against current state first, so a second run over an
unchanged database performs nothing. Every mutation failure is caught, logged and
counted, and the run carries on with the next entity.

Dry runs use a mutator in simulation mode. The reconciler keeps an in-run record of
what it created, granted, backfilled and synced, and consults it before the live
inspector, so a dry run reaches exactly the decisions a real run would.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import structlog
from sqlalchemy.exc import SQLAlchemyError

from agor_isolation.db.store import AuthorizationSnapshot, AuthorizationStore
from agor_isolation.desired import DesiredState, DesiredStateComputer, DesiredUser, GroupScope
from agor_isolation.errors import ConfigurationError
from agor_isolation.naming import (
    AGOR_USERS_GROUP,
    GroupNamespace,
    looks_like_managed_group,
    repo_group_name,
)
from agor_isolation.permissions import (
    REPO_GIT_PERMISSION_MODE,
    PermissionApplier,
    PermissionOutcome,
    git_dir,
    mode_for,
)
from agor_isolation.report import Operation, Phase, ReconcileReport
from agor_isolation.unix.inspector import OSStateInspector
from agor_isolation.unix.mutator import OSMutator

log = structlog.get_logger()


@dataclass
class ReconcileOptions:
    """Opt-in behaviour; the defaults only ever add access."""

    cleanup_groups: bool = False
    cleanup_users: bool = False
    prune_memberships: bool = False


@dataclass
class _RunState:
    """What this run has already done (or, in a dry run, would have done)."""

    groups_created: set[str] = field(default_factory=set)
    groups_failed: set[str] = field(default_factory=set)
    users_created: set[str] = field(default_factory=set)
    members_added: set[tuple[str, str]] = field(default_factory=set)
    repo_backfills: dict[str, str] = field(default_factory=dict)
    worktree_backfills: dict[str, str] = field(default_factory=dict)
    trees_synced: set[tuple[str, str, int]] = field(default_factory=set)
    skipped: set[str] = field(default_factory=set)


class Reconciler:
    """Single-threaded control loop over the database and the OS identity state."""

    def __init__(
        self,
        store: AuthorizationStore,
        inspector: OSStateInspector,
        mutator: OSMutator,
        *,
        daemon_user: str | None,
        global_group: str = AGOR_USERS_GROUP,
        options: ReconcileOptions | None = None,
    ) -> None:
        if not daemon_user:
            raise ConfigurationError(
                "A daemon Unix user is required: it must join every repo and worktree group."
            )
        self.store = store
        self.inspector = inspector
        self.mutator = mutator
        self.daemon_user = daemon_user
        self.global_group = global_group
        self.options = options or ReconcileOptions()
        self.computer = DesiredStateComputer(global_group=global_group)
        self.applier = PermissionApplier(inspector, mutator)
        self._state = _RunState()

    @property
    def dry_run(self) -> bool:
        return self.mutator.simulate

    def run(self) -> ReconcileReport:
        """Execute all phases once and return the aggregated report."""
        self._state = _RunState()
        report = ReconcileReport(
            dry_run=self.dry_run,
            cleanup_groups=self.options.cleanup_groups,
            cleanup_users=self.options.cleanup_users,
        )
        log.info(
            "reconcile_started",
            dry_run=self.dry_run,
            daemon_user=self.daemon_user,
            cleanup_groups=self.options.cleanup_groups,
            cleanup_users=self.options.cleanup_users,
        )
        if not self.inspector.user_exists(self.daemon_user):
            log.warning("daemon_user_missing", daemon_user=self.daemon_user)

        self._ensure_global_group(report)
        self._backfill_repos(report)
        self._sync_users(report)
        self._sync_filesystem(report)
        if self.options.cleanup_groups or self.options.cleanup_users:
            self._cleanup(report)

        log.info("reconcile_finished", dry_run=self.dry_run, **report.counts())
        return report

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _ensure_global_group(self, report: ReconcileReport) -> None:
        self._ensure_group(self.global_group, Phase.GLOBAL_GROUP, report)

    def _backfill_repos(self, report: ReconcileReport) -> None:
        snapshot = self.store.load_snapshot()
        pending = [r for r in snapshot.repos if r.unix_group is None]
        log.info("repo_backfill_started", pending=len(pending), total=len(snapshot.repos))

        for repo in pending:
            entity = f"repo:{repo.slug}"
            group = repo_group_name(repo.repo_id)
            if not self._ensure_group(group, Phase.REPO_BACKFILL, report):
                continue
            self._ensure_daemon_member(group, Phase.REPO_BACKFILL, report)

            stored = self._persist_backfill(
                Phase.REPO_BACKFILL, Operation.BACKFILL_REPO, repo.repo_id, entity, group, report
            )
            if stored is None:
                continue
            report.repos_backfilled += 1

            if repo.local_path:
                outcome = self._apply_permissions(
                    entity, git_dir(repo.local_path), stored, REPO_GIT_PERMISSION_MODE,
                    Phase.REPO_BACKFILL, report,
                )
                if outcome is PermissionOutcome.APPLIED:
                    report.repos_synced += 1

    def _sync_users(self, report: ReconcileReport) -> None:
        desired = self.computer.compute(self._snapshot())
        log.info("user_sync_started", users=len(desired.users))
        for user in desired.users:
            self._sync_user(user, report)

    def _sync_user(self, user: DesiredUser, report: ReconcileReport) -> None:
        report.users_checked += 1
        username = user.unix_username
        account_ready = self._ensure_user(username, report)
        current = self.inspector.groups_of_user(username) if account_ready else set()
        log.debug(
            "user_groups", user=username, current=sorted(current), desired=sorted(user.groups)
        )

        for grant in user.grants:
            if not self._ensure_group(grant.group, Phase.USERS, report):
                continue
            if grant.scope is GroupScope.WORKTREE and not grant.assigned and grant.entity_id:
                self._backfill_worktree(grant.entity_id, grant.group, report)

            if account_ready and not self._has_member(username, grant.group, current):
                added = self._add_member(
                    username, grant.group, Operation.ADD_MEMBER, Phase.USERS, report
                )
                if added:
                    report.memberships_added += 1

            if grant.scope is not GroupScope.GLOBAL:
                self._ensure_daemon_member(grant.group, Phase.USERS, report)

        if self.options.prune_memberships and account_ready:
            self._prune_memberships(user, current, report)

    def _sync_filesystem(self, report: ReconcileReport) -> None:
        snapshot = self._snapshot()

        for wt in snapshot.worktrees:
            if wt.unix_group is None:
                continue
            report.worktrees_checked += 1
            entity = f"worktree:{wt.worktree_id}"
            if not self._ensure_group(wt.unix_group, Phase.FILESYSTEM, report):
                continue
            self._ensure_daemon_member(wt.unix_group, Phase.FILESYSTEM, report)
            try:
                mode = mode_for(wt.others_fs_access)
            except ValueError:
                self._fail(
                    report, Phase.FILESYSTEM, Operation.SET_PERMISSIONS, entity,
                    f"unknown others_fs_access {wt.others_fs_access!r}",
                )
                continue
            if not wt.path:
                self._skip(report, entity, None, "no path recorded")
                continue
            outcome = self._apply_permissions(
                entity, wt.path, wt.unix_group, mode, Phase.FILESYSTEM, report
            )
            if outcome is PermissionOutcome.APPLIED:
                report.worktrees_synced += 1

        for repo in snapshot.repos:
            if repo.unix_group is None:
                continue
            report.repos_checked += 1
            entity = f"repo:{repo.slug}"
            if not self._ensure_group(repo.unix_group, Phase.FILESYSTEM, report):
                continue
            self._ensure_daemon_member(repo.unix_group, Phase.FILESYSTEM, report)
            if not repo.local_path:
                self._skip(report, entity, None, "no local_path recorded")
                continue
            outcome = self._apply_permissions(
                entity, git_dir(repo.local_path), repo.unix_group, REPO_GIT_PERMISSION_MODE,
                Phase.FILESYSTEM, report,
            )
            if outcome is PermissionOutcome.APPLIED:
                report.repos_synced += 1

    def _cleanup(self, report: ReconcileReport) -> None:
        # The database may have changed since phase 2, so derive the expected set again
        desired = self.computer.compute(self._snapshot())

        if self.options.cleanup_groups:
            self._cleanup_groups(desired, report)
        if self.options.cleanup_users:
            self._cleanup_users(desired, report)

    def _cleanup_groups(self, desired: DesiredState, report: ReconcileReport) -> None:
        for namespace, expected in (
            (GroupNamespace.WORKTREE, desired.expected_worktree_groups),
            (GroupNamespace.REPO, desired.expected_repo_groups),
        ):
            actual = self.inspector.list_managed_groups(namespace)
            stale = sorted(
                g for g in actual if g not in expected and looks_like_managed_group(g, namespace)
            )
            log.info(
                "stale_groups_found",
                namespace=namespace.value,
                found=len(actual),
                expected=len(expected),
                stale=len(stale),
            )
            for group in stale:
                result = self.mutator.delete_group(group)
                report.record(
                    Phase.CLEANUP, Operation.DELETE_GROUP, group, success=result.success
                )
                if result.success:
                    report.groups_deleted += 1
                    log.info("group_deleted", group=group, simulated=result.simulated)
                else:
                    self._fail(report, Phase.CLEANUP, Operation.DELETE_GROUP, group, result.error)

    def _cleanup_users(self, desired: DesiredState, report: ReconcileReport) -> None:
        keep = desired.usernames | {self.daemon_user}
        actual = self.inspector.list_managed_users()
        stale = sorted(u for u in actual if u not in keep)
        log.info("stale_users_found", found=len(actual), stale=len(stale))
        for username in stale:
            result = self.mutator.delete_user(username, keep_home=True)
            report.record(
                Phase.CLEANUP, Operation.DELETE_USER, username, "keep_home",
                success=result.success,
            )
            if result.success:
                report.users_deleted += 1
                log.info("user_deleted", user=username, simulated=result.simulated)
            else:
                self._fail(report, Phase.CLEANUP, Operation.DELETE_USER, username, result.error)

    # ------------------------------------------------------------------
    # Convergent primitives
    # ------------------------------------------------------------------

    def _snapshot(self) -> AuthorizationSnapshot:
        return self.store.load_snapshot().with_backfills(
            self._state.repo_backfills, self._state.worktree_backfills
        )

    def _group_ready(self, group: str) -> bool:
        return group in self._state.groups_created or self.inspector.group_exists(group)

    def _ensure_group(self, group: str, phase: Phase, report: ReconcileReport) -> bool:
        """Create ``group`` if absent. A group that failed once is not retried this run."""
        if group in self._state.groups_failed:
            return False
        if self._group_ready(group):
            return True

        result = self.mutator.create_group(group)
        report.record(phase, Operation.CREATE_GROUP, group, success=result.success)
        if not result.success:
            self._state.groups_failed.add(group)
            self._fail(report, phase, Operation.CREATE_GROUP, group, result.error)
            return False

        self._state.groups_created.add(group)
        report.groups_created += 1
        log.info("group_created", group=group, phase=phase.value, simulated=result.simulated)
        return True

    def _ensure_user(self, username: str, report: ReconcileReport) -> bool:
        if username in self._state.users_created or self.inspector.user_exists(username):
            return True

        result = self.mutator.create_user(username)
        report.record(Phase.USERS, Operation.CREATE_USER, username, success=result.success)
        if not result.success:
            self._fail(report, Phase.USERS, Operation.CREATE_USER, username, result.error)
            return False

        self._state.users_created.add(username)
        report.users_created += 1
        log.info("user_created", user=username, simulated=result.simulated)
        return True

    def _has_member(self, username: str, group: str, current: set[str] | None = None) -> bool:
        if (username, group) in self._state.members_added:
            return True
        if current is not None:
            return group in current
        return self.inspector.is_member(username, group)

    def _add_member(
        self,
        username: str,
        group: str,
        operation: Operation,
        phase: Phase,
        report: ReconcileReport,
    ) -> bool:
        result = self.mutator.add_user_to_group(username, group)
        report.record(phase, operation, group, username, success=result.success)
        if not result.success:
            self._fail(report, phase, operation, f"{username}@{group}", result.error)
            return False
        self._state.members_added.add((username, group))
        log.info("member_added", user=username, group=group, simulated=result.simulated)
        return True

    def _ensure_daemon_member(self, group: str, phase: Phase, report: ReconcileReport) -> None:
        if self._has_member(self.daemon_user, group):
            return
        if self._add_member(self.daemon_user, group, Operation.ADD_DAEMON_MEMBER, phase, report):
            report.daemon_memberships_added += 1

    def _prune_memberships(
        self, user: DesiredUser, current: set[str], report: ReconcileReport
    ) -> None:
        wanted = user.groups
        stale = sorted(
            g
            for g in current
            if g not in wanted
            and (
                looks_like_managed_group(g, GroupNamespace.WORKTREE)
                or looks_like_managed_group(g, GroupNamespace.REPO)
            )
        )
        for group in stale:
            result = self.mutator.remove_user_from_group(user.unix_username, group)
            report.record(
                Phase.USERS, Operation.REMOVE_MEMBER, group, user.unix_username,
                success=result.success,
            )
            if result.success:
                report.memberships_removed += 1
                log.info("member_removed", user=user.unix_username, group=group)
            else:
                self._fail(
                    report, Phase.USERS, Operation.REMOVE_MEMBER,
                    f"{user.unix_username}@{group}", result.error,
                )

    def _backfill_worktree(self, worktree_id: str, group: str, report: ReconcileReport) -> None:
        if worktree_id in self._state.worktree_backfills:
            return
        stored = self._persist_backfill(
            Phase.USERS, Operation.BACKFILL_WORKTREE, worktree_id,
            f"worktree:{worktree_id}", group, report,
        )
        if stored is not None:
            report.worktrees_backfilled += 1

    def _persist_backfill(
        self,
        phase: Phase,
        operation: Operation,
        entity_id: str,
        entity: str,
        group: str,
        report: ReconcileReport,
    ) -> str | None:
        """Write a derived group name onto its row once; returns the stored name."""
        backfills = (
            self._state.repo_backfills
            if operation is Operation.BACKFILL_REPO
            else self._state.worktree_backfills
        )
        if self.dry_run:
            report.record(phase, operation, entity, group, success=True)
            backfills[entity_id] = group
            log.info("backfill_planned", entity=entity, group=group)
            return group

        assign = (
            self.store.assign_repo_group
            if operation is Operation.BACKFILL_REPO
            else self.store.assign_worktree_group
        )
        try:
            stored = assign(entity_id, group)
        except SQLAlchemyError as e:
            report.record(phase, operation, entity, group, success=False)
            self._fail(report, phase, operation, entity, str(e))
            return None

        report.record(phase, operation, entity, group, success=True)
        backfills[entity_id] = stored
        if stored != group:
            log.warning("backfill_already_assigned", entity=entity, stored=stored, derived=group)
        else:
            log.info("backfill_written", entity=entity, group=group)
        return stored

    def _apply_permissions(
        self,
        entity: str,
        path: str,
        group: str,
        mode: int,
        phase: Phase,
        report: ReconcileReport,
    ) -> PermissionOutcome:
        key = (path, group, mode)
        if key in self._state.trees_synced:
            return PermissionOutcome.IN_SYNC

        status = self.applier.needs_apply(path, group, mode)
        if status is PermissionOutcome.MISSING_PATH:
            self._skip(report, entity, path, "path does not exist")
            return status
        if status is PermissionOutcome.IN_SYNC:
            log.debug("permissions_in_sync", entity=entity, path=path)
            return status

        outcome, result = self.applier.apply(path, group, mode)
        report.record(
            phase, Operation.SET_PERMISSIONS, path, f"{group}:{mode:04o}",
            success=result.success,
        )
        if outcome is PermissionOutcome.FAILED:
            self._fail(report, phase, Operation.SET_PERMISSIONS, entity, result.error)
            return outcome

        self._state.trees_synced.add(key)
        log.info(
            "permissions_synced", entity=entity, path=path, group=group, mode=f"{mode:04o}",
            simulated=result.simulated,
        )
        return outcome

    def _skip(self, report: ReconcileReport, entity: str, path: str | None, reason: str) -> None:
        if entity in self._state.skipped:
            return
        self._state.skipped.add(entity)
        report.skip(entity, path, reason)
        log.warning("path_skipped", entity=entity, path=path, reason=reason)

    def _fail(
        self,
        report: ReconcileReport,
        phase: Phase,
        operation: Operation,
        entity: str,
        error: str | None,
    ) -> None:
        report.fail(phase, operation, entity, error)
        log.error(
            "mutation_failed",
            phase=phase.value,
            operation=operation.value,
            entity=entity,
            error=error,
        )
