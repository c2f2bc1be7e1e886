"""Read model of the authorization data and the write-once group backfill.

Every reconciliation phase starts from a fresh ``AuthorizationSnapshot``. Snapshots
are plain frozen records, detached from any session, so the desired-state computation
stays a pure function of its input.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace

import structlog
from sqlalchemy import update
from sqlmodel import col, select

from agor_isolation.db.connection import SessionFactory
from agor_isolation.db.models import OthersFsAccess, Repo, User, Worktree, WorktreeOwner

log = structlog.get_logger()


@dataclass(frozen=True)
class UserRecord:
    user_id: str
    unix_username: str
    email: str = ""


@dataclass(frozen=True)
class RepoRecord:
    repo_id: str
    slug: str
    unix_group: str | None
    local_path: str | None


@dataclass(frozen=True)
class WorktreeRecord:
    worktree_id: str
    repo_id: str
    name: str
    unix_group: str | None
    # Unrecognised stored values are kept verbatim so only this worktree fails
    others_fs_access: OthersFsAccess | str
    path: str | None


@dataclass(frozen=True)
class OwnershipRecord:
    """One ``worktree_owners`` row joined with the owned worktree."""

    user_id: str
    worktree: WorktreeRecord


@dataclass(frozen=True)
class AuthorizationSnapshot:
    """Users with a Unix username, all repos and worktrees, and their ownerships."""

    users: tuple[UserRecord, ...] = ()
    repos: tuple[RepoRecord, ...] = ()
    worktrees: tuple[WorktreeRecord, ...] = ()
    ownerships: tuple[OwnershipRecord, ...] = ()

    def with_backfills(
        self,
        repo_groups: dict[str, str] | None = None,
        worktree_groups: dict[str, str] | None = None,
    ) -> AuthorizationSnapshot:
        """Return a copy where rows lacking ``unix_group`` get the given names.

        Rows that already carry a group keep it. Used by dry runs, which record the
        backfills they would have persisted instead of writing them.
        """
        repo_groups = repo_groups or {}
        worktree_groups = worktree_groups or {}
        if not repo_groups and not worktree_groups:
            return self

        def fill_worktree(wt: WorktreeRecord) -> WorktreeRecord:
            if wt.unix_group is None and wt.worktree_id in worktree_groups:
                return replace(wt, unix_group=worktree_groups[wt.worktree_id])
            return wt

        repos = tuple(
            replace(r, unix_group=repo_groups[r.repo_id])
            if r.unix_group is None and r.repo_id in repo_groups
            else r
            for r in self.repos
        )
        return AuthorizationSnapshot(
            users=self.users,
            repos=repos,
            worktrees=tuple(fill_worktree(wt) for wt in self.worktrees),
            ownerships=tuple(
                OwnershipRecord(user_id=o.user_id, worktree=fill_worktree(o.worktree))
                for o in self.ownerships
            ),
        )


def _repo_record(repo: Repo) -> RepoRecord:
    return RepoRecord(
        repo_id=repo.repo_id,
        slug=repo.slug,
        unix_group=repo.unix_group or None,
        local_path=repo.local_path,
    )


def _others_fs_access(worktree: Worktree) -> OthersFsAccess | str:
    try:
        return OthersFsAccess.parse(worktree.others_fs_access)
    except ValueError:
        log.warning(
            "unknown_others_fs_access",
            worktree_id=worktree.worktree_id,
            value=worktree.others_fs_access,
        )
        return worktree.others_fs_access or ""


def _worktree_record(worktree: Worktree) -> WorktreeRecord:
    return WorktreeRecord(
        worktree_id=worktree.worktree_id,
        repo_id=worktree.repo_id,
        name=worktree.name,
        unix_group=worktree.unix_group or None,
        others_fs_access=_others_fs_access(worktree),
        path=worktree.path,
    )


@dataclass
class AuthorizationStore:
    """Database collaborator of the reconciler."""

    session_factory: SessionFactory
    _reads: int = field(default=0, init=False, repr=False)

    def load_snapshot(self) -> AuthorizationSnapshot:
        """Read the full authorization model.

        Ownerships come from a single ``worktree_owners`` join ``worktrees`` query
        restricted to users with a Unix username; there is no per-user query.
        Rows are ordered by id so runs are deterministic.
        """
        with self.session_factory() as session:
            users = session.exec(
                select(User).where(col(User.unix_username).is_not(None)).order_by(User.user_id)
            ).all()
            users = [u for u in users if u.unix_username and u.unix_username.strip()]
            repos = session.exec(select(Repo).order_by(Repo.repo_id)).all()
            worktrees = session.exec(select(Worktree).order_by(Worktree.worktree_id)).all()

            user_ids = [u.user_id for u in users]
            rows = (
                session.exec(
                    select(WorktreeOwner.user_id, Worktree)
                    .select_from(WorktreeOwner)
                    .join(Worktree, col(Worktree.worktree_id) == col(WorktreeOwner.worktree_id))
                    .where(col(WorktreeOwner.user_id).in_(user_ids))
                    .order_by(WorktreeOwner.user_id, Worktree.worktree_id)
                ).all()
                if user_ids
                else []
            )

            snapshot = AuthorizationSnapshot(
                users=tuple(
                    UserRecord(
                        user_id=u.user_id,
                        unix_username=(u.unix_username or "").strip(),
                        email=u.email,
                    )
                    for u in users
                ),
                repos=tuple(_repo_record(r) for r in repos),
                worktrees=tuple(_worktree_record(wt) for wt in worktrees),
                ownerships=tuple(
                    OwnershipRecord(user_id=user_id, worktree=_worktree_record(wt))
                    for user_id, wt in rows
                ),
            )

        self._reads += 1
        log.debug(
            "snapshot_loaded",
            users=len(snapshot.users),
            repos=len(snapshot.repos),
            worktrees=len(snapshot.worktrees),
            ownerships=len(snapshot.ownerships),
        )
        return snapshot

    def assign_repo_group(self, repo_id: str, group: str) -> str:
        """Persist ``group`` as the repo's ``unix_group`` unless one is already set.

        Returns:
            The group now stored for the repo. If another writer got there first,
            that existing value is returned and left untouched.
        """
        with self.session_factory() as session:
            session.execute(
                update(Repo)
                .where(col(Repo.repo_id) == repo_id, col(Repo.unix_group).is_(None))
                .values(unix_group=group)
            )
            session.flush()
            stored = session.exec(select(Repo.unix_group).where(Repo.repo_id == repo_id)).first()
        return stored or group

    def assign_worktree_group(self, worktree_id: str, group: str) -> str:
        """Persist ``group`` as the worktree's ``unix_group`` unless one is already set."""
        with self.session_factory() as session:
            session.execute(
                update(Worktree)
                .where(
                    col(Worktree.worktree_id) == worktree_id,
                    col(Worktree.unix_group).is_(None),
                )
                .values(unix_group=group)
            )
            session.flush()
            stored = session.exec(
                select(Worktree.unix_group).where(Worktree.worktree_id == worktree_id)
            ).first()
        return stored or group

    @property
    def reads(self) -> int:
        """Number of snapshots loaded through this store."""
        return self._reads
