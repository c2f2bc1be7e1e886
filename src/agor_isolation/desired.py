"""Desired OS state computed from one authorization snapshot.

For each user with a Unix username the desired memberships are::

    {global group}
      ∪ {worktree group(w) : w owned by the user}
      ∪ {repo group(r)     : r contains a worktree owned by the user}

Repo access is never granted directly; it follows from owning at least one worktree
of the repo. A name already stored on the row always wins over derivation.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from enum import StrEnum

from agor_isolation.db.store import AuthorizationSnapshot, OwnershipRecord
from agor_isolation.naming import AGOR_USERS_GROUP, repo_group_name, worktree_group_name


class GroupScope(StrEnum):
    GLOBAL = "global"
    REPO = "repo"
    WORKTREE = "worktree"


@dataclass(frozen=True)
class GroupGrant:
    """One group a user must belong to, and the row the group name comes from."""

    group: str
    scope: GroupScope
    entity_id: str | None = None
    # False when the name was derived and still has to be backfilled onto the row
    assigned: bool = True


@dataclass(frozen=True)
class DesiredUser:
    user_id: str
    unix_username: str
    grants: tuple[GroupGrant, ...]

    @property
    def groups(self) -> set[str]:
        return {g.group for g in self.grants}


@dataclass
class DesiredState:
    """Target users, memberships and the full set of groups that should exist."""

    users: list[DesiredUser] = field(default_factory=list)
    worktree_groups: dict[str, str] = field(default_factory=dict)
    repo_groups: dict[str, str] = field(default_factory=dict)
    global_group: str = AGOR_USERS_GROUP

    @property
    def memberships(self) -> dict[str, set[str]]:
        """Username -> desired group names."""
        return {u.unix_username: u.groups for u in self.users}

    @property
    def usernames(self) -> set[str]:
        return {u.unix_username for u in self.users}

    @property
    def expected_worktree_groups(self) -> set[str]:
        return set(self.worktree_groups.values())

    @property
    def expected_repo_groups(self) -> set[str]:
        return set(self.repo_groups.values())


class DesiredStateComputer:
    """Pure computation of ``DesiredState`` from an ``AuthorizationSnapshot``."""

    def __init__(self, global_group: str = AGOR_USERS_GROUP) -> None:
        self.global_group = global_group

    def compute(self, snapshot: AuthorizationSnapshot) -> DesiredState:
        repo_groups = {
            r.repo_id: r.unix_group or repo_group_name(r.repo_id) for r in snapshot.repos
        }
        assigned_repos = {r.repo_id for r in snapshot.repos if r.unix_group}
        worktree_groups = {
            wt.worktree_id: wt.unix_group or worktree_group_name(wt.worktree_id)
            for wt in snapshot.worktrees
        }

        # Single pass over the prefetched join: user_id -> owned worktrees
        owned: dict[str, list[OwnershipRecord]] = defaultdict(list)
        for ownership in snapshot.ownerships:
            owned[ownership.user_id].append(ownership)

        users: list[DesiredUser] = []
        for user in snapshot.users:
            grants = [GroupGrant(self.global_group, GroupScope.GLOBAL)]
            ownerships = sorted(owned.get(user.user_id, []), key=lambda o: o.worktree.worktree_id)

            for o in ownerships:
                wt = o.worktree
                grants.append(
                    GroupGrant(
                        group=wt.unix_group or worktree_group_name(wt.worktree_id),
                        scope=GroupScope.WORKTREE,
                        entity_id=wt.worktree_id,
                        assigned=wt.unix_group is not None,
                    )
                )

            seen_repos: set[str] = set()
            for o in ownerships:
                repo_id = o.worktree.repo_id
                if repo_id in seen_repos:
                    continue
                seen_repos.add(repo_id)
                grants.append(
                    GroupGrant(
                        group=repo_groups.get(repo_id) or repo_group_name(repo_id),
                        scope=GroupScope.REPO,
                        entity_id=repo_id,
                        assigned=repo_id in assigned_repos,
                    )
                )

            users.append(
                DesiredUser(
                    user_id=user.user_id,
                    unix_username=user.unix_username,
                    grants=tuple(grants),
                )
            )

        return DesiredState(
            users=users,
            worktree_groups=worktree_groups,
            repo_groups=repo_groups,
            global_group=self.global_group,
        )
