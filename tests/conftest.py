"""Shared fixtures: an in-memory OS fake and an in-memory SQLite database."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest
import structlog
from sqlalchemy import delete

from agor_isolation.cli import wiring
from agor_isolation.db import (
    AuthorizationStore,
    Repo,
    User,
    Worktree,
    WorktreeOwner,
    create_db_engine,
    init_db,
    session_factory,
)
from agor_isolation.naming import GroupNamespace, looks_like_managed_group, looks_like_managed_user
from agor_isolation.unix.mutator import MutationResult

DAEMON_USER = "agor_daemon"


@dataclass
class FakeSystem:
    """OS inspector and mutator over in-memory users, groups and directory trees.

    ``trees`` maps a path to its ``(group, mode)``; a path absent from it does not
    exist. Operations listed in ``fail_on`` as ``(operation, target)`` fail.
    """

    users: set[str] = field(default_factory=set)
    groups: dict[str, set[str]] = field(default_factory=dict)
    trees: dict[str, tuple[str | None, int]] = field(default_factory=dict)
    simulate: bool = False
    fail_on: set[tuple[str, str]] = field(default_factory=set)
    calls: list[tuple[str, str]] = field(default_factory=list)
    deleted_users: list[tuple[str, bool]] = field(default_factory=list)

    # Inspector

    def user_exists(self, username: str) -> bool:
        return username in self.users

    def group_exists(self, group: str) -> bool:
        return group in self.groups

    def groups_of_user(self, username: str) -> set[str]:
        if username not in self.users:
            return set()
        return {g for g, members in self.groups.items() if username in members}

    def is_member(self, username: str, group: str) -> bool:
        return username in self.groups.get(group, set())

    def list_managed_users(self) -> set[str]:
        return {u for u in self.users if looks_like_managed_user(u)}

    def list_managed_groups(self, namespace: GroupNamespace) -> set[str]:
        return {g for g in self.groups if looks_like_managed_group(g, namespace)}

    def path_exists(self, path: str) -> bool:
        return path in self.trees

    def tree_matches(self, path: str, group: str, mode: int) -> bool:
        return group in self.groups and self.trees.get(path) == (group, mode)

    # Mutator

    def _mutate(
        self, operation: str, target: str, apply: Callable[[], str | None]
    ) -> MutationResult:
        self.calls.append((operation, target))
        description = f"{operation} {target}"
        if (operation, target) in self.fail_on:
            return MutationResult(success=False, description=description, error="injected")
        if self.simulate:
            return MutationResult(success=True, description=description, simulated=True)
        problem = apply()
        if problem:
            return MutationResult(success=False, description=description, error=problem)
        return MutationResult(success=True, description=description)

    def create_user(self, username: str) -> MutationResult:
        def apply() -> str | None:
            if username in self.users:
                return "user already exists"
            self.users.add(username)
            return None

        return self._mutate("create_user", username, apply)

    def delete_user(self, username: str, *, keep_home: bool = True) -> MutationResult:
        def apply() -> str | None:
            if username not in self.users:
                return "user does not exist"
            self.users.discard(username)
            for members in self.groups.values():
                members.discard(username)
            self.deleted_users.append((username, keep_home))
            return None

        return self._mutate("delete_user", username, apply)

    def create_group(self, group: str) -> MutationResult:
        def apply() -> str | None:
            if group in self.groups:
                return "group already exists"
            self.groups[group] = set()
            return None

        return self._mutate("create_group", group, apply)

    def delete_group(self, group: str) -> MutationResult:
        def apply() -> str | None:
            if self.groups.pop(group, None) is None:
                return "group does not exist"
            return None

        return self._mutate("delete_group", group, apply)

    def add_user_to_group(self, username: str, group: str) -> MutationResult:
        def apply() -> str | None:
            if group not in self.groups or username not in self.users:
                return "no such user or group"
            self.groups[group].add(username)
            return None

        return self._mutate("add_user_to_group", f"{username}@{group}", apply)

    def remove_user_from_group(self, username: str, group: str) -> MutationResult:
        def apply() -> str | None:
            self.groups.get(group, set()).discard(username)
            return None

        return self._mutate("remove_user_from_group", f"{username}@{group}", apply)

    def set_tree_group_and_mode(self, path: str, group: str, mode: int) -> MutationResult:
        def apply() -> str | None:
            if path not in self.trees:
                return "no such directory"
            self.trees[path] = (group, mode)
            return None

        return self._mutate("set_tree_group_and_mode", path, apply)

    def snapshot(self) -> tuple[Any, ...]:
        return (
            frozenset(self.users),
            {g: frozenset(m) for g, m in self.groups.items()},
            dict(self.trees),
        )


@dataclass
class Database:
    """In-memory Agor database with seeding helpers."""

    store: AuthorizationStore

    def add(self, *rows: Any) -> None:
        with self.store.session_factory() as session:
            for row in rows:
                session.add(row)

    def user(self, user_id: str, unix_username: str | None) -> None:
        self.add(User(user_id=user_id, email=f"{user_id}@example.com", unix_username=unix_username))

    def repo(
        self, repo_id: str, *, unix_group: str | None = None, local_path: str | None = None
    ) -> None:
        data = {"local_path": local_path} if local_path else {}
        self.add(Repo(repo_id=repo_id, slug=repo_id, unix_group=unix_group, data=data))

    def worktree(
        self,
        worktree_id: str,
        repo_id: str,
        *,
        unix_group: str | None = None,
        others_fs_access: str | None = "read",
        path: str | None = None,
        owners: tuple[str, ...] = (),
    ) -> None:
        data = {"path": path} if path else {}
        self.add(
            Worktree(
                worktree_id=worktree_id,
                repo_id=repo_id,
                name=worktree_id,
                unix_group=unix_group,
                others_fs_access=others_fs_access,
                data=data,
            )
        )
        self.add(*(WorktreeOwner(worktree_id=worktree_id, user_id=o) for o in owners))

    def disown(self, worktree_id: str, user_id: str) -> None:
        with self.store.session_factory() as session:
            session.execute(
                delete(WorktreeOwner).where(
                    WorktreeOwner.worktree_id == worktree_id,
                    WorktreeOwner.user_id == user_id,
                )
            )

    def repo_group(self, repo_id: str) -> str | None:
        with self.store.session_factory() as session:
            repo = session.get(Repo, repo_id)
            return repo.unix_group if repo else None

    def worktree_group(self, worktree_id: str) -> str | None:
        with self.store.session_factory() as session:
            worktree = session.get(Worktree, worktree_id)
            return worktree.unix_group if worktree else None


@pytest.fixture(autouse=True)
def reset_structlog() -> Iterator[None]:
    yield
    structlog.reset_defaults()


@pytest.fixture
def db() -> Database:
    engine = create_db_engine("sqlite://")
    init_db(engine)
    return Database(store=AuthorizationStore(session_factory(engine)))


@pytest.fixture
def system() -> FakeSystem:
    return FakeSystem(users={DAEMON_USER})


@pytest.fixture
def wired(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path, db: Database
) -> dict[str, FakeSystem]:
    """Point the CLI at the in-memory database and fake OS."""
    monkeypatch.setenv("AGOR_CONFIG_FILE", str(tmp_path / "config.yaml"))
    monkeypatch.setenv("AGOR_DAEMON_UNIX_USER", DAEMON_USER)
    monkeypatch.delenv("AGOR_UNIX_ISOLATION_ENABLED", raising=False)
    systems: dict[str, FakeSystem] = {}

    def make_mutator(settings, *, simulate: bool) -> FakeSystem:
        system = systems["os"]
        system.simulate = simulate
        return system

    systems["os"] = FakeSystem(users={DAEMON_USER})
    monkeypatch.setattr(wiring, "make_store", lambda settings: db.store)
    monkeypatch.setattr(wiring, "make_inspector", lambda settings: systems["os"])
    monkeypatch.setattr(wiring, "make_mutator", make_mutator)
    return systems
