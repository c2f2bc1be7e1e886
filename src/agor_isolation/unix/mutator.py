"""Side-effecting OS primitives: accounts, groups, memberships, tree ownership.

Expected failures (already exists, not found, tool missing, bad name) come back as a
failed ``MutationResult``; callers decide whether that is fatal. With
``simulate=True`` nothing is executed, but the same command is built and described,
so a dry run follows exactly the code path of a real run.
"""

from __future__ import annotations

import shlex
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol, runtime_checkable

import structlog

from agor_isolation.errors import InvalidUnixNameError
from agor_isolation.unix import commands
from agor_isolation.unix.executor import CommandRunner

log = structlog.get_logger()


@dataclass
class MutationResult:
    """Outcome of one mutation primitive."""

    success: bool
    description: str
    error: str | None = None
    simulated: bool = False
    steps: list[str] = field(default_factory=list)


@runtime_checkable
class OSMutator(Protocol):
    """Mutation primitives the reconciler converges the OS with."""

    simulate: bool

    def create_user(self, username: str) -> MutationResult: ...

    def delete_user(self, username: str, *, keep_home: bool = True) -> MutationResult: ...

    def create_group(self, group: str) -> MutationResult: ...

    def delete_group(self, group: str) -> MutationResult: ...

    def add_user_to_group(self, username: str, group: str) -> MutationResult: ...

    def remove_user_from_group(self, username: str, group: str) -> MutationResult: ...

    def set_tree_group_and_mode(self, path: str, group: str, mode: int) -> MutationResult: ...


@dataclass
class SystemMutator:
    """``OSMutator`` that runs the shadow-utils/coreutils tools."""

    runner: CommandRunner = field(default_factory=CommandRunner)
    simulate: bool = False
    shell: str = "/bin/bash"
    home_base: Path = Path("/home")

    def _run_steps(self, description: str, build: list[list[str]] | None) -> MutationResult:
        if build is None:
            return MutationResult(success=False, description=description, error="invalid name")

        prepared = [self.runner.prepare(argv) for argv in build]
        steps = [shlex.join(argv) for argv in prepared]
        if self.simulate:
            return MutationResult(
                success=True, description=description, simulated=True, steps=steps
            )

        for argv in build:
            result = self.runner.run(argv)
            if not result.ok:
                message = result.stderr or f"exit code {result.exit_code}"
                return MutationResult(
                    success=False,
                    description=description,
                    error=f"{result.display}: {message}",
                    steps=steps,
                )
        return MutationResult(success=True, description=description, steps=steps)

    def _build(self, *builders: Callable[[], list[str]]) -> list[list[str]] | None:
        try:
            return [builder() for builder in builders]
        except InvalidUnixNameError as e:
            log.warning("invalid_unix_name", name=e.name)
            return None

    def create_user(self, username: str) -> MutationResult:
        argv = self._build(
            lambda: commands.create_user(username, shell=self.shell, home_base=self.home_base)
        )
        return self._run_steps(f"create user {username}", argv)

    def delete_user(self, username: str, *, keep_home: bool = True) -> MutationResult:
        argv = self._build(lambda: commands.delete_user(username, keep_home=keep_home))
        suffix = " (keeping home directory)" if keep_home else ""
        return self._run_steps(f"delete user {username}{suffix}", argv)

    def create_group(self, group: str) -> MutationResult:
        return self._run_steps(
            f"create group {group}", self._build(lambda: commands.create_group(group))
        )

    def delete_group(self, group: str) -> MutationResult:
        return self._run_steps(
            f"delete group {group}", self._build(lambda: commands.delete_group(group))
        )

    def add_user_to_group(self, username: str, group: str) -> MutationResult:
        argv = self._build(lambda: commands.add_user_to_group(username, group))
        return self._run_steps(f"add {username} to {group}", argv)

    def remove_user_from_group(self, username: str, group: str) -> MutationResult:
        argv = self._build(lambda: commands.remove_user_from_group(username, group))
        return self._run_steps(f"remove {username} from {group}", argv)

    def set_tree_group_and_mode(self, path: str, group: str, mode: int) -> MutationResult:
        """Apply group then mode recursively, as two separate commands."""
        argv = self._build(
            lambda: commands.change_group_recursive(path, group),
            lambda: commands.change_mode_recursive(path, mode),
        )
        return self._run_steps(
            f"set {path} to group {group} mode {commands.format_mode(mode)}", argv
        )

