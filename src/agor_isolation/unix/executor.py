"""Blocking runner for privileged account and filesystem commands.

Commands are argument vectors executed without a shell. There is no timeout:
a hung tool hangs the run until the operator interrupts it.
"""

from __future__ import annotations

import shlex
import subprocess
import time
from dataclasses import dataclass

import structlog

from agor_isolation.unix.commands import with_sudo

log = structlog.get_logger()

# Exit code reported when the tool itself cannot be started (shell convention)
EXIT_NOT_FOUND = 127


@dataclass
class CommandResult:
    """Outcome of a single command."""

    command: list[str]
    exit_code: int
    stdout: str
    stderr: str
    duration_s: float

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def display(self) -> str:
        return shlex.join(self.command)


@dataclass
class CommandRunner:
    """Run argv commands synchronously, optionally through ``sudo -n``.

    Usage::

        runner = CommandRunner(use_sudo=True)
        result = runner.run(["groupadd", "agor_wt_03b62447"])
        if not result.ok:
            ...
    """

    use_sudo: bool = False

    def prepare(self, argv: list[str]) -> list[str]:
        return with_sudo(argv) if self.use_sudo else list(argv)

    def run(self, argv: list[str]) -> CommandResult:
        command = self.prepare(argv)
        start = time.monotonic()
        try:
            completed = subprocess.run(  # noqa: S603 - argv only, never a shell
                command,
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError as e:
            log.warning("command_not_started", command=shlex.join(command), error=str(e))
            return CommandResult(
                command=command,
                exit_code=EXIT_NOT_FOUND,
                stdout="",
                stderr=str(e),
                duration_s=time.monotonic() - start,
            )

        result = CommandResult(
            command=command,
            exit_code=completed.returncode,
            stdout=completed.stdout or "",
            stderr=(completed.stderr or "").strip(),
            duration_s=time.monotonic() - start,
        )
        log.debug(
            "command_finished",
            command=result.display,
            exit_code=result.exit_code,
            duration_s=round(result.duration_s, 3),
        )
        return result
