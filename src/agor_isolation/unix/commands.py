"""Argument vectors for the privileged account and filesystem tools.

Every builder returns a ``list[str]`` for direct ``exec`` - nothing here is ever joined
into a shell string, so names and paths from the database are passed as opaque
arguments. Paths are placed after ``--`` so a path starting with ``-`` cannot be read
as an option.
"""

from __future__ import annotations

from pathlib import Path

from agor_isolation.naming import validate_unix_name

SUDO_PREFIX = ("sudo", "-n")


def format_mode(mode: int) -> str:
    """Render a mode as the octal string chmod expects, e.g. ``0o2775`` -> ``2775``."""
    return f"{mode:04o}"


def create_user(
    username: str, *, shell: str = "/bin/bash", home_base: Path | str = "/home"
) -> list[str]:
    validate_unix_name(username)
    home = Path(home_base) / username
    return ["useradd", "--create-home", "--home-dir", str(home), "--shell", shell, username]


def delete_user(username: str, *, keep_home: bool = True) -> list[str]:
    """Build ``userdel``; only ``keep_home=False`` adds ``--remove``."""
    validate_unix_name(username)
    if keep_home:
        return ["userdel", username]
    return ["userdel", "--remove", username]


def create_group(group: str) -> list[str]:
    validate_unix_name(group)
    return ["groupadd", group]


def delete_group(group: str) -> list[str]:
    validate_unix_name(group)
    return ["groupdel", group]


def add_user_to_group(username: str, group: str) -> list[str]:
    validate_unix_name(username)
    validate_unix_name(group)
    return ["usermod", "--append", "--groups", group, username]


def remove_user_from_group(username: str, group: str) -> list[str]:
    validate_unix_name(username)
    validate_unix_name(group)
    return ["gpasswd", "--delete", username, group]


def change_group_recursive(path: Path | str, group: str) -> list[str]:
    validate_unix_name(group)
    return ["chgrp", "-R", group, "--", str(path)]


def change_mode_recursive(path: Path | str, mode: int) -> list[str]:
    return ["chmod", "-R", format_mode(mode), "--", str(path)]


def with_sudo(argv: list[str]) -> list[str]:
    """Prefix a command with non-interactive sudo."""
    return [*SUDO_PREFIX, *argv]
