"""Read-only view of the OS identity database and filesystem.

Every query treats a failed lookup (unknown name, NSS error, permission denied) as
"not found". Absence is the conservative answer: the reconciler then tries to create
the entity, and creation is safe to retry.
"""

from __future__ import annotations

import grp
import os
import pwd
import stat
from pathlib import Path
from typing import Protocol, runtime_checkable

import structlog

from agor_isolation.naming import GroupNamespace, looks_like_managed_group, looks_like_managed_user

log = structlog.get_logger()


@runtime_checkable
class OSStateInspector(Protocol):
    """Queries the reconciler uses to read actual state."""

    def user_exists(self, username: str) -> bool: ...

    def group_exists(self, group: str) -> bool: ...

    def groups_of_user(self, username: str) -> set[str]: ...

    def is_member(self, username: str, group: str) -> bool: ...

    def list_managed_users(self) -> set[str]: ...

    def list_managed_groups(self, namespace: GroupNamespace) -> set[str]: ...

    def path_exists(self, path: str) -> bool: ...

    def tree_matches(self, path: str, group: str, mode: int) -> bool: ...


def _raise(error: OSError) -> None:
    raise error


class SystemStateInspector:
    """``OSStateInspector`` backed by the ``pwd``/``grp`` NSS lookups."""

    def user_exists(self, username: str) -> bool:
        try:
            pwd.getpwnam(username)
        except (KeyError, OSError):
            return False
        return True

    def group_exists(self, group: str) -> bool:
        try:
            grp.getgrnam(group)
        except (KeyError, OSError):
            return False
        return True

    def groups_of_user(self, username: str) -> set[str]:
        """Primary and supplementary group names of a user (empty if unknown)."""
        try:
            entry = pwd.getpwnam(username)
            gids = os.getgrouplist(username, entry.pw_gid)
        except (KeyError, OSError):
            return set()

        names: set[str] = set()
        for gid in gids:
            try:
                names.add(grp.getgrgid(gid).gr_name)
            except (KeyError, OSError):
                continue
        return names

    def is_member(self, username: str, group: str) -> bool:
        try:
            entry = grp.getgrnam(group)
        except (KeyError, OSError):
            return False
        if username in entry.gr_mem:
            return True
        try:
            return pwd.getpwnam(username).pw_gid == entry.gr_gid
        except (KeyError, OSError):
            return False

    def list_managed_users(self) -> set[str]:
        try:
            entries = pwd.getpwall()
        except OSError as e:
            log.warning("passwd_enumeration_failed", error=str(e))
            return set()
        return {e.pw_name for e in entries if looks_like_managed_user(e.pw_name)}

    def list_managed_groups(self, namespace: GroupNamespace) -> set[str]:
        try:
            entries = grp.getgrall()
        except OSError as e:
            log.warning("group_enumeration_failed", error=str(e))
            return set()
        return {e.gr_name for e in entries if looks_like_managed_group(e.gr_name, namespace)}

    def path_exists(self, path: str) -> bool:
        try:
            return Path(path).exists()
        except OSError:
            return False

    def tree_matches(self, path: str, group: str, mode: int) -> bool:
        """Check that every entry under ``path`` has ``group`` and exactly ``mode``.

        Symlinks are not followed and not checked. Any unreadable entry or unlistable
        directory counts as a mismatch so the tree gets re-applied.
        """
        try:
            gid = grp.getgrnam(group).gr_gid
        except (KeyError, OSError):
            return False

        def entry_matches(entry: str) -> bool:
            st = os.lstat(entry)
            if stat.S_ISLNK(st.st_mode):
                return True
            return st.st_gid == gid and stat.S_IMODE(st.st_mode) == mode

        try:
            if not entry_matches(path):
                return False
            for root, dirs, files in os.walk(path, onerror=_raise):
                for name in (*dirs, *files):
                    if not entry_matches(os.path.join(root, name)):
                        return False
        except OSError:
            return False
        return True
