"""Deterministic Unix names for managed users and groups.

Naming scheme:
- ``agor_users``        global group holding every managed user
- ``agor_wt_<8 hex>``   one group per worktree (working-directory access)
- ``agor_rp_<8 hex>``   one group per repository (``.git`` access)
- ``agor_<8 hex>``      auto-generated usernames, the only users cleanup may delete

All derivations are pure functions of the entity id. Names already stored in the
database always win over a derived name; see ``agor_isolation.desired``.
"""

from __future__ import annotations

import hashlib
import re
from enum import StrEnum

from agor_isolation.errors import InvalidUnixNameError

AGOR_USERS_GROUP = "agor_users"

SHORT_ID_LENGTH = 8

WORKTREE_GROUP_PREFIX = "agor_wt_"
REPO_GROUP_PREFIX = "agor_rp_"
MANAGED_USER_PREFIX = "agor_"

_HEX_RE = re.compile(r"^[0-9a-f]+$")
_MANAGED_USER_RE = re.compile(r"^agor_[0-9a-f]{8}$")
_WORKTREE_GROUP_RE = re.compile(r"^agor_wt_([0-9a-f]{8})$")
_REPO_GROUP_RE = re.compile(r"^agor_rp_([0-9a-f]{8})$")

# Rejects option-like names, field separators and control characters; 32 is the utmp limit
_UNIX_NAME_RE = re.compile(r"[^\s:/,\-\x00-\x1f\x7f][^\s:/,\x00-\x1f\x7f]{0,31}")


class GroupNamespace(StrEnum):
    """Namespaces of managed groups."""

    WORKTREE = "wt"
    REPO = "rp"


def short_id(entity_id: str) -> str:
    """Return the 8-character lowercase hex short id for an entity id.

    UUIDs (and any id that is at least 8 hex digits once separators are removed)
    keep their leading digits, so ``03b62447-...`` becomes ``03b62447``. Other ids
    are hashed so the result is still 8 hex characters and stays stable.
    """
    cleaned = entity_id.replace("-", "").replace("_", "").strip().lower()
    if len(cleaned) >= SHORT_ID_LENGTH and _HEX_RE.match(cleaned):
        return cleaned[:SHORT_ID_LENGTH]
    return hashlib.sha256(entity_id.encode("utf-8")).hexdigest()[:SHORT_ID_LENGTH]


def worktree_group_name(worktree_id: str) -> str:
    """Derive the Unix group for a worktree, e.g. ``agor_wt_03b62447``."""
    return f"{WORKTREE_GROUP_PREFIX}{short_id(worktree_id)}"


def repo_group_name(repo_id: str) -> str:
    """Derive the Unix group for a repository, e.g. ``agor_rp_03b62447``."""
    return f"{REPO_GROUP_PREFIX}{short_id(repo_id)}"


def unix_username_for_user(user_id: str) -> str:
    """Derive the auto-generated Unix username for an application user."""
    return f"{MANAGED_USER_PREFIX}{short_id(user_id)}"


def parse_worktree_group_name(group_name: str) -> str | None:
    match = _WORKTREE_GROUP_RE.match(group_name)
    return match.group(1) if match else None


def parse_repo_group_name(group_name: str) -> str | None:
    match = _REPO_GROUP_RE.match(group_name)
    return match.group(1) if match else None


def looks_like_managed_group(group_name: str, namespace: GroupNamespace | str) -> bool:
    """Check whether a group name has the exact generated shape for a namespace.

    ``agor_wt_team`` or ``agor_wt_0123456789`` do not match: only
    ``agor_<ns>_<8 lowercase hex>`` is considered managed.
    """
    if GroupNamespace(namespace) is GroupNamespace.WORKTREE:
        return parse_worktree_group_name(group_name) is not None
    return parse_repo_group_name(group_name) is not None


def looks_like_managed_user(username: str) -> bool:
    """Check whether a username is an auto-generated ``agor_<8 hex>`` account."""
    return bool(_MANAGED_USER_RE.match(username))


def is_valid_unix_name(name: str) -> bool:
    return name not in (".", "..") and bool(_UNIX_NAME_RE.fullmatch(name))


def validate_unix_name(name: str) -> str:
    """Return ``name`` unchanged if it is safe to pass to the account tools.

    Raises:
        InvalidUnixNameError: If the name could be misread as an option or is not a
            valid account name.
    """
    if not is_valid_unix_name(name):
        raise InvalidUnixNameError(name)
    return name
