"""SQLModel schemas for the Agor tables the isolation engine reads.

Only the columns the engine needs are mapped; the tables themselves belong to the
Agor application:

- User: application account, optionally bound to a Unix username
- Repo: managed git repository (``data.local_path`` holds the checkout)
- Worktree: git working directory of a repo (``data.path`` holds the directory)
- WorktreeOwner: many-to-many user <-> worktree ownership

``Repo.unix_group`` and ``Worktree.unix_group`` are written once by the engine and
treated as ground truth afterwards.
"""

from enum import StrEnum
from typing import Any

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel


class OthersFsAccess(StrEnum):
    """Filesystem access granted to non-owners of a worktree."""

    NONE = "none"
    READ = "read"
    WRITE = "write"

    @classmethod
    def parse(cls, value: str | None) -> "OthersFsAccess":
        """Parse a stored value; NULL or empty means the application default (read).

        Raises:
            ValueError: If the value is not one of ``none``, ``read`` or ``write``.
        """
        if not value:
            return cls.READ
        return cls(value)


class User(SQLModel, table=True):
    """Application user."""

    __tablename__ = "users"

    user_id: str = Field(primary_key=True, max_length=36)
    email: str = Field(default="", description="Login email")
    name: str | None = Field(default=None)
    unix_username: str | None = Field(
        default=None,
        description="OS account for this user; NULL excludes the user from isolation",
    )


class Repo(SQLModel, table=True):
    """Managed git repository."""

    __tablename__ = "repos"

    repo_id: str = Field(primary_key=True, max_length=36)
    slug: str = Field(unique=True)
    unix_group: str | None = Field(default=None, description="agor_rp_* group (write-once)")
    data: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))

    @property
    def local_path(self) -> str | None:
        return (self.data or {}).get("local_path") or None


class Worktree(SQLModel, table=True):
    """Git worktree belonging to exactly one repo."""

    __tablename__ = "worktrees"

    worktree_id: str = Field(primary_key=True, max_length=36)
    repo_id: str = Field(foreign_key="repos.repo_id", max_length=36)
    name: str = Field(default="")
    unix_group: str | None = Field(default=None, description="agor_wt_* group (write-once)")
    others_fs_access: str | None = Field(default=OthersFsAccess.READ.value)
    data: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))

    @property
    def path(self) -> str | None:
        return (self.data or {}).get("path") or None


class WorktreeOwner(SQLModel, table=True):
    """Ownership join row: the sole source of a user's need for worktree access."""

    __tablename__ = "worktree_owners"

    worktree_id: str = Field(foreign_key="worktrees.worktree_id", primary_key=True)
    user_id: str = Field(foreign_key="users.user_id", primary_key=True)
