"""Database collaborator - the Agor tables the isolation engine reads and backfills.

Usage:
    from agor_isolation.db import AuthorizationStore, create_db_engine, session_factory

    engine = create_db_engine(resolve_database_url(settings.database_url))
    store = AuthorizationStore(session_factory(engine))
    snapshot = store.load_snapshot()
"""

from agor_isolation.db.connection import (
    SessionFactory,
    create_db_engine,
    default_database_path,
    init_db,
    resolve_database_url,
    session_factory,
)
from agor_isolation.db.models import OthersFsAccess, Repo, User, Worktree, WorktreeOwner
from agor_isolation.db.store import (
    AuthorizationSnapshot,
    AuthorizationStore,
    OwnershipRecord,
    RepoRecord,
    UserRecord,
    WorktreeRecord,
)

__all__ = [
    # Connection
    "SessionFactory",
    "create_db_engine",
    "default_database_path",
    "init_db",
    "resolve_database_url",
    "session_factory",
    # Models
    "OthersFsAccess",
    "Repo",
    "User",
    "Worktree",
    "WorktreeOwner",
    # Store
    "AuthorizationSnapshot",
    "AuthorizationStore",
    "OwnershipRecord",
    "RepoRecord",
    "UserRecord",
    "WorktreeRecord",
]
