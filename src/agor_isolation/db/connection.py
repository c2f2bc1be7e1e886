"""Database connection management.

The engine is a synchronous batch job, so it uses a plain SQLAlchemy engine and
short-lived sessions rather than an async pool.
"""

from __future__ import annotations

import os
import pwd
from collections.abc import Callable, Iterator
from contextlib import AbstractContextManager, contextmanager
from pathlib import Path

import structlog
from sqlalchemy import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from agor_isolation.errors import DatabaseNotFoundError

log = structlog.get_logger()

SessionFactory = Callable[[], AbstractContextManager[Session]]

DB_FILENAME = "agor.db"


def _invoking_user_home(sudo_user: str) -> Path:
    """Home directory of the user who ran ``sudo``."""
    try:
        return Path(pwd.getpwnam(sudo_user).pw_dir)
    except KeyError:
        return Path("/home") / sudo_user


def default_database_path() -> Path:
    """Locate ``~/.agor/agor.db`` for the invoking user.

    Under ``sudo`` the home directory of ``SUDO_USER`` is used, not ``/root``.
    """
    sudo_user = os.environ.get("SUDO_USER")
    home = _invoking_user_home(sudo_user) if sudo_user else Path.home()
    return home / ".agor" / DB_FILENAME


def resolve_database_url(database_url: str = "") -> str:
    """Turn a configured database location into a SQLAlchemy URL.

    Accepts full SQLAlchemy URLs, ``file:/path`` (the Agor convention) and bare paths.
    An empty value resolves to the default database file, which must exist.

    Raises:
        DatabaseNotFoundError: If no URL is configured and the default file is missing.
    """
    if database_url:
        if "://" in database_url:
            return database_url
        path = database_url.removeprefix("file:")
        return f"sqlite:///{Path(path).expanduser()}"

    path = default_database_path()
    if not path.exists():
        raise DatabaseNotFoundError(str(path), sudo_user=os.environ.get("SUDO_USER"))
    return f"sqlite:///{path}"


def create_db_engine(url: str, *, echo: bool = False) -> Engine:
    """Create a synchronous engine; in-memory SQLite shares one connection."""
    if url in {"sqlite://", "sqlite:///:memory:"}:
        return create_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(url, echo=echo)


def init_db(engine: Engine) -> None:
    """Create the mapped tables if they do not exist (tests and local setups)."""
    from agor_isolation.db import models  # noqa: F401 - register tables

    SQLModel.metadata.create_all(engine)
    log.debug("db_tables_ensured", url=str(engine.url))


def session_factory(engine: Engine) -> SessionFactory:
    """Build a factory of transactional session scopes bound to ``engine``."""

    @contextmanager
    def session_scope() -> Iterator[Session]:
        session = Session(engine, expire_on_commit=False)
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    return session_scope
