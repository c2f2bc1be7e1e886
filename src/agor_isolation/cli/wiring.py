"""Factories that connect CLI commands to the live database and OS.

Commands call these through the module so tests can swap in fakes.
"""

from agor_isolation.config import Settings, get_settings
from agor_isolation.db import AuthorizationStore, create_db_engine, resolve_database_url
from agor_isolation.db import session_factory as make_session_factory
from agor_isolation.unix import (
    CommandRunner,
    OSMutator,
    OSStateInspector,
    SystemMutator,
    SystemStateInspector,
)


def make_inspector(settings: Settings) -> OSStateInspector:
    return SystemStateInspector()


def make_mutator(settings: Settings, *, simulate: bool) -> OSMutator:
    return SystemMutator(
        runner=CommandRunner(use_sudo=settings.use_sudo),
        simulate=simulate,
        shell=settings.user_shell,
        home_base=settings.home_base,
    )


def make_store(settings: Settings) -> AuthorizationStore:
    engine = create_db_engine(resolve_database_url(settings.database_url))
    return AuthorizationStore(make_session_factory(engine))


def load_settings(database_url: str | None, daemon_user: str | None) -> Settings:
    """Settings with the command-line overrides applied."""
    settings = get_settings()
    updates: dict[str, str] = {}
    if database_url:
        updates["database_url"] = database_url
    if daemon_user:
        updates["daemon_unix_user"] = daemon_user
    return settings.model_copy(update=updates) if updates else settings
