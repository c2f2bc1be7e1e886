"""Main CLI application - ties the isolation commands together.

This is the entry point for the agor-isolation CLI.
"""

from enum import StrEnum
from typing import Annotated

import typer
from rich.markup import escape
from sqlalchemy.exc import SQLAlchemyError

from agor_isolation.cli import wiring
from agor_isolation.cli.admin import app as admin_app
from agor_isolation.cli.common import (
    ELECTRIC_PURPLE,
    NEON_CYAN,
    console,
    create_panel,
    create_table,
    error,
    format_count,
    format_result,
    hint,
    info,
    success,
    warn,
)
from agor_isolation.desired import DesiredStateComputer
from agor_isolation.errors import IsolationError
from agor_isolation.main import configure_logging
from agor_isolation.naming import GroupNamespace, repo_group_name, worktree_group_name
from agor_isolation.reconciler import ReconcileOptions, Reconciler
from agor_isolation.report import ReconcileReport

app = typer.Typer(
    name="agor-isolation",
    help="Agor Unix isolation - sync OS users, groups and permissions with the database",
    add_completion=False,
    no_args_is_help=True,
)
app.add_typer(admin_app, name="admin")


class EntityKind(StrEnum):
    WORKTREE = "worktree"
    REPO = "repo"


# ============================================================================
# Rendering
# ============================================================================


def render_report(report: ReconcileReport, *, verbose: bool = False) -> None:
    """Print the run summary, failures and skipped paths."""
    title = "Reconcile Summary (dry run)" if report.dry_run else "Reconcile Summary"
    table = create_table(title, "Category", "Count")
    for name, value in report.counts().items():
        if name in ("users_deleted", "groups_deleted") and not (
            report.cleanup_users or report.cleanup_groups
        ):
            continue
        table.add_row(name.replace("_", " "), format_count(name, value))
    console.print(table)

    if verbose and report.actions:
        actions = create_table("Actions", "Phase", "Operation", "Target", "Detail", "Result")
        for action in report.actions:
            actions.add_row(
                action.phase.value,
                action.operation.value,
                action.target,
                action.detail,
                format_result(action.success),
            )
        console.print(actions)

    for skipped in report.skipped:
        where = f" ({skipped.path})" if skipped.path else ""
        warn(f"Skipped {skipped.entity}: {skipped.reason}{where}")

    for failure in report.failures:
        error(
            f"{failure.phase.value}/{failure.operation.value} {escape(failure.entity)}: "
            f"{escape(failure.error)}"
        )

    if report.dry_run:
        info("Dry run: no changes were made")
        if report.has_changes:
            hint("Run without --dry-run to apply changes")

    if report.success:
        if report.has_changes:
            success(f"Reconciled with {report.mutation_count} change(s)")
        else:
            success("Everything in sync")
    else:
        error(f"Completed with {report.total_errors} error(s)")


# ============================================================================
# Commands
# ============================================================================


@app.command()
def sync(
    dry_run: Annotated[
        bool, typer.Option("--dry-run", "-n", help="Show what would change without changing it")
    ] = False,
    verbose: Annotated[
        bool, typer.Option("--verbose", "-v", help="Debug logging and per-action output")
    ] = False,
    cleanup: Annotated[
        bool, typer.Option("--cleanup", help="Delete stale managed groups and users")
    ] = False,
    cleanup_groups: Annotated[
        bool, typer.Option("--cleanup-groups", help="Delete stale agor_wt_*/agor_rp_* groups")
    ] = False,
    cleanup_users: Annotated[
        bool,
        typer.Option("--cleanup-users", help="Delete stale agor_* users (home kept)"),
    ] = False,
    prune_memberships: Annotated[
        bool,
        typer.Option(
            "--prune-memberships", help="Remove users from managed groups they no longer need"
        ),
    ] = False,
    database_url: Annotated[
        str | None, typer.Option("--database-url", help="Override the database location")
    ] = None,
    daemon_user: Annotated[
        str | None, typer.Option("--daemon-user", help="Override daemon.unix_user")
    ] = None,
) -> None:
    """Reconcile OS users, groups and permissions with the Agor database.

    Examples:
        agor-isolation sync --dry-run        # Preview
        agor-isolation sync                  # Apply
        agor-isolation sync --cleanup        # Also delete stale groups and users
    """
    settings = wiring.load_settings(database_url, daemon_user)
    configure_logging("DEBUG" if verbose else settings.log_level)

    if not settings.unix_isolation_enabled:
        warn("Unix isolation is disabled; nothing to do")
        raise typer.Exit(code=0)

    options = ReconcileOptions(
        cleanup_groups=cleanup or cleanup_groups,
        cleanup_users=cleanup or cleanup_users,
        prune_memberships=prune_memberships,
    )

    try:
        # Configuration problems are reported before the database is opened
        daemon = settings.require_daemon_user()
        reconciler = Reconciler(
            wiring.make_store(settings),
            wiring.make_inspector(settings),
            wiring.make_mutator(settings, simulate=dry_run),
            daemon_user=daemon,
            global_group=settings.global_group,
            options=options,
        )
        report = reconciler.run()
    except IsolationError as e:
        error(e.message)
        raise typer.Exit(code=1) from e
    except SQLAlchemyError as e:
        error(f"Database error: {e}")
        raise typer.Exit(code=1) from e

    render_report(report, verbose=verbose)
    raise typer.Exit(code=report.exit_code)


@app.command()
def inspect(
    database_url: Annotated[
        str | None, typer.Option("--database-url", help="Override the database location")
    ] = None,
) -> None:
    """List managed groups and users that no longer match the database (read-only)."""
    settings = wiring.load_settings(database_url, None)
    configure_logging(settings.log_level)

    try:
        snapshot = wiring.make_store(settings).load_snapshot()
    except IsolationError as e:
        error(e.message)
        raise typer.Exit(code=1) from e
    except SQLAlchemyError as e:
        error(f"Database error: {e}")
        raise typer.Exit(code=1) from e

    desired = DesiredStateComputer(global_group=settings.global_group).compute(snapshot)
    inspector = wiring.make_inspector(settings)

    table = create_table("Managed OS State", "Kind", "Name", "Status")
    stale_count = 0
    for namespace, expected in (
        (GroupNamespace.WORKTREE, desired.expected_worktree_groups),
        (GroupNamespace.REPO, desired.expected_repo_groups),
    ):
        actual = inspector.list_managed_groups(namespace)
        for group in sorted(actual | expected):
            if group not in actual:
                status = f"[{NEON_CYAN}]missing[/{NEON_CYAN}]"
            elif group not in expected:
                status = f"[{ELECTRIC_PURPLE}]stale[/{ELECTRIC_PURPLE}]"
                stale_count += 1
            else:
                status = "[dim]ok[/dim]"
            table.add_row(f"group ({namespace.value})", group, status)

    keep = set(desired.usernames)
    if settings.daemon_unix_user:
        keep.add(settings.daemon_unix_user)
    for username in sorted(inspector.list_managed_users() - keep):
        table.add_row("user", username, f"[{ELECTRIC_PURPLE}]stale[/{ELECTRIC_PURPLE}]")
        stale_count += 1

    console.print(table)
    if stale_count:
        hint("Run 'agor-isolation sync --cleanup' to delete stale entries")
    else:
        success("No stale groups or users")


@app.command("group-name")
def group_name(
    kind: Annotated[EntityKind, typer.Argument(help="Entity kind")],
    entity_id: Annotated[str, typer.Argument(help="Worktree or repo ID")],
) -> None:
    """Print the Unix group name derived for a worktree or repo ID."""
    if kind is EntityKind.WORKTREE:
        typer.echo(worktree_group_name(entity_id))
    else:
        typer.echo(repo_group_name(entity_id))


@app.command()
def version() -> None:
    """Show version information."""
    from agor_isolation import __version__

    content = f"agor-isolation [{NEON_CYAN}]{__version__}[/{NEON_CYAN}]"
    console.print(create_panel(content, title="Version"))
