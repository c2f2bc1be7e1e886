"""Single-step admin commands for managed groups and memberships.

Each command checks the current OS state first and does nothing when it already
matches, so running one twice is safe.
"""

from typing import Annotated

import typer
from rich.markup import escape

from agor_isolation.cli import wiring
from agor_isolation.cli.common import error, info, success
from agor_isolation.main import configure_logging
from agor_isolation.naming import (
    GroupNamespace,
    looks_like_managed_group,
    repo_group_name,
    worktree_group_name,
)
from agor_isolation.unix import MutationResult, OSMutator, OSStateInspector

app = typer.Typer(
    name="admin",
    help="Create and delete managed groups, add and remove members",
    no_args_is_help=True,
)

DryRunOption = Annotated[
    bool, typer.Option("--dry-run", "-n", help="Show the commands without running them")
]


def _connect(dry_run: bool) -> tuple[OSStateInspector, OSMutator]:
    settings = wiring.load_settings(None, None)
    configure_logging(settings.log_level)
    return wiring.make_inspector(settings), wiring.make_mutator(settings, simulate=dry_run)


def _finish(result: MutationResult) -> None:
    if not result.success:
        error(f"Failed to {escape(result.description)}: {escape(result.error or 'unknown error')}")
        raise typer.Exit(code=1)
    if result.simulated:
        info(f"Would {escape(result.description)}")
        for step in result.steps:
            info(f"Would run: {escape(step)}")
        return
    success(f"Done: {escape(result.description)}")


@app.command("create-group")
def create_group(
    worktree_id: Annotated[
        str | None, typer.Option("--worktree-id", "-w", help="Worktree ID")
    ] = None,
    repo_id: Annotated[str | None, typer.Option("--repo-id", "-r", help="Repo ID")] = None,
    dry_run: DryRunOption = False,
) -> None:
    """Create the group derived for a worktree or repo.

    Examples:
        agor-isolation admin create-group -w 03b62447-f2c4-4d8e-9a1b-5c3d2e1f0a9b
        agor-isolation admin create-group -r my-repo --dry-run
    """
    if (worktree_id is None) == (repo_id is None):
        error("Pass exactly one of --worktree-id or --repo-id")
        raise typer.Exit(code=1)
    group = worktree_group_name(worktree_id) if worktree_id else repo_group_name(repo_id or "")

    inspector, mutator = _connect(dry_run)
    if inspector.group_exists(group):
        success(f"Group {group} already exists")
        return
    _finish(mutator.create_group(group))


@app.command("delete-group")
def delete_group(
    group: Annotated[str, typer.Option("--group", "-g", help="Managed group name")],
    dry_run: DryRunOption = False,
) -> None:
    """Delete a managed agor_wt_*/agor_rp_* group."""
    if not any(looks_like_managed_group(group, ns) for ns in GroupNamespace):
        error(f"{escape(group)} is not a managed worktree or repo group")
        raise typer.Exit(code=1)

    inspector, mutator = _connect(dry_run)
    if not inspector.group_exists(group):
        success(f"Group {group} does not exist")
        return
    _finish(mutator.delete_group(group))


@app.command("add-member")
def add_member(
    username: Annotated[str, typer.Option("--username", "-u", help="Unix username")],
    group: Annotated[str, typer.Option("--group", "-g", help="Group name")],
    dry_run: DryRunOption = False,
) -> None:
    """Add a user to a group."""
    inspector, mutator = _connect(dry_run)
    if inspector.is_member(username, group):
        success(f"{escape(username)} is already a member of {escape(group)}")
        return
    _finish(mutator.add_user_to_group(username, group))


@app.command("remove-member")
def remove_member(
    username: Annotated[str, typer.Option("--username", "-u", help="Unix username")],
    group: Annotated[str, typer.Option("--group", "-g", help="Group name")],
    dry_run: DryRunOption = False,
) -> None:
    """Remove a user from a group."""
    inspector, mutator = _connect(dry_run)
    if not inspector.is_member(username, group):
        success(f"{escape(username)} is not a member of {escape(group)}")
        return
    _finish(mutator.remove_user_from_group(username, group))
