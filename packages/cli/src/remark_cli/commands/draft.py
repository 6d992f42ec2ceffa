"""draft command: sync the shared draft document with the notes."""

from __future__ import annotations

import click
from rich.console import Console

console = Console(stderr=True)


@click.command("draft")
@click.option("--pull", is_flag=True, help="Copy unresolved stored comments into the draft first.")
@click.option("--file", "file_paths", multiple=True, help="Limit --pull to these files (repeatable).")
@click.option(
    "--filter",
    "view_name",
    type=click.Choice(["all", "staged", "unstaged", "base"]),
    default="all",
    show_default=True,
    help="View the draft's comments are stored under.",
)
@click.option("--ref", "notes_ref", default=None, help="Notes ref to write. Overrides config.")
@click.pass_context
def draft_cmd(ctx, pull: bool, file_paths: tuple[str, ...], view_name: str, notes_ref: str | None):
    """Sync the draft and print its path.

    Comment bodies written in the draft become stored comments; bodies
    deleted from the draft delete the comments they created. Open the printed
    path in any editor.
    """
    from remark_cli.workspace import repo_path_arg, session_from_context
    from remark_core.draft import DraftReconciler

    session = session_from_context(ctx, view_name, notes_ref=notes_ref)
    reconciler = DraftReconciler(session)
    reconciler.ensure_exists()

    result = reconciler.sync()
    if pull:
        paths = [repo_path_arg(session, p) for p in file_paths] or None
        pulled = reconciler.pull(paths)
        if pulled:
            console.print(f"Pulled {pulled} comment(s) into the draft.")

    if result.changed:
        console.print(
            f"[green]Draft synced:[/green] {result.created} created, "
            f"{result.updated} updated, {result.deleted} deleted, {result.refreshed} refreshed from the notes."
        )
    for error in result.errors:
        console.print(f"[yellow]Skipped draft block at {error}[/yellow]")
    click.echo(str(reconciler.path))
