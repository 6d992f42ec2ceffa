"""new / purge commands: manage the notes refs remark writes to."""

from __future__ import annotations

import click
from rich.console import Console

console = Console()


@click.command("new")
@click.option("--ref", "notes_ref", default=None, help="Name of the new notes ref (default: timestamped).")
@click.pass_context
def new_cmd(ctx, notes_ref: str | None):
    """Start a fresh review on a new notes ref.

    Existing notes stay where they are; `remark.notesRef` is pointed at the
    new ref, so later commands read and write there.
    """
    from remark_store.git import GitRepo
    from remark_store.notes import create_notes_ref

    repo = GitRepo.discover((ctx.obj or {}).get("repo_path", "."))
    name = create_notes_ref(repo, notes_ref)
    console.print(f"[green]Now using notes ref[/green] {name}")


@click.command("purge")
@click.option("--yes", "-y", is_flag=True, help="Skip the confirmation prompt.")
@click.pass_context
def purge_cmd(ctx, yes: bool):
    """Delete every remark notes ref in this repository."""
    from remark_store.git import GitRepo
    from remark_store.notes import purge_notes_refs

    repo = GitRepo.discover((ctx.obj or {}).get("repo_path", "."))
    if not yes:
        click.confirm("Delete all remark review notes in this repository?", abort=True)
    deleted = purge_notes_refs(repo)
    if not deleted:
        console.print("[yellow]No remark notes refs found.[/yellow]")
        return
    for ref in deleted:
        console.print(f"Deleted {ref}")
