"""prompt command: print (or copy) the unresolved comments of a view."""

from __future__ import annotations

import click
from rich.console import Console

console = Console(stderr=True)


@click.command("prompt")
@click.option(
    "--filter",
    "view_name",
    type=click.Choice(["all", "staged", "unstaged", "base"]),
    default="all",
    show_default=True,
    help="Which diff to collect comments from.",
)
@click.option("--base", "base_ref", default=None, help="Ref the base view compares against.")
@click.option("--ref", "notes_ref", default=None, help="Notes ref to read. Overrides config.")
@click.option("--copy", is_flag=True, help="Copy the prompt to the clipboard instead of printing it.")
@click.option(
    "--context",
    "context",
    type=click.IntRange(0, 20),
    default=None,
    help="Diff lines shown around each commented line.",
)
@click.pass_context
def prompt_cmd(ctx, view_name: str, base_ref: str | None, notes_ref: str | None, copy: bool, context: int | None):
    """Collect unresolved comments into one markdown document.

    Resolved comments are left out, so the output is a to-do list that can be
    pasted into a chat or handed to a coding agent.
    """
    from remark_cli.clipboard import copy_to_clipboard
    from remark_cli.workspace import session_from_context
    from remark_core.prompt import collate, render_document

    session = session_from_context(ctx, view_name, base_ref=base_ref, notes_ref=notes_ref)
    if context is None:
        context = int((ctx.obj or {}).get("config", {}).get("prompt_context") or 0)
    entries = collate(session, context)
    text = render_document(entries, session.view)

    if not copy:
        click.echo(text, nl=False)
        return

    method = copy_to_clipboard(text)
    via = "terminal (OSC 52)" if method == "osc52" else method
    console.print(f"[green]Copied {len(entries)} comment(s) to the clipboard via {via}.[/green]")
