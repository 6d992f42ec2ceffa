"""add / resolve / delete / reviewed commands: the comment state machines."""

from __future__ import annotations

import click
from rich.console import Console

from remark_store.errors import ArgumentError

console = Console()

_VIEW_CHOICE = click.Choice(["all", "staged", "unstaged", "base"])
_SIDE_CHOICE = click.Choice(["old", "new"])

_EDIT_TEMPLATE = "\n# Write the comment above. Lines starting with '#' are ignored.\n"


def comment_target(file_comment: bool, line: int | None, side: str | None):
    """Validate the --file-comment/--line/--side combination.

    Returns (line, side) with line None for the file comment.
    """
    from remark_store.models import Side

    if file_comment and line is not None:
        raise ArgumentError("--file-comment and --line cannot be used together")
    if not file_comment and line is None:
        raise ArgumentError("pass either --file-comment or --line")
    if line is None:
        if side is not None:
            raise ArgumentError("--side only applies to line comments")
        return None, None
    if line < 1:
        raise ArgumentError("--line must be 1 or greater")
    return line, Side.parse(side, default=Side.NEW)


def describe(path: str, line: int | None, side) -> str:
    if line is None:
        return f"{path} (file comment)"
    return f"{path}:{line} ({side.value})"


def _file_options(f):
    f = click.option("--side", type=_SIDE_CHOICE, default=None, help="Diff side of --line (default: new).")(f)
    f = click.option("--line", type=int, default=None, help="Line number the comment is anchored to.")(f)
    f = click.option("--file-comment", is_flag=True, help="Target the comment on the whole file.")(f)
    f = click.option("--file", "file_path", required=True, help="File path, relative to the repository root.")(f)
    return f


@click.command("add")
@_file_options
@click.option("--message", "-m", default=None, help="Comment text.")
@click.option("--edit", "use_editor", is_flag=True, help="Write the comment in $EDITOR.")
@click.option("--draft", "use_draft", is_flag=True, help="Start the comment in the shared draft instead.")
@click.option("--filter", "view_name", type=_VIEW_CHOICE, default="all", show_default=True, help="View to store the comment under.")
@click.option("--ref", "notes_ref", default=None, help="Notes ref to write. Overrides config.")
@click.pass_context
def add_cmd(ctx, file_path, file_comment, line, side, message, use_editor, use_draft, view_name, notes_ref):
    """Add a comment, or replace the text of an existing one.

    Replacing a comment's text keeps its resolved state.
    """
    from remark_cli.workspace import repo_path_arg, session_from_context
    from remark_core.draft import DraftReconciler

    line, side = comment_target(file_comment, line, side)
    if sum(bool(x) for x in (message is not None, use_editor, use_draft)) != 1:
        raise ArgumentError("pass exactly one of --message, --edit or --draft")

    session = session_from_context(ctx, view_name, notes_ref=notes_ref)
    path = repo_path_arg(session, file_path)

    if use_draft:
        location = DraftReconciler(session).start_comment(path, line, side)
        click.echo(f"{location.path}:{location.line}")
        return

    if use_editor:
        edited = click.edit(_EDIT_TEMPLATE)
        message = "\n".join(
            ln for ln in (edited or "").splitlines() if not ln.startswith("#")
        ).strip()
        if not message:
            raise ArgumentError("aborting: empty comment")

    session.add_comment(path, message, line=line, side=side)
    console.print(f"[green]Comment saved on {describe(path, line, side)}.[/green]")


@click.command("resolve")
@_file_options
@click.option("--unresolve", is_flag=True, help="Mark the comment unresolved again.")
@click.option("--base", "base_ref", default=None, help="Also resolve under this base view.")
@click.option("--ref", "notes_ref", default=None, help="Notes ref to write. Overrides config.")
@click.pass_context
def resolve_cmd(ctx, file_path, file_comment, line, side, unresolve, base_ref, notes_ref):
    """Resolve (or unresolve) a comment in every view it appears in."""
    from remark_cli.workspace import repo_path_arg, session_from_context
    from remark_core.draft import DraftReconciler
    from remark_store.models import LineKey

    line, side = comment_target(file_comment, line, side)
    session = session_from_context(ctx, base_ref=base_ref, notes_ref=notes_ref)
    path = repo_path_arg(session, file_path)
    session.set_resolved(path, resolved=not unresolve, line=line, side=side)
    if not unresolve:
        DraftReconciler(session).remove(path, LineKey(side, line) if line is not None else None)
    state = "unresolved" if unresolve else "resolved"
    console.print(f"[green]Marked {describe(path, line, side)} {state}.[/green]")


@click.command("delete")
@_file_options
@click.option("--filter", "view_name", type=_VIEW_CHOICE, default="all", show_default=True, help="View the comment is stored under.")
@click.option("--ref", "notes_ref", default=None, help="Notes ref to write. Overrides config.")
@click.pass_context
def delete_cmd(ctx, file_path, file_comment, line, side, view_name, notes_ref):
    """Delete a comment. A file left without comments loses its note."""
    from remark_cli.workspace import repo_path_arg, session_from_context
    from remark_core.draft import DraftReconciler
    from remark_store.models import LineKey

    line, side = comment_target(file_comment, line, side)
    session = session_from_context(ctx, view_name, notes_ref=notes_ref)
    path = repo_path_arg(session, file_path)
    session.delete_comment(path, line=line, side=side)
    # Drop the draft copy and its sync state along with the comment.
    DraftReconciler(session).remove(path, LineKey(side, line) if line is not None else None)
    console.print(f"[green]Deleted comment on {describe(path, line, side)}.[/green]")


@click.command("reviewed")
@click.option("--file", "file_path", required=True, help="File path, relative to the repository root.")
@click.option("--unset", is_flag=True, help="Clear the reviewed mark.")
@click.option("--filter", "view_name", type=_VIEW_CHOICE, default="all", show_default=True, help="View to mark the file under.")
@click.option("--ref", "notes_ref", default=None, help="Notes ref to write. Overrides config.")
@click.pass_context
def reviewed_cmd(ctx, file_path, unset, view_name, notes_ref):
    """Mark a file reviewed against its current diff.

    The mark clears itself as soon as the file's diff changes.
    """
    from remark_cli.workspace import repo_path_arg, session_from_context

    session = session_from_context(ctx, view_name, notes_ref=notes_ref)
    path = repo_path_arg(session, file_path)
    session.set_reviewed(path, reviewed=not unset)
    state = "not reviewed" if unset else "reviewed"
    console.print(f"[green]Marked {path} {state}.[/green]")
