"""CLI entry point for remark.

Commands:
  prompt    print or copy the unresolved comments of a view
  add       add a comment (or start one in the draft)
  resolve   resolve / unresolve a comment
  delete    delete a comment
  reviewed  mark a file reviewed against its current diff
  draft     sync the shared draft document
  new       start a fresh notes ref
  purge     delete every remark notes ref
  layout    show or set the persisted diff layout
  lsp       run the editor integration

Without a command, `remark` prints an overview of the selected view, or one
file's diff with its comments when --file is given.
"""

from __future__ import annotations

import importlib.metadata
import logging

import click
from rich.console import Console
from rich.logging import RichHandler

from remark_cli.commands.comments import add_cmd, delete_cmd, resolve_cmd, reviewed_cmd
from remark_cli.commands.draft import draft_cmd
from remark_cli.commands.layout import layout_cmd
from remark_cli.commands.lsp import lsp_cmd
from remark_cli.commands.prompt import prompt_cmd
from remark_cli.commands.refs import new_cmd, purge_cmd
from remark_store.errors import ArgumentError, RemarkError

console = Console()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


class RemarkGroup(click.Group):
    """Maps remark errors onto click's: ArgumentError is a usage error (exit 2),
    anything else a plain error (exit 1). Both print to stderr."""

    def invoke(self, ctx: click.Context):
        try:
            return super().invoke(ctx)
        except ArgumentError as e:
            raise click.UsageError(str(e), ctx=ctx) from e
        except RemarkError as e:
            raise click.ClickException(str(e)) from e


@click.group(cls=RemarkGroup, invoke_without_command=True)
@click.version_option(
    version=importlib.metadata.version("remark"),
    prog_name="remark",
)
@click.option(
    "--config",
    "config_path",
    default=".remark.yml",
    show_default=True,
    help="Path to the configuration file.",
    envvar="REMARK_CONFIG",
)
@click.option("-C", "--repo", "repo_path", default=".", help="Run as if started in this directory.")
@click.option("--ref", "notes_ref", default=None, help="Notes ref to use. Overrides config.")
@click.option("--base", "base_ref", default=None, help="Ref the base view compares against.")
@click.option("--view", "view_name", type=click.Choice(["all", "staged", "unstaged", "base"]), default=None, help="View to show.")
@click.option("--file", "file_path", default=None, help="Show this file's diff and comments.")
@click.option("--line", type=int, default=None, help="Highlight this line (needs --file).")
@click.option("--side", type=click.Choice(["old", "new"]), default=None, help="Side of --line (default: new).")
@click.option("--verbose", "-v", is_flag=True, help="Log debug output to stderr.")
@click.pass_context
def main(ctx: click.Context, config_path, repo_path, notes_ref, base_ref, view_name, file_path, line, side, verbose):
    """Review code in the terminal; keep the review in git notes."""
    from remark_core.config import load_config

    _configure_logging(verbose)
    ctx.ensure_object(dict)

    ui_flags = [name for name, value in (("--view", view_name), ("--file", file_path), ("--line", line), ("--side", side)) if value is not None]
    if ctx.invoked_subcommand is not None and ui_flags:
        raise ArgumentError(f"{', '.join(ui_flags)} only apply when no command is given")
    if line is not None and file_path is None:
        raise ArgumentError("--line needs --file")
    if side is not None and line is None:
        raise ArgumentError("--side needs --line")

    config = load_config(config_path, cli_overrides={"notes_ref": notes_ref, "base_ref": base_ref})
    ctx.obj["config"] = config
    ctx.obj["repo_path"] = repo_path

    if ctx.invoked_subcommand is None:
        _show(ctx, view_name, file_path, line, side)


def _show(ctx: click.Context, view_name, file_path, line, side) -> None:
    from remark_cli.render import overview_table, print_file
    from remark_cli.workspace import repo_path_arg, session_from_context
    from remark_core.config import diff_layout
    from remark_store.models import LineKey, Side

    session = session_from_context(ctx, view_name)
    if file_path is None:
        if not session.diff():
            console.print(f"[yellow]No changes under the {session.view} view.[/yellow]")
            return
        console.print(overview_table(session))
        return

    path = repo_path_arg(session, file_path)
    fd = session.file_diff(path)
    if fd is None:
        raise ArgumentError(f"{path} has no changes under the {session.view} view")
    focus = LineKey(Side.parse(side, default=Side.NEW), line) if line is not None else None
    print_file(console, fd, session.merged_record(path), diff_layout(session.repo), focus)


main.add_command(prompt_cmd)
main.add_command(add_cmd)
main.add_command(resolve_cmd)
main.add_command(delete_cmd)
main.add_command(reviewed_cmd)
main.add_command(draft_cmd)
main.add_command(new_cmd)
main.add_command(purge_cmd)
main.add_command(layout_cmd)
main.add_command(lsp_cmd)
