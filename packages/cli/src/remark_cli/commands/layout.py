"""layout command: show or persist the diff layout (remark.diffView)."""

from __future__ import annotations

import click
from rich.console import Console

console = Console()


@click.command("layout")
@click.argument("layout", required=False, type=click.Choice(["unified", "side-by-side"]))
@click.option("--toggle", is_flag=True, help="Switch between unified and side-by-side.")
@click.pass_context
def layout_cmd(ctx, layout: str | None, toggle: bool):
    """Show the diff layout, or set it for this repository."""
    from remark_core.config import diff_layout, set_diff_layout, toggle_diff_layout
    from remark_store.errors import ArgumentError
    from remark_store.git import GitRepo

    if layout and toggle:
        raise ArgumentError("pass a layout or --toggle, not both")
    repo = GitRepo.discover((ctx.obj or {}).get("repo_path", "."))
    if toggle:
        layout = toggle_diff_layout(repo)
    elif layout:
        layout = set_diff_layout(repo, layout)
    else:
        layout = diff_layout(repo)
    click.echo(layout)
