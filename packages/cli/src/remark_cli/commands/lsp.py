"""lsp command: run the editor integration over stdio."""

from __future__ import annotations

import click


@click.command("lsp")
@click.pass_context
def lsp_cmd(ctx):
    """Run the language server on stdin/stdout.

    Point your editor's LSP client at `remark lsp`. Comments show up as
    diagnostics; the remark.* workspace commands add and resolve them.
    """
    from remark_cli.lsp import serve

    obj = ctx.obj or {}
    ctx.exit(serve(obj.get("config") or {}, obj.get("repo_path", ".")))
