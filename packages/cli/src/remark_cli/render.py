"""Terminal rendering for `remark` without a subcommand."""

from __future__ import annotations

from rich.console import Console
from rich.table import Table
from rich.text import Text

from remark_core.diff import ADDED, REMOVED, FileDiff
from remark_core.review import ReviewSession
from remark_store.models import FileRecord, LineKey

_LINE_STYLE = {ADDED: "green", REMOVED: "red"}


def overview_table(session: ReviewSession) -> Table:
    table = Table(title=f"Review: {session.view}", show_header=True, header_style="bold cyan")
    table.add_column("File", overflow="fold")
    table.add_column("Status", width=10)
    table.add_column("+/-", justify="right", width=10)
    table.add_column("Open", justify="right", width=6)
    table.add_column("Resolved", justify="right", width=9)
    table.add_column("Reviewed", justify="center", width=9)

    for fd, record in _files_with_records(session):
        open_count = record.comment_count(include_resolved=False)
        resolved = record.comment_count() - open_count
        changes = "binary" if fd.binary else f"[green]+{fd.added}[/green] [red]-{fd.removed}[/red]"
        table.add_row(
            Text(fd.path),
            fd.status,
            changes,
            f"[yellow]{open_count}[/yellow]" if open_count else "0",
            str(resolved),
            "[green]✓[/green]" if record.reviewed else "",
        )
    return table


def _files_with_records(session: ReviewSession) -> list[tuple[FileDiff, FileRecord]]:
    return [(fd, session.merged_record(fd.path)) for fd in session.diff()]


def _comment_text(message: str, resolved: bool, indent: str = "    ") -> Text:
    label = "resolved" if resolved else "comment"
    style = "dim" if resolved else "bold yellow"
    text = Text(f"{indent}» {label}: ", style=style)
    text.append(message.replace("\n", "\n" + indent + "  "), style="dim" if resolved else "yellow")
    return text


def _number(n: int | None) -> str:
    return "" if n is None else str(n)


def print_file(
    console: Console,
    fd: FileDiff,
    record: FileRecord,
    layout: str = "unified",
    focus: LineKey | None = None,
) -> None:
    """Print one file's diff with its comments inline."""
    header = Text(fd.path, style="bold")
    header.append(f"  ({fd.status})", style="dim")
    if record.reviewed:
        header.append("  reviewed", style="green")
    console.print(header)
    if record.file_comment is not None:
        console.print(_comment_text(record.file_comment.message, record.file_comment.resolved, indent="  "))
    if fd.binary:
        console.print(Text("  binary file", style="dim"))
        return
    if layout == "side-by-side":
        _print_side_by_side(console, fd, record, focus)
    else:
        _print_unified(console, fd, record, focus)


def _print_unified(console: Console, fd: FileDiff, record: FileRecord, focus: LineKey | None) -> None:
    for hunk in fd.hunks:
        console.print(Text(hunk.header, style="cyan"))
        for line in hunk.lines:
            marker = ">" if focus is not None and line.anchor == focus else " "
            row = Text(f"{marker}{_number(line.old_line):>5} {_number(line.new_line):>5} ")
            row.append(f"{line.kind}{line.text}", style=_LINE_STYLE.get(line.kind, ""))
            console.print(row, soft_wrap=True)
            comment = record.line_comments.get(line.anchor)
            if comment is not None:
                console.print(_comment_text(comment.message, comment.resolved))


def _print_side_by_side(console: Console, fd: FileDiff, record: FileRecord, focus: LineKey | None) -> None:
    table = Table(show_header=False, box=None, pad_edge=False, expand=True)
    table.add_column(justify="right", width=6, style="dim")
    table.add_column(ratio=1, overflow="fold")
    table.add_column(justify="right", width=6, style="dim")
    table.add_column(ratio=1, overflow="fold")

    for row in fd.side_by_side():
        if row.hunk_header is not None:
            table.add_row("", Text(row.hunk_header, style="cyan"), "", "")
            continue
        left = row.left
        right = row.right
        left_text = Text(left.text, style=_LINE_STYLE.get(left.kind, "")) if left is not None else Text("")
        right_text = Text(right.text, style=_LINE_STYLE.get(right.kind, "")) if right is not None else Text("")
        left_no = _number(left.old_line) if left is not None else ""
        right_no = _number(right.new_line) if right is not None else ""
        if focus is not None and focus in (row.left_anchor, row.right_anchor):
            left_no = ">" + left_no
        table.add_row(left_no, left_text, right_no, right_text)
        seen = set()
        for anchor in (row.left_anchor, row.right_anchor):
            if anchor is None or anchor in seen:
                continue
            seen.add(anchor)
            comment = record.line_comments.get(anchor)
            if comment is not None:
                table.add_row("", _comment_text(comment.message, comment.resolved), "", "")
    console.print(table)
