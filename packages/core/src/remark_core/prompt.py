"""Prompt Collator: the unresolved comments of a view as one document.

The output is meant to be handed to a person or a coding agent as a to-do
list, so resolved comments are dropped and everything else is ordered
deterministically: by file path, then the file comment, then line comments
with old-side anchors before new-side ones.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from remark_core.diff import DiffLine
from remark_core.markdown import (
    BODY_INFO,
    FILE_COMMENT_HEADING,
    LINE_COMMENTS_HEADING,
    NO_COMMENTS,
    document_header,
    fenced,
    line_item,
    snippet_block,
)
from remark_core.review import ReviewSession
from remark_core.views import ViewDescriptor
from remark_store.models import LineKey


@dataclass(frozen=True)
class CommentaryEntry:
    """One comment to render. ``anchor`` is None for a file comment."""

    path: str
    message: str
    anchor: LineKey | None = None
    snippet: tuple[DiffLine, ...] = field(default=())

    @property
    def sort_key(self) -> tuple:
        if self.anchor is None:
            return (self.path, 0, 0, 0)
        return (self.path, 1, *self.anchor.sort_key)


def collate(session: ReviewSession, context: int = 0) -> list[CommentaryEntry]:
    """Unresolved comments for every file in the session view's diff.

    ``context`` is how many neighbouring diff lines each snippet carries.
    Line comments whose anchor is not in the current diff are still listed,
    just without a snippet.
    """
    entries: list[CommentaryEntry] = []
    for fd in session.diff():
        record = session.merged_record(fd.path).unresolved()
        if record.file_comment is not None:
            entries.append(CommentaryEntry(path=fd.path, message=record.file_comment.message))
        for comment in record.sorted_line_comments():
            entries.append(
                CommentaryEntry(
                    path=fd.path,
                    message=comment.message,
                    anchor=comment.key,
                    snippet=tuple(fd.snippet(comment.key, context)),
                )
            )
    entries.sort(key=lambda e: e.sort_key)
    return entries


def render_document(entries: list[CommentaryEntry], view: ViewDescriptor) -> str:
    lines = document_header(view)
    if not entries:
        lines += ["", NO_COMMENTS]
        return "\n".join(lines) + "\n"

    current_path = None
    in_line_section = False
    for entry in entries:
        if entry.path != current_path:
            current_path = entry.path
            in_line_section = False
            lines += ["", f"## {entry.path}"]
        if entry.anchor is None:
            lines += ["", FILE_COMMENT_HEADING, "", *fenced(entry.message, BODY_INFO)]
            continue
        if not in_line_section:
            in_line_section = True
            lines += ["", LINE_COMMENTS_HEADING]
        lines += ["", line_item(entry.anchor)]
        snippet = snippet_block(entry.path, list(entry.snippet))
        if snippet:
            lines += ["", *snippet]
        lines += ["", *fenced(entry.message, BODY_INFO)]
    return "\n".join(lines) + "\n"


def collate_text(session: ReviewSession, context: int = 0) -> str:
    return render_document(collate(session, context), session.view)
