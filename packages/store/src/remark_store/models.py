"""Review state data models.

Decoupled from remark_core so the store layer can be used independently:
nothing here knows about diffs, views or drafts. A FileRecord is the whole
review state of one file under one (HEAD, view) pair.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class Side(str, Enum):
    """Which side of a diff a line number refers to."""

    OLD = "old"
    NEW = "new"

    @classmethod
    def parse(cls, value: str | Side | None, default: Side | None = None) -> Side:
        if isinstance(value, Side):
            return value
        if value is None:
            if default is None:
                raise ValueError("missing side (expected 'old' or 'new')")
            return default
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ValueError(f"invalid side {value!r} (expected 'old' or 'new')") from None


@dataclass(frozen=True)
class LineKey:
    """A (side, line) anchor. At most one comment exists per key."""

    side: Side
    line: int

    @property
    def sort_key(self) -> tuple[int, int]:
        # Old-side anchors sort before new-side ones.
        return (0 if self.side is Side.OLD else 1, self.line)

    def label(self) -> str:
        return f"{self.side.value}:{self.line}"

    @classmethod
    def from_label(cls, label: str) -> LineKey:
        side, _, line = label.partition(":")
        return cls(Side.parse(side), int(line))


@dataclass
class FileComment:
    """A comment on the file as a whole."""

    message: str
    resolved: bool = False


@dataclass
class LineComment:
    """A comment anchored to one line on one side of the diff."""

    side: Side
    line: int
    message: str
    resolved: bool = False

    @property
    def key(self) -> LineKey:
        return LineKey(self.side, self.line)


@dataclass
class FileRecord:
    """Everything persisted for one file under one synthetic id.

    ``reviewed_digest`` pins a reviewed mark to the diff it was made against;
    the review session clears ``reviewed`` when the diff no longer matches.
    """

    file_comment: FileComment | None = None
    line_comments: dict[LineKey, LineComment] = field(default_factory=dict)
    reviewed: bool = False
    reviewed_digest: str | None = None

    def is_empty(self) -> bool:
        """An empty record is never stored; saving one deletes the note."""
        return self.file_comment is None and not self.line_comments and not self.reviewed

    def sorted_line_comments(self) -> list[LineComment]:
        return [self.line_comments[k] for k in sorted(self.line_comments, key=lambda k: k.sort_key)]

    def get_line_comment(self, side: Side, line: int) -> LineComment | None:
        return self.line_comments.get(LineKey(side, line))

    def set_line_comment(self, side: Side, line: int, message: str) -> LineComment:
        """Insert or update a line comment. Updating keeps its resolved state."""
        key = LineKey(side, line)
        existing = self.line_comments.get(key)
        if existing is not None:
            existing.message = message
            return existing
        comment = LineComment(side=side, line=line, message=message)
        self.line_comments[key] = comment
        return comment

    def set_file_comment(self, message: str) -> FileComment:
        if self.file_comment is not None:
            self.file_comment.message = message
        else:
            self.file_comment = FileComment(message=message)
        return self.file_comment

    def remove_line_comment(self, side: Side, line: int) -> bool:
        return self.line_comments.pop(LineKey(side, line), None) is not None

    def remove_file_comment(self) -> bool:
        removed = self.file_comment is not None
        self.file_comment = None
        return removed

    def unresolved(self) -> FileRecord:
        """Return a copy holding only the comments that still need action."""
        file_comment = None
        if self.file_comment is not None and not self.file_comment.resolved:
            file_comment = FileComment(self.file_comment.message, False)
        return FileRecord(
            file_comment=file_comment,
            line_comments={
                k: LineComment(c.side, c.line, c.message, c.resolved)
                for k, c in self.line_comments.items()
                if not c.resolved
            },
            reviewed=self.reviewed,
            reviewed_digest=self.reviewed_digest,
        )

    def comment_count(self, include_resolved: bool = True) -> int:
        count = 0
        if self.file_comment is not None and (include_resolved or not self.file_comment.resolved):
            count += 1
        count += sum(1 for c in self.line_comments.values() if include_resolved or not c.resolved)
        return count


@dataclass(frozen=True)
class SyntheticId:
    """Stable note target for one (HEAD, view, path) triple.

    ``oid`` is the git object id the note is attached to; ``key`` is the
    canonical byte encoding of the triple whose blob hash *is* ``oid``, so the
    store can materialise the object before attaching a note to it.
    """

    oid: str
    key: bytes = field(repr=False)
