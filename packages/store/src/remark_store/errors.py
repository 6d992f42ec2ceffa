"""Error hierarchy shared by every remark package.

Lives in the store package because it is the lowest layer: remark_core and
remark_cli both import it, while the store imports neither of them.
"""

from __future__ import annotations


class RemarkError(Exception):
    """Base class for every error remark reports to a user."""


class RepositoryError(RemarkError):
    """No repository, or HEAD is unborn."""


class RefResolutionError(RemarkError):
    """A base/upstream ref could not be resolved to a commit."""


class NotesAccessError(RemarkError):
    """Reading, writing or fetching the notes ref failed."""


class ParseError(RemarkError):
    """A stored note or a draft block could not be parsed.

    ``line`` is the 1-based line of the draft document the problem was found
    on, when there is one.
    """

    def __init__(self, message: str, line: int | None = None):
        super().__init__(message)
        self.line = line

    def __str__(self) -> str:
        base = super().__str__()
        if self.line is None:
            return base
        return f"line {self.line}: {base}"


class ArgumentError(RemarkError):
    """An invalid combination of arguments (e.g. a line without a file)."""


class CommentNotFoundError(ArgumentError):
    """resolve/delete matched no stored comment."""


class ClipboardError(RemarkError):
    """Neither the desktop clipboard nor OSC 52 delivery worked."""
