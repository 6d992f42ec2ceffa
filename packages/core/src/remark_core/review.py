"""Review session: the comment and reviewed state machines.

A ReviewSession is the explicit context every operation runs in: which
repository, which store, which view, which HEAD. Nothing in remark_core keeps
process-wide state; two sessions on different views or notes refs can live
side by side (the LSP creates one per request).

State machines, per comment:

    Unresolved  <->  Resolved        explicit resolve/unresolve only
    Created      ->  Deleted         explicit delete only

and per file:

    Unreviewed  <->  Reviewed        explicit toggle; reset automatically when
                                     the file's diff no longer matches the
                                     digest recorded when it was marked

Every transition is load -> mutate -> save of the full record, under a lock,
so concurrent writers in one process never lose each other's updates and the
store never sees a partial record.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

from remark_core.diff import DEFAULT_CONTEXT, FileDiff, compute_diff, find_file
from remark_core.identity import resolve
from remark_core.views import ViewDescriptor, ViewKind, related_views
from remark_store.base import BaseStore
from remark_store.errors import ArgumentError, CommentNotFoundError
from remark_store.git import GitRepo
from remark_store.models import FileComment, FileRecord, LineComment, LineKey, Side, SyntheticId

logger = logging.getLogger(__name__)


def _validate_line(line: int | None) -> None:
    if line is not None and line < 1:
        raise ArgumentError(f"line numbers start at 1 (got {line})")


class ReviewSession:
    def __init__(
        self,
        repo: GitRepo,
        store: BaseStore,
        view: ViewDescriptor | None = None,
        diff_context: int = DEFAULT_CONTEXT,
        base_ref: str | None = None,
        lock: threading.RLock | None = None,
    ):
        self.repo = repo
        self.store = store
        self.view = view or ViewDescriptor.all()
        self.diff_context = diff_context
        self.base_ref = self.view.base_ref if self.view.kind is ViewKind.BASE else base_ref
        self._lock = lock or threading.RLock()
        self._head: str | None = None
        self._diffs: dict[ViewDescriptor, list[FileDiff]] = {}

    @property
    def head(self) -> str:
        if self._head is None:
            self._head = self.repo.head_commit()
        return self._head

    def refresh(self) -> None:
        """Forget the cached HEAD and diffs (after the work tree changed)."""
        self._head = None
        self._diffs.clear()

    def with_view(self, view: ViewDescriptor) -> ReviewSession:
        """A session on the same repository and store, looking at ``view``."""
        return ReviewSession(
            self.repo, self.store, view, self.diff_context, base_ref=self.base_ref, lock=self._lock
        )

    def views(self) -> list[ViewDescriptor]:
        return related_views(self.view, self.base_ref)

    def sid(self, path: str, view: ViewDescriptor | None = None) -> SyntheticId:
        return resolve(self.head, view or self.view, path)

    # ------------------------------------------------------------------
    # Diffs
    # ------------------------------------------------------------------

    def diff(self, view: ViewDescriptor | None = None) -> list[FileDiff]:
        view = view or self.view
        if view not in self._diffs:
            self._diffs[view] = compute_diff(self.repo, view, self.diff_context)
        return self._diffs[view]

    def file_diff(self, path: str, view: ViewDescriptor | None = None) -> FileDiff | None:
        return find_file(self.diff(view), path)

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def load(self, path: str, view: ViewDescriptor | None = None) -> FileRecord:
        """Load ``path``'s record under ``view``, expiring a stale reviewed mark.

        A reviewed mark whose digest no longer matches the current diff is
        cleared and the cleared record is written back.
        """
        view = view or self.view
        sid = self.sid(path, view)
        record = self.store.load(sid)
        if record.reviewed:
            fd = self.file_diff(path, view)
            current = fd.digest() if fd is not None else None
            if record.reviewed_digest != current:
                logger.info("%s changed since it was marked reviewed; clearing the mark", path)
                record.reviewed = False
                record.reviewed_digest = None
                with self._lock:
                    self.store.save(sid, record)
        return record

    def save(self, path: str, record: FileRecord, view: ViewDescriptor | None = None) -> bool:
        with self._lock:
            return self.store.save(self.sid(path, view), record)

    def mutate(self, path: str, fn: Callable[[FileRecord], object], view: ViewDescriptor | None = None):
        """Run ``fn`` on a freshly loaded record and save the result.

        Returns whatever ``fn`` returns. The record is re-read inside the lock
        so a concurrent writer's changes are merged rather than overwritten.
        """
        with self._lock:
            record = self.load(path, view)
            result = fn(record)
            self.store.save(self.sid(path, view), record)
            return result

    def merged_record(self, path: str) -> FileRecord:
        """Combine ``path``'s records across every related view.

        The session's own view wins ties; otherwise an unresolved copy of a
        comment is preferred over a resolved one. ``reviewed`` comes from the
        session's view only.
        """
        views = self.views()
        merged = self.load(path, views[0])
        for view in views[1:]:
            other = self.store.load(self.sid(path, view))
            if other.file_comment is not None:
                mine = merged.file_comment
                if mine is None or (mine.resolved and not other.file_comment.resolved):
                    merged.file_comment = FileComment(other.file_comment.message, other.file_comment.resolved)
            for key, comment in other.line_comments.items():
                mine = merged.line_comments.get(key)
                if mine is None or (mine.resolved and not comment.resolved):
                    merged.line_comments[key] = LineComment(comment.side, comment.line, comment.message, comment.resolved)
        return merged

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def add_comment(self, path: str, message: str, line: int | None = None, side: Side | None = None):
        """Create or update a comment. ``line=None`` targets the file comment.

        Updating an existing comment's text keeps its resolved state.
        """
        _validate_line(line)
        message = message.strip()
        if not message:
            raise ArgumentError("comment message is empty")
        if line is None:
            return self.mutate(path, lambda r: r.set_file_comment(message))
        side = Side.parse(side, default=Side.NEW)
        fd = self.file_diff(path)
        if fd is not None and not fd.is_anchor(LineKey(side, line)):
            logger.warning("%s line %d (%s) is not part of the %s diff", path, line, side.value, self.view)
        return self.mutate(path, lambda r: r.set_line_comment(side, line, message))

    def set_resolved(self, path: str, resolved: bool = True, line: int | None = None, side: Side | None = None) -> int:
        """Resolve (or unresolve) the matching comment under every related view.

        Returns how many records were changed. Raises CommentNotFoundError if
        no view holds a matching comment.
        """
        _validate_line(line)
        side = Side.parse(side, default=Side.NEW) if line is not None else None
        matched = 0
        with self._lock:
            for view in self.views():
                sid = self.sid(path, view)
                record = self.store.load(sid)
                if line is None:
                    target = record.file_comment
                else:
                    target = record.get_line_comment(side, line)
                if target is None:
                    continue
                matched += 1
                if target.resolved != resolved:
                    target.resolved = resolved
                    self.store.save(sid, record)
        if not matched:
            action = "resolve" if resolved else "unresolve"
            raise CommentNotFoundError(f"no matching comment found to {action}")
        return matched

    def delete_comment(self, path: str, line: int | None = None, side: Side | None = None) -> None:
        """Delete a comment from the session's view. The note goes when the record empties."""
        _validate_line(line)

        def _delete(record: FileRecord) -> bool:
            if line is None:
                return record.remove_file_comment()
            return record.remove_line_comment(Side.parse(side, default=Side.NEW), line)

        if not self.mutate(path, _delete):
            raise CommentNotFoundError("no matching comment found to delete")

    def set_reviewed(self, path: str, reviewed: bool = True) -> None:
        """Mark ``path`` reviewed against its current diff, or clear the mark."""
        if not reviewed:
            def _clear(record: FileRecord) -> None:
                record.reviewed = False
                record.reviewed_digest = None

            self.mutate(path, _clear)
            return

        fd = self.file_diff(path)
        if fd is None:
            raise ArgumentError(f"{path} has no changes under the {self.view} view")
        digest = fd.digest()

        def _mark(record: FileRecord) -> None:
            record.reviewed = True
            record.reviewed_digest = digest

        self.mutate(path, _mark)

    def toggle_reviewed(self, path: str) -> bool:
        reviewed = not self.load(path).reviewed
        self.set_reviewed(path, reviewed)
        return reviewed
