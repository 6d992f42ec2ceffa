"""Diff Anchoring: per-view diffs and the (side, line) keys comments attach to.

Unified layout: every context or added line is a NEW-side anchor keyed by its
new line number; every removed line is an OLD-side anchor keyed by its old
line number. Side-by-side layout only re-arranges those same lines onto
shared rows, so switching layout never changes which comment a line shows.

Anchors are looked up directly in FileRecord.line_comments. There is no
re-mapping when edits shift line numbers: a comment whose line moved simply
shows up on whatever line now carries that number.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field

from unidiff import PatchSet
from unidiff.errors import UnidiffParseError

from remark_core.utils.code import is_binary
from remark_core.views import ViewDescriptor, ViewKind
from remark_store.errors import RepositoryError
from remark_store.git import GitRepo
from remark_store.models import LineKey, Side

logger = logging.getLogger(__name__)

DEFAULT_CONTEXT = 3
MAX_CONTEXT = 20

ADDED = "+"
REMOVED = "-"
CONTEXT = " "


@dataclass(frozen=True)
class DiffLine:
    kind: str
    text: str
    old_line: int | None = None
    new_line: int | None = None

    @property
    def anchor(self) -> LineKey:
        if self.kind == REMOVED:
            return LineKey(Side.OLD, self.old_line)
        return LineKey(Side.NEW, self.new_line)


@dataclass
class Hunk:
    header: str
    lines: list[DiffLine] = field(default_factory=list)


@dataclass(frozen=True)
class SideBySideRow:
    """One display row. ``hunk_header`` rows carry no lines."""

    left: DiffLine | None = None
    right: DiffLine | None = None
    hunk_header: str | None = None

    @property
    def left_anchor(self) -> LineKey | None:
        return self.left.anchor if self.left is not None else None

    @property
    def right_anchor(self) -> LineKey | None:
        return self.right.anchor if self.right is not None else None


@dataclass
class FileDiff:
    """The diff of one file under one view.

    ``status`` is one of added, deleted, modified or untracked. Binary files
    have no hunks and therefore no line anchors; they can still carry a file
    comment. ``fingerprint`` adds content identity for binary files, whose
    diff text says nothing about what changed.
    """

    path: str
    status: str = "modified"
    hunks: list[Hunk] = field(default_factory=list)
    binary: bool = False
    fingerprint: str = ""
    _index: dict[LineKey, tuple[int, int]] | None = field(default=None, init=False, repr=False, compare=False)

    def _anchor_index(self) -> dict[LineKey, tuple[int, int]]:
        if self._index is None:
            index = {}
            for h, hunk in enumerate(self.hunks):
                for i, line in enumerate(hunk.lines):
                    index.setdefault(line.anchor, (h, i))
            self._index = index
        return self._index

    def anchors(self) -> list[LineKey]:
        """Every commentable line anchor, in display order."""
        return [line.anchor for hunk in self.hunks for line in hunk.lines]

    def is_anchor(self, key: LineKey) -> bool:
        return key in self._anchor_index()

    def line_for(self, key: LineKey) -> DiffLine | None:
        pos = self._anchor_index().get(key)
        if pos is None:
            return None
        return self.hunks[pos[0]].lines[pos[1]]

    def snippet(self, key: LineKey, context: int = 0) -> list[DiffLine]:
        """The anchored line plus up to ``context`` neighbours from its hunk."""
        pos = self._anchor_index().get(key)
        if pos is None:
            return []
        lines = self.hunks[pos[0]].lines
        start = max(0, pos[1] - context)
        return lines[start : pos[1] + context + 1]

    def digest(self) -> str:
        """Fingerprint of the change itself, independent of context width."""
        h = hashlib.sha256()
        h.update(self.path.encode("utf-8", "surrogateescape") + b"\0")
        h.update(self.status.encode("ascii") + b"\0")
        h.update(self.fingerprint.encode("ascii") + b"\0")
        for hunk in self.hunks:
            for line in hunk.lines:
                if line.kind == CONTEXT:
                    continue
                h.update(f"{line.kind}{line.old_line}:{line.new_line}:".encode("ascii"))
                h.update(line.text.encode("utf-8", "surrogateescape") + b"\n")
        return h.hexdigest()

    def side_by_side(self) -> list[SideBySideRow]:
        """Pair each run of removed lines with the run of added lines after it."""
        rows: list[SideBySideRow] = []
        for hunk in self.hunks:
            rows.append(SideBySideRow(hunk_header=hunk.header))
            removed: list[DiffLine] = []
            added: list[DiffLine] = []

            def flush():
                for i in range(max(len(removed), len(added))):
                    rows.append(
                        SideBySideRow(
                            left=removed[i] if i < len(removed) else None,
                            right=added[i] if i < len(added) else None,
                        )
                    )
                removed.clear()
                added.clear()

            for line in hunk.lines:
                if line.kind == REMOVED:
                    if added:
                        flush()
                    removed.append(line)
                elif line.kind == ADDED:
                    added.append(line)
                else:
                    flush()
                    rows.append(SideBySideRow(left=line, right=line))
            flush()
        return rows

    @property
    def added(self) -> int:
        return sum(1 for hunk in self.hunks for line in hunk.lines if line.kind == ADDED)

    @property
    def removed(self) -> int:
        return sum(1 for hunk in self.hunks for line in hunk.lines if line.kind == REMOVED)


def clamp_context(value) -> int:
    """Parse a context width, clamped to 0..MAX_CONTEXT; bad input gives the default."""
    try:
        n = int(value)
    except (TypeError, ValueError):
        return DEFAULT_CONTEXT
    return max(0, min(MAX_CONTEXT, n))


def parse_unified_diff(text: str) -> list[FileDiff]:
    """Parse ``git diff`` output into FileDiffs."""
    if not text.strip():
        return []
    try:
        patch = PatchSet(text)
    except UnidiffParseError as e:
        raise RepositoryError(f"could not parse git diff output: {e}") from None

    files = []
    for patched_file in patch:
        if patched_file.is_added_file:
            status = "added"
        elif patched_file.is_removed_file:
            status = "deleted"
        else:
            status = "modified"
        diff = FileDiff(path=patched_file.path, status=status)
        if patched_file.is_binary_file:
            diff.binary = True
            diff.fingerprint = hashlib.sha256(str(patched_file.patch_info).encode("utf-8", "surrogateescape")).hexdigest()
        for hunk in patched_file:
            header = f"@@ -{hunk.source_start},{hunk.source_length} +{hunk.target_start},{hunk.target_length} @@"
            if hunk.section_header:
                header += " " + hunk.section_header
            out = Hunk(header=header)
            for line in hunk:
                if line.line_type not in (ADDED, REMOVED, CONTEXT):
                    continue  # "\ No newline at end of file"
                out.lines.append(
                    DiffLine(
                        kind=line.line_type,
                        text=line.value.rstrip("\r\n"),
                        old_line=line.source_line_no,
                        new_line=line.target_line_no,
                    )
                )
            diff.hunks.append(out)
        files.append(diff)
    return files


def untracked_file_diff(path: str, data: bytes) -> FileDiff:
    """Synthesize an all-added diff for a file git does not track yet."""
    if is_binary(data):
        return FileDiff(path=path, status="untracked", binary=True, fingerprint=hashlib.sha256(data).hexdigest())
    lines = data.decode("utf-8", "replace").splitlines()
    diff = FileDiff(path=path, status="untracked")
    if lines:
        hunk = Hunk(header=f"@@ -0,0 +1,{len(lines)} @@")
        hunk.lines = [DiffLine(kind=ADDED, text=text, new_line=n) for n, text in enumerate(lines, start=1)]
        diff.hunks.append(hunk)
    return diff


def _diff_args(repo: GitRepo, view: ViewDescriptor) -> list[str]:
    if view.kind is ViewKind.ALL:
        return ["HEAD"]
    if view.kind is ViewKind.STAGED:
        return ["--cached", "HEAD"]
    if view.kind is ViewKind.UNSTAGED:
        return []
    if view.kind is ViewKind.BASE:
        return [repo.merge_base(view.base_ref), "HEAD"]
    raise ValueError(f"unhandled view kind {view.kind!r}")


def _includes_untracked(view: ViewDescriptor) -> bool:
    return view.kind in (ViewKind.ALL, ViewKind.UNSTAGED)


def compute_diff(repo: GitRepo, view: ViewDescriptor, context: int = DEFAULT_CONTEXT) -> list[FileDiff]:
    """Changed files under ``view``, sorted by path.

    Raises RepositoryError when HEAD is unborn and RefResolutionError when a
    BASE view's ref cannot be resolved.
    """
    repo.head_commit()
    args = _diff_args(repo, view)
    result = repo.run(
        "-c", "core.quotePath=false",
        "diff", "--no-color", "--no-ext-diff", "--no-renames", "--full-index",
        f"-U{clamp_context(context)}",
        *args,
    )
    files = parse_unified_diff(result.stdout)
    if _includes_untracked(view):
        seen = {f.path for f in files}
        for path in repo.untracked_paths():
            if path in seen:
                continue
            data = repo.read_worktree(path)
            if data is None:
                continue
            files.append(untracked_file_diff(path, data))
    files.sort(key=lambda f: f.path)
    logger.debug("%d changed file(s) under view %s", len(files), view)
    return files


def find_file(files: list[FileDiff], path: str) -> FileDiff | None:
    for f in files:
        if f.path == path:
            return f
    return None
