"""Draft Reconciler: keep the shared draft document and the notes in step.

The draft (``<git-dir>/remark/draft.md``) is a plain markdown file any editor
can open. Users write comment bodies into it; a sync pass turns those bodies
into stored comments. The document format is described in remark_core.markdown.

Reconciliation is two-way, per file and anchor, against ``draft.state.json``
next to the draft. The state keeps a hash of each body as of the last pass,
together with the view and HEAD the pass ran under:

- a draft body that differs from its recorded hash was edited in the draft
  and is written to the store;
- a draft body that still matches its hash, while the stored comment says
  something else, was edited elsewhere (CLI, LSP) and is copied back into the
  draft; if the stored comment is gone, the block is dropped from the draft;
- an anchor in the state but no longer in the draft was deleted from the
  draft, and its comment is deleted unless it was edited elsewhere meanwhile.

Comments that never went through the draft are never in the state and are
never deleted by a sync. A state recorded for another view or HEAD is not
trusted. The document's ``Target:``/``Base:`` header selects the view.

The state file doubles as the index behind should_sync(): deciding whether a
saved file needs a sync pass is a dict lookup, whatever the size of the
repository.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import re
import tempfile
import threading
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath

from remark_core.markdown import (
    BODY_INFO,
    FILE_COMMENT_HEADING,
    LINE_COMMENTS_HEADING,
    PLACEHOLDER,
    document_header,
    fenced,
    line_item,
    snippet_block,
)
from remark_core.review import ReviewSession
from remark_core.views import ViewDescriptor
from remark_store.errors import ArgumentError, ParseError, RepositoryError
from remark_store.models import FileRecord, LineKey, Side

logger = logging.getLogger(__name__)

DRAFT_DIRNAME = "remark"
DRAFT_FILENAME = "draft.md"
STATE_FILENAME = "draft.state.json"
FILE_ANCHOR = "file"

_STATE_VERSION = 2

_FENCE_OPEN = re.compile(r"^(`{3,})\s*([^`\s]*)")
_LINE_ITEM = re.compile(r"^[-*]\s+line\s+(\d+)(?:\s*\(\s*(old|new)\s*\))?\s*:?\s*$", re.IGNORECASE)
_HEADER = re.compile(r"^(Target|Base):\s*(\S+)\s*$", re.IGNORECASE)


def anchor_label(anchor: LineKey | None) -> str:
    return FILE_ANCHOR if anchor is None else anchor.label()


def anchor_from_label(label: str) -> LineKey | None:
    return None if label == FILE_ANCHOR else LineKey.from_label(label)


@dataclass
class DraftBlock:
    """One comment body in the draft.

    ``start``..``end`` are the 0-based document lines the block occupies,
    from its anchor item (or opening fence) to its closing fence.
    """

    path: str
    anchor: LineKey | None
    body: str
    start: int
    end: int
    body_line: int

    @property
    def label(self) -> str:
        return anchor_label(self.anchor)


@dataclass
class ParsedDraft:
    blocks: list[DraftBlock] = field(default_factory=list)
    errors: list[ParseError] = field(default_factory=list)
    view: ViewDescriptor | None = None  # from the document's Target:/Base: header

    def by_path(self) -> dict[str, dict[str, DraftBlock]]:
        grouped: dict[str, dict[str, DraftBlock]] = defaultdict(dict)
        for block in self.blocks:
            grouped[block.path][block.label] = block
        return dict(grouped)


@dataclass
class SyncResult:
    created: int = 0
    updated: int = 0
    deleted: int = 0
    refreshed: int = 0  # draft blocks rewritten or dropped from the store
    files: list[str] = field(default_factory=list)
    errors: list[ParseError] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.created or self.updated or self.deleted or self.refreshed)


@dataclass(frozen=True)
class DraftLocation:
    """Where a caller should put the cursor: ``line`` is 1-based."""

    path: Path
    line: int


def _valid_path(path: str) -> bool:
    if not path or "\0" in path:
        return False
    p = PurePosixPath(path)
    return not p.is_absolute() and ".." not in p.parts


def parse_draft(text: str) -> ParsedDraft:
    """Parse draft text into blocks.

    Malformed pieces are recorded in ``errors`` and skipped; parsing always
    continues with the rest of the document. Placeholder and empty bodies are
    not blocks. A later body for the same anchor replaces an earlier one.
    """
    result = ParsedDraft()
    lines = [line.rstrip("\r") for line in text.split("\n")]
    path: str | None = None
    section: str | None = None
    anchor: LineKey | None = None
    has_anchor = False
    skip_body = False  # the target above this body was already reported
    anchor_start = 0
    blocks: dict[tuple[str, str], DraftBlock] = {}
    target: tuple[str, int] | None = None
    base_ref: str | None = None

    i = 0
    while i < len(lines):
        line = lines[i]
        stripped = line.strip()
        fence = _FENCE_OPEN.match(stripped)

        if fence:
            ticks, info = fence.group(1), fence.group(2)
            body_lines: list[str] = []
            j = i + 1
            closed = False
            while j < len(lines):
                candidate = lines[j].strip()
                if candidate and set(candidate) == {"`"} and len(candidate) >= len(ticks):
                    closed = True
                    break
                body_lines.append(lines[j])
                j += 1
            if not closed:
                result.errors.append(ParseError("unterminated code fence", line=i + 1))
                break
            if info.lower() == BODY_INFO:
                body = "\n".join(body_lines).strip()
                if not has_anchor or path is None:
                    if not skip_body:
                        result.errors.append(ParseError("comment body has no file or line target", line=i + 1))
                elif body and body != PLACEHOLDER:
                    key = (path, anchor_label(anchor))
                    if key in blocks:
                        logger.debug("Draft line %d overrides an earlier body for %s %s", i + 1, *key)
                        del blocks[key]
                    blocks[key] = DraftBlock(
                        path=path,
                        anchor=anchor,
                        body=body,
                        start=anchor_start if anchor is not None else i,
                        end=j,
                        body_line=i + 2,
                    )
                if anchor is not None:
                    has_anchor = False
                if path is not None:
                    skip_body = False
            i = j + 1
            continue

        header = _HEADER.match(stripped) if path is None and section is None else None
        if header:
            if header.group(1).lower() == "target":
                target = (header.group(2), i + 1)
            else:
                base_ref = header.group(2)
            i += 1
            continue

        if stripped.startswith("## ") and not stripped.startswith("### "):
            candidate = stripped[3:].strip()
            section = None
            has_anchor = False
            if _valid_path(candidate):
                path = candidate
                skip_body = False
            else:
                path = None
                skip_body = True
                result.errors.append(ParseError(f"invalid file path {candidate!r}", line=i + 1))
        elif stripped.lower() == FILE_COMMENT_HEADING.lower():
            section = "file"
            anchor = None
            has_anchor = True
        elif stripped.lower() == LINE_COMMENTS_HEADING.lower():
            section = "line"
            has_anchor = False
        elif _LINE_ITEM.match(stripped):
            m = _LINE_ITEM.match(stripped)
            number = int(m.group(1))
            if section != "line":
                result.errors.append(ParseError("line item outside a 'Line comments' section", line=i + 1))
                has_anchor = False
                skip_body = True
            elif number < 1:
                result.errors.append(ParseError("line numbers start at 1", line=i + 1))
                has_anchor = False
                skip_body = True
            else:
                anchor = LineKey(Side.parse(m.group(2), default=Side.NEW), number)
                has_anchor = True
                anchor_start = i
                skip_body = False
        elif stripped.startswith("### "):
            result.errors.append(ParseError(f"unknown section {stripped[4:]!r}", line=i + 1))
            section = None
            has_anchor = False
            skip_body = True
        i += 1

    result.blocks = list(blocks.values())
    if target is not None:
        try:
            result.view = ViewDescriptor.parse(target[0], base_ref)
        except ArgumentError as e:
            result.errors.append(ParseError(str(e), line=target[1]))
    for error in result.errors:
        logger.warning("Skipping malformed draft block: %s", error)
    return result


def _atomic_write(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as f:
            f.write(text)
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise


def _block_lines(path: str, anchor: LineKey | None, body: str, snippet: list[str]) -> list[str]:
    lines = ["", f"## {path}", ""]
    if anchor is None:
        lines += [FILE_COMMENT_HEADING, ""]
    else:
        lines += [LINE_COMMENTS_HEADING, "", line_item(anchor), ""]
        if snippet:
            lines += [*snippet, ""]
    lines += fenced(body, BODY_INFO)
    return lines


def body_hash(body: str) -> str:
    return hashlib.sha256(body.encode("utf-8", "surrogateescape")).hexdigest()


_LOCKS: dict[str, threading.RLock] = {}
_LOCKS_GUARD = threading.Lock()


def draft_lock(path: Path) -> threading.RLock:
    """The process-wide lock for one draft file, shared by every reconciler on it."""
    key = os.path.normcase(os.path.abspath(path))
    with _LOCKS_GUARD:
        return _LOCKS.setdefault(key, threading.RLock())


@dataclass
class DraftState:
    """What the last sync agreed on: per file, each synced label's body hash.

    ``view`` and ``head`` say which records the hashes describe; a state for
    another view or HEAD says nothing about the current ones.
    """

    view: ViewDescriptor | None = None
    head: str | None = None
    files: dict[str, dict[str, str | None]] = field(default_factory=dict)

    def tracked(self, view: ViewDescriptor, head: str) -> dict[str, dict[str, str | None]]:
        if self.view != view or self.head != head:
            return {}
        return self.files


def _get_comment(record: FileRecord, anchor: LineKey | None):
    if anchor is None:
        return record.file_comment
    return record.get_line_comment(anchor.side, anchor.line)


def _set_comment(record: FileRecord, anchor: LineKey | None, body: str) -> None:
    if anchor is None:
        record.set_file_comment(body)
    else:
        record.set_line_comment(anchor.side, anchor.line, body)


def _remove_comment(record: FileRecord, anchor: LineKey | None) -> bool:
    if anchor is None:
        return record.remove_file_comment()
    return record.remove_line_comment(anchor.side, anchor.line)


class DraftReconciler:
    """Syncs one repository's draft against the notes.

    Comments are read and written under the view named in the draft's
    ``Target:`` header, falling back to the session's view.
    """

    def __init__(self, session: ReviewSession, path: Path | None = None):
        self.session = session
        base = session.repo.git_dir / DRAFT_DIRNAME
        self.path = Path(path) if path is not None else base / DRAFT_FILENAME
        self.state_path = self.path.with_name(STATE_FILENAME)
        self._lock = draft_lock(self.path)
        self._index: DraftState | None = None

    # ------------------------------------------------------------------
    # Document and state IO
    # ------------------------------------------------------------------

    def ensure_exists(self) -> Path:
        with self._lock:
            if not self.path.exists():
                _atomic_write(self.path, "\n".join(document_header(self.session.view)) + "\n")
        return self.path

    def read(self) -> str:
        """One consistent snapshot of the draft ("" if it does not exist)."""
        try:
            return self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return ""

    def _write(self, text: str) -> None:
        _atomic_write(self.path, text)

    def load_state(self) -> DraftState:
        try:
            raw = json.loads(self.state_path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return DraftState()
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable draft state %s: %s", self.state_path, e)
            return DraftState()
        files = raw.get("files") if isinstance(raw, dict) else None
        if not isinstance(files, dict):
            logger.warning("Ignoring malformed draft state %s", self.state_path)
            return DraftState()

        state = DraftState(head=raw.get("head"))
        if raw.get("view"):
            try:
                state.view = ViewDescriptor.parse(raw["view"], raw.get("base"))
            except ArgumentError as e:
                logger.warning("Ignoring view in draft state %s: %s", self.state_path, e)
        for path, labels in files.items():
            if isinstance(labels, dict):
                state.files[path] = {str(k): (v if isinstance(v, str) else None) for k, v in labels.items()}
            elif isinstance(labels, list):
                # version 1 kept labels only
                state.files[path] = {str(label): None for label in labels}
        return state

    def save_state(self, state: DraftState) -> None:
        state.files = {p: dict(sorted(labels.items())) for p, labels in sorted(state.files.items()) if labels}
        raw = {
            "version": _STATE_VERSION,
            "view": state.view.kind.value if state.view is not None else None,
            "base": state.view.base_ref if state.view is not None else None,
            "head": state.head,
            "files": state.files,
        }
        _atomic_write(self.state_path, json.dumps(raw, indent=2) + "\n")
        self._index = state

    def _state(self) -> DraftState:
        if self._index is None:
            self._index = self.load_state()
        return self._index

    def _target_session(self, view: ViewDescriptor | None) -> ReviewSession:
        if view is None or view == self.session.view:
            return self.session
        return self.session.with_view(view)

    # ------------------------------------------------------------------
    # Sync gate
    # ------------------------------------------------------------------

    def is_draft(self, path: str | os.PathLike) -> bool:
        return os.path.normpath(os.path.abspath(path)) == os.path.normpath(os.path.abspath(self.path))

    def should_sync(self, path: str | os.PathLike) -> bool:
        """Cheap check: does saving ``path`` require a sync pass?

        True for the draft itself and for files the draft last touched. Looks
        only at the cached index, so the cost is bounded by the draft's size.
        """
        if self.is_draft(path):
            return True
        try:
            rel = self.session.repo.relative_path(path)
        except RepositoryError:
            return False
        return rel in self._state().files

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    @staticmethod
    def _apply(
        path: str,
        record: FileRecord,
        current: dict[str, DraftBlock],
        tracked: dict[str, str | None],
        result: SyncResult,
    ) -> tuple[dict[str, str | None], dict[str, str | None]]:
        """Reconcile one file's record with its draft blocks.

        Returns the labels now in sync (label -> body hash) and the draft
        blocks to rewrite (label -> new body, or None to drop the block).
        """
        synced: dict[str, str | None] = {}
        rewrites: dict[str, str | None] = {}
        for label, block in sorted(current.items()):
            comment = _get_comment(record, block.anchor)
            draft = body_hash(block.body)
            last = tracked.get(label)
            if comment is None:
                if last == draft:
                    # Deleted outside the draft since the last pass.
                    rewrites[label] = None
                    synced[label] = last
                    continue
                _set_comment(record, block.anchor, block.body)
                result.created += 1
            elif comment.message == block.body:
                pass
            elif last is None or last != draft:
                comment.message = block.body
                result.updated += 1
            else:
                # Only the stored comment changed since the last pass.
                rewrites[label] = comment.message
                synced[label] = last
                continue
            synced[label] = draft

        for label in sorted(set(tracked) - set(current)):
            anchor = anchor_from_label(label)
            comment = _get_comment(record, anchor)
            if comment is None:
                continue
            last = tracked[label]
            if last is not None and body_hash(comment.message) != last:
                logger.info("%s %s was edited outside the draft; keeping it", path, label)
                continue
            _remove_comment(record, anchor)
            result.deleted += 1
        return synced, rewrites

    @staticmethod
    def _rewrite(
        text: str, blocks: dict[str, dict[str, DraftBlock]], rewrites: dict[tuple[str, str], str | None]
    ) -> str:
        lines = text.split("\n")
        edits = []
        for (path, label), body in rewrites.items():
            block = blocks[path][label]
            if body is None:
                edits.append((block.start, block.end, []))
            else:
                edits.append((block.body_line - 2, block.end, fenced(body, BODY_INFO)))
        for start, end, replacement in sorted(edits, key=lambda e: e[0], reverse=True):
            lines[start : end + 1] = replacement
        return "\n".join(lines)

    def sync(self) -> SyncResult:
        """Run one reconciliation pass over the current draft snapshot.

        A body edited in the draft since the last pass is written to the
        notes. A comment edited or deleted elsewhere while its draft body
        stayed put is copied back into the draft (or dropped from it).
        """
        with self._lock:
            text = self.read()
            parsed = parse_draft(text)
            result = SyncResult(errors=list(parsed.errors))
            session = self._target_session(parsed.view)
            head = session.head
            previous = self.load_state().tracked(session.view, head)
            current_by_path = parsed.by_path()

            files: dict[str, dict[str, str | None]] = {}
            rewrites: dict[tuple[str, str], str | None] = {}
            for path in sorted(set(current_by_path) | set(previous)):
                current = current_by_path.get(path, {})
                tracked = previous.get(path, {})
                if not current and not tracked:
                    continue
                before = (result.created, result.updated, result.deleted)

                def reconcile(record: FileRecord, path=path, current=current, tracked=tracked):
                    return self._apply(path, record, current, tracked, result)

                synced, file_rewrites = session.mutate(path, reconcile)
                files[path] = synced
                rewrites.update({(path, label): body for label, body in file_rewrites.items()})
                if (result.created, result.updated, result.deleted) != before:
                    result.files.append(path)

            if rewrites:
                # The editor may have saved again while the notes were written.
                if self.read() == text:
                    self._write(self._rewrite(text, current_by_path, rewrites))
                    for (path, label), body in rewrites.items():
                        if body is None:
                            del files[path][label]
                        else:
                            files[path][label] = body_hash(body)
                    result.refreshed = len(rewrites)
                else:
                    logger.info("Draft changed during sync; leaving %d block(s) for the next pass", len(rewrites))

            self.save_state(DraftState(view=session.view, head=head, files=files))
            logger.debug(
                "Draft sync: %d created, %d updated, %d deleted, %d refreshed, %d skipped block(s)",
                result.created, result.updated, result.deleted, result.refreshed, len(result.errors),
            )
            return result

    # ------------------------------------------------------------------
    # Draft edits
    # ------------------------------------------------------------------

    def _snippet(self, path: str, anchor: LineKey | None) -> list[str]:
        if anchor is None:
            return []
        fd = self.session.file_diff(path)
        if fd is None:
            return []
        return snippet_block(path, fd.snippet(anchor))

    def start_comment(self, path: str, line: int | None = None, side: Side | None = None) -> DraftLocation:
        """Append a placeholder block for an anchor and return where to type.

        If the draft already has a body for the anchor, return its location
        instead of adding a second one.
        """
        with self._lock:
            anchor = LineKey(Side.parse(side, default=Side.NEW), line) if line is not None else None
            self.ensure_exists()
            text = self.read()
            for block in parse_draft(text).blocks:
                if block.path == path and block.anchor == anchor:
                    return DraftLocation(self.path, block.body_line)
            lines = text.rstrip("\n").split("\n") if text.strip() else document_header(self.session.view)
            block_lines = _block_lines(path, anchor, PLACEHOLDER, self._snippet(path, anchor))
            placeholder_line = len(lines) + block_lines.index(PLACEHOLDER) + 1
            self._write("\n".join(lines + block_lines) + "\n")
            return DraftLocation(self.path, placeholder_line)

    def pull(self, paths: list[str] | None = None) -> int:
        """Copy unresolved stored comments into the draft.

        Defaults to every file in the draft view's diff. Comments already in
        the draft are left alone. Pulled anchors are recorded in the sync
        state, so deleting one from the draft later deletes the comment.
        Returns how many blocks were added.
        """
        with self._lock:
            self.ensure_exists()
            text = self.read()
            parsed = parse_draft(text)
            session = self._target_session(parsed.view)
            if paths is None:
                paths = [fd.path for fd in session.diff()]
            present = {(b.path, b.label) for b in parsed.blocks}
            head = session.head
            state = DraftState(
                view=session.view,
                head=head,
                files={p: dict(labels) for p, labels in self.load_state().tracked(session.view, head).items()},
            )
            lines = text.rstrip("\n").split("\n")
            added = 0
            for path in sorted(set(paths)):
                record = session.load(path).unresolved()
                comments: list[tuple[LineKey | None, str]] = []
                if record.file_comment is not None:
                    comments.append((None, record.file_comment.message))
                comments += [(c.key, c.message) for c in record.sorted_line_comments()]
                for anchor, message in comments:
                    label = anchor_label(anchor)
                    if (path, label) in present:
                        continue
                    lines += _block_lines(path, anchor, message, self._snippet(path, anchor))
                    state.files.setdefault(path, {})[label] = body_hash(message)
                    added += 1
            if added:
                self._write("\n".join(lines) + "\n")
                self.save_state(state)
            return added

    def remove(self, path: str, anchor: LineKey | None) -> bool:
        """Drop ``path``'s block for ``anchor`` from the draft and the sync state.

        Used when a comment is deleted or resolved elsewhere, so the next sync
        does not bring it back. Returns False if the draft had no such block.
        """
        with self._lock:
            label = anchor_label(anchor)
            state = self.load_state()
            tracked = label in state.files.get(path, {})
            if tracked:
                del state.files[path][label]
            text = self.read()
            lines = text.split("\n")
            block = next(
                (b for b in parse_draft(text).blocks if b.path == path and b.label == label),
                None,
            )
            if block is not None:
                del lines[block.start : block.end + 1]
                self._write("\n".join(lines))
            if tracked or block is not None:
                self.save_state(state)
            return block is not None
