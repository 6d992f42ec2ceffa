"""Editor integration: a small language server over stdio.

The server only does what remark needs from an editor:

- publish every comment on an open file as a diagnostic (source ``remark``),
  and show the same comments as hovers and end-of-line inlay hints;
- ``workspace/executeCommand`` for creating and resolving comments and for
  starting a comment in the shared draft, offered as code actions too;
- run a draft sync whenever the draft (or a file it touches) is saved, or the
  client reports the draft changed on disk.

Messages are Content-Length framed JSON-RPC 2.0. The read loop runs on the
calling thread; requests are handled on a thread pool so a slow git call does
not block other requests. Every write to the notes goes through one shared
store and lock, so concurrent commands on the same file converge.
"""

from __future__ import annotations

import importlib.metadata
import json
import logging
import sys
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from urllib.parse import unquote, urlparse

from remark_cli.workspace import build_store, open_session
from remark_core.diff import FileDiff
from remark_core.draft import DraftLocation, DraftReconciler
from remark_core.review import ReviewSession
from remark_store.errors import ArgumentError, RemarkError
from remark_store.git import GitRepo
from remark_store.models import FileComment, LineComment, LineKey, Side

logger = logging.getLogger(__name__)

SOURCE = "remark"

CREATE_COMMENT = "remark.createComment"
RESOLVE_COMMENT = "remark.resolveComment"
ADD_DRAFT_COMMENT = "remark.addDraftComment"
OPEN_DRAFT = "remark.openDraft"
OPEN_PROMPT = "remark.openPrompt"
COMMANDS = [CREATE_COMMENT, RESOLVE_COMMENT, ADD_DRAFT_COMMENT, OPEN_DRAFT, OPEN_PROMPT]

# Client-side handler for editors that open the draft in a dedicated panel.
OPEN_DRAFT_NOTIFICATION = "remark/openDraft"
DRAFT_CAPABILITY = "remarkDraft"

SEVERITY_WARNING = 2
SEVERITY_HINT = 4

INLAY_MAX = 80
DRAFT_WATCH_ID = "remark-draft-watch"

PARSE_ERROR = -32700
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

_MAX_WORKERS = 4


def uri_to_path(uri: str) -> Path:
    parsed = urlparse(uri)
    if parsed.scheme and parsed.scheme != "file":
        raise ArgumentError(f"unsupported URI scheme {parsed.scheme!r}")
    return Path(unquote(parsed.path if parsed.scheme else uri))


def path_to_uri(path: Path) -> str:
    return Path(path).absolute().as_uri()


def _range(line: int, character: int = 0) -> dict:
    return {"start": {"line": line, "character": character}, "end": {"line": line, "character": character}}


def _diagnostic_line(fd: FileDiff | None, comment: LineComment) -> int:
    """0-based line in the current file to show ``comment`` on.

    Old-side lines no longer exist in the file; they are shown on the first
    new-side line after them in the same hunk.
    """
    if comment.side is Side.NEW or fd is None:
        return max(comment.line - 1, 0)
    for hunk in fd.hunks:
        lines = hunk.lines
        for i, line in enumerate(lines):
            if line.kind == "-" and line.old_line == comment.line:
                following = next((ln.new_line for ln in lines[i:] if ln.new_line is not None), None)
                if following is not None:
                    return following - 1
                previous = next((ln.new_line for ln in reversed(lines[:i]) if ln.new_line is not None), None)
                return previous - 1 if previous is not None else 0
    return max(comment.line - 1, 0)


def build_diagnostics(session: ReviewSession, path: str, include_resolved: bool = False) -> list[dict]:
    diagnostics = []
    for line, comment in comment_positions(session, path, include_resolved):
        prefix = "[old] " if isinstance(comment, LineComment) and comment.side is Side.OLD else ""
        suffix = f" (line {comment.line})" if isinstance(comment, LineComment) else ""
        diagnostics.append(
            {
                "range": _range(line),
                "severity": SEVERITY_HINT if comment.resolved else SEVERITY_WARNING,
                "source": SOURCE,
                "message": f"{prefix}{comment.message}{suffix}",
            }
        )
    return diagnostics


def comment_positions(
    session: ReviewSession, path: str, include_resolved: bool = False
) -> list[tuple[int, FileComment | LineComment]]:
    """Every visible comment on ``path`` with the 0-based line it is shown on.

    The file comment comes first, on line 0.
    """
    record = session.merged_record(path)
    positions: list[tuple[int, FileComment | LineComment]] = []
    fc = record.file_comment
    if fc is not None and (include_resolved or not fc.resolved):
        positions.append((0, fc))
    comments = [c for c in record.sorted_line_comments() if include_resolved or not c.resolved]
    fd = session.file_diff(path) if any(c.side is Side.OLD for c in comments) else None
    positions += [(_diagnostic_line(fd, c), c) for c in comments]
    return positions


def build_hover(session: ReviewSession, path: str, line: int, include_resolved: bool = False) -> dict | None:
    positions = comment_positions(session, path, include_resolved)
    snippets = [
        f"[old] {c.message}" if c.side is Side.OLD else c.message
        for shown, c in positions
        if shown == line and isinstance(c, LineComment)
    ]
    if not snippets:
        # Fall back to the file comment anywhere in the file.
        snippets = [c.message for _, c in positions if isinstance(c, FileComment)]
    if not snippets:
        return None
    return {"contents": {"kind": "markdown", "value": "\n\n---\n\n".join(snippets)}}


def inlay_label(comment: FileComment | LineComment) -> str:
    first = comment.message.split("\n", 1)[0].strip()
    if len(first) > INLAY_MAX:
        first = first[:INLAY_MAX] + "…"
    prefix = "[old] " if isinstance(comment, LineComment) and comment.side is Side.OLD else ""
    return f"remark: {prefix}{first}"


def build_inlay_hints(
    session: ReviewSession, path: str, first: int, last: int, include_resolved: bool = False
) -> list[dict]:
    """Hints at the end of each commented line between ``first`` and ``last``."""
    try:
        lines = (session.repo.root / path).read_text(encoding="utf-8", errors="replace").split("\n")
    except OSError:
        lines = []
    hints = []
    for line, comment in comment_positions(session, path, include_resolved):
        if not first <= line <= last:
            continue
        text = lines[line] if line < len(lines) else ""
        hints.append(
            {
                # LSP positions count UTF-16 code units
                "position": {"line": line, "character": len(text.encode("utf-16-le")) // 2},
                "label": inlay_label(comment),
                "paddingLeft": True,
                "paddingRight": False,
            }
        )
    return hints


def _action(title: str, command: str, args: dict | None = None) -> dict:
    return {
        "title": title,
        "kind": "quickfix",
        "command": {"title": title, "command": command, "arguments": [args] if args is not None else []},
    }


def build_code_actions(session: ReviewSession, path: str, line: int, include_resolved: bool = False) -> list[dict]:
    """Actions for the cursor on 0-based ``line`` of ``path``."""
    actions = [
        _action("Remark: Add line comment", ADD_DRAFT_COMMENT, {"file": path, "line": line + 1, "side": "new"}),
        _action("Remark: Add file comment", ADD_DRAFT_COMMENT, {"file": path, "fileComment": True}),
        _action("Remark: Open prompt", OPEN_PROMPT),
    ]
    for shown, comment in comment_positions(session, path, include_resolved):
        verb = "Unresolve" if comment.resolved else "Resolve"
        if isinstance(comment, FileComment):
            args = {"file": path, "fileComment": True, "resolved": not comment.resolved}
            actions.append(_action(f"Remark: {verb} file comment", RESOLVE_COMMENT, args))
        elif shown == line:
            side = " [old]" if comment.side is Side.OLD else ""
            args = {"file": path, "line": comment.line, "side": comment.side.value, "resolved": not comment.resolved}
            actions.append(_action(f"Remark: {verb} comment{side}", RESOLVE_COMMENT, args))
    return actions


class JsonRpcError(Exception):
    def __init__(self, code: int, message: str):
        super().__init__(message)
        self.code = code


class LanguageServer:
    def __init__(self, config: dict, repo_path: str = ".", reader=None, writer=None, max_workers: int = _MAX_WORKERS):
        self.config = config
        self.repo_path = repo_path
        self.reader = reader if reader is not None else sys.stdin.buffer
        self.writer = writer if writer is not None else sys.stdout.buffer
        self.open_documents: set[str] = set()
        self.client_capabilities: dict = {}
        self.shutdown_requested = False
        self._store = None
        self._store_lock = threading.RLock()
        self._write_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._next_id = 0
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="remark-lsp")
        self._handlers = {
            "initialize": self.on_initialize,
            "initialized": self.on_initialized,
            "shutdown": self.on_shutdown,
            "textDocument/didOpen": self.on_did_open,
            "textDocument/didSave": self.on_did_save,
            "textDocument/didClose": self.on_did_close,
            "textDocument/didChange": lambda params: None,
            "textDocument/hover": self.on_hover,
            "textDocument/inlayHint": self.on_inlay_hint,
            "textDocument/codeAction": self.on_code_action,
            "workspace/didChangeWatchedFiles": self.on_did_change_watched_files,
            "workspace/executeCommand": self.on_execute_command,
        }

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def read_message(self) -> dict | None:
        """Read one framed message; None at end of input."""
        length = None
        while True:
            header = self.reader.readline()
            if not header:
                return None
            header = header.decode("ascii", "replace").strip()
            if not header:
                if length is None:
                    continue
                break
            name, _, value = header.partition(":")
            if name.strip().lower() == "content-length":
                length = int(value.strip())
        body = self.reader.read(length)
        if len(body) < length:
            return None
        return json.loads(body.decode("utf-8"))

    def send(self, message: dict) -> None:
        message = {"jsonrpc": "2.0", **message}
        body = json.dumps(message, ensure_ascii=False).encode("utf-8")
        with self._write_lock:
            self.writer.write(f"Content-Length: {len(body)}\r\n\r\n".encode("ascii") + body)
            self.writer.flush()

    def notify(self, method: str, params) -> None:
        self.send({"method": method, "params": params})

    def request(self, method: str, params) -> None:
        """Send a server->client request. Responses are not awaited."""
        with self._state_lock:
            self._next_id += 1
            request_id = f"remark-{self._next_id}"
        self.send({"id": request_id, "method": method, "params": params})

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def serve_forever(self) -> int:
        try:
            while True:
                try:
                    message = self.read_message()
                except (ValueError, UnicodeDecodeError) as e:
                    logger.warning("Dropping unreadable message: %s", e)
                    self.send({"id": None, "error": {"code": PARSE_ERROR, "message": str(e)}})
                    continue
                if message is None:
                    break
                method = message.get("method")
                if method is None:
                    continue  # response to one of our requests
                if method == "exit":
                    break
                if method in ("initialize", "shutdown"):
                    self.dispatch(message)
                else:
                    self._pool.submit(self.dispatch, message)
        finally:
            self._pool.shutdown(wait=True)
            if self._store is not None:
                self._store.close()
        return 0 if self.shutdown_requested else 1

    def dispatch(self, message: dict) -> None:
        method = message.get("method")
        request_id = message.get("id")
        is_request = "id" in message
        try:
            handler = self._handlers.get(method)
            if handler is None:
                if is_request:
                    raise JsonRpcError(METHOD_NOT_FOUND, f"method not found: {method}")
                return
            result = handler(message.get("params") or {})
        except JsonRpcError as e:
            self._fail(method, request_id, is_request, e.code, str(e))
        except ArgumentError as e:
            self._fail(method, request_id, is_request, INVALID_PARAMS, str(e))
        except RemarkError as e:
            self._fail(method, request_id, is_request, INTERNAL_ERROR, str(e))
        except Exception as e:
            logger.exception("Unhandled error in %s", method)
            self._fail(method, request_id, is_request, INTERNAL_ERROR, f"{type(e).__name__}: {e}")
        else:
            if is_request:
                self.send({"id": request_id, "result": result})

    def _fail(self, method, request_id, is_request: bool, code: int, message: str) -> None:
        logger.warning("%s failed: %s", method, message)
        if is_request:
            self.send({"id": request_id, "error": {"code": code, "message": message}})
        else:
            self.notify("window/showMessage", {"type": 1, "message": f"remark: {message}"})

    # ------------------------------------------------------------------
    # Session helpers
    # ------------------------------------------------------------------

    def session(self, view_name: str | None = None) -> ReviewSession:
        with self._state_lock:
            if self._store is None:
                self._store = build_store(GitRepo.discover(self.repo_path), self.config)
        return open_session(self.config, view_name, store=self._store, lock=self._store_lock)

    def _relative(self, session: ReviewSession, uri: str) -> str:
        return session.repo.relative_path(uri_to_path(uri))

    def publish(self, uri: str, session: ReviewSession | None = None) -> None:
        session = session or self.session()
        try:
            path = self._relative(session, uri)
        except RemarkError:
            return  # not in this repository
        include_resolved = bool(self.config.get("include_resolved"))
        self.notify(
            "textDocument/publishDiagnostics",
            {"uri": uri, "diagnostics": build_diagnostics(session, path, include_resolved)},
        )

    def publish_all(self, session: ReviewSession | None = None) -> None:
        session = session or self.session()
        with self._state_lock:
            uris = sorted(self.open_documents)
        for uri in uris:
            self.publish(uri, session)

    def open_draft(self, location: DraftLocation) -> dict:
        uri = path_to_uri(location.path)
        line = max(location.line - 1, 0)
        experimental = self.client_capabilities.get("experimental") or {}
        if experimental.get(DRAFT_CAPABILITY):
            self.notify(OPEN_DRAFT_NOTIFICATION, {"uri": uri, "line": line})
        else:
            self.request("window/showDocument", {"uri": uri, "takeFocus": True, "selection": _range(line)})
        return {"uri": uri, "line": line}

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def on_initialize(self, params: dict) -> dict:
        self.client_capabilities = params.get("capabilities") or {}
        root = params.get("rootUri") or params.get("rootPath")
        if root:
            self.repo_path = str(uri_to_path(root))
        try:
            version = importlib.metadata.version("remark")
        except importlib.metadata.PackageNotFoundError:
            version = "0"
        return {
            "capabilities": {
                "textDocumentSync": {"openClose": True, "change": 0, "save": {"includeText": False}},
                "hoverProvider": True,
                "inlayHintProvider": True,
                "codeActionProvider": {"codeActionKinds": ["quickfix"]},
                "executeCommandProvider": {"commands": COMMANDS},
            },
            "serverInfo": {"name": "remark", "version": version},
        }

    def on_initialized(self, params) -> None:
        watched = (self.client_capabilities.get("workspace") or {}).get("didChangeWatchedFiles") or {}
        if not watched.get("dynamicRegistration"):
            return
        try:
            draft = DraftReconciler(self.session()).path
        except RemarkError as e:
            logger.info("Not watching the draft: %s", e)
            return
        self.request(
            "client/registerCapability",
            {
                "registrations": [
                    {
                        "id": DRAFT_WATCH_ID,
                        "method": "workspace/didChangeWatchedFiles",
                        "registerOptions": {"watchers": [{"globPattern": draft.as_posix()}]},
                    }
                ]
            },
        )

    def on_shutdown(self, params) -> None:
        self.shutdown_requested = True
        return None

    def on_did_open(self, params: dict) -> None:
        uri = params["textDocument"]["uri"]
        with self._state_lock:
            self.open_documents.add(uri)
        self.publish(uri)

    def on_did_close(self, params: dict) -> None:
        uri = params["textDocument"]["uri"]
        with self._state_lock:
            self.open_documents.discard(uri)
        self.notify("textDocument/publishDiagnostics", {"uri": uri, "diagnostics": []})

    def _sync_draft(self, session: ReviewSession, reconciler: DraftReconciler) -> None:
        result = reconciler.sync()
        for error in result.errors:
            self.notify("window/logMessage", {"type": 2, "message": f"remark draft: {error}"})
        session.refresh()
        self.publish_all(session)

    def on_did_save(self, params: dict) -> None:
        uri = params["textDocument"]["uri"]
        session = self.session()
        reconciler = DraftReconciler(session)
        if reconciler.should_sync(uri_to_path(uri)):
            self._sync_draft(session, reconciler)
        else:
            self.publish(uri, session)

    def on_did_change_watched_files(self, params: dict) -> None:
        session = self.session()
        reconciler = DraftReconciler(session)
        if any(reconciler.is_draft(uri_to_path(change["uri"])) for change in params.get("changes") or []):
            self._sync_draft(session, reconciler)

    def _document(self, params: dict) -> tuple[ReviewSession, str] | None:
        session = self.session()
        try:
            return session, self._relative(session, params["textDocument"]["uri"])
        except RemarkError:
            return None  # not in this repository

    def on_hover(self, params: dict) -> dict | None:
        document = self._document(params)
        if document is None:
            return None
        session, path = document
        return build_hover(session, path, params["position"]["line"], bool(self.config.get("include_resolved")))

    def on_inlay_hint(self, params: dict) -> list[dict]:
        document = self._document(params)
        if document is None:
            return []
        session, path = document
        span = params["range"]
        return build_inlay_hints(
            session, path, span["start"]["line"], span["end"]["line"], bool(self.config.get("include_resolved"))
        )

    def on_code_action(self, params: dict) -> list[dict]:
        document = self._document(params)
        if document is None:
            return []
        session, path = document
        return build_code_actions(
            session, path, params["range"]["start"]["line"], bool(self.config.get("include_resolved"))
        )

    def on_execute_command(self, params: dict):
        command = params.get("command")
        arguments = params.get("arguments") or []
        args = arguments[0] if arguments else {}
        if not isinstance(args, dict):
            raise ArgumentError(f"{command} expects a single object argument")

        if command in (OPEN_DRAFT, OPEN_PROMPT):
            session = self.session(args.get("view"))
            reconciler = DraftReconciler(session)
            reconciler.ensure_exists()
            if command == OPEN_PROMPT:
                self._sync_draft(session, reconciler)
            return self.open_draft(DraftLocation(reconciler.path, 1))

        session = self.session(args.get("view"))
        path = self._file_arg(session, args)
        line, side = self._target_args(args)

        if command == CREATE_COMMENT:
            message = args.get("message")
            if not isinstance(message, str) or not message.strip():
                raise ArgumentError("createComment needs a non-empty 'message'")
            session.add_comment(path, message, line=line, side=side)
        elif command == RESOLVE_COMMENT:
            resolved = bool(args.get("resolved", True))
            session.set_resolved(path, resolved=resolved, line=line, side=side)
            if resolved:
                DraftReconciler(session).remove(path, LineKey(side, line) if line is not None else None)
        elif command == ADD_DRAFT_COMMENT:
            location = DraftReconciler(session).start_comment(path, line, side)
            return self.open_draft(location)
        else:
            raise JsonRpcError(INVALID_PARAMS, f"unknown command: {command}")
        self.publish_all(session)
        return None

    def _file_arg(self, session: ReviewSession, args: dict) -> str:
        file_arg = args.get("file") or args.get("uri")
        if not isinstance(file_arg, str) or not file_arg:
            raise ArgumentError("missing 'file' argument")
        if file_arg.startswith("file:"):
            return self._relative(session, file_arg)
        return session.repo.relative_path(file_arg)

    @staticmethod
    def _target_args(args: dict) -> tuple[int | None, Side | None]:
        file_comment = bool(args.get("fileComment"))
        line = args.get("line")
        if file_comment and line is not None:
            raise ArgumentError("'fileComment' and 'line' cannot be used together")
        if line is None:
            if not file_comment:
                raise ArgumentError("pass either 'fileComment': true or a 'line'")
            return None, None
        if isinstance(line, bool) or not isinstance(line, int) or line < 1:
            raise ArgumentError("'line' must be a positive integer")
        side = args.get("side")
        if side is not None and not isinstance(side, str):
            raise ArgumentError("'side' must be \"old\" or \"new\"")
        try:
            side = Side.parse(side, default=Side.NEW)
        except ValueError as e:
            raise ArgumentError(str(e)) from None
        return line, side


def serve(config: dict, repo_path: str = ".") -> int:
    server = LanguageServer(config, repo_path)
    return server.serve_forever()
