"""Note codec: FileRecord <-> the text stored in a git note.

A note is human readable: a marker comment, one fenced JSON block, then a
markdown rendering of the same data. Only the JSON block is read back; the
markdown is regenerated from it on every encode, so hand edits to the prose
are discarded.

Encoding is deterministic (sorted comments, sorted keys, fixed indentation),
which lets the store detect no-op rewrites by comparing bytes.
"""

from __future__ import annotations

import json
import logging

from remark_store.errors import ParseError
from remark_store.models import FileComment, FileRecord, LineComment, LineKey, Side

logger = logging.getLogger(__name__)

NOTE_MARKER = "<!-- remark:file-record v3 -->"

_JSON_FENCE = "```json"
_FENCE = "```"


def _record_to_dict(record: FileRecord) -> dict:
    data: dict = {
        "file_comment": (
            {"message": record.file_comment.message, "resolved": record.file_comment.resolved}
            if record.file_comment is not None
            else None
        ),
        "line_comments": [
            {"side": c.side.value, "line": c.line, "message": c.message, "resolved": c.resolved}
            for c in record.sorted_line_comments()
        ],
        "reviewed": record.reviewed,
    }
    if record.reviewed_digest is not None:
        data["reviewed_digest"] = record.reviewed_digest
    return data


def _first_line(message: str) -> str:
    lines = message.strip().splitlines()
    if not lines:
        return ""
    first = lines[0].rstrip()
    return first + (" …" if len(lines) > 1 else "")


def _render_markdown(record: FileRecord) -> str:
    lines = ["# Review notes", ""]
    lines.append(f"Reviewed: {'yes' if record.reviewed else 'no'}")
    if record.file_comment is not None:
        mark = "x" if record.file_comment.resolved else " "
        lines.append("")
        lines.append("## File comment")
        lines.append(f"- [{mark}] {_first_line(record.file_comment.message)}".rstrip())
    if record.line_comments:
        lines.append("")
        lines.append("## Line comments")
        for c in record.sorted_line_comments():
            mark = "x" if c.resolved else " "
            lines.append(f"- [{mark}] line {c.line} ({c.side.value}): {_first_line(c.message)}".rstrip())
    return "\n".join(lines)


def encode(record: FileRecord) -> str:
    """Serialize a record to note text. Identical records give identical text."""
    payload = json.dumps(_record_to_dict(record), indent=2, sort_keys=True, ensure_ascii=False)
    return f"{NOTE_MARKER}\n{_JSON_FENCE}\n{payload}\n{_FENCE}\n\n{_render_markdown(record)}\n"


def _extract_json(text: str) -> str:
    lines = text.splitlines()
    for i, line in enumerate(lines):
        if line.strip() != _JSON_FENCE:
            continue
        body: list[str] = []
        for inner in lines[i + 1 :]:
            if inner.strip() == _FENCE:
                return "\n".join(body)
            body.append(inner)
        raise ParseError("unterminated JSON block in note")
    raise ParseError("note has no structured JSON block")


def _require(value, kind, what: str):
    # bool is an int subclass; reject it where an int is expected.
    if kind is int and isinstance(value, bool):
        raise ParseError(f"{what} must be an integer")
    if not isinstance(value, kind):
        raise ParseError(f"{what} has the wrong type ({type(value).__name__})")
    return value


def _dict_to_record(data) -> FileRecord:
    _require(data, dict, "note payload")
    record = FileRecord()

    fc = data.get("file_comment")
    if fc is not None:
        _require(fc, dict, "file_comment")
        record.file_comment = FileComment(
            message=_require(fc.get("message"), str, "file_comment.message"),
            resolved=_require(fc.get("resolved", False), bool, "file_comment.resolved"),
        )

    for i, raw in enumerate(_require(data.get("line_comments", []), list, "line_comments")):
        _require(raw, dict, f"line_comments[{i}]")
        try:
            side = Side.parse(_require(raw.get("side"), str, f"line_comments[{i}].side"))
        except ValueError as e:
            raise ParseError(str(e)) from None
        line = _require(raw.get("line"), int, f"line_comments[{i}].line")
        if line < 1:
            raise ParseError(f"line_comments[{i}].line must be >= 1")
        key = LineKey(side, line)
        if key in record.line_comments:
            raise ParseError(f"duplicate line comment for {key.label()}")
        record.line_comments[key] = LineComment(
            side=side,
            line=line,
            message=_require(raw.get("message"), str, f"line_comments[{i}].message"),
            resolved=_require(raw.get("resolved", False), bool, f"line_comments[{i}].resolved"),
        )

    record.reviewed = _require(data.get("reviewed", False), bool, "reviewed")
    digest = data.get("reviewed_digest")
    if digest is not None:
        record.reviewed_digest = _require(digest, str, "reviewed_digest")
    return record


def decode(text: str) -> FileRecord:
    """Parse note text. Raises ParseError on missing or malformed JSON."""
    raw = _extract_json(text)
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ParseError(f"invalid JSON in note: {e}") from None
    return _dict_to_record(data)
