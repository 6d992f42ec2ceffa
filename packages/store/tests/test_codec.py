"""Tests for the note codec."""

from __future__ import annotations

import json

import pytest

from remark_store.codec import NOTE_MARKER, decode, encode
from remark_store.errors import ParseError
from remark_store.models import FileComment, FileRecord, LineComment, LineKey, Side


def _with_lines(*comments: LineComment, **kwargs) -> FileRecord:
    return FileRecord(line_comments={c.key: c for c in comments}, **kwargs)


class TestRoundTrip:
    @pytest.mark.parametrize(
        "record",
        [
            FileRecord(reviewed=True, reviewed_digest="abc"),
            FileRecord(file_comment=FileComment("whole file", resolved=True)),
            _with_lines(
                LineComment(Side.NEW, 42, "fix null check"),
                LineComment(Side.OLD, 7, "why was this removed?\nsecond line", resolved=True),
                file_comment=FileComment("overall"),
            ),
            _with_lines(LineComment(Side.NEW, 1, "unicode ✓ and ```backticks```")),
        ],
    )
    def test_decode_inverts_encode(self, record):
        assert decode(encode(record)) == record

    def test_encoding_is_deterministic_regardless_of_insertion_order(self):
        a = _with_lines(LineComment(Side.NEW, 3, "b"), LineComment(Side.OLD, 9, "a"))
        b = _with_lines(LineComment(Side.OLD, 9, "a"), LineComment(Side.NEW, 3, "b"))
        assert encode(a) == encode(b)

    def test_old_side_sorts_first(self):
        record = _with_lines(LineComment(Side.NEW, 1, "new"), LineComment(Side.OLD, 50, "old"))
        payload = json.loads(encode(record).split("```json\n")[1].split("\n```")[0])
        assert [c["side"] for c in payload["line_comments"]] == ["old", "new"]


class TestWireFormat:
    def test_marker_json_and_markdown(self):
        text = encode(_with_lines(LineComment(Side.NEW, 42, "fix null check")))
        assert text.startswith(NOTE_MARKER + "\n```json\n")
        assert "- [ ] line 42 (new): fix null check" in text
        assert text.endswith("\n")

    def test_schema_fields(self):
        text = encode(_with_lines(LineComment(Side.NEW, 42, "x"), reviewed=False))
        payload = json.loads(text.split("```json\n")[1].split("\n```")[0])
        assert payload == {
            "file_comment": None,
            "line_comments": [{"line": 42, "message": "x", "resolved": False, "side": "new"}],
            "reviewed": False,
        }

    def test_markdown_edits_are_ignored(self):
        text = encode(_with_lines(LineComment(Side.NEW, 5, "original")))
        tampered = text.replace("line 5 (new): original", "line 5 (new): edited by hand")
        assert decode(tampered).get_line_comment(Side.NEW, 5).message == "original"


class TestDecodeErrors:
    def test_missing_json_block(self):
        with pytest.raises(ParseError, match="no structured JSON block"):
            decode("# Review notes\n\nnothing here\n")

    def test_unterminated_block(self):
        with pytest.raises(ParseError, match="unterminated"):
            decode("```json\n{\"reviewed\": true}\n")

    def test_invalid_json(self):
        with pytest.raises(ParseError, match="invalid JSON"):
            decode("```json\n{not json}\n```\n")

    def test_bad_side(self):
        text = '```json\n{"line_comments": [{"side": "left", "line": 1, "message": "m"}]}\n```\n'
        with pytest.raises(ParseError, match="invalid side"):
            decode(text)

    def test_bool_is_not_a_line_number(self):
        text = '```json\n{"line_comments": [{"side": "new", "line": true, "message": "m"}]}\n```\n'
        with pytest.raises(ParseError, match="integer"):
            decode(text)

    def test_duplicate_anchor_rejected(self):
        comment = {"side": "new", "line": 3, "message": "m"}
        text = "```json\n" + json.dumps({"line_comments": [comment, comment]}) + "\n```\n"
        with pytest.raises(ParseError, match="duplicate"):
            decode(text)

    def test_missing_optional_fields_default(self):
        record = decode('```json\n{"line_comments": [{"side": "old", "line": 2, "message": "m"}]}\n```\n')
        assert record.line_comments == {LineKey(Side.OLD, 2): LineComment(Side.OLD, 2, "m", False)}
        assert record.reviewed is False
