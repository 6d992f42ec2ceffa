"""Markdown pieces shared by the prompt document and the draft.

Both documents use the same layout so a prompt can be pasted into the draft
(and vice versa) and parse the same way:

    # Review

    Target: all

    ## path/to/file.py

    ### File comment

    ```text
    whole-file remark
    ```

    ### Line comments

    - line 42 (new)

    ```python
    if user is None:
    ```

    ```text
    fix null check
    ```

Only ``text`` fences hold comment bodies; any other fence is a code snippet.
"""

from __future__ import annotations

import re

from remark_core.diff import DiffLine
from remark_core.utils.code import language_for_path
from remark_core.views import ViewDescriptor, ViewKind
from remark_store.models import LineKey

DOCUMENT_TITLE = "# Review"
FILE_COMMENT_HEADING = "### File comment"
LINE_COMMENTS_HEADING = "### Line comments"
BODY_INFO = "text"
PLACEHOLDER = "<!-- remark:write comment -->"
NO_COMMENTS = "No comments."

_BACKTICK_RUN = re.compile(r"`+")


def fence_for(body: str) -> str:
    """A backtick fence longer than any backtick run inside ``body``."""
    longest = max((len(m.group(0)) for m in _BACKTICK_RUN.finditer(body)), default=0)
    return "`" * max(3, longest + 1)


def fenced(body: str, info: str = "") -> list[str]:
    fence = fence_for(body)
    return [f"{fence}{info}", *body.split("\n"), fence]


def document_header(view: ViewDescriptor) -> list[str]:
    lines = [DOCUMENT_TITLE, "", f"Target: {view.kind.value}"]
    if view.kind is ViewKind.BASE:
        lines.append(f"Base: {view.base_ref}")
    return lines


def line_item(key: LineKey) -> str:
    return f"- line {key.line} ({key.side.value})"


def snippet_block(path: str, snippet: list[DiffLine]) -> list[str]:
    if not snippet:
        return []
    return fenced("\n".join(line.text for line in snippet), language_for_path(path) or "")
