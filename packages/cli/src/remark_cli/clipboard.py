"""Clipboard delivery for `remark prompt --copy`.

Tries the desktop clipboard tools first. Over SSH or in a bare terminal none
of them work, so fall back to an OSC 52 escape sequence, which most modern
terminal emulators turn into a clipboard write on the local machine.
"""

from __future__ import annotations

import base64
import logging
import os
import shutil
import subprocess
import sys

from remark_store.errors import ClipboardError

logger = logging.getLogger(__name__)

# (executable, extra args). Order matters: macOS, Wayland, then X11 tools.
_DESKTOP_TOOLS = [
    ("pbcopy", []),
    ("wl-copy", []),
    ("xclip", ["-selection", "clipboard"]),
    ("xsel", ["--clipboard", "--input"]),
]

_TOOL_TIMEOUT = 5


def copy_desktop(text: str) -> str:
    """Copy with the first available desktop tool and return its name."""
    for tool, args in _DESKTOP_TOOLS:
        exe = shutil.which(tool)
        if exe is None:
            continue
        try:
            result = subprocess.run(
                [exe, *args],
                input=text,
                text=True,
                capture_output=True,
                timeout=_TOOL_TIMEOUT,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.debug("%s failed: %s", tool, e)
            continue
        if result.returncode == 0:
            return tool
        logger.debug("%s exited %d: %s", tool, result.returncode, result.stderr.strip())
    raise ClipboardError("no working desktop clipboard tool (tried pbcopy, wl-copy, xclip, xsel)")


def osc52_sequence(text: str) -> str:
    payload = base64.b64encode(text.encode("utf-8")).decode("ascii")
    seq = f"\x1b]52;c;{payload}\x07"
    # tmux only forwards OSC 52 wrapped in its passthrough sequence.
    if os.environ.get("TMUX"):
        seq = "\x1bPtmux;" + seq.replace("\x1b", "\x1b\x1b") + "\x1b\\"
    return seq


def copy_osc52(text: str, stream=None) -> None:
    stream = stream if stream is not None else sys.stderr
    if not stream.isatty():
        raise ClipboardError("OSC 52 needs a terminal, but stderr is not one")
    try:
        stream.write(osc52_sequence(text))
        stream.flush()
    except OSError as e:
        raise ClipboardError(f"writing OSC 52 sequence failed: {e}") from None


def copy_to_clipboard(text: str, stream=None) -> str:
    """Copy ``text``; returns how it was delivered ("osc52" or the tool name).

    Raises ClipboardError only when both the desktop clipboard and OSC 52
    fail.
    """
    try:
        return copy_desktop(text)
    except ClipboardError as desktop_error:
        logger.debug("Desktop clipboard unavailable (%s); falling back to OSC 52", desktop_error)
        try:
            copy_osc52(text, stream)
        except ClipboardError as osc_error:
            raise ClipboardError(f"{desktop_error}; {osc_error}") from None
        return "osc52"
