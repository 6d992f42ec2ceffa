"""Build a ReviewSession from CLI/LSP settings.

This factory lives in remark_cli so neither remark_core nor remark_store
know about the config file format or command-line flags.
"""

from __future__ import annotations

import logging
import threading

from remark_core.config import diff_context
from remark_core.review import ReviewSession
from remark_core.views import ViewDescriptor
from remark_store.git import GitRepo
from remark_store.notes import GitNotesStore, configured_notes_ref

logger = logging.getLogger(__name__)


def build_store(repo: GitRepo, config: dict) -> GitNotesStore:
    """Notes ref selection: --ref / REMARK_NOTES_REF / .remark.yml, then
    ``remark.notesRef``, then ``refs/notes/remark``."""
    notes_ref = configured_notes_ref(repo, config.get("notes_ref"))
    logger.debug("Using notes ref %s", notes_ref)
    return GitNotesStore(
        repo,
        notes_ref,
        remote=config.get("remote") or "origin",
        fetch=bool(config.get("fetch_notes", True)),
    )


def open_session(
    config: dict,
    view_name: str | None = None,
    repo_path: str = ".",
    store: GitNotesStore | None = None,
    lock: threading.RLock | None = None,
) -> ReviewSession:
    repo = store.repo if store is not None else GitRepo.discover(repo_path)
    if store is None:
        store = build_store(repo, config)
    base_ref = config.get("base_ref")
    view = ViewDescriptor.parse(view_name, base_ref)
    return ReviewSession(repo, store, view, diff_context(repo, config), base_ref=base_ref, lock=lock)


def repo_path_arg(session: ReviewSession, path: str) -> str:
    """A user-supplied file argument as a repository-relative path."""
    return session.repo.relative_path(path)


def session_from_context(ctx, view_name: str | None = None, **overrides) -> ReviewSession:
    """Open a session from the group's config plus per-command overrides."""
    obj = ctx.obj or {}
    config = dict(obj.get("config") or {})
    for key, value in overrides.items():
        if value is not None:
            config[key] = value
    return open_session(config, view_name, obj.get("repo_path", "."))
