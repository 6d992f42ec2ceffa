"""GitNotesStore: review state kept as git notes inside the repository.

Why git notes:
- Nothing leaves the repository: no service, no database, no extra files in
  the work tree.
- Notes travel with ``git push``/``git fetch`` of the notes ref, so a review
  can be shared the same way the code is.
- A dedicated ref (``refs/notes/remark`` by default) keeps review state out of
  ``git log`` and away from other notes users.

Each FileRecord is one note. The note is attached to the record's
SyntheticId, which is the id of a small blob holding the canonical key of
(HEAD, view, path). Git only annotates objects that exist, so the key blob is
written before the note is attached.
"""

from __future__ import annotations

import logging
import threading
import time

from remark_store.base import BaseStore
from remark_store.codec import decode, encode
from remark_store.errors import NotesAccessError, ParseError
from remark_store.git import GitRepo
from remark_store.models import FileRecord, SyntheticId

logger = logging.getLogger(__name__)

DEFAULT_NOTES_REF = "refs/notes/remark"
NOTES_REF_CONFIG_KEY = "remark.notesRef"

_NOTES_PREFIX = "refs/notes/"


def qualify_notes_ref(name: str) -> str:
    """Expand a short notes ref name (``remark-x``) to ``refs/notes/remark-x``."""
    name = name.strip()
    if name.startswith("refs/"):
        return name
    if name.startswith("notes/"):
        return "refs/" + name
    return _NOTES_PREFIX + name


def configured_notes_ref(repo: GitRepo, override: str | None = None) -> str:
    """Pick the notes ref: explicit override, then ``remark.notesRef``, then the default."""
    if override:
        return qualify_notes_ref(override)
    configured = repo.config_get(NOTES_REF_CONFIG_KEY)
    if configured:
        return qualify_notes_ref(configured)
    return DEFAULT_NOTES_REF


def _is_remark_ref(ref: str) -> bool:
    if ref == DEFAULT_NOTES_REF:
        return True
    return any(ref.startswith(DEFAULT_NOTES_REF + sep) for sep in ("-", ".", "/"))


def purge_notes_refs(repo: GitRepo) -> list[str]:
    """Delete every remark notes ref in the repository.

    Resets ``remark.notesRef`` when it pointed at one of the deleted refs.
    Returns the deleted ref names.
    """
    deleted = []
    for ref in repo.list_refs(_NOTES_PREFIX):
        if _is_remark_ref(ref):
            repo.delete_ref(ref)
            deleted.append(ref)
            logger.debug("Deleted notes ref %s", ref)
    configured = repo.config_get(NOTES_REF_CONFIG_KEY)
    if configured and _is_remark_ref(qualify_notes_ref(configured)):
        repo.config_unset(NOTES_REF_CONFIG_KEY)
    return deleted


def create_notes_ref(repo: GitRepo, ref: str | None = None) -> str:
    """Point ``remark.notesRef`` at a fresh notes ref and return its name.

    Without ``ref`` a timestamped ``refs/notes/remark-<unix-ts>`` name is
    chosen, suffixed with ``-<n>`` until it does not already exist.
    """
    if ref:
        name = qualify_notes_ref(ref)
    else:
        stem = f"{DEFAULT_NOTES_REF}-{int(time.time())}"
        name = stem
        n = 1
        while repo.ref_exists(name):
            name = f"{stem}-{n}"
            n += 1
    repo.config_set(NOTES_REF_CONFIG_KEY, name)
    return name


class GitNotesStore(BaseStore):
    """Stores one FileRecord per SyntheticId as a note under ``notes_ref``.

    A notes ref that does not exist locally means "no notes yet". When
    ``fetch`` is enabled the ref is fetched from ``remote`` once per store
    instance; after that a missing ref is not retried, so reads never pay for
    repeated network round-trips.

    Saves are read-modify-write at note granularity and serialised within the
    process. Two processes writing the same note converge to last-write-wins;
    git updates the notes ref atomically so the note bytes are never torn.
    """

    def __init__(self, repo: GitRepo, notes_ref: str = DEFAULT_NOTES_REF, remote: str = "origin", fetch: bool = True):
        self.repo = repo
        self.notes_ref = qualify_notes_ref(notes_ref)
        self.remote = remote
        self._fetch = fetch
        self._fetch_attempted = False
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"GitNotesStore({self.repo!r}, {self.notes_ref!r})"

    def _ref_available(self) -> bool:
        if self.repo.ref_exists(self.notes_ref):
            return True
        if self._fetch and not self._fetch_attempted:
            self._fetch_attempted = True
            logger.debug("Notes ref %s missing locally; fetching from %s", self.notes_ref, self.remote)
            if self.repo.fetch_ref(self.remote, self.notes_ref):
                return self.repo.ref_exists(self.notes_ref)
        return False

    def _note_blob(self, sid: SyntheticId) -> str | None:
        result = self.repo.run("notes", "--ref", self.notes_ref, "list", sid.oid, check=False)
        if result.returncode == 0:
            return result.stdout.strip() or None
        if "no note found" in result.stderr:
            return None
        raise NotesAccessError(f"reading note for {sid.oid} under {self.notes_ref} failed: {result.stderr.strip()}")

    def read_raw(self, sid: SyntheticId) -> bytes | None:
        """Return the stored note bytes for ``sid``, or None."""
        if not self._ref_available():
            return None
        blob = self._note_blob(sid)
        if blob is None:
            return None
        return self.repo.read_blob(blob, error=NotesAccessError)

    def load(self, sid: SyntheticId) -> FileRecord:
        raw = self.read_raw(sid)
        if raw is None:
            return FileRecord()
        try:
            return decode(raw.decode("utf-8"))
        except (ParseError, UnicodeDecodeError) as e:
            logger.warning("Ignoring corrupt note on %s under %s: %s", sid.oid, self.notes_ref, e)
            return FileRecord()

    def save(self, sid: SyntheticId, record: FileRecord) -> bool:
        with self._lock:
            current = self.read_raw(sid)
            if record.is_empty():
                if current is None:
                    return False
                self.repo.run(
                    "notes", "--ref", self.notes_ref, "remove", "--ignore-missing", sid.oid,
                    env=self.repo.identity_env(),
                    error=NotesAccessError,
                )
                logger.debug("Removed empty note %s", sid.oid)
                return True

            data = encode(record).encode("utf-8")
            if current == data:
                return False
            target = self.repo.hash_object(sid.key, write=True, error=NotesAccessError)
            if target != sid.oid:
                raise NotesAccessError(f"key blob hashed to {target}, expected {sid.oid}")
            blob = self.repo.hash_object(data, write=True, error=NotesAccessError)
            # -C reuses the blob as-is, so the note bytes are exactly `data`.
            self.repo.run(
                "notes", "--ref", self.notes_ref, "add", "-f", "-C", blob, sid.oid,
                env=self.repo.identity_env(),
                error=NotesAccessError,
            )
            logger.debug("Wrote note %s -> %s under %s", sid.oid, blob, self.notes_ref)
            return True
