"""In-memory store used for dry runs and tests.

Records are kept as encoded note text rather than live objects so that this
store has exactly the same byte-level semantics as GitNotesStore: no-op
rewrites are detected by comparing encodings, and callers can never mutate
stored state without going through save().
"""

from __future__ import annotations

import logging
import threading

from remark_store.base import BaseStore
from remark_store.codec import decode, encode
from remark_store.errors import ParseError
from remark_store.models import FileRecord, SyntheticId

logger = logging.getLogger(__name__)


class InMemoryStore(BaseStore):
    """Keeps notes in a dict keyed by SyntheticId oid."""

    def __init__(self):
        self.notes: dict[str, str] = {}
        self.writes = 0
        self._lock = threading.Lock()

    def load(self, sid: SyntheticId) -> FileRecord:
        text = self.notes.get(sid.oid)
        if text is None:
            return FileRecord()
        try:
            return decode(text)
        except ParseError as e:
            logger.warning("Ignoring corrupt record %s: %s", sid.oid, e)
            return FileRecord()

    def save(self, sid: SyntheticId, record: FileRecord) -> bool:
        with self._lock:
            if record.is_empty():
                if self.notes.pop(sid.oid, None) is None:
                    return False
                self.writes += 1
                return True
            text = encode(record)
            if self.notes.get(sid.oid) == text:
                return False
            self.notes[sid.oid] = text
            self.writes += 1
            return True
