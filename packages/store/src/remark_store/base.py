"""Abstract store interface.

The review session depends on BaseStore, not on a concrete backend, so the
git-notes store can be swapped for an in-memory one in dry runs and tests.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from remark_store.models import FileRecord, SyntheticId


class BaseStore(ABC):
    """Persistence for FileRecords keyed by SyntheticId.

    Implementations never persist an EMPTY record: saving one removes
    whatever was stored under that id.
    """

    @abstractmethod
    def load(self, sid: SyntheticId) -> FileRecord:
        """Return the record stored under ``sid``, or an empty FileRecord.

        A corrupt stored record is logged and treated as empty, never raised.
        """

    @abstractmethod
    def save(self, sid: SyntheticId, record: FileRecord) -> bool:
        """Store ``record`` under ``sid``. Returns True if anything changed."""

    def close(self) -> None:
        """Release any resources held by the store.

        Default is a no-op so callers can always call close() safely.
        """
