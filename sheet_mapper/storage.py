"""
Storage collaborator contract.

The engine never persists anything itself: it hands canonical rows to a
collaborator keyed by dataset kind and owning user.  Collaborators report
failures by raising ``StorageInsertFailure``.

``InMemoryStorage`` is the reference implementation used by the HTTP app
and the tests.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Mapping, Protocol, Sequence, Tuple

from sheet_mapper.logging_setup import get_logger
from sheet_mapper.schema import DatasetKind

logger = get_logger("storage")

TABLE_NAMES: Mapping[DatasetKind, str] = {
    DatasetKind.TRANSACTIONS: "transactions",
    DatasetKind.DEALS: "crm_deals",
    DatasetKind.BUDGET: "budgets",
    DatasetKind.GENERIC: "custom_datasets",
}


class StorageMode(str, Enum):
    APPEND = "append"
    OVERWRITE = "overwrite"

    @classmethod
    def from_label(cls, label: Any) -> "StorageMode":
        text = str(label or "").strip().lower()
        for mode in cls:
            if mode.value == text:
                return mode
        return cls.APPEND


class StorageCollaborator(Protocol):
    def insert(
        self,
        kind: DatasetKind,
        user_id: str,
        rows: Sequence[Dict[str, Any]],
        mode: StorageMode = StorageMode.APPEND,
    ) -> int:
        """Persist *rows*; return how many were written."""
        ...


class InMemoryStorage:
    """Dict-backed storage, one row list per (user, table)."""

    def __init__(self) -> None:
        self._tables: Dict[Tuple[str, str], List[Dict[str, Any]]] = {}

    def insert(
        self,
        kind: DatasetKind,
        user_id: str,
        rows: Sequence[Dict[str, Any]],
        mode: StorageMode = StorageMode.APPEND,
    ) -> int:
        key = (user_id, TABLE_NAMES[kind])
        if mode is StorageMode.OVERWRITE or key not in self._tables:
            self._tables[key] = []
        self._tables[key].extend(dict(r, user_id=user_id) for r in rows)
        logger.info(
            "Stored %d row(s) in %s for user %s (%s)",
            len(rows), key[1], user_id, mode.value,
        )
        return len(rows)

    def rows(self, kind: DatasetKind, user_id: str) -> List[Dict[str, Any]]:
        return list(self._tables.get((user_id, TABLE_NAMES[kind]), []))
