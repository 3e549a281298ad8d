"""Document store used as the single source of truth for activities.

The pipeline needs very little from its store: point lookup by id, an
equality query capped at a candidate limit, merge-upsert, delete, a full
collection scan, and an atomic commit of a batch of writes.  ``MemoryStore``
covers tests; ``JsonFileStore`` persists the same structure to one JSON file
(``{collection: {doc_id: doc}}``) and replaces the file atomically on commit,
so readers see either the state before a pass or the state after it.
"""

from __future__ import annotations

import copy
import json
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

logger = logging.getLogger(__name__)

ACTIVITIES = "raw_activities"
ATHLETES = "summary_athletes"
LEADERBOARD = "leaderboard"


class StoreUnavailable(RuntimeError):
    """The backing store could not be read or written."""


class WriteBatch:
    """Ordered list of pending writes, applied together by ``DocumentStore.commit``."""

    def __init__(self) -> None:
        self.ops: List[Tuple[str, str, str, Optional[Dict], bool]] = []

    def upsert(self, collection: str, doc_id: str, data: Dict, merge: bool = True) -> None:
        self.ops.append(("upsert", collection, str(doc_id), copy.deepcopy(data), merge))

    def delete(self, collection: str, doc_id: str) -> None:
        self.ops.append(("delete", collection, str(doc_id), None, False))

    def pending(self, collection: str) -> Iterator[Tuple[str, str, Optional[Dict]]]:
        """Yield ``(op, doc_id, data)`` for *collection* in write order."""
        for op, coll, doc_id, data, _ in self.ops:
            if coll == collection:
                yield op, doc_id, data

    def __len__(self) -> int:
        return len(self.ops)


def _apply(data: Dict[str, Dict[str, Dict]], batch: WriteBatch) -> None:
    for op, collection, doc_id, doc, merge in batch.ops:
        docs = data.setdefault(collection, {})
        if op == "delete":
            docs.pop(doc_id, None)
        elif merge and doc_id in docs:
            docs[doc_id].update(doc)
        else:
            docs[doc_id] = dict(doc)


class DocumentStore(ABC):
    """Minimal key/value + predicate-query collection store."""

    @abstractmethod
    def _collections(self) -> Dict[str, Dict[str, Dict]]:
        """Current data (read-only for callers)."""

    @abstractmethod
    def commit(self, batch: WriteBatch) -> None:
        """Apply every write of *batch*, or none of them."""

    def get(self, collection: str, doc_id: str) -> Optional[Dict]:
        doc = self._collections().get(collection, {}).get(str(doc_id))
        return copy.deepcopy(doc) if doc is not None else None

    def query(self, collection: str, field: str, value: Any, limit: int = 50) -> List[Dict]:
        """Documents whose *field* equals *value*, at most *limit* of them."""
        out: List[Dict] = []
        for doc in self._collections().get(collection, {}).values():
            if doc.get(field) == value:
                out.append(copy.deepcopy(doc))
                if len(out) >= limit:
                    break
        return out

    def scan(self, collection: str) -> List[Dict]:
        return [copy.deepcopy(doc) for doc in self._collections().get(collection, {}).values()]

    def upsert(self, collection: str, doc_id: str, data: Dict, merge: bool = True) -> None:
        batch = WriteBatch()
        batch.upsert(collection, doc_id, data, merge)
        self.commit(batch)

    def delete(self, collection: str, doc_id: str) -> None:
        batch = WriteBatch()
        batch.delete(collection, doc_id)
        self.commit(batch)


class MemoryStore(DocumentStore):
    """In-process store."""

    def __init__(self, data: Optional[Dict[str, Dict[str, Dict]]] = None) -> None:
        self._data: Dict[str, Dict[str, Dict]] = copy.deepcopy(data) if data else {}

    def _collections(self) -> Dict[str, Dict[str, Dict]]:
        return self._data

    def commit(self, batch: WriteBatch) -> None:
        staged = copy.deepcopy(self._data)
        _apply(staged, batch)
        self._data = staged


class JsonFileStore(MemoryStore):
    """Store persisted as a single pretty-printed JSON file."""

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)
        super().__init__(self._load())

    def _load(self) -> Dict[str, Dict[str, Dict]]:
        if not self.path.exists():
            return {}
        try:
            return json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise StoreUnavailable(f"cannot read store {self.path}: {exc}") from exc

    def commit(self, batch: WriteBatch) -> None:
        staged = copy.deepcopy(self._data)
        _apply(staged, batch)
        tmp = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(staged, ensure_ascii=False, indent=2), encoding="utf-8")
            os.replace(tmp, self.path)
        except OSError as exc:
            raise StoreUnavailable(f"cannot write store {self.path}: {exc}") from exc
        self._data = staged
        logger.debug("Committed %d writes to %s", len(batch), self.path)


__all__ = [
    "ACTIVITIES",
    "ATHLETES",
    "LEADERBOARD",
    "StoreUnavailable",
    "WriteBatch",
    "DocumentStore",
    "MemoryStore",
    "JsonFileStore",
]
