"""In-memory implementation of the document store.

Keeps documents in a dict keyed by their full path. Queries are expressed with
``MemoryQuery``, an immutable builder mirroring the subset of the Firestore
query API the loader's callers use (``where``, ``order_by``, ``limit``), so the
same query transforms work against either backend.

Data is deep-copied on the way in and out, so records cached by a loader never
alias what the store holds.
"""

import copy
import operator
import secrets
import string
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import structlog

from .base import (
    DocumentNotFoundError,
    DocumentStore,
    DocumentStoreQueryError,
    DocumentStoreWriteError,
    QueryTransform,
    StoredDocument,
    WriteMode,
)

logger = structlog.get_logger("document_store.memory")

AUTO_ID_ALPHABET = string.ascii_letters + string.digits
AUTO_ID_LENGTH = 20

ASCENDING = "ASCENDING"
DESCENDING = "DESCENDING"


def _array_contains(value: Any, expected: Any) -> bool:
    return isinstance(value, list) and expected in value


def _array_contains_any(value: Any, expected: Any) -> bool:
    return isinstance(value, list) and any(item in value for item in expected)


FILTER_OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "in": lambda value, expected: value in expected,
    "not-in": lambda value, expected: value not in expected,
    "array-contains": _array_contains,
    "array-contains-any": _array_contains_any,
}

_MISSING = object()

# Firestore orders values of different types by type first
_TYPE_ORDER: Tuple[Tuple[type, int], ...] = (
    (bool, 1),
    (int, 2),
    (float, 2),
    (datetime, 3),
    (str, 4),
    (bytes, 5),
    (list, 8),
    (dict, 9),
)


def _order_key(value: Any) -> Tuple[int, Any]:
    if value is None:
        return (0, 0)
    for value_type, rank in _TYPE_ORDER:
        if isinstance(value, value_type):
            return (rank, value)
    return (10, repr(value))


def _get_field(data: Mapping[str, Any], field_path: str) -> Any:
    """Resolve a dotted field path, returning ``_MISSING`` when absent."""
    value: Any = data
    for part in field_path.split("."):
        if not isinstance(value, Mapping) or part not in value:
            return _MISSING
        value = value[part]
    return value


def _deep_merge(target: Dict[str, Any], updates: Mapping[str, Any]) -> Dict[str, Any]:
    for key, value in updates.items():
        if isinstance(value, Mapping) and isinstance(target.get(key), dict):
            _deep_merge(target[key], value)
        else:
            target[key] = copy.deepcopy(value)
    return target


@dataclass(frozen=True)
class MemoryQuery:
    """Immutable query over one collection, or a collection group.

    ``collection_path`` is ``None`` for collection-group queries, which match
    every collection whose last segment equals ``collection_id``.
    """
    collection_id: str
    collection_path: Optional[str] = None
    filters: Tuple[Tuple[str, str, Any], ...] = ()
    orders: Tuple[Tuple[str, str], ...] = ()
    limit_count: Optional[int] = None

    @property
    def path(self) -> Optional[str]:
        return self.collection_path

    def where(self, field_path: str, op: str, value: Any) -> "MemoryQuery":
        if op not in FILTER_OPERATORS:
            raise DocumentStoreQueryError(f"Unsupported filter operator: {op}")
        return replace(self, filters=self.filters + ((field_path, op, value),))

    def order_by(self, field_path: str, direction: str = ASCENDING) -> "MemoryQuery":
        direction = direction.upper()
        if direction not in (ASCENDING, DESCENDING):
            raise DocumentStoreQueryError(f"Unsupported order direction: {direction}")
        return replace(self, orders=self.orders + ((field_path, direction),))

    def limit(self, count: int) -> "MemoryQuery":
        if count < 0:
            raise DocumentStoreQueryError("Query limit must not be negative")
        return replace(self, limit_count=count)

    def contains(self, path: str) -> bool:
        """Whether the document at ``path`` lives in a collection this query targets."""
        parent, _, _ = path.rpartition("/")
        if self.collection_path is not None:
            return parent == self.collection_path
        return parent.rsplit("/", 1)[-1] == self.collection_id

    def matches(self, data: Mapping[str, Any]) -> bool:
        for field_path, op, expected in self.filters:
            value = _get_field(data, field_path)
            if value is _MISSING:
                return False
            try:
                if not FILTER_OPERATORS[op](value, expected):
                    return False
            except TypeError:
                # Values of different types never compare equal or ordered
                return False
        for field_path, _ in self.orders:
            if _get_field(data, field_path) is _MISSING:
                return False
        return True

    def apply(self, documents: Mapping[str, Dict[str, Any]]) -> List[StoredDocument]:
        selected = [
            (path, data)
            for path, data in sorted(documents.items())
            if self.contains(path) and self.matches(data)
        ]
        # Stable sorts applied last-key-first give a multi-key ordering
        for field_path, direction in reversed(self.orders):
            try:
                selected.sort(
                    key=lambda item: _order_key(_get_field(item[1], field_path)),
                    reverse=direction == DESCENDING,
                )
            except TypeError as e:
                raise DocumentStoreQueryError(f"Cannot order by {field_path}: {e}") from e
        if self.limit_count is not None:
            selected = selected[:self.limit_count]
        return [StoredDocument(path, copy.deepcopy(data)) for path, data in selected]


class InMemoryDocumentStore(DocumentStore):
    """Dict-backed hierarchical document store."""

    def __init__(self, documents: Optional[Mapping[str, Mapping[str, Any]]] = None):
        """Create a store, optionally pre-populated.

        Args:
            documents: Mapping of document path to document data
        """
        self._documents: Dict[str, Dict[str, Any]] = {}
        for path, data in (documents or {}).items():
            self._check_document_path(path, DocumentStoreWriteError)
            self._documents[path] = copy.deepcopy(dict(data))

    def __len__(self) -> int:
        return len(self._documents)

    def __contains__(self, path: object) -> bool:
        return path in self._documents

    @staticmethod
    def _check_document_path(path: str, error: type) -> None:
        segments = path.split("/")
        if len(segments) % 2 != 0 or not all(segments):
            raise error(f"Not a document path: {path}")

    async def get_document(self, path: str) -> Dict[str, Any]:
        """Read a single document."""
        self._check_document_path(path, DocumentStoreQueryError)
        if path not in self._documents:
            raise DocumentNotFoundError(path)
        return copy.deepcopy(self._documents[path])

    def collection(self, path: str) -> MemoryQuery:
        """Return a query over the collection at ``path``."""
        segments = path.split("/")
        if len(segments) % 2 != 1 or not all(segments):
            raise DocumentStoreQueryError(f"Not a collection path: {path}")
        return MemoryQuery(collection_id=segments[-1], collection_path=path)

    async def _execute(self, query: MemoryQuery, transform: QueryTransform) -> List[StoredDocument]:
        transformed = transform(query)
        if not isinstance(transformed, MemoryQuery):
            raise DocumentStoreQueryError(
                f"Query transform must return a MemoryQuery, got {type(transformed).__name__}"
            )
        results = transformed.apply(self._documents)
        logger.debug(
            "Executed in-memory query",
            collection=transformed.collection_path or transformed.collection_id,
            filters=len(transformed.filters),
            results=len(results),
        )
        return results

    async def run_query(
        self,
        collection: MemoryQuery,
        transform: QueryTransform
    ) -> List[StoredDocument]:
        """Apply ``transform`` to ``collection`` and execute it."""
        return await self._execute(collection, transform)

    async def run_collection_group_query(
        self,
        collection_id: str,
        transform: QueryTransform
    ) -> List[StoredDocument]:
        """Query every collection named ``collection_id``."""
        if not collection_id or "/" in collection_id:
            raise DocumentStoreQueryError(f"Invalid collection id: {collection_id!r}")
        return await self._execute(MemoryQuery(collection_id=collection_id), transform)

    def generate_id(self, collection: MemoryQuery) -> str:
        """Generate a 20 character id not yet used in ``collection``."""
        while True:
            doc_id = "".join(secrets.choice(AUTO_ID_ALPHABET) for _ in range(AUTO_ID_LENGTH))
            if f"{collection.collection_path}/{doc_id}" not in self._documents:
                return doc_id

    async def write_document(
        self,
        path: str,
        payload: Dict[str, Any],
        mode: WriteMode = WriteMode.REPLACE
    ) -> None:
        """Persist ``payload`` at ``path``."""
        self._check_document_path(path, DocumentStoreWriteError)
        if mode is WriteMode.MERGE and path in self._documents:
            _deep_merge(self._documents[path], payload)
        else:
            self._documents[path] = copy.deepcopy(dict(payload))
        logger.debug("Wrote document", path=path, mode=mode.value)

    async def health_check(self) -> bool:
        return True
