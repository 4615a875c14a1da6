"""Base document store interface.

Defines the abstract contract the loader depends on, independent of the
backing hierarchical store (in-memory, Firestore, etc.). Paths are flat
``/``-joined addresses alternating collection and document names.

All methods are asynchronous; the loader only suspends at these calls.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Sequence, Union


class WriteMode(Enum):
    """How a write treats an existing document."""
    REPLACE = "replace"
    MERGE = "merge"


@dataclass(frozen=True)
class StoredDocument:
    """A document as reported by the store: its full path and its data."""
    path: str
    data: Dict[str, Any]

    @property
    def id(self) -> str:
        return self.path.rsplit("/", 1)[-1]


# A caller-supplied function that narrows a store query (filters, ordering,
# limits). Its argument and return types are adapter specific.
QueryTransform = Callable[[Any], Any]


class DocumentStore(ABC):
    """Abstract base class for hierarchical document stores.

    Implementations must return query results in the order the store reports
    them and must raise ``DocumentNotFoundError`` for reads of missing
    documents.
    """

    @abstractmethod
    async def get_document(self, path: str) -> Dict[str, Any]:
        """Read a single document.

        Raises ``DocumentNotFoundError`` when nothing is stored at ``path``.
        """
        pass

    async def get_documents(
        self,
        paths: Sequence[str]
    ) -> List[Union[Dict[str, Any], BaseException]]:
        """Read many documents in one call.

        Returns a list positionally matching ``paths`` where each item is the
        document data or the exception raised reading it. Adapters with a
        native batch read should override this.
        """
        return await asyncio.gather(
            *(self.get_document(path) for path in paths),
            return_exceptions=True,
        )

    @abstractmethod
    def collection(self, path: str) -> Any:
        """Return a handle for the collection at ``path`` that queries run against."""
        pass

    @abstractmethod
    async def run_query(
        self,
        collection: Any,
        transform: QueryTransform
    ) -> List[StoredDocument]:
        """Apply ``transform`` to a query over ``collection`` and execute it."""
        pass

    @abstractmethod
    async def run_collection_group_query(
        self,
        collection_id: str,
        transform: QueryTransform
    ) -> List[StoredDocument]:
        """Query every collection named ``collection_id``, whatever its ancestors."""
        pass

    @abstractmethod
    def generate_id(self, collection: Any) -> str:
        """Return a store-unique document name within ``collection``."""
        pass

    @abstractmethod
    async def write_document(
        self,
        path: str,
        payload: Dict[str, Any],
        mode: WriteMode = WriteMode.REPLACE
    ) -> None:
        """Persist ``payload`` at ``path``.

        ``REPLACE`` overwrites the whole document, ``MERGE`` merges the payload
        onto any existing document.
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if the document store is reachable."""
        pass


class DocumentStoreError(Exception):
    """Base exception for document store operations."""
    pass


class DocumentStoreConnectionError(DocumentStoreError):
    """Connection error to document store."""
    pass


class DocumentStoreQueryError(DocumentStoreError):
    """Query error in document store."""
    pass


class DocumentStoreWriteError(DocumentStoreError):
    """Write error in document store."""
    pass


class DocumentNotFoundError(DocumentStoreError):
    """Document not found in store."""

    def __init__(self, path: str):
        super().__init__(f"Document {path} does not exist.")
        self.path = path
