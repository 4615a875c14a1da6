"""Shared fixtures: in-memory stores that record every batched read."""

from typing import Any, Dict, List, Mapping, Optional, Sequence

import pytest

from docloader.document_store.base import DocumentStoreConnectionError
from docloader.document_store.memory import InMemoryDocumentStore
from scripts.seed_store import SAMPLE_POSTS, SAMPLE_USERS

SAMPLE_DOCUMENTS: Dict[str, Dict[str, Any]] = {
    **{f"users/{user_id}": data for user_id, data in SAMPLE_USERS.items()},
    **{f"users/{user_id}/posts/{post_id}": data for user_id, post_id, data in SAMPLE_POSTS},
}


class CountingStore(InMemoryDocumentStore):
    """In-memory store remembering the paths of each batched read.

    Paths listed in ``broken`` fail with a connection error instead of being read.
    """

    def __init__(
        self,
        documents: Optional[Mapping[str, Mapping[str, Any]]] = None,
        broken: Sequence[str] = (),
    ):
        super().__init__(documents)
        self.batches: List[List[str]] = []
        self.broken = set(broken)

    @property
    def reads(self) -> int:
        return sum(len(batch) for batch in self.batches)

    async def get_document(self, path: str) -> Dict[str, Any]:
        if path in self.broken:
            raise DocumentStoreConnectionError(f"connection reset reading {path}")
        return await super().get_document(path)

    async def get_documents(self, paths):
        self.batches.append(list(paths))
        return await super().get_documents(paths)


@pytest.fixture
def store() -> CountingStore:
    """Store holding the sample users and posts."""
    return CountingStore(SAMPLE_DOCUMENTS)


@pytest.fixture
def empty_store() -> CountingStore:
    return CountingStore()


@pytest.fixture
def store_factory():
    """Build a ``CountingStore`` with custom contents."""
    return CountingStore
