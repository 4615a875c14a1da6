"""Hierarchical document loader.

Key Responsibilities:
    - Address documents in nested collections (``users/jdoe/posts/post1``)
      through a fixed template of collection names plus per-call document names
    - Coalesce and memoize document reads through a ``BatchingCache`` so each
      document is fetched at most once per loader instance
    - Prime the cache with every document returned by a query or written by
      ``create_doc``

Collaborators:
    - Upstream: application code, typically one loader per request or unit of work
    - Downstream: a ``DocumentStore`` adapter performs the actual I/O

Side Effects:
    - Reads, queries and writes against the injected store

Thread Safety:
    - Bound to one event loop; not thread-safe
"""

import asyncio
import copy
from contextlib import nullcontext
from typing import Any, ContextManager, List, Mapping, Optional, Sequence, Tuple, Union

import structlog

from ..common.metrics import MetricsCollector
from ..document_store.base import DocumentStore, QueryTransform, StoredDocument, WriteMode
from .batching import BatchingCache, FailurePolicy
from .converter import Record, from_stored, to_payload, to_record
from .paths import (
    ExactTarget,
    build_collection_path,
    build_document_path,
    decompose_to_document_names,
    join_path,
    resolve_write_target,
    validate_template,
)

logger = structlog.get_logger("loader.hierarchical")

DocNames = Union[str, Sequence[str]]


def _identity(query: Any) -> Any:
    return query


def _as_names(doc_names: DocNames) -> Tuple[str, ...]:
    if isinstance(doc_names, str):
        return (doc_names,)
    return tuple(doc_names)


def _detached(record: Record) -> Record:
    # Cached records are shared by every caller of the loader
    return copy.deepcopy(record)


class HierarchicalDocumentLoader:
    """Batched, memoized access to documents under one collection template.

    Examples:
        Loader over the ``users`` collection::

            users = HierarchicalDocumentLoader(store, ["users"])
            jdoe = await users.fetch_by_id(["jdoe"])

        Loader over the ``posts`` sub-collection of any user::

            posts = HierarchicalDocumentLoader(store, ["users", "posts"])
            post = await posts.fetch_by_id(["jdoe", "post1"])
            drafts = await posts.fetch_by_query(
                lambda q: q.where("draft", "==", True), ["jdoe"]
            )

    Attributes:
        store: Adapter the loader reads from and writes to.
        cache: The loader's own ``BatchingCache``, keyed by document path.
    """

    def __init__(
        self,
        store: DocumentStore,
        collection_names: Sequence[str],
        *,
        failure_policy: FailurePolicy = FailurePolicy.CACHE,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        """Validate the collection template and build the loader's cache.

        Raises:
            EmptyPathConfigurationError: ``collection_names`` is empty.
            DelimiterInNameError: A collection name contains ``/``.
        """
        self._collection_names = validate_template(collection_names)
        self.store = store
        self._metrics = metrics
        self._name = join_path(self._collection_names)
        self._log = logger.bind(loader=self._name)
        self.cache: BatchingCache[str, Record] = BatchingCache(
            self._batch_load,
            failure_policy=failure_policy,
            name=self._name,
            metrics=metrics,
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}({list(self._collection_names)!r})"

    @property
    def collection_names(self) -> Tuple[str, ...]:
        return self._collection_names

    def document_path(self, doc_names: DocNames) -> str:
        """Flat path of the document addressed by ``doc_names``."""
        return join_path(build_document_path(self._collection_names, _as_names(doc_names)))

    def collection_path(self, doc_names: DocNames = ()) -> str:
        """Flat path of the collection addressed by ``doc_names``."""
        return join_path(build_collection_path(self._collection_names, _as_names(doc_names)))

    def _timed(self, operation: str) -> ContextManager[None]:
        if self._metrics is None:
            return nullcontext()
        return self._metrics.time_store_operation(operation)

    async def _batch_load(self, paths: List[str]) -> List[Union[Record, BaseException]]:
        with self._timed("get_documents"):
            results = list(await self.store.get_documents(paths))
        if len(results) != len(paths):
            # The cache rejects the whole batch on a length mismatch
            return results
        return [
            result if isinstance(result, BaseException) else to_record(path, result)
            for path, result in zip(paths, results)
        ]

    async def fetch_by_id(self, doc_names: DocNames) -> Optional[Record]:
        """Read one document, or ``None`` if it cannot be read.

        Args:
            doc_names: One document name per collection in the template.

        Returns:
            A copy of the record, or ``None`` when the store reports the
            document missing, the read fails or its batch was cancelled.
            Failures are cached per the loader's ``FailurePolicy``.

        Raises:
            DocumentPathLengthMismatchError: Wrong number of document names.
            DelimiterInNameError: A document name contains ``/``.
        """
        path = self.document_path(doc_names)
        future = self.cache.load(path)
        try:
            record = await asyncio.shield(future)
        except asyncio.CancelledError:
            if not future.cancelled():
                raise
            self._log.debug("Document fetch cancelled", path=path)
            return None
        except Exception as e:
            self._log.debug("Document unavailable", path=path, error=str(e))
            return None
        return _detached(record)

    async def fetch_by_query(
        self,
        transform: QueryTransform,
        doc_names: DocNames = (),
    ) -> List[Record]:
        """Run a query over one collection and prime the cache with its results.

        Args:
            transform: Receives the store's collection handle and returns the
                query to run (filters, ordering, limits).
            doc_names: One document name fewer than the template, selecting
                which collection instance to query.

        Returns:
            Records in the order the store reported them, as copies of the
            cached values.

        Raises:
            CollectionPathLengthMismatchError: Wrong number of document names.
            DelimiterInNameError: A document name contains ``/``.
        """
        names = _as_names(doc_names)
        collection_path = self.collection_path(names)
        collection = self.store.collection(collection_path)

        with self._timed("run_query"):
            documents = await self.store.run_query(collection, transform)

        records = []
        for document in documents:
            path = join_path(build_document_path(self._collection_names, names + (document.id,)))
            record = to_record(path, document.data)
            records.append(_detached(record))
            self.cache.prime(path, record)

        self._log.debug("Primed query results", collection=collection_path, count=len(records))
        return records

    async def fetch_by_collection_group_query(self, transform: QueryTransform) -> List[Record]:
        """Query every collection named like the template's last collection.

        Matching documents may live under any ancestors, so each one is primed
        under the path the store reported for it.
        """
        collection_id = self._collection_names[-1]

        with self._timed("run_collection_group_query"):
            documents = await self.store.run_collection_group_query(collection_id, transform)

        records = self._prime_stored(documents)
        self._log.debug("Primed collection group results", collection_id=collection_id, count=len(records))
        return records

    async def fetch_all(self, doc_names: DocNames = ()) -> List[Record]:
        """Every document in the addressed collection."""
        return await self.fetch_by_query(_identity, doc_names)

    async def create_doc(
        self,
        payload: Mapping[str, Any],
        overwrite: bool = False,
        doc_names: DocNames = (),
    ) -> Record:
        """Write a document and return the store's read-back of it.

        With one document name per template collection the write targets that
        document. With one name fewer, the store generates the last name.

        Args:
            payload: Document data; ``id`` and ``path`` keys are ignored.
            overwrite: Replace the document wholesale instead of merging the
                payload onto an existing document.
            doc_names: Names addressing the document or its collection.

        Returns:
            The record as read back from the store after the write, which also
            becomes the cached value.

        Raises:
            CollectionPathLengthMismatchError: ``doc_names`` addresses neither
                a document nor a collection.
            DelimiterInNameError: A document name contains ``/``.
        """
        target = resolve_write_target(self._collection_names, _as_names(doc_names))
        if isinstance(target, ExactTarget):
            segments = list(target.segments)
        else:
            collection = self.store.collection(join_path(target.collection_segments))
            segments = list(target.collection_segments) + [self.store.generate_id(collection)]

        path = join_path(segments)
        data = to_payload(payload)
        mode = WriteMode.REPLACE if overwrite else WriteMode.MERGE

        with self._timed("write_document"):
            await self.store.write_document(path, data, mode)
        self._log.info("Wrote document", path=path, mode=mode.value)

        written = to_record(path, data)
        self.cache.clear(path)
        record = await self.fetch_by_id(decompose_to_document_names(segments))
        if record is None:
            self._log.warning("Read-back after write failed; caching written data", path=path)
            self.cache.prime(path, written)
            return _detached(written)
        return record

    def prime(self, doc_names: DocNames, data: Mapping[str, Any]) -> Record:
        """Cache ``data`` as the document at ``doc_names`` without a fetch.

        Needs no running event loop, so setup code can prime a loader before
        handing it to request handlers.
        """
        path = self.document_path(doc_names)
        record = to_record(path, to_payload(data))
        self.cache.prime(path, record)
        return _detached(record)

    def clear(self, doc_names: DocNames) -> None:
        """Forget the cached document at ``doc_names``."""
        self.cache.clear(self.document_path(doc_names))

    def _prime_stored(self, documents: Sequence[StoredDocument]) -> List[Record]:
        records = []
        for document in documents:
            record = from_stored(document)
            records.append(_detached(record))
            self.cache.prime(document.path, record)
        return records
