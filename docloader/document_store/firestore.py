"""Firestore implementation of the document store.

Wraps ``google.cloud.firestore.AsyncClient``. Paths handed to this adapter are
Firestore resource paths relative to the database root (``users/jdoe``), which
is exactly the loader's flat path key.

Connection management
- The async client is created on first use and reused across calls
- ``FIRESTORE_EMULATOR_HOST`` is honored by the client library itself
- Failures are wrapped in the ``DocumentStoreError`` taxonomy, except missing
  documents which raise ``DocumentNotFoundError``
"""

import os
from typing import Any, Dict, List, Optional, Sequence, Union

import structlog
from google.api_core import exceptions as gcp_exceptions
from google.cloud import firestore

from .base import (
    DocumentNotFoundError,
    DocumentStore,
    DocumentStoreConnectionError,
    DocumentStoreQueryError,
    DocumentStoreWriteError,
    QueryTransform,
    StoredDocument,
    WriteMode,
)

logger = structlog.get_logger("document_store.firestore")

_UNAVAILABLE = (gcp_exceptions.ServiceUnavailable, gcp_exceptions.DeadlineExceeded)


class FirestoreDocumentStore(DocumentStore):
    """Firestore implementation of document store."""

    def __init__(
        self,
        project: Optional[str] = None,
        database: str = "(default)",
        emulator_host: Optional[str] = None,
        client: Optional[firestore.AsyncClient] = None,
    ):
        """Configure a Firestore-backed document store.

        Parameters
        - project: GCP project id; ``None`` lets the library infer it
        - database: Firestore database id
        - emulator_host: ``host:port`` of a Firestore emulator, exported as
          ``FIRESTORE_EMULATOR_HOST`` before the client is built
        - client: Pre-built async client (skips lazy creation)
        """
        self.project = project
        self.database = database
        self.emulator_host = emulator_host
        self._client = client

    def _get_client(self) -> firestore.AsyncClient:
        """Get or create the async client.

        Created lazily so constructing a store never touches credentials or
        the network.
        """
        if self._client is None:
            if self.emulator_host:
                os.environ["FIRESTORE_EMULATOR_HOST"] = self.emulator_host
            try:
                self._client = firestore.AsyncClient(project=self.project, database=self.database)
                logger.info(
                    "Created Firestore client",
                    project=self.project,
                    database=self.database,
                    emulator=bool(self.emulator_host),
                )
            except Exception as e:
                logger.error("Failed to create Firestore client", error=str(e))
                raise DocumentStoreConnectionError(f"Failed to create Firestore client: {e}") from e
        return self._client

    @staticmethod
    def _wrap_read_error(path: str, error: Exception) -> Exception:
        if isinstance(error, gcp_exceptions.NotFound):
            return DocumentNotFoundError(path)
        if isinstance(error, _UNAVAILABLE):
            return DocumentStoreConnectionError(f"Firestore unavailable reading {path}: {error}")
        return DocumentStoreQueryError(f"Failed to read {path}: {error}")

    async def get_document(self, path: str) -> Dict[str, Any]:
        """Read a single document."""
        try:
            snapshot = await self._get_client().document(path).get()
        except gcp_exceptions.GoogleAPICallError as e:
            logger.warning("Document read failed", path=path, error=str(e))
            raise self._wrap_read_error(path, e) from e

        if not snapshot.exists:
            raise DocumentNotFoundError(path)
        return snapshot.to_dict()

    async def get_documents(
        self,
        paths: Sequence[str]
    ) -> List[Union[Dict[str, Any], BaseException]]:
        """Read many documents with a single ``get_all`` round trip."""
        client = self._get_client()
        references = [client.document(path) for path in paths]
        found: Dict[str, Dict[str, Any]] = {}

        try:
            async for snapshot in client.get_all(references):
                if snapshot.exists:
                    found[snapshot.reference.path] = snapshot.to_dict()
        except gcp_exceptions.GoogleAPICallError as e:
            logger.warning("Batch read failed", count=len(paths), error=str(e))
            return [self._wrap_read_error(path, e) for path in paths]

        return [
            found[path] if path in found else DocumentNotFoundError(path)
            for path in paths
        ]

    def collection(self, path: str) -> Any:
        """Return an ``AsyncCollectionReference`` for ``path``."""
        return self._get_client().collection(path)

    async def _stream(self, query: Any, description: str) -> List[StoredDocument]:
        try:
            results = [
                StoredDocument(snapshot.reference.path, snapshot.to_dict())
                async for snapshot in query.stream()
            ]
        except gcp_exceptions.GoogleAPICallError as e:
            logger.error("Query execution failed", query=description, error=str(e))
            raise DocumentStoreQueryError(f"Query failed: {e}") from e

        logger.debug("Executed Firestore query", query=description, results=len(results))
        return results

    async def run_query(
        self,
        collection: Any,
        transform: QueryTransform
    ) -> List[StoredDocument]:
        """Apply ``transform`` to ``collection`` and stream the results."""
        return await self._stream(transform(collection), collection.id)

    async def run_collection_group_query(
        self,
        collection_id: str,
        transform: QueryTransform
    ) -> List[StoredDocument]:
        """Stream a collection-group query over ``collection_id``."""
        group = self._get_client().collection_group(collection_id)
        return await self._stream(transform(group), f"group:{collection_id}")

    def generate_id(self, collection: Any) -> str:
        """Let the client library generate an auto id."""
        return collection.document().id

    async def write_document(
        self,
        path: str,
        payload: Dict[str, Any],
        mode: WriteMode = WriteMode.REPLACE
    ) -> None:
        """Persist ``payload`` at ``path`` with ``set`` (merging for ``MERGE``)."""
        try:
            await self._get_client().document(path).set(payload, merge=mode is WriteMode.MERGE)
        except gcp_exceptions.GoogleAPICallError as e:
            logger.error("Document write failed", path=path, mode=mode.value, error=str(e))
            raise DocumentStoreWriteError(f"Failed to write {path}: {e}") from e

        logger.info("Wrote document", path=path, mode=mode.value)

    async def health_check(self) -> bool:
        """Check that the database answers a cheap listing call."""
        try:
            async for _ in self._get_client().collections():
                break
            return True
        except Exception as e:
            logger.error("Firestore health check failed", error=str(e))
            return False
