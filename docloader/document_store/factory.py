"""Document store and loader factory.

Centralizes creation of concrete ``DocumentStore`` backends so callers don't
depend on implementation details, and wires loaders to a store, a failure
policy and metrics from ``LoaderConfig``.
"""

from enum import Enum
from typing import Any, Dict, Optional, Sequence

import structlog

from ..common.config import LoaderConfig
from ..common.metrics import get_metrics_collector
from ..loader.batching import FailurePolicy
from ..loader.hierarchical import HierarchicalDocumentLoader
from .base import DocumentStore
from .memory import InMemoryDocumentStore

logger = structlog.get_logger("document_store.factory")


class DocumentStoreType(Enum):
    """Supported document store types."""
    MEMORY = "memory"
    FIRESTORE = "firestore"


class DocumentStoreFactory:
    """Factory for creating document store instances."""

    @staticmethod
    def create(store_type: DocumentStoreType, config: Dict[str, Any]) -> DocumentStore:
        """Create a document store instance.

        Parameters
        - store_type: A ``DocumentStoreType`` enum value
        - config: Backend-specific parameters (e.g., ``project`` for Firestore)
        """
        if store_type == DocumentStoreType.MEMORY:
            return InMemoryDocumentStore(config.get("documents"))

        elif store_type == DocumentStoreType.FIRESTORE:
            # Imported here so the memory backend works without the Firestore client installed
            from .firestore import FirestoreDocumentStore

            return FirestoreDocumentStore(
                project=config.get("project"),
                database=config.get("database", "(default)"),
                emulator_host=config.get("emulator_host"),
            )

        else:
            raise ValueError(f"Unsupported document store type: {store_type}")


def create_document_store(store_type: str, config: Optional[Dict[str, Any]] = None) -> DocumentStore:
    """Convenience function to create a document store by name."""
    try:
        store_type_enum = DocumentStoreType(store_type)
    except ValueError:
        raise ValueError(f"Unsupported document store type: {store_type}")
    return DocumentStoreFactory.create(store_type_enum, config or {})


def create_document_store_from_config(config: LoaderConfig) -> DocumentStore:
    """Create the store selected by ``DOCLOADER_STORE_BACKEND``."""
    store_config: Dict[str, Any] = {}
    if config.docloader_store_backend == DocumentStoreType.FIRESTORE.value:
        store_config = {
            "project": config.docloader_firestore_project,
            "database": config.docloader_firestore_database,
            "emulator_host": config.docloader_firestore_emulator_host,
        }

    logger.info("Creating document store", backend=config.docloader_store_backend, env=config.docloader_env)
    return create_document_store(config.docloader_store_backend, store_config)


def create_loader(
    collection_names: Sequence[str],
    config: Optional[LoaderConfig] = None,
    store: Optional[DocumentStore] = None,
) -> HierarchicalDocumentLoader:
    """Build a loader for ``collection_names`` from configuration.

    Parameters
    - collection_names: The loader's collection template
    - config: Settings; read from the environment when omitted
    - store: Store to share between loaders; built from ``config`` when omitted

    Loaders are cheap: build one per request or unit of work so cached
    documents never outlive it.
    """
    config = config or LoaderConfig()
    if store is None:
        store = create_document_store_from_config(config)
    metrics = get_metrics_collector("docloader") if config.docloader_metrics_enabled else None

    return HierarchicalDocumentLoader(
        store,
        collection_names,
        failure_policy=FailurePolicy.from_flag(config.docloader_cache_failures),
        metrics=metrics,
    )
