"""Batched, memoized loaders for hierarchical document stores.

Subpackages:
- ``docloader.loader``: path handling, the batching cache and the loader.
- ``docloader.document_store``: store adapter contract and backends.
- ``docloader.common``: configuration, logging and metrics.

Usage:
    loader = create_loader(["users", "posts"])
    post = await loader.fetch_by_id(["jdoe", "post1"])
"""

from .document_store.factory import create_loader
from .loader import FailurePolicy, HierarchicalDocumentLoader

__all__ = ["create_loader", "FailurePolicy", "HierarchicalDocumentLoader"]
