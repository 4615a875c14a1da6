"""Batched, memoized loading of hierarchical documents.

- ``paths``: conversions between collection templates, document names and
  flat paths.
- ``batching``: ``BatchingCache``, the request-coalescing memoizer.
- ``converter``: ``id``/``path`` injection on read, stripping on write.
- ``hierarchical``: ``HierarchicalDocumentLoader``.
- ``errors``: exception taxonomy.
"""

from .batching import BatchingCache, FailurePolicy
from .errors import (
    BatchLoadError,
    CollectionPathLengthMismatchError,
    ConfigurationError,
    DelimiterInNameError,
    DocumentLoaderError,
    DocumentPathLengthMismatchError,
    EmptyPathConfigurationError,
    InvalidNameError,
    PathLengthMismatchError,
)
from .hierarchical import HierarchicalDocumentLoader

__all__ = [
    "BatchingCache",
    "BatchLoadError",
    "CollectionPathLengthMismatchError",
    "ConfigurationError",
    "DelimiterInNameError",
    "DocumentLoaderError",
    "DocumentPathLengthMismatchError",
    "EmptyPathConfigurationError",
    "FailurePolicy",
    "HierarchicalDocumentLoader",
    "InvalidNameError",
    "PathLengthMismatchError",
]
