"""Document store adapters and utilities.

Primary components:
- ``base``: abstract ``DocumentStore`` interface, ``WriteMode`` and exceptions.
- ``memory``: dict-backed implementation with a Firestore-like query builder.
- ``firestore``: Google Cloud Firestore implementation.
- ``factory``: helpers to construct stores and loaders from config.

Guidance:
- Prefer ``factory.create_loader`` so application code stays decoupled from
  specific backends.
"""
