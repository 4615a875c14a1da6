#!/usr/bin/env python3
"""
Seed a document store with the sample users and posts used by the tests.

Writes go through ``HierarchicalDocumentLoader.create_doc`` with overwrite
enabled, so re-running the script resets the sample documents to a known
baseline. Point it at the Firestore emulator with::

    DOCLOADER_STORE_BACKEND=firestore \\
    DOCLOADER_FIRESTORE_PROJECT=firestore-data-loader \\
    DOCLOADER_FIRESTORE_EMULATOR_HOST=localhost:8081 \\
    python scripts/seed_store.py
"""

from __future__ import annotations

import argparse
import asyncio
import time
from typing import Any, Dict, List, Optional, Tuple

from docloader.common.config import LoaderConfig
from docloader.common.logging import configure_logging_from_config
from docloader.document_store.base import DocumentStore
from docloader.document_store.factory import create_document_store_from_config
from docloader.loader.hierarchical import HierarchicalDocumentLoader

SAMPLE_USERS: Dict[str, Dict[str, Any]] = {
    "jdoe": {"firstName": "Jane", "lastName": "Doe", "role": "student"},
    "johndoe": {"firstName": "John", "lastName": "Doe"},
    "jsmith": {"firstName": "John", "lastName": "Smith", "role": "student"},
}

SAMPLE_POSTS: List[Tuple[str, str, Dict[str, Any]]] = [
    ("jdoe", "post1", {"title": "Post 1", "content": "This is post 1"}),
]


def _log(message: str) -> None:
    """Emit a simple timestamped log line."""
    ts = time.strftime("%H:%M:%S")
    print(f"[seed-store {ts}] {message}", flush=True)


async def seed(store: DocumentStore) -> int:
    """Write the sample documents into ``store``; returns how many were written."""
    users = HierarchicalDocumentLoader(store, ["users"])
    posts = HierarchicalDocumentLoader(store, ["users", "posts"])

    written = 0
    for user_id, data in SAMPLE_USERS.items():
        await users.create_doc(data, True, [user_id])
        written += 1
    for user_id, post_id, data in SAMPLE_POSTS:
        await posts.create_doc(data, True, [user_id, post_id])
        written += 1
    return written


async def _run(config: LoaderConfig) -> int:
    store = create_document_store_from_config(config)
    if not await store.health_check():
        raise RuntimeError(f"Document store {config.docloader_store_backend!r} is not healthy")
    return await seed(store)


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Seed a document store with sample documents")
    parser.add_argument(
        "--backend",
        choices=["memory", "firestore"],
        help="Override DOCLOADER_STORE_BACKEND",
    )
    parser.add_argument("--project", help="Override DOCLOADER_FIRESTORE_PROJECT")
    parser.add_argument("--emulator-host", help="Override DOCLOADER_FIRESTORE_EMULATOR_HOST")
    args = parser.parse_args(argv)

    overrides: Dict[str, Any] = {}
    if args.backend:
        overrides["docloader_store_backend"] = args.backend
    if args.project:
        overrides["docloader_firestore_project"] = args.project
    if args.emulator_host:
        overrides["docloader_firestore_emulator_host"] = args.emulator_host

    config = LoaderConfig(**overrides)
    configure_logging_from_config("seed-store", config)

    _log(f"Seeding {config.docloader_store_backend} store")
    count = asyncio.run(_run(config))
    _log(f"Seeded {count} documents")


if __name__ == "__main__":
    main()
