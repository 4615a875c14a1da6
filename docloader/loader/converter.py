"""Conversion between stored document data and loader records.

Records are the store's data plus two injected fields: ``id`` (the document's
own name) and ``path`` (its full address). The injected fields are stripped
again before anything is written back.
"""

from typing import Any, Dict, Mapping

from ..document_store.base import StoredDocument
from .paths import DELIMITER

ID_FIELD = "id"
PATH_FIELD = "path"

Record = Dict[str, Any]


def to_record(path: str, data: Mapping[str, Any]) -> Record:
    """Build a record from a document's path and data."""
    record = dict(data)
    record[ID_FIELD] = path.rsplit(DELIMITER, 1)[-1]
    record[PATH_FIELD] = path
    return record


def from_stored(document: StoredDocument) -> Record:
    return to_record(document.path, document.data)


def to_payload(record: Mapping[str, Any]) -> Dict[str, Any]:
    """Strip injected fields so only document data is persisted."""
    return {
        key: value
        for key, value in record.items()
        if key not in (ID_FIELD, PATH_FIELD)
    }
