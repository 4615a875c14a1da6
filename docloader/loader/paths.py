"""Conversions between hierarchical names and flat document paths.

A loader is configured with an ordered template of collection names, e.g.
``("users", "posts")``. Callers address documents with an ordered sequence of
document names, which is interleaved with the template:

>>> build_document_path(("users", "posts"), ("jdoe", "post1"))
['users', 'jdoe', 'posts', 'post1']
>>> build_collection_path(("users", "posts"), ("jdoe",))
['users', 'jdoe', 'posts']
>>> decompose_to_document_names(['users', 'jdoe', 'posts', 'post1'])
['jdoe', 'post1']

Name validation always runs before length validation.
"""

from dataclasses import dataclass
from typing import List, Sequence, Tuple, Union

from .errors import (
    CollectionPathLengthMismatchError,
    DelimiterInNameError,
    DocumentPathLengthMismatchError,
    EmptyPathConfigurationError,
    InvalidNameError,
)

DELIMITER = "/"


def validate_names(names: Sequence[str], kind: str) -> None:
    """Reject empty names, non-strings and names containing the delimiter."""
    for name in names:
        if not isinstance(name, str) or not name:
            raise InvalidNameError(kind, name)
        if DELIMITER in name:
            raise DelimiterInNameError(kind, name)


def validate_template(collection_names: Sequence[str]) -> Tuple[str, ...]:
    """Validate a collection template and freeze it as a tuple."""
    if isinstance(collection_names, str):
        # A bare string would otherwise be read as one name per character
        collection_names = (collection_names,)
    template = tuple(collection_names)
    if not template:
        raise EmptyPathConfigurationError()
    validate_names(template, "collection")
    return template


def _interleave(template: Sequence[str], doc_names: Sequence[str]) -> List[str]:
    segments: List[str] = []
    for collection_name, doc_name in zip(template, doc_names):
        segments.extend((collection_name, doc_name))
    return segments


def build_document_path(template: Sequence[str], doc_names: Sequence[str]) -> List[str]:
    """Interleave ``template`` and ``doc_names`` into document segments.

    Requires one document name per collection name.
    """
    validate_names(template, "collection")
    validate_names(doc_names, "document")
    if len(doc_names) != len(template):
        raise DocumentPathLengthMismatchError(len(template), len(doc_names))
    return _interleave(template, doc_names)


def build_collection_path(template: Sequence[str], doc_names: Sequence[str]) -> List[str]:
    """Interleave ``template`` and ``doc_names`` into collection segments.

    Requires one document name fewer than collection names; the result ends
    on the template's last collection name.
    """
    validate_names(template, "collection")
    validate_names(doc_names, "document")
    if len(doc_names) != len(template) - 1:
        raise CollectionPathLengthMismatchError(len(template), len(doc_names))
    return _interleave(template, doc_names) + [template[-1]]


def decompose_to_document_names(segments: Sequence[str]) -> List[str]:
    """Return the document names (odd positions) of an interleaved path."""
    return list(segments[1::2])


def join_path(segments: Sequence[str]) -> str:
    return DELIMITER.join(segments)


def split_path(path: str) -> List[str]:
    return path.split(DELIMITER)


@dataclass(frozen=True)
class ExactTarget:
    """Write to the document at ``segments``."""
    segments: Tuple[str, ...]


@dataclass(frozen=True)
class GeneratedTarget:
    """Write to a new, store-named document inside ``collection_segments``."""
    collection_segments: Tuple[str, ...]


WriteTarget = Union[ExactTarget, GeneratedTarget]


def resolve_write_target(template: Sequence[str], doc_names: Sequence[str]) -> WriteTarget:
    """Decide where a write lands.

    A full set of document names targets that exact document. One name short
    targets the collection, where the store will generate the last name. Any
    other length raises ``CollectionPathLengthMismatchError``; bad names raise
    before lengths are considered.
    """
    validate_names(template, "collection")
    validate_names(doc_names, "document")
    if len(doc_names) == len(template):
        return ExactTarget(tuple(build_document_path(template, doc_names)))
    return GeneratedTarget(tuple(build_collection_path(template, doc_names)))
