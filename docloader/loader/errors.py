"""Exceptions raised by the document loader.

Configuration and path-shape errors are raised synchronously, before any store
I/O, and always propagate to the caller. They subclass ``ValueError`` so plain
argument validation handlers keep working.
"""


class DocumentLoaderError(Exception):
    """Base exception for loader operations."""
    pass


class ConfigurationError(DocumentLoaderError, ValueError):
    """A collection or document name is unusable."""
    pass


class EmptyPathConfigurationError(ConfigurationError):
    """A loader was built without any collection names."""

    def __init__(self) -> None:
        super().__init__("Collection names must be specified.")


class DelimiterInNameError(ConfigurationError):
    """A collection or document name contains the path delimiter."""

    def __init__(self, kind: str, name: str) -> None:
        super().__init__(f"{kind.capitalize()} names cannot contain slashes: {name!r}")
        self.kind = kind
        self.name = name


class InvalidNameError(ConfigurationError):
    """A collection or document name is empty or not a string."""

    def __init__(self, kind: str, name: object) -> None:
        super().__init__(f"{kind.capitalize()} names must be non-empty strings: {name!r}")
        self.kind = kind
        self.name = name


class PathLengthMismatchError(DocumentLoaderError, ValueError):
    """The number of document names does not fit the collection template."""

    def __init__(self, template_length: int, expected: int, received: int, target: str) -> None:
        super().__init__(
            f"Because there are {template_length} collection names, there must be "
            f"{expected} doc names to address a {target} (got {received})."
        )
        self.template_length = template_length
        self.expected = expected
        self.received = received


class DocumentPathLengthMismatchError(PathLengthMismatchError):
    """Document names do not address a document under the template."""

    def __init__(self, template_length: int, received: int) -> None:
        super().__init__(template_length, template_length, received, "document")


class CollectionPathLengthMismatchError(PathLengthMismatchError):
    """Document names do not address a collection under the template."""

    def __init__(self, template_length: int, received: int) -> None:
        super().__init__(template_length, template_length - 1, received, "collection")


class BatchLoadError(DocumentLoaderError):
    """A batch function broke its positional result contract."""
    pass
