"""
Error types raised by hnswsearch.

Every error raised while serving a request is detected before the graph is
touched, so a failed call leaves the index exactly as it was.
"""


class HNSWError(Exception):
    """Base class for all hnswsearch errors."""


class ConfigError(HNSWError, ValueError):
    """Invalid construction parameters. The index is never created."""


class DimensionMismatch(HNSWError, ValueError):
    def __init__(self, expected: int, got: int):
        super().__init__(
            f"Wrong dimensionality of the vectors, expect `{expected}`, got `{got}`"
        )
        self.expected = expected
        self.got = got


class MalformedBuffer(HNSWError, ValueError):
    """Input data could not be parsed into vectors or identifiers."""


class InvalidShape(HNSWError, ValueError):
    """Array input with an unsupported number of dimensions."""


class InvalidParameter(HNSWError, ValueError):
    """A request parameter (k, ef, num_threads, ...) is out of range."""


class CapacityExceeded(HNSWError):
    """The index is full and no deleted slot can be reused."""


class DuplicateIdentifier(HNSWError, ValueError):
    """An identifier in the batch is already taken."""


class IdentifierNotFound(HNSWError, LookupError):
    """No live node carries the requested identifier."""


class ReplaceDeletedDisabled(HNSWError):
    """replace_deleted was requested on an index built without allow_replace_deleted."""


class InvalidResize(HNSWError, ValueError):
    """The requested size is smaller than the number of stored elements."""


class EmptyIndex(HNSWError):
    """Query against an index that holds no live vectors."""


class IndexClosed(HNSWError, RuntimeError):
    """The owning actor has been stopped."""


class UnsupportedRequest(HNSWError):
    """The actor received a request kind it does not handle."""


class GraphIntegrityError(HNSWError):
    """A structural invariant of the graph does not hold."""
