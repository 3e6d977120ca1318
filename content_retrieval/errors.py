"""Exception hierarchy for content retrieval."""


class RetrievalError(Exception):
    """Base class for all content_retrieval errors."""


class ConfigurationError(RetrievalError):
    """Structural misconfiguration. Never soft-failed."""


class DimensionMismatchError(ConfigurationError):
    """A vector's length does not match the index dimensionality."""

    def __init__(self, expected: int, actual: int, record_id: str | None = None):
        self.expected = expected
        self.actual = actual
        self.record_id = record_id
        where = f" for record {record_id!r}" if record_id is not None else ""
        super().__init__(
            f"Vector dimension mismatch{where}: expected {expected}, got {actual}"
        )


class IndexCreationError(ConfigurationError):
    """The vector or filter indexes could not be created at connect time."""


class InvalidQueryError(RetrievalError, ValueError):
    """Malformed input rejected before any I/O is dispatched."""
