"""
Retrieval Exceptions

Only parameter errors and cancellation ever reach the caller of the
orchestrator. Embedding failures switch the pipeline to keyword-only
and dimension mismatches are scored as non-matches.
"""


class RetrievalError(Exception):
    """Base class for retrieval errors."""


class InvalidParameterError(RetrievalError, ValueError):
    """A call was made with parameters that can never succeed."""


class EmbeddingUnavailableError(RetrievalError):
    """The embedding provider failed or returned no vector."""


class DimensionMismatchError(RetrievalError, ValueError):
    """Two vectors of different length were compared in strict mode."""

    def __init__(self, left: int, right: int):
        super().__init__(f"Vector dimension mismatch: {left} vs {right}")
        self.left = left
        self.right = right


class RetrievalCancelledError(RetrievalError):
    """The caller signalled cancellation while the pipeline was running."""
