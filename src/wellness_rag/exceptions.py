"""
Wellness RAG exceptions.
"""


class WellnessRAGError(Exception):
    """Base exception for wellness RAG errors."""

    def __init__(self, message: str, code: str | None = None):
        self.message = message
        self.code = code
        super().__init__(self.message)


class DimensionMismatchError(WellnessRAGError, ValueError):
    """Raised when two vectors of different length are compared."""

    def __init__(self, left: int, right: int):
        self.left = left
        self.right = right
        super().__init__(
            f"Embedding dimensions must match ({left} != {right})",
            code="dimension_mismatch",
        )


class ProviderUnavailableError(WellnessRAGError):
    """Raised when an embedding or completion provider call fails."""

    def __init__(self, message: str = "Provider unavailable"):
        super().__init__(message, code="provider_unavailable")


class CacheUnavailableError(WellnessRAGError):
    """Raised when the cache store cannot be reached."""

    def __init__(self, message: str = "Cache store unavailable"):
        super().__init__(message, code="cache_unavailable")


class NotFoundError(WellnessRAGError):
    """Raised when a document or conversation does not exist."""

    def __init__(self, kind: str, identifier: str):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} '{identifier}' not found", code="not_found")


class GenerationCancelledError(WellnessRAGError):
    """Raised when a generation was cancelled through its generation id.

    This is a cancelled state requested by the caller, not a failure.
    """

    def __init__(self, generation_id: str):
        self.generation_id = generation_id
        super().__init__(
            f"Generation '{generation_id}' was cancelled",
            code="generation_cancelled",
        )
