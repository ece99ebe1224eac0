"""Exception hierarchy shared by the ingestion job and the chat service."""


class DocsChatError(Exception):
    """Base class for all docs-chat errors."""


class ConfigurationError(DocsChatError):
    """Invalid or missing configuration. Fatal at startup."""


class DimensionMismatchError(ConfigurationError):
    """A vector's length does not match the index dimension."""

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Vector dimension mismatch: expected {expected}, got {actual}")


class DataError(DocsChatError):
    """Unreadable document or corrupted index entry."""


class ExternalServiceError(DocsChatError):
    """Embedding runtime, vector store, or completion service failure."""


class ServiceTimeoutError(ExternalServiceError):
    """A configured per-call timeout elapsed. Retrying may succeed."""

    def __init__(self, operation: str, timeout: float):
        self.operation = operation
        self.timeout = timeout
        super().__init__(f"{operation} timed out after {timeout:g}s")


class IndexNotReadyError(ExternalServiceError):
    """The index did not become ready within the maximum wait."""


class StreamInterruptedError(ExternalServiceError):
    """The completion source failed after the answer stream had started."""
