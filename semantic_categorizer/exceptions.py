"""
Custom exceptions for the semantic categorizer.
"""

from typing import Any, List, Optional, Sequence


class SemanticCategorizerError(Exception):
    """Base exception for all semantic categorizer errors."""

    code = "categorizer_error"


class ConfigurationError(SemanticCategorizerError):
    """Raised when configuration parameters are invalid."""

    code = "configuration_error"

    def __init__(self, message: str, parameter: str = None, suggested_fix: str = None):
        self.parameter = parameter
        self.suggested_fix = suggested_fix

        full_message = f"Configuration Error: {message}"
        if parameter:
            full_message += f" (Parameter: {parameter})"
        if suggested_fix:
            full_message += f" Suggested fix: {suggested_fix}"

        super().__init__(full_message)


class DatabaseError(SemanticCategorizerError):
    """Raised when database operations fail."""

    code = "database_error"

    def __init__(self, message: str, operation: str = None, table: str = None):
        self.operation = operation
        self.table = table

        full_message = f"Database Error: {message}"
        if operation:
            full_message += f" (Operation: {operation})"
        if table:
            full_message += f" (Table: {table})"

        super().__init__(full_message)


class ValidationError(SemanticCategorizerError):
    """Raised when input validation fails."""

    code = "validation_error"

    def __init__(self, message: str, field: str = None, value: Any = None):
        self.field = field
        self.value = value

        full_message = f"Validation Error: {message}"
        if field:
            full_message += f" (Field: {field})"
        if value is not None:
            full_message += f" (Value: {value})"

        super().__init__(full_message)


class EmbeddingProviderError(SemanticCategorizerError):
    """Raised when the embedding provider call fails."""

    code = "provider_error"

    def __init__(
        self,
        message: str,
        model: str = None,
        status_code: Optional[int] = None,
        provider_code: Optional[str] = None,
    ):
        self.model = model
        self.status_code = status_code
        self.provider_code = provider_code

        full_message = f"Embedding Provider Error: {message}"
        if model:
            full_message += f" (Model: {model})"
        if status_code is not None:
            full_message += f" (Status: {status_code})"

        super().__init__(full_message)


class ProviderAuthError(EmbeddingProviderError):
    """Provider rejected the credentials. Fatal, never retried."""

    code = "provider_auth"


class ProviderRateLimitedError(EmbeddingProviderError):
    """Provider throttled the request; callers may back off and resume."""

    code = "provider_rate_limited"


class ProviderTransportError(EmbeddingProviderError):
    """Network, timeout or server-side failure talking to the provider."""

    code = "provider_transport"


class ProviderResponseError(EmbeddingProviderError):
    """Provider answered, but the payload does not line up with the request."""

    code = "provider_response"


class CacheMissError(SemanticCategorizerError):
    """Raised when cache-only resolution finds texts without cached vectors."""

    code = "cache_miss"

    def __init__(self, missing_texts: Sequence[str], model: str = None):
        self.missing_texts: List[str] = list(missing_texts)
        self.model = model

        preview = ", ".join(repr(t) for t in self.missing_texts[:5])
        if len(self.missing_texts) > 5:
            preview += ", ..."
        full_message = (
            f"Cache Miss: {len(self.missing_texts)} text(s) not cached "
            f"while cache_only was requested [{preview}]"
        )
        if model:
            full_message += f" (Model: {model})"

        super().__init__(full_message)


class InvalidEmbeddingError(SemanticCategorizerError):
    """Raised when an embedding cannot be used for training or prediction."""

    code = "invalid_embedding"

    def __init__(self, message: str, index: Optional[int] = None):
        self.index = index

        full_message = f"Invalid Embedding: {message}"
        if index is not None:
            full_message += f" (Sample index: {index})"

        super().__init__(full_message)


class InvalidEmbeddingDimensionError(InvalidEmbeddingError):
    """Raised when an embedding's dimension differs from the expected one."""

    code = "invalid_embedding_dimension"

    def __init__(
        self,
        expected: int,
        actual: int,
        index: Optional[int] = None,
    ):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"expected dimension {expected}, got {actual}", index=index
        )


class MalformedCachedPayloadError(SemanticCategorizerError):
    """Raised when a cached embedding payload cannot be decoded."""

    code = "malformed_cached_payload"

    def __init__(self, message: str, key: str = None):
        self.key = key

        full_message = f"Malformed Cached Payload: {message}"
        if key is not None:
            full_message += f" (Key: {key!r})"

        super().__init__(full_message)


class ModelCompatibilityError(SemanticCategorizerError):
    """Raised when a persisted classifier payload cannot be used."""

    code = "model_incompatible"


class OperationAbortedError(SemanticCategorizerError):
    """Raised when a job is cancelled cooperatively."""

    code = "aborted"

    def __init__(self, message: str = "Operation aborted", stage: str = None):
        self.stage = stage
        full_message = message
        if stage:
            full_message += f" (Stage: {stage})"
        super().__init__(full_message)
