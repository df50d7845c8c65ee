"""
Semantic Categorizer - embedding-based keyword categorization and typing.
"""

from .classification import (
    ClassifierModel,
    ClassifierPredictor,
    ClassifierTrainer,
    ModelStore,
    Prediction,
    evaluate_model,
)
from .config import CategorizerConfig
from .database import DatabaseManager
from .embeddings import (
    EmbeddingCache,
    EmbeddingFetcher,
    EmbeddingProvider,
    FetchResult,
    LiteLLMEmbeddingProvider,
)
from .exceptions import (
    CacheMissError,
    ConfigurationError,
    DatabaseError,
    EmbeddingProviderError,
    InvalidEmbeddingDimensionError,
    InvalidEmbeddingError,
    MalformedCachedPayloadError,
    ModelCompatibilityError,
    OperationAbortedError,
    ProviderAuthError,
    ProviderRateLimitedError,
    ProviderResponseError,
    ProviderTransportError,
    SemanticCategorizerError,
    ValidationError,
)
from .jobs import CategorizationJob, JobSummary, TypingJob
from .matching import (
    InMemoryItemSource,
    ItemSource,
    KeywordItemSource,
    StreamingCategoryMatcher,
    cosine_similarity,
)
from .models import AssignmentResult, EmbeddingSource, Item, LabeledSample
from .progress import ProgressReporter, ResultSink

__version__ = "0.1.0"

__all__ = [
    "__version__",
    # Configuration and storage
    "CategorizerConfig",
    "DatabaseManager",
    # Embeddings
    "EmbeddingCache",
    "EmbeddingFetcher",
    "EmbeddingProvider",
    "LiteLLMEmbeddingProvider",
    "FetchResult",
    # Matching
    "StreamingCategoryMatcher",
    "ItemSource",
    "KeywordItemSource",
    "InMemoryItemSource",
    "cosine_similarity",
    # Classification
    "ClassifierModel",
    "ClassifierTrainer",
    "ClassifierPredictor",
    "ModelStore",
    "Prediction",
    "evaluate_model",
    # Progress
    "ProgressReporter",
    "ResultSink",
    # Jobs
    "CategorizationJob",
    "TypingJob",
    "JobSummary",
    # Models
    "AssignmentResult",
    "EmbeddingSource",
    "Item",
    "LabeledSample",
    # Exceptions
    "SemanticCategorizerError",
    "ConfigurationError",
    "DatabaseError",
    "ValidationError",
    "EmbeddingProviderError",
    "ProviderAuthError",
    "ProviderRateLimitedError",
    "ProviderTransportError",
    "ProviderResponseError",
    "CacheMissError",
    "InvalidEmbeddingError",
    "InvalidEmbeddingDimensionError",
    "MalformedCachedPayloadError",
    "ModelCompatibilityError",
    "OperationAbortedError",
]
