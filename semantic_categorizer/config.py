"""Configuration management and validation for the semantic categorizer."""

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"

SUPPORTED_DATABASE_SCHEMES = ("sqlite", "postgresql", "mysql")

# (environment variable, attribute, parser)
_ENV_OVERRIDES = (
    ("CATEGORIZER_DATABASE_URL", "database_url", str),
    ("CATEGORIZER_EMBEDDING_MODEL", "embedding_model", str),
    ("CATEGORIZER_API_KEY", "api_key", str),
    ("CATEGORIZER_API_BASE", "api_base", str),
    ("CATEGORIZER_EMBEDDING_CHUNK_SIZE", "embedding_chunk_size", int),
    ("CATEGORIZER_EMBEDDING_CHUNK_DELAY_MS", "embedding_chunk_delay_ms", int),
    ("CATEGORIZER_TARGET_PAGE_SIZE", "target_page_size", int),
    ("CATEGORIZER_CATEGORY_PAGE_SIZE", "category_page_size", int),
    ("CATEGORIZER_TRAINING_EPOCHS", "training_epochs", int),
    ("CATEGORIZER_LEARNING_RATE", "learning_rate", float),
    ("CATEGORIZER_TRAINING_BATCH_SIZE", "training_batch_size", int),
    ("CATEGORIZER_L2_REG", "l2_reg", float),
    ("CATEGORIZER_RATE_LIMIT_RETRIES", "rate_limit_retries", int),
)


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").lower() in {"1", "true", "yes"}


@dataclass
class CategorizerConfig:
    """Settings for embedding fetches, matching, training and storage."""

    # Database settings
    database_url: str

    # Embedding provider settings
    embedding_model: str = DEFAULT_EMBEDDING_MODEL
    api_key: Optional[str] = field(default=None, repr=False)
    api_base: Optional[str] = None
    request_timeout_seconds: float = 60.0

    # Fetch settings
    embedding_chunk_size: int = 64
    embedding_chunk_delay_ms: int = 50

    # Streaming matcher settings
    target_page_size: int = 2000
    category_page_size: int = 500

    # Training settings
    training_epochs: int = 500
    learning_rate: float = 0.1
    training_batch_size: int = 32
    l2_reg: float = 1e-4
    training_seed: Optional[int] = None

    # Job settings
    rate_limit_retries: int = 2
    rate_limit_backoff_seconds: float = 5.0

    # Additional settings
    extra_config: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        """Validate configuration parameters after initialization."""
        self._validate_all_parameters()
        self._load_environment_variables()

    def _validate_all_parameters(self):
        """Run all validation checks."""
        self._validate_database_url()
        self._validate_embedding_settings()
        self._validate_page_sizes()
        self._validate_training_settings()
        self._validate_job_settings()

    def _validate_database_url(self):
        """Check the URL names a backend the cache tables were tested on."""
        if not self.database_url:
            raise ConfigurationError(
                "database_url cannot be empty",
                parameter="database_url",
                suggested_fix="Provide a valid database URL (e.g., 'sqlite:///categorizer.db')",
            )

        scheme = self.database_url.split(":", 1)[0].split("+", 1)[0].lower()
        if scheme in SUPPORTED_DATABASE_SCHEMES:
            return

        if self.extra_config.get("allow_invalid_database_url") or _env_flag(
            "CATEGORIZER_ALLOW_INVALID_DATABASE_URL"
        ):
            logger.warning(
                f"Unrecognized database scheme '{scheme}' accepted "
                "because allow_invalid_database_url is set"
            )
            return

        raise ConfigurationError(
            f"database_url scheme not supported: '{scheme}'",
            parameter="database_url",
            suggested_fix=f"Use one of: {', '.join(SUPPORTED_DATABASE_SCHEMES)}",
        )

    def _validate_embedding_settings(self):
        """Validate embedding model and fetch batching."""
        if not self.embedding_model:
            raise ConfigurationError(
                "embedding_model cannot be empty",
                parameter="embedding_model",
                suggested_fix="Specify a model name (e.g., 'text-embedding-3-small')",
            )

        # Provider batch limits are in the low thousands; keep requests small.
        if not (0 < self.embedding_chunk_size <= 2048):
            raise ConfigurationError(
                f"embedding_chunk_size ({self.embedding_chunk_size}) must be between 1 and 2048",
                parameter="embedding_chunk_size",
                suggested_fix="Set embedding_chunk_size to a value between 1 and 2048",
            )

        if self.embedding_chunk_delay_ms < 0:
            raise ConfigurationError(
                f"embedding_chunk_delay_ms ({self.embedding_chunk_delay_ms}) cannot be negative",
                parameter="embedding_chunk_delay_ms",
                suggested_fix="Set embedding_chunk_delay_ms to 0 or more",
            )

        if self.request_timeout_seconds <= 0:
            raise ConfigurationError(
                f"request_timeout_seconds ({self.request_timeout_seconds}) must be positive",
                parameter="request_timeout_seconds",
            )

    def _validate_page_sizes(self):
        """Validate cursor page sizes."""
        for name in ("target_page_size", "category_page_size"):
            value = getattr(self, name)
            if not (0 < value <= 100_000):
                raise ConfigurationError(
                    f"{name} ({value}) must be between 1 and 100000",
                    parameter=name,
                    suggested_fix=f"Set {name} to a value in the low thousands",
                )

    def _validate_training_settings(self):
        """Validate logistic regression hyperparameters."""
        if self.training_epochs < 1:
            raise ConfigurationError(
                f"training_epochs ({self.training_epochs}) must be at least 1",
                parameter="training_epochs",
            )

        if self.learning_rate <= 0:
            raise ConfigurationError(
                f"learning_rate ({self.learning_rate}) must be positive",
                parameter="learning_rate",
                suggested_fix="Use a small positive value such as 0.1",
            )

        if self.training_batch_size < 1:
            raise ConfigurationError(
                f"training_batch_size ({self.training_batch_size}) must be at least 1",
                parameter="training_batch_size",
            )

        if self.l2_reg < 0:
            raise ConfigurationError(
                f"l2_reg ({self.l2_reg}) cannot be negative",
                parameter="l2_reg",
            )

    def _validate_job_settings(self):
        """Validate job-level retry policy."""
        if self.rate_limit_retries < 0:
            raise ConfigurationError(
                f"rate_limit_retries ({self.rate_limit_retries}) cannot be negative",
                parameter="rate_limit_retries",
            )

        if self.rate_limit_backoff_seconds < 0:
            raise ConfigurationError(
                f"rate_limit_backoff_seconds ({self.rate_limit_backoff_seconds}) cannot be negative",
                parameter="rate_limit_backoff_seconds",
            )

    def _load_environment_variables(self):
        """Apply CATEGORIZER_* overrides, then validate again."""
        for env_var, attr_name, cast in _ENV_OVERRIDES:
            raw = os.getenv(env_var)
            if not raw:
                continue
            try:
                setattr(self, attr_name, cast(raw))
            except ValueError:
                raise ConfigurationError(
                    f"Invalid value for {env_var}: {raw}",
                    parameter=attr_name,
                    suggested_fix=f"Provide a valid {cast.__name__} value",
                )

        self._validate_all_parameters()

    @property
    def embedding_chunk_delay_seconds(self) -> float:
        """Delay between provider chunks in seconds."""
        return self.embedding_chunk_delay_ms / 1000.0
