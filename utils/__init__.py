"""
Utils Module
Logging, error taxonomy and retry helpers.
"""
from .logger import setup_logger, get_logger, configure_root_logging
from .exceptions import (
    EnrichmentError,
    ConfigurationError,
    ValidationError,
    BudgetExceededError,
    NotFoundError,
    ActiveJobError,
    ReviewStateError,
    TransientProviderError,
    StorageError,
    DuplicateError,
    ExtractionError,
)
from .retry import RetryPolicy, NO_RETRY

__all__ = [
    "setup_logger",
    "get_logger",
    "configure_root_logging",
    "EnrichmentError",
    "ConfigurationError",
    "ValidationError",
    "BudgetExceededError",
    "NotFoundError",
    "ActiveJobError",
    "ReviewStateError",
    "TransientProviderError",
    "StorageError",
    "DuplicateError",
    "ExtractionError",
    "RetryPolicy",
    "NO_RETRY",
]
