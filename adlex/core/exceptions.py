from typing import Optional


class AppError(Exception):
    """Base exception for application errors."""
    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(message)
        self.message = message
        self.original_error = original_error

class APIClientError(AppError):
    """Raised when an external API call fails."""
    pass

class APITimeoutError(APIClientError):
    """Raised when an external API call times out."""
    pass

class ValidationError(AppError):
    """Raised when input validation fails."""
    pass

class ConfigurationError(AppError):
    """Raised when configuration is invalid or missing."""
    pass

class NotFoundError(AppError):
    """Raised when a requested record does not exist."""
    pass

class RepositoryError(AppError):
    """Raised when a database operation fails."""
    pass

class CheckStateConflictError(RepositoryError):
    """Raised when a conditional status update matched no row.

    The check was no longer in the expected status, e.g. a timeout already
    marked it failed before the late result tried to complete it.
    """
    pass

class PipelineError(AppError):
    """Raised when the check pipeline fails."""
    pass

class PipelineTimeoutError(PipelineError):
    """Raised when a check exceeds its processing budget."""
    pass

class CheckCancelledError(PipelineError):
    """Raised when a check is cancelled while queued or in flight.

    The message is stored on the failed check as-is.
    """
    pass

class OCRError(AppError):
    """Raised when text extraction from an image fails."""
    pass

class ImageProcessingError(OCRError):
    """Raised when the image itself cannot be loaded or referenced."""
    pass

class EmbeddingServiceError(AppError):
    """Raised when embedding generation fails. Never fatal to a check."""
    pass

class ChatCompletionError(AppError):
    """Raised when violation detection fails after all retries."""
    pass
