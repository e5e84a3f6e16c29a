"""
Exception hierarchy for the translation engine.

Every error carries a ``recoverable`` flag. The retry manager only retries
recoverable errors (network failures, rate limiting, 5xx responses);
everything else propagates immediately.
"""

from typing import Optional, Dict, Any


class TranslationError(Exception):
    """Base exception for all translation-related errors.

    Attributes:
        message: Human-readable error message
        context: Additional context about the error
        recoverable: Whether the error can potentially be recovered from
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        recoverable: bool = False
    ):
        super().__init__(message)
        self.message = message
        self.context = context or {}
        self.recoverable = recoverable

    def __str__(self) -> str:
        base = f"{self.__class__.__name__}: {self.message}"
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base += f" (context: {context_str})"
        return base


# ============================================================================
# LLM-related errors
# ============================================================================

class LLMError(TranslationError):
    """Base exception for model provider errors."""
    pass


class LLMConnectionError(LLMError):
    """Raised when the connection to the model provider fails.

    This is recoverable by retrying the request.
    """

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message, context, recoverable=True)


class LLMTimeoutError(LLMError):
    """Raised when a request to the model provider times out."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message, context, recoverable=True)


class LLMRateLimitError(LLMError):
    """Raised when rate limit is exceeded.

    This is recoverable by waiting and retrying.
    """

    def __init__(
        self,
        message: str,
        retry_after: Optional[float] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        ctx = context or {}
        if retry_after is not None:
            ctx['retry_after'] = retry_after
        super().__init__(message, ctx, recoverable=True)
        self.retry_after = retry_after


class LLMServerError(LLMError):
    """Raised on 5xx responses from the provider."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        ctx = context or {}
        if status_code is not None:
            ctx['status_code'] = status_code
        super().__init__(message, ctx, recoverable=True)
        self.status_code = status_code


class LLMAuthenticationError(LLMError):
    """Raised when authentication fails (missing/invalid API key).

    This is NOT recoverable without user intervention.
    """

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message, context, recoverable=False)


class LLMRequestError(LLMError):
    """Raised on a rejected request (4xx other than auth and rate limit)."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        ctx = context or {}
        if status_code is not None:
            ctx['status_code'] = status_code
        super().__init__(message, ctx, recoverable=False)
        self.status_code = status_code


class LLMResponseError(LLMError):
    """Raised when the model response is empty or not the JSON we asked for."""

    def __init__(
        self,
        message: str,
        content_preview: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        ctx = context or {}
        if content_preview:
            ctx['content_preview'] = content_preview[:200]
        super().__init__(message, ctx, recoverable=False)


# ============================================================================
# Document errors
# ============================================================================

class ExtractionError(TranslationError):
    """Raised when a document cannot be parsed into translation units."""

    def __init__(
        self,
        message: str,
        original_error: Optional[Exception] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        ctx = context or {}
        if original_error:
            ctx['original_error'] = str(original_error)
        super().__init__(message, ctx, recoverable=False)


class DispatchError(TranslationError):
    """Raised when every chunk of a dispatch failed.

    Attributes:
        failures: chunk index -> failure reason
    """

    def __init__(
        self,
        message: str,
        failures: Optional[Dict[int, str]] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, context, recoverable=False)
        self.failures = failures or {}


# ============================================================================
# Generation and storage errors
# ============================================================================

class GenerationError(TranslationError):
    """Raised when the image generation service rejects or fails a task."""
    pass


class GenerationTimeoutError(GenerationError):
    """Raised when a generation task does not finish within the poll window."""

    def __init__(
        self,
        message: str,
        task_id: Optional[str] = None,
        waited: Optional[float] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        ctx = context or {}
        if task_id:
            ctx['task_id'] = task_id
        if waited is not None:
            ctx['waited'] = round(waited, 1)
        super().__init__(message, ctx, recoverable=False)


class StorageError(TranslationError):
    """Raised when an artifact cannot be uploaded."""
    pass


# ============================================================================
# Task errors
# ============================================================================

class TaskNotFoundError(TranslationError):
    """Raised when a task or job id does not exist."""

    def __init__(self, message: str, task_id: Optional[str] = None):
        super().__init__(message, {'task_id': task_id} if task_id else None)
        self.task_id = task_id


class TaskClaimError(TranslationError):
    """Raised when a task is already being processed by another worker."""
    pass


# ============================================================================
# Configuration errors
# ============================================================================

class ConfigurationError(TranslationError):
    """Raised when configuration is invalid or missing."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message, context, recoverable=False)


# ============================================================================
# Retry exhaustion
# ============================================================================

class RetryExhaustedError(TranslationError):
    """Raised when all retry attempts have been exhausted.

    Attributes:
        original_error: The original error that triggered retries
        attempts: Number of retry attempts made
    """

    def __init__(
        self,
        message: str,
        original_error: Optional[Exception] = None,
        attempts: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        ctx = context or {}
        if original_error:
            ctx['original_error'] = str(original_error)
            ctx['original_error_type'] = type(original_error).__name__
        if attempts is not None:
            ctx['attempts'] = attempts
        super().__init__(message, ctx, recoverable=False)
        self.original_error = original_error
        self.attempts = attempts


# ============================================================================
# Validation errors
# ============================================================================

class ValidationError(TranslationError):
    """Raised when required input is missing or invalid."""
    pass
