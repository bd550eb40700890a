"""
Exception hierarchy for the translation pipeline.

This module provides the exception system used across chunking, the model
client, the executor/scheduler, EPUB processing and session persistence,
plus the message-pattern classification the executor relies on to decide
between stopping, retrying by sub-division, or failing a unit.
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
    """Base exception for LLM provider errors."""
    pass


class LLMRateLimitError(LLMError):
    """Raised when the quota or request rate is exceeded.

    The whole run is stopped when this is seen; it is never retried locally.
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
        super().__init__(message, ctx, recoverable=False)
        self.retry_after = retry_after


class LLMContentSafetyError(LLMError):
    """Raised when the response is blocked or comes back empty.

    This is recoverable by splitting the content into smaller units.
    """

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message, context, recoverable=True)


class LLMInvalidRequestError(LLMError):
    """Raised for bad credentials, unknown models or invalid arguments.

    This is NOT recoverable without user intervention.
    """

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message, context, recoverable=False)


class LLMResponseError(LLMError):
    """Raised when LLM response is invalid or unparseable."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message, context, recoverable=True)


class LLMConnectionError(LLMError):
    """Raised when connection to LLM provider fails or times out."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message, context, recoverable=True)


class TranslationCancelledError(TranslationError):
    """Raised when an in-flight request loses the race against a stop request."""

    def __init__(self, message: str = "Cancelled by user", context: Optional[Dict[str, Any]] = None):
        super().__init__(message, context, recoverable=False)


# ============================================================================
# Chunking errors
# ============================================================================

class ChunkingError(TranslationError):
    """Base exception for chunking operations."""
    pass


class ChunkingConfigurationError(ChunkingError):
    """Invalid chunking configuration."""
    pass


# ============================================================================
# EPUB errors
# ============================================================================

class EpubError(TranslationError):
    """Base exception for EPUB-specific errors."""
    pass


class XmlParsingError(EpubError):
    """Raised when XML/HTML parsing fails."""

    def __init__(
        self,
        message: str,
        original_error: Optional[Exception] = None,
        content_preview: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        ctx = context or {}
        if original_error:
            ctx['original_error'] = str(original_error)
        if content_preview:
            ctx['content_preview'] = content_preview[:200]
        super().__init__(message, ctx, recoverable=False)


class EpubStructureError(EpubError):
    """Raised when container.xml, the OPF, its manifest or its spine is unusable."""
    pass


class NodeInvariantError(EpubError):
    """Raised when a node's fields do not match its type."""
    pass


# ============================================================================
# Session/Resume errors
# ============================================================================

class SessionError(TranslationError):
    """Base exception for snapshot and resume errors."""
    pass


class SnapshotFormatError(SessionError):
    """Raised when a snapshot is missing required fields or is not valid JSON."""
    pass


class FingerprintMismatchError(SessionError):
    """Raised when a snapshot was taken from a different source file.

    Attributes:
        expected: Fingerprint recorded in the snapshot
        actual: Fingerprint of the currently loaded files
    """

    def __init__(self, message: str, expected: str = "", actual: str = ""):
        super().__init__(message, {'expected': expected, 'actual': actual}, recoverable=False)
        self.expected = expected
        self.actual = actual


# ============================================================================
# Configuration errors
# ============================================================================

class ConfigurationError(TranslationError):
    """Raised when configuration is invalid or missing."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message, context, recoverable=False)


# ============================================================================
# Error classification
# ============================================================================

CONTENT_SAFETY_PATTERNS = [
    'PROHIBITED_CONTENT',
    'SAFETY',
    'response was blocked',
    'BLOCKED_PROMPT',
    'SAFETY_BLOCKED',
    'blocked due to safety',
    'RECITATION',
    'HARM_CATEGORY',
    '500',
]

RATE_LIMIT_PATTERNS = [
    'rateLimitExceeded',
    '429',
    'Too Many Requests',
    'QUOTA_EXCEEDED',
    'RESOURCE_EXHAUSTED',
    'overloaded',
]

INVALID_REQUEST_PATTERNS = [
    'Invalid API key',
    'API key not valid',
    'Permission denied',
    'Invalid model name',
    'model is not found',
    '400',
    'INVALID_ARGUMENT',
]


def _matches(message: str, patterns: list) -> bool:
    lowered = message.lower()
    return any(pattern.lower() in lowered for pattern in patterns)


def classify_error(message: str, context: Optional[Dict[str, Any]] = None) -> LLMError:
    """
    Map a raw provider error message onto the typed hierarchy.

    Patterns are checked in order: content safety, rate limit, invalid request.
    Anything else becomes a plain LLMError.
    """
    if _matches(message, CONTENT_SAFETY_PATTERNS):
        return LLMContentSafetyError(message, context)
    if _matches(message, RATE_LIMIT_PATTERNS):
        return LLMRateLimitError(message, context=context)
    if _matches(message, INVALID_REQUEST_PATTERNS):
        return LLMInvalidRequestError(message, context)
    return LLMError(message, context)


def _message_of(error: BaseException) -> str:
    if isinstance(error, TranslationError):
        return error.message
    return str(error)


def is_rate_limit_error(error: BaseException) -> bool:
    """True for LLMRateLimitError or any error whose message looks like one."""
    return isinstance(error, LLMRateLimitError) or _matches(_message_of(error), RATE_LIMIT_PATTERNS)


def is_content_safety_error(error: BaseException) -> bool:
    """True for LLMContentSafetyError or any error whose message looks like one."""
    return isinstance(error, LLMContentSafetyError) or _matches(_message_of(error), CONTENT_SAFETY_PATTERNS)
