"""
Unit tests for the exception hierarchy and error classification
"""
import pytest

from chunkwise.core.exceptions import (
    EpubError,
    FingerprintMismatchError,
    LLMConnectionError,
    LLMContentSafetyError,
    LLMError,
    LLMInvalidRequestError,
    LLMRateLimitError,
    SessionError,
    TranslationError,
    XmlParsingError,
    classify_error,
    is_content_safety_error,
    is_rate_limit_error,
)


class TestTranslationError:

    def test_str_includes_context(self):
        """Should render the class name, message and context"""
        error = TranslationError("Failed", {'chunk': 3})

        assert str(error) == "TranslationError: Failed (context: chunk=3)"
        assert error.recoverable is False

    def test_rate_limit_retry_after(self):
        """Should keep retry_after in the context"""
        error = LLMRateLimitError("slow down", retry_after=30)

        assert error.retry_after == 30
        assert error.context['retry_after'] == 30

    def test_xml_parsing_error_truncates_preview(self):
        """Should keep at most 200 characters of the content preview"""
        error = XmlParsingError("bad xml", ValueError("boom"), "x" * 500)

        assert len(error.context['content_preview']) == 200
        assert error.context['original_error'] == "boom"
        assert isinstance(error, EpubError)

    def test_fingerprint_mismatch(self):
        """Should expose both fingerprints"""
        error = FingerprintMismatchError("different file", expected="fp_1", actual="fp_2")

        assert isinstance(error, SessionError)
        assert (error.expected, error.actual) == ("fp_1", "fp_2")


class TestClassification:
    """Tests for message-based classification"""

    @pytest.mark.parametrize("message, expected", [
        ("Response was blocked due to SAFETY", LLMContentSafetyError),
        ("finishReason: PROHIBITED_CONTENT", LLMContentSafetyError),
        ("429 Too Many Requests", LLMRateLimitError),
        ("RESOURCE_EXHAUSTED: quota", LLMRateLimitError),
        ("API key not valid. Please pass a valid API key.", LLMInvalidRequestError),
        ("Something odd happened", LLMError),
    ])
    def test_classify_error(self, message, expected):
        """Should map provider messages onto the typed hierarchy"""
        assert type(classify_error(message)) is expected

    def test_predicates_match_types_and_messages(self):
        """Should recognize both typed errors and plain messages"""
        assert is_rate_limit_error(LLMRateLimitError("x"))
        assert is_rate_limit_error(RuntimeError("HTTP 429"))
        assert not is_rate_limit_error(LLMConnectionError("refused"))
        assert is_content_safety_error(LLMContentSafetyError("empty"))
        assert is_content_safety_error(RuntimeError("HARM_CATEGORY_HARASSMENT"))
        assert not is_content_safety_error(ValueError("bad value"))
