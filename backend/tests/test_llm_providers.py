"""Tests for the provider adapter: error classification and JSON repair."""

import sys
from pathlib import Path

import pytest

BACKEND_DIR = Path(__file__).resolve().parent.parent
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from api_keys import ProviderRecord
from llm_providers import (
    AnthropicProvider,
    ErrorCategory,
    GeminiProvider,
    GenerationOptions,
    GroqProvider,
    LLMProvider,
    ProviderError,
    build_provider,
    clean_json_response,
    parse_json_response,
)


class StatusError(Exception):
    """SDK-style exception carrying an HTTP status code."""

    def __init__(self, message, status_code):
        super().__init__(message)
        self.status_code = status_code


class EchoProvider(LLMProvider):
    name = "echo"
    label = "Echo"

    def __init__(self, record=None, reply="hello", error=None):
        super().__init__(record or ProviderRecord(name="echo", model="echo-1", api_key="key"))
        self.reply = reply
        self.error = error

    def _generate(self, prompt, options):
        if self.error is not None:
            raise self.error
        return self.reply


# =============================================================================
# ERROR CLASSIFICATION
# =============================================================================

class TestClassifyError:

    @pytest.fixture
    def provider(self):
        return EchoProvider()

    def test_429_with_quota_wording_is_quota_exceeded(self, provider):
        err = ProviderError("You exceeded your current quota", status=429)
        assert provider.classify_error(err) == ErrorCategory.QUOTA_EXCEEDED

    def test_429_rate_limit_without_quota_wording_is_rate_limited(self, provider):
        err = ProviderError("Too many requests, slow down", status=429)
        assert provider.classify_error(err) == ErrorCategory.RATE_LIMITED

    def test_402_is_quota_exceeded(self, provider):
        assert provider.classify_error(StatusError("Payment required", 402)) == ErrorCategory.QUOTA_EXCEEDED

    def test_billing_message_without_status_is_quota_exceeded(self, provider):
        err = Exception("Please check your plan and billing details")
        assert provider.classify_error(err) == ErrorCategory.QUOTA_EXCEEDED

    @pytest.mark.parametrize("status", [401, 403])
    def test_auth_status_is_access_denied(self, provider, status):
        assert provider.classify_error(StatusError("nope", status)) == ErrorCategory.ACCESS_DENIED

    def test_invalid_api_key_message_is_access_denied(self, provider):
        assert provider.classify_error(Exception("Invalid API key provided")) == ErrorCategory.ACCESS_DENIED

    def test_timeout_message(self, provider):
        assert provider.classify_error(Exception("Request timed out")) == ErrorCategory.TIMEOUT

    def test_builtin_timeout_error(self, provider):
        assert provider.classify_error(TimeoutError()) == ErrorCategory.TIMEOUT

    def test_5xx_is_temporary(self, provider):
        assert provider.classify_error(StatusError("oops", 503)) == ErrorCategory.TEMPORARY_SERVER_ERROR

    def test_unavailable_message_is_temporary(self, provider):
        assert provider.classify_error(Exception("Service unavailable, try again")) == \
            ErrorCategory.TEMPORARY_SERVER_ERROR

    def test_anything_else_is_unknown(self, provider):
        assert provider.classify_error(ValueError("weird")) == ErrorCategory.UNKNOWN

    def test_explicit_category_wins(self, provider):
        err = ProviderError("quota exceeded", status=429, category=ErrorCategory.TIMEOUT)
        assert provider.classify_error(err) == ErrorCategory.TIMEOUT

    def test_gemini_vendor_quota_markers(self):
        gemini = GeminiProvider(ProviderRecord(name="gemini", model="m", api_key="k"))
        err = Exception("QuotaFailure: generativelanguage.googleapis.com/generate_requests")
        assert gemini.classify_error(err) == ErrorCategory.QUOTA_EXCEEDED


# =============================================================================
# GENERATE TEXT WRAPPER
# =============================================================================

class TestGenerateText:

    def test_returns_backend_text(self):
        assert EchoProvider(reply="hi there").generate_text("prompt") == "hi there"

    def test_wraps_sdk_errors_with_category_and_status(self):
        provider = EchoProvider(error=StatusError("Rate limit reached for requests", 429))
        with pytest.raises(ProviderError) as exc_info:
            provider.generate_text("prompt", GenerationOptions(temperature=0.1))
        assert exc_info.value.status == 429
        assert exc_info.value.provider == "echo"
        assert exc_info.value.category == ErrorCategory.QUOTA_EXCEEDED

    def test_empty_response_is_temporary_error(self):
        with pytest.raises(ProviderError) as exc_info:
            EchoProvider(reply="").generate_text("prompt")
        assert exc_info.value.category == ErrorCategory.TEMPORARY_SERVER_ERROR

    def test_unconfigured_provider_refuses(self):
        provider = EchoProvider(record=ProviderRecord(name="echo", model="echo-1", api_key=None))
        assert not provider.is_configured()
        with pytest.raises(ProviderError, match="not configured"):
            provider.generate_text("prompt")

    def test_get_info(self):
        info = EchoProvider().get_info()
        assert info == {"name": "echo", "label": "Echo", "model": "echo-1", "configured": True}


class TestBuildProvider:

    def test_unknown_provider_is_none(self):
        assert build_provider("mystery") is None

    @pytest.mark.parametrize("name,cls", [
        ("groq", GroqProvider),
        ("gemini", GeminiProvider),
        ("anthropic", AnthropicProvider),
    ])
    def test_known_providers(self, name, cls, monkeypatch):
        monkeypatch.setenv("GROQ_API_KEY", "gsk-test")
        monkeypatch.setenv("GEMINI_API_KEY", "gem-test")
        monkeypatch.setenv("ANTHROPIC_API_KEY", "ant-test")
        provider = build_provider(name)
        assert isinstance(provider, cls)
        assert provider.is_configured()


# =============================================================================
# JSON REPAIR
# =============================================================================

class TestParseJsonResponse:

    def test_plain_object(self):
        assert parse_json_response('{"query": "MATCH (n) RETURN n"}') == {"query": "MATCH (n) RETURN n"}

    def test_markdown_fences(self):
        text = '```json\n{"plan": []}\n```'
        assert parse_json_response(text) == {"plan": []}

    def test_prose_around_json(self):
        text = 'Here is the plan:\n[{"task_type": "validate_entity"}]\nHope this helps.'
        assert parse_json_response(text) == [{"task_type": "validate_entity"}]

    def test_truncated_json_is_closed(self):
        text = '{"plan": [{"task_type": "execute_query", "params": {"query": "MATCH'
        parsed = parse_json_response(text)
        assert parsed["plan"][0]["task_type"] == "execute_query"
        assert parsed["plan"][0]["params"]["query"] == "MATCH"

    def test_not_json(self):
        assert parse_json_response("I cannot answer that") is None

    def test_empty_and_non_string(self):
        assert parse_json_response("") is None
        assert parse_json_response(None) is None

    def test_clean_keeps_bare_text(self):
        assert clean_json_response("  no json here  ") == "no json here"
