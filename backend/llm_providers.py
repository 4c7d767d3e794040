"""
Unified LLM Provider Abstraction for the Catalog Assistant.

Every backend is reduced to a single synchronous ``generate_text`` call plus a
pure ``classify_error`` used by the provider pool to decide between retrying,
backing off and switching providers. SDK clients are created lazily so a
missing key never breaks import.
"""

import json
import logging
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from api_keys import ProviderRecord, api_keys_manager

logger = logging.getLogger(__name__)


class ErrorCategory(str, Enum):
    QUOTA_EXCEEDED = "quota_exceeded"
    ACCESS_DENIED = "access_denied"
    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    TEMPORARY_SERVER_ERROR = "temporary_server_error"
    UNKNOWN = "unknown"


@dataclass
class GenerationOptions:
    temperature: float = 0.7
    max_tokens: int = 4000
    top_p: float = 1.0


class ProviderError(Exception):
    """Raised by a provider for any transport or API failure."""

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        status: Optional[int] = None,
        category: Optional[ErrorCategory] = None,
    ):
        super().__init__(message)
        self.provider = provider
        self.status = status
        self.category = category


def _status_of(error: BaseException) -> Optional[int]:
    """Pull an HTTP-ish status code out of SDK exceptions (openai, google-genai, anthropic)."""
    for attr in ("status", "status_code", "code"):
        value = getattr(error, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    return None


_RATE_LIMIT_MARKERS = ("rate limit", "too many requests", "rate exceeded")
_ACCESS_MARKERS = ("unauthorized", "forbidden", "invalid api key", "access denied", "authentication failed")
_TIMEOUT_MARKERS = ("timeout", "timed out")
_TEMPORARY_MARKERS = (
    "unavailable", "try again", "internal server error", "temporary",
    "network error", "connection error", "bad gateway",
)


class LLMProvider(ABC):
    name: str = "unknown"
    label: str = "Unknown"
    # Message fragments that mean the account ran out of quota
    quota_markers: tuple[str, ...] = ("quota", "exceeded", "limit reached", "billing details")

    def __init__(self, record: Optional[ProviderRecord] = None):
        self.record = record or api_keys_manager.get_record(self.name)
        self._client = None

    @property
    def model(self) -> Optional[str]:
        return self.record.model

    def is_configured(self) -> bool:
        return self.record.configured

    @abstractmethod
    def _generate(self, prompt: str, options: GenerationOptions) -> str:
        """Backend call. Called from the pool manager's thread pool."""
        ...

    def generate_text(self, prompt: str, options: Optional[GenerationOptions] = None) -> str:
        options = options or GenerationOptions()
        if not self.is_configured():
            raise ProviderError(f"{self.label} provider not configured", provider=self.name)

        t0 = time.time()
        try:
            text = self._generate(prompt, options)
        except ProviderError:
            raise
        except Exception as e:
            category = self.classify_error(e)
            logger.error(f"[{self.name}] Generation error ({category.value}): {e}")
            raise ProviderError(str(e), provider=self.name, status=_status_of(e), category=category) from e

        if not text:
            raise ProviderError(
                f"No response generated from {self.label}",
                provider=self.name,
                category=ErrorCategory.TEMPORARY_SERVER_ERROR,
            )
        logger.debug(f"[{self.name}] generated {len(text)} chars in {time.time() - t0:.2f}s")
        return text

    def classify_error(self, error: BaseException) -> ErrorCategory:
        """Map a raw error to a recovery category. Pure."""
        if isinstance(error, ProviderError) and error.category is not None:
            return error.category
        if isinstance(error, TimeoutError):
            return ErrorCategory.TIMEOUT

        message = str(error).lower()
        status = error.status if isinstance(error, ProviderError) else _status_of(error)

        has_quota_marker = any(m in message for m in self.quota_markers)
        has_rate_marker = any(m in message for m in _RATE_LIMIT_MARKERS)

        if status == 429 and has_rate_marker and not has_quota_marker:
            return ErrorCategory.RATE_LIMITED
        if status in (429, 402) or has_quota_marker:
            return ErrorCategory.QUOTA_EXCEEDED
        if has_rate_marker:
            return ErrorCategory.RATE_LIMITED
        if status in (401, 403) or any(m in message for m in _ACCESS_MARKERS):
            return ErrorCategory.ACCESS_DENIED
        if any(m in message for m in _TIMEOUT_MARKERS):
            return ErrorCategory.TIMEOUT
        if (status is not None and 500 <= status < 600) or any(m in message for m in _TEMPORARY_MARKERS):
            return ErrorCategory.TEMPORARY_SERVER_ERROR
        return ErrorCategory.UNKNOWN

    def get_info(self) -> dict:
        return {
            "name": self.name,
            "label": self.label,
            "model": self.model,
            "configured": self.is_configured(),
        }


class GroqProvider(LLMProvider):
    """Llama models through Groq's OpenAI-compatible chat completions API."""
    name = "groq"
    label = "Groq (Llama)"
    base_url = "https://api.groq.com/openai/v1"

    def _get_client(self):
        if self._client is None:
            from openai import OpenAI
            self._client = OpenAI(api_key=self.record.api_key, base_url=self.base_url)
        return self._client

    def _generate(self, prompt: str, options: GenerationOptions) -> str:
        response = self._get_client().chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": prompt}],
            temperature=options.temperature,
            max_tokens=options.max_tokens,
            top_p=options.top_p,
            stream=False,
        )
        if not response.choices:
            raise ProviderError("No response generated from Groq", provider=self.name,
                                category=ErrorCategory.TEMPORARY_SERVER_ERROR)
        return (response.choices[0].message.content or "").strip()


class GeminiProvider(LLMProvider):
    name = "gemini"
    label = "Gemini"
    quota_markers = LLMProvider.quota_markers + (
        "current quota", "quotafailure", "generativelanguage.googleapis.com", "resource_exhausted",
    )

    def _get_client(self):
        if self._client is None:
            from google import genai
            self._client = genai.Client(api_key=self.record.api_key)
        return self._client

    def _generate(self, prompt: str, options: GenerationOptions) -> str:
        from google.genai import types

        response = self._get_client().models.generate_content(
            model=self.model,
            contents=[
                types.Content(
                    role="user",
                    parts=[types.Part.from_text(text=prompt)],
                )
            ],
            config=types.GenerateContentConfig(
                temperature=options.temperature,
                max_output_tokens=options.max_tokens,
                top_p=options.top_p,
            ),
        )
        return (response.text or "").strip()


class AnthropicProvider(LLMProvider):
    name = "anthropic"
    label = "Claude"

    def _get_client(self):
        if self._client is None:
            import anthropic
            self._client = anthropic.Anthropic(api_key=self.record.api_key)
        return self._client

    def _generate(self, prompt: str, options: GenerationOptions) -> str:
        response = self._get_client().messages.create(
            model=self.model,
            max_tokens=options.max_tokens,
            temperature=options.temperature,
            messages=[{"role": "user", "content": prompt}],
        )
        text = response.content[0].text if response.content else ""
        return text.strip()


PROVIDER_CLASSES: dict[str, type[LLMProvider]] = {
    GroqProvider.name: GroqProvider,
    GeminiProvider.name: GeminiProvider,
    AnthropicProvider.name: AnthropicProvider,
}


def build_provider(name: str) -> Optional[LLMProvider]:
    """Instantiate a provider from environment configuration, or None if unknown."""
    provider_cls = PROVIDER_CLASSES.get(name)
    if provider_cls is None:
        logger.warning(f"Unknown LLM provider '{name}' ignored")
        return None
    return provider_cls(api_keys_manager.get_record(name))


# =============================================================================
# JSON RESPONSE REPAIR
# =============================================================================

def clean_json_response(text: str) -> str:
    """Strip markdown fences, extra prose, and whitespace from LLM JSON output."""
    text = text.strip()
    # Remove markdown fences
    if text.startswith("```json"):
        text = text[7:]
    elif text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]
    text = text.strip()

    # If the response has extra text around the JSON, extract the JSON portion
    if text and text[0] not in ('[', '{'):
        arr_start = text.find('[')
        obj_start = text.find('{')
        if arr_start == -1 and obj_start == -1:
            return text
        if arr_start == -1:
            start = obj_start
        elif obj_start == -1:
            start = arr_start
        else:
            start = min(arr_start, obj_start)
        text = text[start:]

    if text and text[-1] not in (']', '}'):
        arr_end = text.rfind(']')
        obj_end = text.rfind('}')
        end = max(arr_end, obj_end)
        if end > 0:
            text = text[:end + 1]

    return text.strip()


def parse_json_response(text: Optional[str]) -> Optional[list | dict]:
    """Parse JSON with stateful bracket-tracking repair for truncated output."""
    if not text or not isinstance(text, str):
        return None
    cleaned = clean_json_response(text)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass

    # Stateful repair: track open brackets/braces accounting for strings and escapes
    in_string = False
    escape_next = False
    stack = []
    for ch in cleaned:
        if escape_next:
            escape_next = False
            continue
        if ch == '\\' and in_string:
            escape_next = True
            continue
        if ch == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if ch in ('{', '['):
            stack.append(ch)
        elif ch == '}' and stack and stack[-1] == '{':
            stack.pop()
        elif ch == ']' and stack and stack[-1] == '[':
            stack.pop()

    repaired = cleaned
    if in_string:
        repaired += '"'
    for opener in reversed(stack):
        repaired += ']' if opener == '[' else '}'

    try:
        return json.loads(repaired)
    except json.JSONDecodeError:
        pass

    # Last resort: regex extract the outermost JSON structure from raw text
    for pattern in [r'(\{[\s\S]*\})', r'(\[[\s\S]*\])']:
        match = re.search(pattern, text)
        if match:
            try:
                return json.loads(match.group(1))
            except json.JSONDecodeError:
                continue

    return None
