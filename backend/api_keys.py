"""
Provider settings for the Catalog Assistant LLM pool.

Reads API keys, model names and the primary/fallback order exclusively from
environment variables. Keys are never exposed in full via the API — only
masked versions are returned.
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv(dotenv_path=os.path.join(os.path.dirname(__file__), "..", ".env"))


PROVIDERS = {
    "groq": {
        "env_vars": ["GROQ_API_KEY"],
        "model_env_var": "GROQ_MODEL",
        "default_model": "llama-3.3-70b-versatile",
        "label": "Groq (Llama)",
    },
    "gemini": {
        "env_vars": ["GEMINI_API_KEY", "GOOGLE_API_KEY"],
        "model_env_var": "GEMINI_MODEL",
        "default_model": "gemini-2.0-flash",
        "label": "Google Gemini",
    },
    "anthropic": {
        "env_vars": ["ANTHROPIC_API_KEY"],
        "model_env_var": "ANTHROPIC_MODEL",
        "default_model": "claude-sonnet-4-5-20250929",
        "label": "Anthropic",
    },
}

DEFAULT_PRIMARY_PROVIDER = "groq"
DEFAULT_FALLBACK_PROVIDERS = ["gemini"]


@dataclass(frozen=True)
class ProviderRecord:
    """Static provider configuration. Built once from the environment."""
    name: str
    model: Optional[str]
    api_key: Optional[str]

    @property
    def configured(self) -> bool:
        return bool(self.api_key) and bool(self.model)


class ApiKeyStatus(BaseModel):
    provider: str
    label: str
    configured: bool
    model: Optional[str] = None
    masked_key: Optional[str] = None


class ApiKeysManager:

    def get_key(self, provider: str) -> Optional[str]:
        """Get API key for a provider from environment variables."""
        for env_var in PROVIDERS.get(provider, {}).get("env_vars", []):
            value = os.getenv(env_var)
            if value:
                return value
        return None

    def get_model(self, provider: str) -> Optional[str]:
        meta = PROVIDERS.get(provider)
        if not meta:
            return None
        return os.getenv(meta["model_env_var"]) or meta["default_model"]

    def get_record(self, provider: str) -> ProviderRecord:
        return ProviderRecord(
            name=provider,
            model=self.get_model(provider),
            api_key=self.get_key(provider),
        )

    def get_primary_provider(self) -> str:
        return os.getenv("LLM_PRIMARY_PROVIDER", DEFAULT_PRIMARY_PROVIDER).strip()

    def get_fallback_providers(self) -> list[str]:
        raw = os.getenv("LLM_FALLBACK_PROVIDERS")
        if not raw:
            return list(DEFAULT_FALLBACK_PROVIDERS)
        return [name.strip() for name in raw.split(",") if name.strip()]

    def get_status(self) -> list[ApiKeyStatus]:
        """Get masked status for all providers."""
        result = []
        for provider, meta in PROVIDERS.items():
            key = self.get_key(provider)
            masked = None
            if key and len(key) > 8:
                masked = f"{key[:4]}...{key[-4:]}"
            elif key:
                masked = "***"
            result.append(ApiKeyStatus(
                provider=provider,
                label=meta["label"],
                configured=self.get_record(provider).configured,
                model=self.get_model(provider),
                masked_key=masked,
            ))
        return result

    def get_configured_providers(self) -> list[str]:
        """Return list of provider names that have keys configured."""
        return [s.provider for s in self.get_status() if s.configured]


api_keys_manager = ApiKeysManager()
