"""Configuration Loader for the Catalog Assistant.

This module provides a type-safe, validated configuration system.
Graph schema, orchestration thresholds, provider-pool backoff tunables and
entity suggestion rules are externalized to a YAML file.
"""

import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field


# =============================================================================
# PYDANTIC MODELS FOR CONFIGURATION VALIDATION
# =============================================================================

class DomainMeta(BaseModel):
    """Descriptive metadata for the catalog."""
    name: str = "AI Project Catalog"
    description: str = ""
    version: str = "1.0"


class GraphSchemaConfig(BaseModel):
    """Node labels and relationship patterns of the catalog graph."""
    node_labels: list[str] = Field(default_factory=list)
    relationships: list[str] = Field(default_factory=list)
    name_properties: list[str] = Field(default_factory=lambda: ["name", "title"])


class OrchestratorConfig(BaseModel):
    """Thresholds used by the plan interpreter."""
    large_result_threshold: int = 100
    clarification_confidence_ceiling: float = 0.5
    valid_match_threshold: float = 0.3
    typo_similarity_floor: float = 0.5
    max_validation_failures: int = 2
    max_clarification_suggestions: int = 3
    max_empty_result_suggestions: int = 4


class ProviderPoolConfig(BaseModel):
    """Backoff and timeout tunables for the LLM provider pool."""
    base_backoff_s: float = 1.0
    backoff_multiplier: float = 1.5
    max_backoff_s: float = 60.0
    max_global_attempts: int = 5
    max_provider_attempts: int = 3
    default_timeout_s: float = 15.0
    business_timeout_s: float = 30.0
    primary_reset_delay_s: float = 5.0
    backoff_status_ttl_s: float = 120.0
    worker_threads: int = 4


class SuggestionRule(BaseModel):
    """Keywords in an unknown entity name that map to real catalog entries."""
    keywords: list[str]
    suggestions: list[str]


class SimilarityPattern(BaseModel):
    """Domain synonym that earns a bonus during fuzzy matching."""
    pattern: str
    matches: list[str] = Field(default_factory=list)


class EntitySuggestionsConfig(BaseModel):
    default: list[str] = Field(default_factory=list)
    max_suggestions: int = 4
    rules: list[SuggestionRule] = Field(default_factory=list)
    similarity_patterns: list[SimilarityPattern] = Field(default_factory=list)


class CatalogConfig(BaseModel):
    """Root configuration object."""
    domain: DomainMeta = Field(default_factory=DomainMeta)
    graph_schema: GraphSchemaConfig = Field(default_factory=GraphSchemaConfig)
    orchestrator: OrchestratorConfig = Field(default_factory=OrchestratorConfig)
    provider_pool: ProviderPoolConfig = Field(default_factory=ProviderPoolConfig)
    entity_suggestions: EntitySuggestionsConfig = Field(default_factory=EntitySuggestionsConfig)
    business_context_keys: list[str] = Field(default_factory=list)

    def contextual_suggestions(self, entity: str) -> list[str]:
        """Map an unknown entity name to plausible catalog entries."""
        entity_lower = (entity or "").lower()
        suggestions: list[str] = []
        for rule in self.entity_suggestions.rules:
            if any(keyword in entity_lower for keyword in rule.keywords):
                suggestions.extend(rule.suggestions)

        if not suggestions:
            suggestions = list(self.entity_suggestions.default)

        # Remove duplicates, keep order
        return list(dict.fromkeys(suggestions))[:self.entity_suggestions.max_suggestions]


# =============================================================================
# LOADING
# =============================================================================

_BACKEND_DIR = Path(__file__).parent
DEFAULT_CONFIG_PATH = _BACKEND_DIR / "catalog_config.yaml"


def _resolve_config_path(config_path: Optional[str] = None) -> Path:
    if config_path:
        return Path(config_path)
    env_path = os.environ.get("CATALOG_CONFIG_PATH")
    if env_path:
        return Path(env_path)
    return DEFAULT_CONFIG_PATH


def load_catalog_config(config_path: Optional[str] = None) -> CatalogConfig:
    """Load and validate catalog configuration from YAML file.

    Args:
        config_path: Path to config file. If None, uses CATALOG_CONFIG_PATH
            or the bundled catalog_config.yaml.

    Returns:
        Validated CatalogConfig object
    """
    path = _resolve_config_path(config_path)
    with open(path, 'r', encoding='utf-8') as f:
        raw = yaml.safe_load(f) or {}
    return CatalogConfig.model_validate(raw)


_config: Optional[CatalogConfig] = None


def get_config() -> CatalogConfig:
    """Get the loaded catalog configuration (loaded on first use)."""
    global _config
    if _config is None:
        _config = load_catalog_config()
    return _config


def reload_config(config_path: Optional[str] = None) -> CatalogConfig:
    """Force reload configuration from file."""
    global _config
    _config = load_catalog_config(config_path)
    return _config
