"""Pin CatalogConfig loading and helper behavior."""

import sys
from pathlib import Path

import pytest

BACKEND_DIR = Path(__file__).resolve().parent.parent
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

import config_loader
from config_loader import CatalogConfig, get_config, load_catalog_config, reload_config


class TestConfigLoading:
    def test_load_config_returns_catalog_config(self, config):
        assert isinstance(config, CatalogConfig)

    def test_config_has_node_labels(self, config):
        assert config.graph_schema.node_labels == [
            "Industry", "Sector", "Department", "PainPoint", "ProjectOpportunity",
            "ProjectBlueprint", "Role", "Module", "SubModule",
        ]

    def test_config_has_relationships(self, config):
        assert "(Industry)-[:HAS_SECTOR]->(Sector)" in config.graph_schema.relationships
        assert len(config.graph_schema.relationships) == 10

    def test_orchestrator_thresholds(self, config):
        orch = config.orchestrator
        assert orch.large_result_threshold == 100
        assert orch.clarification_confidence_ceiling == 0.5
        assert orch.valid_match_threshold == 0.3
        assert orch.max_validation_failures == 2
        assert orch.max_empty_result_suggestions == 4

    def test_provider_pool_tunables(self, config):
        pool = config.provider_pool
        assert pool.base_backoff_s == 1.0
        assert pool.backoff_multiplier == 1.5
        assert pool.max_backoff_s == 60.0
        assert pool.max_global_attempts == 5
        assert pool.backoff_status_ttl_s == 120.0

    def test_business_context_keys(self, config):
        assert config.business_context_keys[:2] == ["company", "original_company"]

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding="utf-8")
        cfg = load_catalog_config(str(path))
        assert cfg.orchestrator.large_result_threshold == 100
        assert cfg.graph_schema.name_properties == ["name", "title"]

    def test_env_var_overrides_path(self, tmp_path, monkeypatch):
        path = tmp_path / "custom.yaml"
        path.write_text("orchestrator:\n  large_result_threshold: 5\n", encoding="utf-8")
        monkeypatch.setenv("CATALOG_CONFIG_PATH", str(path))
        assert load_catalog_config().orchestrator.large_result_threshold == 5

    def test_get_config_is_cached_and_reloadable(self, monkeypatch):
        monkeypatch.setattr(config_loader, "_config", None)
        first = get_config()
        assert get_config() is first
        assert reload_config() is not first


class TestContextualSuggestions:
    def test_keyword_rule(self, config):
        assert config.contextual_suggestions("Acme Retail Group") == ["Retail Banking", "Consumer Banking"]

    def test_multiple_rules_are_merged_in_rule_order(self, config):
        suggestions = config.contextual_suggestions("private health wealth life")
        assert suggestions == ["Health Insurance", "Life Insurance", "Private Banking"]

    def test_bank_keyword(self, config):
        assert config.contextual_suggestions("Quantum Bank") == ["Banking", "Retail Banking"]

    @pytest.mark.parametrize("entity", ["Zorblax", "", None])
    def test_default_suggestions(self, config, entity):
        assert config.contextual_suggestions(entity) == [
            "Banking", "Insurance", "Retail Banking", "Commercial Banking",
        ]
