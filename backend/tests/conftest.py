"""Shared fixtures for the Catalog Assistant test suite.

Loads the REAL bundled config (catalog_config.yaml) so thresholds and
suggestion rules are pinned to actual values.
Provides a mock GraphConnection and a scripted LLM pool so task and
orchestrator tests never touch FalkorDB or a provider API.
"""

import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest

# Ensure backend is importable
BACKEND_DIR = Path(__file__).resolve().parent.parent
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from config_loader import load_catalog_config
from llm_manager import ProvidersExhaustedError
from llm_providers import parse_json_response
from logic.orchestrator import Orchestrator
from logic.task_library import TaskLibrary


# =============================================================================
# CONFIG FIXTURES
# =============================================================================

@pytest.fixture
def config():
    """Load the real CatalogConfig from catalog_config.yaml (not mocked)."""
    return load_catalog_config()


# =============================================================================
# GRAPH DATA
# =============================================================================

def make_graph_data(node_count: int, group: str = "ProjectOpportunity") -> dict:
    """graph_data with ``node_count`` nodes chained by ``node_count - 1`` edges."""
    nodes = [
        {"id": str(i), "label": f"Project {i}", "group": group, "properties": {"name": f"Project {i}"}}
        for i in range(node_count)
    ]
    edges = [
        {"id": f"{i}-{i + 1}-RELATED", "from": str(i), "to": str(i + 1), "label": "RELATED", "properties": {}}
        for i in range(node_count - 1)
    ]
    return {"nodes": nodes, "edges": edges}


@pytest.fixture
def graph_data_factory():
    return make_graph_data


# =============================================================================
# MOCK DB FIXTURES
# =============================================================================

CATALOG_NAMES = [
    "Banking",
    "Insurance",
    "Retail Banking",
    "Commercial Banking",
    "Fraud Detection Platform",
    "Customer Onboarding",
]


def _make_mock_graph():
    """Mock GraphConnection with realistic return shapes.

    This mock defines the CONTRACT the FalkorDB-backed GraphConnection must
    satisfy for the task library.
    """
    graph = MagicMock()

    # --- Graph stats ---
    graph.verify_connection.return_value = True
    graph.get_node_count.return_value = 150
    graph.get_relationship_count.return_value = 300

    # --- Entity lookup ---
    graph.find_entity_exact.return_value = []
    graph.find_entity_candidates.return_value = []
    graph.get_entity_names.return_value = [
        {"name": name, "labels": ["Sector"]} for name in CATALOG_NAMES
    ]

    # --- Queries and traversal ---
    graph.run_read_query.return_value = {"graph_data": make_graph_data(3), "record_count": 3}
    graph.find_connection_paths.return_value = {"graph_data": make_graph_data(2), "path_lengths": [1]}
    graph.find_shared_connections.return_value = {"graph_data": {"nodes": [], "edges": []}, "record_count": 0}

    # --- Catalog overview (final answers) ---
    graph.get_catalog_overview.return_value = [
        {"industry": "Banking", "sectors": ["Retail Banking", "Commercial Banking"]},
        {"industry": "Insurance", "sectors": ["Property Insurance"]},
        {"industry": None, "sectors": ["Credit Unions"]},
    ]
    return graph


@pytest.fixture
def mock_graph():
    """Mock GraphConnection; override individual return values per test."""
    return _make_mock_graph()


# =============================================================================
# SCRIPTED LLM POOL
# =============================================================================

class ScriptedLLM:
    """Stands in for LLMManager: returns queued responses in order.

    Queue an Exception instance to make that call raise it. An empty queue
    behaves like a pool whose providers are all exhausted.
    """

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.calls = []

    async def generate_text(self, prompt, options=None, max_global_attempts=None,
                            business_context=None, cancel_event=None):
        self.calls.append({"prompt": prompt, "options": options, "business_context": business_context})
        if not self.responses:
            raise ProvidersExhaustedError("All providers exhausted after 0 attempts. Total time: 0s. Errors: ", [])
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    async def generate_json(self, prompt, options=None, **kwargs):
        return parse_json_response(await self.generate_text(prompt, options, **kwargs))


@pytest.fixture
def llm():
    return ScriptedLLM()


@pytest.fixture
def tasks(mock_graph, llm, config):
    return TaskLibrary(mock_graph, llm, config)


@pytest.fixture
def orchestrator(tasks, config):
    return Orchestrator(tasks, config)
