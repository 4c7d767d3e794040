"""API endpoint integration tests — FastAPI endpoints with mocked backends.

Tests the HTTP layer: request/response shapes and error handling.
The app's dependencies are overridden so no FalkorDB or LLM provider is
contacted; the client is never entered as a context manager, which keeps
the startup hook (and its graph warmup) from running.
"""

import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

BACKEND_DIR = Path(__file__).resolve().parent.parent
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from llm_manager import GenerationCancelled
from main import app, get_graph, get_llm_manager, get_orchestrator, get_planner
from models import ExecutionPlan


class StubPlanner:
    def __init__(self, plan=None, error=None):
        self.plan = plan
        self.error = error
        self.questions = []

    async def generate_plan(self, question, history=None, cancel_event=None):
        self.questions.append((question, history))
        if self.error is not None:
            raise self.error
        return self.plan


@pytest.fixture
def llm_status():
    manager = MagicMock()
    manager.get_backoff_status.return_value = None
    manager.get_providers_info.return_value = [
        {"name": "groq", "label": "Groq", "model": "llama", "configured": True,
         "is_primary": True, "is_current": True, "cooldown_remaining_s": 0.0},
    ]
    manager.primary_provider.name = "groq"
    manager.current_provider.name = "groq"
    return manager


@pytest.fixture
def planner():
    return StubPlanner(ExecutionPlan.parse([
        {"task_type": "generate_query", "params": {"goal": "List sectors"}},
        {"task_type": "execute_query", "params": {"query": "$step1.output"}},
    ]))


@pytest.fixture
def client(orchestrator, planner, llm_status, mock_graph):
    """FastAPI test client with every service dependency overridden."""
    mock_graph.verify_connection.return_value = True
    mock_graph.get_node_count.return_value = 100
    mock_graph.get_relationship_count.return_value = 200

    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_planner] = lambda: planner
    app.dependency_overrides[get_llm_manager] = lambda: llm_status
    app.dependency_overrides[get_graph] = lambda: mock_graph
    yield TestClient(app)
    app.dependency_overrides.clear()


# =============================================================================
# HEALTH & BASIC ENDPOINTS
# =============================================================================

class TestHealthEndpoint:
    def test_health_returns_200(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "healthy"}

    def test_root_returns_200(self, client):
        resp = client.get("/")
        assert resp.status_code == 200
        assert "running" in resp.json()["message"]


# =============================================================================
# GRAPH STATS
# =============================================================================

class TestGraphStats:
    def test_graph_stats_shape(self, client):
        resp = client.get("/graph/stats")
        assert resp.status_code == 200
        assert resp.json() == {"nodes": 100, "relationships": 200, "connected": True}

    def test_graph_stats_error(self, client, mock_graph):
        mock_graph.verify_connection.side_effect = ConnectionError("Connection refused")
        resp = client.get("/graph/stats")
        assert resp.status_code == 500
        assert "Connection refused" in resp.json()["detail"]


# =============================================================================
# PLAN EXECUTION
# =============================================================================

class TestExecutePlan:
    def test_plan_is_executed(self, client, llm):
        llm.responses = ['{"query": "MATCH (i:Industry)-[r:HAS_SECTOR]->(s:Sector) RETURN i, r, s"}']
        resp = client.post("/chat/execute-plan", json={"plan": [
            {"task_type": "generate_query", "params": {"goal": "List sectors"}},
            {"task_type": "execute_query", "params": {"query": "$step1.output"}},
        ]})

        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["query_result"]["type"] == "query"
        assert len(data["execution_log"]) == 2
        assert "error" not in data

    def test_plan_object_form(self, client):
        resp = client.post("/chat/execute-plan", json={"plan": {"plan": [
            {"task_type": "clarify_with_user", "params": {"message": "Which sector?", "suggestions": ["Banking"]}},
        ]}})
        data = resp.json()
        assert data["needs_clarification"] is True
        assert data["suggestions"] == ["Banking"]

    def test_unknown_task_type_is_rejected(self, client):
        resp = client.post("/chat/execute-plan", json={"plan": [{"task_type": "summon_dragon"}]})
        assert resp.status_code == 422
        assert "Invalid execution plan" in resp.json()["detail"]

    def test_missing_plan_is_rejected(self, client):
        resp = client.post("/chat/execute-plan", json={})
        assert resp.status_code == 422


# =============================================================================
# CHAT
# =============================================================================

class TestChat:
    def test_chat_plans_and_executes(self, client, llm, planner):
        llm.responses = ['{"query": "MATCH (s:Sector) RETURN s", "params": {}}']
        resp = client.post("/chat", json={
            "message": "Which sectors exist?",
            "history": [{"role": "user", "content": "hi"}],
        })

        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert [s["task_type"] for s in data["execution_plan"]["plan"]] == ["generate_query", "execute_query"]
        question, history = planner.questions[0]
        assert question == "Which sectors exist?"
        assert history[0].content == "hi"

    def test_cancelled_chat(self, client, planner):
        planner.error = GenerationCancelled("Generation cancelled")
        resp = client.post("/chat", json={"message": "Which sectors exist?"})
        assert resp.json() == {"success": False, "error": "Request cancelled"}

    def test_message_is_required(self, client):
        resp = client.post("/chat", json={"history": []})
        assert resp.status_code == 422


# =============================================================================
# LLM STATUS
# =============================================================================

class TestLLMStatus:
    def test_backoff_status_idle(self, client):
        resp = client.get("/llm/backoff-status")
        assert resp.json() == {"active": False, "status": None}

    def test_backoff_status_active(self, client, llm_status):
        llm_status.get_backoff_status.return_value = {"is_retrying": True, "provider": "groq", "wait_s": 1.5}
        data = client.get("/llm/backoff-status").json()
        assert data["active"] is True
        assert data["status"]["provider"] == "groq"

    def test_providers(self, client):
        data = client.get("/llm/providers").json()
        assert data["primary"] == "groq"
        assert data["current"] == "groq"
        assert data["providers"][0]["configured"] is True

    def test_providers_response_is_filtered_to_declared_fields(self, client, llm_status):
        llm_status.get_providers_info.return_value = [
            {"name": "groq", "label": "Groq", "model": "llama", "configured": True, "api_key": "gsk-secret"},
        ]
        provider = client.get("/llm/providers").json()["providers"][0]
        assert "api_key" not in provider
        assert provider["is_primary"] is False
        assert provider["cooldown_remaining_s"] == 0.0
