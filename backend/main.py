import asyncio
import logging
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from config_loader import get_config
from database import GraphConnection
from llm_manager import GenerationCancelled, LLMManager
from logic import Orchestrator, TaskLibrary
from models import (
    BackoffStatusResponse,
    ChatRequest,
    ExecutePlanRequest,
    ExecutionPlan,
    PlanValidationError,
    ProvidersResponse,
)
from planner import ExecutionPlanner

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger("main")

app = FastAPI(title="Catalog Assistant API")

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def startup_event():
    """Build the shared services once and warm up the graph connection."""
    logger.info("🚀 Starting server warmup...")
    config = get_config()
    graph = GraphConnection(name_properties=tuple(config.graph_schema.name_properties))
    graph.warmup()
    llm = LLMManager.from_environment(config.provider_pool)
    if not llm.has_configured_providers():
        logger.warning("⚠ No LLM providers configured; generation steps will fail")
    tasks = TaskLibrary(graph, llm, config)

    app.state.graph = graph
    app.state.llm = llm
    app.state.orchestrator = Orchestrator(tasks, config)
    app.state.planner = ExecutionPlanner(llm, config)
    logger.info("✅ Server ready!")


@app.on_event("shutdown")
async def shutdown_event():
    llm = getattr(app.state, "llm", None)
    if llm is not None:
        llm.close()
    graph = getattr(app.state, "graph", None)
    if graph is not None:
        graph.close()


# =============================================================================
# Dependencies (overridable in tests)
# =============================================================================

def get_graph(request: Request) -> GraphConnection:
    return request.app.state.graph


def get_llm_manager(request: Request) -> LLMManager:
    return request.app.state.llm


def get_orchestrator(request: Request) -> Orchestrator:
    return request.app.state.orchestrator


def get_planner(request: Request) -> ExecutionPlanner:
    return request.app.state.planner


async def _watch_disconnect(request: Request, cancel_event: asyncio.Event):
    """Set ``cancel_event`` when the client goes away so pending work stops."""
    while not cancel_event.is_set():
        if await request.is_disconnected():
            logger.info("Client disconnected; cancelling execution")
            cancel_event.set()
            return
        await asyncio.sleep(0.5)


class GraphStats(BaseModel):
    nodes: int
    relationships: int
    connected: bool


# =============================================================================
# Routes
# =============================================================================

@app.get("/")
async def root():
    return {"message": "Catalog Assistant API is running"}


@app.get("/health")
async def health():
    return {"status": "healthy"}


@app.post("/chat/execute-plan")
async def execute_plan(
    req: ExecutePlanRequest,
    request: Request,
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    """Run a caller-supplied execution plan."""
    try:
        plan = ExecutionPlan.parse(req.plan)
    except PlanValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))

    cancel_event = asyncio.Event()
    watcher = asyncio.create_task(_watch_disconnect(request, cancel_event))
    try:
        response = await orchestrator.execute(plan, business_context=req.business_context, cancel_event=cancel_event)
    finally:
        watcher.cancel()
    return response.to_dict()


@app.post("/chat")
async def chat(
    req: ChatRequest,
    request: Request,
    planner: ExecutionPlanner = Depends(get_planner),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    """Plan and execute a natural-language question."""
    cancel_event = asyncio.Event()
    watcher = asyncio.create_task(_watch_disconnect(request, cancel_event))
    try:
        plan = await planner.generate_plan(req.message, req.history, cancel_event=cancel_event)
        response = await orchestrator.execute(plan, business_context=req.business_context, cancel_event=cancel_event)
    except GenerationCancelled:
        return {"success": False, "error": "Request cancelled"}
    finally:
        watcher.cancel()

    data = response.to_dict()
    data["execution_plan"] = plan.model_dump(mode="json")
    return data


@app.get("/llm/backoff-status", response_model=BackoffStatusResponse)
async def backoff_status(llm: LLMManager = Depends(get_llm_manager)):
    """Provider backoff state for the UI's retry banner."""
    status: Optional[dict] = llm.get_backoff_status()
    return BackoffStatusResponse(active=status is not None, status=status)


@app.get("/llm/providers", response_model=ProvidersResponse)
async def llm_providers(llm: LLMManager = Depends(get_llm_manager)):
    current = llm.current_provider
    return {
        "providers": llm.get_providers_info(),
        "primary": llm.primary_provider.name if llm.primary_provider else None,
        "current": current.name if current else None,
    }


@app.get("/graph/stats", response_model=GraphStats)
async def get_graph_stats(graph: GraphConnection = Depends(get_graph)):
    """Get statistics about the graph database"""
    try:
        connected = graph.verify_connection()
        nodes = graph.get_node_count()
        relationships = graph.get_relationship_count()
        return GraphStats(nodes=nodes, relationships=relationships, connected=connected)
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
