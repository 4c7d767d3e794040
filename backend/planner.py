"""Execution planner: turns a user question into an ExecutionPlan."""

import asyncio
import logging
from typing import Optional

from config_loader import CatalogConfig, get_config
from llm_manager import GenerationCancelled, LLMManager, LLMManagerError
from llm_providers import GenerationOptions
from models import ExecutionPlan, PlanValidationError
from prompts import FALLBACK_CLARIFICATION_MESSAGE, FALLBACK_CLARIFICATION_SUGGESTIONS, PLANNER_PROMPT

logger = logging.getLogger(__name__)

PLANNER_OPTIONS = GenerationOptions(temperature=0.1, max_tokens=800)
HISTORY_WINDOW = 6


def fallback_plan(message: str = FALLBACK_CLARIFICATION_MESSAGE) -> ExecutionPlan:
    """Single clarify_with_user step used whenever no usable plan is produced."""
    return ExecutionPlan.parse([{
        "task_type": "clarify_with_user",
        "params": {"message": message, "suggestions": list(FALLBACK_CLARIFICATION_SUGGESTIONS)},
        "on_failure": "halt",
        "reasoning": "Could not build an execution plan for this question",
    }])


def _format_history(history) -> str:
    lines = []
    for msg in (history or [])[-HISTORY_WINDOW:]:
        role = msg.get("role") if isinstance(msg, dict) else getattr(msg, "role", "user")
        content = msg.get("content") if isinstance(msg, dict) else getattr(msg, "content", "")
        lines.append(f"{role}: {content}")
    return "\n".join(lines) or "No previous context"


class ExecutionPlanner:
    def __init__(self, llm_manager: LLMManager, config: Optional[CatalogConfig] = None):
        self.llm = llm_manager
        self.config = config or get_config()

    def build_prompt(self, question: str, history=None) -> str:
        schema = self.config.graph_schema
        return PLANNER_PROMPT.format(
            node_labels=", ".join(schema.node_labels),
            relationships="\n".join(f"- {rel}" for rel in schema.relationships),
            history=_format_history(history),
            question=question,
        )

    async def generate_plan(
        self,
        question: str,
        history=None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ExecutionPlan:
        logger.info(f"[ExecutionPlanner] Generating execution plan for query: \"{question}\"")
        prompt = self.build_prompt(question, history)

        for attempt in range(2):
            try:
                data = await self.llm.generate_json(prompt, PLANNER_OPTIONS, cancel_event=cancel_event)
            except GenerationCancelled:
                raise
            except LLMManagerError as e:
                logger.error(f"[ExecutionPlanner] Plan generation failed: {e}")
                return fallback_plan()

            if data is None:
                logger.warning(f"[ExecutionPlanner] Response was not JSON (attempt {attempt + 1})")
                continue
            try:
                plan = ExecutionPlan.parse(data)
            except PlanValidationError as e:
                logger.warning(f"[ExecutionPlanner] Rejected plan: {e}")
                return fallback_plan()
            if not plan.plan:
                logger.warning("[ExecutionPlanner] Planner returned an empty plan")
                return fallback_plan()
            logger.info(f"[ExecutionPlanner] Generated plan with {len(plan)} steps")
            return plan

        return fallback_plan()
