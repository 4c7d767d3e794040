"""Orchestrator: plan interpreter and failure/loop controller.

Runs the steps of an ExecutionPlan strictly in order. Each step's params are
resolved against earlier outputs, dispatched to the TaskLibrary, logged, and
then either handled by the step's ``on_failure`` policy or inspected for
result shapes that end the plan early (clarification, final answer) or feed
the final response (graph data, analysis, creative text).

The checks after a successful step run in a fixed order; later checks assume
the earlier ones already returned for the common terminal cases.
"""

import asyncio
import json
import logging
import time
from datetime import datetime, timezone
from typing import Any, Optional

from config_loader import CatalogConfig, get_config
from llm_manager import GenerationCancelled
from logic.entity_matching import extract_entity_hints_from_query, generate_entity_suggestions
from logic.execution_state import ExecutionState, resolve_params
from logic.task_library import TaskLibrary
from models import (
    ExecutionLogEntry,
    ExecutionPlan,
    OnFailure,
    OrchestratorResponse,
    QueryResult,
    ReasoningStep,
    StepResult,
    TaskType,
)

logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _graph_counts(graph_data: Optional[dict]) -> tuple[int, int]:
    if not isinstance(graph_data, dict):
        return 0, 0
    return len(graph_data.get("nodes") or []), len(graph_data.get("edges") or [])


class _Run:
    """Mutable bookkeeping for one plan execution."""

    def __init__(self, business_context: Optional[dict]):
        self.state = ExecutionState()
        self.log: list[ExecutionLogEntry] = []
        self.final_result: Optional[dict] = None
        self.visualization_output: Optional[dict] = None
        self.retried: set[int] = set()
        self.business_context: dict = dict(business_context or {})


class Orchestrator:
    def __init__(self, task_library: TaskLibrary, config: Optional[CatalogConfig] = None):
        self.tasks = task_library
        self.config = config or get_config()

    async def execute(
        self,
        plan: ExecutionPlan,
        business_context: Optional[dict] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> OrchestratorResponse:
        """Execute every step of ``plan`` and build the caller-visible response."""
        logger.info(f"[Orchestrator] Starting execution of plan with {len(plan.plan)} steps")
        run = _Run(business_context)
        steps = plan.plan

        i = 0
        while i < len(steps):
            step = steps[i]
            step_number = i + 1

            if cancel_event is not None and cancel_event.is_set():
                return self._cancelled(run, step_number)

            logger.info(f"[Orchestrator] Executing step {step_number}: {step.task_type}")
            raw_params = step.params_dict()
            started = time.perf_counter()
            timestamp = _now_iso()
            resolved = raw_params

            try:
                resolved = resolve_params(raw_params, run.state, current_step=step_number)
                self._track_business_context(run, resolved)
                result = await self.tasks.run(step.task_type, resolved, cancel_event=cancel_event)
            except GenerationCancelled:
                self._append_log(run, step_number, step, resolved,
                                 StepResult.fail("Execution cancelled", "cancelled"), started, timestamp)
                return self._cancelled(run, step_number)
            except Exception as e:
                logger.error(f"[Orchestrator] Unexpected error at step {step_number}: {e}", exc_info=True)
                self._append_log(run, step_number, step, resolved,
                                 StepResult.fail(str(e), "unexpected_error"), started, timestamp)
                return OrchestratorResponse(
                    success=False,
                    error=f"Unexpected error at step {step_number}: {e}",
                    execution_log=run.log,
                    failed_at=step_number,
                )

            self._append_log(run, step_number, step, resolved, result, started, timestamp)

            if not result.success:
                logger.info(f"[Orchestrator] Step {step_number} failed: {result.error}")
                policy = step.on_failure

                recovery = self._business_context_recovery(run, step_number, result)
                if recovery is not None:
                    return recovery

                if policy == OnFailure.CONTINUE:
                    logger.info(f"[Orchestrator] Continuing execution despite step {step_number} failure")
                    run.state.record(step_number, result)
                    i += 1
                    continue
                if policy == OnFailure.RETRY and step_number not in run.retried:
                    logger.info(f"[Orchestrator] Retrying step {step_number}")
                    run.retried.add(step_number)
                    continue

                if policy == OnFailure.CLARIFY_AND_HALT:
                    return OrchestratorResponse(
                        success=False,
                        needs_clarification=True,
                        message=f"I need clarification: {result.error}",
                        execution_log=run.log,
                        failed_at=step_number,
                    )
                return OrchestratorResponse(
                    success=False,
                    error=f"Execution failed at step {step_number}: {result.error}",
                    execution_log=run.log,
                    failed_at=step_number,
                )

            run.state.record(step_number, result)
            try:
                response = await self._inspect_output(run, step, step_number, resolved, result.output)
            except GenerationCancelled:
                return self._cancelled(run, step_number)
            if response is not None:
                return response
            i += 1

        return self._finish(run)

    # ------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------

    def _append_log(self, run: _Run, step_number: int, step, params: dict, result: StepResult,
                    started: float, timestamp: str) -> None:
        run.log.append(ExecutionLogEntry(
            step_number=step_number,
            task_type=step.task_type,
            params=params,
            result=result,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
            timestamp=timestamp,
            reasoning=step.reasoning,
            success=result.success,
        ))

    def _cancelled(self, run: _Run, step_number: int) -> OrchestratorResponse:
        logger.info(f"[Orchestrator] Execution cancelled at step {step_number}")
        return OrchestratorResponse(
            success=False,
            error=f"Execution cancelled at step {step_number}",
            execution_log=run.log,
            failed_at=step_number,
        )

    # ------------------------------------------------------------------
    # Business context
    # ------------------------------------------------------------------

    def _track_business_context(self, run: _Run, params: dict) -> None:
        for key in self.config.business_context_keys:
            if params.get(key):
                run.business_context.setdefault(key, params[key])

    def _business_context_recovery(self, run: _Run, step_number: int,
                                   result: StepResult) -> Optional[OrchestratorResponse]:
        ctx = run.business_context
        if not ctx:
            return None

        company = ctx.get("original_company") or ctx.get("company")
        proxy_sectors = ctx.get("proxy_sectors") or []
        if isinstance(proxy_sectors, str):
            proxy_sectors = [proxy_sectors]
        business_impact = ctx.get("business_impact")
        logger.info(
            f"[Orchestrator] 🏢 Step {step_number} failed inside a business context "
            f"({company or 'unknown company'}); recovering instead of halting"
        )

        if proxy_sectors:
            suggestions = [f"What projects are available for {s}?" for s in proxy_sectors]
            suggestions = suggestions[:self.config.orchestrator.max_empty_result_suggestions]
        else:
            suggestions = generate_entity_suggestions([company] if company else [], self.config)

        subject = f"for {company}" if company else "for your business question"
        message = f"I couldn't complete every step {subject}, but the context is preserved."
        if proxy_sectors:
            message += f" Comparable sectors in our catalog: {', '.join(proxy_sectors)}."
        if business_impact:
            message += f" Business impact in focus: {business_impact}."
        message += " Try one of the suggestions below to continue."

        preserved = {
            "original_company": company,
            "proxy_sectors": proxy_sectors or None,
            "business_impact": business_impact,
            "failed_step": step_number,
            "step_error": result.error,
        }
        preserved = {k: v for k, v in preserved.items() if v is not None}
        return OrchestratorResponse(
            success=True,
            message=message,
            suggestions=suggestions,
            business_context=preserved,
            query_result=QueryResult(
                type="business_context_recovery",
                summary=message,
                suggestions=suggestions,
                business_context=preserved,
                reasoning_steps=self.reasoning_steps(run.log),
            ),
            execution_log=run.log,
        )

    # ------------------------------------------------------------------
    # Output inspection (runs after every successful step, in this order)
    # ------------------------------------------------------------------

    async def _inspect_output(self, run: _Run, step, step_number: int, params: dict,
                              output: Any) -> Optional[OrchestratorResponse]:
        if not isinstance(output, dict):
            return None
        orch = self.config.orchestrator

        # a. the task itself asks the user something
        if output.get("needs_clarification"):
            return OrchestratorResponse(
                success=False,
                needs_clarification=True,
                message=output.get("message"),
                suggestions=output.get("suggestions"),
                entity_issues=output.get("entity_issues"),
                corrected_entities=output.get("corrected_entities"),
                conversation_state=output.get("conversation_state"),
                alternative_approach=output.get("alternative_approach"),
                helpful_guidance=output.get("helpful_guidance"),
                execution_log=run.log,
            )
        if output.get("is_final_answer"):
            return self._final_answer_response(run, output)

        # b. entity not found: one clarification round, then a final answer
        if step.task_type == TaskType.VALIDATE_ENTITY.value and not output.get("valid", True):
            confidence = output.get("confidence") or 0.0
            suggested = list(output.get("suggested_entities") or [])
            entity = output.get("entity_name") or output.get("entity_type")
            failures = self.count_validation_failures(run.log)
            in_band = 0.0 < confidence < orch.clarification_confidence_ceiling and bool(suggested)

            # Anything outside the clarification band ends the loop with a final answer
            if failures >= orch.max_validation_failures or not in_band:
                logger.info("[Orchestrator] Detected potential clarification loop - providing final answer")
                final = await self.tasks.clarify_with_user({
                    "provide_final_answer": True,
                    "entity_issues": [{"entity": entity, "issue": "not_found", "suggestions": suggested}],
                    "corrected_entities": suggested,
                    "conversation_state": "provide_final_answer",
                })
                if final.success and final.output.get("is_final_answer"):
                    return self._final_answer_response(run, final.output)

            if in_band:
                top = suggested[:orch.max_clarification_suggestions]
                return OrchestratorResponse(
                    success=False,
                    needs_clarification=True,
                    message=f"I couldn't find \"{entity}\" in the database. Did you mean: {', '.join(top)}?",
                    suggestions=[f"What projects are available for {name}?" for name in top],
                    entity_issues=[{"entity": entity, "issue": "not_found", "suggestions": suggested}],
                    corrected_entities=suggested,
                    early_halt_reason="entity_validation_failure",
                    validation_attempt=failures,
                    execution_log=run.log,
                )

        # c. graph data: defer large results, keep normal ones, explain empty ones
        graph_data = output.get("graph_data")
        if isinstance(graph_data, dict):
            node_count, _ = _graph_counts(graph_data)
            if node_count > orch.large_result_threshold:
                run.visualization_output = output
            elif node_count > 0:
                run.final_result = {
                    "type": "query",
                    "graph_data": graph_data,
                    "cypher_query": self.last_query(run),
                    "summary": self.execution_summary(run.log, output),
                }
            elif step.task_type == TaskType.EXECUTE_QUERY.value:
                hints = list(output.get("filtered_entities") or []) or \
                    extract_entity_hints_from_query(output.get("query"))
                if hints:
                    logger.info(f"[Orchestrator] Empty result detected for entities: {', '.join(hints)} - providing final answer")
                    corrected = []
                    for hint in hints:
                        corrected.extend(self.config.contextual_suggestions(hint))
                    final = await self.tasks.clarify_with_user({
                        "provide_final_answer": True,
                        "entity_issues": [
                            {"entity": hint, "issue": "empty_result",
                             "suggestions": self.config.contextual_suggestions(hint)}
                            for hint in hints
                        ],
                        "corrected_entities": list(dict.fromkeys(corrected)),
                        "conversation_state": "provide_final_answer",
                    })
                    if final.success and final.output.get("is_final_answer"):
                        return self._final_answer_response(run, final.output)

        # d. exploration
        if isinstance(graph_data, dict) and self._is_exploration(run, params, output):
            node_count, _ = _graph_counts(graph_data)
            run.final_result = {
                "type": "exploration",
                "graph_data": graph_data,
                "cypher_query": self.last_query(run),
                "summary": f"Showing {node_count} available entities to help with exploration",
                "is_exploration": True,
            }

        # e. analysis
        if output.get("analysis"):
            if run.visualization_output is not None:
                run.visualization_output = {**run.visualization_output, "analysis": output["analysis"]}
            elif run.final_result and run.final_result.get("graph_data"):
                run.final_result["analysis"] = output["analysis"]
                run.final_result["summary"] = output["analysis"]
            else:
                run.final_result = {
                    "type": "analysis",
                    "analysis": output["analysis"],
                    "summary": output["analysis"],
                }

        # f. creative
        if output.get("creative_content"):
            run.final_result = {
                "type": "creative",
                "creative_content": output["creative_content"],
                "suggestions": output.get("suggestions"),
                "summary": output["creative_content"],
            }

        return None

    @staticmethod
    def count_validation_failures(log: list[ExecutionLogEntry]) -> int:
        """validate_entity steps in the log (current one included) that found nothing valid."""
        return sum(
            1 for entry in log
            if entry.task_type == TaskType.VALIDATE_ENTITY.value
            and entry.result.success
            and isinstance(entry.result.output, dict)
            and not entry.result.output.get("valid", True)
        )

    def _is_exploration(self, run: _Run, params: dict, output: dict) -> bool:
        if params.get("exploration_mode"):
            return True
        query = output.get("query")
        if not query:
            return False
        for entry in run.log:
            out = entry.result.output
            if isinstance(out, dict) and out.get("exploration_mode") and out.get("query") == query:
                return True
        return False

    def _final_answer_response(self, run: _Run, output: dict) -> OrchestratorResponse:
        return OrchestratorResponse(
            success=True,
            message=output.get("message"),
            suggestions=output.get("suggestions"),
            query_result=QueryResult(
                type="final_answer",
                summary=output.get("message"),
                available_data=output.get("available_data"),
                terminates_loop=True,
            ),
            execution_log=run.log,
            clarification_loop_terminated=True,
        )

    # ------------------------------------------------------------------
    # After the loop
    # ------------------------------------------------------------------

    def _finish(self, run: _Run) -> OrchestratorResponse:
        if run.visualization_output is not None:
            graph_data = run.visualization_output["graph_data"]
            node_count, edge_count = _graph_counts(graph_data)
            return OrchestratorResponse(
                success=True,
                needs_visualization_confirmation=True,
                message=(
                    f"Query returned {node_count} nodes and {edge_count} edges. "
                    "This may impact performance. Do you want to update the graph visualization?"
                ),
                query_result=QueryResult(
                    type="query",
                    graph_data=graph_data,
                    cypher_query=self.last_query(run),
                    node_count=node_count,
                    edge_count=edge_count,
                    pending_visualization=True,
                    summary=self.execution_summary(run.log, run.visualization_output),
                    analysis=run.visualization_output.get("analysis"),
                ),
                execution_log=run.log,
            )

        if run.final_result is not None:
            result = QueryResult(**run.final_result, reasoning_steps=self.reasoning_steps(run.log))
            return OrchestratorResponse(
                success=True,
                message=self.success_message(result, run.log),
                query_result=result,
                execution_log=run.log,
            )

        if not self.has_meaningful_result(run.log):
            return self.handle_empty_result(run)

        return OrchestratorResponse(
            success=True,
            message="All execution steps completed successfully.",
            query_result=QueryResult(
                type="generic",
                summary=self.execution_summary(run.log),
                reasoning_steps=self.reasoning_steps(run.log),
            ),
            execution_log=run.log,
        )

    @staticmethod
    def has_meaningful_result(log: list[ExecutionLogEntry]) -> bool:
        for entry in log:
            output = entry.result.output
            if not entry.success or not isinstance(output, dict):
                continue
            node_count, edge_count = _graph_counts(output.get("graph_data"))
            if node_count or edge_count or output.get("analysis") or output.get("creative_content"):
                return True
        return False

    def handle_empty_result(self, run: _Run) -> OrchestratorResponse:
        """Turn a plan that found nothing into suggestions about what does exist."""
        hints: list[str] = []
        for entry in run.log:
            if entry.task_type != TaskType.EXECUTE_QUERY.value:
                continue
            output = entry.result.output if isinstance(entry.result.output, dict) else {}
            hints.extend(output.get("filtered_entities") or [])
            query = output.get("query") or entry.params.get("query")
            if isinstance(query, str):
                hints.extend(extract_entity_hints_from_query(query))
        hints = list(dict.fromkeys(hints))
        suggestions = generate_entity_suggestions(hints, self.config)

        if hints:
            quoted = ", ".join(f'"{h}"' for h in hints)
            message = (
                f"I couldn't find any data for {quoted} in our catalog. "
                "Here are some related questions you can ask instead."
            )
        else:
            message = (
                "The request completed but returned no matching data. "
                "Here are some questions that will show what the catalog contains."
            )
        logger.info(f"[Orchestrator] Empty result handled (hints: {hints or 'none'})")

        return OrchestratorResponse(
            success=True,
            message=message,
            suggestions=suggestions,
            query_result=QueryResult(
                type="empty_result_handled",
                summary=message,
                suggestions=suggestions,
                entity_hints=hints,
                reasoning_steps=self.reasoning_steps(run.log),
            ),
            execution_log=run.log,
        )

    # ------------------------------------------------------------------
    # Presentation helpers
    # ------------------------------------------------------------------

    @staticmethod
    def last_query(run: _Run) -> str:
        return run.state.last_output_value("query") or "Multiple queries executed in sequence"

    @staticmethod
    def execution_summary(log: list[ExecutionLogEntry], final_output: Optional[dict] = None) -> str:
        successful = sum(1 for entry in log if entry.success)
        total_ms = sum(entry.duration_ms for entry in log)
        summary = f"Executed {len(log)} steps ({successful} successful) in {total_ms:.0f}ms."
        if final_output:
            if final_output.get("graph_data"):
                node_count, edge_count = _graph_counts(final_output["graph_data"])
                summary += f" Retrieved {node_count} nodes and {edge_count} connections."
            elif final_output.get("analysis"):
                summary += " Completed data analysis."
        return summary

    @staticmethod
    def success_message(result: QueryResult, log: list[ExecutionLogEntry]) -> str:
        task_types = {entry.task_type for entry in log}
        if result.type == "query":
            node_count, edge_count = _graph_counts(result.graph_data)
            return f"Found {node_count} nodes and {edge_count} connections using {len(task_types)} different operations."
        if result.type == "analysis":
            return f"Completed analysis using {len(task_types)} steps including data retrieval and comparison."
        if result.type == "creative":
            return "Generated creative suggestions based on graph data analysis."
        return f"Successfully completed execution plan with {len(log)} steps."

    @staticmethod
    def reasoning_steps(log: list[ExecutionLogEntry]) -> list[ReasoningStep]:
        return [
            ReasoningStep(
                type=entry.task_type.replace("_", " "),
                description=entry.reasoning,
                input=json.dumps(entry.params, default=str),
                output=json.dumps(entry.result.output, default=str) if entry.success else (entry.result.error or ""),
                timestamp=entry.timestamp,
                duration_ms=entry.duration_ms,
                confidence=0.8 if entry.success else 0.0,
                metadata={"step_number": entry.step_number, "execution_success": entry.success},
            )
            for entry in log
        ]
