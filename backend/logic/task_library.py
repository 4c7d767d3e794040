"""Task Library: the seven operations an execution plan can invoke.

Every operation takes the step's resolved params and returns a StepResult.
Expected failures (missing params, store errors, provider exhaustion) come back
as ``StepResult.fail``; anything else propagates to the orchestrator.
"""

import asyncio
import json
import logging
import re
from functools import partial
from typing import Any, Optional

from pydantic import ValidationError

from config_loader import CatalogConfig, get_config
from llm_manager import GenerationCancelled, LLMManager, LLMManagerError
from llm_providers import GenerationOptions, parse_json_response
from logic.entity_matching import (
    calculate_entity_similarity,
    edit_similarity,
    extract_entity_hints_from_params,
    extract_entity_hints_from_query,
    rank_candidates,
)
from models import (
    AnalyzeAndSummarizeParams,
    ClarifyWithUserParams,
    ExecuteQueryParams,
    FindConnectionPathsParams,
    GenerateCreativeTextParams,
    GenerateQueryParams,
    StepResult,
    TaskType,
    ValidateEntityParams,
)
from prompts import ANALYSIS_PROMPT, COMPARISON_PROMPT, CREATIVE_PROMPT, QUERY_GENERATION_PROMPT

logger = logging.getLogger(__name__)

QUERY_OPTIONS = GenerationOptions(temperature=0.1, max_tokens=400)
ANALYSIS_OPTIONS = GenerationOptions(temperature=0.3, max_tokens=600)
CREATIVE_OPTIONS = GenerationOptions(temperature=0.7, max_tokens=500)

# Prompts embed datasets as JSON; keep them within a sane context size
MAX_DATASET_CHARS = 12000

DEFAULT_CLARIFICATION_MESSAGE = "I need more information to help you better."
DEFAULT_CLARIFICATION_SUGGESTIONS = [
    "Show me all industries",
    "Find pain points in banking",
    "Compare sectors and departments",
]
CONVERSATION_STATE_NOTES = {
    "post_rejection": " I want to make sure I understand what you're looking for.",
    "meta_conversation": " Let me help you navigate our conversation more effectively.",
    "repeated_failure": " I'll show you what's available so we can find what you need together.",
}

FALLBACK_FINAL_ANSWER = (
    "I couldn't find that specific item in our database. Our AI project catalog contains "
    "opportunities in Banking and Insurance industries, covering sectors like Retail Banking, "
    "Commercial Banking, Investment Banking, and various insurance sectors. You can ask about "
    "projects, pain points, or opportunities in any of these areas."
)
FALLBACK_FINAL_SUGGESTIONS = [
    "Show me all Banking projects",
    "Find Insurance opportunities",
    "Browse available sectors",
    "What AI projects exist in Retail Banking?",
]

PATH_NODE_MISMATCH_MARKERS = (
    "expected path but was node",
    "invalid input 'node' for argument at index 0 of function relationships()",
    "invalid input 'node' for argument at index 0 of function nodes()",
    "type mismatch: expected path",
)


# =============================================================================
# Query repair
# =============================================================================

def _path_variables(query: str) -> set[str]:
    return set(re.findall(r"\b([A-Za-z_]\w*)\s*=\s*(?:shortestPath\s*\()?\s*\(", query))


def repair_query(query: str) -> tuple[str, list[str]]:
    """Rewrite relationships(node) / nodes(node) misuse. Returns (query, fixes)."""
    fixes: list[str] = []
    paths = _path_variables(query)

    for match in list(re.finditer(r"relationships\(\s*([A-Za-z_]\w*)\s*\)", query)):
        var = match.group(1)
        if var in paths:
            continue
        rel = re.search(r"-\[(\w*):([^\]]+)\]->\(" + re.escape(var) + r"\b", query)
        if rel is None:
            continue
        rel_var = rel.group(1)
        if not rel_var:
            rel_var = f"r_{var}"
            query = query.replace(rel.group(0), f"-[{rel_var}:{rel.group(2)}]->({var}", 1)
        query = query.replace(match.group(0), rel_var)
        fixes.append(f"Replaced relationships({var}) with relationship variable {rel_var}")

    for match in list(re.finditer(r"nodes\(\s*([A-Za-z_]\w*)\s*\)", query)):
        var = match.group(1)
        if var in paths:
            continue
        query = query.replace(match.group(0), var)
        fixes.append(f"Replaced nodes({var}) with node variable {var}")

    return query, fixes


def simplify_query(query: str) -> tuple[str, list[str]]:
    """Strip formatting noise an LLM leaves around a query, then repair it."""
    fixes = []
    cleaned = query.strip()
    if cleaned.startswith("```"):
        cleaned = re.sub(r"^```\w*\s*", "", cleaned)
        cleaned = re.sub(r"\s*```$", "", cleaned)
        fixes.append("Removed markdown fences")
    if cleaned.endswith(";"):
        cleaned = cleaned.rstrip(";").rstrip()
        fixes.append("Removed trailing semicolon")
    cleaned, repairs = repair_query(cleaned)
    return cleaned, fixes + repairs


def is_path_node_mismatch(error: BaseException) -> bool:
    message = str(error).lower()
    return any(marker in message for marker in PATH_NODE_MISMATCH_MARKERS)


def _merge_graph_data(target: dict, source: dict) -> None:
    seen_nodes = {n["id"] for n in target["nodes"]}
    seen_edges = {e["id"] for e in target["edges"]}
    for node in source.get("nodes", []):
        if node["id"] not in seen_nodes:
            target["nodes"].append(node)
            seen_nodes.add(node["id"])
    for edge in source.get("edges", []):
        if edge["id"] not in seen_edges:
            target["edges"].append(edge)
            seen_edges.add(edge["id"])


def _dump_dataset(data: Any) -> str:
    text = json.dumps(data, indent=2, default=str)
    if len(text) > MAX_DATASET_CHARS:
        text = text[:MAX_DATASET_CHARS] + "\n... (truncated)"
    return text


class TaskLibrary:
    """Graph and generation operations available to execution plans."""

    def __init__(self, graph, llm_manager: LLMManager, config: Optional[CatalogConfig] = None):
        self.graph = graph
        self.llm = llm_manager
        self.config = config or get_config()
        self.operations = {
            TaskType.VALIDATE_ENTITY: self.validate_entity,
            TaskType.FIND_CONNECTION_PATHS: self.find_connection_paths,
            TaskType.GENERATE_QUERY: self.generate_query,
            TaskType.EXECUTE_QUERY: self.execute_query,
            TaskType.ANALYZE_AND_SUMMARIZE: self.analyze_and_summarize,
            TaskType.GENERATE_CREATIVE_TEXT: self.generate_creative_text,
            TaskType.CLARIFY_WITH_USER: self.clarify_with_user,
        }

    async def run(self, task_type: str, params: dict, cancel_event: Optional[asyncio.Event] = None) -> StepResult:
        try:
            operation = self.operations[TaskType(task_type)]
        except ValueError:
            return StepResult.fail(f"Unknown task type: {task_type}", "unknown_task")
        return await operation(params or {}, cancel_event=cancel_event)

    async def _graph_call(self, func, *args, **kwargs):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(func, *args, **kwargs))

    def _business_context(self, params: dict) -> Optional[dict]:
        context = {k: params[k] for k in self.config.business_context_keys if params.get(k)}
        return context or None

    async def _generate(self, prompt: str, options: GenerationOptions, params: dict,
                        cancel_event: Optional[asyncio.Event]) -> str:
        return await self.llm.generate_text(
            prompt,
            options,
            business_context=self._business_context(params),
            cancel_event=cancel_event,
        )

    # ------------------------------------------------------------------
    # validate_entity
    # ------------------------------------------------------------------

    async def validate_entity(self, params: dict, cancel_event=None) -> StepResult:
        try:
            p = ValidateEntityParams.model_validate(params)
        except ValidationError as e:
            return StepResult.fail(f"Invalid validate_entity params: {e}", "invalid_params")
        logger.info(f"[TaskLibrary] Executing validate_entity: {p.entity_type} / {p.entity_name}")

        labels = self.config.graph_schema.node_labels
        entity_type = (p.entity_type or "").strip()
        entity_name = (p.entity_name or "").strip()
        if not entity_type and not entity_name:
            return StepResult.fail("Missing entity_type parameter", "invalid_params")

        if not entity_name:
            if entity_type in labels:
                return StepResult.ok({
                    "valid": True,
                    "confidence": 1.0,
                    "entity_type": entity_type,
                    "entity_name": None,
                    "exists_in_schema": True,
                    "match_type": "schema",
                    "suggested_entities": [],
                })
            entity_name, label = entity_type, None
        else:
            label = entity_type if entity_type in labels else None

        base = {"entity_type": entity_type or None, "entity_name": entity_name, "exists_in_schema": False}
        orch = self.config.orchestrator
        try:
            exact = await self._graph_call(self.graph.find_entity_exact, entity_name, label)
            if exact:
                return StepResult.ok({
                    **base,
                    "valid": True,
                    "confidence": 1.0,
                    "match_type": "exact",
                    "suggested_entities": [],
                    "sample_data": [{"node": r.get("n"), "labels": r.get("labels")} for r in exact],
                })

            candidates = await self._graph_call(self.graph.find_entity_candidates, entity_name, label)
            if candidates:
                matches = [
                    {
                        "node": r.get("n"),
                        "labels": r.get("labels"),
                        "matched_field": r.get("matched_field"),
                        "similarity_score": calculate_entity_similarity(
                            entity_name, r.get("matched_field") or "",
                            self.config.entity_suggestions.similarity_patterns,
                        ),
                    }
                    for r in candidates
                ]
                best = sorted(matches, key=lambda m: m["similarity_score"], reverse=True)[:5]
                best_score = best[0]["similarity_score"]
                return StepResult.ok({
                    **base,
                    "valid": best_score > orch.valid_match_threshold,
                    "confidence": best_score,
                    "match_type": "fuzzy",
                    "sample_data": best,
                    "suggested_entities": list(dict.fromkeys(m["matched_field"] for m in best[:3])),
                })

            # Typos never CONTAIN the real name, so compare against every name
            rows = await self._graph_call(self.graph.get_entity_names, label)
            ranked = rank_candidates(
                entity_name,
                [r.get("name") for r in rows or []],
                limit=5,
                scorer=edit_similarity,
            )
            ranked = [(name, score) for name, score in ranked if score >= orch.typo_similarity_floor]
        except Exception as e:
            logger.error(f"[TaskLibrary] Entity validation error: {e}")
            return StepResult.fail(f"Failed to validate entity: {entity_name}", "graph_error")

        if ranked:
            # Typo matches are never valid; keep them inside the clarification band
            confidence = round(min(ranked[0][1], 0.99) * orch.clarification_confidence_ceiling, 3)
            return StepResult.ok({
                **base,
                "valid": False,
                "confidence": confidence,
                "similarity_score": round(ranked[0][1], 3),
                "match_type": "similar",
                "suggested_entities": [name for name, _ in ranked[:3]],
            })

        return StepResult.ok({
            **base,
            "valid": False,
            "confidence": 0.0,
            "match_type": "none",
            "suggested_entities": self.config.contextual_suggestions(entity_name),
            "suggestion_reason": "Based on contextual similarity and common patterns",
        })

    # ------------------------------------------------------------------
    # find_connection_paths
    # ------------------------------------------------------------------

    async def find_connection_paths(self, params: dict, cancel_event=None) -> StepResult:
        try:
            p = FindConnectionPathsParams.model_validate(params)
        except ValidationError as e:
            return StepResult.fail(f"Invalid find_connection_paths params: {e}", "invalid_params")
        logger.info(f"[TaskLibrary] Executing find_connection_paths: {params}")

        if isinstance(p.entities, list) and len(p.entities) >= 2:
            entities = [str(e) for e in p.entities]
            pairs = [(entities[i], entities[j]) for i in range(len(entities)) for j in range(i + 1, len(entities))]
        elif p.from_entity and p.to_entity:
            pairs = [(p.from_entity, p.to_entity)]
        else:
            return StepResult.fail(
                "Missing entities parameter (expected: entities[] or from_entity/to_entity)",
                "invalid_params",
            )

        labels = self.config.graph_schema.node_labels
        graph_data = {"nodes": [], "edges": []}
        paths = []
        try:
            for a, b in pairs:
                found = await self._graph_call(self.graph.find_connection_paths, a, b, p.max_depth)
                _merge_graph_data(graph_data, found["graph_data"])
                paths.append({"from": a, "to": b, "path_lengths": found["path_lengths"]})

                if a in labels and b in labels:
                    shared = await self._graph_call(self.graph.find_shared_connections, a, b)
                    _merge_graph_data(graph_data, shared["graph_data"])
        except Exception as e:
            logger.error(f"[TaskLibrary] Connection path analysis error: {e}")
            return StepResult.fail(f"Failed to analyze connection paths: {e}", "graph_error")

        return StepResult.ok({
            "graph_data": graph_data,
            "node_count": len(graph_data["nodes"]),
            "edge_count": len(graph_data["edges"]),
            "paths": paths,
            "connected": any(entry["path_lengths"] for entry in paths),
        })

    # ------------------------------------------------------------------
    # generate_query
    # ------------------------------------------------------------------

    def exploration_query(self, entities: Any) -> dict:
        entities = entities if isinstance(entities, list) else []
        if "Industry" in entities:
            query = (
                "MATCH (i:Industry)\n"
                "OPTIONAL MATCH (i)-[r:HAS_SECTOR]->(s:Sector)\n"
                "RETURN i, r, s\n"
                "ORDER BY i.name\n"
                "LIMIT 20"
            )
            explanation = "Show all industries and their associated sectors for exploration"
        elif "Sector" in entities:
            query = (
                "MATCH (s:Sector)\n"
                "OPTIONAL MATCH (s)-[r:HAS_OPPORTUNITY]->(po:ProjectOpportunity)\n"
                "RETURN s, r, po\n"
                "ORDER BY s.name\n"
                "LIMIT 20"
            )
            explanation = "Show all sectors and available project opportunities"
        else:
            query = (
                "MATCH (i:Industry)-[r:HAS_SECTOR]->(s:Sector)\n"
                "RETURN i, r, s\n"
                "ORDER BY i.name, s.name\n"
                "LIMIT 15"
            )
            explanation = "Show overview of industries and sectors available for exploration"
        return {
            "query": query,
            "params": {},
            "explanation": explanation,
            "connection_strategy": "exploration",
            "exploration_mode": True,
        }

    async def generate_query(self, params: dict, cancel_event=None) -> StepResult:
        try:
            p = GenerateQueryParams.model_validate(params)
        except ValidationError as e:
            return StepResult.fail(f"Invalid generate_query params: {e}", "invalid_params")
        logger.info(f"[TaskLibrary] Executing generate_query: {p.goal}")

        if not p.goal:
            return StepResult.fail("Missing goal parameter", "invalid_params")
        if p.exploration_mode:
            return StepResult.ok(self.exploration_query(p.entities))

        entities = p.entities if isinstance(p.entities, list) else ([p.entities] if p.entities else [])
        prompt = QUERY_GENERATION_PROMPT.format(
            schema="\n".join(self.config.graph_schema.relationships),
            goal=p.goal,
            entities=", ".join(str(e) for e in entities) or "None specified",
            context=json.dumps(p.context, indent=2, default=str) if p.context else "None",
        )

        parsed = None
        try:
            # One re-ask when the first answer is not usable JSON
            for _ in range(2):
                text = await self._generate(prompt, QUERY_OPTIONS, params, cancel_event)
                parsed = parse_json_response(text)
                if isinstance(parsed, dict) and parsed.get("query"):
                    break
                logger.warning("[TaskLibrary] Query generation returned unparsable JSON, asking again")
                parsed = None
        except GenerationCancelled:
            raise
        except LLMManagerError as e:
            logger.error(f"[TaskLibrary] Query generation error: {e}")
            return StepResult.fail(f"Failed to generate Cypher query: {e}", "generation_error")

        if parsed is None:
            return StepResult.fail("Failed to generate Cypher query: response was not valid JSON", "generation_error")

        query, fixes = repair_query(str(parsed["query"]))
        if fixes:
            logger.info(f"[TaskLibrary] ✅ Fixed Cypher query: {fixes}")
        return StepResult.ok({
            "query": query,
            "params": parsed.get("params") if isinstance(parsed.get("params"), dict) else {},
            "explanation": parsed.get("explanation", ""),
            "connection_strategy": parsed.get("connection_strategy") or parsed.get("connectionStrategy"),
            "auto_fixed": bool(fixes),
            "fixes": fixes,
        })

    # ------------------------------------------------------------------
    # execute_query
    # ------------------------------------------------------------------

    async def execute_query(self, params: dict, cancel_event=None) -> StepResult:
        try:
            p = ExecuteQueryParams.model_validate(params)
        except ValidationError as e:
            return StepResult.fail(f"Invalid execute_query params: {e}", "invalid_params")

        query, query_params = p.query, p.query_params
        # A reference may hand over a whole generate_query output
        if isinstance(query, dict):
            query_params = query_params or query.get("params")
            query = query.get("query")
        if not query or not isinstance(query, str):
            return StepResult.fail("Missing query parameter", "invalid_params")
        query_params = query_params if isinstance(query_params, dict) else {}
        logger.info(f"[TaskLibrary] Executing query: {query}")

        fixes: list[str] = []
        try:
            data = await self._graph_call(self.graph.run_read_query, query, query_params)
        except Exception as e:
            mismatch = is_path_node_mismatch(e)
            simplified, fixes = simplify_query(query)
            if simplified == query:
                logger.error(f"[TaskLibrary] Cypher execution error: {e}")
                return self._execution_failure(e, mismatch)
            logger.warning(f"[TaskLibrary] Query failed ({e}); retrying simplified query: {fixes}")
            try:
                data = await self._graph_call(self.graph.run_read_query, simplified, query_params)
            except Exception as retry_error:
                logger.error(f"[TaskLibrary] Simplified query failed too: {retry_error}")
                return self._execution_failure(retry_error, mismatch or is_path_node_mismatch(retry_error))
            query = simplified

        graph_data = data["graph_data"]
        filtered = extract_entity_hints_from_params(query_params) + extract_entity_hints_from_query(query)
        return StepResult.ok({
            "graph_data": graph_data,
            "node_count": len(graph_data["nodes"]),
            "edge_count": len(graph_data["edges"]),
            "record_count": data.get("record_count", 0),
            "query": query,
            "query_params": query_params,
            "filtered_entities": list(dict.fromkeys(filtered)),
            "auto_fixed": bool(fixes),
        })

    @staticmethod
    def _execution_failure(error: BaseException, mismatch: bool) -> StepResult:
        if mismatch:
            return StepResult.fail(
                "Query syntax error: relationships() and nodes() functions require Path variables, not Node variables",
                "path_node_mismatch",
            )
        return StepResult.fail(f"Query execution failed: {error}", "execution_error")

    # ------------------------------------------------------------------
    # analyze_and_summarize
    # ------------------------------------------------------------------

    async def analyze_and_summarize(self, params: dict, cancel_event=None) -> StepResult:
        try:
            p = AnalyzeAndSummarizeParams.model_validate(params)
        except ValidationError as e:
            return StepResult.fail(f"Invalid analyze_and_summarize params: {e}", "invalid_params")
        logger.info(f"[TaskLibrary] Executing analyze_and_summarize: {p.comparison_type or p.goal}")

        primary = p.dataset1 or p.dataset or p.graph_data
        secondary = p.dataset2
        if not primary and not secondary:
            return StepResult.fail("Missing dataset(s) to analyze", "invalid_params")

        is_comparison = bool(primary and secondary)
        if is_comparison:
            analysis_type = p.comparison_type or "comparative_analysis"
            prompt = COMPARISON_PROMPT.format(
                dataset1=_dump_dataset(primary),
                dataset2=_dump_dataset(secondary),
                analysis_type=analysis_type,
                goal=p.goal or "Compare and contrast the two datasets",
            )
        else:
            analysis_type = p.comparison_type or "single_dataset_analysis"
            prompt = ANALYSIS_PROMPT.format(
                dataset=_dump_dataset(primary or secondary),
                analysis_type=analysis_type,
                goal=p.goal or "Provide insights and summary of the data",
            )

        try:
            analysis = await self._generate(prompt, ANALYSIS_OPTIONS, params, cancel_event)
        except GenerationCancelled:
            raise
        except LLMManagerError as e:
            logger.error(f"[TaskLibrary] Analysis error: {e}")
            return StepResult.fail(f"Failed to perform analysis: {e}", "generation_error")

        return StepResult.ok({
            "analysis": analysis,
            "comparison_type": analysis_type,
            "datasets_analyzed": 2 if is_comparison else 1,
            "is_comparison": is_comparison,
        })

    # ------------------------------------------------------------------
    # generate_creative_text
    # ------------------------------------------------------------------

    async def generate_creative_text(self, params: dict, cancel_event=None) -> StepResult:
        try:
            p = GenerateCreativeTextParams.model_validate(params)
        except ValidationError as e:
            return StepResult.fail(f"Invalid generate_creative_text params: {e}", "invalid_params")
        logger.info(f"[TaskLibrary] Executing generate_creative_text: {p.creative_goal}")

        if not p.creative_goal:
            return StepResult.fail("Missing creative_goal parameter", "invalid_params")

        prompt = CREATIVE_PROMPT.format(
            context=_dump_dataset(p.context) if p.context else "No specific context provided",
            creative_goal=p.creative_goal,
            style=p.style or "Professional and practical",
        )
        try:
            content = await self._generate(prompt, CREATIVE_OPTIONS, params, cancel_event)
        except GenerationCancelled:
            raise
        except LLMManagerError as e:
            logger.error(f"[TaskLibrary] Creative generation error: {e}")
            return StepResult.fail(f"Failed to generate creative content: {e}", "generation_error")

        return StepResult.ok({
            "creative_content": content,
            "suggestions": [line.strip() for line in content.splitlines() if line.strip()],
            "style": p.style,
        })

    # ------------------------------------------------------------------
    # clarify_with_user
    # ------------------------------------------------------------------

    async def clarify_with_user(self, params: dict, cancel_event=None) -> StepResult:
        try:
            p = ClarifyWithUserParams.model_validate(params)
        except ValidationError as e:
            return StepResult.fail(f"Invalid clarify_with_user params: {e}", "invalid_params")
        logger.info(f"[TaskLibrary] Executing clarify_with_user (state={p.conversation_state})")

        if p.provide_final_answer or p.conversation_state == "persistent_non_existent":
            return await self.provide_final_answer(p)

        message = (p.message or DEFAULT_CLARIFICATION_MESSAGE) + CONVERSATION_STATE_NOTES.get(p.conversation_state or "", "")

        if isinstance(p.suggestions, list) and p.suggestions:
            suggestions = [str(s) for s in p.suggestions]
        elif p.corrected_entities:
            corrected = p.corrected_entities
            names = list(corrected.values()) if isinstance(corrected, dict) else list(corrected)
            limit = self.config.orchestrator.max_clarification_suggestions
            suggestions = [f"What projects are available for {name}?" for name in names[:limit]]
        else:
            suggestions = list(DEFAULT_CLARIFICATION_SUGGESTIONS)

        return StepResult.ok({
            "needs_clarification": True,
            "message": message,
            "suggestions": suggestions,
            "conversation_state": p.conversation_state,
            "alternative_approach": p.alternative_approach,
            "helpful_guidance": p.helpful_guidance,
            "entity_issues": p.entity_issues,
            "corrected_entities": p.corrected_entities,
            "conversation_aware": True,
        })

    async def provide_final_answer(self, p: ClarifyWithUserParams) -> StepResult:
        """Terminal answer listing what the catalog does contain."""
        logger.info("[TaskLibrary] Providing final answer to break clarification loop")
        try:
            available = await self._graph_call(self.graph.get_catalog_overview)
        except Exception as e:
            logger.error(f"[TaskLibrary] Error generating final answer: {e}")
            return StepResult.ok({
                "needs_clarification": False,
                "is_final_answer": True,
                "message": FALLBACK_FINAL_ANSWER,
                "suggestions": list(FALLBACK_FINAL_SUGGESTIONS),
                "available_data": [],
                "terminates_clarification_loop": True,
            })

        industries = [row for row in available if row.get("industry")]
        standalone = [s for row in available if not row.get("industry") for s in row.get("sectors") or []]

        lines = []
        issues = p.entity_issues if isinstance(p.entity_issues, list) else []
        missing = issues[0].get("entity") if issues and isinstance(issues[0], dict) else None
        header = f"I don't have \"{missing}\" in our database. " if missing else ""
        lines.append(header + "Here's what IS available in our AI project catalog:")
        lines.append("")
        if industries:
            lines.append("**Industries and their Sectors:**")
            for row in industries:
                sectors = ", ".join(row.get("sectors") or [])
                lines.append(f"• {row['industry']}: {sectors}" if sectors else f"• {row['industry']}")
        if standalone:
            lines.append("")
            lines.append("**Additional Sectors:**")
            lines.extend(f"• {sector}" for sector in standalone)
        lines.append("")
        lines.append("**What you can ask:**")
        lines.append("• 'What projects are available for [Sector Name]?'")
        lines.append("• 'Show me pain points in [Sector Name]'")
        lines.append("• 'What AI opportunities exist in [Industry Name]?'")
        lines.append("• 'Browse all projects'")

        suggestions = []
        corrected = p.corrected_entities
        if isinstance(corrected, dict):
            corrected = list(corrected.values())
        if isinstance(corrected, list):
            suggestions.extend(f"What projects are available for {name}?" for name in corrected[:2])
        if industries:
            suggestions.append(f"Show me projects in {industries[0]['industry']}")
            if industries[0].get("sectors"):
                suggestions.append(f"Find opportunities in {industries[0]['sectors'][0]}")
        suggestions.append("Browse all available projects")
        suggestions.append("Show me the complete project catalog")

        return StepResult.ok({
            "needs_clarification": False,
            "is_final_answer": True,
            "message": "\n".join(lines),
            "suggestions": list(dict.fromkeys(suggestions)),
            "available_data": available,
            "terminates_clarification_loop": True,
        })
