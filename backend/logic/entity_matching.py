"""Entity name matching: similarity scoring and suggestion helpers.

Used by ``validate_entity`` to rank fuzzy candidates and by the orchestrator to
turn an empty query result into suggestions that point at real catalog entries.
"""

import re
from functools import partial
from typing import Callable, Iterable, Optional

from config_loader import CatalogConfig, SimilarityPattern, get_config


def levenshtein_distance(a: str, b: str) -> int:
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def has_special_pattern_match(query: str, target: str, patterns: Iterable[SimilarityPattern]) -> bool:
    """True when ``query`` uses a domain synonym whose canonical form appears in ``target``."""
    for p in patterns:
        if p.pattern in query and any(m in target for m in p.matches):
            return True
    return False


def calculate_entity_similarity(
    query_entity: str,
    target_entity: str,
    patterns: Optional[Iterable[SimilarityPattern]] = None,
) -> float:
    """Score in [0, 1] combining containment, shared words, edit distance and synonyms."""
    query = (query_entity or "").lower().strip()
    target = (target_entity or "").lower().strip()
    if not query or not target:
        return 0.0
    if query == target:
        return 1.0

    score = 0.0
    if query in target or target in query:
        score += 0.7

    query_words = query.split()
    target_words = target.split()
    common = [w for w in query_words if any(t in w or w in t for t in target_words)]
    if common:
        score += len(common) / max(len(query_words), len(target_words)) * 0.5

    # Edit distance only says something useful for short names
    if len(query) <= 20 and len(target) <= 20:
        max_len = max(len(query), len(target))
        score += max(0.0, (max_len - levenshtein_distance(query, target)) / max_len * 0.3)

    if patterns is None:
        patterns = get_config().entity_suggestions.similarity_patterns
    if has_special_pattern_match(query, target, patterns):
        score += 0.4

    return min(score, 1.0)


def edit_similarity(query_entity: str, target_entity: str) -> float:
    """Normalized edit-distance ratio in [0, 1]; 1.0 only for names equal up to case."""
    query = (query_entity or "").lower().strip()
    target = (target_entity or "").lower().strip()
    if not query or not target:
        return 0.0
    max_len = max(len(query), len(target))
    return (max_len - levenshtein_distance(query, target)) / max_len


def rank_candidates(entity: str, names: Iterable[str], limit: int = 5,
                    patterns: Optional[Iterable[SimilarityPattern]] = None,
                    scorer: Optional[Callable[[str, str], float]] = None) -> list[tuple[str, float]]:
    """Distinct names ordered by similarity to ``entity``, best first.

    ``scorer`` defaults to ``calculate_entity_similarity`` with ``patterns``.
    """
    if scorer is None:
        scorer = partial(calculate_entity_similarity, patterns=patterns)
    scored = {}
    for name in names:
        if not name or name in scored:
            continue
        scored[name] = scorer(entity, name)
    ranked = sorted(scored.items(), key=lambda item: item[1], reverse=True)
    return ranked[:limit]


# =============================================================================
# Entity hints from query text
# =============================================================================

_WHERE_EQUALS = re.compile(r"WHERE\s+.*?[\s\w.()]+\s*=\s*['\"]([^'\"]+)['\"]", re.IGNORECASE | re.DOTALL)
_CONTAINS = re.compile(r"CONTAINS\s+['\"]([^'\"]+)['\"]", re.IGNORECASE)
_INLINE_NAME = re.compile(r"\(\w*:\w+\s*\{[^}]*(?:name|title):\s*['\"]([^'\"]+)['\"]", re.IGNORECASE)


def extract_entity_hints_from_query(query: Optional[str]) -> list[str]:
    """Entity names a Cypher query filters on, from literals in WHERE/CONTAINS/inline maps."""
    if not query or not isinstance(query, str):
        return []
    hints = []
    for pattern in (_WHERE_EQUALS, _CONTAINS, _INLINE_NAME):
        hints.extend(m.group(1) for m in pattern.finditer(query))
    return list(dict.fromkeys(h.strip() for h in hints if h.strip()))


def extract_entity_hints_from_params(query_params: Optional[dict]) -> list[str]:
    """String values bound to a query, which are the entity names it filters on."""
    if not isinstance(query_params, dict):
        return []
    hints = []
    for value in query_params.values():
        if isinstance(value, str) and value.strip():
            hints.append(value.strip())
        elif isinstance(value, list):
            hints.extend(v.strip() for v in value if isinstance(v, str) and v.strip())
    return list(dict.fromkeys(hints))


def generate_entity_suggestions(entity_hints: Iterable[str], config: Optional[CatalogConfig] = None) -> list[str]:
    """Follow-up questions about real catalog entries related to the missing entities."""
    config = config or get_config()
    suggestions = []
    for entity in entity_hints:
        for name in config.contextual_suggestions(entity)[:2]:
            suggestions.append(f"What projects are available for {name}?")

    if not suggestions:
        suggestions = [
            "Show me all available industries",
            "What sectors are in Banking?",
            "Find projects in Retail Banking",
            "What pain points exist in Commercial Banking?",
        ]

    return list(dict.fromkeys(suggestions))[:config.orchestrator.max_empty_result_suggestions]
