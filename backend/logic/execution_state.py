"""Per-execution step state and step-output references.

Plan parameters may point at an earlier step's output with a reference token:

    "$step2.output"            -> step 2's primary value
    "$step2.output.graph_data" -> a nested field
    "step 1 output.query"      -> same grammar, planner-friendly spelling

``parse_reference`` is the only place these strings are parsed. Everything
downstream of ``resolve_params`` sees concrete values.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Iterator, Optional

from models import StepResult

logger = logging.getLogger(__name__)

REFERENCE_PATTERN = re.compile(r"^\$?step\s*(\d+)[\s.]*output(?:\.(.+))?$", re.IGNORECASE)

# Primary value of a step output when a reference names no path
PRIMARY_OUTPUT_KEYS = ("query", "graph_data")


@dataclass(frozen=True)
class StepReference:
    step: int
    path: tuple[str, ...] = ()

    @property
    def state_key(self) -> str:
        return f"step{self.step}"

    def __str__(self) -> str:
        suffix = "." + ".".join(self.path) if self.path else ""
        return f"$step{self.step}.output{suffix}"


def parse_reference(value: Any) -> Optional[StepReference]:
    """Return a StepReference if ``value`` is a reference token, else None."""
    if not isinstance(value, str):
        return None
    match = REFERENCE_PATTERN.match(value.strip())
    if not match:
        return None
    path = tuple(p for p in (match.group(2) or "").split(".") if p)
    return StepReference(step=int(match.group(1)), path=path)


def _camel_to_snake(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


def _lookup(container: Any, key: str) -> tuple[bool, Any]:
    if isinstance(container, dict):
        if key in container:
            return True, container[key]
        snake = _camel_to_snake(key)
        if snake in container:
            return True, container[snake]
        return False, None
    if isinstance(container, (list, tuple)) and key.isdigit():
        index = int(key)
        if index < len(container):
            return True, container[index]
    return False, None


class ExecutionState:
    """Results of the steps executed so far, keyed ``step{N}``.

    Owned by exactly one plan execution.
    """

    def __init__(self):
        self._results: dict[str, StepResult] = {}

    def record(self, step_number: int, result: StepResult) -> None:
        self._results[f"step{step_number}"] = result

    def get(self, step_number: int) -> Optional[StepResult]:
        return self._results.get(f"step{step_number}")

    def __contains__(self, step_number: int) -> bool:
        return f"step{step_number}" in self._results

    def __len__(self) -> int:
        return len(self._results)

    def __iter__(self) -> Iterator[str]:
        return iter(self._results)

    def last_output_value(self, key: str) -> Any:
        """``output[key]`` of the most recent successful step that has one."""
        for result in reversed(list(self._results.values())):
            if result.success and isinstance(result.output, dict) and result.output.get(key):
                return result.output[key]
        return None

    def as_dict(self) -> dict:
        return {key: result.model_dump() for key, result in self._results.items()}

    def resolve(self, ref: StepReference, current_step: Optional[int] = None) -> Any:
        """Concrete value for ``ref``; None (with a warning) when it cannot be resolved."""
        if current_step is not None and ref.step >= current_step:
            logger.warning(f"[ExecutionState] Reference {ref} points at step {ref.step}, not an earlier step")
            return None

        result = self._results.get(ref.state_key)
        if result is None:
            logger.warning(f"[ExecutionState] Reference {ref} not found in execution state")
            return None
        if not result.success or result.output is None:
            logger.warning(f"[ExecutionState] Reference {ref} points at a failed step")
            return None

        output = result.output
        if not ref.path:
            if isinstance(output, dict):
                for key in PRIMARY_OUTPUT_KEYS:
                    if output.get(key) is not None:
                        return output[key]
            return output

        value = output
        for key in ref.path:
            found, value = _lookup(value, key)
            if not found:
                logger.warning(f"[ExecutionState] Path '{'.'.join(ref.path)}' missing in output of step {ref.step}")
                return None
        return value


def resolve_value(value: Any, state: ExecutionState, current_step: Optional[int] = None) -> Any:
    ref = parse_reference(value)
    if ref is not None:
        return state.resolve(ref, current_step)
    if isinstance(value, dict):
        return {k: resolve_value(v, state, current_step) for k, v in value.items()}
    if isinstance(value, list):
        return [resolve_value(v, state, current_step) for v in value]
    return value


def resolve_params(params: dict, state: ExecutionState, current_step: Optional[int] = None) -> dict:
    """Replace every reference token in ``params`` with the value it points at.

    Does not modify ``params`` or ``state``; resolving twice yields equal values.
    """
    resolved = {}
    for key, value in (params or {}).items():
        resolved[key] = resolve_value(value, state, current_step)
        if parse_reference(value) is not None:
            logger.info(f"[ExecutionState] Resolved {key}: {value} -> {type(resolved[key]).__name__}")
    return resolved
