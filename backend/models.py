"""Pydantic schemas for the Catalog Assistant orchestration engine."""

from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator


class TaskType(str, Enum):
    VALIDATE_ENTITY = "validate_entity"
    FIND_CONNECTION_PATHS = "find_connection_paths"
    GENERATE_QUERY = "generate_query"
    EXECUTE_QUERY = "execute_query"
    ANALYZE_AND_SUMMARIZE = "analyze_and_summarize"
    GENERATE_CREATIVE_TEXT = "generate_creative_text"
    CLARIFY_WITH_USER = "clarify_with_user"


# Wire names used by older planners
TASK_TYPE_ALIASES = {
    "generate_cypher": TaskType.GENERATE_QUERY.value,
    "execute_cypher": TaskType.EXECUTE_QUERY.value,
}


class OnFailure(str, Enum):
    HALT = "halt"
    CLARIFY_AND_HALT = "clarify_and_halt"
    CONTINUE = "continue"
    RETRY = "retry"


# =============================================================================
# TASK PARAMETERS
# =============================================================================
# String fields may hold "$step N.output[.path]" references until the
# orchestrator resolves them, so anything that can be fed by an earlier step
# is typed loosely. Unknown keys are kept and passed along as context.

class TaskParams(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True, frozen=True)


class ValidateEntityParams(TaskParams):
    entity_type: Optional[str] = Field(None, validation_alias=AliasChoices("entity_type", "entityType"))
    entity_name: Optional[str] = Field(None, validation_alias=AliasChoices("entity_name", "entityName"))


class FindConnectionPathsParams(TaskParams):
    from_entity: Optional[str] = Field(None, validation_alias=AliasChoices("from_entity", "fromEntity"))
    to_entity: Optional[str] = Field(None, validation_alias=AliasChoices("to_entity", "toEntity"))
    entities: Any = None
    max_depth: int = Field(2, validation_alias=AliasChoices("max_depth", "maxDepth"))


class GenerateQueryParams(TaskParams):
    goal: Optional[str] = None
    entities: Any = None
    context: Any = None
    exploration_mode: bool = False


class ExecuteQueryParams(TaskParams):
    query: Any = None
    query_params: Any = Field(None, validation_alias=AliasChoices("query_params", "queryParams", "params"))


class AnalyzeAndSummarizeParams(TaskParams):
    graph_data: Any = Field(None, validation_alias=AliasChoices("graph_data", "graphData"))
    dataset: Any = None
    dataset1: Any = None
    dataset2: Any = None
    goal: Optional[str] = Field(None, validation_alias=AliasChoices("goal", "analysis_goal"))
    comparison_type: Optional[str] = None


class GenerateCreativeTextParams(TaskParams):
    creative_goal: Optional[str] = None
    context: Any = None
    style: str = "professional"


class ClarifyWithUserParams(TaskParams):
    message: Optional[str] = None
    suggestions: Any = None
    entity_issues: Any = None
    corrected_entities: Any = None
    conversation_state: Optional[str] = None
    provide_final_answer: bool = False
    alternative_approach: Optional[str] = None
    helpful_guidance: Optional[str] = None


# =============================================================================
# EXECUTION PLAN
# =============================================================================

class StepBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    reasoning: str = ""
    on_failure: OnFailure = OnFailure.HALT

    def params_dict(self) -> dict:
        """Params as a plain dict (field names, extras included)."""
        return self.params.model_dump()


class ValidateEntityStep(StepBase):
    task_type: Literal["validate_entity"]
    params: ValidateEntityParams = Field(default_factory=ValidateEntityParams)


class FindConnectionPathsStep(StepBase):
    task_type: Literal["find_connection_paths"]
    params: FindConnectionPathsParams = Field(default_factory=FindConnectionPathsParams)


class GenerateQueryStep(StepBase):
    task_type: Literal["generate_query"]
    params: GenerateQueryParams = Field(default_factory=GenerateQueryParams)


class ExecuteQueryStep(StepBase):
    task_type: Literal["execute_query"]
    params: ExecuteQueryParams = Field(default_factory=ExecuteQueryParams)


class AnalyzeAndSummarizeStep(StepBase):
    task_type: Literal["analyze_and_summarize"]
    params: AnalyzeAndSummarizeParams = Field(default_factory=AnalyzeAndSummarizeParams)


class GenerateCreativeTextStep(StepBase):
    task_type: Literal["generate_creative_text"]
    params: GenerateCreativeTextParams = Field(default_factory=GenerateCreativeTextParams)


class ClarifyWithUserStep(StepBase):
    task_type: Literal["clarify_with_user"]
    params: ClarifyWithUserParams = Field(default_factory=ClarifyWithUserParams)


Step = Annotated[
    Union[
        ValidateEntityStep,
        FindConnectionPathsStep,
        GenerateQueryStep,
        ExecuteQueryStep,
        AnalyzeAndSummarizeStep,
        GenerateCreativeTextStep,
        ClarifyWithUserStep,
    ],
    Field(discriminator="task_type"),
]


class PlanValidationError(ValueError):
    """Raised when an execution plan cannot be loaded."""

    def __init__(self, message: str, errors: Optional[list] = None):
        super().__init__(message)
        self.errors = errors or []


class ExecutionPlan(BaseModel):
    """Ordered, immutable list of steps for one user query."""
    model_config = ConfigDict(frozen=True)

    plan: tuple[Step, ...]

    @field_validator("plan", mode="before")
    @classmethod
    def _normalize_task_types(cls, value):
        if not isinstance(value, (list, tuple)):
            return value
        normalized = []
        for step in value:
            if isinstance(step, dict):
                task_type = step.get("task_type")
                if isinstance(task_type, str):
                    key = task_type.strip().lower()
                    step = {**step, "task_type": TASK_TYPE_ALIASES.get(key, key)}
            normalized.append(step)
        return normalized

    @classmethod
    def parse(cls, data: Any) -> "ExecutionPlan":
        """Load a plan from a dict (``{"plan": [...]}``) or a bare step list."""
        if isinstance(data, (list, tuple)):
            data = {"plan": list(data)}
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            details = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            )
            raise PlanValidationError(f"Invalid execution plan: {details}", e.errors()) from e

    def __len__(self) -> int:
        return len(self.plan)


# =============================================================================
# STEP RESULTS AND EXECUTION LOG
# =============================================================================

class StepResult(BaseModel):
    """Outcome of one task. Success carries no error; failure carries no output."""
    success: bool
    output: Any = None
    error: Optional[str] = None
    error_type: Optional[str] = None

    @model_validator(mode="after")
    def _check_consistency(self):
        if self.success and self.error is not None:
            raise ValueError("successful StepResult cannot carry an error")
        if not self.success and self.output is not None:
            raise ValueError("failed StepResult cannot carry an output")
        return self

    @classmethod
    def ok(cls, output: Any) -> "StepResult":
        return cls(success=True, output=output)

    @classmethod
    def fail(cls, error: str, error_type: Optional[str] = None) -> "StepResult":
        return cls(success=False, error=error, error_type=error_type)


class ExecutionLogEntry(BaseModel):
    step_number: int
    task_type: str
    params: dict = Field(default_factory=dict)
    result: StepResult
    duration_ms: float
    timestamp: str
    reasoning: str = ""
    success: bool


class ReasoningStep(BaseModel):
    """Human-readable trace entry derived 1:1 from the execution log."""
    type: str
    description: str
    input: str
    output: str
    timestamp: str
    duration_ms: float
    confidence: float
    metadata: dict = Field(default_factory=dict)


QueryResultType = Literal[
    "query",
    "exploration",
    "analysis",
    "creative",
    "final_answer",
    "business_context_recovery",
    "empty_result_handled",
    "generic",
]


class QueryResult(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: QueryResultType
    graph_data: Optional[dict] = None
    cypher_query: Optional[str] = None
    summary: Optional[str] = None
    analysis: Optional[str] = None
    creative_content: Optional[str] = None
    suggestions: Optional[list[str]] = None
    available_data: Any = None
    terminates_loop: Optional[bool] = None
    reasoning_steps: Optional[list[ReasoningStep]] = None


class OrchestratorResponse(BaseModel):
    """Caller-visible result of one plan execution. Serialize with ``exclude_none``."""
    model_config = ConfigDict(extra="allow")

    success: bool
    message: Optional[str] = None
    error: Optional[str] = None
    query_result: Optional[QueryResult] = None
    execution_log: list[ExecutionLogEntry] = Field(default_factory=list)
    failed_at: Optional[int] = None
    summary: Optional[str] = None

    needs_clarification: Optional[bool] = None
    needs_visualization_confirmation: Optional[bool] = None
    clarification_loop_terminated: Optional[bool] = None
    suggestions: Optional[list[str]] = None
    entity_issues: Any = None
    corrected_entities: Any = None
    conversation_state: Optional[str] = None
    alternative_approach: Optional[str] = None
    helpful_guidance: Optional[str] = None
    early_halt_reason: Optional[str] = None
    validation_attempt: Optional[int] = None
    business_context: Optional[dict] = None

    def to_dict(self) -> dict:
        return self.model_dump(mode="json", exclude_none=True)


# =============================================================================
# API Request/Response Schemas
# =============================================================================

class ChatMessage(BaseModel):
    role: str
    content: str


class ExecutePlanRequest(BaseModel):
    plan: Any
    business_context: Optional[dict] = None


class ChatRequest(BaseModel):
    message: str
    history: list[ChatMessage] = Field(default_factory=list)
    business_context: Optional[dict] = None


class ProviderInfo(BaseModel):
    name: str
    label: str
    model: Optional[str] = None
    configured: bool
    is_primary: bool = False
    is_current: bool = False
    cooldown_remaining_s: float = 0.0


class BackoffStatusResponse(BaseModel):
    active: bool
    status: Optional[dict] = None


class ProvidersResponse(BaseModel):
    providers: list[ProviderInfo]
    primary: Optional[str] = None
    current: Optional[str] = None
