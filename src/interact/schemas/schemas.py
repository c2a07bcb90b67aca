"""Pydantic schemas for the task execution state machine.

This module defines the records that flow through a turn: the long-lived
Task with its Plan, the per-turn action history, and the ephemeral results
produced by the verification, blocker, similarity and re-planning engines.
Routing decisions are made on the explicit booleans and enums declared
here, never on free-text reason fields.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from enum import Enum
from typing import Optional, List, Dict, Any
from datetime import datetime


class TaskStatus(str, Enum):
    """Lifecycle status of a Task."""

    PENDING = "pending"
    ANALYZING = "analyzing"
    PLANNING = "planning"
    EXECUTING = "executing"
    VERIFYING = "verifying"
    CORRECTING = "correcting"
    COMPLETED = "completed"
    FAILED = "failed"
    NEEDS_USER_INPUT = "needs_user_input"
    AWAITING_USER = "awaiting_user"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED)


class ComplexityLevel(str, Enum):
    SIMPLE = "SIMPLE"
    COMPLEX = "COMPLEX"


class ToolType(str, Enum):
    """Where a plan step executes."""

    DOM = "DOM"
    SERVER = "SERVER"
    MIXED = "MIXED"


class StepStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class ActionType(str, Enum):
    """Coarse action category used to pick verification expectations."""

    NAVIGATION = "navigation"
    DROPDOWN = "dropdown"
    GENERIC = "generic"


class BlockerType(str, Enum):
    LOGIN_FAILURE = "login_failure"
    MFA_REQUIRED = "mfa_required"
    CAPTCHA = "captcha"
    COOKIE_CONSENT = "cookie_consent"
    MODAL_DECISION = "modal_decision"
    MISSING_INFO = "missing_info"
    RATE_LIMIT = "rate_limit"
    SESSION_EXPIRED = "session_expired"
    ACCESS_DENIED = "access_denied"
    PAGE_ERROR = "page_error"


class ResolutionMethod(str, Enum):
    USER_ACTION_ON_WEB = "user_action_on_web"
    PROVIDE_IN_CHAT = "provide_in_chat"
    AUTO_RETRY = "auto_retry"
    ALTERNATIVE_ACTION = "alternative_action"


class VerificationTier(str, Enum):
    DETERMINISTIC = "deterministic"
    LIGHTWEIGHT = "lightweight"
    FULL = "full"


class CorrectionStrategy(str, Enum):
    ALTERNATIVE_SELECTOR = "ALTERNATIVE_SELECTOR"
    ALTERNATIVE_TOOL = "ALTERNATIVE_TOOL"
    GATHER_INFORMATION = "GATHER_INFORMATION"
    UPDATE_PLAN = "UPDATE_PLAN"
    RETRY_WITH_DELAY = "RETRY_WITH_DELAY"


class ReplanAction(str, Enum):
    CONTINUE = "continue"
    MODIFY = "modify"
    REGENERATE = "regenerate"


class ContextSource(str, Enum):
    MEMORY = "MEMORY"
    PAGE = "PAGE"
    WEB_SEARCH = "WEB_SEARCH"
    ASK_USER = "ASK_USER"


# ---------------------------------------------------------------------------
# Expected outcomes
# ---------------------------------------------------------------------------


class TextExpectation(BaseModel):
    selector: str
    text: str


class AttributeChange(BaseModel):
    attribute: str
    expected_value: str


class ElementExpectation(BaseModel):
    role: Optional[str] = None
    selector: Optional[str] = None


class DomChanges(BaseModel):
    """Concrete page changes an action is expected to cause."""

    element_should_exist: Optional[str] = None
    element_should_not_exist: Optional[str] = None
    element_should_have_text: Optional[TextExpectation] = None
    url_should_change: Optional[bool] = None
    attribute_changes: List[AttributeChange] = Field(default_factory=list)
    elements_to_appear: List[ElementExpectation] = Field(default_factory=list)


class NextGoal(BaseModel):
    """Look-ahead description of the element the next step will need."""

    description: str = ""
    selector: Optional[str] = None
    text_content: Optional[str] = None
    role: Optional[str] = None
    required: bool = False


class ExpectedOutcome(BaseModel):
    """Predicted effect of an action, produced by outcome prediction."""

    description: str = ""
    dom_changes: Optional[DomChanges] = None
    next_goal: Optional[NextGoal] = None


# ---------------------------------------------------------------------------
# Plan
# ---------------------------------------------------------------------------


class PlanStep(BaseModel):
    index: int = Field(..., ge=0, description="Zero-based position of the step in its plan.")
    description: str = Field(..., description="Human-readable description of what the step does.")
    reasoning: Optional[str] = None
    tool_type: ToolType = ToolType.DOM
    status: StepStatus = StepStatus.PENDING
    expected_outcome: Optional[ExpectedOutcome] = None


class Plan(BaseModel):
    """Ordered plan steps plus a mutable cursor.

    Step indices are contiguous from zero and the cursor never exceeds
    ``len(steps)``. Patches (skip, rewrite) mutate steps in place; they never
    add or remove steps.
    """

    steps: List[PlanStep] = Field(default_factory=list)
    current_step_index: int = Field(0, ge=0)
    created_at: datetime = Field(default_factory=datetime.now)

    @model_validator(mode="after")
    def _check_indices(self) -> "Plan":
        for position, step in enumerate(self.steps):
            if step.index != position:
                raise ValueError(f"Plan step indices must be contiguous from 0, got {step.index} at {position}")
        if self.current_step_index > len(self.steps):
            raise ValueError("current_step_index cannot exceed the number of steps")
        return self

    @classmethod
    def from_descriptions(cls, descriptions: List[str]) -> "Plan":
        return cls(steps=[PlanStep(index=i, description=d) for i, d in enumerate(descriptions)])

    @property
    def is_exhausted(self) -> bool:
        return self.current_step_index >= len(self.steps)

    def current_step(self) -> Optional[PlanStep]:
        if self.is_exhausted:
            return None
        return self.steps[self.current_step_index]

    def remaining_steps(self) -> List[PlanStep]:
        return [s for s in self.steps if s.index >= self.current_step_index]

    def advance(self) -> None:
        """Complete the current step and move the cursor forward by one."""
        step = self.current_step()
        if step is None:
            return
        step.status = StepStatus.COMPLETED
        self.current_step_index = min(self.current_step_index + 1, len(self.steps))
        # Patched plans may have pre-completed (skipped) steps ahead of the cursor.
        while not self.is_exhausted and self.steps[self.current_step_index].status == StepStatus.COMPLETED:
            self.current_step_index += 1
        nxt = self.current_step()
        if nxt is not None:
            nxt.status = StepStatus.ACTIVE

    def mark_current(self, status: StepStatus) -> None:
        step = self.current_step()
        if step is not None:
            step.status = status


# ---------------------------------------------------------------------------
# Hierarchical sub-task plan
# ---------------------------------------------------------------------------


class SubTaskInput(BaseModel):
    name: str
    description: str = ""
    required: bool = True
    source: str = "user"


class SubTaskOutput(BaseModel):
    name: str
    description: str = ""
    extraction_hint: str = ""


class SubTaskResult(BaseModel):
    success: bool
    outputs: Dict[str, Any] = Field(default_factory=dict)
    summary: str = ""
    error: Optional[str] = None


class SubTask(BaseModel):
    id: str
    index: int = Field(..., ge=0)
    name: str
    objective: str
    inputs: List[SubTaskInput] = Field(default_factory=list)
    outputs: List[SubTaskOutput] = Field(default_factory=list)
    estimated_steps: int = 1
    status: StepStatus = StepStatus.PENDING
    result: Optional[SubTaskResult] = None


class HierarchicalPlan(BaseModel):
    goal: str
    sub_tasks: List[SubTask] = Field(default_factory=list)
    current_index: int = Field(0, ge=0)
    accumulated_outputs: Dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Snapshots and action turns
# ---------------------------------------------------------------------------


class BeforeState(BaseModel):
    """Page state captured when an action was generated.

    ``skeleton`` is a compact structural rendering of the page (normalized
    opening tags), small enough to persist and rich enough to diff.
    """

    model_config = ConfigDict(frozen=True)

    url: str
    dom_hash: str
    active_element: Optional[str] = None
    skeleton: str = ""


class ClientObservations(BaseModel):
    """Signals witnessed by the execution environment."""

    model_config = ConfigDict(frozen=True)

    did_network_occur: bool = False
    did_dom_mutate: bool = False
    did_url_change: Optional[bool] = None
    network_error: Optional[str] = Field(
        None, description="Error reported by the client while executing the action (e.g. a failed request)."
    )


class ActionRecord(BaseModel):
    """One executed action and the snapshot it was generated against. Append-only."""

    model_config = ConfigDict(frozen=True)

    step_index: int = 0
    thought: str = ""
    action: str
    before_state: Optional[BeforeState] = None
    expected_outcome: Optional[ExpectedOutcome] = None
    created_at: datetime = Field(default_factory=datetime.now)


# ---------------------------------------------------------------------------
# Engine results
# ---------------------------------------------------------------------------


class RequiredField(BaseModel):
    name: str
    label: str
    type: str = Field("text", description="One of text, password, email, code.")
    description: Optional[str] = None


class BlockerDetectionResult(BaseModel):
    detected: bool = False
    type: Optional[BlockerType] = None
    description: Optional[str] = None
    matched_pattern: Optional[str] = None
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    resolution_methods: List[ResolutionMethod] = Field(default_factory=list)
    user_message: Optional[str] = None
    required_fields: List[RequiredField] = Field(default_factory=list)
    retry_after_seconds: Optional[int] = None


class BlockerContext(BaseModel):
    """Blocker snapshot kept on a paused Task."""

    blocker: BlockerDetectionResult
    url: str = ""
    detected_at: datetime = Field(default_factory=datetime.now)


class ElementCounts(BaseModel):
    previous: int = 0
    current: int = 0
    intersection: int = 0
    union: int = 0


class InteractiveCounts(BaseModel):
    previous: int = 0
    current: int = 0
    retained: int = 0


class DomSimilarityResult(BaseModel):
    similarity: float
    structural_similarity: float
    interactive_similarity: float
    structural_changes: List[str] = Field(default_factory=list)
    should_replan: bool = False
    element_counts: ElementCounts = Field(default_factory=ElementCounts)
    interactive_counts: InteractiveCounts = Field(default_factory=InteractiveCounts)


class VerificationResult(BaseModel):
    """Outcome of verifying the previous action.

    ``action_succeeded``, ``task_completed``, ``goal_achieved`` and
    ``route_to_correction`` are the routing signals; ``reason`` is for humans.
    """

    success: bool = Field(..., description="action_succeeded with confidence at or above the success threshold.")
    confidence: float = Field(..., ge=0.0, le=1.0)
    reason: str = ""
    action_succeeded: bool = False
    task_completed: bool = False
    goal_achieved: bool = Field(False, description="task_completed with confidence at or above the goal threshold.")
    sub_task_completed: Optional[bool] = None
    route_to_correction: bool = False
    tier: VerificationTier = VerificationTier.FULL
    tokens_saved: int = 0
    observations: List[str] = Field(default_factory=list)
    expected_state: Optional[Dict[str, Any]] = None
    actual_state: Optional[Dict[str, Any]] = None
    comparison: Optional[Dict[str, Any]] = None
    blocker: Optional[BlockerDetectionResult] = None

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, v: Any) -> float:
        """Model-supplied confidences are clamped into [0, 1]."""
        return max(0.0, min(1.0, float(v)))


class CorrectionResult(BaseModel):
    strategy: CorrectionStrategy
    reason: str
    retry_action: str
    corrected_step: Optional[PlanStep] = None
    delay_seconds: Optional[int] = None


class PlanValidationResult(BaseModel):
    triggered: bool
    plan_valid: bool
    reason: str
    trigger_reasons: List[str] = Field(default_factory=list)
    suggested_changes: List[str] = Field(default_factory=list)
    needs_full_replan: bool = False
    url_changed: bool = False
    dom_similarity: Optional[DomSimilarityResult] = None


class ReplanningResult(BaseModel):
    triggered: bool
    plan_valid: bool
    reason: str
    action: ReplanAction = ReplanAction.CONTINUE
    trigger_reasons: List[str] = Field(default_factory=list)
    suggested_changes: List[str] = Field(default_factory=list)
    dom_similarity: Optional[float] = None
    url_changed: bool = False


class ComplexityClassification(BaseModel):
    complexity: ComplexityLevel
    reason: str
    confidence: float = Field(..., ge=0.0, le=1.0)


class VerificationRecord(BaseModel):
    step_index: int
    result: VerificationResult
    timestamp: datetime = Field(default_factory=datetime.now)


class CorrectionRecord(BaseModel):
    step_index: int
    attempt_number: int
    original_action: Optional[str] = None
    result: CorrectionResult
    timestamp: datetime = Field(default_factory=datetime.now)


# ---------------------------------------------------------------------------
# Task
# ---------------------------------------------------------------------------


class Task(BaseModel):
    """The unit of long-lived work, keyed by ``task_id``."""

    task_id: str
    tenant_id: str = "default"
    user_id: str = "default"
    goal: str
    status: TaskStatus = TaskStatus.PENDING
    complexity: Optional[ComplexityLevel] = None
    consecutive_failures: int = Field(0, ge=0)
    consecutive_success_without_completion: int = Field(0, ge=0)
    correction_attempts: int = Field(0, ge=0)
    plan: Optional[Plan] = None
    hierarchical_plan: Optional[HierarchicalPlan] = None
    blocker_context: Optional[BlockerContext] = None
    actions: List[ActionRecord] = Field(default_factory=list)
    verifications: List[VerificationRecord] = Field(default_factory=list)
    corrections: List[CorrectionRecord] = Field(default_factory=list)
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    @property
    def last_action(self) -> Optional[ActionRecord]:
        return self.actions[-1] if self.actions else None

    @property
    def has_history(self) -> bool:
        return bool(self.actions)
