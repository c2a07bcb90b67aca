"""Turn-level records: the inbound request, the immutable context built
from it, the mutable outcome the graph nodes write, and the result handed
back to the caller.
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List, Tuple

from .schemas import (
    ActionRecord,
    BeforeState,
    BlockerContext,
    BlockerDetectionResult,
    ClientObservations,
    ComplexityLevel,
    CorrectionResult,
    ExpectedOutcome,
    HierarchicalPlan,
    Plan,
    ReplanningResult,
    TaskStatus,
    VerificationResult,
)
from .replies import ContextAnalysis


class TurnRequest(BaseModel):
    """One inbound request from the client."""

    goal: str = Field(..., min_length=1)
    url: str
    page: str = Field("", description="Current page snapshot (HTML or structural skeleton).")
    task_id: Optional[str] = None
    tenant_id: str = "default"
    user_id: str = "default"
    session_id: Optional[str] = None
    active_element: Optional[str] = None
    client_observations: Optional[ClientObservations] = None
    hierarchical_plan: Optional[HierarchicalPlan] = Field(
        None, description="Sub-task breakdown for a new task; ignored for existing tasks."
    )


class TurnContext(BaseModel):
    """Read-only inputs for a single pass through the graph."""

    model_config = ConfigDict(frozen=True)

    task_id: str
    tenant_id: str
    user_id: str
    goal: str
    url: str
    page: str
    active_element: Optional[str] = None
    client_observations: Optional[ClientObservations] = None
    is_new_task: bool = True
    history: Tuple[ActionRecord, ...] = ()
    complexity: Optional[ComplexityLevel] = None

    @property
    def last_action(self) -> Optional[ActionRecord]:
        return self.history[-1] if self.history else None

    @property
    def previous_before_state(self) -> Optional[BeforeState]:
        last = self.last_action
        return last.before_state if last else None


class TurnOutcome(BaseModel):
    """Everything the nodes decide during a turn; merged back into the Task."""

    status: TaskStatus = TaskStatus.EXECUTING
    complexity: Optional[ComplexityLevel] = None
    complexity_reason: Optional[str] = None
    plan: Optional[Plan] = None
    hierarchical_plan: Optional[HierarchicalPlan] = None
    consecutive_failures: int = 0
    consecutive_success_without_completion: int = 0
    correction_attempts: int = 0

    context_analysis: Optional[ContextAnalysis] = None
    verification: Optional[VerificationResult] = None
    correction: Optional[CorrectionResult] = None
    replanning: Optional[ReplanningResult] = None
    blocker: Optional[BlockerDetectionResult] = None
    blocker_context: Optional[BlockerContext] = None

    action: Optional[str] = None
    thought: Optional[str] = None
    expected_outcome: Optional[ExpectedOutcome] = None
    use_fallback_generation: bool = False
    system_messages: List[str] = Field(default_factory=list)
    error: Optional[str] = None


class TurnResult(BaseModel):
    """What the caller gets back for one turn."""

    task_id: str
    status: TaskStatus
    action: Optional[str] = None
    thought: Optional[str] = None
    expected_outcome: Optional[ExpectedOutcome] = None
    step_index: int = 0
    plan: Optional[Plan] = None
    complexity: Optional[ComplexityLevel] = None
    verification: Optional[VerificationResult] = None
    correction: Optional[CorrectionResult] = None
    blocker: Optional[BlockerDetectionResult] = None
    error: Optional[str] = None
