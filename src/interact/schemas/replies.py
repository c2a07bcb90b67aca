"""Reply shapes the Reasoner must return, one per call site.

Each model is injected into the system prompt as JSON Schema and the raw
model output is validated against it before anything downstream sees it.
"""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any

from .schemas import ContextSource, CorrectionStrategy, ExpectedOutcome, ToolType


class ContextAnalysis(BaseModel):
    sources: List[ContextSource] = Field(
        default_factory=lambda: [ContextSource.PAGE],
        description="Information sources needed before planning. ASK_USER means the goal cannot proceed without the user.",
    )
    missing_info: List[str] = Field(default_factory=list, description="Facts the agent does not have.")
    question: Optional[str] = Field(None, description="Question to ask the user when ASK_USER is selected.")
    reasoning: str = ""


class PlanStepReply(BaseModel):
    description: str
    reasoning: Optional[str] = None
    tool_type: ToolType = ToolType.DOM
    expected_outcome: Optional[ExpectedOutcome] = None


class PlanReply(BaseModel):
    steps: List[PlanStepReply] = Field(..., description="Ordered steps that accomplish the goal.")


class RefinedStep(BaseModel):
    tool_type: ToolType = ToolType.DOM
    tool_name: str = Field(..., description="Browser tool to call, e.g. click, setValue, navigate.")
    parameters: Dict[str, Any] = Field(default_factory=dict)
    action: str = Field(..., description="Wire-format action string, e.g. click(42).")
    thought: str = ""


class ActionReply(BaseModel):
    thought: str = Field(..., description="Short reasoning for the chosen action.")
    action: str = Field(..., description="Wire-format action string, e.g. setValue(12, \"hello\") or finish(\"done\").")


class CorrectionReply(BaseModel):
    strategy: CorrectionStrategy
    reason: str
    retry_action: str = Field(..., description="Concrete wire-format action to try instead.")
    corrected_description: Optional[str] = Field(None, description="Rewritten description for the failed plan step.")


class JudgeReply(BaseModel):
    action_succeeded: bool = False
    task_completed: bool = False
    sub_task_completed: Optional[bool] = None
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    reason: str = ""


class PlanValidatorReply(BaseModel):
    valid: bool
    reason: str = ""
    suggested_changes: List[str] = Field(
        default_factory=list,
        description='Minor edits such as "Skip step 3" or "Change step 2 to click the Save button".',
    )
    needs_full_replan: bool = False
