"""Pydantic schemas for tasks, plans, turns and engine results.

This package provides the data models shared by the engines and the state
graph, the reply shapes expected from the Reasoner, and utilities for
enforcing structured JSON output.
"""

from .schemas import (
    TaskStatus,
    ComplexityLevel,
    ToolType,
    StepStatus,
    ActionType,
    BlockerType,
    ResolutionMethod,
    VerificationTier,
    CorrectionStrategy,
    ReplanAction,
    ContextSource,
    TextExpectation,
    AttributeChange,
    ElementExpectation,
    DomChanges,
    NextGoal,
    ExpectedOutcome,
    PlanStep,
    Plan,
    SubTaskInput,
    SubTaskOutput,
    SubTaskResult,
    SubTask,
    HierarchicalPlan,
    BeforeState,
    ClientObservations,
    ActionRecord,
    RequiredField,
    BlockerDetectionResult,
    BlockerContext,
    ElementCounts,
    InteractiveCounts,
    DomSimilarityResult,
    VerificationResult,
    CorrectionResult,
    PlanValidationResult,
    ReplanningResult,
    ComplexityClassification,
    VerificationRecord,
    CorrectionRecord,
    Task,
)

from .replies import (
    ContextAnalysis,
    PlanStepReply,
    PlanReply,
    RefinedStep,
    ActionReply,
    CorrectionReply,
    JudgeReply,
    PlanValidatorReply,
)

from .turn import TurnRequest, TurnContext, TurnOutcome, TurnResult

from .utils import (
    get_json_schema,
    validate_and_parse,
    create_self_correction_prompt,
    inject_schema_into_system_prompt,
)

__all__ = [
    # Enums
    "TaskStatus",
    "ComplexityLevel",
    "ToolType",
    "StepStatus",
    "ActionType",
    "BlockerType",
    "ResolutionMethod",
    "VerificationTier",
    "CorrectionStrategy",
    "ReplanAction",
    "ContextSource",
    # Models
    "TextExpectation",
    "AttributeChange",
    "ElementExpectation",
    "DomChanges",
    "NextGoal",
    "ExpectedOutcome",
    "PlanStep",
    "Plan",
    "SubTaskInput",
    "SubTaskOutput",
    "SubTaskResult",
    "SubTask",
    "HierarchicalPlan",
    "BeforeState",
    "ClientObservations",
    "ActionRecord",
    "RequiredField",
    "BlockerDetectionResult",
    "BlockerContext",
    "ElementCounts",
    "InteractiveCounts",
    "DomSimilarityResult",
    "VerificationResult",
    "CorrectionResult",
    "PlanValidationResult",
    "ReplanningResult",
    "ComplexityClassification",
    "VerificationRecord",
    "CorrectionRecord",
    "Task",
    # Reasoner replies
    "ContextAnalysis",
    "PlanStepReply",
    "PlanReply",
    "RefinedStep",
    "ActionReply",
    "CorrectionReply",
    "JudgeReply",
    "PlanValidatorReply",
    # Turn records
    "TurnRequest",
    "TurnContext",
    "TurnOutcome",
    "TurnResult",
    # Utilities
    "get_json_schema",
    "validate_and_parse",
    "create_self_correction_prompt",
    "inject_schema_into_system_prompt",
]
