"""LangGraph state machine for one task turn.

A turn enters at complexity_check and always ends at finalize:

    complexity_check ─┬─ direct_action ──────────────────────────┐
                      ├─ context_analysis ─ planning ─┐          │
                      └─ verification ─┬─ replanning ─┴─ step_refinement ─┬─ outcome_prediction ─ finalize
                                       ├─ correction ──────────────────────┘
                                       └─ goal_achieved ─ finalize

Nodes read the immutable ``context`` (what the client sent plus the task's
history) and write the mutable ``outcome``. Routers only look at explicit
fields of the outcome (status, booleans, enums), never at free text.
"""

import logging
from typing import Any, List, Literal, Optional, TypedDict

from langgraph.graph import StateGraph, END

from .actions import Fail, Finish, format_action, is_terminal, parse_action
from .blockers import can_auto_retry, detect_blocker, requires_user_intervention
from .complexity import classify_complexity
from .debug import debug_node, log_edge_transition
from .errors import InvalidActionError
from .hierarchy import (
    build_sub_task_context,
    complete_sub_task,
    current_sub_task,
    extract_sub_task_outputs,
    is_complete,
)
from .replanning import apply_plan_modifications, determine_replan_action
from ..schemas import (
    BlockerContext,
    ComplexityLevel,
    ContextAnalysis,
    ContextSource,
    Plan,
    PlanReply,
    PlanStep,
    ReplanAction,
    ReplanningResult,
    StepStatus,
    SubTaskResult,
    TaskStatus,
    ToolType,
    TurnContext,
    TurnOutcome,
    VerificationResult,
    VerificationTier,
)

logger = logging.getLogger(__name__)

VELOCITY_REASON = (
    "Reflection: I've performed several steps without completing the goal. "
    "You may want to rephrase or try a different approach."
)


class AgentState(TypedDict):
    """State passed through the graph."""

    context: TurnContext
    outcome: TurnOutcome

    # Component instances (stored as Any to avoid TypedDict issues)
    reasoner: Any
    verifier: Any
    corrector: Any
    plan_validator: Any
    error_reporter: Any
    config: Any


def plan_from_reply(reply: PlanReply) -> Plan:
    steps = [
        PlanStep(
            index=i,
            description=s.description,
            reasoning=s.reasoning,
            tool_type=s.tool_type,
            expected_outcome=s.expected_outcome,
        )
        for i, s in enumerate(reply.steps)
    ]
    if steps:
        steps[0].status = StepStatus.ACTIVE
    return Plan(steps=steps)


def _set_action(outcome: TurnOutcome, raw: str, thought: str) -> None:
    """Parse and re-format a model-produced action onto the outcome.

    Raises:
        InvalidActionError: If the action string does not parse.
    """
    outcome.action = format_action(parse_action(raw))
    outcome.thought = thought


async def _generate_action(state: AgentState, system_messages: List[str]) -> AgentState:
    context = state["context"]
    outcome = state["outcome"]
    reply = await state["reasoner"].generate_action(
        context.goal, context.url, context.page, context.history, system_messages
    )
    if reply is None:
        outcome.status = TaskStatus.FAILED
        outcome.error = "Could not generate an action"
        return state
    try:
        _set_action(outcome, reply.action, reply.thought)
    except InvalidActionError as e:
        outcome.status = TaskStatus.FAILED
        outcome.error = f"Invalid action from model: {e}"
        return state
    outcome.status = TaskStatus.EXECUTING
    return state


# ---------------------------------------------------------------------------
# Entry
# ---------------------------------------------------------------------------


@debug_node("complexity_check")
async def complexity_check_node(state: AgentState) -> AgentState:
    """Route the turn: fast path, planning path, or verification of the last action."""
    context = state["context"]
    outcome = state["outcome"]
    config = state["config"]

    if len(context.history) >= config.max_steps_per_task:
        outcome.status = TaskStatus.FAILED
        outcome.error = f"Step limit ({config.max_steps_per_task}) reached"
        return state

    if not context.is_new_task and context.history:
        outcome.complexity = context.complexity or ComplexityLevel.COMPLEX
        outcome.complexity_reason = "Continuing task with history; previous action must be verified"
        return state

    classification = classify_complexity(context.goal, context.page)
    outcome.complexity = classification.complexity
    outcome.complexity_reason = classification.reason
    logger.info(
        "Complexity: %s (%.2f) - %s",
        classification.complexity.value, classification.confidence, classification.reason,
    )
    return state


def route_after_complexity_check(
    state: AgentState,
) -> Literal["direct_action", "context_analysis", "verification", "finalize"]:
    context = state["context"]
    outcome = state["outcome"]

    if outcome.status == TaskStatus.FAILED:
        log_edge_transition("complexity_check", "finalize", outcome.error or "failed", state)
        return "finalize"
    if not context.is_new_task and context.history:
        log_edge_transition("complexity_check", "verification", "continuing task", state)
        return "verification"
    if outcome.complexity == ComplexityLevel.SIMPLE:
        log_edge_transition("complexity_check", "direct_action", "simple task", state)
        return "direct_action"
    log_edge_transition("complexity_check", "context_analysis", "complex task", state)
    return "context_analysis"


@debug_node("direct_action")
async def direct_action_node(state: AgentState) -> AgentState:
    """Fast path for single-action goals: no plan, one model call."""
    return await _generate_action(state, [])


def route_after_generation(state: AgentState) -> Literal["outcome_prediction", "finalize"]:
    outcome = state["outcome"]
    if outcome.status == TaskStatus.FAILED or outcome.action is None:
        log_edge_transition("action", "finalize", outcome.error or "no action", state)
        return "finalize"
    log_edge_transition("action", "outcome_prediction", outcome.action, state)
    return "outcome_prediction"


# ---------------------------------------------------------------------------
# Planning path
# ---------------------------------------------------------------------------


@debug_node("context_analysis")
async def context_analysis_node(state: AgentState) -> AgentState:
    context = state["context"]
    outcome = state["outcome"]
    outcome.status = TaskStatus.ANALYZING

    analysis = await state["reasoner"].analyze_context(context.goal, context.url, context.page)
    if analysis is None:
        analysis = ContextAnalysis(sources=[ContextSource.PAGE], reasoning="Context analysis unavailable; using page only")
    outcome.context_analysis = analysis

    if ContextSource.ASK_USER in analysis.sources:
        outcome.status = TaskStatus.NEEDS_USER_INPUT
        outcome.thought = analysis.question or "I need more information from you before I can continue."
    return state


def route_after_context_analysis(state: AgentState) -> Literal["planning", "finalize"]:
    outcome = state["outcome"]
    if outcome.status in (TaskStatus.NEEDS_USER_INPUT, TaskStatus.FAILED):
        log_edge_transition("context_analysis", "finalize", outcome.status.value, state)
        return "finalize"
    log_edge_transition("context_analysis", "planning", "context sufficient", state)
    return "planning"


@debug_node("planning")
async def planning_node(state: AgentState) -> AgentState:
    """Reuse the current plan, or generate one."""
    context = state["context"]
    outcome = state["outcome"]
    outcome.status = TaskStatus.PLANNING

    if outcome.plan is None or not outcome.plan.steps:
        reply = await state["reasoner"].generate_plan(context.goal, context.url, context.page)
        outcome.plan = plan_from_reply(reply) if reply is not None and reply.steps else None
        if outcome.plan is None:
            logger.warning("Planning produced no plan; falling back to direct action generation")

    if outcome.plan is not None:
        step = outcome.plan.current_step()
        if step is not None and step.status == StepStatus.PENDING:
            step.status = StepStatus.ACTIVE
    outcome.status = TaskStatus.EXECUTING
    return state


def route_after_planning(state: AgentState) -> Literal["step_refinement", "action_generation"]:
    outcome = state["outcome"]
    if outcome.plan is not None and outcome.plan.steps:
        log_edge_transition("planning", "step_refinement", f"{len(outcome.plan.steps)} step(s)", state)
        return "step_refinement"
    log_edge_transition("planning", "action_generation", "no plan", state)
    return "action_generation"


@debug_node("step_refinement")
async def step_refinement_node(state: AgentState) -> AgentState:
    """Turn the current plan step into one concrete action."""
    context = state["context"]
    outcome = state["outcome"]
    plan = outcome.plan
    step = plan.current_step() if plan is not None else None

    if step is None:
        outcome.use_fallback_generation = True
        outcome.system_messages.append(
            "All plan steps are complete. If the goal is achieved, respond with finish(...)."
        )
        return state

    if step.tool_type == ToolType.SERVER:
        outcome.use_fallback_generation = True
        return state

    refined = await state["reasoner"].refine_step(context.goal, step, context.url, context.page, context.history)
    if refined is None:
        outcome.use_fallback_generation = True
        return state

    try:
        _set_action(outcome, refined.action, refined.thought or f"Step {step.index + 1}: {step.description}")
    except InvalidActionError as e:
        logger.warning("Refined action unusable, falling back: %s", e)
        outcome.action = None
        outcome.use_fallback_generation = True
        return state

    step.status = StepStatus.ACTIVE
    outcome.status = TaskStatus.EXECUTING
    return state


def route_after_step_refinement(state: AgentState) -> Literal["outcome_prediction", "action_generation"]:
    outcome = state["outcome"]
    if outcome.use_fallback_generation or outcome.action is None:
        log_edge_transition("step_refinement", "action_generation", "refinement fallback", state)
        return "action_generation"
    log_edge_transition("step_refinement", "outcome_prediction", outcome.action, state)
    return "outcome_prediction"


@debug_node("action_generation")
async def action_generation_node(state: AgentState) -> AgentState:
    """Free-form action generation, with plan and failure context as notes."""
    outcome = state["outcome"]
    messages = list(outcome.system_messages)

    plan = outcome.plan
    if plan is not None and plan.steps:
        step = plan.current_step()
        if step is not None:
            messages.append(f"Current plan step ({step.index + 1}/{len(plan.steps)}): {step.description}")
        elif not any("plan steps are complete" in m for m in messages):
            messages.append("All plan steps are complete. If the goal is achieved, respond with finish(...).")

    if outcome.verification is not None and not outcome.verification.success:
        messages.append(f"The previous action did not work: {outcome.verification.reason}")
    if outcome.correction is not None:
        messages.append(
            f"Correction strategy {outcome.correction.strategy.value}: {outcome.correction.reason}"
        )
    if outcome.hierarchical_plan is not None:
        sub_context = build_sub_task_context(outcome.hierarchical_plan)
        if sub_context:
            messages.append(sub_context)

    return await _generate_action(state, messages)


# ---------------------------------------------------------------------------
# Verification loop
# ---------------------------------------------------------------------------


@debug_node("verification")
async def verification_node(state: AgentState) -> AgentState:
    """Verify the previous action and update the loop-prevention counters."""
    context = state["context"]
    outcome = state["outcome"]
    config = state["config"]

    last = context.last_action
    before = context.previous_before_state
    if last is None or before is None:
        outcome.status = TaskStatus.EXECUTING
        return state
    outcome.status = TaskStatus.VERIFYING

    blocker = detect_blocker(
        context.page,
        context.url,
        skip_cookie_consent=True,
        skip_page_errors=True,
        min_confidence=config.blocker_min_confidence,
    )
    if blocker.detected:
        outcome.blocker = blocker
        if requires_user_intervention(blocker.type):
            outcome.status = TaskStatus.AWAITING_USER
            outcome.thought = blocker.user_message
            return state
        if can_auto_retry(blocker.type):
            outcome.verification = VerificationResult(
                success=False,
                confidence=blocker.confidence,
                reason=f"Auto-retryable blocker: {blocker.description}",
                route_to_correction=True,
                tier=VerificationTier.DETERMINISTIC,
                tokens_saved=400,
                blocker=blocker,
            )
            _record_failure(outcome, config)
            return state

    hierarchical = outcome.hierarchical_plan
    sub_task = current_sub_task(hierarchical) if hierarchical is not None else None

    result = await state["verifier"].verify(
        before,
        last.action,
        context.url,
        context.page,
        context.goal,
        expected_outcome=last.expected_outcome,
        client_observations=context.client_observations,
        after_active_element=context.active_element,
        complexity=context.complexity,
        plan=outcome.plan,
        sub_task_objective=sub_task.objective if sub_task else None,
        blocker=blocker if blocker.detected else None,
    )
    logger.info(
        "Verification %s: tier=%s confidence=%.2f action_succeeded=%s task_completed=%s",
        "SUCCESS" if result.success else "FAILED",
        result.tier.value, result.confidence, result.action_succeeded, result.task_completed,
    )

    if hierarchical is not None and sub_task is not None and result.sub_task_completed is not None:
        if result.sub_task_completed and result.confidence >= config.sub_task_confidence:
            outputs = extract_sub_task_outputs(sub_task, context.page, result.reason, context.url)
            hierarchical = complete_sub_task(
                hierarchical, SubTaskResult(success=True, outputs=outputs, summary=result.reason)
            )
        elif not result.sub_task_completed and not result.success:
            hierarchical = complete_sub_task(
                hierarchical, SubTaskResult(success=False, summary=result.reason, error=result.reason)
            )
        outcome.hierarchical_plan = hierarchical
        if is_complete(hierarchical):
            result = result.model_copy(update={"goal_achieved": True})

    outcome.verification = result

    if result.success and not result.route_to_correction:
        outcome.status = TaskStatus.EXECUTING
        outcome.consecutive_failures = 0
        outcome.correction_attempts = 0
        if result.goal_achieved:
            outcome.consecutive_success_without_completion = 0
        else:
            outcome.consecutive_success_without_completion += 1
        if outcome.plan is not None:
            outcome.plan.advance()
        if outcome.consecutive_success_without_completion >= config.max_success_without_completion:
            outcome.status = TaskStatus.FAILED
            outcome.error = VELOCITY_REASON
    else:
        if outcome.plan is not None:
            outcome.plan.mark_current(StepStatus.FAILED)
        _record_failure(outcome, config)
    return state


def _record_failure(outcome: TurnOutcome, config: Any) -> None:
    """Count a failed verification and trip the circuit breakers.

    The breakers look at what was carried into this turn: corrections
    already applied to the step, and failures before this one.
    """
    previous_failures = outcome.consecutive_failures
    outcome.consecutive_failures += 1
    outcome.consecutive_success_without_completion = 0

    if outcome.correction_attempts >= config.max_correction_attempts:
        outcome.status = TaskStatus.FAILED
        outcome.error = f"Max correction attempts ({config.max_correction_attempts}) exceeded"
    elif previous_failures >= config.max_consecutive_failures:
        outcome.status = TaskStatus.FAILED
        outcome.error = f"Too many consecutive failures ({outcome.consecutive_failures})"
    else:
        outcome.status = TaskStatus.CORRECTING


def route_after_verification(
    state: AgentState,
) -> Literal["correction", "goal_achieved", "replanning", "finalize"]:
    outcome = state["outcome"]
    verification = outcome.verification

    if outcome.status == TaskStatus.AWAITING_USER:
        blocker_type = outcome.blocker.type.value if outcome.blocker and outcome.blocker.type else "unknown"
        log_edge_transition("verification", "finalize", f"awaiting user (blocker: {blocker_type})", state)
        return "finalize"
    if outcome.status == TaskStatus.FAILED:
        log_edge_transition("verification", "finalize", outcome.error or "failed", state)
        return "finalize"
    if verification is not None and (not verification.success or verification.route_to_correction):
        reason = "deterministic failure" if verification.route_to_correction else "verification failed"
        log_edge_transition("verification", "correction", reason, state)
        return "correction"
    if verification is not None and verification.goal_achieved:
        log_edge_transition("verification", "goal_achieved", "goal achieved", state)
        return "goal_achieved"
    log_edge_transition("verification", "replanning", "verification passed", state)
    return "replanning"


@debug_node("replanning")
async def replanning_node(state: AgentState) -> AgentState:
    """Check whether the remaining plan still fits the page after a change."""
    context = state["context"]
    outcome = state["outcome"]
    before = context.previous_before_state

    if outcome.plan is None or before is None:
        return state

    validation = await state["plan_validator"].validate(
        outcome.plan, before.skeleton, before.url, context.page, context.url
    )
    action = determine_replan_action(validation)
    outcome.replanning = ReplanningResult(
        triggered=validation.triggered,
        plan_valid=validation.plan_valid,
        reason=validation.reason,
        action=action,
        trigger_reasons=validation.trigger_reasons,
        suggested_changes=validation.suggested_changes,
        dom_similarity=validation.dom_similarity.similarity if validation.dom_similarity else None,
        url_changed=validation.url_changed,
    )

    if action == ReplanAction.MODIFY:
        logger.info("Applying plan modifications: %s", validation.suggested_changes)
        outcome.plan = apply_plan_modifications(outcome.plan, validation.suggested_changes)
    elif action == ReplanAction.REGENERATE:
        logger.info("Regenerating plan: %s", validation.reason)
        reply = await state["reasoner"].generate_plan(context.goal, context.url, context.page)
        if reply is None or not reply.steps:
            outcome.status = TaskStatus.FAILED
            outcome.error = "Re-planning failed: could not generate new plan"
            return state
        outcome.plan = plan_from_reply(reply)
    return state


def route_after_replanning(state: AgentState) -> Literal["planning", "step_refinement", "finalize"]:
    outcome = state["outcome"]
    if outcome.status == TaskStatus.FAILED:
        log_edge_transition("replanning", "finalize", outcome.error or "failed", state)
        return "finalize"
    if outcome.replanning is not None and outcome.replanning.action == ReplanAction.REGENERATE:
        log_edge_transition("replanning", "planning", "plan regenerated", state)
        return "planning"
    log_edge_transition("replanning", "step_refinement", "plan still valid", state)
    return "step_refinement"


@debug_node("correction")
async def correction_node(state: AgentState) -> AgentState:
    context = state["context"]
    outcome = state["outcome"]
    config = state["config"]
    verification = outcome.verification

    if verification is None or (verification.success and not verification.route_to_correction):
        return state

    if outcome.correction_attempts >= config.max_correction_attempts:
        outcome.status = TaskStatus.FAILED
        outcome.error = "Max correction attempts exceeded"
        return state

    outcome.status = TaskStatus.CORRECTING
    plan = outcome.plan
    failed_step: Optional[PlanStep] = plan.current_step() if plan is not None else None
    last = context.last_action

    result = await state["corrector"].correct(
        context.goal,
        failed_step,
        last.action if last else None,
        verification,
        context.page,
        outcome.correction_attempts,
        blocker=outcome.blocker,
    )
    if result is None:
        outcome.status = TaskStatus.FAILED
        outcome.error = "Correction failed: no usable retry action"
        return state

    outcome.correction = result
    outcome.action = result.retry_action
    outcome.thought = f"Correction applied ({result.strategy.value}): {result.reason}"
    outcome.correction_attempts += 1

    if failed_step is not None:
        failed_step.status = StepStatus.ACTIVE
        if result.corrected_step is not None:
            failed_step.description = result.corrected_step.description
            failed_step.reasoning = result.corrected_step.reasoning

    outcome.status = TaskStatus.EXECUTING
    return state


def route_after_correction(state: AgentState) -> Literal["outcome_prediction", "finalize"]:
    outcome = state["outcome"]
    if outcome.status == TaskStatus.FAILED or outcome.action is None:
        log_edge_transition("correction", "finalize", outcome.error or "no retry action", state)
        return "finalize"
    log_edge_transition("correction", "outcome_prediction", outcome.action, state)
    return "outcome_prediction"


@debug_node("goal_achieved")
async def goal_achieved_node(state: AgentState) -> AgentState:
    context = state["context"]
    outcome = state["outcome"]
    reason = outcome.verification.reason if outcome.verification else ""

    outcome.action = format_action(Finish(message=f"Completed: {context.goal}"))
    outcome.thought = f'Task complete: "{context.goal}". {reason}'.strip()
    outcome.status = TaskStatus.COMPLETED
    return state


# ---------------------------------------------------------------------------
# Exit
# ---------------------------------------------------------------------------


@debug_node("outcome_prediction")
async def outcome_prediction_node(state: AgentState) -> AgentState:
    """Predict the action's effect for next turn's verification. Best effort."""
    context = state["context"]
    outcome = state["outcome"]
    if outcome.action is None or is_terminal(parse_action(outcome.action)):
        return state

    expected = await state["reasoner"].predict_outcome(context.goal, outcome.action, context.page)
    if expected is None and outcome.plan is not None:
        step = outcome.plan.current_step()
        expected = step.expected_outcome if step is not None else None
    outcome.expected_outcome = expected
    return state


@debug_node("finalize")
async def finalize_node(state: AgentState) -> AgentState:
    """Derive the turn's final status from what the nodes decided."""
    context = state["context"]
    outcome = state["outcome"]

    if outcome.status in (TaskStatus.NEEDS_USER_INPUT, TaskStatus.AWAITING_USER):
        if outcome.status == TaskStatus.AWAITING_USER and outcome.blocker is not None:
            outcome.blocker_context = BlockerContext(blocker=outcome.blocker, url=context.url)
        return state

    parsed = parse_action(outcome.action) if outcome.action else None
    if isinstance(parsed, Fail) and not outcome.error:
        outcome.error = parsed.reason or "The agent gave up on this task."

    if outcome.error or outcome.status == TaskStatus.FAILED:
        reason = outcome.error or "The task could not be completed."
        outcome.error = reason
        outcome.status = TaskStatus.FAILED
        outcome.thought = f'I couldn\'t complete "{context.goal}". {reason} You can try rephrasing or continue from here.'
        outcome.action = format_action(Fail(reason=reason))
        return state

    if isinstance(parsed, Finish):
        outcome.status = TaskStatus.COMPLETED
    else:
        outcome.status = TaskStatus.EXECUTING
    return state


def create_state_graph():
    """Create and compile the turn state graph.

    Returns:
        Compiled StateGraph instance.
    """
    graph = StateGraph(AgentState)

    # Add nodes
    graph.add_node("complexity_check", complexity_check_node)
    graph.add_node("direct_action", direct_action_node)
    graph.add_node("context_analysis", context_analysis_node)
    graph.add_node("planning", planning_node)
    graph.add_node("replanning", replanning_node)
    graph.add_node("step_refinement", step_refinement_node)
    graph.add_node("action_generation", action_generation_node)
    graph.add_node("verification", verification_node)
    graph.add_node("goal_achieved", goal_achieved_node)
    graph.add_node("correction", correction_node)
    graph.add_node("outcome_prediction", outcome_prediction_node)
    graph.add_node("finalize", finalize_node)

    # Define edges
    graph.set_entry_point("complexity_check")

    graph.add_conditional_edges(
        "complexity_check",
        route_after_complexity_check,
        {
            "direct_action": "direct_action",
            "context_analysis": "context_analysis",
            "verification": "verification",
            "finalize": "finalize",
        },
    )
    graph.add_conditional_edges(
        "direct_action",
        route_after_generation,
        {"outcome_prediction": "outcome_prediction", "finalize": "finalize"},
    )
    graph.add_conditional_edges(
        "context_analysis",
        route_after_context_analysis,
        {"planning": "planning", "finalize": "finalize"},
    )
    graph.add_conditional_edges(
        "planning",
        route_after_planning,
        {"step_refinement": "step_refinement", "action_generation": "action_generation"},
    )
    graph.add_conditional_edges(
        "step_refinement",
        route_after_step_refinement,
        {"outcome_prediction": "outcome_prediction", "action_generation": "action_generation"},
    )
    graph.add_conditional_edges(
        "action_generation",
        route_after_generation,
        {"outcome_prediction": "outcome_prediction", "finalize": "finalize"},
    )
    graph.add_conditional_edges(
        "verification",
        route_after_verification,
        {
            "correction": "correction",
            "goal_achieved": "goal_achieved",
            "replanning": "replanning",
            "finalize": "finalize",
        },
    )
    graph.add_conditional_edges(
        "replanning",
        route_after_replanning,
        {"planning": "planning", "step_refinement": "step_refinement", "finalize": "finalize"},
    )
    graph.add_conditional_edges(
        "correction",
        route_after_correction,
        {"outcome_prediction": "outcome_prediction", "finalize": "finalize"},
    )
    graph.add_edge("goal_achieved", "finalize")
    graph.add_edge("outcome_prediction", "finalize")
    graph.add_edge("finalize", END)

    return graph.compile()
