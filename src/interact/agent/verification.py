"""Tiered, observation-based verification of the previous action.

The engine diffs what was observed before and after the action and only
asks a model when the observations are ambiguous:

- Tier 1 (deterministic): hard failures and unambiguous intermediate
  successes, no model call.
- Tier 2 (lightweight): the last plan step, judged by the small model.
- Tier 3 (full): DOM checks plus the full judge, blended into one
  confidence.
"""

import logging
from typing import Any, Dict, List, Optional

from .actions import Action, classify_action_type, parse_action
from .config import AgentConfig
from .dom_checks import (
    calculate_confidence,
    check_next_goal_availability,
    perform_dom_checks,
)
from .dom_similarity import has_significant_url_change, is_cross_domain_navigation
from .errors import InvalidActionError
from .observation import build_observations, compute_dom_hash, has_meaningful_content_change
from ..schemas import (
    ActionType,
    BeforeState,
    BlockerDetectionResult,
    ClientObservations,
    ComplexityLevel,
    ExpectedOutcome,
    Plan,
    VerificationResult,
    VerificationTier,
)

logger = logging.getLogger(__name__)

TOKENS_SAVED = {
    VerificationTier.DETERMINISTIC: 400,
    VerificationTier.LIGHTWEIGHT: 300,
    VerificationTier.FULL: 0,
}


def estimate_tokens_saved(tier: VerificationTier) -> int:
    return TOKENS_SAVED.get(tier, 0)


def compute_is_last_step(plan: Optional[Plan]) -> bool:
    """True when there is no plan or the cursor is on the final step."""
    if plan is None or not plan.steps:
        return True
    return plan.current_step_index >= len(plan.steps) - 1


class VerificationEngine:
    """Decides whether the previous action worked and whether the goal is done."""

    def __init__(self, reasoner: Any, config: Optional[AgentConfig] = None):
        self.reasoner = reasoner
        self.config = config or AgentConfig()

    def _result(
        self,
        action_succeeded: bool,
        task_completed: bool,
        confidence: float,
        reason: str,
        tier: VerificationTier,
        observations: List[str],
        route_to_correction: bool = False,
        sub_task_completed: Optional[bool] = None,
        blocker: Optional[BlockerDetectionResult] = None,
        expected_state: Optional[Dict[str, Any]] = None,
        actual_state: Optional[Dict[str, Any]] = None,
        comparison: Optional[Dict[str, Any]] = None,
    ) -> VerificationResult:
        confidence = max(0.0, min(1.0, confidence))
        return VerificationResult(
            success=action_succeeded and confidence >= self.config.action_success_threshold,
            confidence=confidence,
            reason=reason,
            action_succeeded=action_succeeded,
            task_completed=task_completed,
            goal_achieved=task_completed and confidence >= self.config.goal_achieved_threshold,
            sub_task_completed=sub_task_completed,
            route_to_correction=route_to_correction,
            tier=tier,
            tokens_saved=estimate_tokens_saved(tier),
            observations=observations,
            expected_state=expected_state,
            actual_state=actual_state,
            comparison=comparison,
            blocker=blocker,
        )

    async def verify(
        self,
        before: BeforeState,
        action: str,
        after_url: str,
        after_page: str,
        goal: str,
        expected_outcome: Optional[ExpectedOutcome] = None,
        client_observations: Optional[ClientObservations] = None,
        after_active_element: Optional[str] = None,
        complexity: Optional[ComplexityLevel] = None,
        plan: Optional[Plan] = None,
        sub_task_objective: Optional[str] = None,
        blocker: Optional[BlockerDetectionResult] = None,
    ) -> VerificationResult:
        """Verify one action against the before-state saved when it was generated.

        Args:
            before: Snapshot captured at generation time.
            action: Wire-format action the client executed.
            after_url: URL after the action.
            after_page: Page snapshot after the action.
            goal: The task goal.
            expected_outcome: Prediction made when the action was generated.
            client_observations: Signals witnessed by the client.
            after_active_element: Focused element after the action.
            complexity: Task complexity, used by the completion safety gates.
            plan: Current plan, used to tell intermediate from final steps.
            sub_task_objective: Objective of the current sub-task, if any.
            blocker: A detected blocker that makes this a hard failure.

        Returns:
            VerificationResult. An unexpected error yields a failed result
            with confidence 0, never an assumed success.
        """
        observations: List[str] = []
        try:
            observations = build_observations(
                before, after_url, after_page, after_active_element, client_observations
            )
            parsed = self._parse(action)
            action_type = self._action_type(parsed, before, after_page)
            is_last_step = compute_is_last_step(plan)

            result = self._tier_one(
                before, after_url, after_page, expected_outcome, client_observations,
                complexity, action_type, is_last_step, observations, blocker,
            )
            if result is not None:
                return result

            if is_last_step:
                result = await self._tier_two(
                    action, goal, expected_outcome, complexity, action_type, observations, sub_task_objective
                )
                if result is not None:
                    return result

            return await self._tier_three(
                before, action, after_url, after_page, goal, expected_outcome,
                action_type, observations, sub_task_objective,
            )
        except (InvalidActionError, ValueError, TypeError, KeyError, AttributeError) as e:
            logger.exception("Verification failed unexpectedly: %s", e)
            return self._result(
                action_succeeded=False,
                task_completed=False,
                confidence=0.0,
                reason=f"Verification error: {e}",
                tier=VerificationTier.FULL,
                observations=observations,
            )

    @staticmethod
    def _parse(action: str) -> Optional[Action]:
        try:
            return parse_action(action)
        except InvalidActionError:
            logger.debug("Could not parse action %r for classification", action)
            return None

    @staticmethod
    def _action_type(parsed: Optional[Action], before: BeforeState, after_page: str) -> ActionType:
        if parsed is None:
            return ActionType.GENERIC
        action_type = classify_action_type(parsed, after_page)
        if action_type == ActionType.GENERIC and before.skeleton:
            action_type = classify_action_type(parsed, before.skeleton)
        return action_type

    # ------------------------------------------------------------------
    # Tier 1
    # ------------------------------------------------------------------

    def _tier_one(
        self,
        before: BeforeState,
        after_url: str,
        after_page: str,
        expected_outcome: Optional[ExpectedOutcome],
        client_observations: Optional[ClientObservations],
        complexity: Optional[ComplexityLevel],
        action_type: ActionType,
        is_last_step: bool,
        observations: List[str],
        blocker: Optional[BlockerDetectionResult],
    ) -> Optional[VerificationResult]:
        tier = VerificationTier.DETERMINISTIC

        def success(reason: str, confidence: float, task_completed: bool = False) -> VerificationResult:
            logger.info("Tier 1 verification: %s", reason)
            return self._result(True, task_completed, confidence, reason, tier, observations)

        if blocker is not None and blocker.detected:
            return self._result(
                False, False, blocker.confidence,
                f"Deterministic: blocker detected ({blocker.type.value if blocker.type else 'unknown'})",
                tier, observations, route_to_correction=True, blocker=blocker,
            )
        if client_observations is not None and client_observations.network_error:
            return self._result(
                False, False, 0.9,
                f"Deterministic: client reported an error: {client_observations.network_error}",
                tier, observations, route_to_correction=True,
            )

        url_changed = has_significant_url_change(before.url, after_url)
        not_last = not is_last_step

        if action_type == ActionType.NAVIGATION and url_changed and not_last:
            return success("Deterministic: Navigation successful for intermediate step.", 1.0)

        if not_last and has_meaningful_content_change(before, after_page):
            return success("Deterministic: Page content changed meaningfully for intermediate step.", 0.95)

        if not_last and is_cross_domain_navigation(before.url, after_url):
            return success("Deterministic: Cross-domain navigation for intermediate step.", 1.0)

        next_goal = expected_outcome.next_goal if expected_outcome else None
        if next_goal is not None:
            check = check_next_goal_availability(next_goal, after_page)
            if check.required and not check.available:
                logger.info("Tier 1 verification: %s", check.reason)
                return self._result(
                    False, False, 0.8, f"Deterministic: {check.reason}", tier, observations,
                    route_to_correction=True,
                )
            if check.available and not_last:
                return success(f"Deterministic: {check.reason}", 0.95)

        if complexity == ComplexityLevel.SIMPLE and action_type == ActionType.NAVIGATION and url_changed:
            return success("Deterministic: Simple navigation task reached its destination.", 1.0, task_completed=True)

        return None

    # ------------------------------------------------------------------
    # Tier 2
    # ------------------------------------------------------------------

    async def _tier_two(
        self,
        action: str,
        goal: str,
        expected_outcome: Optional[ExpectedOutcome],
        complexity: Optional[ComplexityLevel],
        action_type: ActionType,
        observations: List[str],
        sub_task_objective: Optional[str],
    ) -> Optional[VerificationResult]:
        reply = await self.reasoner.judge_verification(
            goal, action, observations, sub_task_objective=sub_task_objective, lightweight=True
        )
        if reply is None:
            logger.info("Tier 2 judge gave no reply, escalating to full verification")
            return None

        if reply.task_completed:
            expects_navigation = bool(
                expected_outcome
                and expected_outcome.dom_changes
                and expected_outcome.dom_changes.url_should_change is True
            )
            gate_open = complexity == ComplexityLevel.SIMPLE or (
                action_type == ActionType.NAVIGATION and expects_navigation
            )
            if not gate_open:
                logger.info("Tier 2 completion claim blocked by safety gate, escalating")
                return None

        return self._result(
            reply.action_succeeded,
            reply.task_completed,
            reply.confidence,
            f"Lightweight: {reply.reason}",
            VerificationTier.LIGHTWEIGHT,
            observations,
            sub_task_completed=reply.sub_task_completed,
        )

    # ------------------------------------------------------------------
    # Tier 3
    # ------------------------------------------------------------------

    async def _tier_three(
        self,
        before: BeforeState,
        action: str,
        after_url: str,
        after_page: str,
        goal: str,
        expected_outcome: Optional[ExpectedOutcome],
        action_type: ActionType,
        observations: List[str],
        sub_task_objective: Optional[str],
    ) -> VerificationResult:
        checks = perform_dom_checks(expected_outcome, after_page, after_url, before.url, action_type)
        expected_state = expected_outcome.model_dump(exclude_none=True) if expected_outcome else None
        actual_state = {
            "url": after_url,
            "dom_hash": compute_dom_hash(after_page),
            "action_type": action_type.value,
        }

        reply = await self.reasoner.judge_verification(
            goal, action, observations, sub_task_objective=sub_task_objective,
            lightweight=False, dom_checks=checks.as_dict() or None,
        )
        if reply is None:
            return self._result(
                False, False, 0.0, "Verification judge unavailable", VerificationTier.FULL, observations,
                expected_state=expected_state, actual_state=actual_state, comparison=checks.as_dict(),
            )

        expected_url_change = bool(
            expected_outcome and expected_outcome.dom_changes and expected_outcome.dom_changes.url_should_change
        )
        confidence = calculate_confidence(
            checks,
            reply.confidence,
            action_type=action_type,
            url_actually_changed=has_significant_url_change(before.url, after_url),
            expected_url_change=expected_url_change,
        )
        return self._result(
            reply.action_succeeded,
            reply.task_completed,
            confidence,
            reply.reason,
            VerificationTier.FULL,
            observations,
            sub_task_completed=reply.sub_task_completed,
            expected_state=expected_state,
            actual_state=actual_state,
            comparison=checks.as_dict(),
        )
