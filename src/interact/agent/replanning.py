"""Plan validation after navigation or a large page change.

The structural diff decides whether re-planning is worth considering at
all; only then are the remaining steps checked against a summary of the
current page by the plan validator.
"""

import re
import logging
from typing import Any, List, Optional

from .config import AgentConfig
from .dom_similarity import should_trigger_replanning
from .page import Page, parse_page, text_of
from ..schemas import Plan, PlanValidationResult, ReplanAction, StepStatus

logger = logging.getLogger(__name__)

MAX_SUMMARY_CHARS = 3000

SKIP_STEP_PATTERN = re.compile(r"^\s*skip\s+step\s+(\d+)\s*\.?\s*$", re.IGNORECASE)
CHANGE_STEP_PATTERN = re.compile(r"^\s*change\s+step\s+(\d+)\s+to\s+(.+?)\s*$", re.IGNORECASE | re.DOTALL)

INPUT_TAGS = ["input", "select", "textarea"]
HEADING_TAGS = ["h1", "h2", "h3", "h4", "h5", "h6"]


def _texts(elements, limit: int) -> List[str]:
    texts = [text_of(el) for el in elements]
    return [t for t in texts if t][:limit]


def _input_label(element) -> str:
    label = (
        element.get("aria-label")
        or element.get("placeholder")
        or element.get("name")
        or element.get("id")
        or ""
    )
    kind = element.get("type") or element.name
    return f"{kind}:{label}" if label else kind


def summarize_dom(page: Page, max_chars: int = MAX_SUMMARY_CHARS) -> str:
    """Summarize a page as headings, forms, buttons, inputs and links.

    Args:
        page: HTML snapshot.
        max_chars: Hard cap on the summary length.

    Returns:
        Plain-text summary for the plan validator.
    """
    soup = parse_page(page)
    sections = []

    headings = _texts(soup.find_all(HEADING_TAGS), 5)
    if headings:
        sections.append("Headings: " + " | ".join(headings))

    forms = len(soup.find_all("form"))
    if forms:
        sections.append(f"Forms: {forms}")

    buttons = _texts(soup.find_all("button"), 10)
    if buttons:
        sections.append("Buttons: " + ", ".join(buttons))

    inputs = [_input_label(el) for el in soup.find_all(INPUT_TAGS, limit=10)]
    if inputs:
        sections.append("Inputs: " + ", ".join(inputs))

    links = _texts(soup.find_all("a"), 10)
    if links:
        sections.append("Links: " + ", ".join(links))

    summary = "\n".join(sections) or "(no headings, forms, buttons, inputs or links found)"
    return summary[:max_chars]


def is_minor_change(change: str) -> bool:
    return bool(SKIP_STEP_PATTERN.match(change) or CHANGE_STEP_PATTERN.match(change))


def apply_plan_modifications(plan: Plan, suggested_changes: List[str]) -> Plan:
    """Apply skip/rewrite edits in place on a copy of the plan.

    Step numbers in suggestions are 1-based. Unrecognized or out-of-range
    suggestions are ignored; steps are never added or removed.
    """
    updated = plan.model_copy(deep=True)
    for change in suggested_changes:
        skip = SKIP_STEP_PATTERN.match(change)
        if skip:
            position = int(skip.group(1)) - 1
            if 0 <= position < len(updated.steps):
                step = updated.steps[position]
                step.status = StepStatus.COMPLETED
                if not step.description.startswith("[SKIPPED] "):
                    step.description = f"[SKIPPED] {step.description}"
            continue

        rewrite = CHANGE_STEP_PATTERN.match(change)
        if rewrite:
            position = int(rewrite.group(1)) - 1
            if 0 <= position < len(updated.steps):
                step = updated.steps[position]
                step.description = rewrite.group(2)
                step.reasoning = f"Modified: {change}"
            continue

        logger.debug("Ignoring unrecognized plan change: %r", change)

    # The cursor may now sit on a skipped step
    while not updated.is_exhausted and updated.steps[updated.current_step_index].status == StepStatus.COMPLETED:
        updated.current_step_index += 1
    current = updated.current_step()
    if current is not None and current.status == StepStatus.PENDING:
        current.status = StepStatus.ACTIVE
    return updated


def determine_replan_action(validation: PlanValidationResult) -> ReplanAction:
    """Map a validation result to continue, modify or regenerate."""
    if not validation.triggered:
        return ReplanAction.CONTINUE
    if not validation.plan_valid or validation.needs_full_replan:
        return ReplanAction.REGENERATE
    if validation.suggested_changes:
        if all(is_minor_change(c) for c in validation.suggested_changes):
            return ReplanAction.MODIFY
        return ReplanAction.REGENERATE
    return ReplanAction.CONTINUE


class PlanValidator:
    """Checks whether a plan's remaining steps still fit the current page."""

    def __init__(self, reasoner: Any, config: Optional[AgentConfig] = None):
        self.reasoner = reasoner
        self.config = config or AgentConfig()

    async def validate(
        self,
        plan: Plan,
        previous_page: str,
        previous_url: str,
        current_page: str,
        current_url: str,
        threshold: Optional[float] = None,
    ) -> PlanValidationResult:
        """Validate the remaining steps of ``plan`` after a page change.

        Args:
            plan: Plan being executed.
            previous_page: Snapshot (or skeleton) the last action ran against.
            previous_url: URL the last action ran against.
            current_page: Current snapshot.
            current_url: Current URL.
            threshold: Similarity threshold; defaults to the configured one.

        Returns:
            PlanValidationResult with ``triggered=False`` when the page did
            not change enough to warrant a model call.
        """
        threshold = self.config.similarity_threshold if threshold is None else threshold
        trigger = should_trigger_replanning(previous_page, current_page, previous_url, current_url, threshold)

        if not trigger.should_replan:
            return PlanValidationResult(
                triggered=False,
                plan_valid=True,
                reason="No significant page change",
                url_changed=trigger.url_changed,
                dom_similarity=trigger.dom_similarity,
            )

        logger.info("Re-planning triggered: %s", "; ".join(trigger.reasons))
        remaining = plan.remaining_steps()
        if not remaining:
            return PlanValidationResult(
                triggered=True,
                plan_valid=True,
                reason="No remaining steps to validate",
                trigger_reasons=trigger.reasons,
                url_changed=trigger.url_changed,
                dom_similarity=trigger.dom_similarity,
            )

        reply = await self.reasoner.validate_plan(
            remaining, summarize_dom(current_page), previous_url, current_url, trigger.reasons
        )
        if reply is None:
            return PlanValidationResult(
                triggered=True,
                plan_valid=False,
                reason="Plan validation failed: no reply from validator",
                trigger_reasons=trigger.reasons,
                needs_full_replan=True,
                url_changed=trigger.url_changed,
                dom_similarity=trigger.dom_similarity,
            )

        return PlanValidationResult(
            triggered=True,
            plan_valid=reply.valid,
            reason=reply.reason,
            trigger_reasons=trigger.reasons,
            suggested_changes=reply.suggested_changes,
            needs_full_replan=reply.needs_full_replan,
            url_changed=trigger.url_changed,
            dom_similarity=trigger.dom_similarity,
        )
