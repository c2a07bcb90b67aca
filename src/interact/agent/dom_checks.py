"""Deterministic page checks against an expected outcome, look-ahead for the
next step's element, and the confidence blend used by full verification.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from .dom_similarity import has_significant_url_change
from .page import Page, find_element, has_role, parse_page, text_of
from ..schemas import ActionType, DomChanges, ExpectedOutcome, NextGoal

logger = logging.getLogger(__name__)

SEMANTIC_OVERRIDE_THRESHOLD = 0.85
DOM_WEIGHT = 0.3
SEMANTIC_WEIGHT = 0.7
URL_CHANGE_BOOST = 0.5
NOT_FOUND_PENALTY_CAP = 0.6

POPUP_ROLES = ("menu", "listbox", "menuitem", "option")


@dataclass
class DomCheckResults:
    element_exists: Optional[bool] = None
    element_not_exists: Optional[bool] = None
    element_text_matches: Optional[bool] = None
    url_changed: Optional[bool] = None
    attribute_changed: Optional[bool] = None
    elements_appeared: Optional[bool] = None

    def as_dict(self) -> Dict[str, bool]:
        return {k: v for k, v in vars(self).items() if v is not None}

    def scores(self) -> List[bool]:
        return list(self.as_dict().values())


@dataclass
class NextGoalCheck:
    available: bool
    reason: str
    required: bool = False


def element_exists(page: Page, selector: str) -> bool:
    return find_element(page, selector) is not None


def element_has_text(page: Page, selector: str, text: str) -> bool:
    element = find_element(page, selector)
    return element is not None and text in text_of(element)


def roles_exist(page: Page, roles: List[str]) -> bool:
    return has_role(page, *roles)


def is_expanded(page: Page) -> bool:
    soup = parse_page(page)
    return soup.find(lambda el: (el.get("aria-expanded") or "").lower() == "true") is not None


def is_popup_expectation(changes: DomChanges) -> bool:
    """A dropdown/menu opening in place, as opposed to a navigation."""
    expanded = any(c.attribute == "aria-expanded" and c.expected_value == "true" for c in changes.attribute_changes)
    return changes.url_should_change is False and (bool(changes.elements_to_appear) or expanded)


def perform_dom_checks(
    expected: Optional[ExpectedOutcome],
    page: Page,
    url: str,
    previous_url: Optional[str] = None,
    action_type: Optional[ActionType] = None,
) -> DomCheckResults:
    """Check the current page against the expected DOM changes.

    Existence and text checks are skipped for popups: a menu opening does
    not make its trigger's target element exist yet.
    """
    page = parse_page(page)
    results = DomCheckResults()
    changes = expected.dom_changes if expected else None
    if changes is None:
        if action_type == ActionType.DROPDOWN:
            results.elements_appeared = has_role(page, *POPUP_ROLES)
        return results

    popup = is_popup_expectation(changes) or action_type == ActionType.DROPDOWN

    if not popup and changes.element_should_exist:
        results.element_exists = element_exists(page, changes.element_should_exist)
    if not popup and changes.element_should_not_exist:
        results.element_not_exists = not element_exists(page, changes.element_should_not_exist)
    if not popup and changes.element_should_have_text:
        expectation = changes.element_should_have_text
        results.element_text_matches = element_has_text(page, expectation.selector, expectation.text)

    if changes.url_should_change is not None and previous_url is not None:
        changed = has_significant_url_change(previous_url, url)
        results.url_changed = changed if changes.url_should_change else not changed

    if any(c.attribute == "aria-expanded" and c.expected_value == "true" for c in changes.attribute_changes):
        results.attribute_changed = is_expanded(page)

    if changes.elements_to_appear:
        roles = [e.role for e in changes.elements_to_appear if e.role]
        selectors = [e.selector for e in changes.elements_to_appear if e.selector]
        results.elements_appeared = (bool(roles) and roles_exist(page, roles)) or any(
            element_exists(page, s) for s in selectors
        )
    elif action_type == ActionType.DROPDOWN:
        results.elements_appeared = has_role(page, *POPUP_ROLES)

    return results


def check_next_goal_availability(next_goal: NextGoal, page: Page) -> NextGoalCheck:
    """Look ahead: is the element the next step needs on the page now?"""
    page = parse_page(page)
    available = False
    checks = []

    if next_goal.selector:
        available = element_exists(page, next_goal.selector)
        checks.append(f"selector({next_goal.selector}): {'found' if available else 'not found'}")

    if not available and next_goal.text_content:
        needle = " ".join(next_goal.text_content.split())
        available = needle in text_of(page)
        checks.append(f'text("{next_goal.text_content}"): {"found" if available else "not found"}')

    if not available and next_goal.role:
        available = roles_exist(page, [next_goal.role])
        checks.append(f"role({next_goal.role}): {'found' if available else 'not found'}")

    if not checks and next_goal.description:
        available = True
        checks.append("no specific selector/text/role to verify")

    prefix = "Next-goal available" if available else "Next-goal NOT available"
    return NextGoalCheck(
        available=available,
        reason=f"{prefix}: {next_goal.description} ({', '.join(checks)})",
        required=next_goal.required,
    )


def calculate_confidence(
    dom_checks: DomCheckResults,
    semantic_confidence: float,
    action_type: Optional[ActionType] = None,
    url_actually_changed: bool = False,
    expected_url_change: bool = False,
) -> float:
    """Blend DOM check results with the semantic judge's confidence.

    A confident judge (>= 0.85) overrides the DOM average; otherwise the
    score is 0.3 * DOM + 0.7 * semantic. An expected element that is
    missing caps the result at 0.6 unless the expected navigation happened.
    """
    confidence = 0.0
    cap = 1.0

    if dom_checks.element_exists is False and not (expected_url_change and url_actually_changed):
        cap = NOT_FOUND_PENALTY_CAP

    scores = dom_checks.scores()
    dom_average = sum(1 for s in scores if s) / len(scores) if scores else 0.5

    if action_type in (ActionType.NAVIGATION, ActionType.GENERIC, None) and expected_url_change and url_actually_changed:
        confidence += URL_CHANGE_BOOST

    if semantic_confidence >= SEMANTIC_OVERRIDE_THRESHOLD:
        confidence = max(confidence, semantic_confidence)
    else:
        confidence = max(confidence, dom_average * DOM_WEIGHT + semantic_confidence * SEMANTIC_WEIGHT)

    return max(0.0, min(cap, confidence, 1.0))
