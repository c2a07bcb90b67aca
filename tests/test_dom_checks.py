import pytest

from interact.agent.dom_checks import (
    DomCheckResults,
    calculate_confidence,
    check_next_goal_availability,
    element_exists,
    element_has_text,
    perform_dom_checks,
)
from interact.schemas import (
    ActionType,
    AttributeChange,
    DomChanges,
    ElementExpectation,
    ExpectedOutcome,
    NextGoal,
    TextExpectation,
)

PAGE = """
<div id="toast" class="alert success">Saved!</div>
<ul role="menu"><li role="menuitem">Profile</li></ul>
<button id="account" aria-expanded="true">Account</button>
"""


def test_element_exists_by_id_class_and_tag():
    assert element_exists(PAGE, "#toast")
    assert element_exists(PAGE, ".success")
    assert element_exists(PAGE, "ul")
    assert not element_exists(PAGE, "#missing")


def test_element_has_text():
    assert element_has_text(PAGE, "#toast", "Saved")
    assert not element_has_text(PAGE, "#toast", "Error")


def test_data_id_does_not_match_id_selector():
    assert not element_exists('<div data-id="submit">Go</div>', "#submit")
    assert element_exists('<div id="submit">Go</div>', "#submit")


def test_element_text_includes_nested_markup():
    page = '<div id="toast"><strong>Order</strong> saved</div>'
    assert element_has_text(page, "#toast", "saved")
    assert element_has_text(page, "#toast", "Order saved")


def test_css_selectors_and_numeric_ids():
    page = '<form><button id="7" type="submit">Save</button></form>'
    assert element_exists(page, "#7")
    assert element_exists(page, "form button[type=submit]")
    assert not element_exists(page, "form > input")
    assert not element_exists(page, "[[broken")


def test_checks_follow_expected_changes():
    expected = ExpectedOutcome(
        dom_changes=DomChanges(
            element_should_exist="#toast",
            element_should_not_exist="#spinner",
            element_should_have_text=TextExpectation(selector="#toast", text="Saved"),
            url_should_change=False,
        )
    )
    checks = perform_dom_checks(expected, PAGE, "https://a.com/x", "https://a.com/x")
    assert checks.as_dict() == {
        "element_exists": True,
        "element_not_exists": True,
        "element_text_matches": True,
        "url_changed": True,
    }


def test_popup_expectation_skips_existence_checks():
    expected = ExpectedOutcome(
        dom_changes=DomChanges(
            element_should_exist="#profile-page",
            url_should_change=False,
            attribute_changes=[AttributeChange(attribute="aria-expanded", expected_value="true")],
            elements_to_appear=[ElementExpectation(role="menu")],
        )
    )
    checks = perform_dom_checks(expected, PAGE, "https://a.com/x", "https://a.com/x")
    assert checks.element_exists is None
    assert checks.attribute_changed is True
    assert checks.elements_appeared is True


def test_dropdown_without_expectation_looks_for_menu_roles():
    checks = perform_dom_checks(None, PAGE, "https://a.com", action_type=ActionType.DROPDOWN)
    assert checks.as_dict() == {"elements_appeared": True}
    assert perform_dom_checks(None, PAGE, "https://a.com").as_dict() == {}


# ----------------------------------------------------------------------------
# Next-goal look-ahead
# ----------------------------------------------------------------------------


def test_next_goal_found_by_text_after_selector_miss():
    goal = NextGoal(description="Profile link", selector="#profile", text_content="Profile")
    check = check_next_goal_availability(goal, PAGE)
    assert check.available
    assert check.reason.startswith("Next-goal available: Profile link")


def test_required_next_goal_missing():
    goal = NextGoal(description="Save button", selector="#save", required=True)
    check = check_next_goal_availability(goal, PAGE)
    assert not check.available
    assert check.required
    assert "NOT available" in check.reason


def test_next_goal_with_only_description_is_assumed_available():
    check = check_next_goal_availability(NextGoal(description="anything"), "")
    assert check.available


# ----------------------------------------------------------------------------
# Confidence
# ----------------------------------------------------------------------------


def test_confident_judge_overrides_dom_average():
    checks = DomCheckResults(element_exists=True, element_text_matches=False)
    assert calculate_confidence(checks, 0.9) == pytest.approx(0.9)


def test_blend_below_override_threshold():
    checks = DomCheckResults(element_exists=True, element_text_matches=False)
    assert calculate_confidence(checks, 0.6) == pytest.approx(0.5 * 0.3 + 0.6 * 0.7)


def test_no_checks_use_neutral_dom_score():
    assert calculate_confidence(DomCheckResults(), 0.5) == pytest.approx(0.5 * 0.3 + 0.5 * 0.7)


def test_missing_element_caps_confidence():
    checks = DomCheckResults(element_exists=False)
    assert calculate_confidence(checks, 0.95) == pytest.approx(0.6)


def test_missing_element_not_capped_when_expected_navigation_happened():
    checks = DomCheckResults(element_exists=False, url_changed=True)
    result = calculate_confidence(checks, 0.95, ActionType.NAVIGATION, url_actually_changed=True, expected_url_change=True)
    assert result == pytest.approx(0.95)


def test_url_change_boost():
    checks = DomCheckResults(url_changed=True)
    result = calculate_confidence(checks, 0.0, ActionType.NAVIGATION, url_actually_changed=True, expected_url_change=True)
    assert result == pytest.approx(0.5)
