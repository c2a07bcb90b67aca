import pytest

from interact.agent.dom_similarity import (
    build_skeleton,
    calculate_dom_similarity,
    extract_signatures,
    has_significant_url_change,
    is_cross_domain_navigation,
    should_trigger_replanning,
)

FORM_PAGE = """
<html><head><script>var x = 1;</script></head>
<body>
  <nav role="navigation"><a href="/home">Home</a></nav>
  <main>
    <form id="login" class="auth-form p-4">
      <input type="text" name="username">
      <input type="password" name="password">
      <button class="btn primary" type="submit">Sign in</button>
    </form>
  </main>
</body></html>
"""

DASHBOARD_PAGE = """
<html><body>
  <nav role="navigation"><a href="/home">Home</a></nav>
  <main>
    <h1>Dashboard</h1>
    <table id="orders"><tr><td>1</td></tr></table>
  </main>
</body></html>
"""


# ----------------------------------------------------------------------------
# Signatures
# ----------------------------------------------------------------------------


def test_signatures_skip_script_and_utility_classes():
    sigs = extract_signatures(FORM_PAGE)
    tags = {s.tag for s in sigs}
    assert "script" not in tags
    assert "html" not in tags

    form = next(s for s in sigs if s.tag == "form")
    assert form.signature == "form#login.auth-form"


def test_input_signature_includes_type_and_name():
    sigs = extract_signatures('<input type="password" name="pw">')
    assert sigs[0].signature == "input[type=password][name=pw]"
    assert sigs[0].is_interactive


def test_skeleton_preserves_signatures():
    original = [s.signature for s in extract_signatures(FORM_PAGE)]
    rebuilt = [s.signature for s in extract_signatures(build_skeleton(FORM_PAGE))]
    assert rebuilt == original


# ----------------------------------------------------------------------------
# Similarity
# ----------------------------------------------------------------------------


def test_identical_pages_are_fully_similar():
    result = calculate_dom_similarity(FORM_PAGE, FORM_PAGE)
    assert result.similarity == pytest.approx(1.0)
    assert result.structural_changes == []
    assert result.should_replan is False


def test_two_empty_pages_are_fully_similar():
    result = calculate_dom_similarity("", "")
    assert result.similarity == pytest.approx(1.0)
    assert result.should_replan is False


def test_similarity_is_symmetric_in_score():
    forward = calculate_dom_similarity(FORM_PAGE, DASHBOARD_PAGE)
    backward = calculate_dom_similarity(DASHBOARD_PAGE, FORM_PAGE)
    assert forward.structural_similarity == pytest.approx(backward.structural_similarity)


def test_form_removed_is_flagged_and_triggers_replan():
    result = calculate_dom_similarity(FORM_PAGE, DASHBOARD_PAGE)
    assert "form removed" in result.structural_changes
    assert "table/grid count changed: 0 → 1" in result.structural_changes
    assert result.should_replan is True
    assert 0.0 <= result.similarity < 1.0


def test_form_added_is_flagged():
    result = calculate_dom_similarity(DASHBOARD_PAGE, FORM_PAGE)
    assert "form added" in result.structural_changes


def test_dialog_opened_is_flagged():
    before = "<main><button id='open'>Open</button></main>"
    after = "<main><button id='open'>Open</button><div role='dialog'>Hi</div></main>"
    result = calculate_dom_similarity(before, after)
    assert "dialog/modal opened" in result.structural_changes


def test_counts_are_reported():
    result = calculate_dom_similarity(FORM_PAGE, FORM_PAGE)
    assert result.element_counts.previous == result.element_counts.current
    assert result.interactive_counts.retained == len(
        {s.signature for s in extract_signatures(FORM_PAGE) if s.is_interactive}
    )


# ----------------------------------------------------------------------------
# URLs
# ----------------------------------------------------------------------------


@pytest.mark.parametrize(
    "previous,current,expected",
    [
        ("https://a.com/x", "https://a.com/x?tab=2", False),
        ("https://a.com/x", "https://a.com/x#section", False),
        ("https://a.com/x", "https://a.com/y", True),
        ("https://a.com/x", "https://b.com/x", True),
        ("not a url", "not a url", False),
        ("not a url", "also not a url", True),
    ],
)
def test_significant_url_change(previous, current, expected):
    assert has_significant_url_change(previous, current) is expected


def test_cross_domain_navigation():
    assert is_cross_domain_navigation("https://a.com/x", "https://login.b.com/")
    assert not is_cross_domain_navigation("https://a.com/x", "https://a.com/y")
    assert not is_cross_domain_navigation("garbage", "https://a.com/")


def test_replanning_trigger_combines_url_and_structure():
    trigger = should_trigger_replanning(
        FORM_PAGE, DASHBOARD_PAGE, "https://app.com/login", "https://app.com/dashboard"
    )
    assert trigger.should_replan
    assert trigger.url_changed
    assert trigger.reasons[0] == "URL path changed: /login → /dashboard"
    assert any(r.startswith("Structural changes:") for r in trigger.reasons)


def test_replanning_not_triggered_for_same_page():
    trigger = should_trigger_replanning(FORM_PAGE, FORM_PAGE, "https://app.com/login", "https://app.com/login?x=1")
    assert not trigger.should_replan
    assert trigger.reasons == []


def test_commented_out_form_is_not_an_element():
    commented = FORM_PAGE.replace('<form id="login" class="auth-form p-4">', "<!-- <form id=\"login\"> -->")
    commented = commented.replace("</form>", "")
    assert "form" not in {s.tag for s in extract_signatures(commented)}

    result = calculate_dom_similarity(FORM_PAGE, commented)
    assert "form removed" in result.structural_changes
    assert result.should_replan is True


def test_unquoted_attributes_are_read():
    sigs = extract_signatures("<input type=password name=pw><div role=dialog></div>")
    assert [s.signature for s in sigs] == ["input[type=password][name=pw]", "div[role=dialog]"]


def test_data_attributes_are_not_ids():
    assert extract_signatures('<div data-id="submit"></div>')[0].id is None
