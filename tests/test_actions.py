import pytest

from interact.agent.actions import (
    Click,
    Fail,
    Finish,
    GoBack,
    Navigate,
    Scroll,
    SetValue,
    Wait,
    classify_action_type,
    format_action,
    is_terminal,
    parse_action,
    split_arguments,
)
from interact.agent.errors import InvalidActionError
from interact.schemas import ActionType


# ----------------------------------------------------------------------------
# Parsing
# ----------------------------------------------------------------------------


def test_parse_click():
    assert parse_action("click(42)") == Click(element_id="42")
    assert parse_action("  click( 42 )  ") == Click(element_id="42")


def test_parse_set_value_with_escapes():
    action = parse_action(r'setValue(7, "say \"hi\", then\nleave")')
    assert action == SetValue(element_id="7", text='say "hi", then\nleave')


def test_parse_navigate_and_terminal_actions():
    assert parse_action('navigate("https://example.com/a?b=1")') == Navigate(url="https://example.com/a?b=1")
    assert parse_action("goBack()") == GoBack()
    assert parse_action('finish("done")') == Finish(message="done")
    assert parse_action("fail()") == Fail(reason="")


def test_parse_scroll_and_wait():
    assert parse_action("scroll()") == Scroll(down=True)
    assert parse_action("scroll(up)") == Scroll(down=False)
    assert parse_action("wait(2.5)") == Wait(seconds=2.5)
    assert parse_action("wait()") == Wait(seconds=1.0)


@pytest.mark.parametrize(
    "raw",
    ["", "click", "click(", "explode(3)", "click()", 'setValue(7)', 'setValue(7, "open', "wait(soon)", "1click(2)"],
)
def test_invalid_actions_raise(raw):
    with pytest.raises(InvalidActionError):
        parse_action(raw)


def test_invalid_action_error_is_a_value_error():
    with pytest.raises(ValueError):
        parse_action("nope")


def test_split_arguments_keeps_commas_inside_quotes():
    assert split_arguments('12, "a, b", c') == ["12", "a, b", "c"]


@pytest.mark.parametrize(
    "raw",
    ["setValue(5, hello, world)", "click(4, 5)", "goBack(1)", "finish(Done, all saved)"],
)
def test_extra_unquoted_arguments_are_rejected(raw):
    with pytest.raises(InvalidActionError, match="takes at most"):
        parse_action(raw)


# ----------------------------------------------------------------------------
# Formatting
# ----------------------------------------------------------------------------


def test_format_quotes_and_escapes_text():
    assert format_action(SetValue(element_id="7", text='He said "hi"\n')) == r'setValue(7, "He said \"hi\"\n")'
    assert format_action(Wait(seconds=2.0)) == "wait(2)"
    assert format_action(Scroll(down=False)) == "scroll(false)"


def test_format_normalizes_model_output():
    assert format_action(parse_action("CLICK(12)")) == "click(12)"
    assert format_action(parse_action("navigate(https://a.com)")) == 'navigate("https://a.com")'


def test_terminal_actions():
    assert is_terminal(Finish())
    assert is_terminal(Fail())
    assert not is_terminal(Click(element_id="1"))


# ----------------------------------------------------------------------------
# Classification
# ----------------------------------------------------------------------------


def test_navigate_and_back_are_navigation():
    assert classify_action_type(Navigate(url="https://a.com"), "") == ActionType.NAVIGATION
    assert classify_action_type(GoBack(), "") == ActionType.NAVIGATION


def test_click_on_popup_trigger_is_dropdown():
    page = '<button id="menu" aria-haspopup="true">Account</button>'
    assert classify_action_type(Click(element_id="menu"), page) == ActionType.DROPDOWN


def test_click_on_link_or_tab_is_navigation():
    assert classify_action_type(Click(element_id="5"), '<a id="5" href="/orders">Orders</a>') == ActionType.NAVIGATION
    assert classify_action_type(Click(element_id="t"), '<div id="t" role="tab">Billing</div>') == ActionType.NAVIGATION


def test_click_on_plain_button_is_generic():
    assert classify_action_type(Click(element_id="9"), '<button id="9">Save</button>') == ActionType.GENERIC
    assert classify_action_type(Click(element_id="missing"), "<p>nothing</p>") == ActionType.GENERIC


def test_click_target_is_matched_on_the_id_attribute_only():
    page = '<a data-id="7" href="/elsewhere">Other</a><button id="7" aria-haspopup="menu">Options</button>'
    assert classify_action_type(Click(element_id="7"), page) == ActionType.DROPDOWN


def test_commented_out_markup_is_not_a_click_target():
    page = '<!-- <a id="3" href="/old">Old</a> --><button id="3">Save</button>'
    assert classify_action_type(Click(element_id="3"), page) == ActionType.GENERIC


def test_data_tab_attributes_mark_navigation():
    page = '<button id="b" data-tab-target="billing">Billing</button>'
    assert classify_action_type(Click(element_id="b"), page) == ActionType.NAVIGATION
