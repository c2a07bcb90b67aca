import pytest

from interact.agent.config import AgentConfig
from interact.agent.observation import build_observations, capture_before_state
from interact.agent.verification import VerificationEngine, compute_is_last_step
from interact.schemas import (
    BlockerDetectionResult,
    BlockerType,
    ClientObservations,
    ComplexityLevel,
    ExpectedOutcome,
    JudgeReply,
    NextGoal,
    Plan,
    VerificationTier,
)

from conftest import make_reasoner

HOME = "https://app.example.com/home"
ORDERS = "https://app.example.com/orders"
BUTTON_PAGE = '<main><button id="7">Next</button></main>'


def three_step_plan(cursor=0):
    plan = Plan.from_descriptions(["Open orders", "Pick the first order", "Download the invoice"])
    plan.current_step_index = cursor
    return plan


def engine(**replies):
    reasoner = make_reasoner(**replies)
    return VerificationEngine(reasoner, AgentConfig()), reasoner


# ----------------------------------------------------------------------------
# Observations
# ----------------------------------------------------------------------------


def test_observations_describe_url_dom_and_client_signals():
    before = capture_before_state(HOME, BUTTON_PAGE, active_element="search")
    observations = build_observations(
        before,
        HOME,
        BUTTON_PAGE + '<input type="email" name="email">',
        after_active_element="email",
        client_observations=ClientObservations(did_network_occur=True, did_url_change=False),
    )
    assert observations[0] == "URL did not change"
    assert observations[1].startswith("1 interactive element(s) appeared (input[type=email][name=email])")
    assert 'Focus/active element changed from "search" to "email"' in observations
    assert "Background network activity detected (client witnessed)" in observations
    assert "Client reported URL changed: False" in observations


def test_identical_page_is_reported_unchanged():
    before = capture_before_state(HOME, BUTTON_PAGE)
    observations = build_observations(before, HOME, BUTTON_PAGE)
    assert observations == ["URL did not change", "Page content did not change (DOM hash identical)"]


def test_is_last_step():
    assert compute_is_last_step(None)
    assert compute_is_last_step(Plan())
    assert not compute_is_last_step(three_step_plan(0))
    assert compute_is_last_step(three_step_plan(2))


# ----------------------------------------------------------------------------
# Tier 1
# ----------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_intermediate_navigation_is_deterministic_success():
    verifier, reasoner = engine()
    result = await verifier.verify(
        capture_before_state(HOME, BUTTON_PAGE),
        f'navigate("{ORDERS}")',
        ORDERS,
        "<main><table id='orders'></table></main>",
        "Download the latest invoice",
        plan=three_step_plan(0),
    )
    assert result.success
    assert result.confidence == 1.0
    assert result.tier == VerificationTier.DETERMINISTIC
    assert result.tokens_saved == 400
    assert not result.goal_achieved
    reasoner.judge_verification.assert_not_called()


@pytest.mark.asyncio
async def test_intermediate_content_change_is_deterministic_success():
    verifier, reasoner = engine()
    result = await verifier.verify(
        capture_before_state(HOME, BUTTON_PAGE),
        "click(7)",
        HOME,
        BUTTON_PAGE + '<input type="text" name="email">',
        "Sign up for the newsletter",
        plan=three_step_plan(0),
    )
    assert result.success
    assert result.confidence == 0.95
    assert result.reason == "Deterministic: Page content changed meaningfully for intermediate step."
    reasoner.judge_verification.assert_not_called()


@pytest.mark.asyncio
async def test_blocker_is_hard_failure_routed_to_correction():
    verifier, _ = engine()
    blocker = BlockerDetectionResult(detected=True, type=BlockerType.SESSION_EXPIRED, confidence=0.95)
    result = await verifier.verify(
        capture_before_state(HOME, BUTTON_PAGE), "click(7)", HOME, BUTTON_PAGE, "Save", blocker=blocker
    )
    assert not result.success
    assert result.route_to_correction
    assert result.blocker == blocker


@pytest.mark.asyncio
async def test_client_error_is_hard_failure():
    verifier, reasoner = engine()
    result = await verifier.verify(
        capture_before_state(HOME, BUTTON_PAGE),
        "click(7)",
        HOME,
        BUTTON_PAGE,
        "Save",
        client_observations=ClientObservations(network_error="POST /api/save returned 500"),
        plan=three_step_plan(0),
    )
    assert not result.success
    assert result.route_to_correction
    assert result.confidence == pytest.approx(0.9)
    reasoner.judge_verification.assert_not_called()


@pytest.mark.asyncio
async def test_required_next_goal_missing_routes_to_correction():
    verifier, _ = engine()
    expected = ExpectedOutcome(next_goal=NextGoal(description="Invoice link", selector="#invoice", required=True))
    result = await verifier.verify(
        capture_before_state(HOME, BUTTON_PAGE),
        "click(7)",
        HOME,
        BUTTON_PAGE,
        "Download the invoice",
        expected_outcome=expected,
        plan=three_step_plan(0),
    )
    assert not result.action_succeeded
    assert result.route_to_correction
    assert result.confidence == pytest.approx(0.8)


@pytest.mark.asyncio
async def test_available_next_goal_is_intermediate_success():
    verifier, _ = engine()
    expected = ExpectedOutcome(next_goal=NextGoal(description="Next button", selector="#7"))
    result = await verifier.verify(
        capture_before_state(HOME, BUTTON_PAGE),
        "click(7)",
        HOME,
        BUTTON_PAGE,
        "Walk through the wizard",
        expected_outcome=expected,
        plan=three_step_plan(1),
    )
    assert result.success
    assert result.confidence == pytest.approx(0.95)


@pytest.mark.asyncio
async def test_simple_navigation_task_completes_deterministically():
    verifier, reasoner = engine()
    result = await verifier.verify(
        capture_before_state(HOME, BUTTON_PAGE),
        f'navigate("{ORDERS}")',
        ORDERS,
        "<main>Orders</main>",
        "Go to orders",
        complexity=ComplexityLevel.SIMPLE,
    )
    assert result.task_completed
    assert result.goal_achieved
    assert result.tier == VerificationTier.DETERMINISTIC
    reasoner.judge_verification.assert_not_called()


# ----------------------------------------------------------------------------
# Tiers 2 and 3
# ----------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_last_step_uses_lightweight_judge():
    reply = JudgeReply(action_succeeded=True, task_completed=False, confidence=0.8, reason="Button pressed")
    verifier, reasoner = engine(judge_verification=reply)
    result = await verifier.verify(
        capture_before_state(HOME, BUTTON_PAGE), "click(7)", HOME, BUTTON_PAGE, "Press next",
        complexity=ComplexityLevel.COMPLEX,
    )
    assert result.tier == VerificationTier.LIGHTWEIGHT
    assert result.reason == "Lightweight: Button pressed"
    assert result.success
    assert not result.goal_achieved
    assert reasoner.judge_verification.call_args.kwargs["lightweight"] is True


@pytest.mark.asyncio
async def test_completion_claim_on_complex_task_escalates_to_full():
    reply = JudgeReply(action_succeeded=True, task_completed=True, confidence=0.95, reason="Invoice downloaded")
    verifier, reasoner = engine(judge_verification=reply)
    result = await verifier.verify(
        capture_before_state(HOME, BUTTON_PAGE), "click(7)", HOME, BUTTON_PAGE, "Download the invoice",
        complexity=ComplexityLevel.COMPLEX,
    )
    assert reasoner.judge_verification.call_count == 2
    assert reasoner.judge_verification.call_args.kwargs["lightweight"] is False
    assert result.tier == VerificationTier.FULL
    assert result.goal_achieved
    assert result.confidence == pytest.approx(0.95)


@pytest.mark.asyncio
async def test_completion_claim_on_simple_task_is_accepted_lightweight():
    reply = JudgeReply(action_succeeded=True, task_completed=True, confidence=0.9, reason="Logged out")
    verifier, reasoner = engine(judge_verification=reply)
    result = await verifier.verify(
        capture_before_state(HOME, BUTTON_PAGE), "click(7)", HOME, BUTTON_PAGE, "Log out",
        complexity=ComplexityLevel.SIMPLE,
    )
    assert result.tier == VerificationTier.LIGHTWEIGHT
    assert result.goal_achieved
    assert reasoner.judge_verification.call_count == 1


@pytest.mark.asyncio
async def test_unavailable_judge_fails_with_zero_confidence():
    verifier, reasoner = engine(judge_verification=None)
    result = await verifier.verify(
        capture_before_state(HOME, BUTTON_PAGE), "click(7)", HOME, BUTTON_PAGE, "Press next"
    )
    assert not result.success
    assert result.confidence == 0.0
    assert result.reason == "Verification judge unavailable"
    assert result.tier == VerificationTier.FULL
    assert reasoner.judge_verification.call_count == 2


@pytest.mark.asyncio
async def test_low_confidence_judge_is_not_success():
    reply = JudgeReply(action_succeeded=True, task_completed=True, confidence=0.6, reason="Maybe")
    verifier, _ = engine(judge_verification=reply)
    result = await verifier.verify(
        capture_before_state(HOME, BUTTON_PAGE), "click(7)", HOME, BUTTON_PAGE, "Press next",
        complexity=ComplexityLevel.SIMPLE,
    )
    assert result.action_succeeded
    assert not result.success
    assert not result.goal_achieved


@pytest.mark.asyncio
async def test_unexpected_error_yields_failed_result():
    verifier, reasoner = engine()
    reasoner.judge_verification.side_effect = ValueError("boom")
    result = await verifier.verify(
        capture_before_state(HOME, BUTTON_PAGE), "click(7)", HOME, BUTTON_PAGE, "Press next"
    )
    assert not result.success
    assert result.confidence == 0.0
    assert result.reason == "Verification error: boom"
    assert result.observations
