"""Shared fixtures: a scripted Reasoner double and state builders."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from interact.agent.config import AgentConfig
from interact.agent.correction import CorrectionEngine
from interact.agent.errors import LoggingErrorReporter
from interact.agent.observation import capture_before_state
from interact.agent.replanning import PlanValidator
from interact.agent.verification import VerificationEngine
from interact.schemas import ActionRecord, TurnContext, TurnOutcome

REASONER_METHODS = (
    "analyze_context",
    "generate_plan",
    "refine_step",
    "generate_action",
    "suggest_correction",
    "judge_verification",
    "validate_plan",
    "predict_outcome",
)


def make_reasoner(**replies):
    """Reasoner double whose call sites return ``replies[name]`` (default None)."""
    reasoner = MagicMock()
    for name in REASONER_METHODS:
        setattr(reasoner, name, AsyncMock(return_value=replies.get(name)))
    return reasoner


@pytest.fixture
def config():
    return AgentConfig()


@pytest.fixture
def reasoner():
    return make_reasoner()


def make_state(context, outcome=None, reasoner=None, config=None, verifier=None, reporter=None):
    """Build a graph state dict around a context and outcome."""
    config = config or AgentConfig()
    reasoner = reasoner or make_reasoner()
    return {
        "context": context,
        "outcome": outcome or TurnOutcome(),
        "reasoner": reasoner,
        "verifier": verifier or VerificationEngine(reasoner, config),
        "corrector": CorrectionEngine(reasoner, config),
        "plan_validator": PlanValidator(reasoner, config),
        "error_reporter": reporter or LoggingErrorReporter(),
        "config": config,
    }


def continuing_context(
    action="click(7)",
    before_url="https://app.example.com/home",
    before_page='<main><button id="7">Save</button></main>',
    url="https://app.example.com/home",
    page='<main><button id="7">Save</button></main>',
    goal="Save the settings",
    complexity=None,
    expected_outcome=None,
    client_observations=None,
):
    """TurnContext for a task whose previous action now needs verifying."""
    record = ActionRecord(
        step_index=0,
        thought="",
        action=action,
        before_state=capture_before_state(before_url, before_page),
        expected_outcome=expected_outcome,
    )
    return TurnContext(
        task_id="task-1234",
        tenant_id="default",
        user_id="default",
        goal=goal,
        url=url,
        page=page,
        client_observations=client_observations,
        is_new_task=False,
        history=(record,),
        complexity=complexity,
    )


def new_context(goal="Click the Logout button", url="https://app.example.com/home", page=""):
    return TurnContext(
        task_id="task-5678",
        tenant_id="default",
        user_id="default",
        goal=goal,
        url=url,
        page=page,
        is_new_task=True,
    )
