"""Task orchestrator: one graph pass per request.

The orchestrator is built once at startup with its collaborators (Reasoner,
store, error reporter, config) and holds no per-task state, so concurrent
turns for different tasks never share anything mutable.
"""

import asyncio
import logging
import uuid
from datetime import datetime
from typing import Any, Optional

from .config import AgentConfig
from .correction import CorrectionEngine
from .debug import log_performance_summary, reset_debug_state
from .errors import LoggingErrorReporter, StoreError, TaskNotFoundError
from .graph import create_state_graph
from .observation import capture_before_state
from .replanning import PlanValidator
from .store import JsonTaskStore
from .verification import VerificationEngine
from ..schemas import (
    ActionRecord,
    Task,
    TaskStatus,
    TurnContext,
    TurnOutcome,
    TurnRequest,
    TurnResult,
)

logger = logging.getLogger(__name__)


class TaskOrchestrator:
    """Runs turns of the task state machine against a durable store."""

    def __init__(
        self,
        reasoner: Any,
        store: Optional[JsonTaskStore] = None,
        config: Optional[AgentConfig] = None,
        error_reporter: Optional[Any] = None,
    ):
        """Initialize the orchestrator.

        Args:
            reasoner: Model client (see ``Reasoner``) or a compatible fake.
            store: Durable task store. Defaults to a JSON store in ``config.store_dir``.
            config: Thresholds and caps. Defaults to ``AgentConfig()``.
            error_reporter: Object with ``capture(error, context)``.
        """
        self.config = config or AgentConfig()
        self.reasoner = reasoner
        self.store = store or JsonTaskStore(self.config.store_dir)
        self.error_reporter = error_reporter or LoggingErrorReporter()
        self.verifier = VerificationEngine(reasoner, self.config)
        self.corrector = CorrectionEngine(reasoner, self.config)
        self.plan_validator = PlanValidator(reasoner, self.config)
        self.graph = create_state_graph()

    def _load_or_create(self, request: TurnRequest) -> Task:
        if request.task_id:
            try:
                return self.store.load_task(request.task_id)
            except TaskNotFoundError:
                logger.info("Task %s not found, creating it", request.task_id)

        task = Task(
            task_id=request.task_id or str(uuid.uuid4()),
            tenant_id=request.tenant_id,
            user_id=request.user_id,
            goal=request.goal,
            hierarchical_plan=request.hierarchical_plan,
        )
        self.store.save_task(task)
        return task

    async def run_turn(self, request: TurnRequest, timeout: Optional[float] = None) -> TurnResult:
        """Run one request through the state graph.

        The produced action and its before-state are stored before this
        returns; everything else is written behind and may fail on its own.

        Args:
            request: Inbound request.
            timeout: Optional deadline for the whole turn. Expiry (or
                cancellation by the caller) propagates.

        Returns:
            TurnResult for the client.

        Raises:
            StoreError: If the task cannot be loaded or the action cannot be
                recorded.
        """
        task = self._load_or_create(request)
        if task.status.is_terminal:
            return TurnResult(
                task_id=task.task_id,
                status=task.status,
                step_index=len(task.actions),
                plan=task.plan,
                complexity=task.complexity,
                error=f"Task {task.task_id} is already {task.status.value}",
            )

        is_new = not task.has_history
        context = TurnContext(
            task_id=task.task_id,
            tenant_id=task.tenant_id,
            user_id=task.user_id,
            goal=task.goal,
            url=request.url,
            page=request.page,
            active_element=request.active_element,
            client_observations=request.client_observations,
            is_new_task=is_new,
            history=tuple(task.actions),
            complexity=task.complexity,
        )
        outcome = TurnOutcome(
            complexity=task.complexity,
            plan=task.plan.model_copy(deep=True) if task.plan else None,
            hierarchical_plan=task.hierarchical_plan.model_copy(deep=True) if task.hierarchical_plan else None,
            consecutive_failures=task.consecutive_failures,
            consecutive_success_without_completion=task.consecutive_success_without_completion,
            correction_attempts=task.correction_attempts,
        )
        state = {
            "context": context,
            "outcome": outcome,
            "reasoner": self.reasoner,
            "verifier": self.verifier,
            "corrector": self.corrector,
            "plan_validator": self.plan_validator,
            "error_reporter": self.error_reporter,
            "config": self.config,
        }

        reset_debug_state()
        invocation = self.graph.ainvoke(state)
        final_state = await (asyncio.wait_for(invocation, timeout) if timeout else invocation)
        outcome = final_state["outcome"]
        log_performance_summary()

        step_index = len(task.actions)
        self._merge(task, outcome)

        if outcome.action is not None:
            record = ActionRecord(
                step_index=step_index,
                thought=outcome.thought or "",
                action=outcome.action,
                before_state=capture_before_state(context.url, context.page, context.active_element),
                expected_outcome=outcome.expected_outcome,
            )
            self.store.append_action(task.task_id, record)
            task.actions.append(record)

        self._write_behind(task, outcome, step_index)

        return TurnResult(
            task_id=task.task_id,
            status=outcome.status,
            action=outcome.action,
            thought=outcome.thought,
            expected_outcome=outcome.expected_outcome,
            step_index=step_index,
            plan=outcome.plan,
            complexity=task.complexity,
            verification=outcome.verification,
            correction=outcome.correction,
            blocker=outcome.blocker,
            error=outcome.error,
        )

    @staticmethod
    def _merge(task: Task, outcome: TurnOutcome) -> None:
        task.status = outcome.status
        task.complexity = task.complexity or outcome.complexity
        task.plan = outcome.plan
        task.hierarchical_plan = outcome.hierarchical_plan
        task.consecutive_failures = outcome.consecutive_failures
        task.consecutive_success_without_completion = outcome.consecutive_success_without_completion
        task.correction_attempts = outcome.correction_attempts
        task.blocker_context = outcome.blocker_context
        task.error = outcome.error
        task.updated_at = datetime.now()

    def _write_behind(self, task: Task, outcome: TurnOutcome, step_index: int) -> None:
        """Persist the rest of the turn. Failures are reported, never rolled back."""
        verified_index = max(step_index - 1, 0)
        writes = [
            ("update_plan", lambda: self.store.update_plan(task.task_id, task.plan, task.hierarchical_plan)),
            ("update_progress", lambda: self.store.update_progress(
                task.task_id,
                task.consecutive_failures,
                task.consecutive_success_without_completion,
                task.correction_attempts,
                task.complexity,
            )),
        ]
        if outcome.verification is not None:
            writes.append(("append_verification", lambda: self.store.append_verification(
                task.task_id, outcome.verification, verified_index
            )))
        if outcome.correction is not None:
            last = task.actions[verified_index] if task.actions else None
            writes.append(("append_correction", lambda: self.store.append_correction(
                task.task_id,
                outcome.correction,
                verified_index,
                task.correction_attempts,
                original_action=last.action if last else None,
            )))
        writes.append(("update_status", lambda: self.store.update_status(
            task.task_id, task.status, task.error, task.blocker_context
        )))

        for name, write in writes:
            try:
                write()
            except StoreError as e:
                logger.warning("Write-behind %s failed for task %s: %s", name, task.task_id, e)
                self.error_reporter.capture(e, {"task_id": task.task_id, "operation": name})

    def cancel_task(self, task_id: str) -> Task:
        """Cancel a task. Cancelled is terminal.

        Raises:
            TaskNotFoundError: If the task does not exist.
        """
        task = self.store.update_status(task_id, TaskStatus.CANCELLED, "Cancelled by user")
        logger.info("Task %s cancelled", task_id)
        return task
