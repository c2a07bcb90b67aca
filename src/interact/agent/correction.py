"""Self-correction after a failed verification."""

import logging
from typing import Any, Optional

from .actions import format_action, parse_action
from .config import AgentConfig
from .errors import InvalidActionError
from ..schemas import (
    BlockerDetectionResult,
    CorrectionResult,
    CorrectionStrategy,
    PlanStep,
    VerificationResult,
)

logger = logging.getLogger(__name__)


class CorrectionEngine:
    """Asks the Reasoner for a recovery strategy and validates the answer."""

    def __init__(self, reasoner: Any, config: Optional[AgentConfig] = None):
        self.reasoner = reasoner
        self.config = config or AgentConfig()

    async def correct(
        self,
        goal: str,
        failed_step: Optional[PlanStep],
        failed_action: Optional[str],
        verification: VerificationResult,
        page: str,
        attempts: int,
        blocker: Optional[BlockerDetectionResult] = None,
    ) -> Optional[CorrectionResult]:
        """Propose a concrete retry for a failed step.

        Args:
            goal: Task goal.
            failed_step: Plan step that failed, if the task has a plan.
            failed_action: Wire-format action that failed.
            verification: The failed verification.
            page: Current page snapshot.
            attempts: Corrections already applied to this step.
            blocker: Auto-retryable blocker behind the failure, if any.

        Returns:
            CorrectionResult, or None when no usable correction was produced
            (no reply, or a retry action that does not parse).
        """
        description = failed_step.description if failed_step else (failed_action or goal)
        reply = await self.reasoner.suggest_correction(
            goal, description, verification, page, attempts, failed_action=failed_action
        )
        if reply is None:
            logger.warning("Correction: no reply from reasoner")
            return None

        try:
            retry_action = format_action(parse_action(reply.retry_action))
        except InvalidActionError as e:
            logger.warning("Correction: unusable retry action %r: %s", reply.retry_action, e)
            return None

        corrected_step = None
        if failed_step is not None and reply.corrected_description:
            corrected_step = failed_step.model_copy(
                update={"description": reply.corrected_description, "reasoning": reply.reason}
            )

        delay = None
        if reply.strategy == CorrectionStrategy.RETRY_WITH_DELAY:
            delay = blocker.retry_after_seconds if blocker and blocker.retry_after_seconds else None

        return CorrectionResult(
            strategy=reply.strategy,
            reason=reply.reason,
            retry_action=retry_action,
            corrected_step=corrected_step,
            delay_seconds=delay,
        )
