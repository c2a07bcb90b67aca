"""Runtime configuration.

Thresholds are heuristic tuning values, so every one of them is a field
here rather than a literal in the engines. Values come from ``INTERACT_*``
environment variables (a ``.env`` file is loaded by the CLI).
"""

import os
from typing import Any, Dict

from pydantic import BaseModel, Field

ENV_PREFIX = "INTERACT_"


class AgentConfig(BaseModel):
    """Thresholds, loop-prevention caps, and Reasoner settings."""

    action_success_threshold: float = Field(0.7, ge=0.0, le=1.0)
    goal_achieved_threshold: float = Field(0.85, ge=0.0, le=1.0)
    blocker_min_confidence: float = Field(0.8, ge=0.0, le=1.0)
    sub_task_confidence: float = Field(0.7, ge=0.0, le=1.0)
    similarity_threshold: float = Field(0.7, ge=0.0, le=1.0)

    max_correction_attempts: int = Field(3, ge=1)
    max_consecutive_failures: int = Field(3, ge=1)
    max_success_without_completion: int = Field(5, ge=1)
    max_steps_per_task: int = Field(50, ge=1)

    model: str = "claude-3-5-sonnet-20241022"
    lightweight_model: str = "claude-3-5-haiku-20241022"
    reasoner_timeout_seconds: float = Field(60.0, gt=0)
    store_dir: str = "tasks"

    @classmethod
    def from_env(cls, **overrides: Any) -> "AgentConfig":
        """Build a config from ``INTERACT_<FIELD>`` environment variables.

        Args:
            **overrides: Explicit values that win over the environment.

        Returns:
            Validated AgentConfig.
        """
        values: Dict[str, Any] = {}
        for name in cls.model_fields:
            raw = os.getenv(f"{ENV_PREFIX}{name.upper()}")
            if raw is not None and raw != "":
                values[name] = raw
        if "model" not in values and os.getenv("ANTHROPIC_MODEL"):
            values["model"] = os.getenv("ANTHROPIC_MODEL")
        values.update(overrides)
        return cls.model_validate(values)
