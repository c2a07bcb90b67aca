"""Exception types and the error-reporting collaborator."""

import logging
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class InteractError(Exception):
    """Base class for errors raised by the agent."""


class ReasonerError(InteractError):
    """The Reasoner returned nothing usable (empty, malformed, or timed out)."""


class InvalidActionError(InteractError, ValueError):
    """An action string could not be parsed."""


class StoreError(InteractError):
    """The durable store failed to read or write."""


class TaskNotFoundError(StoreError, KeyError):
    """No task is stored under the requested id."""

    def __init__(self, task_id: str):
        super().__init__(task_id)
        self.task_id = task_id

    def __str__(self) -> str:
        return f"Task not found: {self.task_id}"


class LoggingErrorReporter:
    """Default error reporter: logs the exception with its context.

    Any object with a compatible ``capture`` method can be injected instead
    (for example one that forwards to an external error tracker).
    """

    def __init__(self, log: Optional[logging.Logger] = None):
        self.log = log or logger

    def capture(self, error: BaseException, context: Optional[Dict[str, Any]] = None) -> None:
        details = ", ".join(f"{k}={v}" for k, v in (context or {}).items())
        self.log.error("%s: %s [%s]", type(error).__name__, error, details, exc_info=error)
