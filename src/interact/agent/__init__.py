"""Agent module for running browser-automation task turns."""

from .config import AgentConfig
from .errors import (
    InteractError,
    ReasonerError,
    InvalidActionError,
    StoreError,
    TaskNotFoundError,
    LoggingErrorReporter,
)
from .reasoner import Reasoner
from .store import JsonTaskStore
from .verification import VerificationEngine
from .correction import CorrectionEngine
from .replanning import PlanValidator
from .graph import create_state_graph
from .orchestrator import TaskOrchestrator

__all__ = [
    "AgentConfig",
    "InteractError",
    "ReasonerError",
    "InvalidActionError",
    "StoreError",
    "TaskNotFoundError",
    "LoggingErrorReporter",
    "Reasoner",
    "JsonTaskStore",
    "VerificationEngine",
    "CorrectionEngine",
    "PlanValidator",
    "create_state_graph",
    "TaskOrchestrator",
]
