"""Debugging utilities for graph execution.

Node entry/exit tracking with timings, edge transition logging, optional
state snapshots, and the node-boundary error handling every graph node is
wrapped in.
"""

import os
import time
import logging
import json
from typing import Dict, Any, Callable
from functools import wraps
from datetime import datetime

from ..schemas import TaskStatus

# Configure debug logger
debug_logger = logging.getLogger("interact.debug")
debug_logger.setLevel(logging.DEBUG)

# Check if debug mode is enabled
DEBUG_ENABLED = os.getenv("DEBUG_GRAPH", "false").lower() in ("true", "1", "yes")
DEBUG_VERBOSE = os.getenv("DEBUG_GRAPH_VERBOSE", "false").lower() in ("true", "1", "yes")

# Performance tracking
_node_timings: Dict[str, list] = {}
_state_history: list = []


def reset_debug_state():
    """Reset debug state between turns."""
    global _node_timings, _state_history
    _node_timings = {}
    _state_history = []


def _label(state: Dict[str, Any]) -> str:
    context = state.get("context")
    task_id = getattr(context, "task_id", "?")
    return f"[TASK {str(task_id)[:8]}]"


def log_node_entry(node_name: str, state: Dict[str, Any]):
    """Log when a node is entered."""
    if not DEBUG_ENABLED:
        return

    debug_logger.info(f"{_label(state)} → ENTER {node_name}")

    outcome = state.get("outcome")
    if outcome is None:
        return
    debug_logger.debug(f"  Status: {outcome.status.value}")
    if outcome.plan is not None:
        step = outcome.plan.current_step()
        description = step.description[:50] if step else "(exhausted)"
        debug_logger.debug(
            f"  Plan: step {outcome.plan.current_step_index + 1}/{len(outcome.plan.steps)} - {description}"
        )
    if outcome.consecutive_failures or outcome.correction_attempts:
        debug_logger.debug(
            f"  Failures: {outcome.consecutive_failures}, corrections: {outcome.correction_attempts}"
        )


def log_node_exit(node_name: str, state: Dict[str, Any], duration: float, error: Exception = None):
    """Log when a node exits."""
    if error is not None:
        debug_logger.error(f"{_label(state)} ← EXIT {node_name} (ERROR: {error}) [{duration:.3f}s]")
    elif DEBUG_ENABLED:
        debug_logger.info(f"{_label(state)} ← EXIT {node_name} [{duration:.3f}s]")

    # Track timing
    if node_name not in _node_timings:
        _node_timings[node_name] = []
    _node_timings[node_name].append(duration)

    # Log state changes if verbose
    if DEBUG_VERBOSE:
        log_state_snapshot(node_name, state)


def log_state_snapshot(node_name: str, state: Dict[str, Any]):
    """Log a snapshot of the current state."""
    if not DEBUG_VERBOSE:
        return

    context = state.get("context")
    outcome = state.get("outcome")
    snapshot = {
        "node": node_name,
        "timestamp": datetime.now().isoformat(),
        "task_id": getattr(context, "task_id", None),
        "url": getattr(context, "url", None),
        "status": outcome.status.value if outcome else None,
        "counters": {
            "consecutive_failures": outcome.consecutive_failures if outcome else 0,
            "success_without_completion": outcome.consecutive_success_without_completion if outcome else 0,
            "correction_attempts": outcome.correction_attempts if outcome else 0,
        },
        "plan_cursor": outcome.plan.current_step_index if outcome and outcome.plan else None,
        "last_action": context.last_action.action if context is not None and context.last_action else None,
        "action": outcome.action if outcome else None,
        "error": outcome.error if outcome else None,
    }

    _state_history.append(snapshot)
    debug_logger.debug(f"  State snapshot: {json.dumps(snapshot, indent=2, default=str)}")


def log_edge_transition(from_node: str, to_node: str, reason: str, state: Dict[str, Any]):
    """Log a graph edge transition."""
    if not DEBUG_ENABLED:
        return

    debug_logger.info(f"{_label(state)} → TRANSITION: {from_node} → {to_node} ({reason})")


def log_performance_summary():
    """Log performance summary at end of a turn."""
    if not DEBUG_ENABLED or not _node_timings:
        return

    debug_logger.info("=" * 70)
    debug_logger.info("PERFORMANCE SUMMARY")
    debug_logger.info("=" * 70)

    total_time = sum(sum(times) for times in _node_timings.values())
    debug_logger.info(f"Total execution time: {total_time:.3f}s")
    debug_logger.info("")
    debug_logger.info("Node timings:")

    for node_name, times in sorted(_node_timings.items(), key=lambda x: sum(x[1]), reverse=True):
        count = len(times)
        total = sum(times)
        avg = total / count if count > 0 else 0
        max_time = max(times) if times else 0
        debug_logger.info(f"  {node_name:20s}: {count:3d} calls, {total:7.3f}s total, {avg:6.3f}s avg, {max_time:6.3f}s max")

    debug_logger.info("=" * 70)


def debug_node(node_name: str):
    """Decorator adding timing, tracing and the error boundary to a graph node.

    An exception raised inside the node is reported to the state's
    ``error_reporter`` and turned into a ``failed`` outcome so the turn
    still completes. Cancellation is not caught.
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(state: Dict[str, Any]) -> Dict[str, Any]:
            start_time = time.time()
            error = None

            try:
                log_node_entry(node_name, state)
                return await func(state)
            except Exception as e:
                error = e
                context = state.get("context")
                last = context.last_action if context is not None else None
                reporter = state.get("error_reporter")
                if reporter is not None:
                    reporter.capture(e, {
                        "task_id": getattr(context, "task_id", None),
                        "node": node_name,
                        "action": last.action if last else None,
                    })
                outcome = state["outcome"]
                outcome.status = TaskStatus.FAILED
                outcome.error = f"{node_name} failed: {e}"
                return state
            finally:
                duration = time.time() - start_time
                log_node_exit(node_name, state, duration, error)

        return wrapper
    return decorator


def enable_debug(enabled: bool = True, verbose: bool = False):
    """Enable or disable debug logging."""
    global DEBUG_ENABLED, DEBUG_VERBOSE

    DEBUG_ENABLED = enabled
    DEBUG_VERBOSE = verbose

    if enabled:
        debug_logger.setLevel(logging.DEBUG)
        # Set up console handler if not already present
        if not debug_logger.handlers:
            handler = logging.StreamHandler()
            handler.setLevel(logging.DEBUG)
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
                datefmt='%H:%M:%S'
            )
            handler.setFormatter(formatter)
            debug_logger.addHandler(handler)

        debug_logger.info("=" * 70)
        debug_logger.info("GRAPH DEBUG MODE ENABLED")
        debug_logger.info(f"Verbose: {verbose}")
        debug_logger.info("=" * 70)
    else:
        debug_logger.setLevel(logging.WARNING)


# Initialize debug state
if DEBUG_ENABLED:
    enable_debug(True, DEBUG_VERBOSE)
