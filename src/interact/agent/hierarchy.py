"""Hierarchical sub-task plans.

A hierarchical plan splits a goal into sub-tasks that are verified and
completed one at a time. Outputs extracted by a finished sub-task are
accumulated so later sub-tasks can use them as inputs.
"""

import re
import logging
from typing import Any, Dict, Optional, Set

from .page import Page, parse_page
from ..schemas import HierarchicalPlan, StepStatus, SubTask, SubTaskOutput, SubTaskResult

logger = logging.getLogger(__name__)


def current_sub_task(plan: HierarchicalPlan) -> Optional[SubTask]:
    if plan.current_index >= len(plan.sub_tasks):
        return None
    return plan.sub_tasks[plan.current_index]


def complete_sub_task(plan: HierarchicalPlan, result: SubTaskResult) -> HierarchicalPlan:
    """Record the result of the current sub-task.

    A successful sub-task is marked completed, its outputs are merged into
    ``accumulated_outputs`` and the cursor moves to the next sub-task. A
    failed one is marked failed and the cursor stays put.

    Args:
        plan: Plan to update (not mutated).
        result: Outcome of the current sub-task.

    Returns:
        Updated copy of the plan.
    """
    updated = plan.model_copy(deep=True)
    sub_task = current_sub_task(updated)
    if sub_task is None:
        logger.warning("complete_sub_task called on a finished plan")
        return updated

    sub_task.result = result
    if result.success:
        sub_task.status = StepStatus.COMPLETED
        updated.accumulated_outputs.update(result.outputs)
        updated.current_index += 1
        nxt = current_sub_task(updated)
        if nxt is not None:
            nxt.status = StepStatus.ACTIVE
    else:
        sub_task.status = StepStatus.FAILED
    return updated


def is_complete(plan: HierarchicalPlan) -> bool:
    return all(s.status == StepStatus.COMPLETED for s in plan.sub_tasks)


def progress(plan: HierarchicalPlan) -> Dict[str, Any]:
    completed = sum(1 for s in plan.sub_tasks if s.status == StepStatus.COMPLETED)
    failed = sum(1 for s in plan.sub_tasks if s.status == StepStatus.FAILED)
    total = len(plan.sub_tasks)
    return {
        "completed": completed,
        "failed": failed,
        "total": total,
        "percent": round(100 * completed / total) if total else 100,
    }


def build_sub_task_context(plan: HierarchicalPlan) -> str:
    """Render the current sub-task as prompt context for action generation."""
    sub_task = current_sub_task(plan)
    if sub_task is None:
        return ""

    stats = progress(plan)
    lines = [
        "--- CURRENT SUB-TASK ---",
        f"Sub-task {sub_task.index + 1} of {stats['total']}: {sub_task.name}",
        f"Objective: {sub_task.objective}",
    ]
    if sub_task.inputs:
        lines.append("Inputs:")
        for item in sub_task.inputs:
            value = plan.accumulated_outputs.get(item.name)
            shown = f" = {value}" if value is not None else ""
            lines.append(f"  - {item.name}{shown}: {item.description}")
    if sub_task.outputs:
        lines.append("Extract before finishing:")
        for item in sub_task.outputs:
            hint = f" ({item.extraction_hint})" if item.extraction_hint else ""
            lines.append(f"  - {item.name}: {item.description}{hint}")
    lines.append(f"Progress: {stats['completed']}/{stats['total']} sub-tasks completed")
    lines.append("--- END SUB-TASK ---")
    return "\n".join(lines)


ID_IN_TEXT = re.compile(r"\bid\b[\s:#=]*([A-Za-z-]*\d[\w-]*)", re.IGNORECASE)
URL_IN_TEXT = re.compile(r"https?://[^\s\"'<>]+")
ID_HINTS = {"id", "ids", "identifier"}
URL_HINTS = {"url", "link", "address"}
CONFIRMATION_HINTS = {"confirm", "confirmed", "confirmation", "success", "successful"}


def _hint_words(output: SubTaskOutput) -> Set[str]:
    hint = output.extraction_hint or output.name
    return {w for w in re.split(r"[^a-z0-9]+", hint.lower()) if w}


def _data_id(soup, output_name: str) -> Optional[str]:
    """Read an id from a ``data-*-id`` attribute, preferring one named after the output."""
    preferred = "data-" + output_name.lower().replace("_", "-")
    element = soup.find(attrs={preferred: True})
    if element is not None and element.get(preferred):
        return element[preferred]
    for element in soup.find_all(True):
        for attr, value in element.attrs.items():
            if attr.startswith("data-") and attr.endswith("-id") and value:
                return value
    return None


def _extract_value(output: SubTaskOutput, soup, summary: str, url: Optional[str]) -> Any:
    words = _hint_words(output)

    if words & ID_HINTS:
        match = ID_IN_TEXT.search(summary)
        if match:
            return match.group(1)
        value = _data_id(soup, output.name)
        if value:
            return value

    if words & URL_HINTS:
        match = URL_IN_TEXT.search(summary)
        if match:
            return match.group(0).rstrip(".,;)")
        if url:
            return url

    if words & CONFIRMATION_HINTS:
        lowered = summary.lower()
        return "success" in lowered or "confirmed" in lowered

    return None


def extract_sub_task_outputs(
    sub_task: SubTask, page: Page, summary: str, url: Optional[str] = None
) -> Dict[str, Any]:
    """Pull a finished sub-task's declared outputs from the page and summary.

    Each output's extraction hint (or its name, when there is no hint)
    selects what to look for: ids from the summary or a ``data-*-id``
    attribute, URLs from the summary or the current URL, and a boolean for
    confirmation/success outputs. Outputs that cannot be found are left out.

    Args:
        sub_task: Sub-task that just completed.
        page: Current page snapshot.
        summary: Verification summary of what happened.
        url: Current URL.

    Returns:
        Mapping of output name to extracted value.
    """
    if not sub_task.outputs:
        return {}
    soup = parse_page(page)
    outputs = {}
    for output in sub_task.outputs:
        value = _extract_value(output, soup, summary or "", url)
        if value is None:
            logger.debug("No value found for output %r of sub-task %r", output.name, sub_task.name)
            continue
        outputs[output.name] = value
    return outputs
