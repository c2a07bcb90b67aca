"""Durable task store using JSON files.

One document per task under ``store_dir``. Writes go to a temporary file in
the same directory and are moved into place with ``os.replace`` so a reader
never sees a half-written task.
"""

import re
import json
import os
import hashlib
import logging
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import ValidationError

from .errors import StoreError, TaskNotFoundError
from ..schemas import (
    ActionRecord,
    BlockerContext,
    ComplexityLevel,
    CorrectionRecord,
    CorrectionResult,
    HierarchicalPlan,
    Plan,
    Task,
    TaskStatus,
    VerificationRecord,
    VerificationResult,
)

logger = logging.getLogger(__name__)

SAFE_TASK_ID = re.compile(r"^[A-Za-z0-9_-]{1,128}$")
UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_-]")


class JsonTaskStore:
    """File-backed store keyed by task id."""

    def __init__(self, store_dir: Union[str, Path] = "tasks"):
        self.store_dir = Path(store_dir)

    def _path(self, task_id: str) -> Path:
        if SAFE_TASK_ID.match(task_id):
            return self.store_dir / f"{task_id}.json"
        # "=" never occurs in a safe id, so hashed names cannot collide with one
        readable = UNSAFE_CHARS.sub("_", task_id)[:48]
        digest = hashlib.sha256(task_id.encode("utf-8")).hexdigest()[:32]
        return self.store_dir / f"{readable}={digest}.json"

    def _write(self, task: Task) -> Path:
        path = self._path(task.task_id)
        try:
            self.store_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self.store_dir, prefix=".tmp_", suffix=".json")
            try:
                with os.fdopen(fd, "w") as f:
                    json.dump(task.model_dump(mode="json"), f, indent=2, default=str)
                os.replace(tmp, path)
            except BaseException:
                if os.path.exists(tmp):
                    os.unlink(tmp)
                raise
        except OSError as e:
            raise StoreError(f"Could not write task {task.task_id}: {e}") from e
        return path

    def load_task(self, task_id: str) -> Task:
        """Load a task by id.

        Raises:
            TaskNotFoundError: If no task is stored under ``task_id``.
            StoreError: If the document cannot be read or validated.
        """
        path = self._path(task_id)
        if not path.exists():
            raise TaskNotFoundError(task_id)
        try:
            with open(path, "r") as f:
                data = json.load(f)
            return Task.model_validate(data)
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            raise StoreError(f"Could not read task {task_id}: {e}") from e

    def save_task(self, task: Task) -> Path:
        task.updated_at = datetime.now()
        return self._write(task)

    def _update(self, task_id: str, mutate: Callable[[Task], None]) -> Task:
        task = self.load_task(task_id)
        mutate(task)
        self.save_task(task)
        return task

    def append_action(self, task_id: str, record: ActionRecord) -> Task:
        return self._update(task_id, lambda t: t.actions.append(record))

    def update_plan(
        self, task_id: str, plan: Optional[Plan], hierarchical_plan: Optional[HierarchicalPlan] = None
    ) -> Task:
        def mutate(task: Task) -> None:
            task.plan = plan
            if hierarchical_plan is not None:
                task.hierarchical_plan = hierarchical_plan

        return self._update(task_id, mutate)

    def update_status(
        self,
        task_id: str,
        status: TaskStatus,
        error: Optional[str] = None,
        blocker_context: Optional[BlockerContext] = None,
    ) -> Task:
        def mutate(task: Task) -> None:
            task.status = status
            task.error = error
            task.blocker_context = blocker_context

        return self._update(task_id, mutate)

    def update_progress(
        self,
        task_id: str,
        consecutive_failures: int,
        consecutive_success_without_completion: int,
        correction_attempts: int,
        complexity: Optional[ComplexityLevel] = None,
    ) -> Task:
        """Persist the loop-prevention counters carried between turns."""
        def mutate(task: Task) -> None:
            task.consecutive_failures = consecutive_failures
            task.consecutive_success_without_completion = consecutive_success_without_completion
            task.correction_attempts = correction_attempts
            if complexity is not None:
                task.complexity = complexity

        return self._update(task_id, mutate)

    def append_verification(self, task_id: str, result: VerificationResult, step_index: int) -> Task:
        record = VerificationRecord(step_index=step_index, result=result)
        return self._update(task_id, lambda t: t.verifications.append(record))

    def append_correction(
        self,
        task_id: str,
        result: CorrectionResult,
        step_index: int,
        attempt: int,
        original_action: Optional[str] = None,
    ) -> Task:
        record = CorrectionRecord(
            step_index=step_index,
            attempt_number=attempt,
            original_action=original_action,
            result=result,
        )
        return self._update(task_id, lambda t: t.corrections.append(record))

    def list_tasks(self, tenant_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """List stored tasks, newest first.

        Args:
            tenant_id: Optional filter by tenant.

        Returns:
            List of task info dicts.
        """
        if not self.store_dir.exists():
            return []

        tasks = []
        for filepath in self.store_dir.glob("*.json"):
            if filepath.name.startswith(".tmp_"):
                continue
            try:
                with open(filepath, "r") as f:
                    data = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                logger.warning("Skipping unreadable task file %s: %s", filepath, e)
                continue

            if tenant_id and data.get("tenant_id") != tenant_id:
                continue
            tasks.append({
                "task_id": data.get("task_id"),
                "tenant_id": data.get("tenant_id"),
                "goal": data.get("goal", ""),
                "status": data.get("status"),
                "actions": len(data.get("actions", [])),
                "updated_at": data.get("updated_at"),
                "filepath": str(filepath),
            })

        return sorted(tasks, key=lambda t: t["updated_at"] or "", reverse=True)
