import json

import pytest

from interact.agent.errors import StoreError, TaskNotFoundError
from interact.agent.observation import capture_before_state
from interact.agent.store import JsonTaskStore
from interact.schemas import (
    ActionRecord,
    BlockerContext,
    BlockerDetectionResult,
    BlockerType,
    ComplexityLevel,
    CorrectionResult,
    CorrectionStrategy,
    Plan,
    Task,
    TaskStatus,
    VerificationResult,
)


@pytest.fixture
def store(tmp_path):
    return JsonTaskStore(tmp_path / "tasks")


def make_task(task_id="task-1", tenant_id="default"):
    return Task(task_id=task_id, tenant_id=tenant_id, goal="Export the monthly report")


def test_save_and_load_round_trip(store):
    task = make_task()
    task.plan = Plan.from_descriptions(["Open reports", "Click export"])
    store.save_task(task)

    loaded = store.load_task("task-1")
    assert loaded.goal == "Export the monthly report"
    assert [s.description for s in loaded.plan.steps] == ["Open reports", "Click export"]


def test_missing_task_raises_not_found(store):
    with pytest.raises(TaskNotFoundError) as excinfo:
        store.load_task("nope")
    assert str(excinfo.value) == "Task not found: nope"


def test_corrupt_document_raises_store_error(store, tmp_path):
    store.save_task(make_task())
    store._path("task-1").write_text("{not json")
    with pytest.raises(StoreError):
        store.load_task("task-1")


def test_task_ids_are_sanitized_into_file_names(store):
    store.save_task(make_task("../../etc/passwd"))
    assert store._path("../../etc/passwd").parent == store.store_dir
    assert store.load_task("../../etc/passwd").task_id == "../../etc/passwd"


def test_distinct_ids_never_share_a_document(store):
    ids = ["a/b", "a_b", "a b", "a=b"]
    for task_id in ids:
        store.save_task(make_task(task_id))

    assert len({store._path(task_id) for task_id in ids}) == len(ids)
    assert [store.load_task(task_id).task_id for task_id in ids] == ids
    assert store._path("a_b").name == "a_b.json"


def test_append_action_keeps_before_state(store):
    store.save_task(make_task())
    record = ActionRecord(
        step_index=0,
        action="click(7)",
        before_state=capture_before_state("https://a.com", '<button id="7">Go</button>'),
    )
    store.append_action("task-1", record)

    loaded = store.load_task("task-1")
    assert loaded.actions[0].action == "click(7)"
    assert loaded.actions[0].before_state.skeleton == '<button id="7">'


def test_status_progress_and_history_updates(store):
    store.save_task(make_task())
    blocker = BlockerDetectionResult(detected=True, type=BlockerType.CAPTCHA, confidence=0.95)

    store.update_status("task-1", TaskStatus.AWAITING_USER, blocker_context=BlockerContext(blocker=blocker))
    store.update_progress("task-1", 2, 1, 1, ComplexityLevel.COMPLEX)
    store.append_verification("task-1", VerificationResult(success=False, confidence=0.3), step_index=0)
    store.append_correction(
        "task-1",
        CorrectionResult(strategy=CorrectionStrategy.ALTERNATIVE_SELECTOR, reason="r", retry_action="click(8)"),
        step_index=0,
        attempt=1,
        original_action="click(7)",
    )

    loaded = store.load_task("task-1")
    assert loaded.status == TaskStatus.AWAITING_USER
    assert loaded.blocker_context.blocker.type == BlockerType.CAPTCHA
    assert (loaded.consecutive_failures, loaded.consecutive_success_without_completion, loaded.correction_attempts) == (2, 1, 1)
    assert loaded.complexity == ComplexityLevel.COMPLEX
    assert loaded.verifications[0].result.confidence == 0.3
    assert loaded.corrections[0].original_action == "click(7)"


def test_update_on_missing_task_raises(store):
    with pytest.raises(TaskNotFoundError):
        store.update_status("ghost", TaskStatus.CANCELLED)


def test_write_leaves_no_temporary_files(store):
    store.save_task(make_task())
    store.update_plan("task-1", Plan.from_descriptions(["a"]))
    assert [p.name for p in store.store_dir.iterdir()] == ["task-1.json"]


def test_list_tasks_filters_by_tenant(store):
    store.save_task(make_task("a", tenant_id="acme"))
    store.save_task(make_task("b", tenant_id="globex"))
    store._path("broken").write_text("{")

    tasks = store.list_tasks(tenant_id="acme")
    assert [t["task_id"] for t in tasks] == ["a"]
    assert len(store.list_tasks()) == 2


def test_unwritable_directory_raises_store_error(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("not a directory")
    store = JsonTaskStore(blocker / "tasks")
    with pytest.raises(StoreError):
        store.save_task(make_task())


def test_document_is_plain_json(store):
    store.save_task(make_task())
    data = json.loads(store._path("task-1").read_text())
    assert data["status"] == "pending"
