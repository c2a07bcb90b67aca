from interact.agent.hierarchy import (
    build_sub_task_context,
    extract_sub_task_outputs,
    complete_sub_task,
    current_sub_task,
    is_complete,
    progress,
)
from interact.schemas import HierarchicalPlan, StepStatus, SubTask, SubTaskInput, SubTaskOutput, SubTaskResult


def make_plan():
    return HierarchicalPlan(
        goal="Book a follow-up for Jane",
        sub_tasks=[
            SubTask(
                id="find",
                index=0,
                name="Find patient",
                objective="Open Jane's record",
                outputs=[SubTaskOutput(name="patient_id", description="Record id", extraction_hint="in the URL")],
                status=StepStatus.ACTIVE,
            ),
            SubTask(
                id="book",
                index=1,
                name="Book appointment",
                objective="Schedule a follow-up next week",
                inputs=[SubTaskInput(name="patient_id", description="Record id")],
            ),
        ],
    )


def test_successful_sub_task_advances_and_accumulates_outputs():
    plan = make_plan()
    updated = complete_sub_task(plan, SubTaskResult(success=True, outputs={"patient_id": "p-42"}))

    assert updated.sub_tasks[0].status == StepStatus.COMPLETED
    assert updated.sub_tasks[1].status == StepStatus.ACTIVE
    assert updated.current_index == 1
    assert updated.accumulated_outputs == {"patient_id": "p-42"}
    assert plan.current_index == 0


def test_failed_sub_task_keeps_cursor():
    updated = complete_sub_task(make_plan(), SubTaskResult(success=False, error="not found"))
    assert updated.sub_tasks[0].status == StepStatus.FAILED
    assert updated.current_index == 0
    assert current_sub_task(updated).id == "find"


def test_completion_and_progress():
    plan = make_plan()
    assert not is_complete(plan)
    plan = complete_sub_task(plan, SubTaskResult(success=True))
    plan = complete_sub_task(plan, SubTaskResult(success=True))

    assert is_complete(plan)
    assert current_sub_task(plan) is None
    assert progress(plan) == {"completed": 2, "failed": 0, "total": 2, "percent": 100}
    # finished plans are returned unchanged
    assert complete_sub_task(plan, SubTaskResult(success=True)) == plan


def test_sub_task_context_shows_inputs_with_values():
    plan = complete_sub_task(make_plan(), SubTaskResult(success=True, outputs={"patient_id": "p-42"}))
    context = build_sub_task_context(plan)

    lines = context.splitlines()
    assert lines[0] == "--- CURRENT SUB-TASK ---"
    assert "Sub-task 2 of 2: Book appointment" in lines
    assert "  - patient_id = p-42: Record id" in lines
    assert "Progress: 1/2 sub-tasks completed" in lines
    assert lines[-1] == "--- END SUB-TASK ---"


def test_sub_task_context_lists_outputs_to_extract():
    context = build_sub_task_context(make_plan())
    assert "  - patient_id: Record id (in the URL)" in context.splitlines()


# ----------------------------------------------------------------------------
# Output extraction
# ----------------------------------------------------------------------------


def sub_task_with(*outputs):
    return SubTask(id="s", index=0, name="Find patient", objective="Open the record", outputs=list(outputs))


def test_id_is_read_from_the_summary_first():
    task = sub_task_with(SubTaskOutput(name="patient_id", extraction_hint="record id"))
    page = '<section data-patient-id="p-77"></section>'
    assert extract_sub_task_outputs(task, page, "Opened Jane's record (ID: p-42)") == {"patient_id": "p-42"}


def test_id_falls_back_to_data_attribute():
    task = sub_task_with(SubTaskOutput(name="patient_id"))
    page = '<div data-user-id="u-1"></div><section data-patient-id="p-77">Jane</section>'
    assert extract_sub_task_outputs(task, page, "Opened the record") == {"patient_id": "p-77"}


def test_url_and_confirmation_outputs():
    task = sub_task_with(
        SubTaskOutput(name="record_link", extraction_hint="URL of the record"),
        SubTaskOutput(name="booked", extraction_hint="confirmation shown"),
    )
    outputs = extract_sub_task_outputs(
        task, "<p>Booked</p>", "Appointment confirmed", url="https://clinic.example.com/patients/42"
    )
    assert outputs == {"record_link": "https://clinic.example.com/patients/42", "booked": True}


def test_missing_values_are_left_out():
    task = sub_task_with(SubTaskOutput(name="patient_id", extraction_hint="the provider"))
    assert extract_sub_task_outputs(task, "<p>nothing</p>", "The id field was empty") == {}
    assert extract_sub_task_outputs(sub_task_with(), "<p/>", "ID: 5") == {}
