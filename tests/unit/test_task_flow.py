import threading
import time

import pytest

from conftest import FlakyModelClient, RecordingModelClient, SlowModelClient

from agent_sandbox.errors import StorageUnavailableError, TaskValidationError
from agent_sandbox.security.context import create_execution_context


def test_blocked_submission_creates_no_task(make_orchestrator, storage) -> None:
    orchestrator = make_orchestrator()

    result = orchestrator.submit("Add my visa card to the account", "user-a")

    assert result.success is False
    assert result.error == "Task blocked for security: Task contains restricted content: visa"
    assert storage.get_task(result.task_id) is None
    entries = storage.list_audit_entries(result.task_id)
    assert [entry.event_type for entry in entries] == ["blocked"]
    assert entries[0].success is False
    assert entries[0].details["category"] == "visa"


def test_ssn_submission_is_rejected_before_redaction(make_orchestrator, storage) -> None:
    model = RecordingModelClient()
    orchestrator = make_orchestrator(model)

    result = orchestrator.submit("My SSN is 123-45-6789", "user-a")

    assert result.success is False
    assert "ssn" in result.error
    assert storage.count_tasks_by_status().total == 0
    assert model.calls == []


def test_safe_task_runs_to_completion(make_orchestrator, storage) -> None:
    orchestrator = make_orchestrator()

    result = orchestrator.submit("Search for weather information", "user-a")
    assert result.success is True
    assert result.message == "Task submitted successfully"

    record = orchestrator.wait_for_task(result.task_id, timeout=5)

    assert record is not None
    assert record.status == "completed"
    assert record.result == "Successfully processed: Search for weather information"
    assert record.error is None
    assert record.completed_at is not None
    assert storage.status_history[result.task_id] == ["pending", "running", "completed"]

    actions = [entry.action for entry in storage.list_audit_entries(result.task_id)]
    assert actions == ["submit_task", "task_started", "model_call", "task_completed"]


def test_phone_number_is_redacted_before_reaching_the_model(make_orchestrator) -> None:
    model = RecordingModelClient()
    orchestrator = make_orchestrator(model)

    result = orchestrator.submit("Call me at 5551234567 about the weather", "user-a")
    record = orchestrator.wait_for_task(result.task_id, timeout=5)

    assert result.success is True
    assert record.task == "Call me at [phone] about the weather"
    assert record.original_task == "Call me at 5551234567 about the weather"
    prompt = "\n".join(message.content for call in model.calls for message in call)
    assert "[phone]" in prompt
    assert "5551234567" not in prompt


def test_prompt_lists_tool_catalog_and_redacted_context(make_orchestrator) -> None:
    model = RecordingModelClient()
    orchestrator = make_orchestrator(model)

    result = orchestrator.submit(
        "Search for weather information",
        "user-a",
        context={"city": "Oslo", "contact": "ops@example.org"},
    )
    orchestrator.wait_for_task(result.task_id, timeout=5)

    system, user = model.calls[0]
    assert system.role == "system"
    for tool_name in ("navigate", "click", "type", "screenshot", "extract_text", "wait"):
        assert f"- {tool_name}:" in system.content
    assert "localStorage" in system.content
    assert user.content.startswith("Task: Search for weather information")
    assert '"city": "Oslo"' in user.content
    assert "[email]" in user.content
    assert "ops@example.org" not in user.content


def test_transient_model_failures_are_retried(make_orchestrator, storage) -> None:
    model = FlakyModelClient(failures=2)
    orchestrator = make_orchestrator(model)

    result = orchestrator.submit("Search for weather information", "user-a")
    record = orchestrator.wait_for_task(result.task_id, timeout=5)

    assert record.status == "completed"
    assert record.result == "Completed after 3 attempt(s)"
    assert model.calls == 3
    # Retries stay within the same running state.
    assert storage.status_history[result.task_id] == ["pending", "running", "completed"]


def test_exhausted_retries_fail_the_task(make_orchestrator, storage) -> None:
    model = FlakyModelClient(failures=10, message="model endpoint refused the request")
    orchestrator = make_orchestrator(model)

    result = orchestrator.submit("Search for weather information", "user-a")
    record = orchestrator.wait_for_task(result.task_id, timeout=5)

    assert record.status == "failed"
    assert record.error == "model endpoint refused the request"
    assert record.result is None
    assert record.completed_at is not None
    assert model.calls == 4

    entries = storage.list_audit_entries(result.task_id)
    model_calls = [entry for entry in entries if entry.action == "model_call"]
    assert len(model_calls) == 4
    assert all(entry.success is False for entry in model_calls)
    assert entries[-1].action == "task_failed"
    assert entries[-1].error_message == "model endpoint refused the request"


def test_timeout_fails_task_and_discards_late_result(make_orchestrator) -> None:
    model = SlowModelClient(delay_s=0.3)
    orchestrator = make_orchestrator(model, max_duration_ms=50)

    result = orchestrator.submit("Search for weather information", "user-a")
    record = orchestrator.wait_for_task(result.task_id, timeout=5)

    assert record.status == "failed"
    assert record.error == "Task exceeded maximum duration of 50 ms"

    assert model.finished.wait(timeout=5)
    time.sleep(0.05)
    later = orchestrator.get_task(result.task_id, "user-a")
    assert later.status == "failed"
    assert later.result is None


def test_terminal_task_is_not_executed_again(make_orchestrator, storage) -> None:
    model = RecordingModelClient()
    orchestrator = make_orchestrator(model)
    result = orchestrator.submit("Search for weather information", "user-a")
    first = orchestrator.wait_for_task(result.task_id, timeout=5)
    calls_before = len(model.calls)

    context = create_execution_context(result.task_id, first.task, "user-a")
    again = orchestrator.execute(context)

    assert again.status == "completed"
    assert len(model.calls) == calls_before
    assert storage.status_history[result.task_id] == ["pending", "running", "completed"]


def test_result_persist_failure_marks_task_failed(make_orchestrator, storage, monkeypatch) -> None:
    original = storage.update_task_status

    def flaky_update(task_id, **kwargs):
        if kwargs.get("status") == "completed":
            raise StorageUnavailableError("database connection refused")
        return original(task_id, **kwargs)

    monkeypatch.setattr(storage, "update_task_status", flaky_update)
    orchestrator = make_orchestrator()

    result = orchestrator.submit("Search for weather information", "user-a")
    record = orchestrator.wait_for_task(result.task_id, timeout=5)

    assert record.status == "failed"
    assert record.error == "Failed to persist task result: database connection refused"
    assert record.result is None


def test_start_failure_moves_pending_task_to_failed(
    make_orchestrator, storage, monkeypatch
) -> None:
    original = storage.update_task_status

    def flaky_update(task_id, **kwargs):
        if kwargs.get("status") == "running":
            raise StorageUnavailableError("database connection refused")
        return original(task_id, **kwargs)

    monkeypatch.setattr(storage, "update_task_status", flaky_update)
    model_client = RecordingModelClient()
    orchestrator = make_orchestrator(model_client=model_client)

    result = orchestrator.submit("Search for weather information", "user-a")
    record = orchestrator.wait_for_task(result.task_id, timeout=5)

    assert record.status == "failed"
    assert record.error == "Task could not be started: database connection refused"
    assert model_client.calls == []


def test_audit_failure_after_start_still_fails_the_task(
    make_orchestrator, storage, monkeypatch
) -> None:
    original = storage.append_audit_entry

    def flaky_append(**kwargs):
        if kwargs["action"] == "task_started":
            raise StorageUnavailableError("audit store offline")
        return original(**kwargs)

    monkeypatch.setattr(storage, "append_audit_entry", flaky_append)
    model_client = RecordingModelClient()
    orchestrator = make_orchestrator(model_client=model_client)

    result = orchestrator.submit("Search for weather information", "user-a")
    record = orchestrator.wait_for_task(result.task_id, timeout=5)

    assert record.status == "failed"
    assert record.error == "audit store offline"
    assert model_client.calls == []
    assert storage.list_audit_entries(result.task_id)[-1].action == "task_failed"


def test_failed_allow_audit_leaves_no_task(make_orchestrator, storage, monkeypatch) -> None:
    original = storage.append_audit_entry

    def flaky_append(**kwargs):
        if kwargs["event_type"] == "allowed":
            raise StorageUnavailableError("audit store offline")
        return original(**kwargs)

    monkeypatch.setattr(storage, "append_audit_entry", flaky_append)
    model_client = RecordingModelClient()
    orchestrator = make_orchestrator(model_client=model_client)

    with pytest.raises(StorageUnavailableError):
        orchestrator.submit("Search for weather information", "user-a")

    assert storage.count_tasks_by_status().total == 0
    assert model_client.calls == []


def test_unfinished_task_has_neither_result_nor_error(make_orchestrator, storage) -> None:
    release = threading.Event()

    class GatedModelClient:
        def complete(self, messages, *, timeout_s):
            release.wait(timeout=5)
            return "released"

    orchestrator = make_orchestrator(model_client=GatedModelClient())

    result = orchestrator.submit("Search for weather information", "user-a")
    in_flight = storage.get_task(result.task_id)
    release.set()
    done = orchestrator.wait_for_task(result.task_id, timeout=5)

    assert in_flight.status in {"pending", "running"}
    assert in_flight.result is None
    assert in_flight.error is None
    assert in_flight.completed_at is None
    assert done.status == "completed"
    assert done.result == "released"


@pytest.mark.parametrize("text", ["", "   ", "x" * 1001])
def test_invalid_task_text_is_rejected_without_audit(make_orchestrator, storage, text) -> None:
    orchestrator = make_orchestrator()

    with pytest.raises(TaskValidationError):
        orchestrator.submit(text, "user-a")

    assert storage.count_tasks_by_status().total == 0
    assert storage._audit_entries == []


def test_cross_user_lookup_reads_as_not_found(make_orchestrator, storage) -> None:
    orchestrator = make_orchestrator()
    result = orchestrator.submit("Search for weather information", "user-b")
    orchestrator.wait_for_task(result.task_id, timeout=5)

    assert orchestrator.get_task(result.task_id, "user-a") is None
    assert orchestrator.get_task("task-" + "0" * 32, "user-a") is None
    assert orchestrator.get_task_audit(result.task_id, "user-a") is None

    warnings = [
        entry
        for entry in storage.list_audit_entries(result.task_id)
        if entry.event_type == "warning"
    ]
    assert len(warnings) >= 1
    assert warnings[0].action == "access_other_user_task"
    assert warnings[0].user_id == "user-a"
    assert orchestrator.get_task(result.task_id, "user-b") is not None


def test_malformed_task_id_is_a_validation_error(make_orchestrator) -> None:
    orchestrator = make_orchestrator()

    with pytest.raises(TaskValidationError):
        orchestrator.get_task("../../etc/passwd", "user-a")


def test_history_is_paginated_newest_first(make_orchestrator) -> None:
    orchestrator = make_orchestrator()
    task_ids = []
    for query in ("news", "sports", "weather"):
        result = orchestrator.submit(f"Search for {query} information", "user-a")
        orchestrator.wait_for_task(result.task_id, timeout=5)
        task_ids.append(result.task_id)
    orchestrator.submit("Search for recipes", "user-b")

    page = orchestrator.get_task_history("user-a", limit=1, offset=0)

    assert page.total == 3
    assert [task.task_id for task in page.tasks] == [task_ids[-1]]

    rest = orchestrator.get_task_history("user-a", limit=10, offset=1)
    assert [task.task_id for task in rest.tasks] == [task_ids[1], task_ids[0]]


@pytest.mark.parametrize(("limit", "offset"), [(0, 0), (101, 0), (10, -1)])
def test_history_bounds_are_validated(make_orchestrator, limit, offset) -> None:
    orchestrator = make_orchestrator()

    with pytest.raises(TaskValidationError):
        orchestrator.get_task_history("user-a", limit=limit, offset=offset)


def test_status_summary_counts_by_state(make_orchestrator) -> None:
    orchestrator = make_orchestrator(FlakyModelClient(failures=0))
    done = orchestrator.submit("Search for weather information", "user-a")
    orchestrator.wait_for_task(done.task_id, timeout=5)
    other = orchestrator.submit("Search for news", "user-b")
    orchestrator.wait_for_task(other.task_id, timeout=5)
    orchestrator.submit("Add my visa card to the account", "user-a")

    overall = orchestrator.status_summary()
    mine = orchestrator.status_summary("user-a")

    assert overall.total == 2
    assert overall.completed == 2
    assert mine.total == 1


def test_terminal_tasks_hold_exactly_one_of_result_or_error(make_orchestrator) -> None:
    good = make_orchestrator()
    bad = make_orchestrator(FlakyModelClient(failures=10))
    ok = good.submit("Search for weather information", "user-a")
    failed = bad.submit("Search for news", "user-a")

    for orchestrator, task_id in ((good, ok.task_id), (bad, failed.task_id)):
        record = orchestrator.wait_for_task(task_id, timeout=5)
        assert (record.result is None) != (record.error is None)
