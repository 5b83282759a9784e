from fastapi.testclient import TestClient

from agent_sandbox.api.main import create_app
from agent_sandbox.config.settings import Settings
from agent_sandbox.llm import SimulatedModelClient
from agent_sandbox.storage.memory import InMemoryTaskStorage

ALICE = {"X-User-Id": "alice"}
BOB = {"X-User-Id": "bob"}


def _client() -> TestClient:
    app = create_app(
        storage=InMemoryTaskStorage(),
        settings_override=Settings(task_retry_backoff_s=0.0),
        model_client=SimulatedModelClient(),
    )
    return TestClient(app)


def _submit_and_wait(client: TestClient, task: str, headers: dict[str, str]) -> str:
    response = client.post("/tasks", json={"task": task}, headers=headers)
    assert response.status_code == 200
    task_id = response.json()["task_id"]
    client.app.state.orchestrator.wait_for_task(task_id, timeout=5)
    return task_id


def test_health_endpoint() -> None:
    response = _client().get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_tools_endpoint_lists_catalog() -> None:
    response = _client().get("/tools")

    assert response.status_code == 200
    tools = {tool["name"]: tool for tool in response.json()["tools"]}
    assert {"navigate", "click", "type", "screenshot", "extract_text", "wait"} <= set(tools)
    assert "properties" in tools["navigate"]["parameters"]


def test_submit_run_and_fetch_roundtrip() -> None:
    client = _client()

    task_id = _submit_and_wait(client, "Search for weather information", ALICE)
    response = client.get(f"/tasks/{task_id}", headers=ALICE)

    assert response.status_code == 200
    payload = response.json()
    assert payload["found"] is True
    assert payload["task"]["id"] == task_id
    assert payload["task"]["status"] == "completed"
    assert payload["task"]["result"]
    assert payload["task"]["completed_at"] is not None


def test_blocked_submission_returns_reason() -> None:
    response = _client().post(
        "/tasks",
        json={"task": "Add my visa card to the account"},
        headers=ALICE,
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["success"] is False
    assert "restricted content: visa" in payload["error"]
    assert payload["task_id"].startswith("task-")


def test_submission_requires_identity() -> None:
    response = _client().post("/tasks", json={"task": "Search for weather information"})

    assert response.status_code == 401


def test_submission_validates_length() -> None:
    client = _client()

    assert client.post("/tasks", json={"task": ""}, headers=ALICE).status_code == 422
    assert client.post("/tasks", json={"task": "x" * 1001}, headers=ALICE).status_code == 422
    assert client.post("/tasks", json={"task": "   "}, headers=ALICE).status_code == 422


def test_other_users_task_reads_as_not_found() -> None:
    client = _client()
    task_id = _submit_and_wait(client, "Search for weather information", ALICE)

    foreign = client.get(f"/tasks/{task_id}", headers=BOB).json()
    missing = client.get("/tasks/task-" + "f" * 32, headers=BOB).json()

    assert foreign == missing == {"found": False, "task": None, "error": "Task not found"}
    assert client.get(f"/tasks/{task_id}/audit", headers=BOB).json()["found"] is False


def test_malformed_task_id_is_rejected() -> None:
    response = _client().get("/tasks/not-a-task", headers=ALICE)

    assert response.status_code == 422


def test_history_pagination() -> None:
    client = _client()
    ids = [
        _submit_and_wait(client, f"Search for {topic} information", ALICE)
        for topic in ("news", "sports", "weather")
    ]

    response = client.get("/tasks", params={"limit": 1, "offset": 0}, headers=ALICE)

    assert response.status_code == 200
    payload = response.json()
    assert payload["total"] == 3
    assert [task["id"] for task in payload["tasks"]] == [ids[-1]]
    assert client.get("/tasks", params={"limit": 0}, headers=ALICE).status_code == 422
    assert client.get("/tasks", params={"limit": 101}, headers=ALICE).status_code == 422
    assert client.get("/tasks", headers=BOB).json() == {"tasks": [], "total": 0}


def test_history_shows_sanitized_text() -> None:
    client = _client()
    _submit_and_wait(client, "Call me at 5551234567 about the weather", ALICE)

    tasks = client.get("/tasks", headers=ALICE).json()["tasks"]

    assert tasks[0]["task"] == "Call me at [phone] about the weather"


def test_audit_trail_for_owner() -> None:
    client = _client()
    task_id = _submit_and_wait(client, "Search for weather information", ALICE)

    payload = client.get(f"/tasks/{task_id}/audit", headers=ALICE).json()

    assert payload["found"] is True
    assert [entry["event_type"] for entry in payload["entries"]][0] == "allowed"
    assert payload["entries"][-1]["action"] == "task_completed"


def test_agent_status_and_security_info_are_public() -> None:
    client = _client()
    _submit_and_wait(client, "Search for weather information", ALICE)

    status = client.get("/agent/status").json()
    security = client.get("/agent/security").json()

    assert status["status"] == "ready"
    assert status["total_tasks"] == 1
    assert status["completed_tasks"] == 1
    assert status["running_tasks"] == 0
    assert status["security"] == {
        "data_protection": True,
        "no_account_access": True,
        "no_payment_access": True,
        "sandbox_active": True,
    }
    assert "no_visa" in security["restrictions"]
    assert "Navigate websites" in security["allowed_actions"]
    assert "cookies" in security["policy"]["restricted_apis"]
