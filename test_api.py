"""End-to-end tests for the HTTP API over a temporary SQLite database."""

import base64
import logging
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, str(Path(__file__).parent))

from beaver.app.config import Settings
from beaver.app.main import create_app
from beaver.llm.text_generation import ProviderError, TextGenerator

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

PLANNING_TURNS = [
    "I want to build a task management app with authentication and real-time chat",
    "It is for business teams and needs a dashboard",
    "Yes, go ahead",
]


class FakeGenerator(TextGenerator):
    def __init__(self):
        self.fail = False

    async def generate_text(self, system_prompt, history, user_message):
        return "// filepath: client/src/App.tsx\n```tsx\nexport default function App() {}\n```"

    async def analyze_image(self, image_bytes, mime_type):
        if self.fail:
            raise ProviderError("vision model unavailable")
        return f"{len(image_bytes)} bytes of {mime_type}"


@pytest.fixture
def generator():
    return FakeGenerator()


def make_settings(tmp_path, **overrides) -> Settings:
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path}/beaver.db",
        gemini_api_key="",
        e2b_api_key="",
        redis_url=None,
        **overrides
    )


@pytest.fixture
def client(tmp_path, generator):
    settings = make_settings(tmp_path)
    with TestClient(create_app(settings, text_generator=generator)) as test_client:
        yield test_client


def chat(client, message, user_id="u1", **extra):
    response = client.post("/api/agents/chat", json={"message": message, "user_id": user_id, **extra})
    assert response.status_code == 200, response.text
    return response.json()


def plan_project(client):
    first = chat(client, PLANNING_TURNS[0])
    ids = {"project_id": first["project_id"], "conversation_id": first["conversation_id"]}
    for text in PLANNING_TURNS[1:]:
        chat(client, text, **ids)
    return ids


def test_root_and_health(client):
    assert client.get("/").json()["name"] == "Beaver AI API"
    assert client.get("/health").json() == {"status": "healthy"}


def test_chat_flow_persists_project_and_history(client):
    ids = plan_project(client)

    status = client.get("/api/agents/status", params={"project_id": ids["project_id"], "user_id": "u1"}).json()
    assert status["phase"] == "planning"
    assert status["has_blueprint"] is True

    setup = chat(client, "Let's start building", **ids)
    assert setup["response"]["agent_type"] == "main"
    assert setup["response"]["status"] == "working"

    status = client.get("/api/agents/status", params={"project_id": ids["project_id"], "user_id": "u1"}).json()
    assert status["phase"] == "setup"

    history = client.get(
        f"/api/agents/conversation/{ids['conversation_id']}", params={"user_id": "u1"}
    ).json()
    messages = history["messages"]
    assert len(messages) == 8
    assert messages[0]["role"] == "user"
    assert messages[0]["content"] == PLANNING_TURNS[0]
    assert messages[1]["agent_type"] == "planner"
    assert messages[-1]["agent_type"] == "main"


def test_chat_without_user_id_is_a_bad_request(client):
    response = client.post("/api/agents/chat", json={"message": "hello"})

    assert response.status_code == 400


def test_chat_on_someone_elses_project_is_not_found(client):
    first = chat(client, "I want to build a shop")

    response = client.post(
        "/api/agents/chat",
        json={"message": "hi", "user_id": "intruder", "project_id": first["project_id"]}
    )

    assert response.status_code == 404


def test_image_metadata_is_not_stored(client):
    image = {"data": base64.b64encode(b"png").decode(), "mime_type": "image/png"}
    first = chat(client, "I want to build a shop", metadata={"images": [image]})

    history = client.get(
        f"/api/agents/conversation/{first['conversation_id']}", params={"user_id": "u1"}
    ).json()

    assert history["messages"][0]["metadata"] == {"image_count": 1}


def test_conversation_of_another_user_is_not_found(client):
    first = chat(client, "I want to build a shop")

    response = client.get(
        f"/api/agents/conversation/{first['conversation_id']}", params={"user_id": "intruder"}
    )

    assert response.status_code == 404


def test_status_without_project_lists_agents(client):
    agents = client.get("/api/agents/status").json()["agents"]

    assert {agent["type"] for agent in agents} >= {"planner", "main", "frontend", "backend"}
    assert all(agent["is_active"] for agent in agents)


def test_task_on_unknown_agent_fails(client):
    first = chat(client, "I want to build a shop")

    response = client.post("/api/agents/task", json={
        "agent_type": "wizard",
        "task_type": "cast_spell",
        "project_id": first["project_id"],
        "user_id": "u1",
    })

    assert response.status_code == 200
    assert response.json()["status"] == "failed"
    assert "No agent registered" in response.json()["error"]


def test_run_pending_and_advance_phase(client):
    ids = plan_project(client)
    chat(client, "Let's start building", **ids)
    project_id = ids["project_id"]

    run = client.post(f"/api/agents/projects/{project_id}/run", json={"user_id": "u1"}).json()
    assert [r["status"] for r in run["results"]] == ["completed"]

    workflow = client.post("/api/agents/task", json={
        "agent_type": "main",
        "task_type": "manage_workflow",
        "project_id": project_id,
        "user_id": "u1",
    }).json()
    assert workflow["output"]["current_phase"] == "development"


def test_specialist_task_writes_generated_files(client):
    ids = plan_project(client)
    chat(client, "Let's start building", **ids)

    result = client.post("/api/agents/task", json={
        "agent_type": "frontend",
        "task_type": "create_components",
        "input": {"description": "Create the app shell"},
        "project_id": ids["project_id"],
        "user_id": "u1",
    }).json()

    assert result["status"] == "completed"
    assert result["artifacts"] == ["/workspace/client/src/App.tsx"]


def test_analyze_image(client, generator):
    encoded = base64.b64encode(b"12345").decode()

    ok = client.post("/api/analyze-image", json={"image_data": encoded, "mime_type": "image/jpeg"})
    assert ok.status_code == 200
    assert ok.json() == {"description": "5 bytes of image/jpeg"}

    bad = client.post("/api/analyze-image", json={"image_data": "not base64!!"})
    assert bad.status_code == 400

    generator.fail = True
    failed = client.post("/api/analyze-image", json={"image_data": encoded})
    assert failed.status_code == 502


def test_sandbox_routes_in_mock_mode(client):
    created = client.post("/api/sandboxes", json={"project_id": "p-sbx"}).json()
    sandbox_id = created["provider_id"]
    assert created["mock"] is True

    command = client.post(f"/api/sandboxes/{sandbox_id}/command", json={"command": "ls"}).json()
    assert command["success"] is True
    assert command["stdout"] == "Executed: ls"

    written = client.post(
        f"/api/sandboxes/{sandbox_id}/files", json={"path": "/workspace/a.ts", "content": "x"}
    )
    assert written.json() == {"success": True, "path": "/workspace/a.ts"}

    read = client.get(f"/api/sandboxes/{sandbox_id}/files", params={"path": "/workspace/a.ts"})
    assert "Mock content" in read.json()["content"]

    tree = client.get(f"/api/sandboxes/{sandbox_id}/filesystem").json()
    assert [node["name"] for node in tree["files"]] == ["client", "server"]

    assert client.delete(f"/api/sandboxes/{sandbox_id}").json() == {"success": True}
    assert client.post(f"/api/sandboxes/{sandbox_id}/command", json={"command": "ls"}).status_code == 404


def test_close_project(client):
    ids = plan_project(client)
    chat(client, "Let's start building", **ids)
    project_id = ids["project_id"]

    assert client.delete(f"/api/agents/projects/{project_id}", params={"user_id": "intruder"}).status_code == 404

    closed = client.delete(f"/api/agents/projects/{project_id}", params={"user_id": "u1"}).json()

    assert closed == {"project_id": project_id, "closed": True}
    status = client.get("/api/agents/status", params={"project_id": project_id, "user_id": "u1"}).json()
    assert status["phase"] is None



def test_status_and_stream_are_owner_only(client):
    first = chat(client, "I want to build a shop")
    project_id = first["project_id"]

    owner = client.get("/api/agents/status", params={"project_id": project_id, "user_id": "u1"})
    assert owner.status_code == 200
    assert owner.json()["phase"] == "planning"

    intruder = client.get("/api/agents/status", params={"project_id": project_id, "user_id": "intruder"})
    assert intruder.status_code == 404
    anonymous = client.get("/api/agents/status", params={"project_id": project_id})
    assert anonymous.status_code == 400

    assert client.get(f"/api/agents/stream/{project_id}", params={"user_id": "intruder"}).status_code == 404
    assert client.get(f"/api/agents/stream/{project_id}").status_code == 400
    assert client.app.state.orchestrator.streams.count(project_id) == 0


def test_app_wires_persistence_into_the_context_store(tmp_path, generator):
    settings = make_settings(tmp_path, context_cache_size=7, context_ttl=60)

    with TestClient(create_app(settings, text_generator=generator)) as test_client:
        store = test_client.app.state.orchestrator.main.context_store
        repository = test_client.app.state.repository

        assert store.max_size == 7
        assert store.ttl_seconds == 60
        assert store.on_evict == repository.save_context
        assert store.loader == repository.load_context


def test_project_state_survives_a_restart(tmp_path, generator):
    settings = make_settings(tmp_path)

    with TestClient(create_app(settings, text_generator=generator)) as before:
        ids = plan_project(before)
        chat(before, "Let's start building", **ids)
        project_id = ids["project_id"]

    with TestClient(create_app(settings, text_generator=generator)) as after:
        run = after.post(f"/api/agents/projects/{project_id}/run", json={"user_id": "u1"}).json()
        status = after.get("/api/agents/status", params={"project_id": project_id, "user_id": "u1"}).json()

    assert [r["status"] for r in run["results"]] == ["completed"]
    assert status["phase"] == "setup"
    assert status["has_blueprint"] is True
    assert status["sandbox_id"].startswith("mock_")


def test_non_integer_priority_is_a_bad_request(client):
    first = chat(client, "I want to build a shop")

    response = client.post("/api/agents/task", json={
        "agent_type": "main",
        "task_type": "coordinate_development",
        "input": {"priority": "urgent"},
        "project_id": first["project_id"],
        "user_id": "u1",
    })

    assert response.status_code == 400


if __name__ == "__main__":
    sys.exit(pytest.main([__file__, "-v"]))
