"""Tests for AgentOrchestrator routing, locking and notifications."""

import asyncio
import logging
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent))

from beaver.app.config import Settings
from beaver.locking.local_lock import LocalLock
from beaver.orchestrator.agent import AgentType, TaskStatus, ValidationError
from beaver.orchestrator.agent_orchestrator import AgentOrchestrator, create_orchestrator
from beaver.orchestrator.context_store import ProjectContextStore
from beaver.orchestrator.main_agent import MainAgent
from beaver.orchestrator.planner_agent import PlannerAgent
from beaver.orchestrator.project_context import ProjectContext
from beaver.sandbox.e2b_client import CommandResult, ProviderSandbox, SandboxProvider
from beaver.sandbox.sandbox_manager import SandboxManager

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

PLANNING_TURNS = [
    "I want to build a task management app with authentication and real-time chat",
    "It is for business teams and needs a dashboard",
    "Yes, go ahead",
]


class SlowPlanner(PlannerAgent):
    """Planner that records how many messages it handles at once."""

    def __init__(self):
        super().__init__()
        self.in_flight = 0
        self.max_in_flight = 0

    async def _handle_message(self, message, context):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0.02)
            return await super()._handle_message(message, context)
        finally:
            self.in_flight -= 1


class RemoteProvider(SandboxProvider):
    """Provider that hands out sandbox sbx-1 after an optional delay."""

    def __init__(self, create_delay: float = 0.0):
        self.create_delay = create_delay
        self.commands: list[str] = []
        self.files: dict[str, str] = {}
        self.destroyed: list[str] = []

    async def create_sandbox(self, template_id, metadata):
        await asyncio.sleep(self.create_delay)
        return ProviderSandbox(id="sbx-1", status="running", metadata=metadata)

    async def run_command(self, sandbox_id, command):
        self.commands.append(command)
        return CommandResult(stdout="ok")

    async def write_file(self, sandbox_id, path, content):
        self.files[path] = content

    async def read_file(self, sandbox_id, path):
        return self.files.get(path)

    async def list_files(self, sandbox_id, path="/"):
        return []

    async def destroy_sandbox(self, sandbox_id):
        self.destroyed.append(sandbox_id)


def persistent_orchestrator(provider, saved: dict, max_size: int = 256) -> AgentOrchestrator:
    """Orchestrator whose evicted contexts round-trip through JSON in saved."""

    async def on_evict(context):
        saved[context.project_id] = context.model_dump(mode="json")

    async def loader(project_id):
        data = saved.get(project_id)
        return ProjectContext.model_validate(data) if data else None

    store = ProjectContextStore(max_size=max_size, on_evict=on_evict, loader=loader)
    main = MainAgent(SandboxManager(provider), context_store=store)
    return AgentOrchestrator([PlannerAgent(), main])


def build(**overrides) -> AgentOrchestrator:
    settings = Settings(
        gemini_api_key="",
        e2b_api_key="",
        redis_url=None,
        **overrides
    )
    return create_orchestrator(settings)


async def plan_project(orchestrator, project_id="p1", user_id="u1", conversation_id="c1"):
    responses = []
    for text in PLANNING_TURNS:
        responses.append(await orchestrator.handle_message(text, project_id, user_id, conversation_id))
    return responses


def test_registry_requires_planner_and_main_once():
    planner = PlannerAgent()
    main = MainAgent(SandboxManager())

    with pytest.raises(ValueError):
        AgentOrchestrator([planner])
    with pytest.raises(ValueError):
        AgentOrchestrator([main])
    with pytest.raises(ValueError):
        AgentOrchestrator([planner, main, PlannerAgent()])

    orchestrator = AgentOrchestrator([planner, main])
    assert orchestrator.planner is planner
    assert orchestrator.main is main
    assert planner.is_active and main.is_active
    with pytest.raises(TypeError):
        orchestrator.agents[AgentType.FRONTEND] = planner


def test_create_orchestrator_registers_every_role():
    orchestrator = build()

    assert set(orchestrator.agents) == {
        AgentType.PLANNER, AgentType.MAIN, AgentType.UI_UX, AgentType.FRONTEND,
        AgentType.BACKEND, AgentType.DATA_LOGIC, AgentType.TESTING, AgentType.DEPLOYMENT,
    }
    assert isinstance(orchestrator.lock_manager, LocalLock)
    assert orchestrator.main.sandbox_manager.provider is None


def test_planning_then_initialization_flow():
    orchestrator = build()
    events: list[dict] = []
    orchestrator.add_stream_listener("p1", events.append)

    async def scenario():
        planning = await plan_project(orchestrator)
        setup = await orchestrator.handle_message("Let's start building", "p1", "u1", "c1")
        return planning, setup

    planning, setup = asyncio.run(scenario())

    assert [r.agent_type for r in planning] == [AgentType.PLANNER] * 3
    assert planning[-1].status == "completed"
    assert setup.agent_type == AgentType.MAIN
    assert setup.status == "working"

    status = orchestrator.get_status("p1")
    assert status["phase"] == "setup"
    assert status["has_blueprint"] is True
    assert status["sandbox_id"].startswith("mock_")
    assert status["active_task_count"] == 2

    types = [e["type"] for e in events]
    assert types.count("agent_typing") == 4
    assert types.count("agent_response") == 4
    assert types.count("blueprint_ready") == 1
    phase_events = [e for e in events if e["type"] == "phase_changed"]
    assert [(e["previous_phase"], e["phase"]) for e in phase_events] == [("planning", "setup")]
    assert all(e["project_id"] == "p1" for e in events)

    # Planner session is dropped once its blueprint is recorded
    assert "c1" not in orchestrator.planner.sessions

    history = orchestrator.get_conversation_history("c1", "u1")
    assert len(history) == 8
    assert [m.role for m in history[:2]] == ["user", "assistant"]


def test_messages_after_setup_go_to_main_without_reinitializing():
    orchestrator = build()

    async def scenario():
        await plan_project(orchestrator)
        await orchestrator.handle_message("Let's start building", "p1", "u1", "c1")
        return await orchestrator.handle_message("Improve the interface", "p1", "u1", "c1")

    response = asyncio.run(scenario())

    assert response.agent_type == AgentType.MAIN
    assert response.metadata["coordinated_agents"] == ["backend", "ui_ux", "frontend"]
    assert orchestrator.get_status("p1")["phase"] == "setup"


def test_status_is_pure_and_unknown_project_is_not_created():
    orchestrator = build()
    asyncio.run(orchestrator.handle_message("I want to build a shop", "p1", "u1"))

    first = orchestrator.get_status("p1")
    second = orchestrator.get_status("p1")
    unknown = orchestrator.get_status("nope")

    assert first == second
    assert first["phase"] == "planning"
    assert unknown["phase"] is None
    assert unknown["active_task_count"] == 0
    assert "nope" not in orchestrator.main.context_store


def test_unknown_agent_yields_failed_result():
    orchestrator = build()

    result = asyncio.run(orchestrator.execute_named_task("wizard", "cast_spell", {}, "p1", "u1"))

    assert result.status == TaskStatus.FAILED
    assert result.error == "No agent registered for type: wizard"


def test_named_tasks_drive_the_workflow():
    orchestrator = build()
    events: list[dict] = []
    orchestrator.add_stream_listener("p1", events.append)

    async def scenario():
        await plan_project(orchestrator)
        await orchestrator.handle_message("Let's start building", "p1", "u1", "c1")
        early = await orchestrator.execute_named_task("main", "manage_workflow", {}, "p1", "u1")
        pending = await orchestrator.run_pending_tasks("p1", "u1")
        late = await orchestrator.execute_named_task(AgentType.MAIN, "manage_workflow", {}, "p1", "u1")
        return early, pending, late

    early, pending, late = asyncio.run(scenario())

    assert early.output["current_phase"] == "setup"
    assert [r.status for r in pending] == [TaskStatus.COMPLETED]
    assert late.output["previous_phase"] == "setup"
    assert late.output["current_phase"] == "development"

    status = orchestrator.get_status("p1")
    assert status["active_task_count"] == 0
    assert status["completed_task_count"] == 2

    types = [e["type"] for e in events]
    assert types.count("task_started") == 2
    assert types.count("task_completed") == 3
    completed = [e for e in events if e["type"] == "task_completed"]
    assert completed[1]["task_type"] == "create_project_structure"
    assert [e["phase"] for e in events if e["type"] == "phase_changed"] == ["setup", "development"]


def test_named_task_input_description_and_priority():
    orchestrator = build()

    result = asyncio.run(orchestrator.execute_named_task(
        "main", "coordinate_development", {"description": "Kick off", "priority": "2"}, "p1", "u1"
    ))

    # Planning phase has no fixed work, so nothing runs and nothing fails
    assert result.status == TaskStatus.COMPLETED
    assert result.output["results"] == []


def test_missing_ids_are_rejected():
    orchestrator = build()

    with pytest.raises(ValidationError):
        asyncio.run(orchestrator.handle_message("hello", "", "u1"))
    with pytest.raises(ValidationError):
        asyncio.run(orchestrator.handle_message("hello", "p1", None))
    with pytest.raises(ValidationError):
        asyncio.run(orchestrator.handle_message("   ", "p1", "u1"))
    with pytest.raises(ValidationError):
        asyncio.run(orchestrator.execute_named_task("main", "manage_workflow", {}, None, "u1"))


def test_other_users_cannot_touch_a_project_or_conversation():
    orchestrator = build()
    asyncio.run(orchestrator.handle_message("I want to build a shop", "p1", "u1", "c1"))

    with pytest.raises(ValidationError):
        asyncio.run(orchestrator.handle_message("hi", "p1", "intruder", "c2"))
    with pytest.raises(ValidationError):
        orchestrator.get_conversation_history("c1", "intruder")
    assert orchestrator.get_conversation_history("unknown", "u1") == []


def test_failing_and_async_listeners():
    orchestrator = build()
    received: list[str] = []

    def broken(event):
        raise RuntimeError("listener crashed")

    async def collector(event):
        received.append(event["type"])

    orchestrator.add_stream_listener("p1", broken)
    orchestrator.add_stream_listener("p1", collector)

    response = asyncio.run(orchestrator.handle_message("I want to build a shop", "p1", "u1"))

    assert response.status == "thinking"
    assert received == ["agent_typing", "agent_response"]

    orchestrator.remove_stream_listener("p1", broken)
    orchestrator.remove_stream_listener("p1", collector)
    assert orchestrator.streams.count("p1") == 0


def test_conversation_history_is_bounded():
    orchestrator = build(conversation_history_limit=3)

    async def scenario():
        for text in ["I want to build a shop", "for consumers", "with search and payment"]:
            await orchestrator.handle_message(text, "p1", "u1", "c1")

    asyncio.run(scenario())

    history = orchestrator.get_conversation_history("c1", "u1")
    assert len(history) == 3
    assert history[-1].role == "assistant"


def test_messages_for_one_project_are_serialized():
    planner = SlowPlanner()
    orchestrator = AgentOrchestrator([planner, MainAgent(SandboxManager())])

    async def scenario():
        await asyncio.gather(*(
            orchestrator.handle_message(f"I want to build shop {i}", "p1", "u1", f"c{i}")
            for i in range(4)
        ))

    asyncio.run(scenario())

    assert planner.max_in_flight == 1


def test_different_projects_run_concurrently():
    planner = SlowPlanner()
    orchestrator = AgentOrchestrator([planner, MainAgent(SandboxManager())])

    async def scenario():
        await asyncio.gather(*(
            orchestrator.handle_message("I want to build a shop", f"p{i}", "u1")
            for i in range(3)
        ))

    asyncio.run(scenario())

    assert planner.max_in_flight > 1


def test_close_project_forgets_state():
    orchestrator = build()
    events: list[dict] = []
    orchestrator.add_stream_listener("p1", events.append)

    async def scenario():
        await plan_project(orchestrator)
        await orchestrator.handle_message("Let's start building", "p1", "u1", "c1")
        return await orchestrator.close_project("p1"), await orchestrator.close_project("p1")

    first, second = asyncio.run(scenario())

    assert first is True
    assert second is False
    assert orchestrator.get_status("p1")["phase"] is None
    assert orchestrator.get_conversation_history("c1", "u1") == []
    assert orchestrator.main.sandbox_manager.active_sandboxes == {}
    assert events[-1]["type"] == "project_closed"


def test_shutdown_flushes_contexts_and_deactivates_agents():
    saved: list[str] = []

    async def on_evict(context):
        saved.append(context.project_id)

    orchestrator = create_orchestrator(
        Settings(gemini_api_key="", e2b_api_key="", redis_url=None),
        on_evict=on_evict
    )

    async def scenario():
        await orchestrator.handle_message("I want to build a shop", "p1", "u1")
        await orchestrator.shutdown()

    asyncio.run(scenario())

    assert saved == ["p1"]
    assert not any(agent.is_active for agent in orchestrator.agents.values())



def test_create_orchestrator_wires_context_store_settings():
    async def on_evict(context):
        pass

    async def loader(project_id):
        return None

    orchestrator = create_orchestrator(
        Settings(gemini_api_key="", e2b_api_key="", redis_url=None, context_cache_size=2, context_ttl=5),
        on_evict=on_evict,
        loader=loader
    )
    store = orchestrator.main.context_store

    assert store.max_size == 2
    assert store.ttl_seconds == 5
    assert store.on_evict is on_evict
    assert store.loader is loader


def test_explicit_empty_store_is_kept():
    store = ProjectContextStore(max_size=3)

    main = MainAgent(SandboxManager(), context_store=store)

    assert len(store) == 0
    assert main.context_store is store


def test_busy_project_is_not_evicted_by_another_project():
    provider = RemoteProvider(create_delay=0.05)
    saved: dict = {}
    orchestrator = persistent_orchestrator(provider, saved, max_size=1)

    async def other_project():
        await asyncio.sleep(0.01)
        await orchestrator.handle_message("I want to build a shop", "p2", "u2")

    async def scenario():
        await plan_project(orchestrator)
        await asyncio.gather(
            orchestrator.handle_message("Let's start building", "p1", "u1", "c1"),
            other_project()
        )
        live = orchestrator.main.context_store.peek("p1")
        await orchestrator.shutdown()
        return live

    live = asyncio.run(scenario())

    assert live is not None
    assert live.sandbox.provider_id == "sbx-1"
    restored = saved["p1"]
    assert restored["current_phase"] == "setup"
    assert restored["sandbox"]["provider_id"] == "sbx-1"
    assert sorted(t["status"] for t in restored["active_tasks"].values()) == ["completed", "pending"]
    assert "p2" in saved


def test_restored_project_keeps_using_its_sandbox():
    provider = RemoteProvider()
    saved: dict = {}
    before = persistent_orchestrator(provider, saved)

    async def first_process():
        await plan_project(before)
        await before.handle_message("Let's start building", "p1", "u1", "c1")
        await before.shutdown()

    asyncio.run(first_process())
    after = persistent_orchestrator(provider, saved)

    async def second_process():
        results = await after.run_pending_tasks("p1", "u1")
        return results, await after.close_project("p1")

    results, closed = asyncio.run(second_process())

    assert [r.status for r in results] == [TaskStatus.COMPLETED]
    assert "/workspace/package.json" in provider.files
    assert closed is True
    assert provider.destroyed == ["sbx-1"]


def test_caller_metadata_cannot_reinitialize_a_project():
    orchestrator = build()

    async def scenario():
        await plan_project(orchestrator)
        await orchestrator.handle_message("Let's start building", "p1", "u1", "c1")
        await orchestrator.run_pending_tasks("p1", "u1")
        await orchestrator.execute_named_task("main", "manage_workflow", {}, "p1", "u1")
        sandbox_id = orchestrator.get_status("p1")["sandbox_id"]
        blueprint = orchestrator.main.context_store.peek("p1").blueprint.model_dump(mode="json")
        response = await orchestrator.handle_message(
            "Build the dashboard", "p1", "u1", "c1",
            metadata={"blueprint": blueprint, "user_id": "intruder", "project_id": "p2"}
        )
        return sandbox_id, response

    sandbox_id, response = asyncio.run(scenario())

    status = orchestrator.get_status("p1")
    assert status["phase"] == "development"
    assert status["sandbox_id"] == sandbox_id
    assert response.agent_type == AgentType.MAIN
    assert response.metadata["phase"] == "development"
    context = orchestrator.main.context_store.peek("p1")
    assert all(t.type.endswith("_work") for t in context.active_tasks.values())
    assert "p2" not in orchestrator.main.context_store


def test_non_integer_priority_is_rejected():
    orchestrator = build()

    with pytest.raises(ValidationError):
        asyncio.run(orchestrator.execute_named_task(
            "main", "coordinate_development", {"priority": "urgent"}, "p1", "u1"
        ))
    with pytest.raises(ValidationError):
        asyncio.run(orchestrator.execute_named_task(
            "main", "coordinate_development", {"priority": None}, "p1", "u1"
        ))


if __name__ == "__main__":
    sys.exit(pytest.main([__file__, "-v"]))
