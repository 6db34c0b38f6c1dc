"""Tests for the base Agent contract and task lifecycle."""

import asyncio
import logging
import sys
from pathlib import Path

import pytest
from pydantic import ValidationError as SchemaError

sys.path.insert(0, str(Path(__file__).parent))

from beaver.orchestrator.agent import (
    Agent,
    AgentMessage,
    AgentResponse,
    AgentTask,
    AgentType,
    InvariantError,
    TaskResult,
    TaskStatus,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class EchoAgent(Agent):
    """Agent that echoes messages and returns task input as output."""

    def __init__(self, fail: bool = False, result_status: TaskStatus = TaskStatus.COMPLETED):
        super().__init__(AgentType.FRONTEND, ["frontend_development", "component"])
        self.fail = fail
        self.result_status = result_status
        self.seen_statuses: list[TaskStatus] = []

    async def _handle_message(self, message, context):
        if self.fail:
            raise RuntimeError("boom")
        return self.create_response(f"echo: {message.content}")

    async def _execute(self, task, context):
        self.seen_statuses.append(task.status)
        if self.fail:
            raise RuntimeError("task exploded")
        return TaskResult(task_id=task.id, status=self.result_status, output=task.input)


def test_task_status_moves_forward_only():
    task = AgentTask(type="frontend_development", description="Build header")
    assert task.status == TaskStatus.PENDING

    with pytest.raises(InvariantError):
        task.transition(TaskStatus.COMPLETED)

    task.transition(TaskStatus.RUNNING)
    task.transition(TaskStatus.COMPLETED)
    assert task.is_resolved

    for status in TaskStatus:
        with pytest.raises(InvariantError):
            task.transition(status)


def test_execute_task_marks_running_then_completed():
    agent = EchoAgent()
    task = agent.create_task("frontend_development", "Build header", input={"page": "home"})

    result = asyncio.run(agent.execute_task(task))

    assert agent.seen_statuses == [TaskStatus.RUNNING]
    assert result.status == TaskStatus.COMPLETED
    assert result.output == {"page": "home"}
    assert task.status == TaskStatus.COMPLETED
    assert task.assigned_agent == AgentType.FRONTEND
    assert agent.current_task is None


def test_execute_task_converts_exceptions_to_failed_result():
    agent = EchoAgent(fail=True)
    task = agent.create_task("frontend_development", "Build header")

    result = asyncio.run(agent.execute_task(task))

    assert result.status == TaskStatus.FAILED
    assert result.error == "task exploded"
    assert task.status == TaskStatus.FAILED


def test_execute_task_rejects_task_that_is_not_pending():
    agent = EchoAgent()
    task = agent.create_task("frontend_development", "Build header")
    asyncio.run(agent.execute_task(task))

    result = asyncio.run(agent.execute_task(task))

    assert result.status == TaskStatus.FAILED
    assert "not pending" in result.error
    assert task.status == TaskStatus.COMPLETED
    assert agent.seen_statuses == [TaskStatus.RUNNING]


def test_unresolved_handler_status_becomes_failed():
    agent = EchoAgent(result_status=TaskStatus.RUNNING)
    task = agent.create_task("frontend_development", "Build header")

    result = asyncio.run(agent.execute_task(task))

    assert result.status == TaskStatus.FAILED
    assert task.status == TaskStatus.FAILED


def test_process_message_never_raises():
    agent = EchoAgent(fail=True)
    response = asyncio.run(agent.process_message(AgentMessage(content="hello")))

    assert response.status == "error"
    assert response.message.content == Agent.error_reply
    assert response.message.role == "assistant"
    assert response.agent_type == AgentType.FRONTEND


def test_completed_response_requires_content():
    agent = EchoAgent()
    with pytest.raises(SchemaError):
        agent.create_response("   ", status="completed")

    # Non-completed statuses may be empty
    response = agent.create_response("", status="working")
    assert isinstance(response, AgentResponse)


def test_messages_are_immutable():
    message = AgentMessage(content="hello")
    with pytest.raises(SchemaError):
        message.content = "changed"


def test_validate_task_matches_capabilities():
    agent = EchoAgent()
    assert agent.validate_task(AgentTask(type="frontend_development", description="x"))
    assert agent.validate_task(AgentTask(type="create_component", description="x"))
    assert not agent.validate_task(AgentTask(type="data_modeling", description="x"))


def test_agent_info_and_activation():
    agent = EchoAgent()
    assert agent.get_agent_info()["is_active"] is False

    agent.activate()
    info = agent.get_agent_info()
    assert info["is_active"] is True
    assert info["type"] == "frontend"
    assert info["capabilities"] == ["frontend_development", "component"]

    agent.deactivate()
    assert agent.is_active is False


if __name__ == "__main__":
    sys.exit(pytest.main([__file__, "-v"]))
