"""Base agent contract and the message/task protocol shared by all agents."""

import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class AgentType(str, Enum):
    """Roles an agent can play."""
    PLANNER = "planner"
    MAIN = "main"
    UI_UX = "ui_ux"
    FRONTEND = "frontend"
    BACKEND = "backend"
    DATA_LOGIC = "data_logic"
    TESTING = "testing"
    OPTIMIZATION = "optimization"
    DEPLOYMENT = "deployment"


class TaskStatus(str, Enum):
    """Task lifecycle status."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


# Allowed lifecycle moves: Pending -> Running -> {Completed, Failed}
_TRANSITIONS: dict[TaskStatus, set[TaskStatus]] = {
    TaskStatus.PENDING: {TaskStatus.RUNNING},
    TaskStatus.RUNNING: {TaskStatus.COMPLETED, TaskStatus.FAILED},
    TaskStatus.COMPLETED: set(),
    TaskStatus.FAILED: set(),
}


class AgentMessage(BaseModel):
    """One conversational turn. Immutable once created."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    content: str
    role: Literal["user", "assistant", "system"] = "user"
    agent_type: Optional[AgentType] = None
    metadata: dict[str, Any] = {}
    timestamp: datetime = Field(default_factory=_utcnow)


class AgentTask(BaseModel):
    """Discrete unit of delegated work."""
    id: str = Field(default_factory=_new_id)
    type: str
    description: str
    input: dict[str, Any] = {}
    priority: int = 1  # lower = more urgent
    dependencies: list[str] = []
    assigned_agent: Optional[AgentType] = None
    status: TaskStatus = TaskStatus.PENDING
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    def transition(self, new_status: TaskStatus) -> None:
        """
        Move the task to a new status.

        Raises:
            InvariantError: If the move is not allowed by the lifecycle
        """
        if new_status not in _TRANSITIONS[self.status]:
            raise InvariantError(
                f"Illegal status transition for task {self.id}: "
                f"{self.status.value} -> {new_status.value}"
            )
        self.status = new_status
        self.updated_at = _utcnow()

    @property
    def is_resolved(self) -> bool:
        return self.status in (TaskStatus.COMPLETED, TaskStatus.FAILED)


class TaskResult(BaseModel):
    """Result of one task execution."""
    task_id: str
    status: TaskStatus
    output: Any = None
    error: Optional[str] = None
    artifacts: list[str] = []
    next_tasks: list[AgentTask] = []
    completed_at: datetime = Field(default_factory=_utcnow)


class AgentResponse(BaseModel):
    """Unit returned to the caller of process_message."""
    agent_type: AgentType
    message: AgentMessage
    tasks: list[AgentTask] = []
    status: Literal["thinking", "working", "completed", "error"] = "completed"
    metadata: dict[str, Any] = {}

    @model_validator(mode="after")
    def _completed_has_content(self) -> "AgentResponse":
        if self.status == "completed" and not self.message.content.strip():
            raise ValueError("A completed response must carry message content")
        return self


class Agent(ABC):
    """Base class for role-scoped agents handling messages and typed tasks."""

    error_reply = "I encountered an error while processing your request. Could you please try again?"

    def __init__(self, agent_type: AgentType, capabilities: Optional[list[str]] = None):
        """
        Initialize agent.

        Args:
            agent_type: Role this agent plays
            capabilities: Capability tags used for routing
        """
        self.agent_id = _new_id()
        self.agent_type = agent_type
        self.capabilities: list[str] = list(capabilities or [])
        self.is_active = False
        self.current_task: Optional[AgentTask] = None

    async def process_message(self, message: AgentMessage, context: Any = None) -> AgentResponse:
        """
        Interpret a conversational turn.

        Never raises: failures are logged and turned into an error response.
        """
        self.log_activity("Processing message", input=message.content)
        try:
            return await self._handle_message(message, context)
        except Exception as e:
            logger.error(
                f"Agent {self.agent_type.value} failed to process message {message.id}: {e}",
                exc_info=True
            )
            return self.create_response(self.error_reply, status="error")

    async def execute_task(self, task: AgentTask, context: Any = None) -> TaskResult:
        """
        Execute one typed task.

        Never raises: failures become a Failed TaskResult carrying the error.
        A task that is not pending is rejected without touching its status.
        """
        if task.status != TaskStatus.PENDING:
            logger.warning(
                f"Agent {self.agent_type.value} refused task {task.id} in status {task.status.value}"
            )
            return TaskResult(
                task_id=task.id,
                status=TaskStatus.FAILED,
                error=f"Task {task.id} is not pending (status: {task.status.value})"
            )

        self.current_task = task
        task.transition(TaskStatus.RUNNING)
        self.log_activity("Executing task", input={"task_id": task.id, "type": task.type})

        try:
            result = await self._execute(task, context)
        except Exception as e:
            logger.error(f"Task {task.id} ({task.type}) failed: {e}", exc_info=True)
            result = TaskResult(task_id=task.id, status=TaskStatus.FAILED, error=str(e))

        if result.status not in (TaskStatus.COMPLETED, TaskStatus.FAILED):
            result = TaskResult(
                task_id=task.id,
                status=TaskStatus.FAILED,
                error=f"Handler returned unresolved status {result.status.value}"
            )
        task.transition(result.status)
        self.current_task = None
        self.log_activity(
            "Task finished",
            output={"task_id": task.id, "status": result.status.value},
            error=result.error
        )
        return result

    @abstractmethod
    async def _handle_message(self, message: AgentMessage, context: Any) -> AgentResponse:
        """Produce a response for a message. May raise."""
        pass

    @abstractmethod
    async def _execute(self, task: AgentTask, context: Any) -> TaskResult:
        """Perform the work for a running task. May raise."""
        pass

    def get_capabilities(self) -> list[str]:
        return list(self.capabilities)

    def get_agent_info(self) -> dict[str, Any]:
        return {
            "id": self.agent_id,
            "type": self.agent_type.value,
            "capabilities": self.get_capabilities(),
            "is_active": self.is_active,
        }

    def activate(self) -> None:
        self.is_active = True
        logger.info(f"Agent {self.agent_type.value} activated")

    def deactivate(self) -> None:
        self.is_active = False
        self.current_task = None
        logger.info(f"Agent {self.agent_type.value} deactivated")

    def validate_task(self, task: AgentTask) -> bool:
        """Check whether any capability tag occurs in the task type."""
        task_type = task.type.lower()
        return any(capability.lower() in task_type for capability in self.capabilities)

    def create_message(
        self,
        content: str,
        role: Literal["user", "assistant", "system"] = "assistant",
        metadata: Optional[dict[str, Any]] = None
    ) -> AgentMessage:
        return AgentMessage(
            content=content,
            role=role,
            agent_type=self.agent_type,
            metadata=metadata or {}
        )

    def create_task(
        self,
        task_type: str,
        description: str,
        input: Optional[dict[str, Any]] = None,
        priority: int = 1,
        dependencies: Optional[list[str]] = None
    ) -> AgentTask:
        return AgentTask(
            type=task_type,
            description=description,
            input=input or {},
            priority=priority,
            dependencies=dependencies or [],
            assigned_agent=self.agent_type
        )

    def create_response(
        self,
        content: str,
        status: Literal["thinking", "working", "completed", "error"] = "completed",
        tasks: Optional[list[AgentTask]] = None,
        metadata: Optional[dict[str, Any]] = None
    ) -> AgentResponse:
        return AgentResponse(
            agent_type=self.agent_type,
            message=self.create_message(content),
            tasks=tasks or [],
            status=status,
            metadata=metadata or {}
        )

    def log_activity(
        self,
        action: str,
        input: Any = None,
        output: Any = None,
        error: Optional[str] = None
    ) -> None:
        logger.info(
            f"Agent {self.agent_type.value} - {action}",
            extra={
                "agent_id": self.agent_id,
                "action": action,
                "activity_input": input,
                "activity_output": output,
                "activity_error": error,
            }
        )


class ValidationError(Exception):
    """Raised when required input is missing or malformed."""
    pass


class RoutingError(Exception):
    """Raised when no agent or handler is registered for a request."""
    pass


class InvariantError(Exception):
    """Raised when internal state breaks an invariant that should always hold."""
    pass
