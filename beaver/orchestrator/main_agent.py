"""Main agent: per-project phase tracking, task bookkeeping and delegation."""

import logging
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Mapping, Optional

from pydantic import BaseModel

from beaver.orchestrator.agent import (
    Agent,
    AgentMessage,
    AgentResponse,
    AgentTask,
    AgentType,
    RoutingError,
    TaskResult,
    TaskStatus,
    ValidationError,
)
from beaver.orchestrator.classification import AGENT_PRIORITIES, IntentClassifier, KeywordClassifier
from beaver.orchestrator.context_store import ProjectContextStore
from beaver.orchestrator.project_context import (
    ProjectBlueprint,
    ProjectContext,
    SandboxInfo,
    next_phase,
)
from beaver.sandbox.sandbox_manager import SandboxManager

logger = logging.getLogger(__name__)

TaskHandler = Callable[[AgentTask, ProjectContext], Awaitable[TaskResult]]


class PhaseWork(BaseModel):
    """One fixed unit of work run by coordinate_development."""
    agent_type: AgentType
    type: str
    description: str


PHASE_WORK: dict[str, list[PhaseWork]] = {
    "setup": [
        PhaseWork(agent_type=AgentType.BACKEND, type="setup_server", description="Setup Express.js server"),
        PhaseWork(agent_type=AgentType.DATA_LOGIC, type="setup_database", description="Setup database schema"),
    ],
    "development": [
        PhaseWork(agent_type=AgentType.FRONTEND, type="create_components", description="Create UI components"),
        PhaseWork(agent_type=AgentType.BACKEND, type="create_apis", description="Create API endpoints"),
    ],
    "testing": [
        PhaseWork(agent_type=AgentType.TESTING, type="write_tests", description="Write unit and end-to-end tests"),
    ],
    "deployment": [
        PhaseWork(
            agent_type=AgentType.DEPLOYMENT,
            type="configure_deployment",
            description="Create Dockerfiles and CI pipeline"
        ),
    ],
}


class MainAgent(Agent):
    """Turns a blueprint into setup tasks and delegates work to specialist agents."""

    error_reply = "I encountered an error while coordinating the project. Let me try a different approach."

    def __init__(
        self,
        sandbox_manager: SandboxManager,
        specialists: Optional[Mapping[AgentType, Agent]] = None,
        classifier: Optional[IntentClassifier] = None,
        context_store: Optional[ProjectContextStore] = None,
        sandbox_template: str = "nextjs-typescript"
    ):
        """
        Initialize main agent.

        Args:
            sandbox_manager: Sandbox relay used for setup tasks
            specialists: Specialist agents by role, fixed after construction
            classifier: Free-text to tag mapping
            context_store: Per-project context store
            sandbox_template: Provider template for new project sandboxes
        """
        super().__init__(
            AgentType.MAIN,
            [
                "orchestration",
                "task_management",
                "project_coordination",
                "agent_communication",
                "workflow_management",
            ]
        )
        self.sandbox_manager = sandbox_manager
        self.specialists: Mapping[AgentType, Agent] = MappingProxyType(dict(specialists or {}))
        self.classifier = classifier if classifier is not None else KeywordClassifier()
        self.context_store = context_store if context_store is not None else ProjectContextStore()
        self.sandbox_template = sandbox_template

        self._handlers: Mapping[str, TaskHandler] = MappingProxyType({
            "create_project_structure": self.create_project_structure,
            "setup_sandbox": self.setup_sandbox,
            "coordinate_development": self.coordinate_development,
            "manage_workflow": self.manage_workflow,
        })

        for agent_type in self.specialists:
            logger.info(f"Registered {agent_type.value} agent with Main Agent")

    async def get_project_context(self, project_id: str) -> Optional[ProjectContext]:
        context = await self.context_store.get(project_id)
        if context is not None:
            self._attach_sandbox(context)
        return context

    async def get_or_create_project_context(
        self,
        project_id: Optional[str],
        user_id: Optional[str]
    ) -> ProjectContext:
        """
        Return the context for a project, creating it on first use.

        Raises:
            ValidationError: If project_id or user_id is missing
        """
        if not project_id or not user_id:
            raise ValidationError("Project ID and User ID are required")
        context = await self.context_store.get_or_create(project_id, user_id)
        self._attach_sandbox(context)
        return context

    async def close_project(self, project_id: str) -> bool:
        """Destroy the project sandbox and drop its context."""
        context = await self.get_project_context(project_id)
        if context is None:
            return False

        if context.sandbox is not None:
            await self.sandbox_manager.delete_sandbox(context.sandbox.provider_id)
        self.context_store.remove(project_id)
        logger.info(f"Closed project {project_id}")
        return True

    async def _handle_message(self, message: AgentMessage, context: Any) -> AgentResponse:
        project_context = await self._resolve_context(message, context)

        if message.metadata.get("blueprint") is not None:
            return await self.initialize_project(message, project_context)
        if "task" in message.content or message.metadata.get("task"):
            return await self.handle_task_request(message, project_context)
        return await self.coordinate_agents(message, project_context)

    async def initialize_project(self, message: AgentMessage, context: ProjectContext) -> AgentResponse:
        """
        Record the blueprint, create the setup tasks and run the sandbox task now.

        Raises:
            ValidationError: If the message carries no blueprint
        """
        blueprint = message.metadata.get("blueprint")
        if blueprint is None:
            raise ValidationError("No blueprint provided for project initialization")
        if not isinstance(blueprint, ProjectBlueprint):
            blueprint = ProjectBlueprint.model_validate(blueprint)

        context.blueprint = blueprint
        context.requirements = blueprint.requirements
        context.current_phase = "setup"

        sandbox_task = self.create_task(
            "setup_sandbox",
            "Create and configure development sandbox",
            input={"project_id": context.project_id, "project_name": blueprint.requirements.project_name},
            priority=1
        )
        structure_task = self.create_task(
            "create_project_structure",
            "Create initial project structure based on blueprint",
            input={"project_id": context.project_id, "blueprint": blueprint},
            priority=2,
            dependencies=[sandbox_task.id]
        )
        context.track(sandbox_task)
        context.track(structure_task)

        sandbox_result = await self.execute_task(sandbox_task, context)

        metadata: dict[str, Any] = {"sandbox": context.sandbox, "next_phase": "development"}
        if sandbox_result.status == TaskStatus.FAILED:
            logger.error(f"Sandbox setup failed for project {context.project_id}: {sandbox_result.error}")
            metadata["sandbox_error"] = sandbox_result.error

        if context.sandbox is not None:
            sandbox_line = f"- Sandbox ready (ID: {context.sandbox.id})"
            preview = context.sandbox.preview_url or "Will be available shortly"
        else:
            sandbox_line = "- Sandbox could not be created yet; setup will be retried"
            preview = "Not available yet"

        return self.create_response(
            "**Project Initialization Started!**\n\n"
            f"I'm setting up your **{blueprint.requirements.project_name}** project:\n\n"
            "**Development Environment:**\n"
            f"{sandbox_line}\n"
            "- Project structure generation queued\n"
            f"- Dependencies to install: {', '.join(blueprint.architecture.frontend)}\n\n"
            "**Next Steps:**\n"
            "1. Configure development environment\n"
            "2. Setup database schema\n"
            "3. Initialize authentication system\n"
            "4. Create basic UI components\n\n"
            f"**Live Preview:** {preview}",
            status="working",
            tasks=[structure_task],
            metadata=metadata
        )

    async def handle_task_request(self, message: AgentMessage, context: ProjectContext) -> AgentResponse:
        text = message.content
        task_type = self.classifier.task_type(text)
        task_input: dict[str, Any] = {"message": text}
        if isinstance(message.metadata.get("task"), dict):
            task_input.update(message.metadata["task"])

        task = self.create_task(task_type, text, input=task_input, priority=self.classifier.priority(text))
        context.track(task)

        result = await self.execute_task(task, context)
        if result.status == TaskStatus.COMPLETED:
            return self.create_response(
                f'Task "{task_type}" has been completed.',
                status="completed",
                tasks=[task],
                metadata={"result": result}
            )
        return self.create_response(
            f'Task "{task_type}" failed: {result.error}',
            status="error",
            tasks=[task],
            metadata={"result": result}
        )

    async def coordinate_agents(self, message: AgentMessage, context: ProjectContext) -> AgentResponse:
        phase = context.current_phase
        required_agents = self.classifier.required_agents(phase, message.content)

        tasks = []
        for agent_type in required_agents:
            task = self.create_task(
                f"{agent_type.value}_work",
                f"Handle {agent_type.value} aspects of: {message.content}",
                input={"message": message.content, "phase": phase},
                priority=AGENT_PRIORITIES.get(agent_type, 3)
            )
            task.assigned_agent = agent_type
            context.track(task)
            tasks.append(task)

        lines = "\n".join(
            f"- **{agent_type.value.upper()} Agent**: Processing {agent_type.value} requirements"
            for agent_type in required_agents
        )
        return self.create_response(
            f"I'm coordinating {len(required_agents)} specialized agents to handle your request:\n\n"
            f"{lines}\n\n"
            "The tasks are queued and will run in priority order. I'll keep you updated on the progress!",
            status="working",
            tasks=tasks,
            metadata={"coordinated_agents": [a.value for a in required_agents], "phase": phase}
        )

    async def execute_pending(self, context: ProjectContext) -> list[TaskResult]:
        """
        Run tracked pending tasks one at a time, most urgent first.

        A task runs only once all of its dependencies have completed, so tasks
        behind a failed dependency stay pending.
        """
        results = []
        while True:
            completed = context.completed_task_ids() | {
                t.id for t in context.active_tasks.values() if t.status == TaskStatus.COMPLETED
            }
            ready = [
                t for t in context.active_tasks.values()
                if t.status == TaskStatus.PENDING and all(dep in completed for dep in t.dependencies)
            ]
            if not ready:
                break
            task = min(ready, key=lambda t: (t.priority, t.created_at))
            results.append(await self.execute_task(task, context))
        return results

    async def _execute(self, task: AgentTask, context: Any) -> TaskResult:
        if not isinstance(context, ProjectContext):
            raise ValidationError(f"Task {task.type} requires a project context")

        handler = self._handlers.get(task.type, self.delegate_task)
        return await handler(task, context)

    async def create_project_structure(self, task: AgentTask, context: ProjectContext) -> TaskResult:
        if context.sandbox is None:
            return TaskResult(
                task_id=task.id,
                status=TaskStatus.FAILED,
                error=f"No sandbox available for project {context.project_id}"
            )

        blueprint = task.input.get("blueprint") or context.blueprint
        if blueprint is None:
            raise ValidationError("No blueprint available for project structure")
        if not isinstance(blueprint, ProjectBlueprint):
            blueprint = ProjectBlueprint.model_validate(blueprint)

        provider_id = context.sandbox.provider_id
        scaffold = await self.sandbox_manager.create_project_structure(provider_id, blueprint)
        if not scaffold.success:
            return TaskResult(
                task_id=task.id,
                status=TaskStatus.FAILED,
                error=f"Project structure creation failed: {scaffold.error}",
                artifacts=scaffold.files_written
            )

        install = await self.sandbox_manager.install_dependencies(provider_id, blueprint.architecture)
        if not install.success:
            return TaskResult(
                task_id=task.id,
                status=TaskStatus.FAILED,
                error=f"Dependency installation failed: {install.error}",
                artifacts=scaffold.files_written
            )

        return TaskResult(
            task_id=task.id,
            status=TaskStatus.COMPLETED,
            output={
                "structure": "Project structure created successfully",
                "failed_commands": scaffold.failed_commands,
                "preview_url": context.sandbox.preview_url,
            },
            artifacts=scaffold.files_written
        )

    async def setup_sandbox(self, task: AgentTask, context: ProjectContext) -> TaskResult:
        project_id = task.input.get("project_id", context.project_id)
        handle = await self.sandbox_manager.create_sandbox(
            project_id,
            template=self.sandbox_template,
            metadata={"projectName": task.input.get("project_name", "")}
        )
        context.sandbox = SandboxInfo(
            id=handle.id,
            provider_id=handle.provider_id,
            preview_url=handle.preview_url,
            mock=handle.mock
        )
        return TaskResult(task_id=task.id, status=TaskStatus.COMPLETED, output=context.sandbox)

    async def coordinate_development(self, task: AgentTask, context: ProjectContext) -> TaskResult:
        phase = context.current_phase
        results: list[TaskResult] = []
        skipped: list[str] = []

        for work in PHASE_WORK.get(phase, []):
            agent = self.specialists.get(work.agent_type)
            if agent is None:
                skipped.append(work.agent_type.value)
                continue
            work_task = agent.create_task(work.type, work.description, input={"phase": phase})
            results.append(await agent.execute_task(work_task, context))

        all_successful = all(r.status == TaskStatus.COMPLETED for r in results)
        return TaskResult(
            task_id=task.id,
            status=TaskStatus.COMPLETED if all_successful else TaskStatus.FAILED,
            output={"phase": phase, "results": results, "skipped_agents": skipped},
            error=None if all_successful else "; ".join(r.error or "unknown error" for r in results if r.error),
            artifacts=[artifact for r in results for artifact in r.artifacts]
        )

    async def manage_workflow(self, task: AgentTask, context: ProjectContext) -> TaskResult:
        resolved = [t for t in context.active_tasks.values() if t.is_resolved]
        failed = [t for t in resolved if t.status == TaskStatus.FAILED]
        for t in resolved:
            context.resolve(t.id)

        previous_phase = context.current_phase
        if not context.active_tasks:
            upcoming = next_phase(previous_phase)
            if upcoming:
                context.current_phase = upcoming
                logger.info(f"Project {context.project_id} moved from {previous_phase} to {upcoming}")

        return TaskResult(
            task_id=task.id,
            status=TaskStatus.COMPLETED,
            output={
                "previous_phase": previous_phase,
                "current_phase": context.current_phase,
                "completed_tasks": len(resolved) - len(failed),
                "failed_tasks": len(failed),
                "active_tasks": len(context.active_tasks),
            }
        )

    async def delegate_task(self, task: AgentTask, context: ProjectContext) -> TaskResult:
        """
        Forward a task to the specialist registered for its type.

        The specialist runs a fresh child task; the result is reported
        against the parent task id.

        Raises:
            RoutingError: If no specialist is registered for the task type
        """
        agent_type = self.classifier.agent_for_task_type(task.type)
        agent = self.specialists.get(agent_type)
        if agent is None:
            raise RoutingError(f"No agent available for task type: {task.type}")

        child = agent.create_task(task.type, task.description, input=task.input, priority=task.priority)
        result = await agent.execute_task(child, context)
        return TaskResult(
            task_id=task.id,
            status=result.status,
            output=result.output,
            error=result.error,
            artifacts=result.artifacts,
            next_tasks=result.next_tasks
        )

    def _attach_sandbox(self, context: ProjectContext) -> None:
        # A restored context may name a sandbox this manager never created
        if context.sandbox is not None and self.sandbox_manager.get_sandbox(context.sandbox.provider_id) is None:
            self.sandbox_manager.restore_sandbox(
                context.project_id,
                context.sandbox.id,
                context.sandbox.provider_id,
                preview_url=context.sandbox.preview_url,
                mock=context.sandbox.mock
            )

    async def _resolve_context(self, message: AgentMessage, context: Any) -> ProjectContext:
        if isinstance(context, ProjectContext):
            return context

        project_id = message.metadata.get("project_id")
        user_id = message.metadata.get("user_id")
        if isinstance(context, Mapping):
            project_id = context.get("project_id", project_id)
            user_id = context.get("user_id", user_id)
        return await self.get_or_create_project_context(project_id, user_id)
