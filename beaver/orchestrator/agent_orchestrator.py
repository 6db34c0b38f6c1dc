"""Agent orchestrator: routes messages and named tasks to registered agents."""

import logging
from collections import OrderedDict
from contextlib import asynccontextmanager
from types import MappingProxyType
from typing import Any, AsyncIterator, Iterable, Mapping, Optional, Union

from pydantic import BaseModel

from beaver.llm.text_generation import TextGenerator, create_text_generator
from beaver.locking.local_lock import LocalLock, LockContext, LockManager
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
from beaver.orchestrator.classification import KeywordClassifier
from beaver.orchestrator.context_store import EvictCallback, LoadCallback, ProjectContextStore
from beaver.orchestrator.events import StreamListener, StreamRegistry
from beaver.orchestrator.main_agent import MainAgent
from beaver.orchestrator.planner_agent import PlannerAgent
from beaver.orchestrator.project_context import ProjectContext
from beaver.orchestrator.specialized_agents import (
    BackendAgent,
    DataLogicAgent,
    DeploymentAgent,
    FrontendAgent,
    TestingAgent,
    UIUXAgent,
)
from beaver.sandbox.e2b_client import E2BSandboxClient, SandboxProvider
from beaver.sandbox.sandbox_manager import SandboxManager

logger = logging.getLogger(__name__)

# Keys the orchestrator sets itself; callers cannot supply them
RESERVED_METADATA_KEYS = frozenset({"blueprint", "project_id", "user_id", "conversation_id"})


class ConversationLog(BaseModel):
    """Recent turns of one conversation."""
    conversation_id: str
    project_id: str
    user_id: str
    messages: list[AgentMessage] = []


class AgentOrchestrator:
    """
    Entry point for the API layer.

    Projects without a blueprint talk to the planner; once the planner has
    produced one, messages go to the main agent. Every operation that touches
    a project runs inside that project's exclusive section.
    """

    def __init__(
        self,
        agents: Iterable[Agent],
        lock_manager: Optional[LockManager] = None,
        lock_timeout: int = 300,
        history_limit: int = 200,
        max_conversations: int = 1024,
        streams: Optional[StreamRegistry] = None
    ):
        """
        Initialize orchestrator.

        Args:
            agents: Agents to register; planner and main are required
            lock_manager: Per-project lock manager (LocalLock or RedisLock)
            lock_timeout: Seconds to wait for a project lock
            history_limit: Messages kept per conversation
            max_conversations: Conversations kept in memory
            streams: Listener registry for push notifications

        Raises:
            ValueError: If an agent type is registered twice or a required agent is missing
        """
        registry: dict[AgentType, Agent] = {}
        for agent in agents:
            if agent.agent_type in registry:
                raise ValueError(f"Agent type registered twice: {agent.agent_type.value}")
            registry[agent.agent_type] = agent

        for required in (AgentType.PLANNER, AgentType.MAIN):
            if required not in registry:
                raise ValueError(f"Orchestrator requires a {required.value} agent")

        self.agents: Mapping[AgentType, Agent] = MappingProxyType(registry)
        self.planner: PlannerAgent = registry[AgentType.PLANNER]
        self.main: MainAgent = registry[AgentType.MAIN]
        self.lock_manager = lock_manager if lock_manager is not None else LocalLock()
        self.lock_timeout = lock_timeout
        self.history_limit = history_limit
        self.max_conversations = max_conversations
        self.streams = streams if streams is not None else StreamRegistry()
        self.conversations: OrderedDict[str, ConversationLog] = OrderedDict()

        for agent in self.agents.values():
            agent.activate()

        logger.info(f"Orchestrator ready with agents: {', '.join(a.value for a in self.agents)}")

    async def handle_message(
        self,
        text: str,
        project_id: Optional[str],
        user_id: Optional[str],
        conversation_id: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None
    ) -> AgentResponse:
        """
        Route one user message and return the agent's response.

        Raises:
            ValidationError: If text, project_id or user_id is missing
            LockTimeoutError: If the project stays busy past lock_timeout
        """
        if not text or not text.strip():
            raise ValidationError("Message content is required")
        self._require_ids(project_id, user_id)

        async with self._project_section(project_id):
            context = await self._project_context(project_id, user_id)
            previous_phase = context.current_phase

            message_metadata = {
                **{k: v for k, v in (metadata or {}).items() if k not in RESERVED_METADATA_KEYS},
                "project_id": project_id,
                "user_id": user_id,
                "conversation_id": conversation_id,
            }
            if context.blueprint is None:
                agent: Agent = self.planner
            else:
                agent = self.main
                if context.current_phase == "planning":
                    message_metadata["blueprint"] = context.blueprint

            await self.streams.emit(project_id, "agent_typing", agent_type=agent.agent_type.value)

            message = AgentMessage(content=text, role="user", metadata=message_metadata)
            self._record(conversation_id, project_id, user_id, message)

            response = await agent.process_message(message, context)

            blueprint = response.metadata.get("blueprint")
            if agent is self.planner and blueprint is not None:
                context.blueprint = blueprint
                context.requirements = blueprint.requirements
                self.planner.end_session(PlannerAgent.session_key(message, context))
                logger.info(f"Blueprint recorded for project {project_id}")
                await self.streams.emit(project_id, "blueprint_ready", blueprint=blueprint.model_dump(mode="json"))

            self._record(conversation_id, project_id, user_id, response.message)
            await self._emit_phase_change(context, previous_phase)
            await self.streams.emit(
                project_id,
                "agent_response",
                agent_type=response.agent_type.value,
                status=response.status,
                message=response.message.model_dump(mode="json"),
                conversation_id=conversation_id
            )
            return response

    async def execute_named_task(
        self,
        agent_type: Union[AgentType, str],
        task_type: str,
        input: Optional[dict[str, Any]],
        project_id: Optional[str],
        user_id: Optional[str]
    ) -> TaskResult:
        """
        Run one task on a specific agent.

        An unknown agent yields a Failed result rather than an exception.

        Raises:
            ValidationError: If project_id or user_id is missing, or priority is not an integer
        """
        self._require_ids(project_id, user_id)
        input = dict(input or {})

        agent = self._lookup_agent(agent_type)
        if agent is None:
            error = RoutingError(f"No agent registered for type: {agent_type}")
            logger.error(str(error))
            orphan = AgentTask(type=task_type, description=f"Execute {task_type}", input=input)
            return TaskResult(task_id=orphan.id, status=TaskStatus.FAILED, error=str(error))

        async with self._project_section(project_id):
            context = await self._project_context(project_id, user_id)
            previous_phase = context.current_phase

            priority_value = input.pop("priority", 1)
            try:
                priority = int(priority_value)
            except (TypeError, ValueError):
                raise ValidationError(f"Task priority must be an integer, got {priority_value!r}")

            task = agent.create_task(
                task_type,
                input.pop("description", f"Execute {task_type}"),
                input=input,
                priority=priority
            )
            await self.streams.emit(
                project_id, "task_started",
                task_id=task.id, task_type=task.type, agent_type=agent.agent_type.value
            )

            result = await agent.execute_task(task, context)

            await self._emit_task_completed(project_id, task, result)
            await self._emit_phase_change(context, previous_phase)
            return result

    async def run_pending_tasks(self, project_id: Optional[str], user_id: Optional[str]) -> list[TaskResult]:
        """Execute the project's runnable pending tasks in priority order."""
        self._require_ids(project_id, user_id)

        async with self._project_section(project_id):
            context = await self._project_context(project_id, user_id)
            previous_phase = context.current_phase
            tasks = dict(context.active_tasks)

            results = await self.main.execute_pending(context)

            for result in results:
                await self._emit_task_completed(project_id, tasks.get(result.task_id), result)
            await self._emit_phase_change(context, previous_phase)
            return results

    def get_status(self, project_id: str) -> dict[str, Any]:
        """Snapshot of one project's coordination state. Reads only."""
        context = self.main.context_store.peek(project_id)
        return {
            "project_id": project_id,
            "phase": context.current_phase if context else None,
            "active_task_count": len(context.active_tasks) if context else 0,
            "completed_task_count": len(context.completed_tasks) if context else 0,
            "has_blueprint": bool(context and context.blueprint is not None),
            "sandbox_id": context.sandbox.provider_id if context and context.sandbox else None,
            "agents": [agent_type.value for agent_type in self.agents],
        }

    def get_conversation_history(self, conversation_id: str, user_id: str) -> list[AgentMessage]:
        """
        Return the recent messages of a conversation.

        Raises:
            ValidationError: If the conversation belongs to another user
        """
        log = self.conversations.get(conversation_id)
        if log is None:
            return []
        if log.user_id != user_id:
            raise ValidationError(f"Conversation {conversation_id} does not belong to user {user_id}")
        return list(log.messages)

    def add_stream_listener(self, project_id: str, listener: StreamListener) -> None:
        self.streams.add(project_id, listener)

    def remove_stream_listener(self, project_id: str, listener: StreamListener) -> None:
        self.streams.remove(project_id, listener)

    async def close_project(self, project_id: str) -> bool:
        """Destroy the project's sandbox and forget its state."""
        async with self._project_section(project_id):
            closed = await self.main.close_project(project_id)

            for conversation_id in [c for c, log in self.conversations.items() if log.project_id == project_id]:
                del self.conversations[conversation_id]
                self.planner.end_session(conversation_id)
            self.planner.end_session(project_id)

            if closed:
                await self.streams.emit(project_id, "project_closed")
            return closed

    async def shutdown(self) -> None:
        """Hand every cached context to the store's eviction callback."""
        await self.main.context_store.flush()
        for agent in self.agents.values():
            agent.deactivate()

    @asynccontextmanager
    async def _project_section(self, project_id: str) -> AsyncIterator[None]:
        """Hold the project lock and keep its context resident until the section ends."""
        async with LockContext(self.lock_manager, f"project:{project_id}", self.lock_timeout):
            async with self.main.context_store.pinned(project_id):
                yield

    def _lookup_agent(self, agent_type: Union[AgentType, str]) -> Optional[Agent]:
        try:
            return self.agents.get(AgentType(agent_type))
        except ValueError:
            return None

    async def _project_context(self, project_id: str, user_id: str) -> ProjectContext:
        context = await self.main.get_or_create_project_context(project_id, user_id)
        if context.user_id != user_id:
            raise ValidationError(f"Project {project_id} does not belong to user {user_id}")
        return context

    @staticmethod
    def _require_ids(project_id: Optional[str], user_id: Optional[str]) -> None:
        if not project_id or not user_id:
            raise ValidationError("Project ID and User ID are required")

    def _record(
        self,
        conversation_id: Optional[str],
        project_id: str,
        user_id: str,
        message: AgentMessage
    ) -> None:
        if not conversation_id:
            return

        log = self.conversations.get(conversation_id)
        if log is None:
            log = ConversationLog(conversation_id=conversation_id, project_id=project_id, user_id=user_id)
            self.conversations[conversation_id] = log
            while len(self.conversations) > self.max_conversations:
                self.conversations.popitem(last=False)
        self.conversations.move_to_end(conversation_id)

        log.messages.append(message)
        if len(log.messages) > self.history_limit:
            del log.messages[:-self.history_limit]

    async def _emit_task_completed(self, project_id: str, task: Optional[AgentTask], result: TaskResult) -> None:
        await self.streams.emit(
            project_id,
            "task_completed",
            task_id=result.task_id,
            task_type=task.type if task else None,
            status=result.status.value,
            error=result.error,
            artifacts=result.artifacts
        )

    async def _emit_phase_change(self, context: ProjectContext, previous_phase: str) -> None:
        if context.current_phase != previous_phase:
            await self.streams.emit(
                context.project_id,
                "phase_changed",
                previous_phase=previous_phase,
                phase=context.current_phase
            )


def create_orchestrator(
    settings: Any,
    text_generator: Optional[TextGenerator] = None,
    sandbox_provider: Optional[SandboxProvider] = None,
    lock_manager: Optional[LockManager] = None,
    on_evict: Optional[EvictCallback] = None,
    loader: Optional[LoadCallback] = None
) -> AgentOrchestrator:
    """
    Wire the agents, ports and stores described by settings.

    Collaborators passed explicitly take precedence over the ones settings
    would build.
    """
    if text_generator is None:
        text_generator = create_text_generator(settings)

    if sandbox_provider is None and settings.e2b_api_key:
        sandbox_provider = E2BSandboxClient(
            api_key=settings.e2b_api_key,
            base_url=settings.e2b_base_url,
            timeout=settings.port_timeout
        )
    if sandbox_provider is None:
        logger.warning("E2B_API_KEY not set; sandboxes will run in mock mode")

    if lock_manager is None:
        if settings.redis_url:
            import redis.asyncio as redis
            from beaver.locking.redis_lock import RedisLock
            lock_manager = RedisLock(redis.from_url(settings.redis_url))
        else:
            lock_manager = LocalLock()

    classifier = KeywordClassifier()
    sandbox_manager = SandboxManager(
        provider=sandbox_provider,
        timeout=settings.port_timeout,
        default_template=settings.sandbox_template
    )
    context_store = ProjectContextStore(
        max_size=settings.context_cache_size,
        ttl_seconds=settings.context_ttl,
        on_evict=on_evict,
        loader=loader
    )

    specialists = [
        UIUXAgent(text_generator, sandbox_manager),
        FrontendAgent(text_generator, sandbox_manager),
        BackendAgent(text_generator, sandbox_manager),
        DataLogicAgent(text_generator, sandbox_manager),
        TestingAgent(text_generator, sandbox_manager),
        DeploymentAgent(text_generator, sandbox_manager),
    ]
    main = MainAgent(
        sandbox_manager,
        specialists={agent.agent_type: agent for agent in specialists},
        classifier=classifier,
        context_store=context_store,
        sandbox_template=settings.sandbox_template
    )
    planner = PlannerAgent(classifier=classifier, text_generator=text_generator)

    return AgentOrchestrator(
        [planner, main, *specialists],
        lock_manager=lock_manager,
        lock_timeout=settings.lock_timeout,
        history_limit=settings.conversation_history_limit
    )
