"""Base specialist agent: generates project files with the LLM and writes them to the sandbox."""

import logging
import posixpath
import re
import shlex
from typing import Any, Optional

from beaver.llm.prompt_templates import SPECIALIST_SYSTEM_PROMPTS, get_specialist_prompt
from beaver.llm.text_generation import TextGenerator
from beaver.orchestrator.agent import (
    Agent,
    AgentMessage,
    AgentResponse,
    AgentTask,
    AgentType,
    TaskResult,
    TaskStatus,
)
from beaver.sandbox.sandbox_manager import SandboxManager

logger = logging.getLogger(__name__)

WORKSPACE_ROOT = "/workspace"

# <!-- filepath: x -->, // filepath: x or # filepath: x
FILE_MARKER_PATTERN = re.compile(
    r"(?:<!--\s*filepath:\s*(\S+)\s*-->|//\s*filepath:\s*(\S+)|#\s*filepath:\s*(\S+))",
    re.IGNORECASE
)
CODE_BLOCK_PATTERN = re.compile(r"```[\w.+-]*\n(.*?)```", re.DOTALL)


class SpecialistAgent(Agent):
    """Agent that turns a task into files inside the project sandbox."""

    def __init__(
        self,
        agent_type: AgentType,
        capabilities: list[str],
        text_generator: Optional[TextGenerator] = None,
        sandbox_manager: Optional[SandboxManager] = None
    ):
        """
        Initialize specialist.

        Args:
            agent_type: Role this specialist plays
            capabilities: Capability tags used for routing
            text_generator: LLM port; required to execute tasks
            sandbox_manager: Sandbox relay used to write generated files
        """
        super().__init__(agent_type, capabilities)
        self.text_generator = text_generator
        self.sandbox_manager = sandbox_manager

    @property
    def system_prompt(self) -> str:
        return SPECIALIST_SYSTEM_PROMPTS.get(self.agent_type.value, "You are an expert software engineer.")

    async def _handle_message(self, message: AgentMessage, context: Any) -> AgentResponse:
        if self.text_generator is None:
            return self.create_response(
                f"The {self.agent_type.value} agent is available for tasks, "
                "but conversational replies need a configured language model.",
                status="completed"
            )

        reply = await self.text_generator.generate_text(self.system_prompt, [], message.content)
        return self.create_response(reply, status="completed")

    async def _execute(self, task: AgentTask, context: Any) -> TaskResult:
        if self.text_generator is None:
            raise FileOperationError(f"No text generator configured for {self.agent_type.value} agent")

        llm_response = await self._invoke_llm_for_task(task, context)
        files = self.parse_files(llm_response)
        if not files:
            raise FileOperationError(
                "No files found in LLM response. "
                "Expected a '// filepath: path/to/file' marker before each code block"
            )

        sandbox = getattr(context, "sandbox", None)
        if sandbox is None or self.sandbox_manager is None:
            logger.info(f"No sandbox for task {task.id}, returning {len(files)} generated files")
            return TaskResult(
                task_id=task.id,
                status=TaskStatus.COMPLETED,
                output={"files": files},
                artifacts=list(files)
            )

        written = await self._apply_changes(sandbox.provider_id, files)
        return TaskResult(
            task_id=task.id,
            status=TaskStatus.COMPLETED,
            output={"files_written": written, "sandbox_id": sandbox.provider_id},
            artifacts=written
        )

    async def _invoke_llm_for_task(self, task: AgentTask, context: Any) -> str:
        """
        Invoke LLM with the role prompt for this task.

        Raises:
            ProviderError: If the text generator fails
        """
        existing_files = {}
        sandbox = getattr(context, "sandbox", None)
        if sandbox is not None and self.sandbox_manager is not None:
            for path in task.input.get("files_to_modify", []):
                content = await self.sandbox_manager.read_file(sandbox.provider_id, self._sandbox_path(path))
                if content is not None:
                    existing_files[path] = content

        blueprint = getattr(context, "blueprint", None)
        prompt = get_specialist_prompt(
            agent_type=self.agent_type.value,
            task_description=task.description,
            task_input=task.input,
            project_summary=self._summarize(blueprint) if blueprint else None,
            existing_files=existing_files or None
        )
        return await self.text_generator.generate_text(self.system_prompt, [], prompt)

    @staticmethod
    def parse_files(llm_response: str) -> dict[str, str]:
        """
        Extract {path: content} from filepath markers followed by fenced blocks.

        A marker without a following code block is skipped.
        """
        files: dict[str, str] = {}
        markers = list(FILE_MARKER_PATTERN.finditer(llm_response))

        for i, marker in enumerate(markers):
            path = marker.group(1) or marker.group(2) or marker.group(3)
            end_pos = markers[i + 1].start() if i + 1 < len(markers) else len(llm_response)
            block = CODE_BLOCK_PATTERN.search(llm_response, marker.end(), end_pos)
            if block is None:
                logger.warning(f"No code block found for {path}")
                continue
            files[path] = block.group(1).rstrip() + "\n"

        return files

    async def _apply_changes(self, provider_id: str, files: dict[str, str]) -> list[str]:
        written = []
        for path, content in files.items():
            target = self._sandbox_path(path)
            parent = posixpath.dirname(target)
            await self.sandbox_manager.execute_command(provider_id, f"mkdir -p {shlex.quote(parent)}")
            if not await self.sandbox_manager.write_file(provider_id, target, content):
                raise FileOperationError(f"Failed to write {target} to sandbox {provider_id}")
            written.append(target)
            logger.info(f"Applied changes to {target}")
        return written

    @staticmethod
    def _sandbox_path(path: str) -> str:
        if path.startswith("/"):
            return path
        return posixpath.join(WORKSPACE_ROOT, path)

    @staticmethod
    def _summarize(blueprint: Any) -> str:
        requirements = blueprint.requirements
        architecture = blueprint.architecture
        return (
            f"Project: {requirements.project_name}\n"
            f"Description: {requirements.description}\n"
            f"Features: {', '.join(requirements.features) or 'none listed'}\n"
            f"Frontend: {', '.join(architecture.frontend)}\n"
            f"Backend: {', '.join(architecture.backend)}\n"
            f"Database: {', '.join(architecture.database)}"
        )


class FileOperationError(Exception):
    """Raised when generated files cannot be parsed or written."""
    pass
