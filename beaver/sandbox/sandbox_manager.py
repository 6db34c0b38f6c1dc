"""Project-to-sandbox mapping with an offline mock fallback."""

import asyncio
import json
import logging
import re
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Optional, TypeVar

from pydantic import BaseModel, Field

from beaver.sandbox.e2b_client import (
    CommandResult,
    FileSystemNode,
    SandboxError,
    SandboxNotFoundError,
    SandboxProvider,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

MOCK_PREVIEW_URL = "http://localhost:3000"
MOCK_ID_PREFIX = "mock_"


class SandboxHandle(BaseModel):
    """Sandbox tracked by the manager."""
    id: str
    provider_id: str
    project_id: str
    status: str = "active"
    preview_url: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    mock: bool = False


class SeedFile(BaseModel):
    path: str
    content: str


class ScaffoldResult(BaseModel):
    """Result of scaffolding a project inside a sandbox."""
    success: bool
    files_written: list[str] = []
    failed_commands: list[str] = []
    error: Optional[str] = None


class InstallResult(BaseModel):
    success: bool
    error: Optional[str] = None


class SandboxManager:
    """
    Maps projects to remote sandboxes and relays operations to the provider.

    When the provider is missing or sandbox creation fails, a mock handle is
    returned and every later operation on it answers with canned successes.
    """

    def __init__(
        self,
        provider: Optional[SandboxProvider] = None,
        timeout: float = 30.0,
        default_template: str = "node"
    ):
        """
        Initialize sandbox manager.

        Args:
            provider: Sandbox provider, None for mock-only mode
            timeout: Seconds allowed per provider call
            default_template: Template used when none is requested
        """
        self.provider = provider
        self.timeout = timeout
        self.default_template = default_template
        self.active_sandboxes: dict[str, SandboxHandle] = {}

    async def create_sandbox(
        self,
        project_id: str,
        template: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None
    ) -> SandboxHandle:
        """
        Create a sandbox for a project, degrading to a mock handle on failure.

        A project keeps a single sandbox: a live handle is returned as is, and a
        mock handle is replaced once a provider is available.

        Args:
            project_id: Project identifier
            template: Provider template id
            metadata: Extra metadata stored with the sandbox

        Returns:
            SandboxHandle (mock=True when the provider was not used)
        """
        existing = self.active_sandboxes.get(f"sandbox_{project_id}")
        if existing is not None:
            if not existing.mock or self.provider is None:
                logger.info(f"Reusing sandbox {existing.provider_id} for project {project_id}")
                return existing
            del self.active_sandboxes[existing.id]

        logger.info(f"Creating sandbox for project: {project_id}")

        if self.provider is None:
            logger.info("No sandbox provider configured, using mock sandbox")
            return self._create_mock(project_id)

        try:
            remote = await self._bounded(
                self.provider.create_sandbox(
                    template or self.default_template,
                    {"projectId": project_id, **(metadata or {})}
                ),
                "create_sandbox"
            )
        except Exception as e:
            logger.error(f"Failed to create sandbox, falling back to mock: {e}")
            return self._create_mock(project_id)

        sandbox = SandboxHandle(
            id=f"sandbox_{project_id}",
            provider_id=remote.id,
            project_id=project_id,
            preview_url=remote.url or f"https://{remote.id}.e2b.dev"
        )
        self.active_sandboxes[sandbox.id] = sandbox

        await self._initialize_sandbox(sandbox.provider_id)

        logger.info(f"Sandbox created successfully: {sandbox.id} ({sandbox.provider_id})")
        return sandbox

    async def execute_command(self, provider_id: str, command: str) -> CommandResult:
        sandbox = self.get_sandbox(provider_id)
        if sandbox is None:
            logger.error(f"Command execution failed, sandbox not found: {provider_id}")
            return CommandResult(stderr=f"Sandbox not found: {provider_id}", exit_code=1)

        if sandbox.mock:
            return self._mock_command_execution(command)

        try:
            result = await self._bounded(self.provider.run_command(provider_id, command), "run_command")
        except SandboxError as e:
            logger.error(f"Command execution failed in sandbox {provider_id}: {e}")
            return CommandResult(stderr=str(e), exit_code=1)

        logger.info(f"Command executed in sandbox {provider_id}: {command} (exit {result.exit_code})")
        return result

    async def write_file(self, provider_id: str, path: str, content: str) -> bool:
        sandbox = self.get_sandbox(provider_id)
        if sandbox is None:
            logger.error(f"Cannot write {path}, sandbox not found: {provider_id}")
            return False

        if sandbox.mock:
            logger.info(f"Mock: writing file {path} in sandbox {provider_id}")
            return True

        try:
            await self._bounded(self.provider.write_file(provider_id, path, content), "write_file")
        except SandboxError as e:
            logger.error(f"Failed to write file {path} in sandbox {provider_id}: {e}")
            return False

        logger.info(f"File written successfully: {path} in sandbox {provider_id}")
        return True

    async def read_file(self, provider_id: str, path: str) -> Optional[str]:
        sandbox = self.get_sandbox(provider_id)
        if sandbox is None:
            logger.error(f"Cannot read {path}, sandbox not found: {provider_id}")
            return None

        if sandbox.mock:
            return f"// Mock content for {path}\nexport default function Page() {{\n  return <div>Hello World</div>;\n}}\n"

        try:
            return await self._bounded(self.provider.read_file(provider_id, path), "read_file")
        except SandboxError as e:
            logger.error(f"Failed to read file {path} from sandbox {provider_id}: {e}")
            return None

    async def get_file_system(self, provider_id: str, path: str = "/") -> list[FileSystemNode]:
        sandbox = self.get_sandbox(provider_id)
        if sandbox is None:
            logger.error(f"Cannot list files, sandbox not found: {provider_id}")
            return []

        if sandbox.mock:
            return self._mock_file_system()

        try:
            return await self._bounded(self.provider.list_files(provider_id, path), "list_files")
        except SandboxError as e:
            logger.error(f"Failed to get file system for sandbox {provider_id}: {e}")
            return []

    async def create_project_structure(self, provider_id: str, blueprint: Any) -> ScaffoldResult:
        """
        Run the scaffold commands and write the seed files.

        Failed commands are logged and skipped; a seed file that cannot be
        written fails the scaffold. Already applied steps are not undone.
        """
        if self.get_sandbox(provider_id) is None:
            return ScaffoldResult(success=False, error=f"Sandbox not found: {provider_id}")

        failed_commands = []
        for command in self._project_setup_commands():
            result = await self.execute_command(provider_id, command)
            if not result.success:
                logger.warning(f"Command failed but continuing: {command} ({result.stderr})")
                failed_commands.append(command)

        files_written = []
        for seed in self.generate_initial_files(blueprint):
            if not await self.write_file(provider_id, seed.path, seed.content):
                return ScaffoldResult(
                    success=False,
                    files_written=files_written,
                    failed_commands=failed_commands,
                    error=f"Failed to write {seed.path}"
                )
            files_written.append(seed.path)

        return ScaffoldResult(success=True, files_written=files_written, failed_commands=failed_commands)

    async def install_dependencies(self, provider_id: str, architecture: Any = None) -> InstallResult:
        """
        Install client and server packages, then generate the ORM client.

        Args:
            provider_id: Provider sandbox id
            architecture: Blueprint architecture; a side with no listed technologies
                is skipped, and the ORM client is only generated for a Prisma backend.
                None installs both sides.

        Returns:
            InstallResult (ORM generation failures are logged, not returned)
        """
        frontend = getattr(architecture, "frontend", None)
        backend = getattr(architecture, "backend", None)

        commands = []
        if architecture is None or frontend:
            commands.append("cd client && npm install")
        if architecture is None or backend:
            commands.append("cd server && npm install")

        for command in commands:
            result = await self.execute_command(provider_id, command)
            if not result.success:
                return InstallResult(success=False, error=result.stderr or f"'{command}' failed")

        if architecture is None or any("prisma" in tech.lower() for tech in backend or []):
            codegen = await self.execute_command(provider_id, "cd server && npx prisma generate")
            if not codegen.success:
                logger.warning(f"Prisma client generation failed in sandbox {provider_id}: {codegen.stderr}")

        return InstallResult(success=True)

    async def delete_sandbox(self, provider_id: str) -> bool:
        """
        Destroy a sandbox and forget its handle.

        An id this manager does not track is still destroyed on the provider
        unless it names a mock sandbox; a provider that no longer knows it
        counts as deleted.
        """
        sandbox = self.get_sandbox(provider_id)
        if sandbox is None:
            if self.provider is None or provider_id.startswith(MOCK_ID_PREFIX):
                return True
            try:
                await self._bounded(self.provider.destroy_sandbox(provider_id), "destroy_sandbox")
            except SandboxNotFoundError:
                return True
            except SandboxError as e:
                logger.error(f"Failed to delete untracked sandbox {provider_id}: {e}")
                return False
            logger.info(f"Untracked sandbox deleted: {provider_id}")
            return True

        if not sandbox.mock:
            try:
                await self._bounded(self.provider.destroy_sandbox(provider_id), "destroy_sandbox")
            except SandboxError as e:
                logger.error(f"Failed to delete sandbox {provider_id}: {e}")
                return False

        del self.active_sandboxes[sandbox.id]
        logger.info(f"Sandbox deleted: {provider_id}")
        return True

    def restore_sandbox(
        self,
        project_id: str,
        sandbox_id: str,
        provider_id: str,
        preview_url: Optional[str] = None,
        mock: bool = False
    ) -> Optional[SandboxHandle]:
        """
        Track a sandbox created by an earlier process.

        Returns:
            The tracked handle, or None when a remote sandbox is restored without a provider
        """
        existing = self.get_sandbox(provider_id)
        if existing is not None:
            return existing
        if not mock and self.provider is None:
            logger.warning(f"Cannot restore sandbox {provider_id} for project {project_id}: no provider configured")
            return None

        sandbox = SandboxHandle(
            id=sandbox_id,
            provider_id=provider_id,
            project_id=project_id,
            preview_url=preview_url,
            mock=mock
        )
        self.active_sandboxes[sandbox.id] = sandbox
        logger.info(f"Restored sandbox {provider_id} for project {project_id}")
        return sandbox

    def get_sandbox(self, provider_id: str) -> Optional[SandboxHandle]:
        for sandbox in self.active_sandboxes.values():
            if sandbox.provider_id == provider_id:
                return sandbox
        return None

    def generate_initial_files(self, blueprint: Any) -> list[SeedFile]:
        requirements = blueprint.requirements
        slug = re.sub(r"\s+", "-", requirements.project_name.strip().lower()) or "beaver-project"
        package_json = {
            "name": slug,
            "private": True,
            "scripts": {
                "dev": 'concurrently "npm run dev:server" "npm run dev:client"',
                "dev:client": "cd client && npm run dev",
                "dev:server": "cd server && npm run dev",
            },
        }
        readme = (
            f"# {requirements.project_name}\n\n"
            f"{requirements.description}\n\n"
            "## Getting Started\n\n"
            "```bash\nnpm run dev\n```\n"
        )
        return [
            SeedFile(path="/workspace/package.json", content=json.dumps(package_json, indent=2)),
            SeedFile(path="/workspace/README.md", content=readme),
        ]

    async def _initialize_sandbox(self, provider_id: str) -> None:
        for command in ("mkdir -p /workspace", "cd /workspace && git init"):
            await self.execute_command(provider_id, command)

    def _create_mock(self, project_id: str) -> SandboxHandle:
        sandbox = SandboxHandle(
            id=f"sandbox_{project_id}",
            provider_id=f"{MOCK_ID_PREFIX}{int(time.time() * 1000)}_{project_id}",
            project_id=project_id,
            preview_url=MOCK_PREVIEW_URL,
            mock=True
        )
        self.active_sandboxes[sandbox.id] = sandbox
        return sandbox

    async def _bounded(self, call: Awaitable[T], operation: str) -> T:
        try:
            return await asyncio.wait_for(call, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise SandboxError(f"{operation} timed out after {self.timeout}s") from e

    @staticmethod
    def _project_setup_commands() -> list[str]:
        return [
            "mkdir -p client server",
            "cd client && npm init -y",
            "cd server && npm init -y",
        ]

    @staticmethod
    def _mock_command_execution(command: str) -> CommandResult:
        if "npm install" in command:
            return CommandResult(stdout="Dependencies installed successfully")
        if "prisma generate" in command:
            return CommandResult(stdout="Prisma client generated")
        return CommandResult(stdout=f"Executed: {command}")

    @staticmethod
    def _mock_file_system() -> list[FileSystemNode]:
        return [
            FileSystemNode(
                name="client",
                path="/workspace/client",
                type="directory",
                children=[
                    FileSystemNode(name="package.json", path="/workspace/client/package.json", type="file", size=1024),
                    FileSystemNode(
                        name="src",
                        path="/workspace/client/src",
                        type="directory",
                        children=[
                            FileSystemNode(name="app", path="/workspace/client/src/app", type="directory"),
                            FileSystemNode(name="components", path="/workspace/client/src/components", type="directory"),
                        ]
                    ),
                ]
            ),
            FileSystemNode(
                name="server",
                path="/workspace/server",
                type="directory",
                children=[
                    FileSystemNode(name="package.json", path="/workspace/server/package.json", type="file", size=2048),
                    FileSystemNode(name="index.ts", path="/workspace/server/src/index.ts", type="file", size=1024),
                ]
            ),
        ]
