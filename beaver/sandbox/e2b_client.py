"""Sandbox capability port and the E2B REST adapter."""

import logging
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Optional

import httpx
from pydantic import BaseModel

logger = logging.getLogger(__name__)


class SandboxError(Exception):
    """Raised when the remote execution backend fails."""
    pass


class CommandResult(BaseModel):
    """Outcome of a command run inside a sandbox."""
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0
    duration: float = 0.0

    @property
    def success(self) -> bool:
        return self.exit_code == 0


class ProviderSandbox(BaseModel):
    """Sandbox as reported by the provider."""
    id: str
    status: str = "creating"
    url: Optional[str] = None
    metadata: dict[str, Any] = {}


class FileSystemNode(BaseModel):
    name: str
    path: str
    type: str  # file, directory
    size: Optional[int] = None
    children: Optional[list["FileSystemNode"]] = None


class SandboxProvider(ABC):
    """Port for remote sandboxes. Every method raises SandboxError on failure."""

    @abstractmethod
    async def create_sandbox(self, template_id: str, metadata: dict[str, Any]) -> ProviderSandbox:
        pass

    @abstractmethod
    async def run_command(self, sandbox_id: str, command: str) -> CommandResult:
        pass

    @abstractmethod
    async def write_file(self, sandbox_id: str, path: str, content: str) -> None:
        pass

    @abstractmethod
    async def read_file(self, sandbox_id: str, path: str) -> Optional[str]:
        """Return file content, or None when the file does not exist."""
        pass

    @abstractmethod
    async def list_files(self, sandbox_id: str, path: str = "/") -> list[FileSystemNode]:
        pass

    @abstractmethod
    async def destroy_sandbox(self, sandbox_id: str) -> None:
        pass


class E2BSandboxClient(SandboxProvider):
    """E2B REST API adapter."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.e2b.dev",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Initialize E2B client.

        Args:
            api_key: E2B API key
            base_url: API root
            timeout: HTTP timeout in seconds
            transport: Optional httpx transport (tests)
        """
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def create_sandbox(self, template_id: str, metadata: dict[str, Any]) -> ProviderSandbox:
        body = {
            "templateID": template_id,
            "metadata": {
                "createdBy": "beaver-ai",
                "timestamp": datetime.now(timezone.utc).isoformat(),
                **metadata,
            }
        }
        data = await self._request("POST", "/sandboxes", json=body)
        sandbox_id = data.get("sandboxID") or data.get("sandboxId")
        if not sandbox_id:
            raise SandboxError(f"E2B did not return a sandbox id: {data}")

        return ProviderSandbox(
            id=sandbox_id,
            status=data.get("status", "creating"),
            url=data.get("url"),
            metadata=data.get("metadata") or {}
        )

    async def run_command(self, sandbox_id: str, command: str) -> CommandResult:
        start_time = time.time()
        data = await self._request(
            "POST",
            f"/sandboxes/{sandbox_id}/commands",
            json={"command": command, "timeout": int(self.timeout * 1000)}
        )
        try:
            return CommandResult(
                stdout=data.get("stdout") or "",
                stderr=data.get("stderr") or "",
                exit_code=int(data.get("exitCode") or 0),
                duration=time.time() - start_time
            )
        except (TypeError, ValueError) as e:
            raise SandboxError(f"E2B returned a malformed command result: {e}") from e

    async def write_file(self, sandbox_id: str, path: str, content: str) -> None:
        await self._request(
            "POST",
            f"/sandboxes/{sandbox_id}/filesystem/write",
            json={"path": path, "content": content}
        )

    async def read_file(self, sandbox_id: str, path: str) -> Optional[str]:
        try:
            data = await self._request(
                "GET",
                f"/sandboxes/{sandbox_id}/filesystem/read",
                params={"path": path}
            )
        except SandboxNotFoundError:
            return None
        return data.get("content")

    async def list_files(self, sandbox_id: str, path: str = "/") -> list[FileSystemNode]:
        data = await self._request(
            "GET",
            f"/sandboxes/{sandbox_id}/filesystem/list",
            params={"path": path, "recursive": "true"}
        )
        try:
            return [FileSystemNode.model_validate(node) for node in data.get("files") or []]
        except (TypeError, ValueError) as e:
            raise SandboxError(f"E2B returned a malformed file listing: {e}") from e

    async def destroy_sandbox(self, sandbox_id: str) -> None:
        await self._request("DELETE", f"/sandboxes/{sandbox_id}")

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                transport=self.transport,
                timeout=self.timeout
            ) as client:
                response = await client.request(method, path, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"E2B request {method} {path} failed: {e}")
            raise SandboxError(f"E2B request {method} {path} failed: {e}") from e

        if response.status_code == 404:
            raise SandboxNotFoundError(f"E2B resource not found: {method} {path}")
        if response.status_code >= 400:
            logger.error(f"E2B request {method} {path} returned {response.status_code}: {response.text}")
            raise SandboxError(f"E2B returned {response.status_code}: {response.text}")

        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError as e:
            logger.error(f"E2B request {method} {path} returned a non-JSON body: {response.text[:200]}")
            raise SandboxError(f"E2B returned a non-JSON body for {method} {path}") from e
        if not isinstance(data, dict):
            raise SandboxError(f"E2B returned an unexpected body for {method} {path}: {type(data).__name__}")
        return data


class SandboxNotFoundError(SandboxError):
    """Raised when the provider reports a missing sandbox or file."""
    pass
