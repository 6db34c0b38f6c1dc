"""Direct sandbox endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from beaver.sandbox.sandbox_manager import SandboxManager

from ..dependencies import get_sandbox_manager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sandboxes", tags=["sandboxes"])


class CreateSandboxRequest(BaseModel):
    project_id: str
    template: Optional[str] = None


class CommandRequest(BaseModel):
    command: str


class WriteFileRequest(BaseModel):
    path: str
    content: str


def _require_sandbox(manager: SandboxManager, sandbox_id: str) -> None:
    if manager.get_sandbox(sandbox_id) is None:
        raise HTTPException(status_code=404, detail=f"Sandbox not found: {sandbox_id}")


@router.post("")
async def create_sandbox(
    request: CreateSandboxRequest,
    manager: SandboxManager = Depends(get_sandbox_manager)
):
    sandbox = await manager.create_sandbox(request.project_id, template=request.template)
    return sandbox.model_dump(mode="json")


@router.post("/{sandbox_id}/command")
async def execute_command(
    sandbox_id: str,
    request: CommandRequest,
    manager: SandboxManager = Depends(get_sandbox_manager)
):
    _require_sandbox(manager, sandbox_id)
    result = await manager.execute_command(sandbox_id, request.command)
    return {**result.model_dump(), "success": result.success}


@router.post("/{sandbox_id}/files")
async def write_file(
    sandbox_id: str,
    request: WriteFileRequest,
    manager: SandboxManager = Depends(get_sandbox_manager)
):
    _require_sandbox(manager, sandbox_id)
    if not await manager.write_file(sandbox_id, request.path, request.content):
        raise HTTPException(status_code=502, detail=f"Failed to write {request.path}")
    return {"success": True, "path": request.path}


@router.get("/{sandbox_id}/files")
async def read_file(
    sandbox_id: str,
    path: str,
    manager: SandboxManager = Depends(get_sandbox_manager)
):
    _require_sandbox(manager, sandbox_id)
    content = await manager.read_file(sandbox_id, path)
    if content is None:
        raise HTTPException(status_code=404, detail=f"File not found: {path}")
    return {"path": path, "content": content}


@router.get("/{sandbox_id}/filesystem")
async def file_system(
    sandbox_id: str,
    path: str = "/",
    manager: SandboxManager = Depends(get_sandbox_manager)
):
    _require_sandbox(manager, sandbox_id)
    nodes = await manager.get_file_system(sandbox_id, path)
    return {"path": path, "files": [node.model_dump(mode="json") for node in nodes]}


@router.delete("/{sandbox_id}")
async def delete_sandbox(
    sandbox_id: str,
    manager: SandboxManager = Depends(get_sandbox_manager)
):
    _require_sandbox(manager, sandbox_id)
    return {"success": await manager.delete_sandbox(sandbox_id)}
