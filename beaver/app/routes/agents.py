"""Agent chat, task and status endpoints."""

import asyncio
import json
import logging
import uuid
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from beaver.orchestrator.agent import AgentType
from beaver.orchestrator.agent_orchestrator import AgentOrchestrator

from ..dependencies import get_orchestrator, get_repository
from ..repository import ChatRepository

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/agents", tags=["agents"])

STREAM_KEEPALIVE_SECONDS = 15.0


class ChatRequest(BaseModel):
    message: str
    user_id: str
    project_id: Optional[str] = None
    conversation_id: Optional[str] = None
    metadata: dict[str, Any] = {}


class TaskRequest(BaseModel):
    agent_type: str
    task_type: str
    input: dict[str, Any] = {}
    project_id: str
    user_id: str


class ProjectRequest(BaseModel):
    user_id: str


async def _owned_project(repository: ChatRepository, project_id: str, user_id: str):
    project = await repository.get_project(project_id)
    if project is None or project.user_id != user_id:
        raise HTTPException(status_code=404, detail=f"Project not found: {project_id}")
    return project


@router.post("/chat")
async def chat(
    request: ChatRequest,
    orchestrator: AgentOrchestrator = Depends(get_orchestrator),
    repository: ChatRepository = Depends(get_repository)
):
    """Send a user message to the agents and persist both turns."""
    if not request.message.strip():
        raise HTTPException(status_code=400, detail="message is required")

    project_id = request.project_id or str(uuid.uuid4())
    if request.project_id:
        await _owned_project(repository, project_id, request.user_id)
    else:
        await repository.create_project(project_id, request.user_id, "New Project", request.message)

    conversation_id = request.conversation_id or str(uuid.uuid4())
    conversation = await repository.get_conversation(conversation_id)
    if conversation is None:
        await repository.create_conversation(conversation_id, project_id, request.user_id, request.message[:100])
    elif conversation.user_id != request.user_id or conversation.project_id != project_id:
        raise HTTPException(status_code=404, detail=f"Conversation not found: {conversation_id}")

    stored_metadata = {k: v for k, v in request.metadata.items() if k != "images"}
    if request.metadata.get("images"):
        stored_metadata["image_count"] = len(request.metadata["images"])
    await repository.create_message(conversation_id, "user", request.message, metadata=stored_metadata)

    response = await orchestrator.handle_message(
        request.message,
        project_id=project_id,
        user_id=request.user_id,
        conversation_id=conversation_id,
        metadata=request.metadata
    )

    await repository.create_message(
        conversation_id,
        "assistant",
        response.message.content,
        agent_type=response.agent_type.value,
        metadata={"status": response.status}
    )

    updates: dict[str, Any] = {}
    phase = orchestrator.get_status(project_id)["phase"]
    if phase is not None:
        updates["status"] = phase
    blueprint = response.metadata.get("blueprint")
    if response.agent_type == AgentType.PLANNER and blueprint is not None:
        updates["name"] = blueprint.requirements.project_name
        updates["description"] = blueprint.requirements.description
    await repository.update_project(project_id, **updates)

    return {
        "project_id": project_id,
        "conversation_id": conversation_id,
        "response": jsonable_encoder(response),
    }


@router.get("/status")
async def status(
    project_id: Optional[str] = None,
    user_id: Optional[str] = None,
    orchestrator: AgentOrchestrator = Depends(get_orchestrator),
    repository: ChatRepository = Depends(get_repository)
):
    """Project status for its owner, or the registered agents when no project is given."""
    if project_id:
        if not user_id:
            raise HTTPException(status_code=400, detail="user_id is required with project_id")
        await _owned_project(repository, project_id, user_id)
        return orchestrator.get_status(project_id)
    return {"agents": [agent.get_agent_info() for agent in orchestrator.agents.values()]}


@router.post("/task")
async def execute_task(
    request: TaskRequest,
    orchestrator: AgentOrchestrator = Depends(get_orchestrator),
    repository: ChatRepository = Depends(get_repository)
):
    """Run a named task on one agent."""
    await _owned_project(repository, request.project_id, request.user_id)
    result = await orchestrator.execute_named_task(
        request.agent_type,
        request.task_type,
        request.input,
        project_id=request.project_id,
        user_id=request.user_id
    )
    return jsonable_encoder(result)


@router.post("/projects/{project_id}/run")
async def run_pending(
    project_id: str,
    request: ProjectRequest,
    orchestrator: AgentOrchestrator = Depends(get_orchestrator),
    repository: ChatRepository = Depends(get_repository)
):
    """Execute the project's runnable pending tasks."""
    await _owned_project(repository, project_id, request.user_id)
    results = await orchestrator.run_pending_tasks(project_id, request.user_id)
    phase = orchestrator.get_status(project_id)["phase"]
    if phase is not None:
        await repository.update_project(project_id, status=phase)
    return {"project_id": project_id, "results": jsonable_encoder(results)}


@router.delete("/projects/{project_id}")
async def close_project(
    project_id: str,
    user_id: str,
    orchestrator: AgentOrchestrator = Depends(get_orchestrator),
    repository: ChatRepository = Depends(get_repository)
):
    """Destroy the project's sandbox and release its coordination state."""
    await _owned_project(repository, project_id, user_id)
    closed = await orchestrator.close_project(project_id)
    await repository.update_project(project_id, status="closed", context=None)
    return {"project_id": project_id, "closed": closed}


@router.get("/conversation/{conversation_id}")
async def conversation_history(
    conversation_id: str,
    user_id: str,
    repository: ChatRepository = Depends(get_repository)
):
    """Stored messages of one conversation, oldest first."""
    conversation = await repository.get_conversation(conversation_id)
    if conversation is None or conversation.user_id != user_id:
        raise HTTPException(status_code=404, detail=f"Conversation not found: {conversation_id}")

    messages = await repository.list_messages(conversation_id)
    return {
        "conversation_id": conversation_id,
        "project_id": conversation.project_id,
        "messages": [
            {
                "id": m.id,
                "role": m.role,
                "content": m.content,
                "agent_type": m.agent_type,
                "metadata": m.message_metadata or {},
                "created_at": m.created_at.isoformat() if m.created_at else None,
            }
            for m in messages
        ],
    }


@router.get("/stream/{project_id}")
async def stream(
    project_id: str,
    user_id: str,
    http_request: Request,
    orchestrator: AgentOrchestrator = Depends(get_orchestrator),
    repository: ChatRepository = Depends(get_repository)
):
    """Server-sent events for one project, for its owner only."""
    await _owned_project(repository, project_id, user_id)
    queue: asyncio.Queue = asyncio.Queue()
    listener = queue.put_nowait
    orchestrator.add_stream_listener(project_id, listener)

    async def generate():
        try:
            yield f"data: {json.dumps({'type': 'connected', 'project_id': project_id})}\n\n"
            while not await http_request.is_disconnected():
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=STREAM_KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    yield ": keep-alive\n\n"
                    continue
                yield f"data: {json.dumps(event, default=str)}\n\n"
        finally:
            orchestrator.remove_stream_listener(project_id, listener)
            logger.debug(f"Stream closed for project {project_id}")

    return StreamingResponse(generate(), media_type="text/event-stream")
