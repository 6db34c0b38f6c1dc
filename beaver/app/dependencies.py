"""FastAPI dependencies resolving the objects built in the app lifespan."""

from typing import Optional

from fastapi import Request

from beaver.llm.text_generation import TextGenerator
from beaver.orchestrator.agent_orchestrator import AgentOrchestrator
from beaver.sandbox.sandbox_manager import SandboxManager

from .repository import ChatRepository


def get_orchestrator(request: Request) -> AgentOrchestrator:
    return request.app.state.orchestrator


def get_repository(request: Request) -> ChatRepository:
    return request.app.state.repository


def get_sandbox_manager(request: Request) -> SandboxManager:
    return request.app.state.orchestrator.main.sandbox_manager


def get_text_generator(request: Request) -> Optional[TextGenerator]:
    return request.app.state.text_generator
