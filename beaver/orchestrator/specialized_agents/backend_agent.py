"""Backend and data-modeling agents for Express.js + Prisma work."""

from typing import Optional

from beaver.llm.text_generation import TextGenerator
from beaver.orchestrator.agent import AgentType
from beaver.orchestrator.specialist_agent import SpecialistAgent
from beaver.sandbox.sandbox_manager import SandboxManager


class BackendAgent(SpecialistAgent):
    """Agent specialized in API routes, services and middleware."""

    def __init__(
        self,
        text_generator: Optional[TextGenerator] = None,
        sandbox_manager: Optional[SandboxManager] = None
    ):
        super().__init__(
            AgentType.BACKEND,
            ["backend_development", "api", "server", "authentication"],
            text_generator=text_generator,
            sandbox_manager=sandbox_manager
        )


class DataLogicAgent(SpecialistAgent):
    """Agent specialized in Prisma schemas, migrations and seed data."""

    def __init__(
        self,
        text_generator: Optional[TextGenerator] = None,
        sandbox_manager: Optional[SandboxManager] = None
    ):
        super().__init__(
            AgentType.DATA_LOGIC,
            ["data_modeling", "database", "schema", "migration"],
            text_generator=text_generator,
            sandbox_manager=sandbox_manager
        )
