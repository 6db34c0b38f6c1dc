"""Deployment agent for Docker, CI/CD and hosting configuration."""

from typing import Optional

from beaver.llm.text_generation import TextGenerator
from beaver.orchestrator.agent import AgentType
from beaver.orchestrator.specialist_agent import SpecialistAgent
from beaver.sandbox.sandbox_manager import SandboxManager


class DeploymentAgent(SpecialistAgent):
    """Agent specialized in infrastructure and deployment configuration."""

    def __init__(
        self,
        text_generator: Optional[TextGenerator] = None,
        sandbox_manager: Optional[SandboxManager] = None
    ):
        super().__init__(
            AgentType.DEPLOYMENT,
            ["deployment", "docker", "ci_cd", "infrastructure"],
            text_generator=text_generator,
            sandbox_manager=sandbox_manager
        )
