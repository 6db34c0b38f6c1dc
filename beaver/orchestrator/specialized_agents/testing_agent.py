"""Testing agent for Jest unit tests and Playwright end-to-end tests."""

from typing import Optional

from beaver.llm.text_generation import TextGenerator
from beaver.orchestrator.agent import AgentType
from beaver.orchestrator.specialist_agent import SpecialistAgent
from beaver.sandbox.sandbox_manager import SandboxManager


class TestingAgent(SpecialistAgent):
    """Agent specialized in writing automated tests."""

    __test__ = False  # not a pytest test class

    def __init__(
        self,
        text_generator: Optional[TextGenerator] = None,
        sandbox_manager: Optional[SandboxManager] = None
    ):
        super().__init__(
            AgentType.TESTING,
            ["testing", "unit_test", "e2e_test"],
            text_generator=text_generator,
            sandbox_manager=sandbox_manager
        )
