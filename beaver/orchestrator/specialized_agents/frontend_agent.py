"""Frontend and UI/UX agents for Next.js + shadcn/ui work."""

from typing import Optional

from beaver.llm.text_generation import TextGenerator
from beaver.orchestrator.agent import AgentType
from beaver.orchestrator.specialist_agent import SpecialistAgent
from beaver.sandbox.sandbox_manager import SandboxManager


class FrontendAgent(SpecialistAgent):
    """Agent specialized in Next.js pages and React components."""

    def __init__(
        self,
        text_generator: Optional[TextGenerator] = None,
        sandbox_manager: Optional[SandboxManager] = None
    ):
        super().__init__(
            AgentType.FRONTEND,
            ["frontend_development", "component", "page", "state_management"],
            text_generator=text_generator,
            sandbox_manager=sandbox_manager
        )


class UIUXAgent(SpecialistAgent):
    """Agent specialized in layout, styling and accessibility."""

    def __init__(
        self,
        text_generator: Optional[TextGenerator] = None,
        sandbox_manager: Optional[SandboxManager] = None
    ):
        super().__init__(
            AgentType.UI_UX,
            ["ui_design", "design", "styling", "accessibility"],
            text_generator=text_generator,
            sandbox_manager=sandbox_manager
        )
