"""Mapping free text onto structured tags (features, task types, agent roles)."""

from abc import ABC, abstractmethod

from beaver.orchestrator.agent import AgentType

FEATURE_KEYWORDS = [
    "authentication", "login", "register", "user management",
    "dashboard", "chat", "messaging", "real-time",
    "database", "storage", "file upload", "search",
    "payment", "billing", "subscription", "e-commerce",
    "admin", "analytics", "reporting", "notifications",
    "mobile", "responsive", "API", "integration",
]

AGENT_PRIORITIES: dict[AgentType, int] = {
    AgentType.PLANNER: 1,
    AgentType.MAIN: 1,
    AgentType.BACKEND: 1,
    AgentType.DATA_LOGIC: 1,
    AgentType.FRONTEND: 2,
    AgentType.UI_UX: 2,
    AgentType.TESTING: 3,
    AgentType.OPTIMIZATION: 4,
    AgentType.DEPLOYMENT: 5,
}


class IntentClassifier(ABC):
    """Port for turning free text into tags. Swap in a model-backed one freely."""

    @abstractmethod
    def extract_features(self, text: str) -> list[str]:
        """Feature tags mentioned in text, in a stable order."""
        pass

    @abstractmethod
    def task_type(self, text: str) -> str:
        """Task-type tag for a free-text work request."""
        pass

    @abstractmethod
    def priority(self, text: str) -> int:
        """Urgency of a request (1 = most urgent)."""
        pass

    @abstractmethod
    def required_agents(self, phase: str, text: str) -> list[AgentType]:
        """Specialist roles needed for a request in the given phase."""
        pass

    @abstractmethod
    def agent_for_task_type(self, task_type: str) -> AgentType:
        """Specialist role that handles a task type."""
        pass


class KeywordClassifier(IntentClassifier):
    """Substring heuristics over fixed vocabularies."""

    def __init__(self, feature_keywords: list[str] = FEATURE_KEYWORDS):
        self.feature_keywords = list(feature_keywords)

    def extract_features(self, text: str) -> list[str]:
        lowered = text.lower()
        return [k for k in self.feature_keywords if k.lower() in lowered]

    def task_type(self, text: str) -> str:
        if "UI" in text or "design" in text:
            return "ui_design"
        if "backend" in text or "API" in text:
            return "backend_development"
        if "frontend" in text or "component" in text:
            return "frontend_development"
        if "database" in text or "data" in text:
            return "data_modeling"
        if "test" in text:
            return "testing"
        return "general_development"

    def priority(self, text: str) -> int:
        lowered = text.lower()
        if "urgent" in lowered or "critical" in lowered:
            return 1
        if "important" in lowered or "priority" in lowered:
            return 2
        return 3

    def required_agents(self, phase: str, text: str) -> list[AgentType]:
        agents: list[AgentType] = []

        if "setup" in phase or "init" in phase:
            agents.append(AgentType.BACKEND)
        if "UI" in text or "design" in text or "interface" in text:
            agents.extend([AgentType.UI_UX, AgentType.FRONTEND])
        if "API" in text or "backend" in text or "server" in text:
            agents.append(AgentType.BACKEND)
        if "data" in text or "database" in text:
            agents.append(AgentType.DATA_LOGIC)

        # dict.fromkeys keeps first-seen order
        agents = list(dict.fromkeys(agents))
        return agents or [AgentType.FRONTEND]

    def agent_for_task_type(self, task_type: str) -> AgentType:
        lowered = task_type.lower()
        if "ui" in lowered or "design" in lowered:
            return AgentType.UI_UX
        if "frontend" in lowered or "component" in lowered:
            return AgentType.FRONTEND
        if "backend" in lowered or "api" in lowered:
            return AgentType.BACKEND
        if "data" in lowered or "database" in lowered:
            return AgentType.DATA_LOGIC
        if "test" in lowered:
            return AgentType.TESTING
        if "deploy" in lowered:
            return AgentType.DEPLOYMENT
        if "optimi" in lowered or "performance" in lowered:
            return AgentType.OPTIMIZATION
        return AgentType.FRONTEND
