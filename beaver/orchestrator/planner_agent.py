"""Planner agent: turns a project conversation into requirements and a blueprint."""

import base64
import binascii
import logging
import re
from collections import OrderedDict
from typing import Any, Optional

from pydantic import BaseModel

from beaver.llm.text_generation import ProviderError, TextGenerator
from beaver.orchestrator.agent import (
    Agent,
    AgentMessage,
    AgentResponse,
    AgentTask,
    AgentType,
    InvariantError,
    RoutingError,
    TaskResult,
    TaskStatus,
)
from beaver.orchestrator.classification import IntentClassifier, KeywordClassifier
from beaver.orchestrator.project_context import (
    Architecture,
    BlueprintPhase,
    ProjectBlueprint,
    ProjectRequirements,
)

logger = logging.getLogger(__name__)

DEFAULT_PROJECT_NAME = "Web Application"

_APP_NOUNS = r"(?:app|application|site|website|platform|tool)"
_BUILD_VERBS = r"(?:build|create|make|develop)"
_NAME_STOP = r"(?=\s+(?:with|that|which|where|using)\b|[.!?,;\n]|$)"

NAME_PATTERNS = [
    re.compile(
        rf"{_BUILD_VERBS}\s+(?:an?\s+)?(?:web\s+)?{_APP_NOUNS}\s+(?:for|called|named)\s+(.+?){_NAME_STOP}"
    ),
    re.compile(rf"\b(?:called|named)\s+(.+?){_NAME_STOP}"),
    re.compile(
        rf"(?:i\s+want|i'd\s+like|i\s+need)\s+(?:to\s+)?{_BUILD_VERBS}\s+(?:an?\s+|the\s+)?(.+?){_NAME_STOP}"
    ),
    re.compile(rf"\b{_BUILD_VERBS}\s+(?:an?\s+|the\s+)?(.+?){_NAME_STOP}"),
]

CLARIFYING_QUESTIONS = [
    "Who is your target audience and what problem does this solve?",
    "What are the main features you want users to be able to do?",
    "Do you have any specific design preferences or examples you like?",
    "Are there any integrations with external services you need?",
    "What's your expected timeline and any budget constraints?",
]

BASE_TECHNICAL_REQUIREMENTS = [
    "Next.js with TypeScript",
    "Express.js backend",
    "PostgreSQL database",
    "TailwindCSS styling",
    "shadcn/ui components",
    "Real-time WebSocket communication",
]

BLUEPRINT_ARCHITECTURE = Architecture(
    frontend=["Next.js 14", "TypeScript", "TailwindCSS", "shadcn/ui", "Framer Motion"],
    backend=["Express.js", "TypeScript", "Socket.io", "Prisma ORM"],
    database=["PostgreSQL"],
    integrations=["Clerk Auth", "E2B Sandbox"],
)

BLUEPRINT_PHASES = [
    BlueprintPhase(
        name="Foundation Setup",
        tasks=[
            "Initialize Next.js and Express.js applications",
            "Setup database schema and Prisma",
            "Configure authentication with Clerk",
            "Setup basic UI components with shadcn/ui",
        ],
        estimated_time="2-3 days",
    ),
    BlueprintPhase(
        name="Core Features",
        tasks=[
            "Implement user authentication flow",
            "Build main dashboard and navigation",
            "Create core feature components",
            "Setup real-time communication",
        ],
        estimated_time="1-2 weeks",
        dependencies=["Foundation Setup"],
    ),
    BlueprintPhase(
        name="Advanced Features",
        tasks=[
            "Add advanced functionality",
            "Implement integrations",
            "Add animations and interactions",
            "Optimize performance",
        ],
        estimated_time="1-2 weeks",
        dependencies=["Core Features"],
    ),
    BlueprintPhase(
        name="Polish & Deploy",
        tasks=[
            "Testing and bug fixes",
            "UI/UX refinements",
            "Security hardening",
            "Production deployment",
        ],
        estimated_time="3-5 days",
        dependencies=["Advanced Features"],
    ),
]

BLUEPRINT_RISKS = [
    "Complex real-time features may require additional optimization",
    "Third-party integrations might have rate limits or API changes",
    "Database performance may need optimization for large datasets",
]

BLUEPRINT_RECOMMENDATIONS = [
    "Start with core features and iterate based on user feedback",
    "Implement proper error handling and loading states",
    "Use TypeScript throughout for better code quality",
    "Plan for scalability from the beginning",
]


class PlannerSession(BaseModel):
    """Conversation state for one planning session."""
    history: list[AgentMessage] = []
    requirements: Optional[ProjectRequirements] = None


class PlannerAgent(Agent):
    """
    Conversation state machine: initial -> clarification -> refinement -> blueprint.

    The stage is derived from the session every turn, never stored.
    """

    def __init__(
        self,
        classifier: Optional[IntentClassifier] = None,
        text_generator: Optional[TextGenerator] = None,
        max_sessions: int = 256
    ):
        """
        Initialize planner.

        Args:
            classifier: Feature extraction strategy
            text_generator: Optional port used to describe image attachments
            max_sessions: Number of planning sessions kept in memory
        """
        super().__init__(
            AgentType.PLANNER,
            [
                "requirement_gathering",
                "project_planning",
                "user_interaction",
                "clarification",
                "blueprint_creation",
            ]
        )
        self.classifier = classifier if classifier is not None else KeywordClassifier()
        self.text_generator = text_generator
        self.max_sessions = max_sessions
        self.sessions: OrderedDict[str, PlannerSession] = OrderedDict()

    def get_session(self, session_key: str) -> PlannerSession:
        session = self.sessions.get(session_key)
        if session is None:
            session = PlannerSession()
            self.sessions[session_key] = session
            while len(self.sessions) > self.max_sessions:
                dropped, _ = self.sessions.popitem(last=False)
                logger.info(f"Dropped planner session {dropped}")
        self.sessions.move_to_end(session_key)
        return session

    def end_session(self, session_key: str) -> None:
        self.sessions.pop(session_key, None)

    @staticmethod
    def session_key(message: AgentMessage, context: Any = None) -> str:
        """Conversation id when known, else project id."""
        key = message.metadata.get("conversation_id") or message.metadata.get("project_id")
        if not key and context is not None:
            key = getattr(context, "project_id", None)
        return key or "default"

    @staticmethod
    def determine_stage(session: PlannerSession) -> str:
        requirements = session.requirements
        if requirements is None or len(session.history) <= 1:
            return "initial"
        if requirements.technical_requirements:
            return "blueprint"
        if not requirements.target_audience or len(requirements.features) < 2:
            return "clarification"
        return "refinement"

    async def _handle_message(self, message: AgentMessage, context: Any) -> AgentResponse:
        message = await self._with_image_descriptions(message)

        session = self.get_session(self.session_key(message, context))
        session.history.append(message)

        stage = self.determine_stage(session)
        logger.debug(f"Planner stage: {stage}")

        if stage == "initial":
            return self.handle_initial_requirement(session, message)
        if stage == "clarification":
            return self.handle_clarification(session, message)
        if stage == "refinement":
            return self.handle_requirement_refinement(session)
        return self.generate_blueprint(session)

    def handle_initial_requirement(self, session: PlannerSession, message: AgentMessage) -> AgentResponse:
        content = message.content.lower()
        session.requirements = ProjectRequirements(
            project_name=self.extract_project_name(content),
            description=message.content,
            features=self.extract_features(message.content),
        )

        questions = "\n".join(f"{i}. {q}" for i, q in enumerate(CLARIFYING_QUESTIONS, start=1))
        return self.create_response(
            f"Great! I understand you want to build: **{session.requirements.project_name}**\n\n"
            f"Let me ask a few questions to better understand your vision:\n\n"
            f"{questions}\n\n"
            f"Please answer these questions so I can create a comprehensive plan for your project.",
            status="thinking"
        )

    def handle_clarification(self, session: PlannerSession, message: AgentMessage) -> AgentResponse:
        self.update_requirements_from_answers(session.requirements, message.content)

        if self.needs_more_clarification(session.requirements):
            questions = "\n".join(
                f"{i}. {q}" for i, q in enumerate(self.additional_questions(session.requirements), start=1)
            )
            return self.create_response(
                "Thank you for the information! I have a few more questions to ensure "
                f"I understand everything correctly:\n\n{questions}",
                status="thinking"
            )

        return self.handle_requirement_refinement(session)

    def handle_requirement_refinement(self, session: PlannerSession) -> AgentResponse:
        requirements = session.requirements
        requirements.technical_requirements = self.technical_requirements_for(requirements.features)

        return self.create_response(
            "Perfect! I now have a clear understanding of your project. Here's what I've gathered:\n\n"
            f"**Project**: {requirements.project_name}\n"
            f"**Description**: {requirements.description}\n"
            f"**Target Audience**: {requirements.target_audience or 'not specified'}\n"
            f"**Key Features**: {', '.join(requirements.features)}\n\n"
            "Now I'll create a comprehensive blueprint for your project. This includes:\n"
            "- Architecture recommendations\n"
            "- Development phases\n"
            "- Timeline estimates\n"
            "- Potential risks and solutions\n\n"
            "Would you like me to proceed with generating the blueprint?",
            status="working"
        )

    def generate_blueprint(self, session: PlannerSession) -> AgentResponse:
        blueprint = self.create_detailed_blueprint(session.requirements)

        task = self.create_task(
            "create_project_structure",
            "Create initial project structure and setup",
            input={"blueprint": blueprint, "requirements": blueprint.requirements},
            priority=1
        )

        phases = "\n\n".join(
            f"**Phase {i}: {phase.name}** ({phase.estimated_time})\n"
            + "\n".join(f"- {t}" for t in phase.tasks)
            for i, phase in enumerate(blueprint.phases, start=1)
        )
        architecture = blueprint.architecture
        return self.create_response(
            "**Project Blueprint Ready!**\n\n"
            f"## {blueprint.requirements.project_name}\n\n"
            "### Architecture Overview\n"
            f"- **Frontend**: {', '.join(architecture.frontend)}\n"
            f"- **Backend**: {', '.join(architecture.backend)}\n"
            f"- **Database**: {', '.join(architecture.database)}\n"
            f"- **Integrations**: {', '.join(architecture.integrations)}\n\n"
            f"### Development Phases\n\n{phases}\n\n"
            "### Risk Assessment\n"
            + "\n".join(f"- {risk}" for risk in blueprint.risks)
            + "\n\n### Recommendations\n"
            + "\n".join(f"- {rec}" for rec in blueprint.recommendations)
            + "\n\nReady to start building? I'll hand this over to the Main Agent to begin development!",
            status="completed",
            tasks=[task],
            metadata={"blueprint": blueprint}
        )

    def create_detailed_blueprint(self, requirements: Optional[ProjectRequirements]) -> ProjectBlueprint:
        """
        Expand requirements into the fixed four-phase blueprint.

        Raises:
            InvariantError: If no requirements have been gathered
        """
        if requirements is None:
            raise InvariantError("Blueprint requested before requirements were gathered")

        return ProjectBlueprint(
            requirements=requirements.model_copy(deep=True),
            architecture=BLUEPRINT_ARCHITECTURE,
            phases=list(BLUEPRINT_PHASES),
            risks=list(BLUEPRINT_RISKS),
            recommendations=list(BLUEPRINT_RECOMMENDATIONS),
        )

    def extract_project_name(self, content: str) -> str:
        for pattern in NAME_PATTERNS:
            match = pattern.search(content)
            if match:
                name = match.group(1).strip()
                if name:
                    return name
        return DEFAULT_PROJECT_NAME

    def extract_features(self, content: str) -> list[str]:
        return self.classifier.extract_features(content)

    def update_requirements_from_answers(self, requirements: ProjectRequirements, answers: str) -> None:
        merged = requirements.features + self.extract_features(answers)
        requirements.features = list(dict.fromkeys(merged))

        lowered = answers.lower()
        if "business" in lowered or "company" in lowered:
            requirements.target_audience = "business users"
        elif "consumer" in lowered or "general" in lowered:
            requirements.target_audience = "general consumers"

    @staticmethod
    def needs_more_clarification(requirements: ProjectRequirements) -> bool:
        return not requirements.target_audience or len(requirements.features) < 2

    @staticmethod
    def additional_questions(requirements: ProjectRequirements) -> list[str]:
        questions = []
        if not requirements.target_audience:
            questions.append("Who will be using this application primarily?")
        if len(requirements.features) < 2:
            questions.append("What specific actions should users be able to perform?")
        return questions

    @staticmethod
    def technical_requirements_for(features: list[str]) -> list[str]:
        technical = list(BASE_TECHNICAL_REQUIREMENTS)
        if "authentication" in features:
            technical.append("Clerk authentication")
        if any("chat" in f or "messaging" in f or "real-time" in f for f in features):
            technical.append("Socket.io for real-time messaging")
        return technical

    async def _execute(self, task: AgentTask, context: Any) -> TaskResult:
        session_key = task.input.get("session_id") or getattr(context, "project_id", None) or "default"
        session = self.sessions.get(session_key)
        requirements = task.input.get("requirements") or (session.requirements if session else None)
        if isinstance(requirements, dict):
            requirements = ProjectRequirements.model_validate(requirements)

        if task.type == "gather_requirements":
            return TaskResult(task_id=task.id, status=TaskStatus.COMPLETED, output=requirements)

        if task.type == "create_blueprint":
            blueprint = self.create_detailed_blueprint(requirements)
            return TaskResult(
                task_id=task.id,
                status=TaskStatus.COMPLETED,
                output=blueprint,
                artifacts=["project-blueprint.json"]
            )

        if task.type == "validate_requirements":
            is_valid = bool(requirements and requirements.project_name and requirements.features)
            return TaskResult(
                task_id=task.id,
                status=TaskStatus.COMPLETED if is_valid else TaskStatus.FAILED,
                output={"valid": is_valid, "requirements": requirements},
                error=None if is_valid else "Requirements incomplete"
            )

        raise RoutingError(f"Unknown task type: {task.type}")

    async def _with_image_descriptions(self, message: AgentMessage) -> AgentMessage:
        images = message.metadata.get("images") or []
        if not images or self.text_generator is None:
            return message

        descriptions = []
        for image in images:
            try:
                image_bytes = base64.b64decode(image["data"], validate=True)
                descriptions.append(
                    await self.text_generator.analyze_image(image_bytes, image.get("mime_type", "image/png"))
                )
            except (KeyError, TypeError, binascii.Error) as e:
                logger.warning(f"Ignoring malformed image attachment: {e}")
            except ProviderError as e:
                logger.error(f"Image analysis failed, ignoring attachment: {e}")

        if not descriptions:
            return message

        content = message.content + "\n\n" + "\n\n".join(
            f"[Image {i}] {text}" for i, text in enumerate(descriptions, start=1)
        )
        return message.model_copy(update={"content": content})
