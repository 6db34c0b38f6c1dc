"""Project requirements, blueprints and per-project coordination state."""

from typing import Optional

from pydantic import BaseModel, ConfigDict

from beaver.orchestrator.agent import AgentTask, InvariantError, TaskStatus

PHASE_ORDER = ["planning", "setup", "development", "testing", "deployment"]


def next_phase(current_phase: str) -> Optional[str]:
    """Return the phase after current_phase, or None at the end of the lifecycle."""
    if current_phase not in PHASE_ORDER:
        return PHASE_ORDER[0]
    index = PHASE_ORDER.index(current_phase)
    return PHASE_ORDER[index + 1] if index < len(PHASE_ORDER) - 1 else None


class ProjectRequirements(BaseModel):
    """Requirements gathered by the planner."""
    project_name: str
    description: str = ""
    target_audience: Optional[str] = None
    features: list[str] = []
    technical_requirements: list[str] = []
    constraints: list[str] = []
    timeline: Optional[str] = None
    budget: Optional[str] = None


class Architecture(BaseModel):
    model_config = ConfigDict(frozen=True)

    frontend: list[str] = []
    backend: list[str] = []
    database: list[str] = []
    integrations: list[str] = []


class BlueprintPhase(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    tasks: list[str] = []
    estimated_time: str = ""
    dependencies: list[str] = []


class ProjectBlueprint(BaseModel):
    """Architecture plus phased plan. Regenerating replaces it."""
    model_config = ConfigDict(frozen=True)

    requirements: ProjectRequirements
    architecture: Architecture
    phases: list[BlueprintPhase]
    risks: list[str] = []
    recommendations: list[str] = []


class SandboxInfo(BaseModel):
    """Sandbox handle recorded on a project."""
    id: str
    provider_id: str
    preview_url: Optional[str] = None
    mock: bool = False


class ProjectContext(BaseModel):
    """
    Coordination state for one project.

    A task id lives in at most one of active_tasks and completed_tasks.
    """
    project_id: str
    user_id: str
    blueprint: Optional[ProjectBlueprint] = None
    requirements: Optional[ProjectRequirements] = None
    current_phase: str = PHASE_ORDER[0]
    active_tasks: dict[str, AgentTask] = {}
    completed_tasks: list[AgentTask] = []
    sandbox: Optional[SandboxInfo] = None

    def track(self, task: AgentTask) -> None:
        """Register a task as active."""
        if any(t.id == task.id for t in self.completed_tasks):
            raise InvariantError(f"Task {task.id} is already completed for project {self.project_id}")
        self.active_tasks[task.id] = task

    def resolve(self, task_id: str) -> AgentTask:
        """Move a resolved task from active_tasks to completed_tasks."""
        task = self.active_tasks.get(task_id)
        if task is None:
            raise InvariantError(f"Task {task_id} is not active for project {self.project_id}")
        if not task.is_resolved:
            raise InvariantError(f"Task {task_id} is still {task.status.value}")
        del self.active_tasks[task_id]
        self.completed_tasks.append(task)
        return task

    def completed_task_ids(self) -> set[str]:
        return {t.id for t in self.completed_tasks}

    def fail_interrupted(self) -> list[str]:
        """
        Mark tasks left Running by an interrupted request as Failed.

        Returns:
            Ids of the tasks that were failed
        """
        interrupted = [t for t in self.active_tasks.values() if t.status == TaskStatus.RUNNING]
        for task in interrupted:
            task.transition(TaskStatus.FAILED)
        return [t.id for t in interrupted]
