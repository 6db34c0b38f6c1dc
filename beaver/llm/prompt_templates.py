"""Prompt templates for specialist agents."""

from typing import Optional

SPECIALIST_SYSTEM_PROMPTS = {
    "ui_ux": (
        "You are an expert UI/UX engineer. You design accessible, responsive interfaces "
        "with TailwindCSS and shadcn/ui and turn them into clean Next.js components."
    ),
    "frontend": (
        "You are an expert Next.js 14 developer. You write type-safe TypeScript React "
        "components using the app router, TailwindCSS and shadcn/ui."
    ),
    "backend": (
        "You are an expert Node.js backend developer. You build Express.js APIs in "
        "TypeScript with Prisma ORM, input validation and consistent error handling."
    ),
    "data_logic": (
        "You are an expert data modeler. You design PostgreSQL schemas expressed as "
        "Prisma models, with relations, indexes and seed data."
    ),
    "testing": (
        "You are an expert in automated testing. You write Jest and Playwright tests "
        "with clear assertions, proper mocking and good coverage."
    ),
    "deployment": (
        "You are an expert DevOps engineer. You write Dockerfiles, CI pipelines and "
        "deployment configuration that are secure and reproducible."
    ),
}

agent_guidance = {
    "ui_ux": """## UI/UX Guidelines
- Mobile-first responsive layouts
- Accessible markup (labels, roles, focus states)
- Reuse shadcn/ui primitives before writing custom components""",
    "frontend": """## Frontend Guidelines
- Files live under client/src (app/ for routes, components/ for UI)
- Use TypeScript everywhere; no implicit any
- Keep data fetching in server components where possible""",
    "backend": """## Backend Guidelines
- Files live under server/src (routes/, services/, middleware/)
- Validate request bodies and return JSON errors with proper status codes
- Access the database only through Prisma""",
    "data_logic": """## Data Guidelines
- Schema lives in server/prisma/schema.prisma
- Every relation declares its foreign key and index
- Provide a seed script when sample data helps development""",
    "testing": """## Testing Guidelines
- Unit tests next to the code as *.test.ts
- End-to-end tests under e2e/
- Cover the happy path and at least one failure path""",
    "deployment": """## Deployment Guidelines
- Multi-stage Dockerfiles for client and server
- Configuration through environment variables only
- CI runs lint, tests and build before deploying""",
}


def get_specialist_prompt(
    agent_type: str,
    task_description: str,
    task_input: dict,
    project_summary: Optional[str] = None,
    existing_files: Optional[dict[str, str]] = None
) -> str:
    """
    Generate prompt for a specialist agent task.

    Args:
        agent_type: Specialist role (frontend, backend, ...)
        task_description: What the task must achieve
        task_input: Structured task input
        project_summary: Optional blueprint summary for the project
        existing_files: Optional current contents of files to modify

    Returns:
        Formatted prompt
    """
    context_section = ""
    if project_summary:
        context_section = f"""
## Project Context

{project_summary}
"""

    files_section = ""
    if existing_files:
        files_section = "\n## Existing Files\n\n"
        for path, content in existing_files.items():
            files_section += f"### {path}\n```\n{content}\n```\n\n"

    extra_input = {k: v for k, v in task_input.items() if k not in ("blueprint", "context")}
    input_section = ""
    if extra_input:
        input_section = "\n## Task Input\n\n" + "\n".join(
            f"- **{key}**: {value}" for key, value in extra_input.items()
        ) + "\n"

    return f"""# Task Assignment

{agent_guidance.get(agent_type, "")}

## Your Task

{task_description}
{input_section}{context_section}{files_section}
## Output Format

Return every file you create or change as a fenced code block preceded by a
filepath marker, for example:

// filepath: client/src/components/Example.tsx
```tsx
export function Example() {{
  return <div>Example</div>;
}}
```

Use `# filepath:` for files whose comments start with `#`. Paths are relative
to the project root. Begin your implementation now."""
