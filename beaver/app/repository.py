"""Persistence for projects, conversations, messages and context snapshots."""

import logging
import uuid
from typing import Any, Optional

from pydantic import ValidationError as SchemaError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from beaver.orchestrator.project_context import ProjectContext

from .models.conversation import ConversationModel
from .models.message import MessageModel
from .models.project import ProjectModel

logger = logging.getLogger(__name__)


class ChatRepository:
    """Repository used by the HTTP layer and the context store callbacks."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def create_project(
        self,
        project_id: str,
        user_id: str,
        name: str,
        description: Optional[str] = None
    ) -> ProjectModel:
        project = ProjectModel(id=project_id, user_id=user_id, name=name, description=description)
        async with self.session_factory() as session:
            session.add(project)
            await session.commit()
        logger.info(f"Created project {project_id} for user {user_id}")
        return project

    async def get_project(self, project_id: str) -> Optional[ProjectModel]:
        async with self.session_factory() as session:
            return await session.get(ProjectModel, project_id)

    async def update_project(self, project_id: str, **fields: Any) -> Optional[ProjectModel]:
        """
        Update columns on a project.

        Returns:
            Updated project, or None if it does not exist
        """
        async with self.session_factory() as session:
            project = await session.get(ProjectModel, project_id)
            if project is None:
                return None
            for key, value in fields.items():
                setattr(project, key, value)
            await session.commit()
            return project

    async def create_conversation(
        self,
        conversation_id: str,
        project_id: str,
        user_id: str,
        title: Optional[str] = None
    ) -> ConversationModel:
        conversation = ConversationModel(
            id=conversation_id,
            project_id=project_id,
            user_id=user_id,
            title=title
        )
        async with self.session_factory() as session:
            session.add(conversation)
            await session.commit()
        return conversation

    async def get_conversation(self, conversation_id: str) -> Optional[ConversationModel]:
        async with self.session_factory() as session:
            return await session.get(ConversationModel, conversation_id)

    async def create_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        agent_type: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None
    ) -> MessageModel:
        message = MessageModel(
            id=str(uuid.uuid4()),
            conversation_id=conversation_id,
            role=role,
            content=content,
            agent_type=agent_type,
            message_metadata=metadata or {}
        )
        async with self.session_factory() as session:
            session.add(message)
            await session.commit()
        return message

    async def list_messages(self, conversation_id: str) -> list[MessageModel]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(MessageModel)
                .where(MessageModel.conversation_id == conversation_id)
                .order_by(MessageModel.created_at)
            )
            return list(result.scalars().all())

    async def save_context(self, context: ProjectContext) -> None:
        """Store a context snapshot on its project row, creating the row if needed."""
        snapshot = context.model_dump(mode="json")
        async with self.session_factory() as session:
            project = await session.get(ProjectModel, context.project_id)
            if project is None:
                name = context.requirements.project_name if context.requirements else "Untitled Project"
                project = ProjectModel(id=context.project_id, user_id=context.user_id, name=name)
                session.add(project)
            project.context = snapshot
            project.status = context.current_phase
            await session.commit()
        logger.info(f"Saved context for project {context.project_id}")

    async def load_context(self, project_id: str) -> Optional[ProjectContext]:
        project = await self.get_project(project_id)
        if project is None or not project.context:
            return None
        try:
            return ProjectContext.model_validate(project.context)
        except SchemaError as e:
            logger.error(f"Stored context for project {project_id} is invalid: {e}")
            return None
