"""Push notifications to listeners keyed by project id."""

import inspect
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Union

logger = logging.getLogger(__name__)

StreamListener = Callable[[dict[str, Any]], Union[None, Awaitable[None]]]


class StreamRegistry:
    """Registry of stream listeners per project."""

    def __init__(self):
        self.listeners: dict[str, list[StreamListener]] = {}

    def add(self, project_id: str, listener: StreamListener) -> None:
        self.listeners.setdefault(project_id, []).append(listener)
        logger.debug(f"Stream listener added for project {project_id}")

    def remove(self, project_id: str, listener: StreamListener) -> None:
        listeners = self.listeners.get(project_id, [])
        if listener in listeners:
            listeners.remove(listener)
        if not listeners:
            self.listeners.pop(project_id, None)
        logger.debug(f"Stream listener removed for project {project_id}")

    def count(self, project_id: str) -> int:
        return len(self.listeners.get(project_id, []))

    async def emit(self, project_id: str, event_type: str, **data: Any) -> None:
        """
        Deliver an event to every listener of a project.

        A failing listener is logged and skipped; delivery never raises.
        """
        event = {
            "type": event_type,
            "project_id": project_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            **data,
        }
        for listener in list(self.listeners.get(project_id, [])):
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Stream listener for project {project_id} failed on {event_type}: {e}")
