"""Bounded store of per-project coordination state."""

import logging
import time
from collections import OrderedDict
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Optional

from beaver.orchestrator.project_context import ProjectContext

logger = logging.getLogger(__name__)

EvictCallback = Callable[[ProjectContext], Awaitable[None]]
LoadCallback = Callable[[str], Awaitable[Optional[ProjectContext]]]


class ProjectContextStore:
    """
    LRU + TTL cache of ProjectContext keyed by project id.

    Evicted contexts go through on_evict before being dropped, and misses
    consult loader, so a persisting callback pair keeps state across eviction.
    """

    def __init__(
        self,
        max_size: int = 256,
        ttl_seconds: float = 3600.0,
        on_evict: Optional[EvictCallback] = None,
        loader: Optional[LoadCallback] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize store.

        Args:
            max_size: Maximum number of contexts kept in memory
            ttl_seconds: Idle time after which a context is evicted
            on_evict: Async callback receiving each evicted context
            loader: Async callback returning a stored context for a project id
            clock: Monotonic time source
        """
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self.on_evict = on_evict
        self.loader = loader
        self.clock = clock
        self._entries: OrderedDict[str, tuple[ProjectContext, float]] = OrderedDict()
        self._pins: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, project_id: str) -> bool:
        return project_id in self._entries

    def peek(self, project_id: str) -> Optional[ProjectContext]:
        """Return a cached context without touching recency or loading."""
        entry = self._entries.get(project_id)
        return entry[0] if entry else None

    def pin(self, project_id: str) -> None:
        """
        Keep a project's context in memory until the matching unpin.

        Pinned contexts are skipped by capacity and TTL eviction, so the
        store may hold more than max_size entries while requests are running.
        """
        self._pins[project_id] = self._pins.get(project_id, 0) + 1

    async def unpin(self, project_id: str) -> None:
        """Release one pin and evict whatever the store is holding over capacity."""
        count = self._pins.get(project_id, 0) - 1
        if count > 0:
            self._pins[project_id] = count
        else:
            self._pins.pop(project_id, None)
        await self._enforce_capacity()

    @asynccontextmanager
    async def pinned(self, project_id: str) -> AsyncIterator[None]:
        self.pin(project_id)
        try:
            yield
        finally:
            await self.unpin(project_id)

    def is_pinned(self, project_id: str) -> bool:
        return project_id in self._pins

    async def get(self, project_id: str) -> Optional[ProjectContext]:
        """Return a context from memory, falling back to the loader."""
        await self._evict_expired()

        entry = self._entries.get(project_id)
        if entry:
            self._entries[project_id] = (entry[0], self.clock())
            self._entries.move_to_end(project_id)
            return entry[0]

        if self.loader is None:
            return None

        context = await self.loader(project_id)
        if context is not None:
            interrupted = context.fail_interrupted()
            if interrupted:
                logger.warning(f"Project {project_id} had interrupted tasks, marked failed: {', '.join(interrupted)}")
            logger.info(f"Restored context for project {project_id}")
            await self.put(context)
        return context

    async def get_or_create(self, project_id: str, user_id: str) -> ProjectContext:
        context = await self.get(project_id)
        if context is None:
            context = ProjectContext(project_id=project_id, user_id=user_id)
            await self.put(context)
            logger.info(f"Created context for project {project_id}")
        return context

    async def put(self, context: ProjectContext) -> None:
        self._entries[context.project_id] = (context, self.clock())
        self._entries.move_to_end(context.project_id)
        await self._enforce_capacity(keep=context.project_id)

    def remove(self, project_id: str) -> Optional[ProjectContext]:
        """Drop a context without calling on_evict."""
        entry = self._entries.pop(project_id, None)
        return entry[0] if entry else None

    async def flush(self) -> None:
        """Evict every context through on_evict (used at shutdown)."""
        while self._entries:
            _, (context, _) = self._entries.popitem(last=False)
            await self._evict(context, reason="flush")

    async def _enforce_capacity(self, keep: Optional[str] = None) -> None:
        while len(self._entries) > self.max_size:
            victim = next((p for p in self._entries if p not in self._pins and p != keep), None)
            if victim is None:
                return
            context, _ = self._entries.pop(victim)
            await self._evict(context, reason="capacity")

    async def _evict_expired(self) -> None:
        now = self.clock()
        expired = [
            project_id for project_id, (_, touched) in self._entries.items()
            if now - touched > self.ttl_seconds and project_id not in self._pins
        ]
        for project_id in expired:
            context, _ = self._entries.pop(project_id)
            await self._evict(context, reason="ttl")

    async def _evict(self, context: ProjectContext, reason: str) -> None:
        logger.info(f"Evicting context for project {context.project_id} ({reason})")
        if self.on_evict is None:
            return
        try:
            await self.on_evict(context)
        except Exception as e:
            logger.error(f"Failed to persist evicted context {context.project_id}: {e}", exc_info=True)
