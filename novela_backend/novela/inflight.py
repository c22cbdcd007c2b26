"""
Process-wide record of stories whose music is currently being worked on.

This table is the only state shared between concurrent requests. A request
must own a story's slot before it reads status files, polls, or starts a job;
everybody else gets the owner's task id back instead of doing the work twice.
"""
import asyncio, logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass
class InFlightEntry:
    task_id: Optional[str] = None
    # What the owner ended with, read by waiters when it never got a task id
    outcome: Any = None
    known: asyncio.Event = field(default_factory=asyncio.Event)

    async def wait(self, timeout: float = None) -> Optional[str]:
        """Task id of the owner once it is known (None if the owner finished without one)."""
        try:
            await asyncio.wait_for(self.known.wait(), timeout)
        except asyncio.TimeoutError:
            logger.warning("Gave up waiting for in-flight music task id")
        return self.task_id


class InFlightRegistry:
    def __init__(self):
        self._entries: Dict[str, InFlightEntry] = {}
        self._lock = asyncio.Lock()

    async def try_reserve(self, story_id: str) -> Tuple[bool, InFlightEntry]:
        """Atomically claim the slot. Returns (owned, entry)."""
        async with self._lock:
            entry = self._entries.get(story_id)
            if entry is not None:
                return False, entry
            entry = InFlightEntry()
            self._entries[story_id] = entry
            return True, entry

    def set_task(self, story_id: str, task_id: str):
        entry = self._entries.get(story_id)
        if entry is None:
            return
        entry.task_id = task_id
        entry.known.set()

    def release(self, story_id: str):
        entry = self._entries.pop(story_id, None)
        if entry is not None:
            entry.known.set()

    def get(self, story_id: str) -> Optional[InFlightEntry]:
        return self._entries.get(story_id)

    def __contains__(self, story_id: str) -> bool:
        return story_id in self._entries
