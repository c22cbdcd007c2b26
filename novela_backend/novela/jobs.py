"""
Client side of provider jobs that take longer than one HTTP request:
start a task, then poll its status until it is terminal or we run out of attempts.
"""
import asyncio, logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional
import httpx

logger = logging.getLogger(__name__)


class JobState(str, Enum):
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    PENDING = "PENDING"


@dataclass
class PollResult:
    state: JobState
    output_url: Optional[str] = None
    raw: Optional[Dict[str, Any]] = None

    @property
    def terminal(self) -> bool:
        return self.state is not JobState.PENDING


class AsyncJobPoller:
    """Subclasses implement ``start``, ``fetch`` and ``classify`` for one provider."""

    name = "job"

    def __init__(self, interval_s: float = 2.0, max_attempts: int = 30,
                 timeout: float = 30, transport: httpx.AsyncBaseTransport = None):
        self.interval_s = interval_s
        self.max_attempts = max_attempts
        self.timeout = timeout
        self._transport = transport

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def start(self, **payload) -> str:
        raise NotImplementedError

    async def fetch(self, task_id: str) -> Dict[str, Any]:
        raise NotImplementedError

    def classify(self, raw: Dict[str, Any]) -> PollResult:
        raise NotImplementedError

    async def poll(self, task_id: str, max_attempts: int = None, interval_s: float = None) -> PollResult:
        attempts = self.max_attempts if max_attempts is None else max_attempts
        interval = self.interval_s if interval_s is None else interval_s
        for attempt in range(attempts):
            await asyncio.sleep(interval)
            try:
                raw = await self.fetch(task_id)
            except (httpx.HTTPError, ValueError) as e:
                # Says nothing about the task itself, only the provider may fail it
                logger.warning(f"[{self.name}] polling task {task_id} failed: {e}")
                continue
            result = self.classify(raw)
            logger.info(f"[{self.name}] task={task_id} attempt={attempt + 1}/{attempts} state={result.state.value}")
            if result.terminal:
                return result
        return PollResult(JobState.PENDING)

    async def run(self, **payload) -> PollResult:
        task_id = await self.start(**payload)
        logger.info(f"[{self.name}] started task {task_id}")
        return await self.poll(task_id)
