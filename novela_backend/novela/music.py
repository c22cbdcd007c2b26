"""
One background track per story.

``request_music`` is called repeatedly by the player until it gets a track.
Each call short-circuits in this order: another request already owns the
story; a track is already saved; a previously started task is polled; a new
task is started. The persisted task id in ``music_status.json`` is what keeps
later calls from starting a second job.
"""
import logging, time
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union
import httpx
from .asset_store import AssetStore
from .inflight import InFlightRegistry
from .jobs import JobState
from .models import GenerationError, MusicJobStatus
from .suno_client import SunoMusicJob

logger = logging.getLogger(__name__)

DEFAULT_STYLE = "Ambient mystery"
DEFAULT_TITLE = "Mystery Scene"


@dataclass
class MusicReady:
    music: str


@dataclass
class MusicPending:
    task_id: Optional[str]
    info: Optional[Dict[str, Any]] = None


@dataclass
class MusicFailed:
    error: str
    raw: Optional[Dict[str, Any]] = None


MusicResult = Union[MusicReady, MusicPending, MusicFailed]


class MusicOrchestrator:
    def __init__(self, store: AssetStore, job: SunoMusicJob = None,
                 inflight: InFlightRegistry = None, wait_for_owner_s: float = 30):
        self.store = store
        self.job = job or SunoMusicJob()
        self.inflight = inflight or InFlightRegistry()
        self.wait_for_owner_s = wait_for_owner_s

    async def request_music(self, story_id: str, style: Optional[str], title: Optional[str]) -> MusicResult:
        owned, entry = await self.inflight.try_reserve(story_id)
        if not owned:
            task_id = entry.task_id or await entry.wait(self.wait_for_owner_s)
            if task_id:
                logger.info(f"Music for story {story_id} already in flight (task {task_id})")
                return MusicPending(task_id)
            if entry.outcome is not None:
                return entry.outcome
            logger.warning(f"Concurrent music request for story {story_id} ended without a task")
            return MusicFailed("Music generation could not be started. Please retry.")
        try:
            entry.outcome = await self._resolve(story_id, style or DEFAULT_STYLE, title or DEFAULT_TITLE)
            return entry.outcome
        finally:
            self.inflight.release(story_id)

    async def _resolve(self, story_id: str, style: str, title: str) -> MusicResult:
        existing = self.store.existing_music(story_id)
        if existing:
            return MusicReady(existing)

        status = self.store.read_music_status(story_id)
        if status.music_path and self.store.exists(status.music_path):
            return MusicReady(status.music_path)

        if status.task_id:
            self.inflight.set_task(story_id, status.task_id)
            return await self._collect(story_id, status.task_id)

        task_id = await self.job.start(style=style, title=title)
        self.inflight.set_task(story_id, task_id)
        self.store.write_music_status(story_id, MusicJobStatus(task_id=task_id))
        return MusicPending(task_id)

    async def _collect(self, story_id: str, task_id: str) -> MusicResult:
        result = await self.job.poll(task_id)

        if result.state is JobState.SUCCEEDED and result.output_url:
            try:
                data = await self.job.download(result.output_url)
            except httpx.HTTPError as e:
                logger.error(f"Error downloading finalized music for {story_id}: {e}")
                return MusicFailed("Failed to download generated music")
            music_path = self.store.save_asset(story_id, data, "mp3", f"music_{int(time.time() * 1000)}")
            self.store.attach_music(story_id, music_path)
            self.store.write_music_status(story_id, MusicJobStatus(task_id=task_id, music_path=music_path))
            logger.info(f"Music for story {story_id} saved at {music_path}")
            return MusicReady(music_path)

        if result.state is JobState.SUCCEEDED:
            logger.warning(f"Music task {task_id} succeeded without an audio URL")
            return MusicPending(task_id, info=result.raw or {})

        if result.state is JobState.FAILED and result.raw is not None:
            # Provider gave up on the task, the next request starts over
            self.store.write_music_status(story_id, MusicJobStatus())
            return MusicFailed("Music generation failed. Please retry.", raw=result.raw)

        return MusicPending(task_id)

    async def status_raw(self, task_id: str) -> Dict[str, Any]:
        try:
            return await self.job.status_raw(task_id)
        except (httpx.HTTPError, RuntimeError) as e:
            logger.error(f"Error fetching music status: {e}")
            raise GenerationError("Failed to fetch task status") from e
