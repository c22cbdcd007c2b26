"""
A player session: live play against the API, or replay of a recorded story.

The session owns what the engine does not: the story id, the dialogue
history sent with every ``/api/next`` call, and the story's single music
track (asked for once, then retried until it is ready).
"""
import asyncio, logging
from typing import List, Optional
import httpx
from ..models import HistoryEntry, Scene
from .api_client import ApiError, NovelaClient
from .engine import PlaybackEngine
from .replay import ReplayEngine

logger = logging.getLogger(__name__)

DEFAULT_CUSTOM_CHOICE = "I show you these images."
MUSIC_RETRY_S = 3.0
MUSIC_RETRY_ATTEMPTS = 80

MISSING_SETTING_ALERT = "¡Por favor ingresa un escenario!"
GENERATION_ALERT = "Error generando la historia. Por favor intenta de nuevo."
LOAD_STORY_ALERT = "Error al cargar la historia."


class GameSession:
    def __init__(self, client: NovelaClient, engine: PlaybackEngine, sleep=asyncio.sleep,
                 music_retry_s: float = MUSIC_RETRY_S, music_attempts: int = MUSIC_RETRY_ATTEMPTS):
        self.client = client
        self.engine = engine
        self.sleep = sleep
        self.music_retry_s = music_retry_s
        self.music_attempts = music_attempts

        self.story_id: Optional[str] = None
        self.history: List[HistoryEntry] = []
        self.replay: Optional[ReplayEngine] = None
        self.story_music: Optional[str] = None
        self.current_scene: Optional[Scene] = None
        self.music_task: Optional[asyncio.Task] = None

    @property
    def stage(self):
        return self.engine.stage

    def _reset(self):
        self.story_id = None
        self.history = []
        self.replay = None
        self.story_music = None
        self.current_scene = None
        if self.music_task and not self.music_task.done():
            self.music_task.cancel()
        self.music_task = None

    # --- live mode ----------------------------------------------------------

    async def start(self, setting: str, images: List[str] = None) -> Optional[Scene]:
        setting = (setting or "").strip()
        if not setting:
            self.stage.alert(MISSING_SETTING_ALERT)
            return None
        self._reset()
        return await self._load(self.client.start(setting, images or []))

    async def choose(self, text: str):
        """Option card picked. Returns the new scene live, a ReplayOutcome in replay."""
        if self.replay is not None:
            return await self.replay.choose(text)
        self.engine.stop_current_audio()
        self.history.append(HistoryEntry(role="user", text=text))
        return await self._load(self.client.next(self.history, text, self.story_id))

    async def custom_action(self, text: str, images: List[str] = None):
        text = (text or "").strip()
        images = images or []
        if not text and not images:
            return None
        self.engine.stop_current_audio()
        if self.replay is not None:
            return await self.replay.choose(text, custom=True)

        if text:
            self.stage.replace_last_option(text)
        choice = text or DEFAULT_CUSTOM_CHOICE
        self.history.append(HistoryEntry(role="user", text=choice))
        return await self._load(self.client.next(self.history, choice, self.story_id, images))

    async def _load(self, request) -> Optional[Scene]:
        self.stage.show_screen("loading")
        try:
            result = await request
        except (ApiError, httpx.HTTPError) as e:
            logger.error(f"Scene request failed: {e}")
            self.stage.alert(GENERATION_ALERT)
            self.stage.show_screen("start")
            return None

        if isinstance(result, tuple):
            story_id, scene = result
            self.story_id = story_id or self.story_id
        else:
            scene = result
        self.present(scene)
        self.history.append(HistoryEntry(role="model", text=scene.full_text()))
        self.stage.show_screen("game")
        return scene

    # --- replay mode --------------------------------------------------------

    async def open_story(self, story_id: str) -> bool:
        try:
            story = await self.client.load_story(story_id)
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Failed to load story {story_id}: {e}")
            self.stage.alert(LOAD_STORY_ALERT)
            return False
        self._reset()
        self.story_id = story.id
        self.story_music = story.music
        self.replay = ReplayEngine(story, self.engine, present=self.present)
        return await self.replay.start()

    # --- shared -------------------------------------------------------------

    def present(self, scene: Scene) -> asyncio.Task:
        """Hand a scene to the engine, keeping the story on its single track."""
        self.current_scene = scene
        is_replay = self.replay is not None
        if not self.story_music and scene.music:
            self.story_music = scene.music

        if self.story_music:
            self.engine.music.play(self.story_music)
        elif scene.scene_music_style and self.story_id and (not is_replay or self.replay.index == 0):
            self._request_music(scene.scene_music_style, scene.scene_music_title, self.story_id)
        return self.engine.render(scene, is_replay=is_replay)

    def _request_music(self, style: str, title: Optional[str], story_id: str):
        if self.music_task and not self.music_task.done():
            return
        self.music_task = asyncio.ensure_future(self.generate_and_play_music(style, title, story_id))

    async def generate_and_play_music(self, style: str, title: Optional[str], story_id: str) -> Optional[str]:
        attempt = 0
        while self.story_id == story_id:
            try:
                data = await self.client.request_music(style, title, story_id)
            except (ApiError, httpx.HTTPError) as e:
                logger.error(f"Background music generation failed: {e}")
                return None

            if data.get("music"):
                if self.story_id != story_id:
                    return None
                logger.info("Music received, playing...")
                self.story_music = data["music"]
                self.engine.music.play(self.story_music)
                return self.story_music
            if not data.get("pending"):
                return None

            attempt += 1
            if attempt > self.music_attempts:
                logger.warning(f"Music for story {story_id} still pending after {self.music_attempts} retries. Giving up.")
                return None
            logger.info(f"Music still pending (task {data.get('taskId') or 'unknown'}), retry {attempt}")
            await self.sleep(self.music_retry_s)
        return None

    def return_home(self):
        self._reset()
        self.engine.return_home()
