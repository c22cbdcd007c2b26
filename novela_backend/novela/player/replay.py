"""
Replay of a recorded story.

The player has to pick, at each scene, the choice that was recorded when the
story was written. Nothing is regenerated; a recorded scene without a
``selectedOption`` is where the story ends.
"""
import enum, logging
from typing import Callable, Optional
from ..models import Scene, Story
from .engine import PlaybackEngine, StaleGeneration

logger = logging.getLogger(__name__)


class ReplayOutcome(enum.Enum):
    ADVANCED = "advanced"
    REJECTED = "rejected"
    ENDED = "ended"
    # Home (or another story) was opened while the choice was being confirmed
    CANCELLED = "cancelled"


class ReplayEngine:
    def __init__(self, story: Story, engine: PlaybackEngine,
                 present: Optional[Callable[[Scene], object]] = None):
        self.story = story
        self.engine = engine
        self.present = present or (lambda scene: engine.render(scene, is_replay=True))
        self.index = 0

    @property
    def scene(self) -> Optional[Scene]:
        if 0 <= self.index < len(self.story.scenes):
            return self.story.scenes[self.index]
        return None

    @property
    def finished(self) -> bool:
        return self.scene is None

    async def start(self) -> bool:
        """Show the first recorded scene. False when the story has none."""
        if not self.story.scenes:
            return False
        stage, token = self.engine.stage, self.engine.token()
        stage.show_screen("loading")
        try:
            await token.wait(self.engine.timings.replay_open_s)
        except StaleGeneration:
            return False
        self.index = 0
        self.present(self.story.scenes[0])
        stage.show_screen("game")
        return True

    async def choose(self, text: str, custom: bool = False) -> ReplayOutcome:
        scene = self.scene
        if scene is None or not scene.selected_option:
            await self.engine.end_story()
            return ReplayOutcome.ENDED

        text = (text or "").strip()
        stage, device = self.engine.stage, self.engine.device
        if custom:
            self.engine.stop_current_audio()

        if text != scene.selected_option:
            # Narration keeps playing; the input stays for correction
            device.play_cue("error")
            if custom:
                stage.mark_input("error")
            else:
                stage.mark_option(text, "error")
            return ReplayOutcome.REJECTED

        if not custom:
            self.engine.stop_current_audio()
            stage.mark_option(text, "success")
        else:
            stage.mark_input("success")
        device.play_cue("success")

        token = self.engine.token()
        try:
            await token.wait(self.engine.timings.replay_success_s)
            self.index += 1
            if self.finished:
                await self.engine.end_story()
                return ReplayOutcome.ENDED
            stage.show_screen("loading")
            await token.wait(self.engine.timings.replay_loading_s)
        except StaleGeneration:
            logger.debug(f"Replay of story {self.story.id} left during a choice")
            return ReplayOutcome.CANCELLED

        logger.info(f"Replay of story {self.story.id} advanced to scene {self.index}")
        self.present(self.scene)
        stage.show_screen("game")
        return ReplayOutcome.ADVANCED
