"""
Scene playback.

A scene plays as: image presentation, music ducking, narration part by part,
then the option cards (or the end screen). Every scene render bumps the
engine's generation; each suspended step holds a ``GenerationToken`` and
stops as soon as its generation is no longer the current one, so a stale
render never touches the stage or the audio again.
"""
import asyncio, logging
from dataclasses import dataclass, fields
from typing import List, Optional, Protocol
from ..models import Option, Scene
from .audio import (
    BASE_PLAYBACK_RATE, DUCKED_MUSIC_VOLUME, AudioDevice, AudioPlayer, MusicChannel,
    VolumeRamp, build_reverb_impulse, resolve_source,
)
from .scenes import CombinedAudioNarration, PartsNarration, TextOnlyNarration, narration_mode, prepare_options

logger = logging.getLogger(__name__)

END_TITLE = "CONTINUARÁ..."


class Stage(Protocol):
    """What the player needs from the UI."""

    def show_screen(self, name: str) -> None:
        """One of "home", "start", "loading", "game", "end"."""

    def reset_scene(self, custom_input: bool) -> None: ...
    def set_image(self, ref: Optional[str]) -> None: ...
    def reveal_image(self, presentation: bool) -> None: ...
    def end_presentation(self) -> None: ...
    def append_text(self, text: str, fade_s: float) -> None: ...
    def show_options(self, custom_input: bool) -> None: ...
    def add_option_card(self, option: Option) -> None: ...
    def replace_last_option(self, text: str) -> None: ...
    def mark_option(self, text: str, state: str) -> None: ...
    def mark_input(self, state: str) -> None: ...
    def fade_out_content(self, seconds: float) -> None: ...
    def restore_content(self) -> None: ...
    def reveal_title(self, text: str, stagger_s: float) -> None: ...
    def alert(self, message: str) -> None: ...


@dataclass
class PlayerSettings:
    voice_volume: float = 1.0
    music_volume: float = 0.4
    reverb_level: float = 0.3
    playback_speed: float = 1.0


@dataclass
class Timings:
    presentation_s: float = 5.0
    pre_narration_s: float = 1.0
    part_fade_s: float = 2.0
    combined_fade_s: float = 4.0
    text_only_hold_s: float = 4.0
    min_fallback_s: float = 2.0
    per_char_fallback_s: float = 0.05
    option_gap_s: float = 0.2
    end_fade_s: float = 1.5
    title_stagger_s: float = 0.2
    content_restore_s: float = 0.1
    replay_open_s: float = 1.0
    replay_success_s: float = 1.0
    replay_loading_s: float = 0.5

    @classmethod
    def instant(cls) -> "Timings":
        return cls(**{f.name: 0.0 for f in fields(cls)})


class StaleGeneration(Exception):
    """Raised at a suspension point whose render has been superseded."""


class GenerationToken:
    def __init__(self, engine: "PlaybackEngine", generation: int):
        self.engine = engine
        self.generation = generation

    @property
    def current(self) -> bool:
        return self.engine.generation == self.generation

    def check(self):
        if not self.current:
            raise StaleGeneration(self.generation)

    async def wait(self, seconds: float):
        await self.engine.sleep(seconds)
        self.check()


class PlaybackEngine:
    def __init__(self, stage: Stage, device: AudioDevice, settings: PlayerSettings = None,
                 timings: Timings = None, sleep=asyncio.sleep, base_url: str = ""):
        self.stage = stage
        self.device = device
        self.settings = settings or PlayerSettings()
        self.timings = timings or Timings()
        self.sleep = sleep
        self.base_url = base_url
        self.generation = 0
        self.current_audio: Optional[AudioPlayer] = None
        self.task: Optional[asyncio.Task] = None
        self.music = MusicChannel(device, VolumeRamp(sleep), self.settings.music_volume, base_url)

    # --- generation bookkeeping --------------------------------------------

    def token(self) -> GenerationToken:
        return GenerationToken(self, self.generation)

    def _invalidate(self) -> GenerationToken:
        self.generation += 1
        self.stop_current_audio()
        return self.token()

    def stop_current_audio(self):
        if self.current_audio is not None:
            player, self.current_audio = self.current_audio, None
            player.stop()

    # --- rendering ----------------------------------------------------------

    def render(self, scene: Scene, is_replay: bool = False) -> asyncio.Task:
        """Take over the stage for ``scene``. Must be called from a running loop."""
        token = self._invalidate()
        self.stage.reset_scene(custom_input=not is_replay)
        if scene.image:
            self.stage.set_image(scene.image)
        self.task = asyncio.ensure_future(self._run(scene, is_replay, token))
        return self.task

    async def _run(self, scene: Scene, is_replay: bool, token: GenerationToken):
        try:
            await self._sequence(scene, is_replay, token)
        except StaleGeneration:
            logger.debug(f"Render of generation {token.generation} superseded")

    async def _sequence(self, scene: Scene, is_replay: bool, token: GenerationToken):
        t = self.timings
        self.stage.reveal_image(presentation=True)
        await token.wait(t.presentation_s)
        self.stage.end_presentation()

        self.music.fade_to(DUCKED_MUSIC_VOLUME)
        await token.wait(t.pre_narration_s)

        await self._narrate(scene, token)
        token.check()

        options = prepare_options(scene, is_replay)
        if options:
            await self.show_options(options, is_replay, token)
        else:
            await self.show_end(token)

    async def _narrate(self, scene: Scene, token: GenerationToken):
        mode = narration_mode(scene)
        if isinstance(mode, PartsNarration):
            await self._narrate_parts(mode, token)
        elif isinstance(mode, CombinedAudioNarration):
            await self._narrate_combined(mode, token)
        else:
            await self._narrate_text_only(mode, token)

    def _paced(self, seconds: float) -> float:
        return seconds / (self.settings.playback_speed or 1.0)

    async def _narrate_parts(self, mode: PartsNarration, token: GenerationToken):
        t = self.timings
        for part in mode.parts:
            token.check()
            self.stage.append_text(part.text, self._paced(t.part_fade_s))
            if part.audio:
                await self.play_with_effects(part.audio, token)
            else:
                await token.wait(self._paced(max(t.min_fallback_s, len(part.text) * t.per_char_fallback_s)))

    async def _narrate_combined(self, mode: CombinedAudioNarration, token: GenerationToken):
        for segment in mode.segments:
            self.stage.append_text(segment, self._paced(self.timings.combined_fade_s))
        await self.play_with_effects(mode.audio, token)

    async def _narrate_text_only(self, mode: TextOnlyNarration, token: GenerationToken):
        t = self.timings
        for segment in mode.segments:
            token.check()
            self.stage.append_text(segment, self._paced(t.part_fade_s))
            await token.wait(self._paced(t.text_only_hold_s))

    async def play_with_effects(self, ref: str, token: GenerationToken = None):
        """Play a voice clip through the dry/wet chain; resolves when it ends or fails."""
        if not ref:
            return
        player = self.device.create_player(resolve_source(ref, self.base_url))
        player.volume = self.settings.voice_volume
        player.preserves_pitch = False
        player.playback_rate = BASE_PLAYBACK_RATE * self.settings.playback_speed
        self.current_audio = player

        context = self.device.open_effects_context()
        try:
            context.connect(player, build_reverb_impulse(context.sample_rate), self.settings.reverb_level)
            try:
                await player.play()
                if token is None or token.current:
                    context.resume()
            except Exception as e:
                logger.error(f"Audio play failed for {ref[:80]}: {e}")
                return
            if token is not None and not token.current:
                player.stop()
                token.check()
            await player.wait_finished()
        finally:
            if not context.closed:
                context.close()
            if self.current_audio is player:
                self.current_audio = None
        if token is not None:
            token.check()

    async def show_options(self, options: List[Option], is_replay: bool, token: GenerationToken):
        self.stage.show_options(custom_input=not is_replay)
        for option in options:
            token.check()
            self.stage.add_option_card(option)
            if option.audio:
                await self.play_with_effects(option.audio, token)
            await token.wait(self.timings.option_gap_s)

    async def show_end(self, token: GenerationToken):
        t = self.timings
        self.stage.fade_out_content(t.end_fade_s)
        await token.wait(t.end_fade_s)
        self.music.fade_to(1.0)
        self.stage.reveal_title(END_TITLE, t.title_stagger_s)
        self.stage.show_screen("end")
        await token.wait(t.content_restore_s)
        self.stage.restore_content()

    async def end_story(self):
        """End screen outside of a render (e.g. a replay that ran out of scenes)."""
        token = self.token()
        try:
            await self.show_end(token)
        except StaleGeneration:
            logger.debug("End screen superseded")

    # --- controls -----------------------------------------------------------

    def return_home(self):
        self._invalidate()
        self.music.stop()
        self.stage.show_screen("home")

    def set_playback_speed(self, speed: float):
        self.settings.playback_speed = speed
        if self.current_audio is not None:
            self.current_audio.playback_rate = BASE_PLAYBACK_RATE * speed

    def set_voice_volume(self, volume: float):
        self.settings.voice_volume = volume
        if self.current_audio is not None:
            self.current_audio.volume = volume

    def set_music_volume(self, volume: float):
        self.settings.music_volume = volume
        self.music.set_volume(volume)

    def set_reverb_level(self, level: float):
        # Applies from the next clip on
        self.settings.reverb_level = level
