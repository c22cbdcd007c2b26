"""
Audio side of the player.

The concrete output (browser, desktop mixer, test double) is hidden behind
``AudioDevice``. What lives here is the part that is the same everywhere:
where a reference points to, the voice effect chain and volume ramps.
"""
import asyncio, logging, math
from typing import Dict, Optional, Protocol, Tuple
import numpy as np

logger = logging.getLogger(__name__)

# Voices are played slightly fast with pitch correction off, which lowers them a bit
BASE_PLAYBACK_RATE = 1.2
REVERB_SECONDS = 1.5
DUCKED_MUSIC_VOLUME = 0.05


def resolve_source(ref: str, base_url: str = "") -> str:
    """Server paths start with "/", anything else is inline base64 mp3."""
    if ref.startswith("/"):
        return f"{base_url.rstrip('/')}{ref}"
    return f"data:audio/mpeg;base64,{ref}"


class AudioPlayer(Protocol):
    volume: float
    playback_rate: float
    preserves_pitch: bool
    loop: bool

    @property
    def paused(self) -> bool: ...

    async def play(self) -> None:
        """Start playback. Raises if playback cannot start."""

    def stop(self) -> None:
        """Pause and release anybody waiting in ``wait_finished``."""

    async def wait_finished(self) -> None:
        """Resolve when playback ends, errors out, or is stopped."""


class EffectsContext(Protocol):
    sample_rate: int

    @property
    def closed(self) -> bool: ...

    def connect(self, player: AudioPlayer, impulse: np.ndarray, wet_level: float) -> None:
        """Route the player to the output directly and through the convolver."""

    def resume(self) -> None: ...

    def close(self) -> None: ...


class AudioDevice(Protocol):
    def create_player(self, source: str) -> AudioPlayer: ...

    def open_effects_context(self) -> EffectsContext: ...

    def play_cue(self, kind: str) -> None:
        """Short feedback sound: "success" chime or "error" buzz."""


def build_reverb_impulse(sample_rate: int, seconds: float = REVERB_SECONDS,
                         rng: np.random.Generator = None) -> np.ndarray:
    """Stereo impulse response: white noise under a cubic decay, same on both channels."""
    rng = rng or np.random.default_rng()
    length = max(1, int(sample_rate * seconds))
    decay = (1.0 - np.arange(length) / length) ** 3
    channel = rng.uniform(-1.0, 1.0, length) * decay
    return np.vstack([channel, channel])


def ramp_step(current: float, target: float, step: float, tolerance: float) -> Tuple[float, bool]:
    """One tick of a volume ramp. Returns (new value, done)."""
    diff = target - current
    if abs(diff) <= tolerance:
        return target, True
    value = current + math.copysign(step, diff)
    return min(1.0, max(0.0, value)), False


class VolumeRamp:
    """Drives ramps on players, at most one at a time per player."""

    def __init__(self, sleep=asyncio.sleep):
        self._sleep = sleep
        self._tasks: Dict[int, asyncio.Task] = {}

    async def _run(self, player: AudioPlayer, target: float, step: float,
                   tolerance: float, interval_s: float, pause_at_end: bool):
        while True:
            player.volume, done = ramp_step(player.volume, target, step, tolerance)
            if done:
                break
            await self._sleep(interval_s)
        if pause_at_end:
            player.stop()

    def _launch(self, player: AudioPlayer, coro) -> asyncio.Task:
        key = id(player)
        previous = self._tasks.get(key)
        if previous and not previous.done():
            previous.cancel()
        task = asyncio.ensure_future(coro)
        self._tasks[key] = task

        def _forget(done: asyncio.Task):
            if self._tasks.get(key) is done:
                del self._tasks[key]

        task.add_done_callback(_forget)
        return task

    def fade_to(self, player: AudioPlayer, target: float, step: float = 0.03,
                tolerance: float = 0.02, interval_s: float = 0.15) -> asyncio.Task:
        return self._launch(player, self._run(player, target, step, tolerance, interval_s, False))

    def fade_out(self, player: AudioPlayer, step: float = 0.05, interval_s: float = 0.2) -> asyncio.Task:
        return self._launch(player, self._run(player, 0.0, step, step, interval_s, True))

    def cancel(self, player: AudioPlayer):
        task = self._tasks.pop(id(player), None)
        if task and not task.done():
            task.cancel()


class MusicChannel:
    """The looping background track. One track per story."""

    def __init__(self, device: AudioDevice, ramp: VolumeRamp, volume: float = 0.4, base_url: str = ""):
        self.device = device
        self.ramp = ramp
        self.volume = volume
        self.base_url = base_url
        self.player: Optional[AudioPlayer] = None
        self.source: Optional[str] = None

    @property
    def playing(self) -> bool:
        return self.player is not None and not self.player.paused

    async def _start(self, player: AudioPlayer):
        try:
            await player.play()
        except Exception as e:
            logger.error(f"Music play failed: {e}")

    def play(self, ref: str) -> None:
        source = resolve_source(ref, self.base_url)
        if self.player is not None and self.source == source and not self.player.paused:
            # Same track already running: never restart it
            self.player.volume = self.volume
            return
        if self.player is not None:
            self.ramp.fade_out(self.player)
        player = self.device.create_player(source)
        player.loop = True
        player.volume = self.volume
        self.player, self.source = player, source
        asyncio.ensure_future(self._start(player))

    def set_volume(self, volume: float):
        self.volume = volume
        if self.player is not None:
            self.ramp.cancel(self.player)
            self.player.volume = volume

    def fade_to(self, target: float) -> Optional[asyncio.Task]:
        if self.player is None:
            return None
        return self.ramp.fade_to(self.player, target)

    def stop(self):
        if self.player is not None:
            self.ramp.cancel(self.player)
            self.player.stop()
        self.player, self.source = None, None
