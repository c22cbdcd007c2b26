import asyncio

import pytest

from novela.asset_store import AssetStore
from novela.jobs import JobState, PollResult
from novela.player.engine import PlaybackEngine, Timings


async def fast_sleep(_seconds):
    await asyncio.sleep(0)


class FakePlayer:
    def __init__(self, source, device):
        self.source = source
        self.device = device
        self.volume = 1.0
        self.playback_rate = 1.0
        self.preserves_pitch = True
        self.loop = False
        self.stopped = False
        self._paused = True
        self._finished = asyncio.Event()

    @property
    def paused(self):
        return self._paused

    async def play(self):
        if self.device.start_gate is not None:
            await self.device.start_gate.wait()
        if self.device.fail_play:
            raise RuntimeError("autoplay blocked")
        self._paused = False
        self.device.playing.add(self)

    def stop(self):
        self.stopped = True
        self._paused = True
        self.device.playing.discard(self)
        self._finished.set()

    async def wait_finished(self):
        if self.device.hold:
            await self._finished.wait()
            return
        await asyncio.sleep(0)
        self._paused = True
        self.device.playing.discard(self)


class FakeEffects:
    sample_rate = 8000

    def __init__(self):
        self.closed = False
        self.connected = []
        self.resumed = False

    def connect(self, player, impulse, wet_level):
        self.connected.append((player, impulse.shape, wet_level))

    def resume(self):
        self.resumed = True

    def close(self):
        self.closed = True


class FakeDevice:
    def __init__(self):
        self.players = []
        self.contexts = []
        self.cues = []
        self.playing = set()
        self.hold = False
        self.fail_play = False
        # Holds play() until set, like a browser waiting on autoplay
        self.start_gate = None

    def create_player(self, source):
        player = FakePlayer(source, self)
        self.players.append(player)
        return player

    def open_effects_context(self):
        context = FakeEffects()
        self.contexts.append(context)
        return context

    def play_cue(self, kind):
        self.cues.append(kind)


class FakeStage:
    """Records every call the engine makes."""

    def __init__(self):
        self.calls = []

    def __getattr__(self, name):
        if name.startswith("_"):
            raise AttributeError(name)

        def record(*args, **kwargs):
            self.calls.append((name, args, kwargs))
        return record

    def named(self, name):
        return [args for n, args, _ in self.calls if n == name]

    @property
    def texts(self):
        return [args[0] for args in self.named("append_text")]

    @property
    def cards(self):
        return [args[0] for args in self.named("add_option_card")]

    @property
    def screens(self):
        return [args[0] for args in self.named("show_screen")]


class FakeMusicJob:
    """Stands in for the Suno job: counts starts, answers polls from a script."""

    def __init__(self, result=None, audio=b"ID3 music", start_error=None):
        self.started = 0
        self.start_error = start_error
        self.polled = 0
        self.result = result or PollResult(JobState.PENDING)
        self.audio = audio

    async def start(self, style, title):
        await asyncio.sleep(0)
        if self.start_error:
            raise self.start_error
        self.started += 1
        return f"task-{self.started}"

    async def poll(self, task_id, max_attempts=None, interval_s=None):
        self.polled += 1
        return self.result

    async def download(self, url):
        return self.audio

    async def status_raw(self, task_id):
        return {"code": 200, "data": {"taskId": task_id, "status": self.result.state.value}}


@pytest.fixture
def store(tmp_path):
    return AssetStore(str(tmp_path / "stories"))


@pytest.fixture
def stage():
    return FakeStage()


@pytest.fixture
def device():
    return FakeDevice()


@pytest.fixture
def make_engine(stage, device):
    def _make(**kwargs):
        kwargs.setdefault("timings", Timings.instant())
        kwargs.setdefault("sleep", fast_sleep)
        return PlaybackEngine(stage, device, **kwargs)
    return _make


@pytest.fixture
def music_job():
    return FakeMusicJob()
