import asyncio, logging
from typing import Awaitable, Callable, List, Optional, Sequence
from .asset_store import AssetStore
from .elevenlabs_client import tts_to_bytes
from .models import NarrativePart, Option
from .settings import NARRATION_SEGMENT_DELAY_S

logger = logging.getLogger(__name__)

SpeechFn = Callable[[str], Awaitable[bytes]]


class NarrationPipeline:
    """Turns scene text into stored speech, one request at a time.

    A segment whose synthesis fails keeps its text and gets ``audio=None``;
    the player falls back to timed text for it.
    """

    def __init__(self, store: AssetStore, tts: SpeechFn = tts_to_bytes,
                 segment_delay_s: float = NARRATION_SEGMENT_DELAY_S):
        self.store = store
        self.tts = tts
        self.segment_delay_s = segment_delay_s

    async def _voice(self, text: str, story_id: str, label: str) -> Optional[str]:
        try:
            audio = await self.tts(text)
        except Exception as e:
            logger.warning(f"Speech synthesis failed for {label} of story {story_id}: {e}")
            return None
        if not audio:
            logger.warning(f"Speech synthesis returned no audio for {label} of story {story_id}")
            return None
        return self.store.save_asset(story_id, audio, "mp3", label)

    async def synthesize(self, segments: Sequence[str], story_id: str) -> List[NarrativePart]:
        parts = []
        for i, segment in enumerate(segments):
            if i > 0 and self.segment_delay_s:
                await asyncio.sleep(self.segment_delay_s)
            audio = await self._voice(segment, story_id, f"narrative_part_{i}")
            parts.append(NarrativePart(text=segment, audio=audio))
        voiced = sum(1 for p in parts if p.audio)
        logger.info(f"Narration for story {story_id}: {voiced}/{len(parts)} segments voiced")
        return parts

    async def voice_options(self, options: Sequence[Option], story_id: str) -> List[Option]:
        voiced = []
        for idx, option in enumerate(options):
            audio = await self._voice(option.text, story_id, f"option_{idx}")
            voiced.append(option.model_copy(update={"audio": audio}))
        return voiced

    async def voice_choice(self, choice: str, story_id: str, options: Sequence[Option]) -> Optional[str]:
        """Audio for the choice that moved the story on, so replays can speak it."""
        matched = next((o for o in options if o.text == choice), None)
        if matched and matched.audio:
            return matched.audio
        return await self._voice(choice, story_id, "selected_option")
