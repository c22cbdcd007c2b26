"""Scene shapes the player knows how to sequence."""
from dataclasses import dataclass
from typing import List, Union
from ..models import NarrativePart, Option, Scene


@dataclass
class PartsNarration:
    """Current shape: each text segment carries its own audio (or none)."""
    parts: List[NarrativePart]


@dataclass
class CombinedAudioNarration:
    """Older stories: one audio file for all segments."""
    segments: List[str]
    audio: str


@dataclass
class TextOnlyNarration:
    segments: List[str]


NarrationMode = Union[PartsNarration, CombinedAudioNarration, TextOnlyNarration]


def narration_mode(scene: Scene) -> NarrationMode:
    narrative = scene.narrative
    if narrative and narrative.parts:
        return PartsNarration(list(narrative.parts))
    if narrative and narrative.audio:
        return CombinedAudioNarration(scene.text_segments(), narrative.audio)
    return TextOnlyNarration(scene.text_segments())


def prepare_options(scene: Scene, is_replay: bool) -> List[Option]:
    """Options to show for a scene.

    When replaying, a recorded free-text choice takes the last slot so the
    player can pick it; the number of cards never changes.
    """
    options = [o.model_copy() for o in scene.options]
    if not is_replay or not options or not scene.selected_option:
        return options
    if any(o.text == scene.selected_option for o in options):
        return options
    last = options[-1]
    options[-1] = last.model_copy(update={
        "text": scene.selected_option,
        "audio": scene.selected_option_audio or last.audio,
    })
    return options
