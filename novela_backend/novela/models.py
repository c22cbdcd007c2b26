from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional, Union

OPTIONS_PER_SCENE = 3


class GenerationError(RuntimeError):
    """An upstream provider failed or answered with something unusable."""


class Option(BaseModel):
    text: str
    audio: Optional[str] = None


class NarrativePart(BaseModel):
    text: str
    audio: Optional[str] = None


class Narrative(BaseModel):
    parts: Optional[List[NarrativePart]] = None
    # Older stories: one audio for the whole scene, or bare segments
    audio: Optional[str] = None
    segments: Optional[List[str]] = None


class Scene(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    title: Optional[str] = None
    scene_text: Union[List[str], str] = Field(default_factory=list)
    scene_image_prompt: str = ""
    scene_music_style: Optional[str] = None
    scene_music_title: Optional[str] = None
    options: List[Option] = Field(default_factory=list)
    narrative: Optional[Narrative] = None
    image: Optional[str] = None
    music: Optional[str] = None
    selected_option: Optional[str] = Field(default=None, alias="selectedOption")
    selected_option_audio: Optional[str] = Field(default=None, alias="selectedOptionAudio")

    def text_segments(self) -> List[str]:
        if self.narrative and self.narrative.segments:
            return list(self.narrative.segments)
        if isinstance(self.scene_text, str):
            return [self.scene_text] if self.scene_text else []
        return list(self.scene_text)

    def full_text(self) -> str:
        if self.narrative and self.narrative.parts:
            return " ".join(p.text for p in self.narrative.parts)
        return " ".join(self.text_segments())


class Story(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    title: str
    setting: str = ""
    created_at: str = Field(alias="createdAt")
    scenes: List[Scene] = Field(default_factory=list)

    @property
    def music(self) -> Optional[str]:
        # One track per story, always carried by the first scene
        return self.scenes[0].music if self.scenes else None


class MusicJobStatus(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    task_id: Optional[str] = Field(default=None, alias="taskId")
    music_path: Optional[str] = Field(default=None, alias="musicPath")


class HistoryEntry(BaseModel):
    role: str
    text: str


class StorySummary(BaseModel):
    id: str
    title: str
    date: Optional[str] = None
    scenes: int
    image: Optional[str] = None


class StartRequest(BaseModel):
    setting: str
    images: List[str] = Field(default_factory=list)


class NextRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    history: List[HistoryEntry] = Field(default_factory=list)
    choice: str
    story_id: str = Field(alias="storyId")
    images: List[str] = Field(default_factory=list)


class MusicRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    style: Optional[str] = None
    title: Optional[str] = None
    story_id: Optional[str] = Field(default=None, alias="storyId")
