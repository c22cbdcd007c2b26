import asyncio, binascii, logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple
from langgraph.graph import StateGraph, END
from pydantic import BaseModel, Field, ValidationError
from .asset_store import AssetStore, decode_data_url, new_story_id
from .llm import build_messages, build_next_prompt, build_start_prompt, images_note, write_scene
from .models import OPTIONS_PER_SCENE, GenerationError, HistoryEntry, Narrative, Scene, Story
from .narration import NarrationPipeline
from .replicate_client import GeneratedImage, SceneImageGenerator

logger = logging.getLogger(__name__)

SceneWriter = Callable[[List[dict]], Dict[str, Any]]


class SceneState(BaseModel):
    story_id: str
    prompt: str
    is_start: bool = True
    images: List[str] = Field(default_factory=list)
    uploaded: List[str] = Field(default_factory=list)
    scene: Optional[Scene] = None


def validate_scene(raw: Dict[str, Any]) -> Scene:
    try:
        scene = Scene.model_validate(raw)
    except ValidationError as e:
        raise GenerationError(f"Model returned an unusable scene: {e}") from e
    if not scene.text_segments():
        raise GenerationError("Model returned a scene without text")
    if len(scene.options) > OPTIONS_PER_SCENE:
        logger.warning(f"Model returned {len(scene.options)} options, keeping {OPTIONS_PER_SCENE}")
        scene.options = scene.options[:OPTIONS_PER_SCENE]
    elif 0 < len(scene.options) < OPTIONS_PER_SCENE:
        raise GenerationError(f"Model returned {len(scene.options)} options, expected {OPTIONS_PER_SCENE}")
    return scene


class SceneGenerator:
    """Generates one scene (text, image, narration, option audio) and persists the story."""

    def __init__(self, store: AssetStore, narration: NarrationPipeline,
                 images: SceneImageGenerator, writer: SceneWriter = write_scene):
        self.store = store
        self.narration = narration
        self.images = images
        self.writer = writer
        self.graph = self._build_graph()

    # --- graph nodes --------------------------------------------------------

    async def node_uploads(self, state: SceneState) -> dict:
        uploaded = []
        prefix = "uploaded_scene" if state.is_start else "uploaded_next"
        for i, image in enumerate(state.images):
            try:
                data, _mime = decode_data_url(image)
            except (binascii.Error, ValueError) as e:
                logger.error(f"Error processing uploaded image {i} for story {state.story_id}: {e}")
                continue
            uploaded.append(self.store.save_asset(state.story_id, data, "jpg", f"{prefix}_{i}"))
        if uploaded:
            logger.info(f"{len(uploaded)} uploaded images saved for story {state.story_id}")
        return {"uploaded": uploaded}

    async def node_write(self, state: SceneState) -> dict:
        messages = build_messages(state.prompt, state.images, images_note(state.is_start))
        raw = await asyncio.to_thread(self.writer, messages)
        scene = validate_scene(raw)
        logger.info(f"Scene written for story {state.story_id}: {len(scene.text_segments())} segments, {len(scene.options)} options")
        return {"scene": scene}

    async def node_image(self, state: SceneState) -> dict:
        scene = state.scene
        reference = state.images[0] if state.images else None
        result = await self.images.generate(scene.scene_image_prompt, reference)
        if isinstance(result, GeneratedImage):
            scene.image = self.store.save_asset(state.story_id, result.data, "jpg", "scene")
        elif state.uploaded:
            logger.warning(f"Image generation failed ({result.reason}), using the uploaded image")
            scene.image = state.uploaded[0]
        else:
            logger.warning(f"Image generation failed ({result.reason}), scene has no image")
        return {"scene": scene}

    async def node_narration(self, state: SceneState) -> dict:
        scene = state.scene
        parts = await self.narration.synthesize(scene.text_segments(), state.story_id)
        scene.narrative = Narrative(parts=parts)
        return {"scene": scene}

    async def node_options(self, state: SceneState) -> dict:
        scene = state.scene
        scene.options = await self.narration.voice_options(scene.options, state.story_id)
        return {"scene": scene}

    def _build_graph(self):
        g = StateGraph(SceneState)
        g.add_node("uploads", self.node_uploads)
        g.add_node("write", self.node_write)
        g.add_node("image", self.node_image)
        g.add_node("narration", self.node_narration)
        g.add_node("options", self.node_options)
        g.set_entry_point("uploads")
        g.add_edge("uploads", "write")
        g.add_edge("write", "image")
        g.add_edge("image", "narration")
        g.add_edge("narration", "options")
        g.add_edge("options", END)
        return g.compile()

    async def _run(self, state: SceneState) -> Scene:
        logger.info(f"Starting scene pipeline for story {state.story_id}")
        final_state = await self.graph.ainvoke(state)
        # LangGraph hands back a dict of channel values
        scene = final_state.get("scene") if hasattr(final_state, "get") else final_state.scene
        if isinstance(scene, dict):
            scene = Scene.model_validate(scene)
        return scene

    # --- public operations --------------------------------------------------

    async def start_story(self, setting: str, images: Sequence[str] = ()) -> Tuple[Story, Scene]:
        story_id = new_story_id(setting)
        scene = await self._run(SceneState(
            story_id=story_id, prompt=build_start_prompt(setting), is_start=True, images=list(images),
        ))
        story = Story(
            id=story_id,
            title=scene.title or setting,
            setting=setting,
            created_at=datetime.now(timezone.utc).isoformat(),
            scenes=[scene],
        )
        self.store.save_story(story)
        return story, scene

    async def next_scene(self, history: Sequence[HistoryEntry], choice: str, story_id: str,
                         images: Sequence[str] = ()) -> Scene:
        story = self.store.load_story(story_id)
        if story is None:
            logger.warning(f"Story {story_id} not found, the new scene will not be saved")
        setting = story.setting if story else ""
        scene = await self._run(SceneState(
            story_id=story_id, prompt=build_next_prompt(setting, history, choice),
            is_start=False, images=list(images),
        ))
        if story is None:
            return scene

        if story.scenes:
            previous = story.scenes[-1]
            previous.selected_option = choice
            audio = await self.narration.voice_choice(choice, story_id, previous.options)
            if audio:
                previous.selected_option_audio = audio
        story.scenes.append(scene)
        self.store.save_story(story)
        return scene
