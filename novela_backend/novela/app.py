import logging
from dataclasses import dataclass
from typing import Optional
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from .settings import ALLOWED_ORIGINS, STORIES_DIR, creator_mode_enabled, has_all_keys
from .asset_store import AssetStore
from .models import GenerationError, MusicRequest, NextRequest, StartRequest
from .music import MusicFailed, MusicOrchestrator, MusicPending, MusicReady
from .narration import NarrationPipeline
from .orchestrator import SceneGenerator
from .replicate_client import SceneImageGenerator

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@dataclass
class Services:
    store: AssetStore
    scenes: SceneGenerator
    music: MusicOrchestrator


def default_services(stories_dir: str = STORIES_DIR) -> Services:
    store = AssetStore(stories_dir)
    return Services(
        store=store,
        scenes=SceneGenerator(store, NarrationPipeline(store), SceneImageGenerator()),
        music=MusicOrchestrator(store),
    )


def _error(status: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status, content={"error": message, **extra})


def _creator_mode_off() -> Optional[JSONResponse]:
    if not creator_mode_enabled():
        return _error(403, "Creator mode is disabled on this server.")
    return None


def _invalid_story_id(request: Request, story_id: str) -> Optional[JSONResponse]:
    try:
        request.app.state.services.store.story_dir(story_id)
    except ValueError as e:
        return _error(400, str(e))
    return None


def create_app(services: Services = None) -> FastAPI:
    services = services or default_services()
    app = FastAPI(title="Novela visual novel backend")
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOWED_ORIGINS or ["*"],
        allow_credentials=True,
        allow_methods=["POST", "GET", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.get("/health")
    def health():
        keys_ok = has_all_keys()
        logger.info(f"Health check: API keys present = {keys_ok}")
        return {"ok": True, "has_keys": keys_ok, "creatorMode": creator_mode_enabled()}

    @app.get("/api/stories")
    def list_stories(request: Request):
        store = request.app.state.services.store
        try:
            stories = store.list_stories()
        except OSError as e:
            logger.error(f"Failed to list stories: {e}")
            return _error(500, "Failed to list stories")
        return {
            "stories": [s.model_dump() for s in stories],
            "creatorMode": creator_mode_enabled(),
        }

    @app.post("/api/start")
    async def start_story(req: StartRequest, request: Request):
        denied = _creator_mode_off()
        if denied:
            return denied
        if not req.setting.strip():
            return _error(400, "setting is required")
        logger.info(f"Starting story for setting: {req.setting[:50]}...")
        try:
            story, scene = await request.app.state.services.scenes.start_story(req.setting, req.images)
        except (GenerationError, OSError, ValueError) as e:
            logger.error(f"Story generation failed: {e}")
            return _error(500, "Failed to generate story")
        return {**scene.model_dump(by_alias=True), "storyId": story.id}

    @app.post("/api/next")
    async def next_scene(req: NextRequest, request: Request):
        denied = _creator_mode_off()
        if denied:
            return denied
        invalid = _invalid_story_id(request, req.story_id)
        if invalid:
            return invalid
        try:
            scene = await request.app.state.services.scenes.next_scene(
                req.history, req.choice, req.story_id, req.images
            )
        except (GenerationError, OSError, ValueError) as e:
            logger.error(f"Next scene generation failed for {req.story_id}: {e}")
            return _error(500, "Failed to generate next scene")
        return scene.model_dump(by_alias=True)

    @app.post("/api/music")
    async def request_music(req: MusicRequest, request: Request):
        denied = _creator_mode_off()
        if denied:
            return denied
        if not req.story_id:
            return _error(400, "storyId is required")
        invalid = _invalid_story_id(request, req.story_id)
        if invalid:
            return invalid
        try:
            result = await request.app.state.services.music.request_music(req.story_id, req.style, req.title)
        except (RuntimeError, OSError, ValueError) as e:
            # Provider errors and missing provider configuration
            logger.error(f"Error generating music for {req.story_id}: {e}")
            return _error(500, "Failed to start music generation")

        if isinstance(result, MusicReady):
            return {"music": result.music}
        if isinstance(result, MusicFailed):
            return _error(500, result.error, raw=result.raw)
        if isinstance(result, MusicPending) and result.info is not None:
            return JSONResponse(status_code=202, content={"pending": True, "taskId": result.task_id, "info": result.info})
        return {"pending": True, "taskId": result.task_id}

    @app.get("/api/music/status")
    async def music_status(request: Request, taskId: Optional[str] = None):
        if not taskId:
            return _error(400, "taskId is required")
        try:
            raw = await request.app.state.services.music.status_raw(taskId)
        except GenerationError as e:
            return _error(500, str(e))
        return {"raw": raw}

    # Generated media and story.json, referenced by "/stories/<id>/..."
    app.mount("/stories", StaticFiles(directory=str(services.store.root), check_dir=False), name="stories")

    return app


app = create_app()
