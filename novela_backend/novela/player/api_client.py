import logging
from typing import Any, Dict, List, Optional, Tuple
import httpx
from ..models import HistoryEntry, Scene, Story, StorySummary

logger = logging.getLogger(__name__)


class ApiError(RuntimeError):
    def __init__(self, message: str, status: int = 500):
        super().__init__(message)
        self.status = status


class NovelaClient:
    """HTTP side of the player: the JSON API and the recorded story files."""

    def __init__(self, base_url: str = "http://localhost:8000", timeout: float = 300.0, transport=None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self.transport)

    async def _post(self, path: str, body: Dict[str, Any]) -> Tuple[int, Dict[str, Any]]:
        async with self._client() as client:
            r = await client.post(path, json=body)
        try:
            data = r.json()
        except ValueError:
            raise ApiError(f"{path} answered with non-JSON ({r.status_code})", r.status_code)
        if isinstance(data, dict) and data.get("error"):
            raise ApiError(data["error"], r.status_code)
        return r.status_code, data

    async def list_stories(self) -> Tuple[List[StorySummary], bool]:
        async with self._client() as client:
            r = await client.get("/api/stories")
            r.raise_for_status()
            data = r.json()
        stories = [StorySummary.model_validate(s) for s in data.get("stories", [])]
        return stories, bool(data.get("creatorMode"))

    async def start(self, setting: str, images: List[str] = None) -> Tuple[str, Scene]:
        _, data = await self._post("/api/start", {"setting": setting, "images": images or []})
        story_id = data.pop("storyId", None)
        return story_id, Scene.model_validate(data)

    async def next(self, history: List[HistoryEntry], choice: str, story_id: str,
                   images: List[str] = None) -> Scene:
        body = {
            "history": [h.model_dump() for h in history],
            "choice": choice,
            "storyId": story_id,
            "images": images or [],
        }
        _, data = await self._post("/api/next", body)
        data.pop("storyId", None)
        return Scene.model_validate(data)

    async def request_music(self, style: Optional[str], title: Optional[str], story_id: str) -> Dict[str, Any]:
        """Raw music answer: {"music"} or {"pending", "taskId"[, "info"]}."""
        _, data = await self._post("/api/music", {"style": style, "title": title, "storyId": story_id})
        return data

    async def load_story(self, story_id: str) -> Story:
        async with self._client() as client:
            r = await client.get(f"/stories/{story_id}/story.json")
            r.raise_for_status()
            return Story.model_validate(r.json())
