import os, logging
import httpx
from typing import Any, Dict, Optional
from .jobs import AsyncJobPoller, JobState, PollResult
from .models import GenerationError
from .settings import MUSIC_POLL_ATTEMPTS, MUSIC_POLL_INTERVAL_S, SUNO_MODEL

logger = logging.getLogger(__name__)

SUNO_API = "https://api.sunoapi.org/api/v1"

SUCCESS_STATUSES = {"SUCCESS", "FIRST_SUCCESS"}
FAILED_STATUSES = {
    "FAILED", "ERROR", "CREATE_TASK_FAILED", "GENERATE_AUDIO_FAILED",
    "CALLBACK_EXCEPTION", "SENSITIVE_WORD_ERROR",
}


def _headers():
    token = os.getenv("SUNO_API_KEY", "")
    if not token:
        raise RuntimeError("SUNO_API_KEY is not set; please configure your .env")
    return {"Authorization": f"Bearer {token}"}


def _audio_url(data: Dict[str, Any]) -> Optional[str]:
    response = data.get("response") or {}
    tracks = response.get("sunoData") or data.get("records") or []
    if not tracks:
        return None
    first = tracks[0]
    return first.get("audioUrl") or first.get("url") or first.get("downloadUrl")


class SunoMusicJob(AsyncJobPoller):
    """Instrumental track generation on sunoapi.org."""

    name = "suno"

    def __init__(self, interval_s: float = MUSIC_POLL_INTERVAL_S,
                 max_attempts: int = MUSIC_POLL_ATTEMPTS, **kwargs):
        super().__init__(interval_s=interval_s, max_attempts=max_attempts, **kwargs)

    async def start(self, style: str, title: str) -> str:
        logger.info(f"Generating music: {title} [{style}]")
        body = {
            "prompt": "",  # no lyrics, instrumental only
            "style": style,
            "title": title,
            "model": SUNO_MODEL,
            "customMode": True,
            "instrumental": True,
            # Required by the API even though we poll instead
            "callBackUrl": "https://example.com/callback",
        }
        try:
            async with self.client() as client:
                r = await client.post(
                    f"{SUNO_API}/generate",
                    headers={**_headers(), "Content-Type": "application/json"},
                    json=body,
                )
        except httpx.HTTPError as e:
            logger.error(f"Error starting music generation: {e}")
            raise GenerationError(f"Suno request failed: {e}") from e
        if r.status_code >= 400:
            logger.error(f"Suno create failed {r.status_code}: {r.text}")
            raise GenerationError(f"Suno create failed {r.status_code}: {r.text}")
        payload = r.json()
        task_id = (payload.get("data") or {}).get("taskId")
        if not task_id:
            logger.error(f"Suno API error: invalid response structure {payload}")
            raise GenerationError("Suno response carried no taskId")
        logger.info(f"Music generation started: {task_id}")
        return task_id

    async def status_raw(self, task_id: str) -> Dict[str, Any]:
        async with self.client() as client:
            r = await client.get(
                f"{SUNO_API}/generate/record-info",
                params={"taskId": task_id},
                headers=_headers(),
            )
        r.raise_for_status()
        return r.json()

    async def fetch(self, task_id: str) -> Dict[str, Any]:
        payload = await self.status_raw(task_id)
        return payload.get("data") or payload

    def classify(self, raw: Dict[str, Any]) -> PollResult:
        status = (raw or {}).get("status")
        if status in SUCCESS_STATUSES:
            # Success without a URL is reported as-is so the caller can keep asking
            return PollResult(JobState.SUCCEEDED, output_url=_audio_url(raw), raw=raw)
        if status in FAILED_STATUSES:
            return PollResult(JobState.FAILED, raw=raw)
        return PollResult(JobState.PENDING, raw=raw)

    async def download(self, url: str) -> bytes:
        async with self.client() as client:
            r = await client.get(url, follow_redirects=True)
        r.raise_for_status()
        return r.content
