import io, os, math, random, logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union
from urllib.parse import quote
import httpx
from PIL import Image, UnidentifiedImageError
from .jobs import AsyncJobPoller, JobState, PollResult
from .models import GenerationError
from .settings import REPLICATE_POLL_INTERVAL_MS, REPLICATE_POLL_TIMEOUT_S, REPLICATE_MODEL_VERSION

logger = logging.getLogger(__name__)

REPLICATE_API = "https://api.replicate.com/v1"
POLLINATIONS_URL = "https://pollinations.ai/p/{prompt}?width=1024&height=576&seed={seed}&nologo=true&model=flux"

def _headers():
    token = os.getenv("REPLICATE_API_TOKEN", "")
    if not token:
        raise RuntimeError("REPLICATE_API_TOKEN is not set; please configure your .env")
    return {"Authorization": f"Token {token}"}

def _model_selector() -> str:
    # Prefer explicit version from env for stability; fall back to a public model alias (latest).
    return REPLICATE_MODEL_VERSION or "black-forest-labs/flux-schnell"

def _parse_selector(selector: str):
    # Returns a tuple (mode, data)
    # mode == "version": data={"version": <hash>}
    # mode == "model": data={"owner": <owner>, "name": <name>}
    if "/" in selector:
        # Could be owner/name or owner/name:versionAlias
        owner_name, _, _version_alias = selector.partition(":")
        if "/" in owner_name:
            owner, name = owner_name.split("/", 1)
            return "model", {"owner": owner, "name": name}
    # Fallback assume it's a version hash
    return "version", {"version": selector}


class ReplicateImageJob(AsyncJobPoller):
    name = "replicate"

    def __init__(self, **kwargs):
        interval_s = REPLICATE_POLL_INTERVAL_MS / 1000.0
        kwargs.setdefault("interval_s", interval_s)
        kwargs.setdefault("max_attempts", max(1, math.ceil(REPLICATE_POLL_TIMEOUT_S / interval_s)))
        super().__init__(**kwargs)

    async def start(self, prompt: str, reference_image: Optional[str] = None) -> str:
        selector = _model_selector()
        logger.info(f"Starting Replicate image generation with {selector} for prompt: {prompt[:100]}...")
        json_body: Dict[str, Any] = {
            "input": {"prompt": prompt, "aspect_ratio": "16:9", "output_format": "jpg", "num_outputs": 1}
        }
        if reference_image:
            json_body["input"]["image"] = reference_image
        mode, data = _parse_selector(selector)
        if mode == "version":
            json_body["version"] = data["version"]
            url = f"{REPLICATE_API}/predictions"
        else:
            url = f"{REPLICATE_API}/models/{data['owner']}/{data['name']}/predictions"

        async with self.client() as client:
            r = await client.post(url, headers={**_headers(), "Content-Type": "application/json"}, json=json_body)
            if r.status_code == 404 and mode == "model":
                # Model endpoint can 404 on aliases; resolve the latest version and use the generic endpoint
                logger.info("Falling back to latest version resolution for model")
                model_resp = await client.get(f"{REPLICATE_API}/models/{data['owner']}/{data['name']}", headers=_headers())
                model_resp.raise_for_status()
                version_id = (model_resp.json().get("latest_version") or {}).get("id")
                if not version_id:
                    raise GenerationError("Could not resolve latest version for model")
                logger.info(f"Resolved latest version: {version_id}")
                r = await client.post(
                    f"{REPLICATE_API}/predictions",
                    headers={**_headers(), "Content-Type": "application/json"},
                    json={**json_body, "version": version_id},
                )
        if r.status_code >= 400:
            logger.error(f"Replicate create failed {r.status_code}: {r.text}")
            raise GenerationError(f"Replicate create failed {r.status_code}: {r.text}")
        return r.json()["id"]

    async def fetch(self, task_id: str) -> Dict[str, Any]:
        async with self.client() as client:
            s = await client.get(f"{REPLICATE_API}/predictions/{task_id}", headers=_headers())
        s.raise_for_status()
        return s.json()

    def classify(self, raw: Dict[str, Any]) -> PollResult:
        status = raw.get("status")
        if status == "succeeded":
            output = raw.get("output")
            url = output[0] if isinstance(output, list) and output else output if isinstance(output, str) else None
            return PollResult(JobState.SUCCEEDED, output_url=url, raw=raw)
        if status in ("failed", "canceled"):
            return PollResult(JobState.FAILED, raw=raw)
        return PollResult(JobState.PENDING, raw=raw)


@dataclass
class GeneratedImage:
    data: bytes
    source: str


@dataclass
class NoImage:
    reason: str


ImageResult = Union[GeneratedImage, NoImage]


def to_jpeg(data: bytes) -> bytes:
    """Normalize provider output (often WebP or RGBA PNG) to an RGB JPEG."""
    with Image.open(io.BytesIO(data)) as pil_img:
        if pil_img.format == "JPEG":
            return data
        if pil_img.mode in ("RGBA", "LA"):
            # Create white background
            background = Image.new("RGB", pil_img.size, (255, 255, 255))
            if pil_img.mode == "LA":
                pil_img = pil_img.convert("RGBA")
            background.paste(pil_img, mask=pil_img.split()[-1])  # Use alpha channel as mask
            pil_img = background
        elif pil_img.mode != "RGB":
            pil_img = pil_img.convert("RGB")
        out = io.BytesIO()
        pil_img.save(out, format="JPEG", quality=90)
        return out.getvalue()


class SceneImageGenerator:
    """Replicate first, Pollinations as a keyless fallback."""

    def __init__(self, job: ReplicateImageJob = None, transport: httpx.AsyncBaseTransport = None):
        self.job = job or ReplicateImageJob(transport=transport)
        self._transport = transport

    async def _download(self, url: str) -> bytes:
        async with httpx.AsyncClient(timeout=60, transport=self._transport) as client:
            r = await client.get(url, follow_redirects=True)
        r.raise_for_status()
        return r.content

    async def _replicate(self, prompt: str, reference_image: Optional[str]) -> Optional[bytes]:
        if not os.getenv("REPLICATE_API_TOKEN"):
            logger.info("Replicate not configured, skipping")
            return None
        try:
            result = await self.job.run(prompt=prompt, reference_image=reference_image)
            if result.state is not JobState.SUCCEEDED or not result.output_url:
                raw = result.raw or {}
                logger.error(f"Replicate failed: {result.state.value}. error={raw.get('error')}")
                return None
            return await self._download(result.output_url)
        except (GenerationError, httpx.HTTPError, KeyError) as e:
            logger.error(f"Error generating image with Replicate: {e}")
            return None

    async def _pollinations(self, prompt: str) -> Optional[bytes]:
        logger.info("Falling back to Pollinations...")
        url = POLLINATIONS_URL.format(prompt=quote(prompt, safe=""), seed=random.randint(0, 9999))
        try:
            return await self._download(url)
        except httpx.HTTPError as e:
            logger.error(f"Pollinations fallback failed: {e}")
            return None

    async def generate(self, prompt: str, reference_image: Optional[str] = None) -> ImageResult:
        if not prompt:
            return NoImage("empty prompt")
        logger.info(f"[Image Generation] Prompt: {prompt}")
        for source, attempt in (
            ("replicate", lambda: self._replicate(prompt, reference_image)),
            ("pollinations", lambda: self._pollinations(prompt)),
        ):
            data = await attempt()
            if not data:
                continue
            try:
                return GeneratedImage(to_jpeg(data), source)
            except (UnidentifiedImageError, OSError) as e:
                logger.warning(f"Image from {source} is not decodable: {e}")
        return NoImage("all image providers failed")
