import os, httpx, asyncio, logging
from .speech import sanitize_for_speech

logger = logging.getLogger(__name__)

ELEVENLABS_TTS_URL = "https://api.elevenlabs.io/v1/text-to-speech"
TTS_MODEL = "eleven_multilingual_v2"


def _credentials():
    api_key = os.getenv("ELEVENLABS_API_KEY", "")
    voice_id = os.getenv("ELEVENLABS_VOICE_ID", "")
    if not api_key or not voice_id:
        raise RuntimeError("ELEVENLABS_API_KEY / ELEVENLABS_VOICE_ID are not set; please configure your .env")
    return api_key, voice_id


async def tts_to_bytes(text: str, max_retries: int = 3, transport: httpx.AsyncBaseTransport = None) -> bytes:
    """Narrate ``text`` as mp3. Only 429s are retried; anything else is raised to the caller."""
    spoken = sanitize_for_speech(text)
    if not spoken:
        raise ValueError("Nothing speakable left after sanitizing text")
    api_key, voice_id = _credentials()
    headers = {"Accept": "audio/mpeg", "xi-api-key": api_key, "Content-Type": "application/json"}
    payload = {
        "text": spoken,
        "model_id": TTS_MODEL,
        "voice_settings": {"stability": 0.5, "similarity_boost": 0.5},
    }

    attempt = 0
    while True:
        try:
            async with httpx.AsyncClient(timeout=60, transport=transport) as client:
                r = await client.post(f"{ELEVENLABS_TTS_URL}/{voice_id}", headers=headers, json=payload)
                r.raise_for_status()
                return r.content
        except httpx.HTTPStatusError as e:
            if e.response.status_code != 429 or attempt >= max_retries:
                logger.error(f"ElevenLabs request failed with {e.response.status_code} after {attempt + 1} attempt(s)")
                raise
            backoff = 2 ** attempt
            attempt += 1
            logger.warning(f"ElevenLabs rate limited (429), retry {attempt}/{max_retries} in {backoff}s")
            await asyncio.sleep(backoff)
