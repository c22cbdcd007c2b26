import os
from dotenv import load_dotenv
import logging

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Load .env file if it exists (for local development)
env_path = os.path.join(os.path.dirname(__file__), "..", ".env")
if os.path.exists(env_path):
    load_dotenv(env_path)
    logger.info("Loaded .env file for local development")
else:
    logger.info("No .env file found, using environment variables")

# Provider keys are read with os.getenv when a client needs them
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
REPLICATE_MODEL_VERSION = os.getenv("REPLICATE_MODEL_VERSION", "")
SUNO_MODEL = os.getenv("SUNO_MODEL", "V4_5ALL")

REPLICATE_POLL_INTERVAL_MS = int(os.getenv("REPLICATE_POLL_INTERVAL_MS", "1500"))
REPLICATE_POLL_TIMEOUT_S = int(os.getenv("REPLICATE_POLL_TIMEOUT_S", "120"))

# Server-side polling of an already started music task. The player retries on top of this.
MUSIC_POLL_INTERVAL_S = float(os.getenv("MUSIC_POLL_INTERVAL_S", "2"))
MUSIC_POLL_ATTEMPTS = int(os.getenv("MUSIC_POLL_ATTEMPTS", "30"))

# Pause between consecutive speech requests of one scene (rate limits)
NARRATION_SEGMENT_DELAY_S = float(os.getenv("NARRATION_SEGMENT_DELAY_S", "0.1"))

# Serverless deployments only have /tmp writable
IS_VERCEL = os.getenv("VERCEL") == "1"
_default_stories_dir = (
    os.path.join("/tmp", "stories")
    if IS_VERCEL
    else os.path.join(os.getcwd(), "public", "stories")
)
STORIES_DIR = os.getenv("STORIES_DIR", "").strip() or _default_stories_dir

# Comma-separated list of allowed origins for CORS (e.g., "https://app.vercel.app,https://www.example.com").
_allowed_origins_env = os.getenv("ALLOWED_ORIGINS", "").strip()
if _allowed_origins_env:
    ALLOWED_ORIGINS = [o.strip() for o in _allowed_origins_env.split(",") if o.strip()]
else:
    ALLOWED_ORIGINS = ["*"]


def creator_mode_enabled() -> bool:
    # Read at call time so the key can be provisioned without a restart
    return bool(os.getenv("OPENAI_API_KEY", ""))


def has_all_keys() -> bool:
    keys = {
        "OPENAI_API_KEY": os.getenv("OPENAI_API_KEY", ""),
        "ELEVENLABS_API_KEY": os.getenv("ELEVENLABS_API_KEY", ""),
        "ELEVENLABS_VOICE_ID": os.getenv("ELEVENLABS_VOICE_ID", ""),
        "SUNO_API_KEY": os.getenv("SUNO_API_KEY", ""),
    }
    missing = [name for name, value in keys.items() if not value]
    if missing:
        logger.warning(f"Missing API keys: {', '.join(missing)}")
    return not missing
