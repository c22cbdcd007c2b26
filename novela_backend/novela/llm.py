import os, json, logging
from typing import List, Sequence
from .models import GenerationError, HistoryEntry
from .prompts import (
    SYSTEM_PROMPT, SCENE_SCHEMA, START_PROMPT_TEMPLATE, NEXT_PROMPT_TEMPLATE,
    START_IMAGES_NOTE, NEXT_IMAGES_NOTE,
)
from .settings import OPENAI_MODEL

logger = logging.getLogger(__name__)

HISTORY_TURNS = 6

_client = None

def _get_client():
    global _client
    if _client is None:
        from openai import OpenAI
        api_key = os.getenv("OPENAI_API_KEY", "")
        if not api_key:
            raise RuntimeError("OPENAI_API_KEY is not set; please configure your .env")
        _client = OpenAI(api_key=api_key)
    return _client

def _image_url(image: str) -> str:
    return image if image.startswith("data:") else f"data:image/jpeg;base64,{image}"

def build_start_prompt(setting: str) -> str:
    return START_PROMPT_TEMPLATE.format(setting=setting, schema=SCENE_SCHEMA)

def build_next_prompt(setting: str, history: Sequence[HistoryEntry], choice: str) -> str:
    # Only the last turns, to stay well inside the context window
    recent = list(history)[-HISTORY_TURNS:]
    history_text = "\n".join(f"{h.role}: {h.text}" for h in recent)
    return NEXT_PROMPT_TEMPLATE.format(
        setting=setting or "Unknown", history=history_text, choice=choice, schema=SCENE_SCHEMA
    )

def build_messages(prompt: str, images: Sequence[str] = (), images_note: str = "") -> List[dict]:
    content: List[dict] = [{"type": "text", "text": prompt}]
    if images:
        content.append({"type": "text", "text": images_note})
        content.extend({"type": "image_url", "image_url": {"url": _image_url(img)}} for img in images)
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": content},
    ]

def parse_scene_json(text: str) -> dict:
    # Models sometimes wrap the JSON in a markdown fence
    cleaned = text.replace("```json", "").replace("```", "").strip()
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise GenerationError(f"Model returned invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise GenerationError("Model returned JSON that is not an object")
    return data

def write_scene(messages: List[dict]) -> dict:
    logger.info("Calling OpenAI API to generate scene")
    try:
        client = _get_client()
        resp = client.chat.completions.create(
            model=OPENAI_MODEL,
            messages=messages,
            temperature=0.9,
            response_format={"type": "json_object"},
        )
        content = resp.choices[0].message.content or ""
        logger.info("Successfully received response from OpenAI")
    except Exception as e:
        logger.error(f"OpenAI API call failed: {str(e)}")
        raise GenerationError(f"Text generation failed: {e}") from e
    return parse_scene_json(content)

def images_note(is_start: bool) -> str:
    return START_IMAGES_NOTE if is_start else NEXT_IMAGES_NOTE
