"""
Per-story persistence on disk.

    <stories_dir>/<story_id>/story.json
    <stories_dir>/<story_id>/music_status.json
    <stories_dir>/<story_id>/assets/<label>_<epoch ms>.<ext>

Assets are referenced by the path they are served under (``/stories/...``).
"""
import base64, json, logging, re, time
from pathlib import Path
from typing import List, Optional, Tuple
from pydantic import ValidationError
from .models import MusicJobStatus, Story, StorySummary

logger = logging.getLogger(__name__)

PUBLIC_PREFIX = "/stories"

_DATA_URL = re.compile(r"^data:(image/\w+);base64,")


def _now_ms() -> int:
    return int(time.time() * 1000)


def new_story_id(setting: str) -> str:
    slug = re.sub(r"[^a-z0-9]", "_", setting[:20], flags=re.IGNORECASE)
    return f"{_now_ms()}_{slug}"


def decode_data_url(data: str) -> Tuple[bytes, str]:
    """Decode a base64 upload, with or without a ``data:image/...;base64,`` header."""
    mime = "image/jpeg"
    match = _DATA_URL.match(data)
    if match:
        mime = match.group(1)
        data = data[match.end():]
    return base64.b64decode(data), mime


def write_bytes(path: Path, data: bytes):
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "wb") as f:
        f.write(data)


def write_json(path: Path, payload: dict):
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2, ensure_ascii=False)


class AssetStore:
    def __init__(self, root: str):
        self.root = Path(root)

    def story_dir(self, story_id: str) -> Path:
        # Story ids end up in paths; refuse anything that could escape the root
        if not story_id or "/" in story_id or "\\" in story_id or story_id in (".", ".."):
            raise ValueError(f"Invalid story id: {story_id!r}")
        return self.root / story_id

    def save_asset(self, story_id: str, data: bytes, ext: str, label: str) -> str:
        filename = f"{label}_{_now_ms()}.{ext}"
        write_bytes(self.story_dir(story_id) / "assets" / filename, data)
        logger.info(f"Saved asset {filename} for story {story_id} ({len(data)} bytes)")
        return f"{PUBLIC_PREFIX}/{story_id}/assets/{filename}"

    def resolve(self, ref: str) -> Optional[Path]:
        if not ref or not ref.startswith(PUBLIC_PREFIX + "/"):
            return None
        relative = ref[len(PUBLIC_PREFIX) + 1:]
        path = (self.root / relative).resolve()
        if self.root.resolve() not in path.parents:
            return None
        return path

    def exists(self, ref: Optional[str]) -> bool:
        path = self.resolve(ref) if ref else None
        return bool(path and path.is_file())

    # --- story.json ---------------------------------------------------------

    def load_story(self, story_id: str) -> Optional[Story]:
        path = self.story_dir(story_id) / "story.json"
        if not path.exists():
            return None
        with open(path, encoding="utf-8") as f:
            return Story.model_validate(json.load(f))

    def save_story(self, story: Story):
        write_json(self.story_dir(story.id) / "story.json", story.model_dump(by_alias=True))
        logger.info(f"Saved story {story.id} with {len(story.scenes)} scenes")

    def list_stories(self) -> List[StorySummary]:
        if not self.root.exists():
            return []
        summaries = []
        for entry in self.root.iterdir():
            if not (entry / "story.json").exists():
                continue
            try:
                story = self.load_story(entry.name)
            except (OSError, ValueError, ValidationError) as e:
                logger.error(f"Error reading story {entry.name}: {e}")
                continue
            summaries.append(StorySummary(
                id=entry.name,
                title=story.title or story.setting or "Untitled Story",
                date=story.created_at,
                scenes=len(story.scenes),
                image=story.scenes[0].image if story.scenes else None,
            ))
        return sorted(summaries, key=lambda s: s.date or "", reverse=True)

    # --- music --------------------------------------------------------------

    def read_music_status(self, story_id: str) -> MusicJobStatus:
        path = self.story_dir(story_id) / "music_status.json"
        if not path.exists():
            return MusicJobStatus()
        try:
            with open(path, encoding="utf-8") as f:
                return MusicJobStatus.model_validate(json.load(f))
        except (OSError, ValueError, ValidationError) as e:
            logger.error(f"Error reading music status for {story_id}: {e}")
            return MusicJobStatus()

    def write_music_status(self, story_id: str, status: MusicJobStatus):
        previous = self.read_music_status(story_id)
        if previous.music_path and not status.music_path:
            # A resolved track is never forgotten
            status = status.model_copy(update={"music_path": previous.music_path})
        write_json(
            self.story_dir(story_id) / "music_status.json",
            status.model_dump(by_alias=True, exclude_none=True),
        )

    def existing_music(self, story_id: str) -> Optional[str]:
        try:
            story = self.load_story(story_id)
        except (OSError, ValueError, ValidationError) as e:
            logger.error(f"Error checking existing music for {story_id}: {e}")
            return None
        if not story:
            return None
        ref = next((s.music for s in story.scenes if s.music), None)
        return ref if self.exists(ref) else None

    def attach_music(self, story_id: str, music_ref: str) -> bool:
        """Set the story track on the first scene unless it already has one."""
        story = self.load_story(story_id)
        if not story or not story.scenes or story.scenes[0].music:
            return False
        story.scenes[0].music = music_ref
        self.save_story(story)
        return True
