import pytest
from fastapi.testclient import TestClient

from novela.app import Services, create_app
from novela.jobs import JobState, PollResult
from novela.models import GenerationError
from novela.music import MusicOrchestrator
from novela.narration import NarrationPipeline
from novela.orchestrator import SceneGenerator
from novela.replicate_client import GeneratedImage, NoImage

SCENE = {
    "title": "El bosque encantado",
    "scene_text": [
        "Los árboles susurran tu nombre.",
        "Una luz azul parpadea entre las raíces.",
        "Algo se mueve a tu espalda.",
    ],
    "scene_image_prompt": "enchanted forest, blue light, cinematic",
    "scene_music_style": "Ambient mystery",
    "scene_music_title": "Raíces",
    "options": [
        {"text": "Seguir la luz"},
        {"text": "Darte la vuelta"},
        {"text": "Gritar"},
    ],
}


class FakeImages:
    def __init__(self, ok=True):
        self.ok = ok

    async def generate(self, prompt, reference_image=None):
        if self.ok:
            return GeneratedImage(b"\xff\xd8jpeg", "fake")
        return NoImage("providers unavailable")


async def fake_tts(text):
    return b"ID3" + text.encode()


def _services(store, music_job, writer=lambda messages: dict(SCENE), images=None):
    narration = NarrationPipeline(store, tts=fake_tts, segment_delay_s=0)
    return Services(
        store=store,
        scenes=SceneGenerator(store, narration, images or FakeImages(), writer=writer),
        music=MusicOrchestrator(store, job=music_job),
    )


@pytest.fixture
def creator_mode(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "test-key")


@pytest.fixture
def client(store, music_job, creator_mode):
    return TestClient(create_app(_services(store, music_job)))


def test_start_returns_playable_scene(client, store):
    r = client.post("/api/start", json={"setting": "un bosque encantado", "images": []})
    assert r.status_code == 200
    data = r.json()

    assert data["storyId"]
    assert len(data["options"]) == 3
    assert all("audio" in o for o in data["options"])
    assert len(data["narrative"]["parts"]) == len(SCENE["scene_text"])
    assert data["image"].startswith(f"/stories/{data['storyId']}/assets/scene_")

    story = store.load_story(data["storyId"])
    assert story.setting == "un bosque encantado"
    assert len(story.scenes) == 1


def test_start_falls_back_to_uploaded_image(store, music_job, creator_mode):
    app = create_app(_services(store, music_job, images=FakeImages(ok=False)))
    r = TestClient(app).post("/api/start", json={"setting": "un faro", "images": ["data:image/png;base64,aGk="]})
    assert r.status_code == 200
    assert "/assets/uploaded_scene_0_" in r.json()["image"]


def test_next_records_choice_on_previous_scene(client, store):
    first = client.post("/api/start", json={"setting": "un bosque encantado", "images": []}).json()
    history = [{"role": "model", "text": " ".join(SCENE["scene_text"])}]

    r = client.post("/api/next", json={
        "history": history + [{"role": "user", "text": "Seguir la luz"}],
        "choice": "Seguir la luz",
        "storyId": first["storyId"],
        "images": [],
    })
    assert r.status_code == 200

    story = store.load_story(first["storyId"])
    assert len(story.scenes) == 2
    assert story.scenes[0].selected_option == "Seguir la luz"
    assert story.scenes[0].selected_option_audio == first["options"][0]["audio"]
    assert story.scenes[1].selected_option is None


def test_next_with_bad_story_id(client):
    r = client.post("/api/next", json={"history": [], "choice": "x", "storyId": "../etc", "images": []})
    assert r.status_code == 400


def test_generation_failure_saves_nothing(store, music_job, creator_mode):
    broken = dict(SCENE, options=[{"text": "solo una"}])
    client = TestClient(create_app(_services(store, music_job, writer=lambda messages: broken)))

    r = client.post("/api/start", json={"setting": "un bosque", "images": []})
    assert r.status_code == 500
    assert r.json() == {"error": "Failed to generate story"}
    assert store.list_stories() == []


def test_writer_error_is_a_500(store, music_job, creator_mode):
    def failing(messages):
        raise GenerationError("model unavailable")

    client = TestClient(create_app(_services(store, music_job, writer=failing)))
    assert client.post("/api/start", json={"setting": "un bosque", "images": []}).status_code == 500


def test_generation_disabled_without_key(store, music_job, monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    client = TestClient(create_app(_services(store, music_job)))

    assert client.post("/api/start", json={"setting": "x", "images": []}).status_code == 403
    assert client.post("/api/next", json={"choice": "x", "storyId": "s1"}).status_code == 403
    assert client.post("/api/music", json={"storyId": "s1"}).status_code == 403
    assert client.get("/api/stories").json() == {"stories": [], "creatorMode": False}


def test_empty_setting_is_rejected(client):
    assert client.post("/api/start", json={"setting": "   ", "images": []}).status_code == 400


def test_stories_listing_and_static_story_file(client):
    story_id = client.post("/api/start", json={"setting": "un bosque encantado", "images": []}).json()["storyId"]

    listing = client.get("/api/stories").json()
    assert listing["creatorMode"] is True
    assert listing["stories"][0]["id"] == story_id
    assert listing["stories"][0]["scenes"] == 1

    r = client.get(f"/stories/{story_id}/story.json")
    assert r.status_code == 200
    assert r.json()["id"] == story_id


def test_music_pending_then_ready(client, music_job):
    story_id = client.post("/api/start", json={"setting": "un bosque encantado", "images": []}).json()["storyId"]
    body = {"style": "Ambient mystery", "title": "Raíces", "storyId": story_id}

    assert client.post("/api/music", json=body).json() == {"pending": True, "taskId": "task-1"}

    music_job.result = PollResult(JobState.SUCCEEDED, output_url="https://cdn.example/a.mp3")
    ready = client.post("/api/music", json=body).json()
    assert ready["music"].startswith(f"/stories/{story_id}/assets/music_")
    assert client.post("/api/music", json=body).json() == ready
    assert music_job.started == 1


def test_music_requires_story_id(client):
    assert client.post("/api/music", json={"style": "x"}).status_code == 400


def test_music_failure_is_a_500_with_raw(client, music_job):
    story_id = client.post("/api/start", json={"setting": "un bosque", "images": []}).json()["storyId"]
    client.post("/api/music", json={"storyId": story_id})
    music_job.result = PollResult(JobState.FAILED, raw={"status": "FAILED"})

    r = client.post("/api/music", json={"storyId": story_id})
    assert r.status_code == 500
    assert r.json()["raw"] == {"status": "FAILED"}


def test_music_status_passthrough(client):
    assert client.get("/api/music/status").status_code == 400
    r = client.get("/api/music/status", params={"taskId": "t9"})
    assert r.json()["raw"]["data"]["taskId"] == "t9"


def test_storage_failure_is_a_500_with_error_body(store, music_job, creator_mode, monkeypatch):
    def disk_full(story):
        raise OSError("No space left on device")

    monkeypatch.setattr(store, "save_story", disk_full)
    client = TestClient(create_app(_services(store, music_job)))

    r = client.post("/api/start", json={"setting": "un bosque", "images": []})
    assert r.status_code == 500
    assert r.json() == {"error": "Failed to generate story"}


def test_malformed_provider_response_in_next_is_a_500(client):
    first = client.post("/api/start", json={"setting": "un bosque", "images": []}).json()

    def not_json(messages):
        raise ValueError("Expecting value: line 1 column 1 (char 0)")

    client.app.state.services.scenes.writer = not_json

    r = client.post("/api/next", json={"choice": "Gritar", "storyId": first["storyId"], "images": []})
    assert r.status_code == 500
    assert r.json() == {"error": "Failed to generate next scene"}
