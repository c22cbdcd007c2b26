import pytest

from novela.asset_store import AssetStore, decode_data_url, new_story_id
from novela.models import MusicJobStatus, Scene, Story


def _story(story_id, created_at, music=None):
    return Story(id=story_id, title=f"Story {story_id}", setting="un bosque", created_at=created_at,
                 scenes=[Scene(scene_text=["Hola."], image="/stories/x/assets/scene.jpg", music=music)])


def test_save_asset_returns_served_path(store):
    ref = store.save_asset("abc", b"data", "mp3", "narrative_part_0")
    assert ref.startswith("/stories/abc/assets/narrative_part_0_")
    assert ref.endswith(".mp3")
    assert store.exists(ref)
    assert store.resolve(ref).read_bytes() == b"data"


@pytest.mark.parametrize("bad", ["", "..", ".", "../etc", "a/b", "a\\b"])
def test_story_dir_rejects_path_escapes(store, bad):
    with pytest.raises(ValueError):
        store.story_dir(bad)


def test_resolve_outside_root_is_none(store):
    assert store.resolve("/stories/../../etc/passwd") is None
    assert store.resolve("relative/path.mp3") is None
    assert not store.exists(None)


def test_story_round_trip_keeps_camel_case(store):
    story = _story("s1", "2025-01-01T00:00:00+00:00")
    story.scenes[0].selected_option = "ir al norte"
    store.save_story(story)
    raw = (store.story_dir("s1") / "story.json").read_text(encoding="utf-8")
    assert '"createdAt"' in raw and '"selectedOption"' in raw
    assert store.load_story("s1").scenes[0].selected_option == "ir al norte"


def test_list_stories_newest_first_and_skips_broken(store):
    store.save_story(_story("old", "2024-01-01T00:00:00+00:00"))
    store.save_story(_story("new", "2025-06-01T00:00:00+00:00"))
    broken = store.story_dir("broken")
    broken.mkdir(parents=True)
    (broken / "story.json").write_text("{not json", encoding="utf-8")

    summaries = store.list_stories()
    assert [s.id for s in summaries] == ["new", "old"]
    assert summaries[0].scenes == 1
    assert summaries[0].image == "/stories/x/assets/scene.jpg"


def test_list_stories_without_root(tmp_path):
    assert AssetStore(str(tmp_path / "missing")).list_stories() == []


def test_music_path_is_never_cleared(store):
    store.write_music_status("s1", MusicJobStatus(task_id="t1", music_path="/stories/s1/assets/m.mp3"))
    store.write_music_status("s1", MusicJobStatus())
    status = store.read_music_status("s1")
    assert status.music_path == "/stories/s1/assets/m.mp3"
    assert status.task_id is None


def test_attach_music_only_sets_first_scene_once(store):
    story = _story("s1", "2025-01-01T00:00:00+00:00")
    story.scenes.append(Scene(scene_text=["Dos."]))
    store.save_story(story)

    assert store.attach_music("s1", "/stories/s1/assets/a.mp3")
    assert not store.attach_music("s1", "/stories/s1/assets/b.mp3")
    loaded = store.load_story("s1")
    assert loaded.scenes[0].music == "/stories/s1/assets/a.mp3"
    assert loaded.scenes[1].music is None


def test_decode_data_url_with_and_without_header():
    assert decode_data_url("data:image/png;base64,aGk=") == (b"hi", "image/png")
    assert decode_data_url("aGk=") == (b"hi", "image/jpeg")


def test_new_story_id_is_filesystem_safe():
    story_id = new_story_id("un bosque/encantado!")
    assert "/" not in story_id and " " not in story_id
    assert story_id.split("_", 1)[1] == "un_bosque_encantado_"
