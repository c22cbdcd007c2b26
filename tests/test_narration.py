import asyncio

import httpx

from novela.models import Option
from novela.narration import NarrationPipeline


def _tts(fail_on=()):
    calls = []

    async def tts(text):
        calls.append(text)
        if text in fail_on:
            raise httpx.ConnectError("speech provider unreachable")
        return f"mp3:{text}".encode()
    return tts, calls


def test_parts_follow_segments_and_absorb_failures(store):
    tts, calls = _tts(fail_on={"Segundo."})
    pipeline = NarrationPipeline(store, tts=tts, segment_delay_s=0)

    parts = asyncio.run(pipeline.synthesize(["Primero.", "Segundo.", "Tercero."], "s1"))

    assert [p.text for p in parts] == ["Primero.", "Segundo.", "Tercero."]
    assert parts[1].audio is None
    assert parts[0].audio.startswith("/stories/s1/assets/narrative_part_0_")
    assert store.resolve(parts[2].audio).read_bytes() == b"mp3:Tercero."
    assert calls == ["Primero.", "Segundo.", "Tercero."]


def test_empty_audio_counts_as_missing(store):
    async def silent(text):
        return b""

    parts = asyncio.run(NarrationPipeline(store, tts=silent, segment_delay_s=0).synthesize(["Hola."], "s1"))
    assert parts[0].audio is None


def test_options_are_voiced_in_order(store):
    tts, _ = _tts(fail_on={"huir"})
    pipeline = NarrationPipeline(store, tts=tts, segment_delay_s=0)
    options = [Option(text="entrar"), Option(text="huir"), Option(text="esperar")]

    voiced = asyncio.run(pipeline.voice_options(options, "s1"))

    assert [o.text for o in voiced] == ["entrar", "huir", "esperar"]
    assert "/option_0_" in voiced[0].audio
    assert voiced[1].audio is None
    assert options[0].audio is None


def test_choice_reuses_matching_option_audio(store):
    tts, calls = _tts()
    pipeline = NarrationPipeline(store, tts=tts, segment_delay_s=0)
    options = [Option(text="entrar", audio="/stories/s1/assets/option_0_1.mp3")]

    assert asyncio.run(pipeline.voice_choice("entrar", "s1", options)) == options[0].audio
    assert calls == []

    custom = asyncio.run(pipeline.voice_choice("saltar al río", "s1", options))
    assert "/selected_option_" in custom
    assert calls == ["saltar al río"]
