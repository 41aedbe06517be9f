from __future__ import annotations

import logging
import threading
import types

from parley.app import main as app_main
from parley.contracts import TranslationReady
from parley.pipeline.errors import ErrorClassifier
from parley.pipeline.events import Event, EventBus, EventChannel


class _FakeSession:
    def __init__(self) -> None:
        self.muted: list[float] = []

    def mute_input(self, duration_sec: float) -> None:
        self.muted.append(duration_sec)


class _FakePlayer:
    def __init__(self) -> None:
        self.clips: list[tuple[bytes, int]] = []

    def play(self, pcm16: bytes, sample_rate: int) -> float:
        self.clips.append((pcm16, sample_rate))
        return len(pcm16) / 2 / sample_rate


def _services(player=None) -> types.SimpleNamespace:
    return types.SimpleNamespace(
        session=_FakeSession(),
        player=player,
        synthesizer=types.SimpleNamespace(sample_rate=16000),
    )


def _ready(audio: bytes | None, synthesis_error: str | None = None) -> Event:
    ready = TranslationReady(
        original_text="Hello, how are you?",
        translated_text="Hola, ¿cómo estás?",
        audio=audio,
        source_lang="en",
        target_lang="es",
        voice_id="v1",
        output_routing="speakers",
        synthesis_error=synthesis_error,
    )
    return Event("translationReady", {"ready": ready})


def test_ready_event_prints_mutes_and_plays(capsys) -> None:
    player = _FakePlayer()
    services = _services(player)
    audio = b"\x00\x00" * 16000
    app_main._handle_output(_ready(audio), services, logging.getLogger("test"))

    out = capsys.readouterr().out
    assert "[en] Hello, how are you?" in out
    assert "[es] Hola, ¿cómo estás?" in out
    assert services.session.muted == [1.0 + app_main.PLAYBACK_TAIL_SEC]
    assert player.clips == [(audio, 16000)]


def test_ready_without_audio_reports_synthesis_error(capsys) -> None:
    player = _FakePlayer()
    services = _services(player)
    app_main._handle_output(_ready(None, "ElevenLabs API error (401): invalid_api_key"), services, logging.getLogger("test"))
    assert "no audio" in capsys.readouterr().out
    assert player.clips == []
    assert services.session.muted == []


def test_failed_event_prints_hint(capsys) -> None:
    info = ErrorClassifier().classify("HTTP 429 too many requests")
    event = Event("translationFailed", {"text": "Hello", "error_info": info})
    app_main._handle_output(event, _services(), logging.getLogger("test"))
    out = capsys.readouterr().out
    assert "[translate failed]" in out
    assert info.suggested_action in out


def test_output_loop_drains_channel_until_stopped() -> None:
    bus = EventBus()
    channel = EventChannel(maxsize=10)
    channel.attach(bus, "translationReady")
    player = _FakePlayer()
    services = _services(player)
    stop = threading.Event()
    worker = threading.Thread(target=app_main._output_loop, args=(channel, services, stop, logging.getLogger("test")))
    worker.start()
    try:
        bus.publish("translationReady", **_ready(b"\x00\x00" * 160).payload)
        for _ in range(200):
            if player.clips:
                break
            stop.wait(0.01)
    finally:
        stop.set()
        worker.join(timeout=1.0)
    assert len(player.clips) == 1
