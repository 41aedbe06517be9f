from __future__ import annotations

import sys
import types

import numpy as np
import pytest

from parley.audio.mic import MicError, SoundDeviceMicSource
from parley.audio.playback import PlaybackError, SoundDevicePlayer, clip_duration


class _FakeStream:
    def __init__(self, **kwargs) -> None:
        self.kwargs = kwargs
        self.reads = 0

    def __enter__(self):
        return self

    def __exit__(self, *exc) -> None:
        return None

    def read(self, frames: int):
        self.reads += 1
        return np.full((frames, self.kwargs["channels"]), 0.25, dtype=np.float32), False


def _fake_sounddevice(monkeypatch, **attrs) -> types.SimpleNamespace:
    sd = types.SimpleNamespace(InputStream=_FakeStream, query_devices=lambda: "0 Fake Mic", **attrs)
    monkeypatch.setitem(sys.modules, "sounddevice", sd)
    return sd


def test_mic_segments_are_timestamped_float32(monkeypatch) -> None:
    _fake_sounddevice(monkeypatch)
    mic = SoundDeviceMicSource(chunk_seconds=0.1, sample_rate=16000)
    gen = mic.segments()
    first, second = next(gen), next(gen)
    gen.close()

    assert first.id == "seg_1"
    assert first.samples.shape == (1600,)
    assert first.samples.dtype == np.float32
    assert first.timestamp == 0.0
    assert second.timestamp == pytest.approx(0.1)
    assert SoundDeviceMicSource.list_devices() == "0 Fake Mic"


def test_only_one_capture_stream_at_a_time(monkeypatch) -> None:
    _fake_sounddevice(monkeypatch)
    first = SoundDeviceMicSource().segments()
    next(first)
    try:
        with pytest.raises(MicError, match="already active"):
            next(SoundDeviceMicSource().segments())
    finally:
        first.close()
    # released once the first generator is closed
    again = SoundDeviceMicSource().segments()
    next(again)
    again.close()


def test_open_failure_is_a_mic_error(monkeypatch) -> None:
    def broken(**kwargs):
        raise OSError("no device")

    sd = _fake_sounddevice(monkeypatch)
    sd.InputStream = broken
    with pytest.raises(MicError, match="--list-devices"):
        next(SoundDeviceMicSource().segments())


def test_mic_rejects_bad_settings() -> None:
    with pytest.raises(ValueError):
        SoundDeviceMicSource(chunk_seconds=0)
    with pytest.raises(ValueError):
        SoundDeviceMicSource(channels=3)


def test_player_plays_pcm_and_returns_duration(monkeypatch) -> None:
    played = []
    _fake_sounddevice(monkeypatch, play=lambda samples, **kw: played.append((samples, kw)))
    pcm = b"\x00\x40" * 16000
    assert SoundDevicePlayer(device=3).play(pcm, 16000) == pytest.approx(1.0)
    samples, kw = played[0]
    assert samples.dtype == np.float32
    assert np.allclose(samples, 0.5)
    assert kw == {"samplerate": 16000, "device": 3, "blocking": True}
    assert SoundDevicePlayer().play(b"", 16000) == 0.0


def test_player_wraps_device_errors(monkeypatch) -> None:
    def broken(samples, **kw):
        raise OSError("device gone")

    _fake_sounddevice(monkeypatch, play=broken)
    with pytest.raises(PlaybackError):
        SoundDevicePlayer().play(b"\x00\x01" * 10, 16000)
    assert clip_duration(b"\x00" * 64000, 16000) == 2.0
    assert clip_duration(b"\x00" * 10, 0) == 0.0
