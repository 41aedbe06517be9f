from __future__ import annotations

import threading

import numpy as np

from parley.audio.conditioner import pcm16_to_float

_PLAYBACK_LOCK = threading.Lock()


class PlaybackError(RuntimeError):
    pass


def clip_duration(pcm16: bytes, sample_rate: int) -> float:
    if sample_rate <= 0:
        return 0.0
    return (len(pcm16) // 2) / float(sample_rate)


class SoundDevicePlayer:
    """Plays mono PCM16 clips on the default (or given) output device, one at a time."""

    def __init__(self, *, device: int | None = None) -> None:
        self.device = device

    def play(self, pcm16: bytes, sample_rate: int, *, blocking: bool = True) -> float:
        """Returns the clip duration in seconds."""
        if not pcm16:
            return 0.0
        try:
            import sounddevice as sd
        except ImportError as e:
            raise PlaybackError(
                "sounddevice is not installed. Install with: python -m pip install sounddevice"
            ) from e

        if not _PLAYBACK_LOCK.acquire(blocking=False):
            raise PlaybackError("Playback sink is already in use.")
        try:
            samples = pcm16_to_float(pcm16).astype(np.float32)
            try:
                sd.play(samples, samplerate=sample_rate, device=self.device, blocking=blocking)
            except Exception as e:
                raise PlaybackError("Failed to play synthesized audio. Check the output device.") from e
        finally:
            _PLAYBACK_LOCK.release()
        return clip_duration(pcm16, sample_rate)
