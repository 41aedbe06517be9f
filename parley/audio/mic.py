from __future__ import annotations

import contextlib
import itertools
import logging
import threading
from typing import Iterator, Optional

import numpy as np

from parley.contracts import AudioSegment

logger = logging.getLogger(__name__)

# One capture stream per process.
_CAPTURE_LOCK = threading.Lock()


class MicError(RuntimeError):
    pass


def _sounddevice():
    try:
        import sounddevice
    except ImportError as e:
        raise MicError("sounddevice is not installed. Install with: python -m pip install sounddevice") from e
    return sounddevice


@contextlib.contextmanager
def _exclusive_capture() -> Iterator[None]:
    if not _CAPTURE_LOCK.acquire(blocking=False):
        raise MicError("Microphone capture is already active.")
    try:
        yield
    finally:
        _CAPTURE_LOCK.release()


class SoundDeviceMicSource:
    """
    Microphone capture through PortAudio.

    ``segments()`` yields float32 AudioSegments of ``chunk_seconds`` each, stamped with
    their offset from the start of capture. Stereo input keeps both channels; the
    conditioner downmixes later.
    """

    def __init__(
        self,
        *,
        chunk_seconds: float = 0.1,
        sample_rate: int = 16000,
        channels: int = 1,
        device: Optional[int] = None,
    ) -> None:
        if chunk_seconds <= 0 or sample_rate <= 0:
            raise ValueError("chunk_seconds and sample_rate must be positive")
        if channels not in (1, 2):
            raise ValueError("only mono or stereo capture is supported")
        self.chunk_seconds = float(chunk_seconds)
        self.sample_rate = int(sample_rate)
        self.channels = int(channels)
        self.device = device
        self.overflows = 0

    @property
    def frames_per_segment(self) -> int:
        return max(1, int(round(self.chunk_seconds * self.sample_rate)))

    @staticmethod
    def list_devices() -> str:
        return str(_sounddevice().query_devices())

    def _input_stream(self, sd):
        try:
            return sd.InputStream(
                samplerate=self.sample_rate,
                channels=self.channels,
                dtype="float32",
                device=self.device,
                blocksize=0,
            )
        except Exception as e:
            raise MicError(
                "Failed to open microphone stream. Try --list-devices and select a device id with --device."
            ) from e

    def segments(self) -> Iterator[AudioSegment]:
        sd = _sounddevice()
        frames = self.frames_per_segment
        with _exclusive_capture(), self._input_stream(sd) as stream:
            logger.info("mic_opened", extra={"sample_rate": self.sample_rate, "channels": self.channels, "device": self.device})
            for index in itertools.count(1):
                data, overflowed = stream.read(frames)
                if overflowed:
                    self.overflows += 1
                    logger.debug("mic_overflow", extra={"segment": index, "overflows": self.overflows})
                block = np.array(data, dtype=np.float32)
                yield AudioSegment(
                    id=f"seg_{index}",
                    samples=block.reshape(-1) if self.channels == 1 else block,
                    sample_rate=self.sample_rate,
                    channel_count=self.channels,
                    timestamp=(index - 1) * frames / self.sample_rate,
                )
