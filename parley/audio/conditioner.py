"""Sample-buffer conditioning for the transcription service.

Everything here is a pure function over numpy buffers: resampling, level
normalization, a noise gate, a first-order high-pass filter, and PCM16 WAV
encoding. Nothing raises on bad audio; ``validate`` reports issues instead.
"""

from __future__ import annotations

import io
import logging
import math
import wave
from dataclasses import dataclass, replace
from typing import List

import numpy as np

from parley.contracts import AudioSegment

logger = logging.getLogger(__name__)

TRANSCRIPTION_SAMPLE_RATE = 16000
TRANSCRIPTION_CHANNELS = 1
TARGET_PEAK = 0.9
MAX_PAYLOAD_BYTES = 25 * 1024 * 1024
MIN_PAYLOAD_BYTES = 1000
COST_PER_MINUTE = 0.006

SUPPORTED_FORMATS = ("wav",)


@dataclass(frozen=True)
class EncodedAudio:
    data: bytes
    format: str
    sample_rate: int
    channels: int
    duration_sec: float

    @property
    def size(self) -> int:
        return len(self.data)


def _as_float(data: np.ndarray) -> np.ndarray:
    return np.asarray(data, dtype=np.float32)


def pcm16_to_float(pcm16: bytes, channels: int = 1) -> np.ndarray:
    """Little-endian int16 PCM bytes -> float32 in [-1, 1]."""
    ints = np.frombuffer(pcm16, dtype="<i2")
    out = ints.astype(np.float32) / 32768.0
    if channels > 1:
        frames = len(out) // channels
        out = out[: frames * channels].reshape(frames, channels)
    return out


def float_to_pcm16(samples: np.ndarray) -> bytes:
    clipped = np.clip(_as_float(samples), -1.0, 1.0)
    return (clipped * 0x7FFF).astype("<i2").tobytes()


def to_mono(samples: np.ndarray) -> np.ndarray:
    data = _as_float(samples)
    if data.ndim == 1:
        return data
    return data.mean(axis=1).astype(np.float32)


def resample(data: np.ndarray, src_rate: int, dst_rate: int) -> np.ndarray:
    """Linear-interpolation resampling of a mono buffer."""
    data = _as_float(data)
    if src_rate == dst_rate:
        return data
    if src_rate <= 0 or dst_rate <= 0:
        raise ValueError("sample rates must be > 0")
    ratio = src_rate / float(dst_rate)
    out_len = int(math.floor(len(data) / ratio))
    if out_len <= 0 or len(data) == 0:
        return np.zeros(0, dtype=np.float32)

    pos = np.arange(out_len, dtype=np.float64) * ratio
    idx = np.floor(pos).astype(np.int64)
    frac = (pos - idx).astype(np.float32)
    nxt = np.minimum(idx + 1, len(data) - 1)
    out = data[idx] * (1.0 - frac) + data[nxt] * frac
    # no right-hand neighbour: take the sample as-is
    tail = idx + 1 >= len(data)
    out[tail] = data[idx[tail]]
    return out.astype(np.float32)


def normalize(data: np.ndarray) -> np.ndarray:
    data = _as_float(data)
    if data.size == 0:
        return data
    peak = float(np.max(np.abs(data)))
    if peak == 0.0:
        return data
    return (data * (TARGET_PEAK / peak)).astype(np.float32)


def noise_gate(data: np.ndarray, threshold: float) -> np.ndarray:
    gated = _as_float(data).copy()
    gated[np.abs(gated) < threshold] = 0.0
    return gated


def high_pass_filter(data: np.ndarray, sample_rate: int, cutoff_hz: float) -> np.ndarray:
    data = _as_float(data)
    if data.size == 0:
        return data
    rc = 1.0 / (2 * math.pi * cutoff_hz)
    dt = 1.0 / sample_rate
    alpha = rc / (rc + dt)

    values = data.tolist()
    out = [0.0] * len(values)
    out[0] = values[0]
    prev_in = values[0]
    prev_out = values[0]
    for i in range(1, len(values)):
        sample = values[i]
        prev_out = alpha * (prev_out + sample - prev_in)
        out[i] = prev_out
        prev_in = sample
    return np.asarray(out, dtype=np.float32)


def _encode_wav(data: np.ndarray, sample_rate: int, channels: int) -> bytes:
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(2)
        wf.setframerate(sample_rate)
        wf.writeframes(float_to_pcm16(data))
    return buf.getvalue()


def encode(data: np.ndarray, sample_rate: int, channels: int = 1, fmt: str = "wav") -> bytes:
    fmt = (fmt or "wav").lower().strip()
    if fmt not in SUPPORTED_FORMATS:
        logger.warning("encode_format_fallback", extra={"requested_format": fmt, "used_format": "wav"})
    return _encode_wav(data, sample_rate, channels)


def validate(payload: bytes) -> List[str]:
    issues: List[str] = []
    size = len(payload)
    if size > MAX_PAYLOAD_BYTES:
        issues.append("File size exceeds 25MB limit")
    if size < MIN_PAYLOAD_BYTES:
        issues.append("Audio file is too small, might not contain meaningful content")
    return issues


def convert_for_transcription(
    samples: np.ndarray,
    sample_rate: int,
    *,
    target_rate: int = TRANSCRIPTION_SAMPLE_RATE,
    fmt: str = "wav",
) -> EncodedAudio:
    mono = to_mono(samples)
    rate = sample_rate
    if sample_rate != target_rate:
        mono = resample(mono, sample_rate, target_rate)
        rate = target_rate
    payload = encode(mono, rate, TRANSCRIPTION_CHANNELS, fmt)
    return EncodedAudio(
        data=payload,
        format="wav",
        sample_rate=rate,
        channels=TRANSCRIPTION_CHANNELS,
        duration_sec=len(mono) / float(rate) if rate > 0 else 0.0,
    )


def optimize_for_transcription(
    samples: np.ndarray,
    sample_rate: int,
    *,
    gate_threshold: float = 0.01,
    cutoff_hz: float = 80.0,
    target_rate: int = TRANSCRIPTION_SAMPLE_RATE,
) -> EncodedAudio:
    data = normalize(to_mono(samples))
    data = noise_gate(data, gate_threshold)
    data = high_pass_filter(data, sample_rate, cutoff_hz)
    return convert_for_transcription(data, sample_rate, target_rate=target_rate)


def condition_segment(
    segment: AudioSegment,
    *,
    target_rate: int = TRANSCRIPTION_SAMPLE_RATE,
    optimize: bool = True,
) -> AudioSegment:
    """Return a mono copy of ``segment`` at ``target_rate``, optionally cleaned up."""
    data = to_mono(segment.samples)
    if optimize:
        data = high_pass_filter(noise_gate(normalize(data), 0.01), segment.sample_rate, 80.0)
    data = resample(data, segment.sample_rate, target_rate)
    return replace(segment, samples=data, sample_rate=target_rate, channel_count=1)


def estimate_transcription_cost(duration_sec: float) -> float:
    return max(0.0, duration_sec) / 60.0 * COST_PER_MINUTE
