"""Segment -> text: conditioning, validation, caching and metrics around a Transcriber."""

from __future__ import annotations

import hashlib
import logging
import threading
import time
from collections import OrderedDict, deque
from dataclasses import dataclass
from typing import Callable, Deque, Optional

from parley.asr.base import Transcriber
from parley.audio import conditioner
from parley.contracts import AudioSegment, TranscriptionResult
from parley.pipeline.errors import AudioFormatError
from parley.pipeline.events import EventBus

METRICS_HISTORY = 100


@dataclass(frozen=True)
class SpeechToTextConfig:
    language: Optional[str] = None
    enable_optimization: bool = True
    enable_caching: bool = True
    max_cache_size: int = 100
    confidence_threshold: float = 0.5
    target_sample_rate: int = conditioner.TRANSCRIPTION_SAMPLE_RATE


@dataclass(frozen=True)
class TranscriptionMetrics:
    segment_id: str
    processing_time: float
    audio_size: int
    transcription_length: int
    confidence: float
    cost: float


@dataclass(frozen=True)
class MetricsSummary:
    total_transcriptions: int
    average_processing_time: float
    average_confidence: float
    total_cost: float
    average_audio_size: float
    cache_hits: int
    cache_size: int


def audio_fingerprint(payload: bytes) -> str:
    return hashlib.sha1(payload).hexdigest()


class SpeechToTextService:
    def __init__(
        self,
        transcriber: Transcriber,
        config: SpeechToTextConfig | None = None,
        *,
        events: EventBus | None = None,
        clock: Callable[[], float] = time.perf_counter,
        logger: logging.Logger | None = None,
    ) -> None:
        self.transcriber = transcriber
        self.config = config or SpeechToTextConfig()
        self.events = events
        self._clock = clock
        self._logger = logger or logging.getLogger(__name__)
        self._cache: "OrderedDict[str, TranscriptionResult]" = OrderedDict()
        self._metrics: Deque[TranscriptionMetrics] = deque(maxlen=METRICS_HISTORY)
        self._cache_hits = 0
        self._cache_lock = threading.Lock()

    def _emit(self, name: str, **payload) -> None:
        if self.events is not None:
            self.events.publish(name, **payload)

    def encode(self, segment: AudioSegment) -> conditioner.EncodedAudio:
        if self.config.enable_optimization:
            return conditioner.optimize_for_transcription(
                segment.samples,
                segment.sample_rate,
                target_rate=self.config.target_sample_rate,
            )
        return conditioner.convert_for_transcription(
            segment.samples,
            segment.sample_rate,
            target_rate=self.config.target_sample_rate,
        )

    def _cached(self, key: str) -> Optional[TranscriptionResult]:
        with self._cache_lock:
            hit = self._cache.get(key)
            if hit is not None:
                self._cache.move_to_end(key)
                self._cache_hits += 1
            return hit

    def _store(self, key: str, result: TranscriptionResult) -> None:
        with self._cache_lock:
            self._cache[key] = result
            while len(self._cache) > self.config.max_cache_size:
                self._cache.popitem(last=False)

    def transcribe(self, segment: AudioSegment) -> TranscriptionResult:
        started = self._clock()
        payload = self.encode(segment)

        issues = conditioner.validate(payload.data)
        if issues:
            raise AudioFormatError(f"Audio validation failed: {', '.join(issues)}")

        key = audio_fingerprint(payload.data)
        cached = self._cached(key) if self.config.enable_caching else None
        if cached is not None:
            self._emit("transcriptionFromCache", segment=segment, result=cached)
            return cached

        self._emit("transcriptionStarted", segment=segment, audio_size=payload.size)
        result = self.transcriber.transcribe(payload.data, self.config.language)
        if result.duration_sec <= 0:
            result = TranscriptionResult(
                text=result.text,
                confidence=result.confidence,
                language=result.language,
                duration_sec=segment.duration_sec,
                segments=result.segments,
            )

        if self.config.enable_caching and result.confidence >= self.config.confidence_threshold:
            self._store(key, result)

        elapsed = self._clock() - started
        self._metrics.append(
            TranscriptionMetrics(
                segment_id=segment.id,
                processing_time=elapsed,
                audio_size=payload.size,
                transcription_length=len(result.text),
                confidence=result.confidence,
                cost=conditioner.estimate_transcription_cost(segment.duration_sec),
            )
        )
        self._logger.info(
            "transcription_done",
            extra={
                "segment_id": segment.id,
                "provider": self.transcriber.name,
                "ms": round(elapsed * 1000.0, 2),
                "chars": len(result.text),
                "confidence": round(result.confidence, 3),
            },
        )
        self._emit("transcriptionCompleted", segment=segment, result=result, processing_time=elapsed)
        return result

    __call__ = transcribe

    def metrics(self) -> MetricsSummary:
        with self._cache_lock:
            hits, size = self._cache_hits, len(self._cache)
        items = list(self._metrics)
        n = len(items)
        return MetricsSummary(
            total_transcriptions=n,
            average_processing_time=sum(m.processing_time for m in items) / n if n else 0.0,
            average_confidence=sum(m.confidence for m in items) / n if n else 0.0,
            total_cost=sum(m.cost for m in items),
            average_audio_size=sum(m.audio_size for m in items) / n if n else 0.0,
            cache_hits=hits,
            cache_size=size,
        )

    def clear_cache(self) -> None:
        with self._cache_lock:
            self._cache.clear()
