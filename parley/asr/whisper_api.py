from __future__ import annotations

import math
from typing import Any, Dict, List, Optional

import httpx

from parley.asr.base import Transcriber
from parley.contracts import TranscriptionResult, TranscriptionSegment
from parley.net import DEFAULT_TIMEOUT, make_client, send

DEFAULT_CONFIDENCE = 0.8


def segment_confidence(avg_logprob: float, no_speech_prob: float) -> float:
    return max(0.0, min(1.0, math.exp(avg_logprob) * (1.0 - no_speech_prob)))


def parse_verbose_json(data: Dict[str, Any], *, fallback_duration: float = 0.0) -> TranscriptionResult:
    raw_segments = data.get("segments") or []
    segments: List[TranscriptionSegment] = []
    for seg in raw_segments:
        segments.append(
            TranscriptionSegment(
                start=float(seg.get("start", 0.0)),
                end=float(seg.get("end", 0.0)),
                text=str(seg.get("text", "")).strip(),
                confidence=segment_confidence(
                    float(seg.get("avg_logprob", 0.0)),
                    float(seg.get("no_speech_prob", 0.0)),
                ),
            )
        )

    confidence = DEFAULT_CONFIDENCE
    if raw_segments:
        avg_logprob = sum(float(s.get("avg_logprob", 0.0)) for s in raw_segments) / len(raw_segments)
        avg_no_speech = sum(float(s.get("no_speech_prob", 0.0)) for s in raw_segments) / len(raw_segments)
        confidence = segment_confidence(avg_logprob, avg_no_speech)

    return TranscriptionResult(
        text=str(data.get("text", "")).strip(),
        confidence=confidence,
        language=str(data.get("language") or "unknown"),
        duration_sec=float(data.get("duration") or fallback_duration),
        segments=segments,
    )


class WhisperApiTranscriber(Transcriber):
    """OpenAI ``/audio/transcriptions`` with ``verbose_json`` output."""

    def __init__(
        self,
        api_key: str,
        *,
        model: str = "whisper-1",
        base_url: str = "https://api.openai.com/v1",
        temperature: float = 0.0,
        prompt: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        client: Optional[httpx.Client] = None,
    ) -> None:
        if not api_key:
            raise ValueError("OpenAI API key not found. Please configure your API key.")
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.temperature = temperature
        self.prompt = prompt
        self._client = client or make_client(timeout)

    @property
    def name(self) -> str:
        return "whisper-api"

    def transcribe(self, audio: bytes, language: Optional[str] = None) -> TranscriptionResult:
        data: Dict[str, str] = {
            "model": self.model,
            "response_format": "verbose_json",
            "temperature": str(self.temperature),
        }
        if language:
            data["language"] = language
        if self.prompt:
            data["prompt"] = self.prompt
        resp = send(
            self._client,
            "POST",
            f"{self.base_url}/audio/transcriptions",
            service="Whisper",
            headers={"Authorization": f"Bearer {self.api_key}"},
            files={"file": ("audio.wav", audio, "audio/wav")},
            data=data,
        )
        return parse_verbose_json(resp.json())

    def close(self) -> None:
        self._client.close()
