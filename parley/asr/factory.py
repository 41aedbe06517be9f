from __future__ import annotations
import os
from typing import Optional
from .base import Transcriber


def get_transcriber(
    provider: str | None = None,
    *,
    api_key: Optional[str] = None,
    model: Optional[str] = None,
    language: Optional[str] = None,
) -> Transcriber:
    provider = (provider or os.getenv("PARLEY_TRANSCRIBER", "whisper-api")).lower().strip()

    if provider in ("whisper-api", "openai"):
        from .whisper_api import WhisperApiTranscriber
        return WhisperApiTranscriber(api_key or "", model=model or "whisper-1")
    if provider in ("faster-whisper", "local"):
        from .faster_whisper import FasterWhisperTranscriber
        return FasterWhisperTranscriber(model_size=model or "tiny", language=language)

    raise ValueError(f"Unknown transcriber provider: {provider}")
