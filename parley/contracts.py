from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import numpy as np


@dataclass(frozen=True, eq=False)
class AudioSegment:
    """
    A bounded chunk of captured audio.
    samples: float32 in [-1, 1]; 1-D for mono, (frames, channels) otherwise.
    timestamp: seconds since stream start.
    """
    id: str
    samples: np.ndarray
    sample_rate: int
    channel_count: int = 1
    timestamp: float = 0.0

    @property
    def duration_sec(self) -> float:
        if self.sample_rate <= 0:
            return 0.0
        return len(self.samples) / float(self.sample_rate)


@dataclass(frozen=True)
class VoiceActivity:
    is_active: bool
    confidence: float
    volume: float
    energy: float
    zero_crossing_rate: float
    timestamp: float


@dataclass(frozen=True)
class TranscriptionSegment:
    start: float
    end: float
    text: str
    confidence: float = 0.0


@dataclass(frozen=True)
class TranscriptionResult:
    text: str
    confidence: float
    language: str
    duration_sec: float
    segments: List[TranscriptionSegment] = field(default_factory=list)


@dataclass(frozen=True)
class TranslationRequest:
    text: str
    # Optional: recent prior lines (for context consistency)
    context: Optional[Sequence[str]] = None
    source_lang: Optional[str] = None
    target_lang: str = "es"


@dataclass(frozen=True)
class TranslationResult:
    source_text: str
    translated_text: str
    provider: str
    source_lang: Optional[str] = None
    target_lang: str = ""
    confidence: float = 0.0
    processing_ms: float = 0.0


@dataclass(frozen=True)
class TranslationReady:
    """Terminal output of one translate -> synthesize cycle."""
    original_text: str
    translated_text: str
    audio: Optional[bytes]
    source_lang: Optional[str]
    target_lang: str
    voice_id: str
    output_routing: str
    synthesis_error: Optional[str] = None
