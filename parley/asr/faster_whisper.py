from __future__ import annotations

import io
import math
from typing import List, Optional

from parley.asr.base import Transcriber
from parley.contracts import TranscriptionResult, TranscriptionSegment


class FasterWhisperTranscriber(Transcriber):
    """Offline transcription with a local faster-whisper model (``pip install parley[local]``)."""

    def __init__(
        self,
        *,
        model_size: str = "tiny",
        device: str = "cpu",
        compute_type: str = "int8",
        language: Optional[str] = None,
        beam_size: int = 1,
    ) -> None:
        self.model_size = model_size
        self.device = device
        self.compute_type = compute_type
        self.language = language
        self.beam_size = beam_size
        self._model = None

    @property
    def name(self) -> str:
        return "faster-whisper"

    def _get_model(self):
        if self._model is None:
            from faster_whisper import WhisperModel

            self._model = WhisperModel(
                self.model_size,
                device=self.device,
                compute_type=self.compute_type,
            )
        return self._model

    def transcribe(self, audio: bytes, language: Optional[str] = None) -> TranscriptionResult:
        if not audio:
            return TranscriptionResult(text="", confidence=0.0, language=language or "unknown", duration_sec=0.0)

        model = self._get_model()
        segments, info = model.transcribe(
            io.BytesIO(audio),
            language=language or self.language,
            beam_size=self.beam_size,
            vad_filter=False,
            condition_on_previous_text=False,
        )

        out: List[TranscriptionSegment] = []
        for s in segments:
            text = (s.text or "").strip()
            if not text:
                continue
            conf = math.exp(float(s.avg_logprob)) * (1.0 - float(s.no_speech_prob))
            out.append(
                TranscriptionSegment(
                    start=float(s.start),
                    end=float(s.end),
                    text=text,
                    confidence=max(0.0, min(1.0, conf)),
                )
            )

        confidence = sum(s.confidence for s in out) / len(out) if out else 0.0
        return TranscriptionResult(
            text=" ".join(s.text for s in out).strip(),
            confidence=confidence,
            language=str(getattr(info, "language", None) or language or "unknown"),
            duration_sec=float(getattr(info, "duration", 0.0) or 0.0),
            segments=out,
        )
