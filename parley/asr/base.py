from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Optional
from parley.contracts import TranscriptionResult

class Transcriber(ABC):
    @property
    @abstractmethod
    def name(self) -> str: ...

    @abstractmethod
    def transcribe(self, audio: bytes, language: Optional[str] = None) -> TranscriptionResult:
        """``audio`` is an encoded WAV payload."""
