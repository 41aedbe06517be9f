from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List


@dataclass(frozen=True)
class Voice:
    id: str
    name: str
    category: str = ""
    language: str = ""
    preview_url: str = ""

    @property
    def is_cloned(self) -> bool:
        return self.category == "cloned"


class Synthesizer(ABC):
    @property
    @abstractmethod
    def name(self) -> str: ...

    @abstractmethod
    def synthesize(self, text: str, voice_id: str) -> bytes:
        """Returns mono little-endian PCM16 at ``sample_rate``."""

    @property
    def sample_rate(self) -> int:
        return 16000

    def list_voices(self) -> List[Voice]:
        return []
