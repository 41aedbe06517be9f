from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from typing import List, Optional

from parley.tts.base import Synthesizer, Voice


class SynthesisManager(Synthesizer):
    """LRU cache of synthesized clips plus a cached voice list."""

    def __init__(
        self,
        provider: Synthesizer,
        *,
        cache_size: int = 50,
        logger: logging.Logger | None = None,
    ) -> None:
        self.provider = provider
        self.cache_size = cache_size
        self._cache: "OrderedDict[str, bytes]" = OrderedDict()
        self._voices: Optional[List[Voice]] = None
        self._lock = threading.Lock()
        self._logger = logger or logging.getLogger(__name__)

    @property
    def name(self) -> str:
        return self.provider.name

    @property
    def sample_rate(self) -> int:
        return self.provider.sample_rate

    def synthesize(self, text: str, voice_id: str) -> bytes:
        key = f"{voice_id}-{text}"
        with self._lock:
            hit = self._cache.get(key)
            if hit is not None:
                self._cache.move_to_end(key)
                return hit
        audio = self.provider.synthesize(text, voice_id)
        with self._lock:
            self._cache[key] = audio
            while len(self._cache) > self.cache_size:
                self._cache.popitem(last=False)
        return audio

    def list_voices(self, refresh: bool = False) -> List[Voice]:
        if self._voices is None or refresh:
            self._voices = self.provider.list_voices()
        return list(self._voices)

    def default_voice(self) -> Optional[Voice]:
        voices = self.list_voices()
        for v in voices:
            if not v.is_cloned:
                return v
        return voices[0] if voices else None

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()
