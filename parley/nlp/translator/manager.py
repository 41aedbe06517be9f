from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from typing import Optional, Sequence

from .base import Translator
from parley.contracts import TranslationRequest, TranslationResult


def cache_key(req: TranslationRequest) -> str:
    return f"{req.source_lang or 'auto'}-{req.target_lang}-{req.text}"


class TranslationManager(Translator):
    """Primary provider, optional fallbacks, and an LRU cache of finished translations."""

    def __init__(
        self,
        primary: Translator,
        fallbacks: Sequence[Translator] = (),
        *,
        cache_size: int = 100,
        logger: logging.Logger | None = None,
    ) -> None:
        self.primary = primary
        self.fallbacks = list(fallbacks)
        self.cache_size = cache_size
        self._cache: "OrderedDict[str, TranslationResult]" = OrderedDict()
        self._lock = threading.Lock()
        self._logger = logger or logging.getLogger(__name__)

    @property
    def name(self) -> str:
        return self.primary.name

    def is_available(self) -> bool:
        return any(p.is_available() for p in [self.primary, *self.fallbacks])

    def _cached(self, key: str) -> Optional[TranslationResult]:
        with self._lock:
            hit = self._cache.get(key)
            if hit is not None:
                self._cache.move_to_end(key)
            return hit

    def _store(self, key: str, result: TranslationResult) -> None:
        with self._lock:
            self._cache[key] = result
            while len(self._cache) > self.cache_size:
                self._cache.popitem(last=False)

    def translate(self, req: TranslationRequest) -> TranslationResult:
        key = cache_key(req)
        hit = self._cached(key)
        if hit is not None:
            return hit

        first_error: Optional[Exception] = None
        for provider in [self.primary, *self.fallbacks]:
            if not provider.is_available():
                continue
            try:
                result = provider.translate(req)
            except Exception as exc:
                if first_error is None:
                    first_error = exc
                self._logger.warning(
                    "translation_provider_failed",
                    extra={"provider": provider.name, "detail": str(exc)},
                )
                continue
            self._store(key, result)
            return result

        if first_error is not None:
            raise first_error
        raise RuntimeError("No translation provider is available")

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()

    @property
    def cache_len(self) -> int:
        with self._lock:
            return len(self._cache)
