from __future__ import annotations
import os
from typing import List, Optional
from .base import Translator
from .manager import TranslationManager


def get_translator(provider: str | None = None, *, api_key: Optional[str] = None, model: Optional[str] = None) -> Translator:
    provider = (provider or os.getenv("PARLEY_TRANSLATOR", "openai")).lower().strip()

    if provider == "stub":
        from .stub import StubTranslator
        return StubTranslator()
    if provider == "argos":
        from .argos import ArgosTranslator
        return ArgosTranslator()
    if provider == "openai":
        from .openai import OpenAITranslator
        if model:
            return OpenAITranslator(api_key or "", model=model)
        return OpenAITranslator(api_key or "")

    raise ValueError(f"Unknown translator provider: {provider}")


def build_translation_manager(
    provider: str,
    *,
    api_key: Optional[str] = None,
    model: Optional[str] = None,
    fallback: Optional[str] = None,
    cache_size: int = 100,
) -> TranslationManager:
    primary = get_translator(provider, api_key=api_key, model=model)
    fallbacks: List[Translator] = []
    if fallback and fallback.lower().strip() not in ("", "none", provider.lower().strip()):
        fallbacks.append(get_translator(fallback, api_key=api_key))
    return TranslationManager(primary, fallbacks, cache_size=cache_size)
