from __future__ import annotations
from .base import Translator
from parley.contracts import TranslationRequest, TranslationResult

class StubTranslator(Translator):
    """Dry-run provider: no network, no models."""

    @property
    def name(self) -> str:
        return "stub"

    def translate(self, req: TranslationRequest) -> TranslationResult:
        # Deterministic, test-friendly
        out = f"[{req.target_lang}] {req.text}"
        return TranslationResult(
            source_text=req.text,
            translated_text=out,
            provider=self.name,
            source_lang=req.source_lang,
            target_lang=req.target_lang,
            confidence=1.0,
        )
