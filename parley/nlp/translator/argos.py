from __future__ import annotations

import threading
import time
from typing import Set, Tuple

from .base import Translator, language_code
from parley.contracts import TranslationRequest, TranslationResult


class ArgosTranslator(Translator):
    """Offline translation with Argos models (``pip install parley[local]``)."""

    def __init__(self, default_source: str = "en", auto_install: bool = True):
        self.default_source = default_source
        self.auto_install = auto_install
        self._ready: Set[Tuple[str, str]] = set()
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return "argos"

    def _ensure_ready(self, from_code: str, to_code: str) -> None:
        with self._lock:
            if (from_code, to_code) in self._ready:
                return

            import argostranslate.package
            import argostranslate.translate

            installed = argostranslate.translate.get_installed_languages()
            have_from = any(l.code == from_code for l in installed)
            have_to = any(l.code == to_code for l in installed)

            if not (have_from and have_to):
                if not self.auto_install:
                    raise RuntimeError("Argos model not installed and auto_install=False")

                argostranslate.package.update_package_index()
                available = argostranslate.package.get_available_packages()

                pkg = None
                for p in available:
                    if p.from_code == from_code and p.to_code == to_code:
                        pkg = p
                        break
                if pkg is None:
                    raise RuntimeError(f"No Argos package found for {from_code}->{to_code}")

                path = pkg.download()
                argostranslate.package.install_from_path(path)

            self._ready.add((from_code, to_code))

    def translate(self, req: TranslationRequest) -> TranslationResult:
        started = time.perf_counter()
        from_code = language_code(req.source_lang) or self.default_source
        to_code = language_code(req.target_lang) or req.target_lang
        self._ensure_ready(from_code, to_code)
        import argostranslate.translate
        out = argostranslate.translate.translate(req.text, from_code, to_code)
        return TranslationResult(
            source_text=req.text,
            translated_text=out,
            provider=self.name,
            source_lang=from_code,
            target_lang=to_code,
            confidence=0.7,
            processing_ms=(time.perf_counter() - started) * 1000.0,
        )
