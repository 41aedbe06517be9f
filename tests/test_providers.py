from __future__ import annotations

from typing import List

import pytest

from parley.asr.factory import get_transcriber
from parley.asr.whisper_api import WhisperApiTranscriber
from parley.contracts import TranslationRequest, TranslationResult
from parley.nlp.translator.base import Translator, language_code, language_name
from parley.nlp.translator.factory import build_translation_manager, get_translator
from parley.nlp.translator.manager import TranslationManager
from parley.nlp.translator.stub import StubTranslator
from parley.tts.base import Synthesizer, Voice
from parley.tts.manager import SynthesisManager


class FlakyTranslator(Translator):
    def __init__(self, name: str, error: Exception | None = None, available: bool = True) -> None:
        self._name = name
        self.error = error
        self.available = available
        self.calls = 0

    @property
    def name(self) -> str:
        return self._name

    def is_available(self) -> bool:
        return self.available

    def translate(self, req: TranslationRequest) -> TranslationResult:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return TranslationResult(
            source_text=req.text,
            translated_text=f"{self._name}:{req.text}",
            provider=self._name,
            target_lang=req.target_lang,
        )


class CountingSynth(Synthesizer):
    def __init__(self) -> None:
        self.calls: List[str] = []

    @property
    def name(self) -> str:
        return "counting"

    def synthesize(self, text: str, voice_id: str) -> bytes:
        self.calls.append(text)
        return text.encode("utf-8")

    def list_voices(self) -> List[Voice]:
        self.calls.append("list")
        return [Voice(id="c1", name="Mine", category="cloned"), Voice(id="p1", name="Adam", category="premade")]


def test_stub_translator_is_deterministic() -> None:
    out = StubTranslator().translate(TranslationRequest(text="Hello", source_lang="en", target_lang="es"))
    assert out.translated_text == "[es] Hello"
    assert out.provider == "stub"
    assert out.confidence == 1.0


def test_language_helpers() -> None:
    assert language_name("es") == "Spanish"
    assert language_name("spanish") == "Spanish"
    assert language_name("xx") == "XX"
    assert language_code("English") == "en"
    assert language_code("fr") == "fr"
    assert language_code(None) is None


def test_manager_caches_by_language_pair_and_text() -> None:
    primary = FlakyTranslator("p")
    mgr = TranslationManager(primary, cache_size=2)
    req = TranslationRequest(text="Hello", source_lang="en", target_lang="es")
    assert mgr.translate(req).translated_text == "p:Hello"
    assert mgr.translate(req).translated_text == "p:Hello"
    assert primary.calls == 1

    mgr.translate(TranslationRequest(text="Hello", source_lang="en", target_lang="fr"))
    mgr.translate(TranslationRequest(text="Bye", source_lang="en", target_lang="fr"))
    assert mgr.cache_len == 2
    mgr.translate(req)
    assert primary.calls == 4


def test_manager_falls_back_and_raises_first_error() -> None:
    primary = FlakyTranslator("p", error=ConnectionError("Network error"))
    backup = FlakyTranslator("b")
    mgr = TranslationManager(primary, [backup])
    assert mgr.translate(TranslationRequest(text="Hi", target_lang="es")).provider == "b"

    broken = TranslationManager(
        FlakyTranslator("p", error=TimeoutError("first")),
        [FlakyTranslator("b", error=ConnectionError("second"))],
    )
    with pytest.raises(TimeoutError, match="first"):
        broken.translate(TranslationRequest(text="Hi", target_lang="es"))


def test_manager_skips_unavailable_providers() -> None:
    offline = FlakyTranslator("p", available=False)
    mgr = TranslationManager(offline, [FlakyTranslator("b")])
    assert mgr.translate(TranslationRequest(text="Hi", target_lang="es")).provider == "b"
    assert offline.calls == 0

    nothing = TranslationManager(FlakyTranslator("p", available=False))
    assert nothing.is_available() is False
    with pytest.raises(RuntimeError):
        nothing.translate(TranslationRequest(text="Hi", target_lang="es"))


def test_synthesis_manager_caches_clips_and_voices() -> None:
    synth = CountingSynth()
    mgr = SynthesisManager(synth, cache_size=1)
    assert mgr.synthesize("hola", "v") == b"hola"
    assert mgr.synthesize("hola", "v") == b"hola"
    mgr.synthesize("adios", "v")
    mgr.synthesize("hola", "v")
    assert synth.calls == ["hola", "adios", "hola"]

    assert mgr.default_voice().id == "p1"
    mgr.list_voices()
    assert synth.calls.count("list") == 1
    mgr.list_voices(refresh=True)
    assert synth.calls.count("list") == 2
    assert mgr.sample_rate == 16000


def test_factories(monkeypatch) -> None:
    monkeypatch.setenv("PARLEY_TRANSLATOR", "stub")
    assert isinstance(get_translator(), StubTranslator)
    with pytest.raises(ValueError):
        get_translator("klingon")

    mgr = build_translation_manager("stub", fallback="stub")
    assert mgr.fallbacks == []

    stt = get_transcriber("whisper-api", api_key="sk-test")
    assert isinstance(stt, WhisperApiTranscriber)
    with pytest.raises(ValueError):
        get_transcriber("whisper-api", api_key="")
    with pytest.raises(ValueError):
        get_transcriber("nope")
