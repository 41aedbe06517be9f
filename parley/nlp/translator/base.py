from __future__ import annotations
from abc import ABC, abstractmethod
from parley.contracts import TranslationRequest, TranslationResult

LANGUAGE_NAMES = {
    "en": "English",
    "es": "Spanish",
    "fr": "French",
    "de": "German",
    "it": "Italian",
    "pt": "Portuguese",
    "ru": "Russian",
    "ja": "Japanese",
    "ko": "Korean",
    "zh": "Chinese",
    "ar": "Arabic",
    "hi": "Hindi",
    "th": "Thai",
    "vi": "Vietnamese",
    "tr": "Turkish",
    "pl": "Polish",
    "nl": "Dutch",
    "sv": "Swedish",
    "da": "Danish",
    "no": "Norwegian",
}

_CODES_BY_NAME = {name.lower(): code for code, name in LANGUAGE_NAMES.items()}


def language_name(code: str) -> str:
    key = (code or "").strip().lower()
    if key in LANGUAGE_NAMES:
        return LANGUAGE_NAMES[key]
    if key in _CODES_BY_NAME:
        return LANGUAGE_NAMES[_CODES_BY_NAME[key]]
    return key.upper()


def language_code(value: str | None) -> str | None:
    """Accepts "es" or "spanish" (the transcription service reports full names)."""
    if not value:
        return None
    key = value.strip().lower()
    if key in LANGUAGE_NAMES:
        return key
    return _CODES_BY_NAME.get(key, key)


class Translator(ABC):
    @property
    @abstractmethod
    def name(self) -> str: ...

    @abstractmethod
    def translate(self, req: TranslationRequest) -> TranslationResult: ...

    def is_available(self) -> bool:
        return True
