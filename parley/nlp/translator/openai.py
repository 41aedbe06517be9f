from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional

import httpx

from .base import LANGUAGE_NAMES, Translator, language_code, language_name
from parley.contracts import TranslationRequest, TranslationResult
from parley.net import DEFAULT_TIMEOUT, make_client, send
from parley.pipeline.errors import ServiceError

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a professional translator. Translate the given text accurately while "
    "preserving the original meaning and tone. Return only the translated text "
    "without any additional commentary."
)
DETECT_PROMPT = 'Detect the language of the given text and return only the ISO 639-1 language code (e.g., "en", "es", "fr").'


def build_prompt(text: str, source_lang: str, target_lang: str) -> str:
    return f'Translate the following {language_name(source_lang)} text to {language_name(target_lang)}:\n\n"{text}"'


class OpenAITranslator(Translator):
    def __init__(
        self,
        api_key: str,
        *,
        model: str = "gpt-3.5-turbo",
        base_url: str = "https://api.openai.com/v1",
        temperature: float = 0.3,
        max_tokens: int = 1000,
        timeout: float = DEFAULT_TIMEOUT,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._client = client or make_client(timeout)

    @property
    def name(self) -> str:
        return "openai"

    def is_available(self) -> bool:
        return bool(self.api_key)

    def supported_languages(self) -> List[str]:
        return list(LANGUAGE_NAMES)

    def _chat(self, messages: List[Dict[str, str]], *, max_tokens: int, temperature: float) -> str:
        if not self.api_key:
            raise ServiceError("OpenAI API key missing", status_code=401)
        resp = send(
            self._client,
            "POST",
            f"{self.base_url}/chat/completions",
            service="OpenAI",
            headers={"Authorization": f"Bearer {self.api_key}"},
            json={
                "model": self.model,
                "messages": messages,
                "max_tokens": max_tokens,
                "temperature": temperature,
            },
        )
        data: Dict[str, Any] = resp.json()
        choices = data.get("choices") or []
        if not choices:
            return ""
        return str((choices[0].get("message") or {}).get("content") or "").strip()

    def detect_language(self, text: str) -> str:
        """Best effort: falls back to English when detection fails."""
        try:
            code = self._chat(
                [{"role": "system", "content": DETECT_PROMPT}, {"role": "user", "content": text}],
                max_tokens=10,
                temperature=0.0,
            )
        except (ServiceError, TimeoutError, ConnectionError) as exc:
            logger.warning("language_detect_failed", extra={"detail": str(exc)})
            return "en"
        return code.lower() or "en"

    def translate(self, req: TranslationRequest) -> TranslationResult:
        started = time.perf_counter()
        source = language_code(req.source_lang) or self.detect_language(req.text)
        target = language_code(req.target_lang) or req.target_lang
        out = self._chat(
            [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_prompt(req.text, source, target)},
            ],
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )
        if not out:
            raise ServiceError("No translation received from OpenAI")
        return TranslationResult(
            source_text=req.text,
            translated_text=out,
            provider=self.name,
            source_lang=source,
            target_lang=target,
            confidence=0.9,
            processing_ms=(time.perf_counter() - started) * 1000.0,
        )

    def close(self) -> None:
        self._client.close()
