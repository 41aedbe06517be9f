from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

import httpx

from parley.net import DEFAULT_TIMEOUT, make_client, send
from parley.tts.base import Synthesizer, Voice

DEFAULT_VOICE_ID = "pNInz6obpgDQGcFmaJgB"
OUTPUT_FORMAT = "pcm_16000"


@dataclass(frozen=True)
class VoiceSettings:
    stability: float = 0.5
    similarity_boost: float = 0.5
    style: float = 0.0
    use_speaker_boost: bool = True


class ElevenLabsSynthesizer(Synthesizer):
    def __init__(
        self,
        api_key: str,
        *,
        model_id: str = "eleven_multilingual_v2",
        base_url: str = "https://api.elevenlabs.io/v1",
        voice_settings: VoiceSettings | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.api_key = api_key
        self.model_id = model_id
        self.base_url = base_url.rstrip("/")
        self.voice_settings = voice_settings or VoiceSettings()
        self._client = client or make_client(timeout)

    @property
    def name(self) -> str:
        return "elevenlabs"

    def _headers(self, accept: str) -> dict:
        return {"xi-api-key": self.api_key, "Accept": accept}

    def synthesize(self, text: str, voice_id: str) -> bytes:
        vs = self.voice_settings
        resp = send(
            self._client,
            "POST",
            f"{self.base_url}/text-to-speech/{voice_id or DEFAULT_VOICE_ID}",
            service="ElevenLabs",
            headers=self._headers("audio/*"),
            params={"output_format": OUTPUT_FORMAT},
            json={
                "text": text,
                "model_id": self.model_id,
                "voice_settings": {
                    "stability": vs.stability,
                    "similarity_boost": vs.similarity_boost,
                    "style": vs.style,
                    "use_speaker_boost": vs.use_speaker_boost,
                },
            },
        )
        return resp.content

    def list_voices(self) -> List[Voice]:
        resp = send(
            self._client,
            "GET",
            f"{self.base_url}/voices",
            service="ElevenLabs",
            headers=self._headers("application/json"),
        )
        voices = []
        for v in resp.json().get("voices", []):
            labels = v.get("labels") or {}
            voices.append(
                Voice(
                    id=str(v.get("voice_id", "")),
                    name=str(v.get("name", "")),
                    category=str(v.get("category") or ""),
                    language=str(labels.get("language") or v.get("language") or ""),
                    preview_url=str(v.get("preview_url") or ""),
                )
            )
        return voices

    def close(self) -> None:
        self._client.close()
