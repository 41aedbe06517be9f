from __future__ import annotations

import json
from typing import Callable, List

import httpx
import pytest

from parley.asr.whisper_api import WhisperApiTranscriber, parse_verbose_json, segment_confidence
from parley.contracts import TranslationRequest
from parley.net import parse_retry_after
from parley.nlp.translator.openai import OpenAITranslator
from parley.pipeline.errors import ErrorClassifier, ErrorKind, ServiceError
from parley.tts.elevenlabs import DEFAULT_VOICE_ID, ElevenLabsSynthesizer


def _client(handler: Callable[[httpx.Request], httpx.Response], seen: List[httpx.Request] | None = None) -> httpx.Client:
    def _record(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        return handler(request)

    return httpx.Client(transport=httpx.MockTransport(_record))


def _chat_reply(content: str) -> httpx.Response:
    return httpx.Response(200, json={"choices": [{"message": {"role": "assistant", "content": content}}]})


# ---- whisper ----


def test_verbose_json_parsing_and_confidence() -> None:
    result = parse_verbose_json(
        {
            "text": " Hello, how are you? ",
            "language": "english",
            "duration": 1.5,
            "segments": [
                {"start": 0.0, "end": 1.5, "text": " Hello, how are you?", "avg_logprob": 0.0, "no_speech_prob": 0.1},
            ],
        }
    )
    assert result.text == "Hello, how are you?"
    assert result.language == "english"
    assert result.duration_sec == 1.5
    assert result.confidence == pytest.approx(0.9)
    assert result.segments[0].text == "Hello, how are you?"

    bare = parse_verbose_json({"text": "hi"}, fallback_duration=0.7)
    assert bare.confidence == 0.8
    assert bare.language == "unknown"
    assert bare.duration_sec == 0.7
    assert segment_confidence(5.0, 0.0) == 1.0


def test_whisper_posts_multipart_and_parses() -> None:
    seen: List[httpx.Request] = []
    client = _client(
        lambda req: httpx.Response(200, json={"text": "Hello", "language": "english", "duration": 1.0}),
        seen,
    )
    stt = WhisperApiTranscriber("sk-test", client=client)
    result = stt.transcribe(b"RIFF....", language="en")

    assert result.text == "Hello"
    req = seen[0]
    assert req.method == "POST"
    assert req.url.path == "/v1/audio/transcriptions"
    assert req.headers["Authorization"] == "Bearer sk-test"
    body = req.content
    assert b'name="model"' in body and b"whisper-1" in body
    assert b"verbose_json" in body
    assert b'filename="audio.wav"' in body
    assert b'name="language"' in body


def test_whisper_requires_key() -> None:
    with pytest.raises(ValueError):
        WhisperApiTranscriber("")


def test_http_errors_become_classifiable_service_errors() -> None:
    client = _client(lambda req: httpx.Response(401, json={"error": {"message": "Incorrect API key provided"}}))
    stt = WhisperApiTranscriber("sk-bad", client=client)
    with pytest.raises(ServiceError) as excinfo:
        stt.transcribe(b"x" * 2000)
    err = excinfo.value
    assert err.status_code == 401
    assert str(err) == "Whisper API error (401): Incorrect API key provided"
    assert ErrorClassifier().classify(err).kind == ErrorKind.AUTHENTICATION


def test_rate_limit_carries_retry_after_header() -> None:
    client = _client(
        lambda req: httpx.Response(429, headers={"retry-after": "3"}, json={"error": {"message": "Rate limit reached"}})
    )
    stt = WhisperApiTranscriber("sk-test", client=client)
    with pytest.raises(ServiceError) as excinfo:
        stt.transcribe(b"x" * 2000)
    info = ErrorClassifier().classify(excinfo.value)
    assert info.kind == ErrorKind.RATE_LIMIT
    assert info.suggested_delay == 3.0
    assert parse_retry_after("Wed, 21 Oct 2015 07:28:00 GMT") is None


def test_transport_failures_map_to_builtin_errors() -> None:
    def timeout(req: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=req)

    def refused(req: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=req)

    with pytest.raises(TimeoutError):
        WhisperApiTranscriber("sk", client=_client(timeout)).transcribe(b"x")
    with pytest.raises(ConnectionError):
        WhisperApiTranscriber("sk", client=_client(refused)).transcribe(b"x")


# ---- openai translator ----


def test_openai_translate_builds_chat_request() -> None:
    seen: List[httpx.Request] = []
    client = _client(lambda req: _chat_reply("Hola, ¿cómo estás?"), seen)
    tr = OpenAITranslator("sk-test", client=client)
    result = tr.translate(TranslationRequest(text="Hello, how are you?", source_lang="english", target_lang="es"))

    assert result.translated_text == "Hola, ¿cómo estás?"
    assert result.source_lang == "en"
    assert result.target_lang == "es"
    assert result.provider == "openai"
    assert result.confidence == 0.9

    assert len(seen) == 1
    payload = json.loads(seen[0].content)
    assert seen[0].url.path == "/v1/chat/completions"
    assert payload["model"] == "gpt-3.5-turbo"
    assert payload["temperature"] == 0.3
    assert payload["messages"][0]["role"] == "system"
    assert "English text to Spanish" in payload["messages"][1]["content"]


def test_openai_detects_source_language_when_missing() -> None:
    replies = iter([_chat_reply("FR"), _chat_reply("Hello")])
    tr = OpenAITranslator("sk-test", client=_client(lambda req: next(replies)))
    result = tr.translate(TranslationRequest(text="Bonjour", target_lang="en"))
    assert result.source_lang == "fr"
    assert result.translated_text == "Hello"


def test_openai_detect_falls_back_to_english() -> None:
    tr = OpenAITranslator("sk-test", client=_client(lambda req: httpx.Response(500, text="boom")))
    assert tr.detect_language("whatever") == "en"


def test_openai_empty_reply_is_an_error() -> None:
    tr = OpenAITranslator("sk-test", client=_client(lambda req: httpx.Response(200, json={"choices": []})))
    with pytest.raises(ServiceError):
        tr.translate(TranslationRequest(text="Hello", source_lang="en", target_lang="es"))
    assert OpenAITranslator("").is_available() is False


# ---- elevenlabs ----


def test_elevenlabs_synthesize_requests_pcm() -> None:
    seen: List[httpx.Request] = []
    pcm = b"\x01\x00" * 160
    client = _client(lambda req: httpx.Response(200, content=pcm), seen)
    tts = ElevenLabsSynthesizer("xi-test", client=client)

    assert tts.synthesize("Hola, ¿cómo estás?", "") == pcm
    req = seen[0]
    assert req.url.path == f"/v1/text-to-speech/{DEFAULT_VOICE_ID}"
    assert req.url.params["output_format"] == "pcm_16000"
    assert req.headers["xi-api-key"] == "xi-test"
    body = json.loads(req.content)
    assert body["text"] == "Hola, ¿cómo estás?"
    assert body["model_id"] == "eleven_multilingual_v2"
    assert body["voice_settings"]["stability"] == 0.5


def test_elevenlabs_list_voices() -> None:
    data = {
        "voices": [
            {"voice_id": "v1", "name": "Adam", "category": "premade", "labels": {"language": "en"}},
            {"voice_id": "v2", "name": "Me", "category": "cloned"},
        ]
    }
    tts = ElevenLabsSynthesizer("xi-test", client=_client(lambda req: httpx.Response(200, json=data)))
    voices = tts.list_voices()
    assert [v.id for v in voices] == ["v1", "v2"]
    assert voices[0].language == "en"
    assert voices[1].is_cloned


def test_elevenlabs_errors_surface_status() -> None:
    tts = ElevenLabsSynthesizer(
        "xi-test",
        client=_client(lambda req: httpx.Response(401, json={"detail": {"status": "invalid_api_key"}})),
    )
    with pytest.raises(ServiceError) as excinfo:
        tts.synthesize("hola", "v1")
    assert excinfo.value.status_code == 401
    assert "invalid_api_key" in str(excinfo.value)
