from __future__ import annotations

import argparse
import copy
import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from platformdirs import user_config_dir


DEFAULTS: dict[str, Any] = {
    "list_devices": False,
    "list_voices": False,
    "device": None,
    "output_device": None,
    "sr": 16000,
    "channels": 1,
    "chunk_sec": 0.1,
    "volume_threshold": 0.01,
    "energy_threshold": 0.001,
    "zcr_threshold": 0.1,
    "min_speech_sec": 0.3,
    "min_silence_sec": 0.5,
    "min_utter_sec": 0.6,
    "max_utter_sec": 15.0,
    "debug": False,
    "transcriber": "whisper-api",
    "model": "whisper-1",
    "source_language": None,
    "target_language": "es",
    "translator": "openai",
    "translator_model": "gpt-3.5-turbo",
    "fallback_translator": "none",
    "synthesizer": "elevenlabs",
    "voice_id": "pNInz6obpgDQGcFmaJgB",
    "output_routing": "speakers",
    "min_confidence": 0.3,
    "optimize_audio": True,
    "max_concurrent_jobs": 3,
    "max_queue_size": 50,
    "rate_limit_delay": 1.0,
    "max_retries": 3,
    "retry_base_delay": 1.0,
    "retry_max_delay": 30.0,
    "min_text_length": 5,
    "translation_cooldown": 10.0,
    "min_processing_interval": 3.0,
    "recent_history": 5,
    "play_audio": True,
    "openai_api_key": None,
    "elevenlabs_api_key": None,
}
CONFIG_KEYS: tuple[str, ...] = tuple(DEFAULTS.keys())

ENV_KEYS = {
    "openai": "OPENAI_API_KEY",
    "elevenlabs": "ELEVENLABS_API_KEY",
}


@dataclass(frozen=True)
class AppPaths:
    config_dir: Path
    config_path: Path


@dataclass(frozen=True)
class ApiKeys:
    openai: str | None = None
    elevenlabs: str | None = None

    def __repr__(self) -> str:
        def _mask(v: str | None) -> str:
            return "unset" if not v else "set"

        return f"ApiKeys(openai={_mask(self.openai)}, elevenlabs={_mask(self.elevenlabs)})"


def app_paths() -> AppPaths:
    config_dir = Path(user_config_dir("Parley", "Parley"))
    return AppPaths(config_dir=config_dir, config_path=config_dir / "config.json")


def _load_json_dict(path: Path) -> dict[str, Any]:
    # Accept UTF-8 with or without BOM for Windows-edited config files.
    with path.open("r", encoding="utf-8-sig") as f:
        loaded = json.load(f)
    if not isinstance(loaded, dict):
        raise ValueError(f"config must be a JSON object: {path}")
    return loaded


def _write_json_dict(path: Path, payload: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        json.dump(payload, f, ensure_ascii=False, indent=2)
        f.write("\n")


def _known_only(payload: dict[str, Any]) -> dict[str, Any]:
    return {key: payload[key] for key in CONFIG_KEYS if key in payload}


def _merged(loaded: dict[str, Any]) -> dict[str, Any]:
    out = copy.deepcopy(DEFAULTS)
    out.update(_known_only(loaded))
    return out


def ensure_user_config_exists(defaults: dict[str, Any] | None = None) -> Path:
    paths = app_paths()
    if paths.config_path.exists():
        return paths.config_path
    payload = dict(defaults or DEFAULTS)
    # keys belong in the environment unless the user puts them here deliberately
    payload.pop("openai_api_key", None)
    payload.pop("elevenlabs_api_key", None)
    _write_json_dict(paths.config_path, payload)
    return paths.config_path


def load_user_config(config_path: str | None = None) -> tuple[dict[str, Any], Path]:
    if config_path:
        chosen = Path(config_path)
        if not chosen.exists():
            raise SystemExit(f"Config file not found: {chosen}")
    else:
        chosen = ensure_user_config_exists()
    return _merged(_load_json_dict(chosen)), chosen


def save_user_config(values: dict[str, Any], config_path: str | None = None) -> Path:
    path = Path(config_path) if config_path else ensure_user_config_exists()
    existing = _known_only(_load_json_dict(path)) if path.exists() else {}
    merged = dict(existing)
    merged.update(_known_only(values))
    _write_json_dict(path, merged)
    return path


def resolve_api_keys(values: dict[str, Any] | argparse.Namespace, env: dict[str, str] | None = None) -> ApiKeys:
    """Environment first, then config."""
    source = vars(values) if isinstance(values, argparse.Namespace) else values
    env = os.environ if env is None else env
    return ApiKeys(
        openai=env.get(ENV_KEYS["openai"]) or source.get("openai_api_key") or None,
        elevenlabs=env.get(ENV_KEYS["elevenlabs"]) or source.get("elevenlabs_api_key") or None,
    )


def parser_with_defaults(defaults: dict[str, Any]) -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="parley", description="Listen, translate and speak in real time.")
    p.add_argument("--config", default=None, help="JSON config path (CLI flags override config)")
    p.add_argument("--list-devices", action="store_true", help="print audio devices and exit")
    p.add_argument("--list-voices", action="store_true", help="print synthesis voices and exit")
    p.add_argument("--device", type=int, default=defaults["device"], help="sounddevice input device id")
    p.add_argument("--output-device", type=int, default=defaults["output_device"], help="sounddevice output device id")
    p.add_argument("--sr", type=int, default=defaults["sr"], help="capture sample rate (Hz)")
    p.add_argument("--channels", type=int, default=defaults["channels"], help="input channels")
    p.add_argument("--chunk-sec", type=float, default=defaults["chunk_sec"], help="capture segment size in seconds")
    p.add_argument("--volume-threshold", type=float, default=defaults["volume_threshold"], help="VAD mean |x| threshold")
    p.add_argument("--energy-threshold", type=float, default=defaults["energy_threshold"], help="VAD mean x^2 threshold")
    p.add_argument("--zcr-threshold", type=float, default=defaults["zcr_threshold"], help="VAD zero-crossing threshold")
    p.add_argument(
        "--min-speech-sec",
        type=float,
        default=defaults["min_speech_sec"],
        help="continuous speech needed before speech starts",
    )
    p.add_argument(
        "--min-silence-sec",
        type=float,
        default=defaults["min_silence_sec"],
        help="continuous silence needed before speech ends",
    )
    p.add_argument(
        "--min-utter-sec",
        type=float,
        default=defaults["min_utter_sec"],
        help="ignore utterances shorter than this",
    )
    p.add_argument(
        "--max-utter-sec",
        type=float,
        default=defaults["max_utter_sec"],
        help="force finalize while continuously speaking (seconds)",
    )
    p.add_argument("--debug", action="store_true", help="print per-segment VAD decisions")
    p.add_argument(
        "--transcriber",
        default=defaults["transcriber"],
        choices=["whisper-api", "faster-whisper"],
        help="speech-to-text backend",
    )
    p.add_argument("--model", default=defaults["model"], help="transcription model (API model or faster-whisper size)")
    p.add_argument("--source-language", default=defaults["source_language"], help="spoken language code (default: detect)")
    p.add_argument("--target-language", default=defaults["target_language"], help="translation target language code")
    p.add_argument(
        "--translator",
        default=defaults["translator"],
        choices=["openai", "argos", "stub"],
        help="translation provider",
    )
    p.add_argument("--translator-model", default=defaults["translator_model"], help="chat model used for translation")
    p.add_argument(
        "--fallback-translator",
        default=defaults["fallback_translator"],
        choices=["none", "openai", "argos", "stub"],
        help="provider tried when the primary fails",
    )
    p.add_argument(
        "--synthesizer",
        default=defaults["synthesizer"],
        choices=["elevenlabs", "none"],
        help="speech synthesis provider",
    )
    p.add_argument("--voice-id", default=defaults["voice_id"], help="synthesis voice id")
    p.add_argument("--output-routing", default=defaults["output_routing"], help="label passed with each translation")
    p.add_argument("--min-confidence", type=float, default=defaults["min_confidence"], help="drop transcriptions below this")
    p.add_argument(
        "--optimize-audio",
        action=argparse.BooleanOptionalAction,
        default=defaults["optimize_audio"],
        help="normalize, gate and high-pass audio before transcription",
    )
    p.add_argument("--max-concurrent-jobs", type=int, default=defaults["max_concurrent_jobs"], help="parallel transcriptions")
    p.add_argument("--max-queue-size", type=int, default=defaults["max_queue_size"], help="queued utterance limit")
    p.add_argument("--rate-limit-delay", type=float, default=defaults["rate_limit_delay"], help="seconds between dispatches")
    p.add_argument("--max-retries", type=int, default=defaults["max_retries"], help="retries for transient failures")
    p.add_argument("--retry-base-delay", type=float, default=defaults["retry_base_delay"], help="first retry delay")
    p.add_argument("--retry-max-delay", type=float, default=defaults["retry_max_delay"], help="retry delay cap")
    p.add_argument("--min-text-length", type=int, default=defaults["min_text_length"], help="shortest text worth translating")
    p.add_argument(
        "--translation-cooldown",
        type=float,
        default=defaults["translation_cooldown"],
        help="seconds after a translation before the next is allowed",
    )
    p.add_argument(
        "--min-processing-interval",
        type=float,
        default=defaults["min_processing_interval"],
        help="seconds between translation attempts",
    )
    p.add_argument("--recent-history", type=int, default=defaults["recent_history"], help="recent texts remembered")
    p.add_argument(
        "--play-audio",
        action=argparse.BooleanOptionalAction,
        default=defaults["play_audio"],
        help="play synthesized speech on the output device",
    )
    return p


def resolve_args(argv: list[str] | None = None) -> argparse.Namespace:
    pre = argparse.ArgumentParser(add_help=False)
    pre.add_argument("--config", default=None)
    pre_args, _ = pre.parse_known_args(argv)
    defaults, _ = load_user_config(config_path=pre_args.config)
    parser = parser_with_defaults(defaults)
    args = parser.parse_args(argv)
    if defaults.get("list_devices"):
        args.list_devices = True
    if defaults.get("list_voices"):
        args.list_voices = True
    if defaults.get("debug"):
        args.debug = True
    args.openai_api_key = defaults.get("openai_api_key")
    args.elevenlabs_api_key = defaults.get("elevenlabs_api_key")
    return args
