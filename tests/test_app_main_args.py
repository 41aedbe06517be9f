from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from parley.app import config as app_config
from parley.app import main as app_main
from parley.app.config import resolve_args


@pytest.fixture(autouse=True)
def _restore_parley_logger():
    yield
    root = logging.getLogger("parley")
    for h in root.handlers:
        h.close()
    root.handlers.clear()
    root.propagate = True
    root.setLevel(logging.NOTSET)


def test_app_resolve_args_cli_overrides_config(tmp_path: Path) -> None:
    cfg_path = tmp_path / "app.json"
    cfg_path.write_text(
        json.dumps(
            {
                "translator": "stub",
                "sr": 48000,
                "target_language": "fr",
            }
        ),
        encoding="utf-8",
    )
    args = resolve_args(
        [
            "--config",
            str(cfg_path),
            "--translator",
            "argos",
            "--target-language",
            "de",
        ]
    )
    assert args.translator == "argos"
    assert args.sr == 48000
    assert args.target_language == "de"


def test_app_resolve_args_pipeline_tuning(tmp_path: Path) -> None:
    cfg_path = tmp_path / "app.json"
    cfg_path.write_text(
        json.dumps({"translation_cooldown": 4.0, "max_retries": 1}),
        encoding="utf-8",
    )
    args = resolve_args(
        [
            "--config",
            str(cfg_path),
            "--min-processing-interval",
            "1.5",
            "--rate-limit-delay",
            "0",
            "--no-play-audio",
            "--synthesizer",
            "none",
        ]
    )
    assert args.translation_cooldown == 4.0
    assert args.max_retries == 1
    assert args.min_processing_interval == 1.5
    assert args.rate_limit_delay == 0.0
    assert args.play_audio is False
    assert args.synthesizer == "none"


def test_app_resolve_args_carries_config_keys(tmp_path: Path) -> None:
    cfg_path = tmp_path / "app.json"
    cfg_path.write_text(json.dumps({"openai_api_key": "sk-file"}), encoding="utf-8")
    args = resolve_args(["--config", str(cfg_path)])
    assert args.openai_api_key == "sk-file"
    assert args.elevenlabs_api_key is None


def test_main_list_devices(tmp_path: Path, monkeypatch, capsys) -> None:
    monkeypatch.setattr(app_config, "user_config_dir", lambda appname, appauthor=None: str(tmp_path))
    monkeypatch.setattr(app_main.SoundDeviceMicSource, "list_devices", staticmethod(lambda: "0 Fake Mic"))
    assert app_main.main(["--list-devices"]) == 0
    assert "0 Fake Mic" in capsys.readouterr().out


def test_main_reports_startup_failure(tmp_path: Path, monkeypatch, capsys) -> None:
    monkeypatch.setattr(app_config, "user_config_dir", lambda appname, appauthor=None: str(tmp_path))
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("ELEVENLABS_API_KEY", raising=False)
    assert app_main.main(["--synthesizer", "none"]) == 2
    err = capsys.readouterr().err
    assert "OpenAI API key not found" in err
    assert "hint:" in err
