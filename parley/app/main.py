from __future__ import annotations

import logging
import sys
import threading
import traceback
from typing import Any

from parley.app.config import resolve_api_keys, resolve_args
from parley.app.diagnostics import hint_for_exception, summarize_exception
from parley.app.logging_setup import setup_app_logger
from parley.app.services import SessionServices, build_session_services
from parley.audio.mic import MicError, SoundDeviceMicSource
from parley.audio.playback import PlaybackError, clip_duration
from parley.pipeline.errors import ParleyError
from parley.pipeline.events import Event, EventChannel

PLAYBACK_TAIL_SEC = 0.3


def _print_error(detail: str) -> None:
    summary = summarize_exception(detail)
    print(f"[error] {summary}", file=sys.stderr)
    print(f"        hint: {hint_for_exception(summary)}", file=sys.stderr)


def _handle_output(event: Event, services: SessionServices, logger: logging.Logger) -> None:
    if event.name == "translationFailed":
        info = event.payload["error_info"]
        print(f"[translate failed] {info.message}")
        print(f"        hint: {info.suggested_action}")
        return

    ready = event.payload["ready"]
    print(f"[{ready.source_lang or '??'}] {ready.original_text}")
    print(f"[{ready.target_lang}] {ready.translated_text}")
    if ready.synthesis_error:
        print(f"        (no audio: {summarize_exception(ready.synthesis_error)})")
        return
    if not ready.audio or services.player is None or services.synthesizer is None:
        return

    sample_rate = services.synthesizer.sample_rate
    # keep our own voice out of the microphone while it plays
    services.session.mute_input(clip_duration(ready.audio, sample_rate) + PLAYBACK_TAIL_SEC)
    try:
        services.player.play(ready.audio, sample_rate)
    except PlaybackError as exc:
        logger.warning("playback_failed", extra={"detail": str(exc)})
        _print_error(str(exc))


def _output_loop(
    channel: EventChannel,
    services: SessionServices,
    stop_event: threading.Event,
    logger: logging.Logger,
) -> None:
    while not stop_event.is_set():
        event = channel.pop()
        if event is None:
            stop_event.wait(0.05)
            continue
        try:
            _handle_output(event, services, logger)
        except Exception:
            logger.exception("output_loop_error", extra={"event_name": event.name})


def _list_voices(services: SessionServices) -> int:
    if services.synthesizer is None:
        print("No synthesizer configured (--synthesizer none).")
        return 0
    for voice in services.synthesizer.list_voices():
        tag = " (cloned)" if voice.is_cloned else ""
        print(f"{voice.id}  {voice.name}{tag}")
    return 0


def main(argv: list[str] | None = None) -> int:
    args = resolve_args(argv)
    logger, log_dir, log_path = setup_app_logger(debug=bool(args.debug))
    logger.info("app_start", extra={"config_path": str(getattr(args, "config", "")), "argv": argv or []})

    if args.list_devices:
        print(SoundDeviceMicSource.list_devices())
        return 0

    keys = resolve_api_keys(args)
    session_logger = logging.getLogger("parley.session")
    try:
        services = build_session_services(args, keys, logger=session_logger)
    except (ValueError, RuntimeError) as exc:
        logger.exception("startup_failed")
        _print_error(str(exc))
        return 2

    if args.list_voices:
        try:
            return _list_voices(services)
        except (ParleyError, TimeoutError, ConnectionError) as exc:
            logger.exception("list_voices_failed")
            _print_error(str(exc))
            return 1

    channel = EventChannel(maxsize=100)
    channel.attach(services.events, "translationReady", "translationFailed")
    stop_event = threading.Event()
    output_thread = threading.Thread(
        target=_output_loop,
        args=(channel, services, stop_event, logger),
        name="parley-output",
        daemon=True,
    )
    output_thread.start()

    print(f"Listening... translating to '{args.target_language}'. Press Ctrl+C to stop.")
    print(f"Log: {log_path}")
    session = services.session
    try:
        session.run(services.mic.segments())
        session.wait_idle(timeout=30.0)
    except KeyboardInterrupt:
        logger.info("app_keyboard_interrupt")
    except MicError as exc:
        logger.exception("mic_failed")
        session.state.set_error(traceback.format_exc())
        _print_error(str(exc))
        return 1
    finally:
        session.stop()
        stop_event.set()
        output_thread.join(timeout=1.0)
        _report(session.metrics, services, logger, channel.dropped)
    return 0


def _report(metrics: Any, services: SessionServices, logger: logging.Logger, dropped_events: int) -> None:
    stt = services.speech_to_text.metrics()
    logger.info(
        "app_exit",
        extra={
            "translations": metrics.translations,
            "transcriptions": metrics.transcriptions,
            "feedback_skips": metrics.feedback_skips,
            "transcription_cost": round(stt.total_cost, 4),
            "dropped_events": dropped_events,
        },
    )
    print(
        f"Done. utterances={metrics.utterances} translations={metrics.translations} "
        f"skipped={metrics.feedback_skips} dropped={metrics.transcriptions_dropped} "
        f"est. cost=${stt.total_cost:.4f}"
    )


if __name__ == "__main__":
    raise SystemExit(main())
