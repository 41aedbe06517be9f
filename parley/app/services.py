from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from parley.app.config import ApiKeys
from parley.asr.factory import get_transcriber
from parley.asr.speech_to_text import SpeechToTextConfig, SpeechToTextService
from parley.audio.mic import SoundDeviceMicSource
from parley.audio.playback import SoundDevicePlayer
from parley.audio.vad import VadConfig, VoiceActivityDetector
from parley.live.session import SessionConfig, TranslationSession
from parley.live.utterance import UtteranceAssembler
from parley.nlp.translator.factory import build_translation_manager
from parley.nlp.translator.manager import TranslationManager
from parley.pipeline.errors import ErrorHandler, RetryPolicy
from parley.pipeline.events import EventBus
from parley.pipeline.feedback import FeedbackConfig, FeedbackGuard
from parley.pipeline.scheduler import DelayedTaskScheduler
from parley.pipeline.transcription_queue import QueueConfig
from parley.tts.elevenlabs import ElevenLabsSynthesizer
from parley.tts.manager import SynthesisManager


@dataclass(frozen=True)
class SessionServices:
    mic: SoundDeviceMicSource
    player: Optional[SoundDevicePlayer]
    events: EventBus
    speech_to_text: SpeechToTextService
    translator: TranslationManager
    synthesizer: Optional[SynthesisManager]
    session: TranslationSession


def build_synthesizer(args: Any, keys: ApiKeys) -> Optional[SynthesisManager]:
    if str(args.synthesizer).lower() == "none":
        return None
    return SynthesisManager(ElevenLabsSynthesizer(keys.elevenlabs or ""))


def build_session_services(args: Any, keys: ApiKeys, logger: logging.Logger | None = None) -> SessionServices:
    """Construct every collaborator exactly once and wire them into a session."""
    events = EventBus(logger=logger)
    mic = SoundDeviceMicSource(
        chunk_seconds=float(args.chunk_sec),
        sample_rate=int(args.sr),
        channels=int(args.channels),
        device=args.device,
    )
    vad = VoiceActivityDetector(
        VadConfig(
            volume_threshold=float(args.volume_threshold),
            energy_threshold=float(args.energy_threshold),
            zero_crossing_threshold=float(args.zcr_threshold),
            min_speech_duration=float(args.min_speech_sec),
            min_silence_duration=float(args.min_silence_sec),
        ),
        events=events,
    )
    transcriber = get_transcriber(
        str(args.transcriber),
        api_key=keys.openai,
        model=str(args.model),
        language=args.source_language,
    )
    speech_to_text = SpeechToTextService(
        transcriber,
        SpeechToTextConfig(language=args.source_language, enable_optimization=bool(args.optimize_audio)),
        events=events,
    )
    translator = build_translation_manager(
        str(args.translator),
        api_key=keys.openai,
        model=str(args.translator_model),
        fallback=str(args.fallback_translator),
    )
    synthesizer = build_synthesizer(args, keys)
    policy = RetryPolicy(
        max_retries=max(0, int(args.max_retries)),
        base_delay=float(args.retry_base_delay),
        max_delay=float(args.retry_max_delay),
    )
    session = TranslationSession(
        transcribe=speech_to_text,
        translator=translator,
        synthesizer=synthesizer,
        config=SessionConfig(
            target_language=str(args.target_language),
            voice_id=str(args.voice_id),
            output_routing=str(args.output_routing),
            source_language=args.source_language,
            min_confidence=float(args.min_confidence),
        ),
        vad=vad,
        assembler=UtteranceAssembler(
            min_utter_sec=float(args.min_utter_sec),
            max_utter_sec=None if args.max_utter_sec is None else float(args.max_utter_sec),
            debug=bool(args.debug),
        ),
        guard=FeedbackGuard(
            FeedbackConfig(
                min_text_length=int(args.min_text_length),
                translation_cooldown=float(args.translation_cooldown),
                min_processing_interval=float(args.min_processing_interval),
                history_size=max(1, int(args.recent_history)),
            ),
            logger=logger,
        ),
        queue_config=QueueConfig(
            max_concurrent_jobs=max(1, int(args.max_concurrent_jobs)),
            max_queue_size=max(1, int(args.max_queue_size)),
            max_retries=max(0, int(args.max_retries)),
            rate_limit_delay=max(0.0, float(args.rate_limit_delay)),
        ),
        error_handler=ErrorHandler(policy=policy, events=events, logger=logger),
        scheduler=DelayedTaskScheduler(logger=logger),
        events=events,
        logger=logger,
        debug=bool(args.debug),
    )
    player = SoundDevicePlayer(device=args.output_device) if bool(args.play_audio) and synthesizer is not None else None
    return SessionServices(
        mic=mic,
        player=player,
        events=events,
        speech_to_text=speech_to_text,
        translator=translator,
        synthesizer=synthesizer,
        session=session,
    )
