"""Listen -> transcribe -> translate -> synthesize, wired together.

Capture runs on the caller's thread and only ingests: VAD, utterance assembly
and enqueue. Transcription happens on the queue's workers, and the worker
that finishes a transcription runs the translate/synthesize cycle, gated by
the feedback guard so at most one cycle runs at a time.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import asdict, dataclass
from typing import Any, Callable, Iterable, Optional

from parley.app.state import SessionState, SessionStateTracker
from parley.audio.vad import VoiceActivityDetector
from parley.contracts import AudioSegment, TranscriptionResult, TranslationReady, TranslationRequest
from parley.live.utterance import UtteranceAssembler
from parley.nlp.translator.base import Translator
from parley.pipeline.errors import ErrorHandler, QueueFullError
from parley.pipeline.events import EventBus
from parley.pipeline.feedback import FeedbackGuard
from parley.pipeline.scheduler import DelayedTaskScheduler
from parley.pipeline.transcription_queue import CompletedItem, QueueConfig, QueueStats, TranscriptionQueue
from parley.tts.base import Synthesizer
from parley.tts.elevenlabs import DEFAULT_VOICE_ID


@dataclass(frozen=True)
class SessionConfig:
    target_language: str = "es"
    voice_id: str = DEFAULT_VOICE_ID
    output_routing: str = "speakers"
    source_language: Optional[str] = None
    min_confidence: float = 0.3
    priority: int = 1


@dataclass
class SessionMetrics:
    segments_in: int = 0
    segments_muted: int = 0
    utterances: int = 0
    queue_rejections: int = 0
    transcriptions: int = 0
    transcriptions_dropped: int = 0
    feedback_skips: int = 0
    translations: int = 0
    translation_failures: int = 0
    synthesis_failures: int = 0


def _log_event(logger: logging.Logger | None, level: int, event: str, **fields: Any) -> None:
    if logger is None:
        return
    logger.log(level, event, extra=fields)


class TranslationSession:
    def __init__(
        self,
        *,
        transcribe: Callable[[AudioSegment], TranscriptionResult],
        translator: Translator,
        synthesizer: Synthesizer | None = None,
        config: SessionConfig | None = None,
        vad: VoiceActivityDetector | None = None,
        assembler: UtteranceAssembler | None = None,
        guard: FeedbackGuard | None = None,
        queue_config: QueueConfig | None = None,
        error_handler: ErrorHandler | None = None,
        scheduler: DelayedTaskScheduler | None = None,
        events: EventBus | None = None,
        clock: Callable[[], float] = time.monotonic,
        logger: logging.Logger | None = None,
        debug: bool = False,
    ) -> None:
        self.config = config or SessionConfig()
        self.events = events or EventBus()
        self.translator = translator
        self.synthesizer = synthesizer
        self.vad = vad or VoiceActivityDetector(events=self.events)
        if self.vad.events is None:
            self.vad.events = self.events
        self.assembler = assembler or UtteranceAssembler()
        self.guard = guard or FeedbackGuard(logger=logger)
        self.error_handler = error_handler or ErrorHandler(events=self.events, logger=logger)
        self.scheduler = scheduler or DelayedTaskScheduler(logger=logger)
        self.queue = TranscriptionQueue(
            transcribe,
            config=queue_config,
            error_handler=self.error_handler,
            scheduler=self.scheduler,
            events=self.events,
            on_complete=self._on_transcribed,
            logger=logger,
        )
        self.state = SessionStateTracker()
        self.metrics = SessionMetrics()
        self.debug = debug
        self._clock = clock
        self._logger = logger
        self._metrics_lock = threading.Lock()
        self._generation = 0
        self._muted_until = 0.0
        self._mute_lock = threading.Lock()
        self._mute_reset_pending = False

    # ---- lifecycle ----

    @property
    def is_running(self) -> bool:
        return self.state.is_active

    def start(self) -> None:
        if self.state.is_active:
            return
        self.state.set_starting()
        self.metrics = SessionMetrics()
        self.queue.start()
        self.state.set_listening()
        _log_event(
            self._logger,
            logging.INFO,
            "session_start",
            target_language=self.config.target_language,
            voice_id=self.config.voice_id,
            translator=self.translator.name,
            synthesizer=self.synthesizer.name if self.synthesizer is not None else None,
        )

    def stop(self) -> None:
        """Hard stop. Pending retries are cancelled and late results are ignored."""
        self._generation += 1
        self.queue.stop()
        self.scheduler.cancel_all()
        self.queue.clear_all()
        self.guard.reset()
        self.vad.reset()
        self.assembler.reset()
        with self._mute_lock:
            self._muted_until = 0.0
            self._mute_reset_pending = False
        self.state.set_stopped()
        _log_event(self._logger, logging.INFO, "session_stop", **asdict(self.metrics))

    def pause(self) -> None:
        self.queue.pause()
        self.state.set_paused()
        _log_event(self._logger, logging.INFO, "session_pause")

    def resume(self) -> None:
        self.vad.reset()
        self.assembler.reset()
        self.queue.resume()
        self.state.set_resumed()
        _log_event(self._logger, logging.INFO, "session_resume")

    def mute_input(self, duration_sec: float) -> None:
        """
        Ignore captured audio for ``duration_sec`` (used while our own speech is playing).

        Safe from any thread. Detector and assembler state is dropped by the capture
        thread on its next segment.
        """
        with self._mute_lock:
            self._muted_until = max(self._muted_until, self._clock() + max(0.0, duration_sec))
            self._mute_reset_pending = True

    def _muted(self) -> bool:
        with self._mute_lock:
            muted = self._clock() < self._muted_until
            reset, self._mute_reset_pending = self._mute_reset_pending, False
        if reset:
            self.vad.reset()
            self.assembler.reset()
        return muted

    def wait_idle(self, timeout: float | None = None) -> bool:
        return self.queue.wait_idle(timeout)

    def queue_stats(self) -> QueueStats:
        return self.queue.stats()

    def _bump(self, name: str) -> None:
        with self._metrics_lock:
            setattr(self.metrics, name, getattr(self.metrics, name) + 1)

    # ---- ingestion (capture thread) ----

    def push_segment(self, segment: AudioSegment) -> Optional[str]:
        """Feed one captured segment. Returns the queue item id when an utterance was enqueued."""
        if self.state.state not in (SessionState.LISTENING, SessionState.TRANSLATING, SessionState.SYNTHESIZING):
            return None
        self._bump("segments_in")
        if self._muted():
            self._bump("segments_muted")
            return None

        activity = self.vad.analyze(segment)
        if self.debug:
            print(
                f"[debug] {segment.id} t={segment.timestamp:.2f}s vol={activity.volume:.4f} "
                f"energy={activity.energy:.5f} zcr={activity.zero_crossing_rate:.3f} "
                f"active={activity.is_active} state={self.vad.state.value}"
            )
        utterance = self.assembler.push(segment, activity, self.vad.in_speech)
        if utterance is None:
            return None
        return self.submit_utterance(utterance)

    def submit_utterance(self, utterance: AudioSegment) -> Optional[str]:
        self._bump("utterances")
        try:
            return self.queue.enqueue(utterance, priority=self.config.priority)
        except QueueFullError:
            self._bump("queue_rejections")
            self.events.publish("segmentRejected", segment=utterance)
            return None

    def run(self, segments: Iterable[AudioSegment]) -> None:
        """Ingest until the iterable ends or the session stops; pending speech is flushed at the end."""
        self.start()
        generation = self._generation
        for segment in segments:
            if generation != self._generation or not self.state.is_active:
                return
            self.push_segment(segment)
        tail = self.assembler.flush()
        if tail is not None and generation == self._generation:
            self.submit_utterance(tail)

    # ---- translate / synthesize (queue worker thread) ----

    def _on_transcribed(self, done: CompletedItem) -> None:
        self.handle_transcription(done.result)

    def _drop(self, result: TranscriptionResult, reason: str) -> None:
        self._bump("transcriptions_dropped")
        _log_event(self._logger, logging.INFO, "transcription_dropped", reason=reason, confidence=result.confidence)
        self.events.publish("transcriptionDropped", result=result, reason=reason)

    def handle_transcription(self, result: TranscriptionResult) -> Optional[TranslationReady]:
        generation = self._generation
        self._bump("transcriptions")
        text = (result.text or "").strip()
        if not text:
            self._drop(result, "empty")
            return None
        if result.confidence < self.config.min_confidence:
            self._drop(result, "low_confidence")
            return None

        with self.guard.cycle(text) as skipped:
            if skipped is not None:
                self._bump("feedback_skips")
                self.events.publish("feedbackSkipped", text=text, reason=skipped)
                return None
            try:
                return self._translate_and_speak(text, result, generation)
            finally:
                if generation == self._generation:
                    self.state.set_listening()

    def _translate_and_speak(
        self,
        text: str,
        result: TranscriptionResult,
        generation: int,
    ) -> Optional[TranslationReady]:
        cfg = self.config
        source = cfg.source_language or (result.language if result.language not in ("", "unknown") else None)
        req = TranslationRequest(text=text, source_lang=source, target_lang=cfg.target_language)

        self.state.set_translating()
        started = time.perf_counter()
        try:
            translation = self.error_handler.execute_with_retry(lambda: self.translator.translate(req), "translation")
        except Exception as exc:
            info = self.error_handler.classifier.classify(exc)
            self._bump("translation_failures")
            _log_event(
                self._logger,
                logging.ERROR,
                "translation_failed",
                kind=info.kind.value,
                detail=info.message,
                chars=len(text),
            )
            self.events.publish("translationFailed", text=text, error_info=info)
            return None
        if generation != self._generation:
            _log_event(self._logger, logging.INFO, "session_result_discarded", stage="translation")
            return None

        translated = translation.translated_text

        audio: Optional[bytes] = None
        synthesis_error: Optional[str] = None
        if self.synthesizer is not None:
            self.state.set_synthesizing()
            synth = self.synthesizer
            try:
                audio = self.error_handler.execute_with_retry(
                    lambda: synth.synthesize(translated, cfg.voice_id),
                    "synthesis",
                )
            except Exception as exc:
                synthesis_error = str(exc)
                self._bump("synthesis_failures")
                _log_event(self._logger, logging.WARNING, "synthesis_failed", detail=synthesis_error)
            if generation != self._generation:
                _log_event(self._logger, logging.INFO, "session_result_discarded", stage="synthesis")
                return None

        self.guard.complete(text, translated)
        ready = TranslationReady(
            original_text=text,
            translated_text=translated,
            audio=audio,
            source_lang=translation.source_lang or source,
            target_lang=cfg.target_language,
            voice_id=cfg.voice_id,
            output_routing=cfg.output_routing,
            synthesis_error=synthesis_error,
        )
        self._bump("translations")
        _log_event(
            self._logger,
            logging.INFO,
            "translation_ready",
            provider=translation.provider,
            chars_in=len(text),
            chars_out=len(translated),
            audio_bytes=len(audio) if audio else 0,
            ms=round((time.perf_counter() - started) * 1000.0, 2),
        )
        self.events.publish(
            "translationReady",
            ready=ready,
            original_text=ready.original_text,
            translated_text=ready.translated_text,
            audio=ready.audio,
        )
        return ready
