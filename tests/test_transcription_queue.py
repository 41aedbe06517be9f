from __future__ import annotations

import threading
import time
from typing import Callable, List

import numpy as np
import pytest

from parley.contracts import AudioSegment, TranscriptionResult
from parley.pipeline.errors import ErrorHandler, ErrorKind, QueueFullError, RetryPolicy, ServiceError
from parley.pipeline.events import EventBus
from parley.pipeline.transcription_queue import ItemStatus, QueueConfig, TranscriptionQueue


class ImmediateScheduler:
    """Runs delayed tasks right away and records the requested delays."""

    def __init__(self) -> None:
        self.delays: List[float] = []
        self._n = 0

    def call_later(self, delay: float, fn: Callable[[], None]) -> int:
        self.delays.append(delay)
        self._n += 1
        fn()
        return self._n

    def cancel(self, handle: int) -> bool:
        return False

    def cancel_all(self) -> int:
        return 0


class HeldScheduler(ImmediateScheduler):
    """Never fires; lets a test inspect items waiting out a retry."""

    def __init__(self) -> None:
        super().__init__()
        self.cancelled: List[int] = []

    def call_later(self, delay: float, fn: Callable[[], None]) -> int:
        self.delays.append(delay)
        self._n += 1
        return self._n

    def cancel(self, handle: int) -> bool:
        self.cancelled.append(handle)
        return True


def _segment(name: str) -> AudioSegment:
    return AudioSegment(id=name, samples=np.zeros(1600, dtype=np.float32), sample_rate=16000)


def _result(text: str) -> TranscriptionResult:
    return TranscriptionResult(text=text, confidence=0.9, language="en", duration_sec=0.1)


def _handler() -> ErrorHandler:
    return ErrorHandler(policy=RetryPolicy(max_retries=3), rng=lambda: 0.0, sleep=lambda _: None)


def _queue(process, *, scheduler=None, events=None, **cfg) -> TranscriptionQueue:
    cfg.setdefault("rate_limit_delay", 0.0)
    return TranscriptionQueue(
        process,
        config=QueueConfig(**cfg),
        error_handler=_handler(),
        scheduler=scheduler or ImmediateScheduler(),
        events=events,
    )


def _poll(predicate: Callable[[], bool], timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def test_dequeues_by_priority_then_arrival() -> None:
    seen: List[str] = []

    def process(seg: AudioSegment) -> TranscriptionResult:
        seen.append(seg.id)
        return _result(seg.id)

    q = _queue(process, max_concurrent_jobs=1)
    q.enqueue(_segment("low"), priority=1)
    q.enqueue(_segment("high"), priority=5)
    q.enqueue(_segment("mid"), priority=3)
    q.enqueue(_segment("mid2"), priority=3)
    assert [i.segment.id for i in q.queued_items()] == ["high", "mid", "mid2", "low"]

    q.start()
    try:
        assert q.wait_idle(timeout=2.0)
    finally:
        q.stop()
    assert seen == ["high", "mid", "mid2", "low"]


def test_completion_callback_and_stats() -> None:
    done = []
    bus = EventBus()
    completed_events = []
    bus.subscribe(completed_events.append, "itemCompleted")

    q = _queue(lambda seg: _result("hello"), events=bus)
    q.on_complete = done.append
    item_id = q.enqueue(_segment("a"))
    assert item_id.startswith("queue_")
    assert q.status(item_id) == ItemStatus.QUEUED

    q.start()
    try:
        assert q.wait_idle(timeout=2.0)
    finally:
        q.stop()

    assert [d.result.text for d in done] == ["hello"]
    assert q.status(item_id) == ItemStatus.COMPLETED
    assert q.result(item_id).item.id == item_id
    assert len(completed_events) == 1
    stats = q.stats()
    assert stats.completed == 1
    assert stats.failed == 0
    assert stats.queued == 0
    assert stats.is_running is False


def test_network_failure_retries_with_backoff_then_fails() -> None:
    scheduler = ImmediateScheduler()
    attempts = {"n": 0}
    failed = []

    def process(seg: AudioSegment) -> TranscriptionResult:
        attempts["n"] += 1
        raise ConnectionError("Network error")

    q = _queue(process, scheduler=scheduler)
    q.on_failed = failed.append
    item_id = q.enqueue(_segment("a"))
    q.start()
    try:
        assert q.wait_idle(timeout=2.0)
    finally:
        q.stop()

    assert attempts["n"] == 4
    assert scheduler.delays == [1.0, 2.0, 4.0]
    assert q.status(item_id) == ItemStatus.FAILED
    record = q.failure(item_id)
    assert record.item.retry_count == 3
    assert record.error.kind == ErrorKind.NETWORK
    assert len(failed) == 1


def test_auth_failure_is_not_retried() -> None:
    scheduler = ImmediateScheduler()
    attempts = {"n": 0}

    def process(seg: AudioSegment) -> TranscriptionResult:
        attempts["n"] += 1
        raise ServiceError("Whisper API error (401): invalid key", status_code=401)

    q = _queue(process, scheduler=scheduler)
    item_id = q.enqueue(_segment("a"))
    q.start()
    try:
        assert q.wait_idle(timeout=2.0)
    finally:
        q.stop()

    assert attempts["n"] == 1
    assert scheduler.delays == []
    assert q.failure(item_id).error.kind == ErrorKind.AUTHENTICATION


def test_recovers_after_transient_failure() -> None:
    attempts = {"n": 0}

    def process(seg: AudioSegment) -> TranscriptionResult:
        attempts["n"] += 1
        if attempts["n"] == 1:
            raise TimeoutError("request timed out")
        return _result("second time lucky")

    q = _queue(process)
    item_id = q.enqueue(_segment("a"))
    q.start()
    try:
        assert q.wait_idle(timeout=2.0)
    finally:
        q.stop()
    assert q.result(item_id).item.retry_count == 1
    assert q.result(item_id).result.text == "second time lucky"


def test_retrying_item_counts_as_queued_and_can_be_removed() -> None:
    scheduler = HeldScheduler()

    def process(seg: AudioSegment) -> TranscriptionResult:
        raise ConnectionError("Network error")

    q = _queue(process, scheduler=scheduler)
    item_id = q.enqueue(_segment("a"))
    q.start()
    try:
        assert _poll(lambda: len(scheduler.delays) == 1)
        assert q.status(item_id) == ItemStatus.QUEUED
        assert [i.retry_count for i in q.queued_items()] == [1]
        assert q.remove(item_id) is True
        assert q.status(item_id) is None
    finally:
        q.stop()


def test_queue_full_rejects() -> None:
    q = _queue(lambda seg: _result("x"), max_queue_size=2)
    q.enqueue(_segment("a"))
    q.enqueue(_segment("b"))
    with pytest.raises(QueueFullError):
        q.enqueue(_segment("c"))
    assert q.stats().queued == 2


def test_remove_and_clear() -> None:
    bus = EventBus()
    removed = []
    bus.subscribe(removed.append, "itemRemoved")
    q = _queue(lambda seg: _result("x"), events=bus)
    first = q.enqueue(_segment("a"))
    q.enqueue(_segment("b"))
    assert q.remove(first) is True
    assert q.remove(first) is False
    assert q.remove("queue_missing") is False
    assert len(removed) == 1
    assert q.clear_queue() == 1
    assert q.queued_items() == []


def test_processing_item_cannot_be_removed() -> None:
    gate = threading.Event()
    started = threading.Event()

    def process(seg: AudioSegment) -> TranscriptionResult:
        started.set()
        gate.wait(2.0)
        return _result("x")

    q = _queue(process)
    item_id = q.enqueue(_segment("a"))
    q.start()
    try:
        assert started.wait(2.0)
        assert q.status(item_id) == ItemStatus.PROCESSING
        assert q.remove(item_id) is False
        gate.set()
        assert q.wait_idle(timeout=2.0)
    finally:
        gate.set()
        q.stop()


def test_pause_holds_dispatch() -> None:
    seen: List[str] = []
    q = _queue(lambda seg: seen.append(seg.id) or _result("x"))
    q.start()
    q.pause()
    try:
        q.enqueue(_segment("a"))
        time.sleep(0.1)
        assert seen == []
        assert q.stats().is_paused
        q.resume()
        assert q.wait_idle(timeout=2.0)
        assert seen == ["a"]
    finally:
        q.stop()


def test_stop_discards_late_results() -> None:
    gate = threading.Event()
    started = threading.Event()
    finished = threading.Event()
    done = []

    def process(seg: AudioSegment) -> TranscriptionResult:
        started.set()
        gate.wait(2.0)
        finished.set()
        return _result("too late")

    q = _queue(process)
    q.on_complete = done.append
    item_id = q.enqueue(_segment("a"))
    q.enqueue(_segment("b"))
    q.start()
    assert started.wait(2.0)
    q.stop()
    gate.set()
    assert finished.wait(2.0)
    time.sleep(0.05)

    assert done == []
    assert q.status(item_id) is None
    stats = q.stats()
    assert stats.completed == 0
    assert stats.queued == 0
    assert stats.processing == 0


def test_rate_limit_spaces_dispatches() -> None:
    stamps: List[float] = []

    def process(seg: AudioSegment) -> TranscriptionResult:
        stamps.append(time.monotonic())
        return _result("x")

    q = _queue(process, rate_limit_delay=0.1, max_concurrent_jobs=3)
    q.enqueue(_segment("a"))
    q.enqueue(_segment("b"))
    q.start()
    try:
        assert q.wait_idle(timeout=2.0)
    finally:
        q.stop()
    assert len(stamps) == 2
    assert stamps[1] - stamps[0] >= 0.09


def test_stats_count_totals_beyond_history() -> None:
    q = _queue(lambda seg: _result(seg.id), history_size=2)
    ids = [q.enqueue(_segment(f"s{i}")) for i in range(5)]
    q.start()
    try:
        assert q.wait_idle(timeout=2.0)
    finally:
        q.stop()
    stats = q.stats()
    assert stats.completed == 5
    assert q.result(ids[0]) is None
    assert q.result(ids[-1]) is not None

    def reject(seg: AudioSegment) -> TranscriptionResult:
        raise ServiceError("Whisper API error (401): Incorrect API key provided", status_code=401)

    failing = _queue(reject, history_size=1)
    for i in range(3):
        failing.enqueue(_segment(f"f{i}"))
    failing.start()
    try:
        assert failing.wait_idle(timeout=2.0)
    finally:
        failing.stop()
    assert failing.stats().failed == 3

    failing.clear_all()
    assert failing.stats().failed == 0
