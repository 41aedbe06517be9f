"""Priority queue of audio segments awaiting transcription.

A single dispatcher thread pops the highest-priority item (ties by arrival),
keeps at most ``max_concurrent_jobs`` in flight on a thread pool and spaces
dispatches by ``rate_limit_delay``. Failures go through the ``ErrorHandler``;
retryable ones are parked on the delayed-task scheduler and re-inserted at
their original priority.
"""

from __future__ import annotations

import heapq
import itertools
import logging
import threading
import time
import uuid
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from parley.contracts import AudioSegment, TranscriptionResult
from parley.pipeline.errors import ErrorHandler, ErrorInfo, QueueFullError
from parley.pipeline.events import EventBus
from parley.pipeline.scheduler import DelayedTaskScheduler, Scheduler

ProcessFn = Callable[[AudioSegment], TranscriptionResult]


class ItemStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class QueueItem:
    id: str
    segment: AudioSegment
    priority: int
    enqueued_at: float
    retry_count: int = 0
    max_retries: int = 3


@dataclass(frozen=True)
class CompletedItem:
    item: QueueItem
    result: TranscriptionResult
    processing_time: float


@dataclass(frozen=True)
class FailedItem:
    item: QueueItem
    error: ErrorInfo


@dataclass(frozen=True)
class QueueConfig:
    max_concurrent_jobs: int = 3
    max_queue_size: int = 50
    default_priority: int = 1
    max_retries: int = 3
    rate_limit_delay: float = 1.0
    history_size: int = 100

    def __post_init__(self) -> None:
        if self.max_concurrent_jobs < 1:
            raise ValueError("max_concurrent_jobs must be >= 1")
        if self.max_queue_size < 1:
            raise ValueError("max_queue_size must be >= 1")
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.rate_limit_delay < 0:
            raise ValueError("rate_limit_delay must be >= 0")


@dataclass(frozen=True)
class QueueStats:
    queued: int
    processing: int
    completed: int
    failed: int
    average_processing_time: float
    queue_length: int
    is_running: bool
    is_paused: bool


class TranscriptionQueue:
    def __init__(
        self,
        process: ProcessFn,
        *,
        config: QueueConfig | None = None,
        error_handler: ErrorHandler | None = None,
        scheduler: Scheduler | None = None,
        events: EventBus | None = None,
        on_complete: Callable[[CompletedItem], None] | None = None,
        on_failed: Callable[[FailedItem], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config or QueueConfig()
        self.error_handler = error_handler or ErrorHandler()
        self.scheduler = scheduler or DelayedTaskScheduler()
        self.events = events
        self.on_complete = on_complete
        self.on_failed = on_failed
        self._process = process
        self._clock = clock
        self._logger = logger or logging.getLogger(__name__)

        self._cond = threading.Condition(threading.RLock())
        self._seq = itertools.count()
        self._heap: List[Tuple[int, int, QueueItem]] = []
        self._delayed: Dict[str, Tuple[QueueItem, Optional[int]]] = {}
        self._processing: Dict[str, QueueItem] = {}
        self._completed: "OrderedDict[str, CompletedItem]" = OrderedDict()
        self._failed: "OrderedDict[str, FailedItem]" = OrderedDict()
        self._active_workers = 0
        self._processing_time_total = 0.0
        self._processed_count = 0
        self._failed_count = 0
        self._next_dispatch_at = 0.0

        self._generation = 0
        self._running = False
        self._paused = False
        self._dispatcher: Optional[threading.Thread] = None
        self._executor: Optional[ThreadPoolExecutor] = None

    # ---- helpers ----

    def _emit(self, name: str, **payload: Any) -> None:
        if self.events is not None:
            self.events.publish(name, **payload)

    def _log(self, level: int, event: str, **fields: Any) -> None:
        self._logger.log(level, event, extra=fields)

    def _queued_count(self) -> int:
        return len(self._heap) + len(self._delayed)

    def _push(self, item: QueueItem) -> None:
        heapq.heappush(self._heap, (-item.priority, next(self._seq), item))
        self._cond.notify_all()

    @staticmethod
    def _remember(history: "OrderedDict[str, Any]", key: str, value: Any, limit: int) -> None:
        history[key] = value
        while len(history) > limit:
            history.popitem(last=False)

    # ---- admission ----

    def enqueue(
        self,
        segment: AudioSegment,
        priority: int | None = None,
        max_retries: int | None = None,
    ) -> str:
        with self._cond:
            if self._queued_count() >= self.config.max_queue_size:
                self._log(logging.WARNING, "queue_full", segment_id=segment.id, queue_length=self._queued_count())
                raise QueueFullError(f"transcription queue is full ({self.config.max_queue_size} items)")
            item = QueueItem(
                id=f"queue_{uuid.uuid4().hex[:12]}",
                segment=segment,
                priority=self.config.default_priority if priority is None else int(priority),
                enqueued_at=self._clock(),
                max_retries=self.config.max_retries if max_retries is None else int(max_retries),
            )
            self._push(item)
            queue_length = self._queued_count()
        self._log(
            logging.INFO,
            "segment_enqueued",
            item_id=item.id,
            segment_id=segment.id,
            priority=item.priority,
            queue_length=queue_length,
        )
        self._emit("itemAdded", item=item)
        return item.id

    # ---- lifecycle ----

    def start(self) -> None:
        with self._cond:
            if self._running:
                return
            self._running = True
            self._paused = False
            generation = self._generation
            self._executor = ThreadPoolExecutor(
                max_workers=self.config.max_concurrent_jobs,
                thread_name_prefix="parley-transcribe",
            )
            self._dispatcher = threading.Thread(
                target=self._dispatch_loop,
                args=(generation,),
                name="parley-queue-dispatch",
                daemon=True,
            )
        self._dispatcher.start()
        self._log(logging.INFO, "queue_start", max_concurrent_jobs=self.config.max_concurrent_jobs)

    def stop(self) -> None:
        """Hard stop: drop everything queued or pending retry; late results are ignored."""
        with self._cond:
            self._generation += 1
            self._running = False
            self._paused = False
            dropped = self._queued_count() + len(self._processing)
            handles = [h for _, h in self._delayed.values() if h is not None]
            self._heap.clear()
            self._delayed.clear()
            self._processing.clear()
            self._active_workers = 0
            executor, self._executor = self._executor, None
            dispatcher, self._dispatcher = self._dispatcher, None
            self._cond.notify_all()
        for handle in handles:
            self.scheduler.cancel(handle)
        if executor is not None:
            executor.shutdown(wait=False, cancel_futures=True)
        if dispatcher is not None and dispatcher is not threading.current_thread():
            dispatcher.join(timeout=1.0)
        self._log(logging.INFO, "queue_stop", dropped_items=dropped)

    def pause(self) -> None:
        with self._cond:
            self._paused = True
        self._log(logging.INFO, "queue_pause")

    def resume(self) -> None:
        with self._cond:
            self._paused = False
            self._cond.notify_all()
        self._log(logging.INFO, "queue_resume")

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_paused(self) -> bool:
        return self._paused

    # ---- dispatch ----

    def _dispatch_loop(self, generation: int) -> None:
        while True:
            with self._cond:
                while True:
                    if generation != self._generation or not self._running:
                        return
                    has_capacity = self._active_workers < self.config.max_concurrent_jobs
                    if self._paused or not self._heap or not has_capacity:
                        self._cond.wait()
                        continue
                    wait = self._next_dispatch_at - self._clock()
                    if wait > 0:
                        self._cond.wait(wait)
                        continue
                    break
                _, _, item = heapq.heappop(self._heap)
                self._processing[item.id] = item
                self._active_workers += 1
                self._next_dispatch_at = self._clock() + self.config.rate_limit_delay
                executor = self._executor
            self._emit("processingStarted", item=item)
            if executor is not None:
                executor.submit(self._run_item, item, generation)

    def _run_item(self, item: QueueItem, generation: int) -> None:
        started = self._clock()
        try:
            try:
                result = self._process(item.segment)
            except Exception as exc:
                self._handle_failure(item, exc, generation)
            else:
                self._handle_success(item, result, self._clock() - started, generation)
        finally:
            with self._cond:
                if generation == self._generation:
                    self._active_workers -= 1
                    self._cond.notify_all()

    def _handle_success(self, item: QueueItem, result: TranscriptionResult, elapsed: float, generation: int) -> None:
        with self._cond:
            if generation != self._generation:
                self._log(logging.INFO, "queue_result_discarded", item_id=item.id)
                return
            self._processing.pop(item.id, None)
            done = CompletedItem(item=item, result=result, processing_time=elapsed)
            self._remember(self._completed, item.id, done, self.config.history_size)
            self._processing_time_total += elapsed
            self._processed_count += 1
            self._cond.notify_all()
        self._log(
            logging.INFO,
            "queue_item_completed",
            item_id=item.id,
            processing_time=round(elapsed, 3),
            retry_count=item.retry_count,
        )
        self._emit("itemCompleted", item=item, result=result, processing_time=elapsed)
        if self.on_complete is not None:
            self.on_complete(done)

    def _handle_failure(self, item: QueueItem, exc: Exception, generation: int) -> None:
        info = self.error_handler.analyze(exc)
        with self._cond:
            if generation != self._generation:
                self._log(logging.INFO, "queue_result_discarded", item_id=item.id)
                return
            self._processing.pop(item.id, None)
            retry = self.error_handler.should_retry(info, item.retry_count, item.max_retries)
            if retry:
                item = replace(item, retry_count=item.retry_count + 1)
                delay = self.error_handler.retry_delay(info, item.retry_count - 1)
                self._delayed[item.id] = (item, None)
            else:
                failed = FailedItem(item=item, error=info)
                self._remember(self._failed, item.id, failed, self.config.history_size)
                self._failed_count += 1
            self._cond.notify_all()

        if retry:
            self._log(
                logging.WARNING,
                "queue_item_retrying",
                item_id=item.id,
                kind=info.kind.value,
                retry_count=item.retry_count,
                delay=round(delay, 3),
            )
            self._emit("itemRetrying", item=item, error=info, retry_count=item.retry_count, delay=delay)
            handle = self.scheduler.call_later(delay, lambda: self._reinsert(item.id, generation))
            with self._cond:
                if item.id in self._delayed:
                    self._delayed[item.id] = (self._delayed[item.id][0], handle)
            return

        self._log(
            logging.ERROR,
            "queue_item_failed",
            item_id=item.id,
            kind=info.kind.value,
            retry_count=item.retry_count,
            detail=info.message,
        )
        self._emit("itemFailed", item=item, error=info)
        if self.on_failed is not None:
            self.on_failed(failed)

    def _reinsert(self, item_id: str, generation: int) -> None:
        with self._cond:
            if generation != self._generation:
                return
            entry = self._delayed.pop(item_id, None)
            if entry is None:
                return
            self._push(entry[0])

    # ---- inspection ----

    def status(self, item_id: str) -> Optional[ItemStatus]:
        with self._cond:
            if item_id in self._processing:
                return ItemStatus.PROCESSING
            if item_id in self._delayed or any(entry[2].id == item_id for entry in self._heap):
                return ItemStatus.QUEUED
            if item_id in self._completed:
                return ItemStatus.COMPLETED
            if item_id in self._failed:
                return ItemStatus.FAILED
        return None

    def result(self, item_id: str) -> Optional[CompletedItem]:
        with self._cond:
            return self._completed.get(item_id)

    def failure(self, item_id: str) -> Optional[FailedItem]:
        with self._cond:
            return self._failed.get(item_id)

    def queued_items(self) -> List[QueueItem]:
        """Waiting items in dispatch order, followed by items waiting out a retry delay."""
        with self._cond:
            ordered = [entry[2] for entry in sorted(self._heap)]
            return ordered + [item for item, _ in self._delayed.values()]

    def stats(self) -> QueueStats:
        """Completed and failed are totals since the last ``clear_all()``, not history lengths."""
        with self._cond:
            avg = self._processing_time_total / self._processed_count if self._processed_count else 0.0
            return QueueStats(
                queued=self._queued_count(),
                processing=len(self._processing),
                completed=self._processed_count,
                failed=self._failed_count,
                average_processing_time=avg,
                queue_length=len(self._heap),
                is_running=self._running,
                is_paused=self._paused,
            )

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until nothing is queued, delayed or in flight."""
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while self._heap or self._delayed or self._processing or self._active_workers:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return False
                self._cond.wait(remaining)
            return True

    # ---- removal ----

    def remove(self, item_id: str) -> bool:
        """Remove a queued item. Items being processed cannot be removed."""
        handle = None
        with self._cond:
            if item_id in self._processing:
                return False
            removed: Optional[QueueItem] = None
            if item_id in self._delayed:
                removed, handle = self._delayed.pop(item_id)
            else:
                for i, entry in enumerate(self._heap):
                    if entry[2].id == item_id:
                        removed = entry[2]
                        self._heap.pop(i)
                        heapq.heapify(self._heap)
                        break
            if removed is None:
                return False
            self._cond.notify_all()
        if handle is not None:
            self.scheduler.cancel(handle)
        self._emit("itemRemoved", item=removed)
        return True

    def clear_queue(self) -> int:
        with self._cond:
            count = self._queued_count()
            handles = [h for _, h in self._delayed.values() if h is not None]
            self._heap.clear()
            self._delayed.clear()
            self._cond.notify_all()
        for handle in handles:
            self.scheduler.cancel(handle)
        return count

    def clear_completed(self) -> int:
        with self._cond:
            count = len(self._completed)
            self._completed.clear()
        return count

    def clear_failed(self) -> int:
        with self._cond:
            count = len(self._failed)
            self._failed.clear()
        return count

    def clear_all(self) -> None:
        self.clear_queue()
        self.clear_completed()
        self.clear_failed()
        with self._cond:
            self._processing_time_total = 0.0
            self._processed_count = 0
            self._failed_count = 0
