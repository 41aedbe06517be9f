"""Failure taxonomy, classification and retry policy for remote-service calls.

``ErrorClassifier`` turns any exception (or raw message) into an ``ErrorInfo``
using ordered rules, first match wins. ``RetryPolicy`` decides whether a
failure may be retried and how long to back off. ``ErrorHandler`` combines the
two into ``execute_with_retry`` and keeps a bounded error history.
"""

from __future__ import annotations

import logging
import random
import re
import time
from collections import Counter, deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Deque, Dict, FrozenSet, List, Optional, Tuple, TypeVar

import httpx

from parley.pipeline.events import EventBus

T = TypeVar("T")


class ParleyError(Exception):
    pass


class AudioFormatError(ParleyError):
    """Malformed or oversized audio. Never retried."""


class QueueFullError(ParleyError):
    pass


class ServiceError(ParleyError):
    """Non-2xx answer from a remote service."""

    def __init__(self, message: str, *, status_code: int | None = None, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retry_after = retry_after


class ErrorKind(str, Enum):
    AUTHENTICATION = "authentication"
    RATE_LIMIT = "rate_limit"
    NETWORK = "network"
    TIMEOUT = "timeout"
    AUDIO_FORMAT = "audio_format"
    SERVICE_UNAVAILABLE = "service_unavailable"
    QUOTA_EXCEEDED = "quota_exceeded"
    UNKNOWN = "unknown"


class ErrorSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(frozen=True)
class ErrorInfo:
    kind: ErrorKind
    severity: ErrorSeverity
    message: str
    retryable: bool
    suggested_delay: Optional[float] = None
    suggested_action: str = ""
    timestamp: float = 0.0


@dataclass(frozen=True)
class _Rule:
    kind: ErrorKind
    severity: ErrorSeverity
    retryable: bool
    patterns: Tuple[str, ...]
    action: str


_RULES: Tuple[_Rule, ...] = (
    _Rule(
        ErrorKind.AUTHENTICATION, ErrorSeverity.CRITICAL, False,
        ("401", "403", "unauthorized", "forbidden", "api key"),
        "Verify the API key for this service.",
    ),
    _Rule(
        ErrorKind.RATE_LIMIT, ErrorSeverity.MEDIUM, True,
        ("429", "rate limit", "too many requests"),
        "Reduce request frequency or upgrade the API plan.",
    ),
    _Rule(
        ErrorKind.NETWORK, ErrorSeverity.MEDIUM, True,
        ("network", "fetch", "connection"),
        "Check the internet connection and try again.",
    ),
    _Rule(
        ErrorKind.TIMEOUT, ErrorSeverity.MEDIUM, True,
        ("timeout", "timed out", "aborted"),
        "Use shorter audio segments or check connection speed.",
    ),
    _Rule(
        ErrorKind.AUDIO_FORMAT, ErrorSeverity.HIGH, False,
        ("audio", "format", "encoding", "invalid file"),
        "Check audio format and quality.",
    ),
    _Rule(
        ErrorKind.SERVICE_UNAVAILABLE, ErrorSeverity.HIGH, True,
        ("500", "502", "503", "service unavailable"),
        "The service is having issues. Try again later.",
    ),
    _Rule(
        ErrorKind.QUOTA_EXCEEDED, ErrorSeverity.CRITICAL, False,
        ("quota", "billing", "insufficient funds"),
        "Check API usage and billing status.",
    ),
)

_UNKNOWN_ACTION = "Try again. If the problem persists, check the logs."
_RETRY_AFTER = re.compile(r"retry[- ]after[:\s]*(\d+(?:\.\d+)?)", re.IGNORECASE)


def _rule_by_kind(kind: ErrorKind) -> _Rule:
    for rule in _RULES:
        if rule.kind == kind:
            return rule
    raise KeyError(kind)


def extract_retry_after(message: str) -> Optional[float]:
    match = _RETRY_AFTER.search(message or "")
    if match:
        return float(match.group(1))
    return None


class ErrorClassifier:
    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock

    @staticmethod
    def _describe(error: BaseException | str) -> str:
        if isinstance(error, str):
            return error
        text = str(error) or type(error).__name__
        status = getattr(error, "status_code", None)
        if status is not None and str(status) not in text:
            text = f"HTTP {status} {text}"
        return text

    @staticmethod
    def _typed_kind(error: BaseException | str) -> Optional[ErrorKind]:
        if isinstance(error, AudioFormatError):
            return ErrorKind.AUDIO_FORMAT
        if isinstance(error, (TimeoutError, httpx.TimeoutException)):
            return ErrorKind.TIMEOUT
        if isinstance(error, (ConnectionError, httpx.TransportError)):
            return ErrorKind.NETWORK
        return None

    def classify(self, error: BaseException | str) -> ErrorInfo:
        message = self._describe(error)
        lowered = message.lower()

        rule: Optional[_Rule] = None
        kind = self._typed_kind(error)
        if kind is not None:
            rule = _rule_by_kind(kind)
        else:
            for candidate in _RULES:
                if any(p in lowered for p in candidate.patterns):
                    rule = candidate
                    break

        delay = getattr(error, "retry_after", None)
        if delay is None:
            delay = extract_retry_after(message)

        if rule is None:
            return ErrorInfo(
                kind=ErrorKind.UNKNOWN,
                severity=ErrorSeverity.MEDIUM,
                message=message,
                retryable=True,
                suggested_delay=delay,
                suggested_action=_UNKNOWN_ACTION,
                timestamp=self._clock(),
            )
        return ErrorInfo(
            kind=rule.kind,
            severity=rule.severity,
            message=message,
            retryable=rule.retryable,
            suggested_delay=delay if rule.retryable else None,
            suggested_action=rule.action,
            timestamp=self._clock(),
        )


DEFAULT_RETRYABLE_KINDS: FrozenSet[ErrorKind] = frozenset(
    {
        ErrorKind.NETWORK,
        ErrorKind.RATE_LIMIT,
        ErrorKind.SERVICE_UNAVAILABLE,
        ErrorKind.TIMEOUT,
        ErrorKind.UNKNOWN,
    }
)


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff_multiplier: float = 2.0
    jitter_ratio: float = 0.1
    retryable_kinds: FrozenSet[ErrorKind] = field(default_factory=lambda: DEFAULT_RETRYABLE_KINDS)

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be >= 0")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be >= 1")

    def should_retry(self, info: ErrorInfo, retry_count: int, max_retries: int | None = None) -> bool:
        limit = self.max_retries if max_retries is None else max_retries
        if info.kind not in self.retryable_kinds:
            return False
        if retry_count >= limit:
            return False
        if info.severity == ErrorSeverity.CRITICAL:
            return False
        return info.retryable

    def backoff(self, retry_count: int, rng: Callable[[], float] = random.random) -> float:
        delay = self.base_delay * (self.backoff_multiplier ** retry_count)
        jitter = rng() * self.jitter_ratio * delay
        return min(delay + jitter, self.max_delay)

    def delay_for(self, info: ErrorInfo, retry_count: int, rng: Callable[[], float] = random.random) -> float:
        if info.suggested_delay:
            return min(float(info.suggested_delay), self.max_delay)
        return self.backoff(retry_count, rng)


@dataclass(frozen=True)
class ErrorStats:
    total_errors: int
    by_kind: Dict[ErrorKind, int]
    by_severity: Dict[ErrorSeverity, int]
    most_common: Optional[ErrorKind]
    recent: List[ErrorInfo]


class ErrorHandler:
    def __init__(
        self,
        *,
        classifier: ErrorClassifier | None = None,
        policy: RetryPolicy | None = None,
        events: EventBus | None = None,
        logger: logging.Logger | None = None,
        sleep: Callable[[float], None] = time.sleep,
        rng: Callable[[], float] = random.random,
        history_size: int = 100,
    ) -> None:
        self.classifier = classifier or ErrorClassifier()
        self.policy = policy or RetryPolicy()
        self.events = events
        self._logger = logger or logging.getLogger(__name__)
        self._sleep = sleep
        self._rng = rng
        self._history: Deque[ErrorInfo] = deque(maxlen=history_size)

    def _emit(self, name: str, **payload: Any) -> None:
        if self.events is not None:
            self.events.publish(name, **payload)

    def analyze(self, error: BaseException | str) -> ErrorInfo:
        info = self.classifier.classify(error)
        self._history.append(info)
        self._emit("errorAnalyzed", error_info=info)
        return info

    def should_retry(self, info: ErrorInfo, retry_count: int, max_retries: int | None = None) -> bool:
        return self.policy.should_retry(info, retry_count, max_retries)

    def retry_delay(self, info: ErrorInfo, retry_count: int) -> float:
        return self.policy.delay_for(info, retry_count, self._rng)

    def execute_with_retry(self, operation: Callable[[], T], context: str = "operation") -> T:
        last: Optional[ErrorInfo] = None
        attempts = self.policy.max_retries + 1
        for attempt in range(attempts):
            try:
                result = operation()
            except Exception as exc:
                info = self.analyze(exc)
                last = info
                self._emit("retryAttempt", context=context, error_info=info, attempt=attempt, max_attempts=attempts)
                if not self.should_retry(info, attempt):
                    self._emit("retryAbandoned", context=context, error_info=info, attempt=attempt)
                    self._logger.warning(
                        "retry_abandoned",
                        extra={"context": context, "kind": info.kind.value, "attempt": attempt, "detail": info.message},
                    )
                    raise
                delay = self.retry_delay(info, attempt)
                self._emit("retryDelaying", context=context, error_info=info, delay=delay, attempt=attempt)
                self._logger.info(
                    "retry_delaying",
                    extra={"context": context, "kind": info.kind.value, "attempt": attempt, "delay": round(delay, 3)},
                )
                self._sleep(delay)
                continue
            if last is not None:
                self._emit(
                    "errorRecovered",
                    context=context,
                    last_error=last,
                    attempt=attempt,
                    total_attempts=attempt + 1,
                )
            return result
        # should_retry refuses once attempt == max_retries, so the loop always returns or raises
        raise ParleyError(f"{context}: maximum retries exceeded")

    def stats(self) -> ErrorStats:
        by_kind: Counter[ErrorKind] = Counter(info.kind for info in self._history)
        by_severity: Counter[ErrorSeverity] = Counter(info.severity for info in self._history)
        most_common = by_kind.most_common(1)[0][0] if by_kind else None
        return ErrorStats(
            total_errors=len(self._history),
            by_kind={kind: by_kind.get(kind, 0) for kind in ErrorKind},
            by_severity={sev: by_severity.get(sev, 0) for sev in ErrorSeverity},
            most_common=most_common,
            recent=list(self._history)[-10:],
        )

    def clear_history(self) -> None:
        self._history.clear()
