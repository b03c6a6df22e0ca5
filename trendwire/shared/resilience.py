"""
TRENDWIRE RESILIENCE MODULE
Shared error types, polite crawling throttle, HTTP session and health tracking

Used by:
- Fetchers (press releases, media RSS, company sites, social RSS)
- LLM gateways (Claude, Gemini)
- Chat notifier
- Pipeline orchestrator

No call in this system is retried automatically. A failed item stays
"unprocessed" in the store and is picked up again by the next run.
"""

import time
import logging
import functools
from datetime import datetime, timezone
from collections import deque
from typing import Callable, Optional, Dict, Any, List, Deque
from dataclasses import dataclass, field
from threading import Lock
import requests
from requests.adapters import HTTPAdapter

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# CUSTOM EXCEPTIONS
# =============================================================================

class PipelineError(Exception):
    """Base exception for pipeline errors"""
    pass


class ConfigurationError(PipelineError):
    """A required credential, URL or config file is missing or invalid"""
    def __init__(self, setting: str, message: Optional[str] = None):
        self.setting = setting
        super().__init__(message or f"Missing or invalid configuration: {setting}")


class UpstreamError(PipelineError):
    """An external service answered with a non-success status"""
    def __init__(self, service: str, status_code: Optional[int], body: str = ""):
        self.service = service
        self.status_code = status_code
        self.body = (body or "")[:500]
        super().__init__(f"{service} returned {status_code}: {self.body}")


class StageFailure(PipelineError):
    """A pipeline stage aborted; raised after the error notification went out"""
    def __init__(self, stage: str, cause: Exception, counts: Optional[Dict[str, Any]] = None):
        self.stage = stage
        self.cause = cause
        self.counts = counts or {}
        super().__init__(f"Stage '{stage}' failed: {cause}")


# =============================================================================
# SOURCE THROTTLE
# =============================================================================

@dataclass
class SourceThrottle:
    """
    Fixed minimum interval between consecutive requests to one source.

    Crawling is sequential, so this only ever sleeps the calling thread.
    """
    name: str
    min_interval: float = 1.0
    last_request: Optional[float] = None
    _lock: Lock = field(default_factory=Lock)

    def wait(self) -> float:
        """Block until the interval has elapsed; returns seconds slept"""
        with self._lock:
            slept = 0.0
            now = time.monotonic()
            if self.last_request is not None:
                remaining = self.min_interval - (now - self.last_request)
                if remaining > 0:
                    time.sleep(remaining)
                    slept = remaining
            self.last_request = time.monotonic()
            return slept


_throttles: Dict[str, SourceThrottle] = {}
_throttle_lock = Lock()


def get_throttle(name: str, min_interval: float = 1.0) -> SourceThrottle:
    """Get or create the throttle for a source"""
    with _throttle_lock:
        if name not in _throttles:
            _throttles[name] = SourceThrottle(name=name, min_interval=min_interval)
        return _throttles[name]


# =============================================================================
# HTTP SESSION FACTORY
# =============================================================================

DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; TrendwireBot/1.0)"


def create_http_session(
    pool_connections: int = 10,
    pool_maxsize: int = 10,
    timeout: float = 30.0,
) -> requests.Session:
    """
    Create a requests Session with connection pooling and a default timeout.

    Transport retries are disabled.
    """
    session = requests.Session()

    adapter = HTTPAdapter(
        max_retries=0,
        pool_connections=pool_connections,
        pool_maxsize=pool_maxsize,
    )

    session.mount("http://", adapter)
    session.mount("https://", adapter)
    session.headers.update({"User-Agent": DEFAULT_USER_AGENT})

    session.request = functools.partial(session.request, timeout=timeout)

    return session


_http_session: Optional[requests.Session] = None
_session_lock = Lock()


def get_http_session() -> requests.Session:
    """Get the process-wide HTTP session"""
    global _http_session
    if _http_session is None:
        with _session_lock:
            if _http_session is None:
                _http_session = create_http_session()
    return _http_session


# =============================================================================
# HEALTH TRACKING
# =============================================================================

HEALTH_WINDOW = 20
HEALTHY_RATE = 80.0


@dataclass
class ServiceHealth:
    """
    Outcome counters for one upstream (an LLM provider or a source type).

    Health is judged on the last HEALTH_WINDOW calls so a provider that
    recovers after an outage reads healthy again without a restart.
    """
    name: str
    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    consecutive_failures: int = 0
    last_called: Optional[datetime] = None
    last_error: Optional[str] = None
    _outcomes: Deque[bool] = field(default_factory=lambda: deque(maxlen=HEALTH_WINDOW))
    _latencies_ms: Deque[float] = field(default_factory=lambda: deque(maxlen=HEALTH_WINDOW))
    _lock: Lock = field(default_factory=Lock)

    def record_call(self, success: bool, response_time_ms: float, error: Optional[str] = None):
        with self._lock:
            self.total_calls += 1
            self.last_called = _utcnow()
            self._outcomes.append(success)
            self._latencies_ms.append(response_time_ms)

            if success:
                self.successful_calls += 1
                self.consecutive_failures = 0
            else:
                self.failed_calls += 1
                self.consecutive_failures += 1
                self.last_error = error

    @property
    def success_rate(self) -> float:
        """Percent of successful calls in the recent window"""
        if not self._outcomes:
            return 100.0
        return 100.0 * sum(self._outcomes) / len(self._outcomes)

    @property
    def is_healthy(self) -> bool:
        return self.success_rate >= HEALTHY_RATE

    def to_dict(self) -> Dict[str, Any]:
        latency = sum(self._latencies_ms) / len(self._latencies_ms) if self._latencies_ms else 0.0
        return {
            "name": self.name,
            "total_calls": self.total_calls,
            "successful_calls": self.successful_calls,
            "failed_calls": self.failed_calls,
            "consecutive_failures": self.consecutive_failures,
            "recent_success_rate": round(self.success_rate, 1),
            "recent_latency_ms": round(latency, 1),
            "last_called": self.last_called.isoformat() if self.last_called else None,
            "last_error": self.last_error,
            "is_healthy": self.is_healthy,
        }


_health_trackers: Dict[str, ServiceHealth] = {}
_health_lock = Lock()


def get_health_tracker(name: str) -> ServiceHealth:
    with _health_lock:
        return _health_trackers.setdefault(name, ServiceHealth(name=name))


def get_all_health_status() -> Dict[str, Dict[str, Any]]:
    with _health_lock:
        trackers = list(_health_trackers.values())
    return {tracker.name: tracker.to_dict() for tracker in trackers}


def tracked_call(service_name: str):
    """
    Decorator recording outcome and latency of each call under service_name.

    Exceptions are re-raised unchanged.

    Usage:
        @tracked_call("claude")
        def invoke(...):
            ...
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            started = time.monotonic()
            ok, error = False, None
            try:
                outcome = func(*args, **kwargs)
                ok = True
                return outcome
            except Exception as e:
                error = f"{type(e).__name__}: {e}"[:200]
                raise
            finally:
                get_health_tracker(service_name).record_call(
                    ok, (time.monotonic() - started) * 1000, error
                )

        return wrapper
    return decorator


# =============================================================================
# GRACEFUL DEGRADATION
# =============================================================================

def collect_with_partial_failure(
    funcs: List[Callable[[], List[Any]]],
) -> tuple:
    """
    Run each zero-argument callable in order and concatenate the lists they return.

    A failing callable is logged and skipped. Returns (items, errors) where
    errors is a list of (name, message) pairs.
    """
    items: List[Any] = []
    errors = []

    for func in funcs:
        name = getattr(func, "__name__", repr(func))
        try:
            result = func()
            if result:
                items.extend(result)
        except Exception as e:
            errors.append((name, str(e)))
            logger.error(f"Partial failure in {name}: {e}")

    if errors:
        logger.info(f"Completed with {len(errors)} failures out of {len(funcs)} calls")

    return items, errors


# =============================================================================
# STATUS AND RESET
# =============================================================================

def reset_all():
    """Clear throttles, health trackers and the shared HTTP session (for testing)"""
    global _http_session

    with _throttle_lock:
        _throttles.clear()

    with _health_lock:
        _health_trackers.clear()

    with _session_lock:
        _http_session = None

    logger.debug("Resilience state reset")


def get_system_status() -> Dict[str, Any]:
    status = {
        "timestamp": _utcnow().isoformat(),
        "throttles": {},
        "health": get_all_health_status(),
    }

    with _throttle_lock:
        for name, throttle in _throttles.items():
            status["throttles"][name] = {"min_interval": throttle.min_interval}

    status["healthy"] = all(h["is_healthy"] for h in status["health"].values())
    return status
