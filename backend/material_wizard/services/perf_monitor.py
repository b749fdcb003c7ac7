"""Performance monitoring for backend calls and wizard submissions."""
import time
import logging
import threading
import functools
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger("material-wizard.perf")


def timed_call(name: str) -> Callable:
    """
    Decorator that measures an async backend call and records it on the tracker.

    Usage::

        @timed_call("GET /api/categories")
        async def list_categories(self):
            ...
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            start = time.perf_counter()
            try:
                return await func(*args, **kwargs)
            except Exception:
                tracker.record_call_error(name)
                raise
            finally:
                duration_ms = round((time.perf_counter() - start) * 1000, 2)
                tracker.record_call_duration(name, duration_ms)
                logger.debug(
                    "backend call timed",
                    extra={"call": name, "duration_ms": duration_ms},
                )
        return wrapper
    return decorator


class PerformanceTracker:
    """
    Thread-safe in-memory tracker.

    Tracks:
    - Sessions started and materials submitted / rejected
    - Per-call backend durations and the slowest call seen
    - Error count broken down by call name
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._sessions_started: int = 0
        self._submissions_ok: int = 0
        self._submissions_failed: int = 0
        self._call_durations: Dict[str, list] = {}   # call name -> [duration_ms, ...]
        self._error_counts: Dict[str, int] = {}       # call name -> count
        self._slowest_call: Optional[str] = None
        self._slowest_call_ms: float = 0.0

    # ------------------------------------------------------------------
    # Public write API
    # ------------------------------------------------------------------

    def record_session_started(self) -> None:
        with self._lock:
            self._sessions_started += 1

    def record_submission(self, ok: bool) -> None:
        with self._lock:
            if ok:
                self._submissions_ok += 1
            else:
                self._submissions_failed += 1

    def record_call_duration(self, name: str, duration_ms: float) -> None:
        with self._lock:
            self._call_durations.setdefault(name, []).append(duration_ms)
            if duration_ms > self._slowest_call_ms:
                self._slowest_call_ms = duration_ms
                self._slowest_call = name

    def record_call_error(self, name: str) -> None:
        with self._lock:
            self._error_counts[name] = self._error_counts.get(name, 0) + 1

    # ------------------------------------------------------------------
    # Public read API
    # ------------------------------------------------------------------

    def get_metrics(self) -> Dict[str, Any]:
        with self._lock:
            call_avgs: Dict[str, float] = {
                name: round(sum(d) / len(d), 2) if d else 0.0
                for name, d in self._call_durations.items()
            }
            return {
                "sessions_started": self._sessions_started,
                "materials_submitted": self._submissions_ok,
                "submissions_failed": self._submissions_failed,
                "slowest_call": self._slowest_call,
                "slowest_call_ms": round(self._slowest_call_ms, 2),
                "error_count": sum(self._error_counts.values()),
                "error_count_by_call": dict(self._error_counts),
                "call_avg_durations_ms": call_avgs,
            }

    def reset(self) -> None:
        """Reset all counters (useful in tests)."""
        with self._lock:
            self._sessions_started = 0
            self._submissions_ok = 0
            self._submissions_failed = 0
            self._call_durations.clear()
            self._error_counts.clear()
            self._slowest_call = None
            self._slowest_call_ms = 0.0


# Module-level singleton — import this instance everywhere else.
tracker = PerformanceTracker()
