"""
Call budget for paid remote services.

The verifier is the only paid call in a run. The budget caps the total number
of calls per process and, optionally, the calls made in any sliding
one-minute window.
"""
import logging
from collections import defaultdict, deque
from datetime import datetime, timedelta
from threading import Lock
from typing import Any, Deque, Dict, Optional, Tuple

from jobfill.config import Config

logger = logging.getLogger(__name__)

WINDOW = timedelta(minutes=1)


class RateLimiter:
    """
    Total and per-minute call budget shared by remote services.

    ``can_make_call`` only checks; the caller records a call with
    ``record_call`` once the request has actually gone out.
    """

    def __init__(self, max_total_calls: Optional[int] = None, max_calls_per_minute: Optional[int] = None):
        """
        Args:
            max_total_calls: Calls allowed for the lifetime of this limiter
                (defaults to Config.MAX_VERIFIER_CALLS)
            max_calls_per_minute: Calls allowed in any one-minute window
                (defaults to Config.VERIFIER_CALLS_PER_MINUTE; 0 disables)
        """
        self.max_total_calls = Config.MAX_VERIFIER_CALLS if max_total_calls is None else max_total_calls
        self.max_calls_per_minute = (
            Config.VERIFIER_CALLS_PER_MINUTE if max_calls_per_minute is None else max_calls_per_minute
        )
        self.calls_by_service: Dict[str, int] = defaultdict(int)
        self._recent: Deque[datetime] = deque()
        self.lock = Lock()
        self.start_time = datetime.now()

    @property
    def total_calls(self) -> int:
        return sum(self.calls_by_service.values())

    def _prune(self, now: datetime):
        while self._recent and now - self._recent[0] >= WINDOW:
            self._recent.popleft()

    def can_make_call(self, service: str) -> Tuple[bool, str]:
        """
        Check the budget before calling ``service``.

        Returns:
            Tuple of (can_call, reason)
        """
        with self.lock:
            used = self.total_calls
            if used >= self.max_total_calls:
                return False, f"Call budget exhausted: {used}/{self.max_total_calls} calls used"

            if self.max_calls_per_minute > 0:
                self._prune(datetime.now())
                if len(self._recent) >= self.max_calls_per_minute:
                    return False, (
                        f"Per-minute limit reached for {service}: "
                        f"{len(self._recent)}/{self.max_calls_per_minute} in the last minute"
                    )
            return True, "OK"

    def record_call(self, service: str):
        """Record a call that was made."""
        with self.lock:
            now = datetime.now()
            self.calls_by_service[service] += 1
            self._recent.append(now)
            self._prune(now)
            logger.info(f"Recorded {service} call ({self.total_calls}/{self.max_total_calls})")

    def get_stats(self) -> Dict[str, Any]:
        with self.lock:
            now = datetime.now()
            self._prune(now)
            used = self.total_calls
            return {
                'total_calls': used,
                'max_calls': self.max_total_calls,
                'remaining_calls': max(0, self.max_total_calls - used),
                'calls_last_minute': len(self._recent),
                'calls_by_service': dict(self.calls_by_service),
                'session_duration': (now - self.start_time).total_seconds(),
            }

    def reset(self):
        """Forget every recorded call."""
        with self.lock:
            self.calls_by_service.clear()
            self._recent.clear()
            self.start_time = datetime.now()
            logger.info("Call budget reset")
